"""Tests for settings loading."""

import pytest
from pydantic import ValidationError

import linguascore.config as config_module
from linguascore.config import Settings, YamlSettingsSource, get_settings


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.queue_concurrency == 10
        assert settings.job_max_attempts == 3
        assert settings.xp_floor == 5
        assert settings.xp_ceiling == 500
        assert settings.cache_backend == "memory"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("QUEUE_CONCURRENCY", "4")
        monkeypatch.setenv("CACHE_BACKEND", "redis")
        settings = Settings()
        assert settings.queue_concurrency == 4
        assert settings.cache_backend == "redis"

    def test_init_overrides_env(self, monkeypatch):
        monkeypatch.setenv("XP_CEILING", "300")
        assert Settings(xp_ceiling=200).xp_ceiling == 200

    def test_validation(self):
        with pytest.raises(ValidationError):
            Settings(queue_concurrency=0)
        with pytest.raises(ValidationError):
            Settings(flush_interval_seconds=0)

    def test_progress_dir_created(self, tmp_path):
        settings = Settings(project_root=tmp_path)
        assert settings.progress_dir == tmp_path / "data" / "progress"
        assert settings.progress_dir.is_dir()

    def test_get_settings_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()


class TestYamlSettingsSource:
    def test_flattens_sections(self, tmp_path, monkeypatch):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "settings.yaml").write_text(
            "queue:\n  concurrency: 7\n  max_attempts: 5\n"
            "batching:\n  flush_interval_seconds: 12\n"
            "aggregation:\n  advanced_weighting_enabled: false\n"
            "unknown:\n  key: 1\n"
        )
        monkeypatch.setattr(config_module, "_find_project_root", lambda: tmp_path)
        values = YamlSettingsSource(Settings)()
        assert values == {
            "queue_concurrency": 7,
            "job_max_attempts": 5,
            "flush_interval_seconds": 12,
            "advanced_weighting_enabled": False,
        }
        settings = Settings()
        assert settings.queue_concurrency == 7
        assert settings.advanced_weighting_enabled is False

    def test_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.setattr(config_module, "_find_project_root", lambda: tmp_path)
        assert YamlSettingsSource(Settings)() == {}

    def test_env_beats_yaml(self, tmp_path, monkeypatch):
        (tmp_path / "config").mkdir()
        (tmp_path / "config" / "settings.yaml").write_text("xp:\n  floor: 8\n")
        monkeypatch.setattr(config_module, "_find_project_root", lambda: tmp_path)
        monkeypatch.setenv("XP_FLOOR", "3")
        assert Settings().xp_floor == 3
