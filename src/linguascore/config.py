"""Worker settings: environment, .env and config/settings.yaml."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Nearest ancestor holding pyproject.toml."""
    here = Path(__file__).resolve()
    for candidate in (here, *here.parents):
        if (candidate / "pyproject.toml").is_file():
            return candidate
    return here.parents[2]


# (yaml section, yaml key) -> Settings field name
_YAML_FIELDS: dict[tuple[str, str], str] = {
    ("queue", "concurrency"): "queue_concurrency",
    ("queue", "rate_limit_max"): "queue_rate_limit_max",
    ("queue", "rate_limit_window_seconds"): "queue_rate_limit_window_seconds",
    ("queue", "max_attempts"): "job_max_attempts",
    ("queue", "backoff_seconds"): "job_backoff_seconds",
    ("queue", "dead_letter_limit"): "dead_letter_limit",
    ("queue", "completed_history_limit"): "completed_history_limit",
    ("batching", "flush_interval_seconds"): "flush_interval_seconds",
    ("batching", "max_pending_users"): "max_pending_users",
    ("batching", "flush_batch_size"): "flush_batch_size",
    ("batching", "realtime_cache_ttl"): "realtime_cache_ttl",
    ("detectors", "timeout_seconds"): "detector_timeout_seconds",
    ("detectors", "languagetool_enabled"): "languagetool_enabled",
    ("detectors", "languagetool_url"): "languagetool_url",
    ("detectors", "llm_fluency_enabled"): "llm_fluency_enabled",
    ("detectors", "fluency_model"): "fluency_model",
    ("detectors", "spelling_dictionary_path"): "spelling_dictionary_path",
    ("detectors", "nlp_cache_ttl"): "nlp_cache_ttl",
    ("cache", "backend"): "cache_backend",
    ("cache", "redis_url"): "redis_url",
    ("xp", "floor"): "xp_floor",
    ("xp", "ceiling"): "xp_ceiling",
    ("xp", "base_amount"): "xp_base_amount",
    ("aggregation", "advanced_weighting_enabled"): "advanced_weighting_enabled",
}


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Reads config/settings.yaml and maps its sections onto Settings fields."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        path = _find_project_root() / "config" / "settings.yaml"
        if not path.is_file():
            return {}
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

        values: dict[str, Any] = {}
        for (section, key), field_name in _YAML_FIELDS.items():
            value = (raw.get(section) or {}).get(key)
            if value is not None:
                values[field_name] = value
        return values


class Settings(BaseSettings):
    """Tunables for the queue, batching, detectors, cache and XP."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Queue / worker
    queue_concurrency: int = Field(default=10, ge=1)
    queue_rate_limit_max: int = Field(default=100, ge=1)
    queue_rate_limit_window_seconds: float = Field(default=1.0, gt=0)
    job_max_attempts: int = Field(default=3, ge=1)
    job_backoff_seconds: float = Field(default=1.0, ge=0)
    dead_letter_limit: int = Field(default=500)
    completed_history_limit: int = Field(default=100)

    # Batched persistence
    flush_interval_seconds: float = Field(default=30.0, gt=0)
    max_pending_users: int = Field(default=1000, ge=1)
    flush_batch_size: int = Field(default=100, ge=1)
    realtime_cache_ttl: int = Field(default=300)

    # Detectors
    detector_timeout_seconds: float = Field(default=5.0, gt=0)
    languagetool_enabled: bool = Field(default=False)
    languagetool_url: str = Field(default="http://localhost:8081/v2")
    llm_fluency_enabled: bool = Field(default=False)
    openai_api_key: str | None = Field(default=None)
    fluency_model: str = Field(default="gpt-4o-mini")
    spelling_dictionary_path: Path | None = Field(default=None)
    nlp_cache_ttl: int = Field(default=3600)

    # Cache
    cache_backend: str = Field(default="memory")  # "memory" | "redis"
    redis_url: str = Field(default="redis://localhost:6379/0")

    # XP
    xp_floor: int = Field(default=5)
    xp_ceiling: int = Field(default=500)
    xp_base_amount: int = Field(default=10)

    # Advanced weighted aggregation for pro/premium tiers
    advanced_weighting_enabled: bool = Field(default=True)

    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def progress_dir(self) -> Path:
        path = self.project_root / "data" / "progress"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Init kwargs win, then env, .env, settings.yaml and secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Process-wide Settings, built on first use."""
    return Settings()
