"""Smoke tests for service wiring."""

import asyncio

from linguascore.config import Settings
from linguascore.jobs.pipeline import enqueue_accuracy_analysis
from linguascore.main import build_detectors, build_services, configure_logging
from linguascore.storage.cache import MemoryCache, RedisCache
from linguascore.storage.progress_store import JsonProgressStore


class TestBuildDetectors:
    def test_default_detectors(self):
        names = [d.name for d in build_detectors(Settings(), MemoryCache())]
        assert names == ["rules", "spelling", "vocabulary"]

    def test_optional_detectors(self):
        settings = Settings(languagetool_enabled=True, llm_fluency_enabled=True)
        names = [d.name for d in build_detectors(settings, MemoryCache())]
        assert "languagetool" in names
        assert "llm_fluency" in names


class TestBuildServices:
    def test_memory_backend(self, tmp_path):
        services = build_services(Settings(project_root=tmp_path, queue_concurrency=2))
        assert isinstance(services.cache, MemoryCache)
        assert isinstance(services.progress.store, JsonProgressStore)
        assert services.worker.concurrency == 2
        assert services.aggregator.advanced is not None

    def test_redis_backend(self, tmp_path):
        services = build_services(Settings(project_root=tmp_path, cache_backend="redis"))
        assert isinstance(services.cache, RedisCache)

    def test_advanced_weighting_disabled(self, tmp_path):
        services = build_services(
            Settings(project_root=tmp_path, advanced_weighting_enabled=False)
        )
        assert services.aggregator.advanced is None

    async def test_run_and_shutdown(self, tmp_path):
        configure_logging()
        settings = Settings(project_root=tmp_path, queue_concurrency=2, job_backoff_seconds=0.01)
        services = build_services(settings)
        services.worker.start()
        enqueue_accuracy_analysis(services.queue, "u1", "I goed to school.", timestamp=1)
        await asyncio.wait_for(services.queue.wait_idle(), 5.0)
        await services.shutdown()

        doc = await services.progress.store.find_one("u1")
        assert doc["total_xp"] >= 5
        assert doc["accuracy"]["calculation_count"] == 1
