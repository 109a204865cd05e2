"""Worker entry point: wires services once per process and runs the pool."""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass

import structlog

from linguascore.config import Settings, get_settings
from linguascore.detection.base import DetectorRegistry, ErrorDetector
from linguascore.detection.languagetool import LanguageToolDetector
from linguascore.detection.llm_fluency import LLMFluencyDetector
from linguascore.detection.rule_based import RuleBasedGrammarDetector
from linguascore.detection.spelling import SpellingDetector
from linguascore.detection.vocabulary import VocabularyCalibrator
from linguascore.jobs.pipeline import AccuracyPipeline
from linguascore.jobs.queue import JobQueue
from linguascore.jobs.rate_limit import RateLimiter
from linguascore.jobs.worker import AccuracyWorker
from linguascore.progress.aggregator import CumulativeAccuracyAggregator
from linguascore.progress.batching import BatchedProgressService
from linguascore.progress.weighted import AdvancedWeightedAccuracy
from linguascore.scoring.analyzer import AccuracyAnalyzer
from linguascore.storage.cache import CacheService, MemoryCache, RedisCache
from linguascore.storage.progress_store import JsonProgressStore

logger = structlog.get_logger()


def configure_logging() -> None:
    """JSON logs when ENV=production, console output otherwise."""
    is_production = os.getenv("ENV", "development").lower() == "production"
    renderer = (
        structlog.processors.JSONRenderer()
        if is_production
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.INFO if is_production else logging.DEBUG
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass
class Services:
    cache: CacheService
    registry: DetectorRegistry
    analyzer: AccuracyAnalyzer
    aggregator: CumulativeAccuracyAggregator
    progress: BatchedProgressService
    queue: JobQueue
    worker: AccuracyWorker

    async def shutdown(self) -> None:
        await self.worker.stop(drain=True)
        await self.progress.shutdown()
        await self.registry.close()
        if isinstance(self.cache, RedisCache):
            await self.cache.close()


def build_detectors(settings: Settings, cache: CacheService) -> list[ErrorDetector]:
    detectors: list[ErrorDetector] = [
        RuleBasedGrammarDetector(),
        SpellingDetector(settings.spelling_dictionary_path),
        VocabularyCalibrator(),
    ]
    if settings.languagetool_enabled:
        detectors.append(
            LanguageToolDetector(
                settings.languagetool_url,
                cache=cache,
                timeout_seconds=settings.detector_timeout_seconds,
                cache_ttl=settings.nlp_cache_ttl,
            )
        )
    if settings.llm_fluency_enabled:
        detectors.append(LLMFluencyDetector(settings.openai_api_key, model=settings.fluency_model))
    return detectors


def build_services(settings: Settings) -> Services:
    if settings.cache_backend == "redis":
        cache: CacheService = RedisCache(settings.redis_url)
    else:
        cache = MemoryCache()
    store = JsonProgressStore(settings.progress_dir)

    registry = DetectorRegistry(
        build_detectors(settings, cache), timeout_seconds=settings.detector_timeout_seconds
    )
    analyzer = AccuracyAnalyzer(registry, cache=cache, cache_ttl=settings.nlp_cache_ttl)
    advanced = AdvancedWeightedAccuracy(cache) if settings.advanced_weighting_enabled else None
    aggregator = CumulativeAccuracyAggregator(
        store, cache=cache, advanced=advanced, cache_ttl=settings.realtime_cache_ttl
    )
    progress = BatchedProgressService(
        store,
        cache=cache,
        flush_interval_seconds=settings.flush_interval_seconds,
        max_pending_users=settings.max_pending_users,
        flush_batch_size=settings.flush_batch_size,
        cache_ttl=settings.realtime_cache_ttl,
    )
    queue = JobQueue(
        max_attempts=settings.job_max_attempts,
        backoff_seconds=settings.job_backoff_seconds,
        dead_letter_limit=settings.dead_letter_limit,
        completed_history_limit=settings.completed_history_limit,
    )
    pipeline = AccuracyPipeline(
        analyzer,
        aggregator,
        progress,
        xp_base_amount=settings.xp_base_amount,
        xp_floor=settings.xp_floor,
        xp_ceiling=settings.xp_ceiling,
    )
    worker = AccuracyWorker(
        queue,
        pipeline,
        concurrency=settings.queue_concurrency,
        rate_limiter=RateLimiter(
            settings.queue_rate_limit_max, settings.queue_rate_limit_window_seconds
        ),
    )
    return Services(cache, registry, analyzer, aggregator, progress, queue, worker)


async def run(settings: Settings) -> None:
    services = build_services(settings)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    services.progress.start()
    services.worker.start()
    logger.info(
        "linguascore_worker_running",
        concurrency=settings.queue_concurrency,
        cache=settings.cache_backend,
        detectors=[d.name for d in services.registry.detectors],
    )
    await stop.wait()
    logger.info("shutdown_requested")
    await services.shutdown()


def main() -> None:
    """Run the worker until SIGINT/SIGTERM."""
    configure_logging()
    asyncio.run(run(get_settings()))


if __name__ == "__main__":
    main()
