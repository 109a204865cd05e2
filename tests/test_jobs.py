"""Tests for the job queue, rate limiter, worker pool and accuracy pipeline."""

import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

from linguascore.detection.base import DetectorRegistry
from linguascore.detection.rule_based import RuleBasedGrammarDetector
from linguascore.detection.spelling import SpellingDetector
from linguascore.detection.vocabulary import VocabularyCalibrator
from linguascore.jobs.pipeline import AccuracyPipeline, enqueue_accuracy_analysis
from linguascore.jobs.queue import JobQueue
from linguascore.jobs.rate_limit import RateLimiter
from linguascore.jobs.worker import AccuracyWorker
from linguascore.models.accuracy import UserTier
from linguascore.models.job import AccuracyJob, JobResult, JobState
from linguascore.progress.aggregator import CumulativeAccuracyAggregator
from linguascore.progress.batching import BatchedProgressService
from linguascore.scoring.analyzer import AccuracyAnalyzer
from linguascore.storage.cache import MemoryCache
from linguascore.storage.progress_store import MemoryProgressStore


def _job(user_id="u1", tier=UserTier.FREE, timestamp=1, **kwargs) -> AccuracyJob:
    return AccuracyJob(
        user_id=user_id, user_message="I goed home.", user_tier=tier, timestamp=timestamp, **kwargs
    )


def _pipeline(store: MemoryProgressStore) -> AccuracyPipeline:
    registry = DetectorRegistry(
        [RuleBasedGrammarDetector(use_spacy=False), SpellingDetector(), VocabularyCalibrator()]
    )
    analyzer = AccuracyAnalyzer(registry, cache=MemoryCache())
    aggregator = CumulativeAccuracyAggregator(store)
    progress = BatchedProgressService(store, cache=MemoryCache())
    return AccuracyPipeline(analyzer, aggregator, progress)


class TestJobQueue:
    async def test_premium_dequeued_first(self):
        queue = JobQueue()
        queue.enqueue(_job("free-user", UserTier.FREE))
        queue.enqueue(_job("pro-user", UserTier.PRO))
        queue.enqueue(_job("premium-user", UserTier.PREMIUM))
        order = [(await queue.get()).job.user_id for _ in range(3)]
        assert order == ["premium-user", "pro-user", "free-user"]

    async def test_same_priority_is_fifo(self):
        queue = JobQueue()
        queue.enqueue(_job("a", timestamp=2))
        queue.enqueue(_job("b", timestamp=1))
        assert (await queue.get()).job.user_id == "a"

    async def test_duplicate_ignored(self):
        queue = JobQueue()
        first = queue.enqueue(_job())
        second = queue.enqueue(_job())
        assert first == second == "u1-1"
        assert queue.stats()["waiting"] == 1

    async def test_retry_then_dead_letter(self):
        queue = JobQueue(max_attempts=3, backoff_seconds=0.001)
        queue.enqueue(_job())

        record = await queue.get()
        assert record.attempts_made == 1
        assert queue.fail(record.job_id, RuntimeError("boom")) == JobState.DELAYED

        record = await queue.get()
        assert record.attempts_made == 2
        assert queue.fail(record.job_id, RuntimeError("boom")) == JobState.DELAYED

        record = await queue.get()
        assert queue.fail(record.job_id, RuntimeError("boom")) == JobState.DEAD
        assert queue.is_idle
        assert queue.stats()["dead"] == 1
        assert queue.stats()["failed"] == 3
        assert queue.dead_letters[0].last_error == "boom"

    async def test_complete_marks_idle(self):
        queue = JobQueue()
        queue.enqueue(_job())
        assert not queue.is_idle
        record = await queue.get()
        queue.complete(record.job_id, JobResult(job_id=record.job_id))
        assert queue.is_idle
        assert queue.get_record("u1-1").state == JobState.COMPLETED

    async def test_completed_history_bounded(self):
        queue = JobQueue(completed_history_limit=2)
        for ts in (1, 2, 3):
            queue.enqueue(_job(timestamp=ts))
        for _ in range(3):
            record = await queue.get()
            queue.complete(record.job_id, JobResult(job_id=record.job_id))
        assert queue.stats()["completed"] == 2
        assert queue.get_record("u1-1") is None
        assert queue.get_record("u1-3") is not None

    async def test_dead_letters_bounded(self):
        queue = JobQueue(max_attempts=1, dead_letter_limit=1)
        queue.enqueue(_job(timestamp=1))
        queue.enqueue(_job(timestamp=2))
        for _ in range(2):
            record = await queue.get()
            queue.fail(record.job_id, ValueError("bad"))
        assert [r.job_id for r in queue.dead_letters] == ["u1-2"]

    async def test_close_releases_waiters(self):
        queue = JobQueue()
        waiter = asyncio.create_task(queue.get())
        await asyncio.sleep(0)
        queue.close()
        assert await asyncio.wait_for(waiter, 1.0) is None


class TestRateLimiter:
    async def test_allows_burst_up_to_limit(self):
        limiter = RateLimiter(max_calls=3, window_seconds=0.2)
        start = time.monotonic()
        for _ in range(3):
            await limiter.acquire()
        assert time.monotonic() - start < 0.1
        assert limiter.in_window == 3

    async def test_waits_when_window_full(self):
        limiter = RateLimiter(max_calls=3, window_seconds=0.2)
        start = time.monotonic()
        for _ in range(4):
            await limiter.acquire()
        assert time.monotonic() - start >= 0.15


class TestAccuracyWorker:
    async def test_processes_all_jobs(self):
        queue = JobQueue()
        pipeline = MagicMock()
        pipeline.process = AsyncMock(side_effect=lambda job: JobResult(job_id=job.job_id))
        for ts in range(5):
            queue.enqueue(_job(timestamp=ts))
        worker = AccuracyWorker(queue, pipeline, concurrency=2)
        await asyncio.wait_for(worker.run_until_idle(), 2.0)
        assert pipeline.process.await_count == 5
        assert queue.stats()["completed"] == 5
        await worker.stop()
        assert not worker.running

    async def test_failing_job_is_dead_lettered(self):
        queue = JobQueue(max_attempts=3, backoff_seconds=0.001)
        pipeline = MagicMock()
        pipeline.process = AsyncMock(side_effect=RuntimeError("detector exploded"))
        queue.enqueue(_job())
        worker = AccuracyWorker(queue, pipeline, concurrency=1)
        await asyncio.wait_for(worker.run_until_idle(), 2.0)
        assert pipeline.process.await_count == 3
        assert queue.stats()["dead"] == 1
        await worker.stop()

    async def test_stop_without_drain(self):
        queue = JobQueue()
        pipeline = MagicMock()
        pipeline.process = AsyncMock(return_value=JobResult(job_id="x"))
        worker = AccuracyWorker(queue, pipeline, concurrency=3)
        worker.start()
        assert worker.running
        await worker.stop(drain=False)
        assert not worker.running

    async def test_rate_limiter_used(self):
        queue = JobQueue()
        pipeline = MagicMock()
        pipeline.process = AsyncMock(side_effect=lambda job: JobResult(job_id=job.job_id))
        limiter = RateLimiter(max_calls=100, window_seconds=1.0)
        queue.enqueue(_job())
        worker = AccuracyWorker(queue, pipeline, concurrency=1, rate_limiter=limiter)
        await asyncio.wait_for(worker.run_until_idle(), 2.0)
        assert limiter.in_window == 1
        await worker.stop()


class TestAccuracyPipeline:
    async def test_process_updates_progress(self):
        store = MemoryProgressStore()
        pipeline = _pipeline(store)
        result = await pipeline.process(_job(streak_days=0))

        assert result.success
        assert 5 <= result.xp_gained <= 500
        assert 0 <= result.accuracy <= 100
        pending = pipeline.progress.pending_for("u1")
        assert pending.xp_gained == result.xp_gained
        assert pending.activity_types == {"conversation"}

        await pipeline.progress.flush()
        doc = await store.find_one("u1")
        assert doc["total_xp"] == result.xp_gained
        assert doc["accuracy"]["calculation_count"] == 1
        assert doc["stats"]["total_messages"] == 1

    async def test_streak_read_from_store(self):
        store = MemoryProgressStore()
        await store.find_one_and_update("u1", set_={"streak.current": 7})
        pipeline = _pipeline(store)
        assert await pipeline._streak_days(_job()) == 7
        assert await pipeline._streak_days(_job(streak_days=2)) == 2
        assert await pipeline._streak_days(_job("nobody")) == 0

    async def test_end_to_end_with_worker(self):
        store = MemoryProgressStore()
        pipeline = _pipeline(store)
        queue = JobQueue()
        for ts in (1, 2, 3):
            enqueue_accuracy_analysis(queue, "u1", "I goed home.", timestamp=ts)
        worker = AccuracyWorker(queue, pipeline, concurrency=3)
        await asyncio.wait_for(worker.run_until_idle(), 5.0)
        await worker.stop()
        await pipeline.progress.shutdown()

        doc = await store.find_one("u1")
        assert doc["accuracy"]["calculation_count"] == 3
        assert doc["streak"]["today_progress"]["messages_count"] == 3


class TestEnqueueAccuracyAnalysis:
    def test_returns_deterministic_id(self):
        queue = JobQueue()
        job_id = enqueue_accuracy_analysis(
            queue, "u1", "Hello there.", user_tier=UserTier.PREMIUM, timestamp=123
        )
        assert job_id == "u1-123"
        record = queue.get_record(job_id)
        assert record.job.priority == 1
        assert record.state == JobState.QUEUED


class FlakyReadStore(MemoryProgressStore):
    """Fails the first ``find_one`` call."""

    def __init__(self):
        super().__init__()
        self.reads = 0

    async def find_one(self, user_id):
        self.reads += 1
        if self.reads == 1:
            raise OSError("store unreachable")
        return await super().find_one(user_id)


class TestRetriedJobs:
    async def test_failed_streak_read_does_not_double_merge(self):
        store = FlakyReadStore()
        pipeline = _pipeline(store)
        queue = JobQueue(backoff_seconds=0.01)
        queue.enqueue(_job())
        worker = AccuracyWorker(queue, pipeline, concurrency=1)
        await asyncio.wait_for(worker.run_until_idle(), 5.0)
        await worker.stop()

        assert queue.stats()["failed"] == 1
        assert queue.stats()["completed"] == 1
        assert (await pipeline.aggregator.get("u1")).calculation_count == 1

    async def test_retry_after_merge_counts_message_once(self):
        store = MemoryProgressStore()
        pipeline = _pipeline(store)
        pipeline.progress.queue_update = AsyncMock(side_effect=[OSError("down"), None])
        queue = JobQueue(backoff_seconds=0.01)
        queue.enqueue(_job(streak_days=0))
        worker = AccuracyWorker(queue, pipeline, concurrency=1)
        await asyncio.wait_for(worker.run_until_idle(), 5.0)
        await worker.stop()

        assert pipeline.progress.queue_update.await_count == 2
        assert queue.stats()["completed"] == 1
        assert (await pipeline.aggregator.get("u1")).calculation_count == 1
