"""Tests for batched progress persistence."""

import asyncio
from datetime import datetime

import pytest

from linguascore.models.progress import BatchedUpdate, ProgressUpdate, UpdatePriority
from linguascore.progress.batching import BatchedProgressService, build_update
from linguascore.storage.cache import MemoryCache
from linguascore.storage.progress_store import MemoryProgressStore


class CountingStore(MemoryProgressStore):
    def __init__(self, fail_for: set[str] | None = None):
        super().__init__()
        self.writes: list[str] = []
        self.fail_for = fail_for or set()
        self.gate: asyncio.Event | None = None

    async def find_one_and_update(self, user_id, inc=None, set_=None, add_to_set=None, upsert=True):
        if self.gate is not None:
            await self.gate.wait()
        if user_id in self.fail_for:
            raise ConnectionError("store down")
        self.writes.append(user_id)
        return await super().find_one_and_update(user_id, inc, set_, add_to_set, upsert)


class SlowStore(MemoryProgressStore):
    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def find_one_and_update(self, user_id, inc=None, set_=None, add_to_set=None, upsert=True):
        await asyncio.sleep(self.delay)
        return await super().find_one_and_update(user_id, inc, set_, add_to_set, upsert)


class TestBuildUpdate:
    def test_paths(self):
        batched = BatchedUpdate(user_id="u1")
        batched.add(ProgressUpdate(user_id="u1", minutes_practiced=2, messages_count=1, xp=10,
                                   accuracy=80, activity_type="conversation", session_duration=60,
                                   session_messages=1))
        batched.add(ProgressUpdate(user_id="u1", messages_count=1, xp=5, accuracy=90))
        inc, set_, add_to_set = build_update(batched)
        assert inc["total_xp"] == 15
        assert inc["xp_breakdown.from_accuracy"] == 15
        assert inc["streak.today_progress.messages_count"] == 2
        assert inc["streak.today_progress.minutes_practiced"] == 2
        assert inc["stats.total_time_spent"] == 60
        assert inc["stats.total_sessions"] == 1
        assert set_["stats.recent_accuracy"] == 85.0
        assert "last_active" in set_
        assert add_to_set["streak.today_progress.activities_completed"] == ["conversation"]

    def test_empty_counters_omitted(self):
        batched = BatchedUpdate(user_id="u1")
        batched.add(ProgressUpdate(user_id="u1", xp=3))
        inc, set_, add_to_set = build_update(batched)
        assert inc == {"total_xp": 3, "xp_breakdown.from_accuracy": 3}
        assert "stats.recent_accuracy" not in set_
        assert add_to_set == {}


class TestBatchedUpdate:
    def test_absorb_keeps_older_samples_first(self):
        older = BatchedUpdate(user_id="u1", first_update=datetime(2026, 1, 1))
        older.add(ProgressUpdate(user_id="u1", xp=10, accuracy=70))
        newer = BatchedUpdate(user_id="u1")
        newer.add(ProgressUpdate(user_id="u1", xp=5, accuracy=90))
        newer.absorb(older)
        assert newer.xp_gained == 15
        assert newer.accuracy_scores == [70, 90]
        assert newer.first_update == datetime(2026, 1, 1)
        assert newer.version == 2


class TestBatchedProgressService:
    async def test_three_updates_one_increment(self):
        store = CountingStore()
        service = BatchedProgressService(store)
        for _ in range(3):
            await service.queue_update(ProgressUpdate(user_id="u1", xp=10))
        assert store.writes == []
        report = await service.flush()
        assert report.processed == 1
        assert store.writes == ["u1"]
        doc = await store.find_one("u1")
        assert doc["total_xp"] == 30
        assert service.pending_users == 0

    async def test_flush_with_nothing_pending(self):
        report = await BatchedProgressService(CountingStore()).flush()
        assert report == (0, 0)

    async def test_failed_user_keeps_delta(self):
        store = CountingStore(fail_for={"bad"})
        service = BatchedProgressService(store)
        await service.queue_update(ProgressUpdate(user_id="bad", xp=10))
        await service.queue_update(ProgressUpdate(user_id="good", xp=7))
        report = await service.flush()
        assert report.processed == 1
        assert report.errors == 1
        assert service.pending_for("bad").xp_gained == 10
        assert service.pending_for("good") is None

        store.fail_for.clear()
        await service.queue_update(ProgressUpdate(user_id="bad", xp=5))
        await service.flush()
        assert (await store.find_one("bad"))["total_xp"] == 15

    async def test_updates_during_flush_are_kept(self):
        store = CountingStore()
        store.gate = asyncio.Event()
        service = BatchedProgressService(store)
        await service.queue_update(ProgressUpdate(user_id="u1", xp=10))

        flush = asyncio.create_task(service.flush())
        await asyncio.sleep(0)
        await service.queue_update(ProgressUpdate(user_id="u1", xp=4))
        assert service.pending_for("u1").xp_gained == 4
        assert await service.flush() == (0, 0)  # re-entrant call only asks for another pass
        store.gate.set()
        report = await flush

        assert report.processed == 2
        assert store.writes == ["u1", "u1"]
        assert (await store.find_one("u1"))["total_xp"] == 14
        assert service.pending_users == 0

    async def test_cancelled_flush_requeues_unwritten(self):
        store = CountingStore()
        store.gate = asyncio.Event()
        service = BatchedProgressService(store)
        await service.queue_update(ProgressUpdate(user_id="u1", xp=10))
        await service.queue_update(ProgressUpdate(user_id="u2", xp=3))

        flush = asyncio.create_task(service.flush())
        await asyncio.sleep(0.01)
        flush.cancel()
        with pytest.raises(asyncio.CancelledError):
            await flush

        assert service.pending_for("u1").xp_gained == 10
        assert service.pending_for("u2").xp_gained == 3
        store.gate.set()
        await service.flush()
        assert (await store.find_one("u1"))["total_xp"] == 10

    async def test_cancelled_flush_merges_with_newer_delta(self):
        store = CountingStore()
        store.gate = asyncio.Event()
        service = BatchedProgressService(store)
        await service.queue_update(ProgressUpdate(user_id="u1", xp=10))
        flush = asyncio.create_task(service.flush())
        await asyncio.sleep(0.01)
        await service.queue_update(ProgressUpdate(user_id="u1", xp=5))
        flush.cancel()
        with pytest.raises(asyncio.CancelledError):
            await flush
        assert service.pending_for("u1").xp_gained == 15

    async def test_high_priority_during_flush_is_written_promptly(self):
        store = CountingStore()
        store.gate = asyncio.Event()
        service = BatchedProgressService(store, flush_interval_seconds=30.0)
        await service.queue_update(ProgressUpdate(user_id="u1", xp=1))
        first = asyncio.create_task(service.flush())
        await asyncio.sleep(0.01)

        await service.queue_update(ProgressUpdate(user_id="u2", xp=9, priority=UpdatePriority.HIGH))
        await asyncio.sleep(0.01)
        assert service.pending_for("u2") is not None
        store.gate.set()
        await first

        assert (await store.find_one("u2"))["total_xp"] == 9
        assert service.pending_users == 0

    async def test_high_priority_schedules_flush(self):
        store = CountingStore()
        service = BatchedProgressService(store)
        await service.queue_update(ProgressUpdate(user_id="u1", xp=10, priority=UpdatePriority.HIGH))
        await service.shutdown()
        assert store.writes == ["u1"]

    async def test_pending_limit_triggers_flush(self):
        store = CountingStore()
        service = BatchedProgressService(store, max_pending_users=2)
        await service.queue_update(ProgressUpdate(user_id="a", xp=1))
        await service.queue_update(ProgressUpdate(user_id="b", xp=1))
        await asyncio.sleep(0.01)
        assert sorted(store.writes) == ["a", "b"]

    async def test_sub_batches(self):
        store = CountingStore()
        service = BatchedProgressService(store, flush_batch_size=2)
        for n in range(5):
            await service.queue_update(ProgressUpdate(user_id=f"u{n}", xp=1))
        report = await service.flush()
        assert report.processed == 5
        assert len(store.writes) == 5

    async def test_realtime_cache(self):
        service = BatchedProgressService(CountingStore(), cache=MemoryCache())
        await service.queue_update(ProgressUpdate(user_id="u1", xp=10, accuracy=80, messages_count=1))
        await service.queue_update(ProgressUpdate(user_id="u1", xp=5, accuracy=90, messages_count=1))
        snapshot = await service.get_cached_progress("u1")
        assert snapshot["xp"]["recent_gain"] == 15
        assert snapshot["streak"]["messages"] == 2
        assert snapshot["accuracy"]["recent_average"] == 85.0
        assert snapshot["accuracy"]["samples"] == 2

    async def test_cached_progress_falls_back_to_store(self):
        store = CountingStore()
        service = BatchedProgressService(store)
        await service.queue_update(ProgressUpdate(user_id="u1", xp=10))
        assert await service.get_cached_progress("u1") is None
        await service.flush()
        assert (await service.get_cached_progress("u1"))["total_xp"] == 10

    async def test_auto_flush_loop(self):
        store = CountingStore()
        service = BatchedProgressService(store, flush_interval_seconds=0.01)
        service.start()
        await service.queue_update(ProgressUpdate(user_id="u1", xp=10))
        await asyncio.sleep(0.05)
        assert store.writes == ["u1"]
        await service.shutdown()
        assert service.stats()["pending_users"] == 0

    async def test_shutdown_flushes(self):
        store = CountingStore()
        service = BatchedProgressService(store)
        service.start()
        await service.queue_update(ProgressUpdate(user_id="u1", xp=10))
        report = await service.shutdown()
        assert report.processed == 1
        assert (await store.find_one("u1"))["total_xp"] == 10

    async def test_shutdown_waits_for_running_flush(self):
        store = SlowStore(delay=0.2)
        service = BatchedProgressService(store, flush_interval_seconds=0.05)
        service.start()
        await service.queue_update(ProgressUpdate(user_id="u1", xp=10))
        await asyncio.sleep(0.1)  # the loop's flush is now inside the slow write
        assert service.stats()["is_flushing"]

        await service.shutdown()
        assert (await store.find_one("u1"))["total_xp"] == 10
        assert service.pending_users == 0
