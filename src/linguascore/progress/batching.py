"""Batched progress persistence with a realtime cache.

Deltas accumulate in memory per user and reach the durable store in one
atomic ``$inc``/``$set`` update per user per flush. The realtime cache is
refreshed on every delta so readers see near-current totals between
flushes.
"""

import asyncio
import json
from typing import Any, NamedTuple

import structlog

from linguascore.models.progress import BatchedUpdate, ProgressUpdate, UpdatePriority
from linguascore.storage.cache import CacheService
from linguascore.storage.progress_store import ProgressStore

logger = structlog.get_logger()


class FlushReport(NamedTuple):
    processed: int
    errors: int


def realtime_key(user_id: str) -> str:
    return f"progress:realtime:{user_id}"


def build_update(
    batched: BatchedUpdate,
) -> tuple[dict[str, float], dict[str, Any], dict[str, list[Any]]]:
    """Store operators (inc, set, add_to_set) for one user's batch."""
    inc: dict[str, float] = {}
    if batched.streak_minutes:
        inc["streak.today_progress.minutes_practiced"] = batched.streak_minutes
    if batched.streak_messages:
        inc["streak.today_progress.messages_count"] = batched.streak_messages
        inc["stats.conversations_practiced"] = batched.streak_messages
    if batched.xp_gained:
        inc["total_xp"] = batched.xp_gained
        inc["xp_breakdown.from_accuracy"] = batched.xp_gained
    if batched.session_duration:
        inc["stats.total_time_spent"] = batched.session_duration
        inc["stats.total_sessions"] = 1
    if batched.total_messages:
        inc["stats.total_messages"] = batched.total_messages

    last = batched.last_update.isoformat()
    set_: dict[str, Any] = {
        "streak.today_progress.last_updated": last,
        "last_active": last,
    }
    if batched.average_accuracy is not None:
        set_["stats.recent_accuracy"] = round(batched.average_accuracy, 1)

    add_to_set: dict[str, list[Any]] = {}
    if batched.activity_types:
        add_to_set["streak.today_progress.activities_completed"] = sorted(batched.activity_types)
    return inc, set_, add_to_set


class BatchedProgressService:
    """Aggregates progress deltas and flushes them in bounded sub-batches.

    Args:
        store: Durable progress store.
        cache: Realtime snapshot cache (best-effort).
        flush_interval_seconds: Period of the background flush loop.
        max_pending_users: Pending-user count that triggers a flush.
        flush_batch_size: Users written concurrently per sub-batch.
        cache_ttl: Realtime snapshot lifetime in seconds.
    """

    def __init__(
        self,
        store: ProgressStore,
        cache: CacheService | None = None,
        flush_interval_seconds: float = 30.0,
        max_pending_users: int = 1000,
        flush_batch_size: int = 100,
        cache_ttl: int = 300,
    ):
        self.store = store
        self.cache = cache
        self.flush_interval_seconds = flush_interval_seconds
        self.max_pending_users = max_pending_users
        self.flush_batch_size = flush_batch_size
        self.cache_ttl = cache_ttl

        self._pending: dict[str, BatchedUpdate] = {}
        self._flushing = False
        self._flush_requested = False
        self._stopping = asyncio.Event()
        self._loop_task: asyncio.Task | None = None
        self._scheduled: set[asyncio.Task] = set()

    @property
    def pending_users(self) -> int:
        return len(self._pending)

    def pending_for(self, user_id: str) -> BatchedUpdate | None:
        return self._pending.get(user_id)

    async def queue_update(self, update: ProgressUpdate) -> None:
        """Record a delta; never waits for the durable write."""
        batched = self._pending.get(update.user_id)
        if batched is None:
            batched = BatchedUpdate(
                user_id=update.user_id,
                first_update=update.timestamp,
                last_update=update.timestamp,
            )
            self._pending[update.user_id] = batched
        batched.add(update)

        try:
            await self._update_cache(update)
        except Exception:
            logger.warning("realtime_cache_update_failed", user_id=update.user_id, exc_info=True)

        if update.priority == UpdatePriority.HIGH or len(self._pending) >= self.max_pending_users:
            logger.debug(
                "flush_scheduled",
                reason="priority" if update.priority == UpdatePriority.HIGH else "size",
                pending=len(self._pending),
            )
            task = asyncio.create_task(self.flush())
            self._scheduled.add(task)
            task.add_done_callback(self._scheduled.discard)

    async def _update_cache(self, update: ProgressUpdate) -> None:
        if self.cache is None:
            return
        key = realtime_key(update.user_id)
        try:
            raw = await self.cache.get(key)
            snapshot = json.loads(raw) if raw else {}
        except (TypeError, ValueError):
            snapshot = {}

        streak = snapshot.get("streak") or {}
        stats = snapshot.get("stats") or {}
        xp = snapshot.get("xp") or {}
        accuracy = snapshot.get("accuracy") or {}
        samples = accuracy.get("samples", 0)
        if update.accuracy is not None:
            average = accuracy.get("recent_average", 0)
            accuracy = {
                "recent_average": round((average * samples + update.accuracy) / (samples + 1), 1),
                "samples": samples + 1,
            }

        snapshot.update(
            {
                "last_update": update.timestamp.isoformat(),
                "streak": {
                    "minutes": streak.get("minutes", 0) + update.minutes_practiced,
                    "messages": streak.get("messages", 0) + update.messages_count,
                },
                "stats": {
                    "total_messages": stats.get("total_messages", 0) + update.session_messages,
                    "total_seconds": stats.get("total_seconds", 0) + update.session_duration,
                },
                "xp": {"recent_gain": xp.get("recent_gain", 0) + update.xp},
                "accuracy": accuracy,
            }
        )
        await self.cache.set(key, json.dumps(snapshot), self.cache_ttl)

    async def get_cached_progress(self, user_id: str) -> dict[str, Any] | None:
        """Realtime snapshot, or the stored document when the cache has none."""
        if self.cache is not None:
            raw = await self.cache.get(realtime_key(user_id))
            if raw:
                try:
                    return json.loads(raw)
                except ValueError:
                    logger.debug("realtime_snapshot_unparseable", user_id=user_id)
        return await self.store.find_one(user_id)

    async def _write(self, batched: BatchedUpdate) -> None:
        inc, set_, add_to_set = build_update(batched)
        await self.store.find_one_and_update(
            batched.user_id, inc=inc, set_=set_, add_to_set=add_to_set, upsert=True
        )

    async def flush(self) -> FlushReport:
        """Write every pending user's batch.

        A call made while a flush is running returns immediately and asks
        the running flush for one more pass, so deltas queued meanwhile are
        not left waiting for the next interval.
        """
        if self._flushing:
            self._flush_requested = True
            return FlushReport(0, 0)
        if not self._pending:
            return FlushReport(0, 0)

        self._flushing = True
        processed = errors = 0
        try:
            while self._pending:
                self._flush_requested = False
                done, failed = await self._flush_pass()
                processed += done
                errors += failed
                if not self._flush_requested:
                    break
        finally:
            self._flushing = False

        logger.info("progress_flushed", processed=processed, errors=errors, pending=len(self._pending))
        return FlushReport(processed, errors)

    async def _flush_pass(self) -> FlushReport:
        # Deltas queued while this pass runs land in a fresh map
        snapshot, self._pending = self._pending, {}
        batches = list(snapshot.values())
        settled: set[str] = set()
        processed = errors = 0
        try:
            for i in range(0, len(batches), self.flush_batch_size):
                chunk = batches[i : i + self.flush_batch_size]
                results = await asyncio.gather(
                    *(self._write(b) for b in chunk), return_exceptions=True
                )
                for batched, outcome in zip(chunk, results):
                    settled.add(batched.user_id)
                    if isinstance(outcome, BaseException):
                        errors += 1
                        self._requeue(batched)
                        logger.warning(
                            "progress_flush_failed",
                            user_id=batched.user_id,
                            error=str(outcome) or type(outcome).__name__,
                        )
                    else:
                        processed += 1
        except BaseException:
            # Interrupted (cancelled): unwritten batches go back to pending
            unwritten = [b for b in batches if b.user_id not in settled]
            for batched in unwritten:
                self._requeue(batched)
            logger.warning("progress_flush_interrupted", requeued=len(unwritten))
            raise
        return FlushReport(processed, errors)

    def _requeue(self, batched: BatchedUpdate) -> None:
        newer = self._pending.get(batched.user_id)
        if newer is None:
            self._pending[batched.user_id] = batched
        else:
            newer.absorb(batched)

    async def _flush_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), self.flush_interval_seconds)
            except TimeoutError:
                pass
            try:
                await self.flush()
            except Exception:
                logger.exception("progress_flush_loop_error")

    def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._stopping.clear()
            self._loop_task = asyncio.create_task(self._flush_loop())
            logger.info("progress_flush_loop_started", interval=self.flush_interval_seconds)

    async def shutdown(self) -> FlushReport:
        """Stop the flush loop and write everything still pending.

        A flush already running is allowed to finish rather than cancelled.
        """
        self._stopping.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._scheduled:
            await asyncio.gather(*self._scheduled, return_exceptions=True)
        report = await self.flush()
        logger.info("progress_service_shutdown", processed=report.processed, errors=report.errors)
        return report

    def stats(self) -> dict[str, Any]:
        return {
            "pending_users": len(self._pending),
            "is_flushing": self._flushing,
            "flush_interval_seconds": self.flush_interval_seconds,
        }
