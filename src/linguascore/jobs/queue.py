"""In-process priority job queue with retry backoff and a dead-letter list.

Delivery is at-least-once: a job that fails is retried after
``backoff * 2 ** (attempt - 1)`` seconds until ``max_attempts`` is reached,
then moved to the dead-letter list.
"""

import asyncio
import heapq
import itertools
import time
from collections import deque
from datetime import datetime

import structlog

from linguascore.models.job import AccuracyJob, JobRecord, JobResult, JobState

logger = structlog.get_logger()


class JobQueue:
    """Priority heap ordered by (priority, enqueue sequence).

    Args:
        max_attempts: Attempts before a job is dead-lettered.
        backoff_seconds: Base retry delay.
        dead_letter_limit: Dead jobs kept for inspection.
        completed_history_limit: Completed jobs remembered for dedup.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        dead_letter_limit: int = 500,
        completed_history_limit: int = 100,
    ):
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.dead_letter_limit = dead_letter_limit
        self.completed_history_limit = completed_history_limit

        self._seq = itertools.count()
        self._ready: list[tuple[int, int, str]] = []
        self._delayed: list[tuple[float, int, str]] = []
        self._records: dict[str, JobRecord] = {}
        self._active: set[str] = set()
        self._completed: deque[str] = deque()
        self._dead: deque[str] = deque()
        self._failed_total = 0
        self._closed = False

        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    def enqueue(self, job: AccuracyJob) -> str:
        """Add a job; a job id the queue already knows is not added again."""
        job_id = job.job_id
        if job_id in self._records:
            logger.debug("job_duplicate_ignored", job_id=job_id)
            return job_id

        record = JobRecord(job=job)
        self._records[job_id] = record
        heapq.heappush(self._ready, (job.priority, next(self._seq), job_id))
        self._idle.clear()
        self._wakeup.set()
        logger.debug("job_enqueued", job_id=job_id, priority=job.priority)
        return job_id

    def get_record(self, job_id: str) -> JobRecord | None:
        return self._records.get(job_id)

    def _promote_due(self) -> None:
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, job_id = heapq.heappop(self._delayed)
            record = self._records[job_id]
            record.state = JobState.QUEUED
            heapq.heappush(self._ready, (record.job.priority, next(self._seq), job_id))

    async def get(self) -> JobRecord | None:
        """Next runnable job, waiting as needed. None once the queue is closed."""
        while not self._closed:
            self._promote_due()
            if self._ready:
                _, _, job_id = heapq.heappop(self._ready)
                record = self._records[job_id]
                record.state = JobState.ACTIVE
                record.attempts_made += 1
                self._active.add(job_id)
                return record

            timeout = None
            if self._delayed:
                timeout = max(0.0, self._delayed[0][0] - time.monotonic())
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except TimeoutError:
                pass
        return None

    def complete(self, job_id: str, result: JobResult) -> None:
        record = self._records[job_id]
        self._active.discard(job_id)
        record.state = JobState.COMPLETED
        record.result = result
        record.finished_at = datetime.now()
        self._completed.append(job_id)
        while len(self._completed) > self.completed_history_limit:
            self._records.pop(self._completed.popleft(), None)
        self._update_idle()

    def fail(self, job_id: str, error: BaseException) -> JobState:
        """Record a failed attempt; returns DELAYED (will retry) or DEAD."""
        record = self._records[job_id]
        self._active.discard(job_id)
        self._failed_total += 1
        record.last_error = str(error) or type(error).__name__

        if record.attempts_made >= self.max_attempts:
            record.state = JobState.DEAD
            record.finished_at = datetime.now()
            self._dead.append(job_id)
            while len(self._dead) > self.dead_letter_limit:
                self._records.pop(self._dead.popleft(), None)
            logger.error(
                "job_dead_lettered",
                job_id=job_id,
                attempts=record.attempts_made,
                error=record.last_error,
            )
        else:
            delay = self.backoff_seconds * 2 ** (record.attempts_made - 1)
            record.state = JobState.DELAYED
            record.available_at = time.monotonic() + delay
            heapq.heappush(self._delayed, (record.available_at, next(self._seq), job_id))
            self._wakeup.set()
            logger.warning(
                "job_retry_scheduled",
                job_id=job_id,
                attempt=record.attempts_made,
                delay_seconds=delay,
                error=record.last_error,
            )
        self._update_idle()
        return record.state

    def _update_idle(self) -> None:
        if not self._ready and not self._delayed and not self._active:
            self._idle.set()

    @property
    def is_idle(self) -> bool:
        return self._idle.is_set()

    async def wait_idle(self) -> None:
        """Block until nothing is queued, delayed or running."""
        await self._idle.wait()

    def close(self) -> None:
        self._closed = True
        self._wakeup.set()

    @property
    def dead_letters(self) -> list[JobRecord]:
        return [self._records[j] for j in self._dead if j in self._records]

    def stats(self) -> dict[str, int]:
        return {
            "waiting": len(self._ready),
            "delayed": len(self._delayed),
            "active": len(self._active),
            "completed": len(self._completed),
            "failed": self._failed_total,
            "dead": len(self._dead),
        }
