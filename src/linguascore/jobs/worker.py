"""Worker pool consuming the accuracy job queue."""

import asyncio

import structlog
from structlog.contextvars import bound_contextvars

from linguascore.jobs.pipeline import AccuracyPipeline
from linguascore.jobs.queue import JobQueue
from linguascore.jobs.rate_limit import RateLimiter
from linguascore.models.job import JobState

logger = structlog.get_logger()


class AccuracyWorker:
    """Runs ``concurrency`` consumers over a JobQueue, rate limited.

    Args:
        queue: Source of jobs.
        pipeline: Work done per job.
        concurrency: Jobs processed in parallel.
        rate_limiter: Caps job starts per window (none when omitted).
    """

    def __init__(
        self,
        queue: JobQueue,
        pipeline: AccuracyPipeline,
        concurrency: int = 10,
        rate_limiter: RateLimiter | None = None,
    ):
        self.queue = queue
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.rate_limiter = rate_limiter
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(self._consume(n), name=f"accuracy-worker-{n}")
            for n in range(self.concurrency)
        ]
        logger.info("worker_started", concurrency=self.concurrency)

    async def _consume(self, worker_no: int) -> None:
        while True:
            record = await self.queue.get()
            if record is None:
                return
            job = record.job
            with bound_contextvars(job_id=record.job_id, user_id=job.user_id, worker=worker_no):
                try:
                    if self.rate_limiter is not None:
                        await self.rate_limiter.acquire()
                    result = await self.pipeline.process(job)
                except asyncio.CancelledError:
                    self.queue.fail(record.job_id, RuntimeError("worker cancelled"))
                    raise
                except Exception as e:
                    state = self.queue.fail(record.job_id, e)
                    logger.warning(
                        "job_failed",
                        attempt=record.attempts_made,
                        will_retry=state == JobState.DELAYED,
                        error=str(e),
                    )
                else:
                    self.queue.complete(record.job_id, result)
                    logger.debug("job_completed", xp=result.xp_gained)

    async def run_until_idle(self) -> None:
        """Process until nothing is queued, delayed or running."""
        self.start()
        await self.queue.wait_idle()

    async def stop(self, drain: bool = True) -> None:
        """Stop consumers, finishing outstanding work first when ``drain``."""
        if drain:
            await self.queue.wait_idle()
        self.queue.close()
        if not drain:
            for task in self._tasks:
                task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("worker_stopped", drained=drain, **self.queue.stats())
