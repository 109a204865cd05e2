"""Per-job work: analyze, merge, award XP, queue the progress delta."""

import time

import structlog

from linguascore.jobs.queue import JobQueue
from linguascore.models.accuracy import AnalysisConfig, ProficiencyLevel, UserTier
from linguascore.models.job import AccuracyJob, JobResult
from linguascore.models.progress import ProgressUpdate
from linguascore.models.xp import XPInput
from linguascore.progress.aggregator import CumulativeAccuracyAggregator
from linguascore.progress.batching import BatchedProgressService
from linguascore.progress.xp import TIER_MULTIPLIERS, XP_CEILING, XP_FLOOR, calculate_total_xp
from linguascore.scoring.analyzer import AccuracyAnalyzer
from linguascore.storage.progress_store import get_path

logger = structlog.get_logger()


class AccuracyPipeline:
    """Runs one accuracy job end to end.

    Errors propagate so the worker can retry the job.
    """

    def __init__(
        self,
        analyzer: AccuracyAnalyzer,
        aggregator: CumulativeAccuracyAggregator,
        progress: BatchedProgressService,
        xp_base_amount: int = 10,
        xp_floor: int = XP_FLOOR,
        xp_ceiling: int = XP_CEILING,
    ):
        self.analyzer = analyzer
        self.aggregator = aggregator
        self.progress = progress
        self.xp_base_amount = xp_base_amount
        self.xp_floor = xp_floor
        self.xp_ceiling = xp_ceiling

    async def _streak_days(self, job: AccuracyJob) -> int:
        if job.streak_days is not None:
            return job.streak_days
        doc = await self.progress.store.find_one(job.user_id)
        return int(get_path(doc or {}, "streak.current", 0) or 0)

    async def process(self, job: AccuracyJob) -> JobResult:
        start = time.perf_counter()
        config = AnalysisConfig(
            tier=job.user_tier,
            proficiency=ProficiencyLevel.parse(job.user_level),
            user_id=job.user_id,
        )
        # Fallible reads go before the merge
        streak_days = await self._streak_days(job)
        result = await self.analyzer.analyze(job.user_message, job.ai_response, config)
        await self.aggregator.merge(
            job.user_id, result, job.user_tier, job.previous_accuracy, job_id=job.job_id
        )

        accuracy = result.overall
        xp = calculate_total_xp(
            XPInput(
                base_amount=self.xp_base_amount,
                accuracy=accuracy,
                streak_days=streak_days,
                tier_multiplier=TIER_MULTIPLIERS[job.user_tier],
                is_perfect_message=accuracy >= 100,
                error_count=result.statistics.error_count,
                critical_error_count=result.statistics.critical_error_count,
            ),
            floor=self.xp_floor,
            ceiling=self.xp_ceiling,
        )
        result.xp = xp

        await self.progress.queue_update(
            ProgressUpdate(
                user_id=job.user_id,
                messages_count=1,
                activity_type="conversation",
                accuracy=accuracy,
                xp=xp.net_xp,
                session_messages=1,
            )
        )

        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        logger.info(
            "accuracy_job_processed",
            accuracy=accuracy,
            xp=xp.net_xp,
            duration_ms=duration_ms,
        )
        return JobResult(
            job_id=job.job_id,
            success=True,
            accuracy=accuracy,
            xp_gained=xp.net_xp,
            duration_ms=duration_ms,
        )


def enqueue_accuracy_analysis(
    queue: JobQueue,
    user_id: str,
    user_message: str,
    ai_response: str = "",
    user_tier: UserTier = UserTier.FREE,
    user_level: str | None = None,
    previous_accuracy: dict[str, float] | None = None,
    timestamp: int | None = None,
) -> str:
    """Queue an analysis and return its job id without waiting for it to run."""
    job = AccuracyJob(
        user_id=user_id,
        user_message=user_message,
        ai_response=ai_response,
        user_tier=user_tier,
        user_level=user_level,
        previous_accuracy=previous_accuracy,
        **({"timestamp": timestamp} if timestamp is not None else {}),
    )
    job_id = queue.enqueue(job)
    logger.info(
        "accuracy_job_queued", job_id=job_id, user_id=user_id, priority=job.priority
    )
    return job_id
