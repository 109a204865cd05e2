"""Cumulative accuracy: count-weighted running average per user.

Each merge computes ``round(((old * (n - 1)) + new) / n)`` per category,
rounding at every step. That makes the stored average drift by a fraction
of a point from a true mean over many messages; the drift is accepted.
"""

import asyncio
import weakref
from datetime import datetime
from typing import NamedTuple

import structlog

from linguascore.models.accuracy import (
    CUMULATIVE_FIELDS,
    AccuracyResult,
    CumulativeAccuracy,
    SkillsUpdate,
    UserTier,
)
from linguascore.progress.weighted import AdvancedWeightedAccuracy, round_half_up
from linguascore.scoring.weights import TIER_FEATURES
from linguascore.storage.cache import CacheService
from linguascore.storage.progress_store import ProgressStore, get_path

logger = structlog.get_logger()

DOC_PREFIX = "accuracy"

# Job ids remembered per user to skip re-merging a retried job
APPLIED_JOB_HISTORY = 50


def weighted_average(old: float, new: float, count: int) -> int:
    if count == 1:
        return round_half_up(new)
    return round_half_up(((old * (count - 1)) + new) / count)


def calculate_cumulative_accuracy(
    current: CumulativeAccuracy | None,
    new: dict[str, float],
) -> tuple[CumulativeAccuracy, SkillsUpdate]:
    """Merge one message's scores into the running average.

    Only fields present in ``new`` change; the rest keep their previous
    value. ``calculation_count`` always grows by one, so merging the same
    message twice counts it twice.

    Args:
        current: Stored cumulative record (None for a new user).
        new: Message-level values keyed by category name.

    Returns:
        (updated cumulative record, skills patch).
    """
    current = current or CumulativeAccuracy()
    count = current.calculation_count + 1
    values = current.values()
    for name in CUMULATIVE_FIELDS:
        if new.get(name) is not None:
            values[name] = weighted_average(values[name], new[name], count)

    updated = CumulativeAccuracy(
        **values, calculation_count=count, last_calculated=datetime.now()
    )
    skills = SkillsUpdate()
    if new.get("overall") is not None:
        skills.accuracy = updated.overall
        skills.overall_accuracy = updated.overall
    for name in ("grammar", "vocabulary", "fluency"):
        if new.get(name) is not None:
            setattr(skills, name, getattr(updated, name))
    return updated, skills


def cumulative_from_document(doc: dict | None) -> CumulativeAccuracy | None:
    if not doc or not isinstance(doc.get(DOC_PREFIX), dict):
        return None
    data = {k: v for k, v in doc[DOC_PREFIX].items() if k in CumulativeAccuracy.model_fields}
    return CumulativeAccuracy.model_validate(data)


class MergeOutcome(NamedTuple):
    cumulative: CumulativeAccuracy
    skills: SkillsUpdate
    weighted: dict[str, int] | None
    applied: bool = True  # False when the job had already been merged


def _skills_from(cumulative: CumulativeAccuracy) -> SkillsUpdate:
    return SkillsUpdate(
        accuracy=cumulative.overall,
        overall_accuracy=cumulative.overall,
        grammar=cumulative.grammar,
        vocabulary=cumulative.vocabulary,
        fluency=cumulative.fluency,
    )


class CumulativeAccuracyAggregator:
    """Loads, merges and stores a user's cumulative accuracy.

    Merges for one user are serialized with a per-user lock so two jobs
    for the same learner cannot both read the same count and lose an
    update. Different users merge in parallel. A merge that carries a
    ``job_id`` already recorded for the user is skipped, so a retried job
    is counted once.

    Args:
        store: Durable progress store.
        cache: Realtime cache for the merged record (best-effort).
        advanced: Advanced weighted blend for tiers that have it.
        cache_ttl: Seconds to keep the cached record.
    """

    def __init__(
        self,
        store: ProgressStore,
        cache: CacheService | None = None,
        advanced: AdvancedWeightedAccuracy | None = None,
        cache_ttl: int = 300,
    ):
        self.store = store
        self.cache = cache
        self.advanced = advanced
        self.cache_ttl = cache_ttl
        # Entries vanish once no merge holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def merge(
        self,
        user_id: str,
        result: AccuracyResult,
        tier: UserTier = UserTier.FREE,
        previous_accuracy: dict[str, float] | None = None,
        job_id: str | None = None,
    ) -> MergeOutcome:
        snapshot = result.snapshot()
        async with self._lock_for(user_id):
            doc = await self.store.find_one(user_id)
            current = cumulative_from_document(doc)
            applied_jobs = list(get_path(doc or {}, f"{DOC_PREFIX}.applied_jobs") or [])
            if job_id is not None and job_id in applied_jobs and current is not None:
                logger.info("cumulative_merge_duplicate_skipped", user_id=user_id, job_id=job_id)
                return MergeOutcome(
                    current,
                    _skills_from(current),
                    get_path(doc, f"{DOC_PREFIX}.weighted"),
                    applied=False,
                )

            updated, skills = calculate_cumulative_accuracy(current, snapshot)

            weighted = None
            if self.advanced is not None and TIER_FEATURES[tier].advanced_weighting:
                previous = previous_accuracy or (current.values() if current else None)
                weighted = await self.advanced.blend_with_history(previous, snapshot, user_id)

            set_fields = {
                f"{DOC_PREFIX}.{name}": value
                for name, value in updated.model_dump(mode="json").items()
            }
            set_fields.update(
                {f"skills.{k}": v for k, v in skills.model_dump(exclude_none=True).items()}
            )
            if weighted is not None:
                set_fields[f"{DOC_PREFIX}.weighted"] = weighted
            if job_id is not None:
                applied_jobs.append(job_id)
                set_fields[f"{DOC_PREFIX}.applied_jobs"] = applied_jobs[-APPLIED_JOB_HISTORY:]
            await self.store.find_one_and_update(user_id, set_=set_fields)

        if self.cache is not None:
            await self.cache.set(
                f"accuracy:cumulative:{user_id}", updated.model_dump_json(), self.cache_ttl
            )
        logger.info(
            "cumulative_accuracy_merged",
            user_id=user_id,
            overall=updated.overall,
            count=updated.calculation_count,
            advanced=weighted is not None,
        )
        return MergeOutcome(updated, skills, weighted)

    async def get(self, user_id: str) -> CumulativeAccuracy | None:
        return cumulative_from_document(await self.store.find_one(user_id))
