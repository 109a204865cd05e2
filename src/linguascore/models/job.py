"""Background job models."""

import time
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from linguascore.models.accuracy import UserTier


class JobState(StrEnum):
    """Job lifecycle states."""

    QUEUED = "queued"
    ACTIVE = "active"
    DELAYED = "delayed"  # failed, waiting for its retry backoff
    COMPLETED = "completed"
    DEAD = "dead"


class AccuracyJob(BaseModel):
    """Payload for one accuracy analysis of a chat turn."""

    user_id: str
    user_message: str
    ai_response: str = ""
    user_tier: UserTier = UserTier.FREE
    user_level: str | None = None
    previous_accuracy: dict[str, float] | None = None
    streak_days: int | None = None
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))

    @property
    def job_id(self) -> str:
        """Deterministic per (user_id, timestamp) so resubmission is a no-op."""
        return f"{self.user_id}-{self.timestamp}"

    @property
    def priority(self) -> int:
        return self.user_tier.queue_priority


class JobResult(BaseModel):
    job_id: str
    success: bool = True
    accuracy: float = 0.0
    xp_gained: int = 0
    duration_ms: float = 0.0


class JobRecord(BaseModel):
    """Queue-side bookkeeping for a job."""

    job: AccuracyJob
    state: JobState = JobState.QUEUED
    attempts_made: int = 0
    enqueued_at: datetime = Field(default_factory=datetime.now)
    available_at: float = 0.0  # monotonic time when a delayed job becomes runnable
    finished_at: datetime | None = None
    last_error: str | None = None
    result: JobResult | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def job_id(self) -> str:
        return self.job.job_id
