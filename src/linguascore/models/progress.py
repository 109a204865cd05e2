"""Progress delta models for batched persistence."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class UpdatePriority(StrEnum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class ProgressUpdate(BaseModel):
    """One small progress delta for a user."""

    user_id: str
    minutes_practiced: float = 0.0
    messages_count: int = 0
    activity_type: str | None = None
    accuracy: float | None = None
    xp: int = 0
    session_duration: float = 0.0  # seconds
    session_messages: int = 0
    timestamp: datetime = Field(default_factory=datetime.now)
    priority: UpdatePriority = UpdatePriority.NORMAL


class BatchedUpdate(BaseModel):
    """Deltas accumulated for one user between flushes."""

    user_id: str
    streak_minutes: float = 0.0
    streak_messages: int = 0
    activity_types: set[str] = Field(default_factory=set)
    accuracy_scores: list[float] = Field(default_factory=list)
    xp_gained: int = 0
    session_duration: float = 0.0
    total_messages: int = 0
    first_update: datetime = Field(default_factory=datetime.now)
    last_update: datetime = Field(default_factory=datetime.now)
    version: int = 0  # bumped on every merged delta

    def add(self, update: ProgressUpdate) -> None:
        self.streak_minutes += update.minutes_practiced
        self.streak_messages += update.messages_count
        if update.activity_type:
            self.activity_types.add(update.activity_type)
        if update.accuracy is not None:
            self.accuracy_scores.append(update.accuracy)
        self.xp_gained += update.xp
        self.session_duration += update.session_duration
        self.total_messages += update.session_messages
        self.last_update = update.timestamp
        self.version += 1

    def absorb(self, other: "BatchedUpdate") -> None:
        """Fold an older, unflushed batch back in ahead of this one."""
        self.streak_minutes += other.streak_minutes
        self.streak_messages += other.streak_messages
        self.activity_types |= other.activity_types
        self.accuracy_scores = other.accuracy_scores + self.accuracy_scores
        self.xp_gained += other.xp_gained
        self.session_duration += other.session_duration
        self.total_messages += other.total_messages
        self.first_update = min(self.first_update, other.first_update)
        self.version += other.version

    @property
    def average_accuracy(self) -> float | None:
        if not self.accuracy_scores:
            return None
        return sum(self.accuracy_scores) / len(self.accuracy_scores)
