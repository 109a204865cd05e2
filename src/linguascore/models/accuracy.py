"""Accuracy score models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from linguascore.models.errors import SCORE_CATEGORIES, ErrorDetail
from linguascore.models.xp import XPCalculation


class UserTier(StrEnum):
    """Subscription tier."""

    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return {UserTier.FREE: 0, UserTier.PRO: 1, UserTier.PREMIUM: 2}[self]

    @property
    def queue_priority(self) -> int:
        """Queue priority; lower dequeues first."""
        return {UserTier.PREMIUM: 1, UserTier.PRO: 2, UserTier.FREE: 3}[self]


class ProficiencyLevel(StrEnum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"
    EXPERT = "Expert"

    @classmethod
    def parse(cls, value: str | None) -> "ProficiencyLevel | None":
        """Case-insensitive lookup; unknown values yield None."""
        if not value:
            return None
        for level in cls:
            if level.value.lower() == value.strip().lower():
                return level
        return None


class AnalysisConfig(BaseModel):
    """Per-analysis options passed to detectors and the scorer."""

    tier: UserTier = UserTier.FREE
    proficiency: ProficiencyLevel | None = None
    weight_profile: str | None = None  # explicit override of the proficiency-derived profile
    language: str = "en-US"
    user_id: str | None = None
    enable_cache: bool = True


class SentenceType(StrEnum):
    QUESTION = "question"
    STATEMENT = "statement"


class CategoryScores(BaseModel):
    """Per-category scores (0-100 each)."""

    grammar: float = 100.0
    vocabulary: float = 100.0
    spelling: float = 100.0
    fluency: float = 100.0
    punctuation: float = 100.0
    capitalization: float = 100.0
    syntax: float = 100.0
    coherence: float = 100.0

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in SCORE_CATEGORIES}


class TextStatistics(BaseModel):
    """Counts gathered while scoring one message."""

    word_count: int = 0
    sentence_count: int = 0
    char_count: int = 0
    unique_word_count: int = 0
    avg_sentence_length: float = 0.0
    readability_grade: float = 0.0
    sentence_type: SentenceType = SentenceType.STATEMENT
    error_count: int = 0
    critical_error_count: int = 0
    errors_by_category: dict[str, int] = Field(default_factory=dict)
    errors_by_severity: dict[str, int] = Field(default_factory=dict)


class DeferredPenalties(BaseModel):
    """Penalty points computed by one stage and applied by the final merge."""

    grammar: float = 0.0
    vocabulary: float = 0.0
    fluency: float = 0.0
    spelling: float = 0.0

    @property
    def total(self) -> float:
        return self.grammar + self.vocabulary + self.fluency + self.spelling


class CorrectionAnalysis(BaseModel):
    """Corrections found in the AI tutor's reply."""

    detected_corrections: int = 0
    corrections: list[ErrorDetail] = Field(default_factory=list)
    penalties: DeferredPenalties = Field(default_factory=DeferredPenalties)
    no_corrections_signal: bool = False
    soft_hints: list[str] = Field(default_factory=list)
    appreciation_level: str = "moderate"  # "high", "minimal", "moderate", "none"
    severity_of_corrections: str = "none"  # "none", "minor", "moderate", "major"

    @property
    def has_correction_feedback(self) -> bool:
        return self.detected_corrections > 0


class DetectionSource(BaseModel):
    """How one detector fared for one analysis."""

    name: str
    status: str = "ok"  # "ok", "unavailable", "timeout", "error"
    error_count: int = 0
    duration_ms: float = 0.0
    confidence: float = 0.0


class AccuracyMetadata(BaseModel):
    processing_time_ms: float = 0.0
    confidence: float = 0.0
    detection_sources: list[DetectionSource] = Field(default_factory=list)
    cache_hit: bool = False
    tier: UserTier = UserTier.FREE
    weight_profile: str = "default"
    computed_categories: list[str] = Field(default_factory=list)

    @property
    def sources_used(self) -> list[str]:
        return [s.name for s in self.detection_sources if s.status == "ok"]


class AccuracyResult(BaseModel):
    """Full per-message scoring output."""

    timestamp: datetime = Field(default_factory=datetime.now)
    overall: float = 100.0
    adjusted_overall: float = 100.0
    category_scores: CategoryScores = Field(default_factory=CategoryScores)
    errors: list[ErrorDetail] = Field(default_factory=list)
    statistics: TextStatistics = Field(default_factory=TextStatistics)
    correction_analysis: CorrectionAnalysis = Field(default_factory=CorrectionAnalysis)
    xp: XPCalculation | None = None
    metadata: AccuracyMetadata = Field(default_factory=AccuracyMetadata)

    def snapshot(self) -> dict[str, float]:
        """Message-level values handed to the cumulative aggregator."""
        values = {"overall": self.overall, "adjusted_overall": self.adjusted_overall}
        values.update(self.category_scores.as_dict())
        return values


# Fields tracked in the running average, in merge order
CUMULATIVE_FIELDS: tuple[str, ...] = ("overall", "adjusted_overall") + SCORE_CATEGORIES


class CumulativeAccuracy(BaseModel):
    """Per-user running average across all merged messages."""

    overall: float = 0.0
    adjusted_overall: float = 0.0
    grammar: float = 0.0
    vocabulary: float = 0.0
    spelling: float = 0.0
    fluency: float = 0.0
    punctuation: float = 0.0
    capitalization: float = 0.0
    syntax: float = 0.0
    coherence: float = 0.0
    calculation_count: int = 0
    last_calculated: datetime | None = None

    def values(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in CUMULATIVE_FIELDS}


class SkillsUpdate(BaseModel):
    """Skill fields mirrored from the cumulative record.

    ``accuracy`` and ``overall_accuracy`` carry the same value; downstream
    readers use either name.
    """

    accuracy: float | None = None
    overall_accuracy: float | None = None
    grammar: float | None = None
    vocabulary: float | None = None
    fluency: float | None = None
