"""Detected error models."""

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ErrorType(StrEnum):
    GRAMMAR = "grammar"
    SPELLING = "spelling"
    VOCABULARY = "vocabulary"
    FLUENCY = "fluency"
    PUNCTUATION = "punctuation"
    CAPITALIZATION = "capitalization"
    SYNTAX = "syntax"
    STYLE = "style"
    COHERENCE = "coherence"
    IDIOM = "idiom"
    COLLOCATION = "collocation"
    SEMANTIC = "semantic"
    TEXTSPEAK = "textspeak"


class ErrorCategory(StrEnum):
    CORRECTNESS = "correctness"
    CLARITY = "clarity"
    ENGAGEMENT = "engagement"
    DELIVERY = "delivery"
    STYLE = "style"


class Severity(StrEnum):
    """Severity scale, most to least serious."""

    CRITICAL = "critical"
    MAJOR = "major"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    SUGGESTION = "suggestion"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 5,
    Severity.MAJOR: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.SUGGESTION: 0,
}


# The eight scored dimensions
SCORE_CATEGORIES: tuple[str, ...] = (
    "grammar",
    "vocabulary",
    "spelling",
    "fluency",
    "punctuation",
    "capitalization",
    "syntax",
    "coherence",
)

# Error types outside the eight score categories fold into the nearest one
_TYPE_TO_SCORE_CATEGORY: dict[ErrorType, str] = {
    ErrorType.STYLE: "coherence",
    ErrorType.IDIOM: "vocabulary",
    ErrorType.COLLOCATION: "vocabulary",
    ErrorType.SEMANTIC: "vocabulary",
    ErrorType.TEXTSPEAK: "spelling",
}


_TYPE_TO_ERROR_CATEGORY: dict[ErrorType, ErrorCategory] = {
    ErrorType.FLUENCY: ErrorCategory.CLARITY,
    ErrorType.SYNTAX: ErrorCategory.CLARITY,
    ErrorType.COHERENCE: ErrorCategory.CLARITY,
    ErrorType.VOCABULARY: ErrorCategory.ENGAGEMENT,
    ErrorType.IDIOM: ErrorCategory.ENGAGEMENT,
    ErrorType.COLLOCATION: ErrorCategory.ENGAGEMENT,
    ErrorType.STYLE: ErrorCategory.STYLE,
    ErrorType.TEXTSPEAK: ErrorCategory.DELIVERY,
}


def category_for(error_type: ErrorType) -> ErrorCategory:
    """Default reader-facing category for an error type."""
    return _TYPE_TO_ERROR_CATEGORY.get(error_type, ErrorCategory.CORRECTNESS)


class ErrorPosition(BaseModel):
    """Character span of an issue in the analysed text."""

    model_config = ConfigDict(frozen=True)

    start: int = -1
    end: int = -1
    word: str = ""
    context: str = ""


class ErrorDetail(BaseModel):
    """One detected issue. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    type: ErrorType
    category: ErrorCategory = ErrorCategory.CORRECTNESS
    message: str
    position: ErrorPosition = Field(default_factory=ErrorPosition)
    severity: Severity = Severity.MEDIUM
    suggestion: str = ""
    alternatives: tuple[str, ...] = ()
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    source: str = "unknown"
    rule: str = ""
    explanation: str = ""

    @property
    def score_category(self) -> str:
        """Which of the eight score categories this error counts against."""
        return _TYPE_TO_SCORE_CATEGORY.get(self.type, self.type.value)

    def with_source(self, source: str) -> "ErrorDetail":
        """Copy of this error tagged with the producing detector."""
        return self.model_copy(update={"source": source})
