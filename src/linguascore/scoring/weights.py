"""Weight profiles, context modifiers, tier features and severity weights."""

from pydantic import BaseModel, ConfigDict, Field

from linguascore.models.accuracy import AnalysisConfig, ProficiencyLevel, UserTier
from linguascore.models.errors import SCORE_CATEGORIES, Severity

# Penalty units per error, scaled by the error's confidence
SEVERITY_WEIGHTS: dict[Severity, float] = {
    Severity.CRITICAL: 10.0,
    Severity.MAJOR: 6.0,
    Severity.HIGH: 6.0,
    Severity.MEDIUM: 3.0,
    Severity.LOW: 1.0,
    Severity.SUGGESTION: 0.0,
}


class CategoryWeights(BaseModel):
    """Relative weight of each score category in the overall score."""

    model_config = ConfigDict(frozen=True)

    grammar: float = Field(default=0.25, ge=0)
    vocabulary: float = Field(default=0.20, ge=0)
    spelling: float = Field(default=0.15, ge=0)
    fluency: float = Field(default=0.15, ge=0)
    punctuation: float = Field(default=0.10, ge=0)
    capitalization: float = Field(default=0.10, ge=0)
    syntax: float = Field(default=0.03, ge=0)
    coherence: float = Field(default=0.02, ge=0)

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in SCORE_CATEGORIES}

    def normalized(self, categories: tuple[str, ...] | list[str] = SCORE_CATEGORIES) -> dict[str, float]:
        """Weights restricted to ``categories`` and rescaled to sum to 1.0."""
        subset = {name: getattr(self, name) for name in categories}
        total = sum(subset.values())
        if total <= 0:
            return {name: 1.0 / len(subset) for name in subset} if subset else {}
        return {name: weight / total for name, weight in subset.items()}


class ContextModifiers(BaseModel):
    """Multipliers on the overall score by message length and sentence type."""

    model_config = ConfigDict(frozen=True)

    short_message: float = 0.90  # < 10 words
    medium_message: float = 1.00  # 10-50 words
    long_message: float = 1.05  # > 50 words
    question_type: float = 1.02
    statement_type: float = 1.00

    def length_modifier(self, word_count: int) -> float:
        if word_count < 10:
            return self.short_message
        if word_count > 50:
            return self.long_message
        return self.medium_message


class WeightProfile(BaseModel):
    """Named bundle of category weights and context modifiers."""

    model_config = ConfigDict(frozen=True)

    name: str
    weights: CategoryWeights = Field(default_factory=CategoryWeights)
    modifiers: ContextModifiers = Field(default_factory=ContextModifiers)

    def with_overrides(
        self,
        weights: dict[str, float] | None = None,
        modifiers: dict[str, float] | None = None,
    ) -> "WeightProfile":
        """Copy with selected weights or modifiers replaced (validated)."""
        return WeightProfile(
            name=self.name,
            weights=CategoryWeights(**{**self.weights.model_dump(), **(weights or {})}),
            modifiers=ContextModifiers(**{**self.modifiers.model_dump(), **(modifiers or {})}),
        )


WEIGHT_PROFILES: dict[str, WeightProfile] = {
    "default": WeightProfile(name="default"),
    "beginner": WeightProfile(
        name="beginner",
        weights=CategoryWeights(
            grammar=0.30,
            vocabulary=0.15,
            spelling=0.20,
            fluency=0.15,
            punctuation=0.10,
            capitalization=0.08,
            syntax=0.01,
            coherence=0.01,
        ),
        modifiers=ContextModifiers(
            short_message=0.95, long_message=1.03, question_type=1.00
        ),
    ),
    # Sums to 1.13; normalized() rescales it
    "advanced": WeightProfile(
        name="advanced",
        weights=CategoryWeights(
            grammar=0.20,
            vocabulary=0.22,
            spelling=0.15,
            fluency=0.18,
            punctuation=0.10,
            capitalization=0.10,
            syntax=0.08,
            coherence=0.10,
        ),
        modifiers=ContextModifiers(
            short_message=0.85, long_message=1.10, question_type=1.05
        ),
    ),
}

_PROFILE_BY_LEVEL: dict[ProficiencyLevel, str] = {
    ProficiencyLevel.BEGINNER: "beginner",
    ProficiencyLevel.ADVANCED: "advanced",
    ProficiencyLevel.EXPERT: "advanced",
}


def select_profile(config: AnalysisConfig) -> WeightProfile:
    """Explicit profile name wins; otherwise derive it from proficiency."""
    if config.weight_profile and config.weight_profile in WEIGHT_PROFILES:
        return WEIGHT_PROFILES[config.weight_profile]
    name = _PROFILE_BY_LEVEL.get(config.proficiency, "default") if config.proficiency else "default"
    return WEIGHT_PROFILES[name]


class TierFeatures(BaseModel):
    """What a subscription tier computes and reports."""

    model_config = ConfigDict(frozen=True)

    tier: UserTier
    categories: tuple[str, ...]
    style_analysis: bool = False
    advanced_weighting: bool = False
    detailed_explanations: bool = False
    max_feedback_points: int = 5
    max_suggestions: int = 3


_BASIC_CATEGORIES = (
    "grammar",
    "vocabulary",
    "spelling",
    "fluency",
    "punctuation",
    "capitalization",
)

TIER_FEATURES: dict[UserTier, TierFeatures] = {
    UserTier.FREE: TierFeatures(tier=UserTier.FREE, categories=_BASIC_CATEGORIES),
    UserTier.PRO: TierFeatures(
        tier=UserTier.PRO,
        categories=SCORE_CATEGORIES,
        advanced_weighting=True,
        detailed_explanations=True,
        max_feedback_points=20,
        max_suggestions=10,
    ),
    UserTier.PREMIUM: TierFeatures(
        tier=UserTier.PREMIUM,
        categories=SCORE_CATEGORIES,
        style_analysis=True,
        advanced_weighting=True,
        detailed_explanations=True,
        max_feedback_points=50,
        max_suggestions=25,
    ),
}
