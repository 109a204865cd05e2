"""Category scorer: error list to eight 0-100 scores and an overall score."""

import math
from collections import defaultdict

import structlog

from linguascore.models.accuracy import (
    AnalysisConfig,
    CategoryScores,
    SentenceType,
)
from linguascore.models.errors import ErrorDetail, Severity
from linguascore.scoring.metrics import detect_sentence_type, tokenize
from linguascore.scoring.weights import (
    SEVERITY_WEIGHTS,
    TIER_FEATURES,
    WeightProfile,
    select_profile,
)

logger = structlog.get_logger()

# Points lost per penalty unit in messages of up to REFERENCE_WORDS words
POINTS_PER_UNIT = 3.0
REFERENCE_WORDS = 20

# Categories that need more than one word of evidence
MULTI_WORD_CATEGORIES = ("fluency", "coherence")

CRITICAL_PENALTY_PER_ERROR = 3.0
CRITICAL_PENALTY_CAP = 15.0


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def length_factor(word_count: int) -> float:
    """Shrinks the per-error cost for messages longer than the reference length."""
    return math.sqrt(REFERENCE_WORDS / max(word_count, REFERENCE_WORDS))


class CategoryScorer:
    """Turns a merged error list into category scores and an overall score.

    Categories a tier does not compute (and fluency/coherence for one-word
    messages) get a neutral placeholder and carry no weight in the overall.
    """

    def computed_categories(self, config: AnalysisConfig, word_count: int) -> tuple[str, ...]:
        categories = TIER_FEATURES[config.tier].categories
        if word_count <= 1:
            categories = tuple(c for c in categories if c not in MULTI_WORD_CATEGORIES)
        return categories

    def category_scores(
        self,
        errors: list[ErrorDetail],
        word_count: int,
        categories: tuple[str, ...],
    ) -> dict[str, float]:
        """Base score per computed category before deferred penalties."""
        units: dict[str, float] = defaultdict(float)
        for error in errors:
            units[error.score_category] += SEVERITY_WEIGHTS[error.severity] * error.confidence

        factor = length_factor(word_count)
        return {
            name: round(_clamp(100.0 - units[name] * POINTS_PER_UNIT * factor), 1)
            for name in categories
        }

    @staticmethod
    def fill_placeholders(computed: dict[str, float]) -> CategoryScores:
        """Full score set with uncomputed categories at the computed mean."""
        placeholder = round(sum(computed.values()) / len(computed), 1) if computed else 100.0
        scores = CategoryScores(
            grammar=placeholder,
            vocabulary=placeholder,
            spelling=placeholder,
            fluency=placeholder,
            punctuation=placeholder,
            capitalization=placeholder,
            syntax=placeholder,
            coherence=placeholder,
        )
        return scores.model_copy(update=computed)

    @staticmethod
    def weighted_overall(computed: dict[str, float], profile: WeightProfile) -> float:
        """Convex combination of the computed category scores."""
        if not computed:
            return 100.0
        weights = profile.weights.normalized(tuple(computed))
        return sum(computed[name] * weight for name, weight in weights.items())

    def overall(
        self,
        computed: dict[str, float],
        profile: WeightProfile,
        word_count: int,
        sentence_type: SentenceType,
    ) -> float:
        """Weighted overall with length and sentence-type modifiers applied."""
        base = self.weighted_overall(computed, profile)
        modifier = profile.modifiers.length_modifier(word_count)
        if sentence_type == SentenceType.QUESTION:
            modifier *= profile.modifiers.question_type
        else:
            modifier *= profile.modifiers.statement_type
        return round(_clamp(base * modifier), 1)

    @staticmethod
    def adjusted_overall(overall: float, errors: list[ErrorDetail]) -> float:
        criticals = sum(1 for e in errors if e.severity == Severity.CRITICAL)
        penalty = min(CRITICAL_PENALTY_CAP, criticals * CRITICAL_PENALTY_PER_ERROR)
        return round(_clamp(overall - penalty), 1)

    def score(
        self, text: str, errors: list[ErrorDetail], config: AnalysisConfig
    ) -> tuple[CategoryScores, float]:
        """Score a message without deferred penalties.

        Args:
            text: The learner's message.
            errors: Merged detector findings for ``text``.
            config: Tier, proficiency and profile selection.

        Returns:
            (category scores, overall score).
        """
        words = tokenize(text)
        if not words:
            return CategoryScores(), 100.0

        categories = self.computed_categories(config, len(words))
        computed = self.category_scores(errors, len(words), categories)
        profile = select_profile(config)
        overall = self.overall(computed, profile, len(words), detect_sentence_type(text))
        logger.debug(
            "message_scored",
            profile=profile.name,
            tier=config.tier.value,
            overall=overall,
            error_count=len(errors),
        )
        return self.fill_placeholders(computed), overall
