"""Accuracy analyzer: runs detectors, scores, merges deferred penalties."""

import time
from collections import Counter

import structlog

from linguascore.detection.base import DetectorRegistry
from linguascore.models.accuracy import (
    AccuracyMetadata,
    AccuracyResult,
    AnalysisConfig,
    CategoryScores,
)
from linguascore.models.errors import ErrorDetail, Severity
from linguascore.scoring.corrections import apply_deferred_penalties, extract_corrections
from linguascore.scoring.metrics import compute_text_statistics
from linguascore.scoring.scorer import CategoryScorer
from linguascore.scoring.weights import select_profile
from linguascore.storage.cache import CacheService, text_cache_key

logger = structlog.get_logger()


def deduplicate(errors: list[ErrorDetail]) -> list[ErrorDetail]:
    """Keep one error per (span, score category), the most severe.

    Errors without a position are kept as-is. Input order (detector
    priority) breaks severity ties.
    """
    kept: dict[tuple[int, int, str], ErrorDetail] = {}
    unpositioned: list[ErrorDetail] = []
    for error in errors:
        if error.position.start < 0:
            unpositioned.append(error)
            continue
        key = (error.position.start, error.position.end, error.score_category)
        current = kept.get(key)
        if current is None or error.severity.rank > current.severity.rank:
            kept[key] = error
    ordered = sorted(kept.values(), key=lambda e: (e.position.start, e.position.end))
    return ordered + unpositioned


class AccuracyAnalyzer:
    """Scores one learner message against the tutor's reply.

    Args:
        registry: Detectors to run.
        cache: Optional result cache.
        cache_ttl: Seconds to keep cached results.
        scorer: Category scorer (default instance when omitted).
    """

    def __init__(
        self,
        registry: DetectorRegistry,
        cache: CacheService | None = None,
        cache_ttl: int = 3600,
        scorer: CategoryScorer | None = None,
    ):
        self.registry = registry
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.scorer = scorer or CategoryScorer()

    async def analyze(
        self,
        user_message: str,
        ai_response: str = "",
        config: AnalysisConfig | None = None,
    ) -> AccuracyResult:
        config = config or AnalysisConfig()
        start = time.perf_counter()
        profile = select_profile(config)

        key = text_cache_key("accuracy", config.tier.value, profile.name, user_message, ai_response)
        if self.cache is not None and config.enable_cache:
            cached = await self.cache.get(key)
            if cached is not None:
                result = AccuracyResult.model_validate_json(cached)
                result.metadata.cache_hit = True
                result.metadata.processing_time_ms = round((time.perf_counter() - start) * 1000, 1)
                logger.debug("analysis_cache_hit", user_id=config.user_id)
                return result

        stats = compute_text_statistics(user_message)
        correction_analysis = extract_corrections(user_message, ai_response)

        if stats.word_count == 0:
            run_errors: list[ErrorDetail] = []
            sources = []
            confidence = 0.0
            computed: dict[str, float] = {}
            scores = CategoryScores()
            overall = 100.0
        else:
            run = await self.registry.run(user_message, config)
            run_errors = deduplicate(run.errors)
            sources = run.sources
            confidence = run.confidence

            categories = self.scorer.computed_categories(config, stats.word_count)
            computed = self.scorer.category_scores(run_errors, stats.word_count, categories)
            computed = apply_deferred_penalties(computed, correction_analysis.penalties)
            scores = self.scorer.fill_placeholders(computed)
            overall = self.scorer.overall(
                computed, profile, stats.word_count, stats.sentence_type
            )

        by_category = Counter(e.score_category for e in run_errors)
        by_severity = Counter(e.severity.value for e in run_errors)
        stats = stats.model_copy(
            update={
                "error_count": len(run_errors),
                "critical_error_count": by_severity.get(Severity.CRITICAL.value, 0),
                "errors_by_category": dict(by_category),
                "errors_by_severity": dict(by_severity),
            }
        )

        result = AccuracyResult(
            overall=overall,
            adjusted_overall=self.scorer.adjusted_overall(overall, run_errors),
            category_scores=scores,
            errors=run_errors,
            statistics=stats,
            correction_analysis=correction_analysis,
            metadata=AccuracyMetadata(
                processing_time_ms=round((time.perf_counter() - start) * 1000, 1),
                confidence=confidence,
                detection_sources=sources,
                tier=config.tier,
                weight_profile=profile.name,
                computed_categories=list(computed),
            ),
        )

        logger.info(
            "message_analyzed",
            user_id=config.user_id,
            overall=result.overall,
            adjusted_overall=result.adjusted_overall,
            errors=len(run_errors),
            corrections=correction_analysis.detected_corrections,
            sources=result.metadata.sources_used,
        )

        if self.cache is not None and config.enable_cache:
            await self.cache.set(key, result.model_dump_json(), self.cache_ttl)
        return result
