"""Advanced weighted accuracy with historical context.

Used for pro and premium learners: blends the new message with cached
history using adaptive weights, per-category responsiveness and trend
detection. Any failure falls back to a fixed 0.4 old / 0.6 new blend.
"""

import math
import time
from datetime import datetime

import numpy as np
import structlog
from pydantic import BaseModel, Field

from linguascore.exceptions import AdvancedAggregationError
from linguascore.storage.cache import CacheService

logger = structlog.get_logger()

# Higher = follows the latest message more closely
CATEGORY_RESPONSIVENESS: dict[str, float] = {
    "overall": 0.8,
    "grammar": 0.65,
    "vocabulary": 0.75,
    "spelling": 0.7,
    "fluency": 0.75,
    "punctuation": 0.75,
    "capitalization": 0.7,
    "syntax": 0.7,
    "coherence": 0.75,
}
RESPONSIVENESS_FACTOR = 0.5

# Weights used to recompute the overall from blended categories
OVERALL_WEIGHTS: dict[str, float] = {
    "grammar": 0.3,
    "vocabulary": 0.15,
    "spelling": 0.2,
    "fluency": 0.15,
    "punctuation": 0.1,
    "capitalization": 0.1,
}

LEGACY_WEIGHT_OLD = 0.4
LEGACY_WEIGHT_NEW = 0.6

TREND_WINDOW = 10
HISTORY_TTL_SECONDS = 3600


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> int:
    if not math.isfinite(value):
        return int(low)
    return int(max(low, min(high, round_half_up(value))))


class Trend(BaseModel):
    direction: str = "stable"  # "improving", "declining", "stable"
    confidence: float = 0.5
    recent_average: float = 0.0


class HistoricalContext(BaseModel):
    """Cached per-user history for the weighted blend."""

    user_id: str
    message_count: int = 0
    overall: float = 0.0
    categories: dict[str, float] = Field(default_factory=dict)
    trend: Trend = Field(default_factory=Trend)
    recent_overall: list[float] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=datetime.now)


class AdaptiveWeights(BaseModel):
    historical: float
    current: float


class WeightedAccuracyResult(BaseModel):
    current: dict[str, int]
    previous: dict[str, int]
    weighted: dict[str, int]
    weights: AdaptiveWeights
    trend: Trend
    message_count: int
    processing_time_ms: float = 0.0


def legacy_blend(
    previous: dict[str, float] | None, current: dict[str, float]
) -> dict[str, int]:
    """Fixed 0.4 old / 0.6 new blend, per category present in either input."""
    if not previous:
        return {k: round_half_up(v) for k, v in current.items()}
    merged = {}
    for key in current.keys() | previous.keys():
        cur, prev = current.get(key), previous.get(key)
        if cur is None:
            merged[key] = round_half_up(prev)
        elif prev is None:
            merged[key] = round_half_up(cur)
        else:
            merged[key] = round_half_up(prev * LEGACY_WEIGHT_OLD + cur * LEGACY_WEIGHT_NEW)
    return merged


def adaptive_weights(
    message_count: int,
    current_overall: float,
    trend: Trend | None = None,
) -> AdaptiveWeights:
    """Historical vs. current weight for this user's next message."""
    if message_count == 0:
        return AdaptiveWeights(historical=0.0, current=1.0)
    if message_count == 1:
        return AdaptiveWeights(historical=0.35, current=0.65)

    hist = 0.35
    if message_count >= 20:
        hist = 0.25
    elif message_count >= 10:
        hist = 0.1 + (message_count - 10) / 10 * 0.15

    # Low-quality messages lean slightly more on history
    if current_overall < 40:
        hist = min(0.10, hist * 1.5)
    elif current_overall < 70:
        hist = min(0.07, hist * 1.2)
    else:
        hist = max(0.03, hist * 0.8)

    if trend is not None:
        deviation = abs(trend.recent_average - current_overall)
        if deviation > 20:
            hist *= 0.4
        elif deviation > 12:
            hist *= 0.65

        confidence = min(0.95, trend.confidence or 0.5)
        if trend.direction == "declining" and confidence > 0.6:
            hist = max(hist - 0.1 * confidence, 0.05)
        elif trend.direction == "improving" and confidence > 0.6:
            hist = min(hist + 0.05 * confidence, 0.6)

    hist = max(0.05, min(hist, 0.35))
    curr = max(0.65, min(1 - hist, 0.95))
    return AdaptiveWeights(historical=round(hist, 2), current=round(curr, 2))


def compute_trend(values: list[float], message_count: int) -> Trend:
    """Slope of a least-squares line over the recent overall scores."""
    if len(values) < 2:
        return Trend(recent_average=values[-1] if values else 0.0)
    window = np.asarray(values[-TREND_WINDOW:], dtype=float)
    slope = float(np.polyfit(np.arange(len(window)), window, 1)[0])
    if slope > 1.0:
        direction = "improving"
    elif slope < -1.0:
        direction = "declining"
    else:
        direction = "stable"
    confidence = max(0.1, min(0.95, 1 - math.exp(-message_count / 200)))
    return Trend(
        direction=direction,
        confidence=round(confidence, 2),
        recent_average=round(float(window.mean()), 1),
    )


def blend_categories(
    current: dict[str, int],
    previous: dict[str, int],
    weights: AdaptiveWeights,
) -> dict[str, int]:
    """Per-category blend plus a recomputed, boost-limited overall."""
    result: dict[str, int] = {}
    for name, cur in current.items():
        if name == "overall":
            continue
        prev = previous.get(name, cur)
        resp = CATEGORY_RESPONSIVENESS.get(name, 0.5)
        hist_w = max(0.0, weights.historical * (1 - resp * RESPONSIVENESS_FACTOR))
        cur_w = max(0.0, weights.current * (1 + resp * RESPONSIVENESS_FACTOR))
        total = hist_w + cur_w or 1.0
        blended = (prev * hist_w + cur * cur_w) / total
        # Blending never lifts a category more than 4 points above both inputs
        result[name] = round_half_up(min(blended, max(cur, prev) + 4))

    score = weight_sum = 0.0
    for name, weight in OVERALL_WEIGHTS.items():
        if name not in result:
            continue
        volatility = abs(result[name] - previous.get(name, 0))
        score += result[name] * weight * (0.9 if volatility > 25 else 1.0)
        weight_sum += weight
    computed = _clamp(score / weight_sum) if weight_sum else current.get("overall", 0)

    cur_overall = current.get("overall", 0)
    prev_overall = previous.get("overall", 0)
    if 70 <= cur_overall <= 85:
        max_boost = 3
    elif cur_overall > 85:
        max_boost = 4
    else:
        max_boost = 6
    result["overall"] = min(computed, max(cur_overall, prev_overall) + max_boost)
    return result


def smooth(weighted: dict[str, int], previous: dict[str, int], message_count: int) -> dict[str, int]:
    """Damp sharp drops for users with history; rises pass through."""
    if message_count < 2:
        return weighted
    result = {}
    for name, value in weighted.items():
        prev = previous.get(name, value)
        diff = value - prev
        if diff < -15:
            factor = min(0.92, math.log10(message_count + 1) / 1.2)
            result[name] = _clamp(prev + diff * factor)
        else:
            result[name] = _clamp(value)
    w_overall = weighted.get("overall", 0)
    max_allowed = min(w_overall + 3, max(w_overall, previous.get("overall", 0) + 5))
    if result.get("overall", 0) > max_allowed:
        result["overall"] = _clamp(max_allowed)
    return result


class AdvancedWeightedAccuracy:
    """Adaptive blend backed by a historical-context cache.

    Args:
        cache: Where per-user history lives; without one the advanced path
            is unavailable and callers get the legacy blend.
        ttl_seconds: History lifetime in the cache.
    """

    def __init__(self, cache: CacheService | None, ttl_seconds: int = HISTORY_TTL_SECONDS):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(user_id: str) -> str:
        return f"accuracy:historical:{user_id}"

    async def load_context(self, user_id: str) -> HistoricalContext | None:
        if self.cache is None:
            raise AdvancedAggregationError("no historical context store configured")
        raw = await self.cache.get(self._key(user_id))
        if raw is None:
            return None
        return HistoricalContext.model_validate_json(raw)

    async def calculate(
        self,
        user_id: str,
        current: dict[str, float],
        previous: dict[str, float] | None = None,
    ) -> WeightedAccuracyResult:
        """Blend ``current`` with the user's cached history."""
        start = time.perf_counter()
        if not user_id:
            raise AdvancedAggregationError("user id required")

        context = await self.load_context(user_id)
        cur = {k: _clamp(v) for k, v in current.items()}
        prev_source = context.categories if context else (previous or {})
        prev = {k: _clamp(v) for k, v in prev_source.items()}
        message_count = context.message_count if context else 0

        weights = adaptive_weights(
            message_count, cur.get("overall", 0), context.trend if context else None
        )
        weighted = blend_categories(cur, prev or cur, weights)
        smoothed = smooth(weighted, prev or cur, message_count)

        recent = (context.recent_overall if context else []) + [float(smoothed["overall"])]
        recent = recent[-TREND_WINDOW:]
        trend = compute_trend(recent, message_count + 1)

        updated = HistoricalContext(
            user_id=user_id,
            message_count=message_count + 1,
            overall=smoothed["overall"],
            categories={k: float(v) for k, v in smoothed.items()},
            trend=trend,
            recent_overall=recent,
        )
        await self.cache.set(self._key(user_id), updated.model_dump_json(), self.ttl_seconds)

        return WeightedAccuracyResult(
            current=cur,
            previous=prev,
            weighted=smoothed,
            weights=weights,
            trend=trend,
            message_count=message_count,
            processing_time_ms=round((time.perf_counter() - start) * 1000, 1),
        )

    async def blend_with_history(
        self,
        previous: dict[str, float] | None,
        current: dict[str, float],
        user_id: str | None,
    ) -> dict[str, int]:
        """Advanced blend when possible, legacy 0.4/0.6 blend otherwise.

        Never raises: failures are logged and the fallback is returned.
        """
        if user_id:
            try:
                result = await self.calculate(user_id, current, previous)
                return result.weighted
            except Exception:
                logger.warning("advanced_weighting_failed", user_id=user_id, exc_info=True)
        return legacy_blend(previous, current)
