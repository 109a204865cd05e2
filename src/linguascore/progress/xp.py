"""XP engine and level curve. Pure functions; no I/O."""

import math

from linguascore.models.accuracy import UserTier
from linguascore.models.xp import LevelProgression, XPCalculation, XPInput
from linguascore.progress.weighted import round_half_up

XP_PER_ACCURACY_POINT = 0.5
MAX_ACCURACY_XP = 50.0
XP_FLOOR = 5
XP_CEILING = 500

TIER_MULTIPLIERS: dict[UserTier, float] = {
    UserTier.FREE: 1.0,
    UserTier.PRO: 1.25,
    UserTier.PREMIUM: 1.5,
}

# (minimum accuracy, multiplier), checked top-down
ACCURACY_MULTIPLIERS: tuple[tuple[float, float], ...] = (
    (95.0, 1.2),
    (85.0, 1.1),
    (70.0, 1.0),
    (50.0, 0.9),
)
LOW_ACCURACY_MULTIPLIER = 0.8

STREAK_BONUS_PER_DAY = 0.05
PRECISION_BONUS = 0.10
PRECISION_THRESHOLD = 95.0
MAX_BONUS = 0.50

PENALTY_SIGMOID_K = 0.15
PENALTY_SIGMOID_X0 = 5.0
MAX_ERROR_PENALTY = 0.50
CRITICAL_ERROR_PENALTY = 0.05

LEVEL_BASE_XP = 100
LEVEL_EXPONENT = 1.3
MAX_LEVEL = 100


def accuracy_multiplier(accuracy: float) -> float:
    for threshold, multiplier in ACCURACY_MULTIPLIERS:
        if accuracy >= threshold:
            return multiplier
    return LOW_ACCURACY_MULTIPLIER


def _sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-PENALTY_SIGMOID_K * (x - PENALTY_SIGMOID_X0)))


def error_penalty_rate(error_count: int, critical_error_count: int = 0) -> float:
    """Share of base XP lost to errors.

    The sigmoid is shifted so zero errors cost nothing and grows toward
    MAX_ERROR_PENALTY; each critical error costs a further 5%.
    """
    if error_count <= 0 and critical_error_count <= 0:
        return 0.0
    baseline = _sigmoid(0)
    scaled = (_sigmoid(error_count) - baseline) / (1 - baseline)
    rate = MAX_ERROR_PENALTY * max(0.0, scaled)
    return rate + CRITICAL_ERROR_PENALTY * critical_error_count


def calculate_total_xp(
    params: XPInput, floor: int = XP_FLOOR, ceiling: int = XP_CEILING
) -> XPCalculation:
    """XP award for one message.

    Args:
        params: Accuracy, streak, tier multiplier and error counts.
        floor: Minimum award.
        ceiling: Maximum award.

    Returns:
        XPCalculation whose ``net_xp`` lies in ``[floor, ceiling]``.
    """
    base_xp = min(
        params.base_amount + params.accuracy * XP_PER_ACCURACY_POINT,
        params.base_amount + MAX_ACCURACY_XP,
    )
    acc_mult = accuracy_multiplier(params.accuracy)
    earned = base_xp * acc_mult

    streak_bonus = params.streak_days * STREAK_BONUS_PER_DAY
    precision_bonus = PRECISION_BONUS if params.accuracy >= PRECISION_THRESHOLD else 0.0
    if params.is_perfect_message:
        bonus_rate = MAX_BONUS
    else:
        bonus_rate = min(MAX_BONUS, streak_bonus + precision_bonus)
    bonus_xp = earned * bonus_rate

    penalty = base_xp * error_penalty_rate(params.error_count, params.critical_error_count)
    penalty = min(penalty, earned + bonus_xp)

    total = (earned + bonus_xp - penalty) * params.tier_multiplier
    net_xp = int(max(floor, min(ceiling, round_half_up(total))))

    return XPCalculation(
        base_xp=round(base_xp, 2),
        accuracy_multiplier=acc_mult,
        tier_multiplier=params.tier_multiplier,
        streak_bonus=round(min(streak_bonus, MAX_BONUS), 2),
        precision_bonus=precision_bonus,
        bonus_xp=round(bonus_xp, 2),
        penalty_amount=round(penalty, 2),
        net_xp=net_xp,
        floor=floor,
        ceiling=ceiling,
    )


def xp_for_level(level: int) -> int:
    """XP needed to go from ``level - 1`` to ``level``."""
    if level <= 1:
        return 0
    return math.floor(LEVEL_BASE_XP * level**LEVEL_EXPONENT)


def cumulative_xp_for_level(level: int) -> int:
    """Total XP needed to reach ``level`` from level 1."""
    return sum(xp_for_level(n) for n in range(2, level + 1))


def level_from_xp(total_xp: int) -> int:
    level = 1
    needed = 0
    while level < MAX_LEVEL:
        needed += xp_for_level(level + 1)
        if total_xp < needed:
            break
        level += 1
    return level


def check_level_up(total_xp: int, current_level: int) -> LevelProgression:
    """Level state after reaching ``total_xp`` XP."""
    level = level_from_xp(total_xp)
    floor_xp = cumulative_xp_for_level(level)
    if level >= MAX_LEVEL:
        next_xp = floor_xp
        progress = 100.0
    else:
        next_xp = cumulative_xp_for_level(level + 1)
        progress = round((total_xp - floor_xp) / (next_xp - floor_xp) * 100, 1)
    return LevelProgression(
        current_level=level,
        current_xp=total_xp,
        xp_for_current_level=floor_xp,
        xp_for_next_level=next_xp,
        xp_required=max(0, next_xp - total_xp),
        progress=progress,
        leveled_up=level > current_level,
        levels_gained=max(0, level - current_level),
    )
