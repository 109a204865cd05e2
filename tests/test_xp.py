"""Tests for the XP engine and level curve."""

import pytest

from linguascore.models.accuracy import UserTier
from linguascore.models.xp import XPInput
from linguascore.progress.xp import (
    MAX_LEVEL,
    TIER_MULTIPLIERS,
    accuracy_multiplier,
    calculate_total_xp,
    check_level_up,
    cumulative_xp_for_level,
    error_penalty_rate,
    level_from_xp,
    xp_for_level,
)


class TestCalculateTotalXP:
    def test_perfect_message(self):
        result = calculate_total_xp(
            XPInput(base_amount=10, accuracy=100, streak_days=0, tier_multiplier=1.0, is_perfect_message=True)
        )
        assert 5 <= result.net_xp <= 500
        assert result.net_xp == 108
        assert result.total_xp == result.net_xp

    def test_higher_accuracy_earns_more(self):
        perfect = calculate_total_xp(XPInput(accuracy=100, is_perfect_message=True))
        half = calculate_total_xp(XPInput(accuracy=50, is_perfect_message=True))
        assert perfect.net_xp > half.net_xp
        assert 5 <= half.net_xp <= 500

    def test_accuracy_multiplier_bands(self):
        assert accuracy_multiplier(100) == 1.2
        assert accuracy_multiplier(90) == 1.1
        assert accuracy_multiplier(70) == 1.0
        assert accuracy_multiplier(55) == 0.9
        assert accuracy_multiplier(10) == 0.8

    def test_streak_bonus_capped(self):
        short = calculate_total_xp(XPInput(accuracy=80, streak_days=2))
        long = calculate_total_xp(XPInput(accuracy=80, streak_days=10))
        longer = calculate_total_xp(XPInput(accuracy=80, streak_days=100))
        assert short.net_xp < long.net_xp
        assert long.net_xp == longer.net_xp
        assert longer.streak_bonus == 0.5

    def test_precision_bonus(self):
        result = calculate_total_xp(XPInput(accuracy=96))
        assert result.precision_bonus == 0.10
        assert calculate_total_xp(XPInput(accuracy=94)).precision_bonus == 0.0

    def test_tier_multiplier(self):
        free = calculate_total_xp(XPInput(accuracy=80, tier_multiplier=TIER_MULTIPLIERS[UserTier.FREE]))
        premium = calculate_total_xp(XPInput(accuracy=80, tier_multiplier=TIER_MULTIPLIERS[UserTier.PREMIUM]))
        assert premium.net_xp > free.net_xp

    def test_errors_reduce_xp(self):
        clean = calculate_total_xp(XPInput(accuracy=80))
        sloppy = calculate_total_xp(XPInput(accuracy=80, error_count=8, critical_error_count=2))
        assert sloppy.net_xp < clean.net_xp
        assert sloppy.penalty_amount > 0

    def test_floor(self):
        result = calculate_total_xp(XPInput(accuracy=0, error_count=50, critical_error_count=10))
        assert result.net_xp == 5

    def test_ceiling(self):
        result = calculate_total_xp(
            XPInput(accuracy=100, is_perfect_message=True, tier_multiplier=20.0)
        )
        assert result.net_xp == 500

    def test_custom_bounds(self):
        result = calculate_total_xp(XPInput(accuracy=0, error_count=50), floor=1, ceiling=50)
        assert result.floor == 1
        assert 1 <= result.net_xp <= 50

    def test_input_validation(self):
        with pytest.raises(ValueError):
            XPInput(accuracy=120)


class TestErrorPenaltyRate:
    def test_zero_errors_cost_nothing(self):
        assert error_penalty_rate(0) == 0.0

    def test_grows_with_errors(self):
        rates = [error_penalty_rate(n) for n in (1, 5, 10, 30)]
        assert rates == sorted(rates)
        assert rates[-1] <= 0.5

    def test_critical_errors_add(self):
        assert error_penalty_rate(3, 2) == pytest.approx(error_penalty_rate(3) + 0.10)


class TestLevels:
    def test_xp_for_level(self):
        assert xp_for_level(1) == 0
        assert xp_for_level(2) == 246
        assert xp_for_level(3) == 417

    def test_cumulative(self):
        assert cumulative_xp_for_level(1) == 0
        assert cumulative_xp_for_level(3) == 246 + 417

    def test_level_from_xp(self):
        assert level_from_xp(0) == 1
        assert level_from_xp(245) == 1
        assert level_from_xp(246) == 2
        assert level_from_xp(10**9) == MAX_LEVEL

    def test_check_level_up(self):
        progression = check_level_up(300, 1)
        assert progression.current_level == 2
        assert progression.leveled_up
        assert progression.levels_gained == 1
        assert progression.xp_for_current_level == 246
        assert progression.xp_for_next_level == 663
        assert progression.xp_required == 363
        assert 0 < progression.progress < 100

    def test_no_level_up(self):
        progression = check_level_up(100, 1)
        assert not progression.leveled_up
        assert progression.levels_gained == 0

    def test_max_level(self):
        progression = check_level_up(10**9, 99)
        assert progression.current_level == MAX_LEVEL
        assert progression.progress == 100.0
        assert progression.xp_required == 0
