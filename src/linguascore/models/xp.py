"""XP and level models."""

from pydantic import BaseModel, Field


class XPInput(BaseModel):
    """Inputs to the XP engine."""

    base_amount: int = 10
    accuracy: float = Field(default=100.0, ge=0.0, le=100.0)
    streak_days: int = Field(default=0, ge=0)
    tier_multiplier: float = Field(default=1.0, gt=0.0)
    is_perfect_message: bool = False
    error_count: int = Field(default=0, ge=0)
    critical_error_count: int = Field(default=0, ge=0)


class XPCalculation(BaseModel):
    """Breakdown of one XP award. ``floor <= net_xp <= ceiling`` always holds."""

    base_xp: float
    accuracy_multiplier: float = 1.0
    tier_multiplier: float = 1.0
    streak_bonus: float = 0.0
    precision_bonus: float = 0.0
    bonus_xp: float = 0.0
    penalty_amount: float = 0.0
    net_xp: int
    floor: int = 5
    ceiling: int = 500

    @property
    def total_xp(self) -> int:
        return self.net_xp


class LevelProgression(BaseModel):
    current_level: int
    current_xp: int
    xp_for_current_level: int
    xp_for_next_level: int
    xp_required: int
    progress: float  # 0-100
    leveled_up: bool = False
    levels_gained: int = 0
