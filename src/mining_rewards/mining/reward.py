"""Reward calculation: population tier x social multiplier x streak multiplier.

Pure functions, no I/O. Amounts are ``Decimal`` so the three-decimal floor
is exact (binary floats put 46.08 at 46.079999...).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

# (inclusive upper bound on registered users, base reward). First match wins.
POPULATION_TIERS: tuple[tuple[int, int], ...] = (
    (10_000, 24),
    (20_000, 20),
    (30_000, 16),
    (60_000, 12),
    (100_000, 8),
)
FLOOR_BASE_REWARD = 6

DEFAULT_REFERRAL_CAP = 20
REFERRAL_BONUS_STEP = Decimal("0.2")
STREAK_BONUS = Decimal("1.2")
NO_BONUS = Decimal("1")
REWARD_QUANTUM = Decimal("0.001")


def base_reward(population: int) -> Decimal:
    """Base reward for the current registered-user population."""
    for upper_bound, reward in POPULATION_TIERS:
        if population <= upper_bound:
            return Decimal(reward)
    return Decimal(FLOOR_BASE_REWARD)


def social_multiplier(active_referrals: int, cap: int = DEFAULT_REFERRAL_CAP) -> Decimal:
    """1 + 0.2 per referred user active in the session window, capped."""
    counted = max(0, min(active_referrals, cap))
    return NO_BONUS + counted * REFERRAL_BONUS_STEP


def streak_multiplier(has_streak: bool) -> Decimal:
    return STREAK_BONUS if has_streak else NO_BONUS


def final_reward(base: Decimal, social: Decimal, streak: Decimal) -> Decimal:
    """Product of the three factors, floored to 3 decimals and clamped at 0."""
    raw = base * social * streak
    return max(Decimal("0.000"), raw.quantize(REWARD_QUANTUM, rounding=ROUND_FLOOR))


@dataclass(frozen=True)
class RewardBreakdown:
    """Every factor that went into a reward, for logging and previews."""

    population: int
    base: Decimal
    active_referrals: int
    social: Decimal
    has_streak: bool
    streak: Decimal
    reward: Decimal


def calculate_reward(
    population: int,
    active_referrals: int,
    has_streak: bool,
    referral_cap: int = DEFAULT_REFERRAL_CAP,
) -> RewardBreakdown:
    base = base_reward(population)
    social = social_multiplier(active_referrals, referral_cap)
    streak = streak_multiplier(has_streak)
    return RewardBreakdown(
        population=population,
        base=base,
        active_referrals=active_referrals,
        social=social,
        has_streak=has_streak,
        streak=streak,
        reward=final_reward(base, social, streak),
    )
