"""Reward calculation: population tiers, multipliers, flooring."""

from decimal import Decimal

import pytest

from mining_rewards.mining.reward import (
    base_reward,
    calculate_reward,
    final_reward,
    social_multiplier,
    streak_multiplier,
)


class TestBaseReward:
    """Population tier boundaries are inclusive on the upper bound."""

    @pytest.mark.parametrize(
        ("population", "expected"),
        [
            (0, 24),
            (10_000, 24),
            (10_001, 20),
            (20_000, 20),
            (20_001, 16),
            (30_000, 16),
            (30_001, 12),
            (60_000, 12),
            (60_001, 8),
            (100_000, 8),
            (100_001, 6),
            (5_000_000, 6),
        ],
    )
    def test_tier_boundaries(self, population, expected):
        assert base_reward(population) == Decimal(expected)

    def test_non_increasing_in_population(self):
        samples = [base_reward(p) for p in range(0, 150_000, 2_500)]
        assert samples == sorted(samples, reverse=True)


class TestMultipliers:
    def test_no_referrals_is_neutral(self):
        assert social_multiplier(0) == Decimal("1")

    def test_each_referral_adds_a_fifth(self):
        assert social_multiplier(3) == Decimal("1.6")

    def test_capped_at_twenty_referrals(self):
        assert social_multiplier(20) == Decimal("5")
        assert social_multiplier(25) == Decimal("5")

    def test_custom_cap(self):
        assert social_multiplier(10, cap=5) == Decimal("2")

    def test_negative_count_is_neutral(self):
        assert social_multiplier(-4) == Decimal("1")

    def test_streak(self):
        assert streak_multiplier(True) == Decimal("1.2")
        assert streak_multiplier(False) == Decimal("1")


class TestFinalReward:
    def test_floors_to_three_decimals(self):
        assert final_reward(Decimal("1.23456"), Decimal("1"), Decimal("1")) == Decimal("1.234")

    def test_never_rounds_up(self):
        assert final_reward(Decimal("2.9999"), Decimal("1"), Decimal("1")) == Decimal("2.999")

    def test_clamped_at_zero(self):
        assert final_reward(Decimal("-3"), Decimal("1"), Decimal("1")) == Decimal("0")


class TestCalculateReward:
    def test_small_population_three_referrals_and_streak(self):
        """24 x 1.6 x 1.2 = 46.080."""
        breakdown = calculate_reward(5_000, 3, True)
        assert breakdown.base == Decimal("24")
        assert breakdown.social == Decimal("1.6")
        assert breakdown.streak == Decimal("1.2")
        assert breakdown.reward == Decimal("46.080")
        assert str(breakdown.reward) == "46.080"

    def test_large_population_no_bonus(self):
        assert calculate_reward(100_000, 0, False).reward == Decimal("8.000")

    def test_cap_applies_to_reward(self):
        assert calculate_reward(200_000, 40, False).reward == Decimal("30.000")

    def test_referral_cap_parameter(self):
        assert calculate_reward(0, 20, False, referral_cap=1).reward == Decimal("28.800")

    def test_monotone_in_referrals_and_streak(self):
        rewards = [calculate_reward(15_000, n, False).reward for n in range(25)]
        assert rewards == sorted(rewards)
        assert calculate_reward(15_000, 2, True).reward > calculate_reward(15_000, 2, False).reward

    def test_breakdown_keeps_inputs(self):
        breakdown = calculate_reward(42, 7, False)
        assert breakdown.population == 42
        assert breakdown.active_referrals == 7
        assert breakdown.has_streak is False
