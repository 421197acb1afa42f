"""Tests for the cost / budget estimator."""

import pytest

from doccrawler.budget import BudgetConfig, estimate_cost, format_cost, max_features_for_budget


class TestMaxFeatures:

    def test_monotonic_in_budget(self):
        """A bigger budget never buys fewer features, and never more than the tier cap."""
        cfg = BudgetConfig()
        previous = 0
        for credits in range(0, 2000, 7):
            n = max_features_for_budget(credits, 10, cfg)
            assert previous <= n <= cfg.free_tier_max_features
            previous = n

    def test_floor_of_one(self):
        """Even a budget below the overhead plans one feature."""
        assert max_features_for_budget(10, 5) == 1

    def test_capped_by_candidates(self):
        """Never plans more features than were discovered."""
        assert max_features_for_budget(10_000, 2) == 2

    def test_capped_by_tier(self):
        assert max_features_for_budget(10_000, 50) == BudgetConfig().free_tier_max_features

    def test_zero_candidates_still_one(self):
        assert max_features_for_budget(300, 0) == 1

    @pytest.mark.parametrize("credits,expected", [(90, 1), (115, 2), (140, 3), (189, 4)])
    def test_affordable_steps(self, credits, expected):
        """(credits - 65) // 25 features once above the overhead."""
        assert max_features_for_budget(credits, 10) == expected


class TestEstimateCost:

    def test_three_of_ten(self):
        """A budget covering 3 of 10 candidates cuts 7."""
        estimate = estimate_cost(140, 10)
        assert estimate.features_planned == 3
        assert estimate.features_available == 10
        assert estimate.features_cut_for_budget == 7

    def test_cost_formula(self):
        """overhead + screens*per_screen + features*prose + cross-cutting."""
        estimate = estimate_cost(300, 10)
        assert estimate.features_planned == 6
        assert estimate.screens_estimated == 12
        assert estimate.estimated_cost_cents == 65 + 12 * 3 + 6 * 8 + 10
        assert estimate.user_credits_cents == 300

    def test_refinement_with_real_count(self):
        """Re-running with the selected count shrinks the estimate."""
        first = estimate_cost(300, 10)
        refined = estimate_cost(300, 2)
        assert refined.features_planned == 2
        assert refined.estimated_cost_cents < first.estimated_cost_cents
        assert refined.features_cut_for_budget == 0

    def test_custom_config(self):
        cfg = BudgetConfig(fixed_overhead_cents=0, per_feature_cents=10, free_tier_max_features=20)
        assert estimate_cost(100, 50, cfg).features_planned == 10


class TestFormatCost:

    def test_dollars(self):
        assert format_cost(159) == "$1.59"
        assert format_cost(5) == "$0.05"
