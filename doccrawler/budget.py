"""
Cost / Budget Estimator
=======================
Pure spend planning for a documentation job.

The feature cap is derived from the job's remaining credits::

    max_features = clamp(floor((credits - overhead) / per_feature), 1,
                         min(candidate_count, tier_cap))

and the spend estimate assumes two screens (hero + one action) per feature::

    cost = overhead + screens * per_screen + features * per_prose + cross_cutting

The estimator runs twice per job: once with the raw candidate count to size
selection, and again with the real selected count to refine the estimate.

Usage::

    cfg = BudgetConfig()
    estimate = estimate_cost(credits_cents=300, candidate_count=10, config=cfg)
    print(format_cost(estimate.estimated_cost_cents))   # "$1.59"
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import CostEstimate

logger = logging.getLogger(__name__)


@dataclass
class BudgetConfig:
    """Cost constants, all in cents."""
    fixed_overhead_cents: int = 65
    per_feature_cents: int = 25
    per_screen_analysis_cents: int = 3
    per_feature_prose_cents: int = 8
    cross_cutting_cents: int = 10
    free_tier_max_features: int = 6
    default_credits_cents: int = 300
    screens_per_feature: int = 2


def max_features_for_budget(credits_cents: int, candidate_count: int,
                            config: BudgetConfig = None) -> int:
    """How many features a budget can pay for, never above the tier cap."""
    cfg = config or BudgetConfig()
    affordable = (credits_cents - cfg.fixed_overhead_cents) // cfg.per_feature_cents
    ceiling = min(candidate_count, cfg.free_tier_max_features)
    # The floor of 1 applies before the ceiling so the tier cap always wins
    return min(max(affordable, 1), max(ceiling, 1))


def estimate_cost(credits_cents: int, candidate_count: int,
                  config: BudgetConfig = None) -> CostEstimate:
    """Build a ``CostEstimate`` for ``candidate_count`` available features."""
    cfg = config or BudgetConfig()
    planned = max_features_for_budget(credits_cents, candidate_count, cfg)
    screens = planned * cfg.screens_per_feature

    cost = (
        cfg.fixed_overhead_cents
        + screens * cfg.per_screen_analysis_cents
        + planned * cfg.per_feature_prose_cents
        + cfg.cross_cutting_cents
    )

    estimate = CostEstimate(
        screens_estimated=screens,
        features_planned=planned,
        features_available=candidate_count,
        estimated_cost_cents=cost,
        user_credits_cents=credits_cents,
        features_cut_for_budget=max(0, candidate_count - planned),
    )
    logger.debug(
        f"[BUDGET] credits={format_cost(credits_cents)} candidates={candidate_count} "
        f"-> features={planned} screens~{screens} cost~{format_cost(cost)}"
    )
    return estimate


def format_cost(cents: int) -> str:
    return f"${cents / 100:.2f}"
