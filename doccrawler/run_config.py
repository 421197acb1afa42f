"""
Unified Run Configuration
=========================
Run-level defaults and runtime limits in one dataclass.

The CLI populates a ``PipelineRunConfig``; component configs
(``BudgetConfig``, ``CrawlConfig``, ``PipelineConfig``) are built *from* it
via factory methods.  The component dataclasses keep their own defaults
for direct use in library code and tests; ``TestDefaultsAgree`` keeps the
two sets in step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .budget import BudgetConfig, format_cost

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Run defaults (mirrored by the component dataclass defaults)
# ---------------------------------------------------------------------------
_DEFAULTS = {
    # Budget (cents)
    "fixed_overhead_cents": 65,
    "per_feature_cents": 25,
    "per_screen_analysis_cents": 3,
    "per_feature_prose_cents": 8,
    "cross_cutting_cents": 10,
    "free_tier_max_features": 6,
    "budget_cents": 300,

    # Crawl limits and timeouts (seconds)
    "max_screens": 50,
    "page_timeout_s": 30.0,
    "discovery_timeout_s": 45.0,
    "action_timeout_s": 15.0,
    "observe_timeout_s": 10.0,
    "generation_timeout_s": 30.0,
    "settle_delay_s": 1.0,
    "loading_max_wait_s": 5.0,
    "upload_retry_delay_s": 3.0,
    "max_reauths": 2,
    "max_probes": 3,
    "max_plans": 2,

    # "Did the page change?" tuning
    "byte_delta_threshold": 5000,
    "vision_checks_per_feature": 2,
    "prefix_bytes": 1000,
    "small_delta_bytes": 500,

    # Pipeline
    "min_screens": 2,
    "analysis_batch_size": 5,        # concurrent analyses per batch
    "quality_threshold": 60.0,       # % of screens at or above confidence threshold
    "confidence_threshold": 4,
    "prescan_max_candidates": 15,
    "discovery_max_routes": 40,
    "prd_max_chars": 40000,

    # Browser
    "headless": True,
    "store_dir": "doccrawler_data",
    "docs_dir": "doccrawler_docs",
}


@dataclass
class PipelineRunConfig:
    """
    Unified configuration consumed by every pipeline stage.

    Populate via:
      - ``PipelineRunConfig()``                  → all defaults
      - ``PipelineRunConfig(max_screens=20)``    → override one value
      - ``PipelineRunConfig.from_cli_args(ns)``  → from argparse Namespace
    """

    # ---- Budget ----
    budget_cents: int = _DEFAULTS["budget_cents"]
    fixed_overhead_cents: int = _DEFAULTS["fixed_overhead_cents"]
    per_feature_cents: int = _DEFAULTS["per_feature_cents"]
    per_screen_analysis_cents: int = _DEFAULTS["per_screen_analysis_cents"]
    per_feature_prose_cents: int = _DEFAULTS["per_feature_prose_cents"]
    cross_cutting_cents: int = _DEFAULTS["cross_cutting_cents"]
    free_tier_max_features: int = _DEFAULTS["free_tier_max_features"]

    # ---- Crawl ----
    max_screens: int = _DEFAULTS["max_screens"]
    page_timeout_s: float = _DEFAULTS["page_timeout_s"]
    discovery_timeout_s: float = _DEFAULTS["discovery_timeout_s"]
    action_timeout_s: float = _DEFAULTS["action_timeout_s"]
    observe_timeout_s: float = _DEFAULTS["observe_timeout_s"]
    generation_timeout_s: float = _DEFAULTS["generation_timeout_s"]
    settle_delay_s: float = _DEFAULTS["settle_delay_s"]
    loading_max_wait_s: float = _DEFAULTS["loading_max_wait_s"]
    upload_retry_delay_s: float = _DEFAULTS["upload_retry_delay_s"]
    max_reauths: int = _DEFAULTS["max_reauths"]
    max_probes: int = _DEFAULTS["max_probes"]
    max_plans: int = _DEFAULTS["max_plans"]

    # ---- Change detection ----
    byte_delta_threshold: int = _DEFAULTS["byte_delta_threshold"]
    vision_checks_per_feature: int = _DEFAULTS["vision_checks_per_feature"]
    prefix_bytes: int = _DEFAULTS["prefix_bytes"]
    small_delta_bytes: int = _DEFAULTS["small_delta_bytes"]

    # ---- Pipeline ----
    min_screens: int = _DEFAULTS["min_screens"]
    analysis_batch_size: int = _DEFAULTS["analysis_batch_size"]
    quality_threshold: float = _DEFAULTS["quality_threshold"]
    confidence_threshold: int = _DEFAULTS["confidence_threshold"]
    prescan_enabled: bool = True
    prescan_max_candidates: int = _DEFAULTS["prescan_max_candidates"]
    discovery_max_routes: int = _DEFAULTS["discovery_max_routes"]
    prd_max_chars: int = _DEFAULTS["prd_max_chars"]

    # ---- Job inputs ----
    login_url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    prd_file: Optional[str] = None
    crawl_plan_file: Optional[str] = None

    # ---- Runtime ----
    headless: bool = _DEFAULTS["headless"]
    store_dir: str = _DEFAULTS["store_dir"]
    docs_dir: str = _DEFAULTS["docs_dir"]
    verbose: bool = False

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_cli_args(cls, args) -> "PipelineRunConfig":
        """Build config from an argparse Namespace (``__main__.py``)."""
        return cls(
            budget_cents=getattr(args, "budget_cents", None) or _DEFAULTS["budget_cents"],
            max_screens=getattr(args, "max_screens", None) or _DEFAULTS["max_screens"],
            login_url=getattr(args, "login_url", None),
            username=getattr(args, "username", None),
            password=getattr(args, "password", None),
            prd_file=getattr(args, "prd_file", None),
            crawl_plan_file=getattr(args, "crawl_plan", None),
            headless=not getattr(args, "headed", False),
            prescan_enabled=not getattr(args, "no_prescan", False),
            store_dir=getattr(args, "store_dir", None) or _DEFAULTS["store_dir"],
            docs_dir=getattr(args, "docs_dir", None) or _DEFAULTS["docs_dir"],
            verbose=getattr(args, "verbose", False),
        )

    # -----------------------------------------------------------------------
    # Converters to component config objects
    # -----------------------------------------------------------------------
    def to_budget_config(self) -> BudgetConfig:
        return BudgetConfig(
            fixed_overhead_cents=self.fixed_overhead_cents,
            per_feature_cents=self.per_feature_cents,
            per_screen_analysis_cents=self.per_screen_analysis_cents,
            per_feature_prose_cents=self.per_feature_prose_cents,
            cross_cutting_cents=self.cross_cutting_cents,
            free_tier_max_features=self.free_tier_max_features,
            default_credits_cents=_DEFAULTS["budget_cents"],
        )

    def to_login_config(self):
        from .auth.login import LoginConfig
        return LoginConfig(
            attempts=2,
            page_timeout_s=self.page_timeout_s,
            probe_timeout_s=self.observe_timeout_s,
            action_timeout_s=self.action_timeout_s,
        )

    def to_crawl_config(self):
        """Return a ``CrawlConfig`` populated from this run config."""
        # Import here to avoid a circular import through the crawl package
        from .crawl.config import CrawlConfig
        return CrawlConfig(
            max_screens=self.max_screens,
            max_reauths=self.max_reauths,
            max_probes=self.max_probes,
            max_plans=self.max_plans,
            page_timeout_s=self.page_timeout_s,
            action_timeout_s=self.action_timeout_s,
            observe_timeout_s=self.observe_timeout_s,
            generation_timeout_s=self.generation_timeout_s,
            loading_max_wait_s=self.loading_max_wait_s,
            upload_retry_delay_s=self.upload_retry_delay_s,
            byte_delta_threshold=self.byte_delta_threshold,
            vision_checks_per_feature=self.vision_checks_per_feature,
            prefix_bytes=self.prefix_bytes,
            small_delta_bytes=self.small_delta_bytes,
            login=self.to_login_config(),
        )

    def to_pipeline_config(self):
        """Return the ``PipelineConfig`` bundling every component config."""
        from .discovery import DiscoveryConfig
        from .orchestrator import PipelineConfig
        return PipelineConfig(
            budget=self.to_budget_config(),
            crawl=self.to_crawl_config(),
            discovery=DiscoveryConfig(
                route_timeout_s=self.discovery_timeout_s,
                observe_timeout_s=self.observe_timeout_s,
                max_routes=self.discovery_max_routes,
            ),
            login=self.to_login_config(),
            min_screens=self.min_screens,
            prescan_enabled=self.prescan_enabled,
            prescan_max_candidates=self.prescan_max_candidates,
            generation_timeout_s=self.generation_timeout_s,
            observe_timeout_s=self.observe_timeout_s,
            prd_max_chars=self.prd_max_chars,
            analysis_batch_size=self.analysis_batch_size,
            quality_threshold=self.quality_threshold,
            confidence_threshold=self.confidence_threshold,
        )

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self, url: str) -> None:
        """Emit a structured summary to the logger.  Never logs the password."""
        logger.info("=" * 60)
        logger.info("DOCUMENTATION RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  URL:              {url}")
        logger.info(f"  Budget:           {format_cost(self.budget_cents)}")
        logger.info(f"  Max Screens:      {self.max_screens}")
        logger.info(f"  Page Timeout:     {self.page_timeout_s:.0f}s")
        logger.info(f"  Pre-scan:         {'on' if self.prescan_enabled else 'off'}")
        logger.info(f"  Headless:         {self.headless}")
        logger.info(f"  Store:            {self.store_dir}")
        if self.login_url or self.username:
            logger.info(f"  Auth:             Enabled (user {self.username or 'from env'})")
            if self.login_url:
                logger.info(f"  Login URL:        {self.login_url}")
        if self.prd_file:
            logger.info(f"  PRD:              {self.prd_file}")
        if self.crawl_plan_file:
            logger.info(f"  Crawl Plan:       {self.crawl_plan_file}")
        logger.info("=" * 60)
