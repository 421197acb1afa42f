"""Tuning for the two-phase crawl.  Built from ``PipelineRunConfig.to_crawl_config()``."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..auth.login import LoginConfig


@dataclass
class CrawlConfig:
    # ---- Limits ----
    max_screens: int = 50
    max_reauths: int = 2              # shared across the whole crawl
    max_probes: int = 3
    max_plans: int = 2
    max_elements: int = 12

    # ---- Timeouts (seconds) ----
    page_timeout_s: float = 30.0
    action_timeout_s: float = 15.0
    observe_timeout_s: float = 10.0
    overlay_timeout_s: float = 5.0
    generation_timeout_s: float = 30.0
    loading_max_wait_s: float = 5.0

    # ---- Delays (seconds) ----
    upload_retry_delay_s: float = 3.0
    post_submit_wait_s: float = 2.0

    # ---- Change detection ----
    byte_delta_threshold: int = 5000
    vision_checks_per_feature: int = 2
    prefix_bytes: int = 1000
    small_delta_bytes: int = 500

    # ---- Optional stages ----
    capture_sub_pages: bool = True

    login: LoginConfig = field(default_factory=LoginConfig)
