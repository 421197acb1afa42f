"""
Two-Phase Crawl Engine
======================
Runs every selected feature, in priority order, through ``FeatureCrawler``
until the job-wide screen cap.

- One ``CrawlSession`` per invocation: dedup state, re-auth counter and
  captured screens never outlive the call.
- A feature that raises is recorded in ``CrawlResult.errors`` and the crawl
  moves on.
- Credentials are erased from the store (and dropped from memory) when the
  crawl ends, however it ends.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..browser.base import BrowserSession
from ..discovery import full_url
from ..errors import StoreError
from ..feature_selection import normalize_route
from ..generation import ContentGenerator
from ..models import Credentials, Feature, PageUnderstanding, ProgressType, ScreenRecord
from ..monitor import CrawlMetrics, CrawlMonitor, FeatureTiming
from ..store.base import JobStore
from .capture import CrawlError, CrawlSession
from .config import CrawlConfig
from .feature import FeatureCrawler, FeatureRun, FeatureStage

logger = logging.getLogger(__name__)

_CODE_CONTEXT_KEYS = ("component", "fields", "modals", "permissions", "apiCalls")


@dataclass
class CrawlResult:
    screens: List[ScreenRecord] = field(default_factory=list)
    errors: List[CrawlError] = field(default_factory=list)
    understandings: Dict[str, PageUnderstanding] = field(default_factory=dict)
    metrics: CrawlMetrics = field(default_factory=CrawlMetrics)
    duration_s: float = 0.0


def code_context_for(route: str, crawl_plan: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Slice of the code-analysis crawl plan that describes ``route``."""
    if not crawl_plan:
        return None
    wanted = normalize_route(route)
    for info in crawl_plan.get("routes") or []:
        if not isinstance(info, dict) or normalize_route(info.get("path")) != wanted:
            continue
        context = {k: info[k] for k in _CODE_CONTEXT_KEYS if info.get(k)}
        return context or None
    return None


class CrawlEngine:
    def __init__(self, browser: BrowserSession, generator: ContentGenerator, store: JobStore,
                 config: Optional[CrawlConfig] = None):
        self.browser = browser
        self.generator = generator
        self.store = store
        self.config = config or CrawlConfig()

    async def run(self, job_id: str, app_url: str, features: Sequence[Feature],
                  login_url: Optional[str] = None,
                  credentials: Optional[Credentials] = None,
                  crawl_plan: Optional[Dict[str, Any]] = None,
                  max_screens: Optional[int] = None) -> CrawlResult:
        session = CrawlSession(
            job_id=job_id,
            app_url=app_url,
            max_screens=max_screens or self.config.max_screens,
            login_url=login_url,
            credentials=credentials,
        )
        monitor = CrawlMonitor(features_total=len(features))
        crawler = FeatureCrawler(self.browser, self.generator, self.store, session, monitor, self.config)
        started = time.monotonic()
        stop_reason = "completed"

        logger.info(f"[CRAWL] Starting crawl of {len(features)} features "
                    f"(max {session.max_screens} screens)")
        monitor.start()
        try:
            for i, feature in enumerate(features, 1):
                if not session.has_capacity:
                    stop_reason = "max screens reached"
                    logger.info(f"[CRAWL] Screen cap {session.max_screens} reached, stopping")
                    await self.store.append_progress(
                        job_id, ProgressType.INFO,
                        f"Reached the {session.max_screens}-screen limit, stopping crawl",
                    )
                    break
                await self.store.append_progress(
                    job_id, ProgressType.INFO, f"Documenting: {feature.name} ({i}/{len(features)})",
                )
                await self._crawl_feature(crawler, session, monitor, feature, app_url, crawl_plan)
        finally:
            session.credentials = None
            try:
                await self.store.clear_credentials(job_id)
            except StoreError as e:
                logger.error(f"[CRAWL] Failed to clear credentials for {job_id}: {e}")
            monitor.stop(stop_reason)

        duration = time.monotonic() - started
        metrics = monitor.snapshot()
        logger.info(monitor.format_summary(metrics))
        await self.store.append_progress(
            job_id, ProgressType.INFO,
            f"Crawl complete: {len(session.screens)} screens captured in {duration:.0f}s",
        )
        return CrawlResult(
            screens=list(session.screens),
            errors=list(session.errors),
            understandings=dict(session.understandings),
            metrics=metrics,
            duration_s=duration,
        )

    async def _crawl_feature(self, crawler: FeatureCrawler, session: CrawlSession,
                             monitor: CrawlMonitor, feature: Feature, app_url: str,
                             crawl_plan: Optional[Dict[str, Any]]) -> None:
        run = FeatureRun(
            feature=feature,
            url=full_url(app_url, feature.route),
            code_context=code_context_for(feature.route, crawl_plan),
        )
        t0 = time.monotonic()
        try:
            await crawler.run(run)
        except Exception as e:
            run.stage = FeatureStage.FAILED
            logger.error(f"[CRAWL] {feature.name} failed at {run.history[-1].value if run.history else 'start'}: {e}")
            session.errors.append(CrawlError(feature.id, f"crawl {feature.name}", str(e)))
            await self.store.append_progress(
                session.job_id, ProgressType.ERROR, f"Failed to document {feature.name}: {e}",
            )

        status = {FeatureStage.DONE: "ok", FeatureStage.SKIPPED: "skipped"}.get(run.stage, "failed")
        if run.stage == FeatureStage.SKIPPED:
            logger.info(f"[CRAWL] Skipped {feature.name}: {run.skip_reason}")
        monitor.record_feature(FeatureTiming(
            feature_id=feature.id,
            name=feature.name,
            screens=run.screens,
            total_ms=(time.monotonic() - t0) * 1000,
            status=status,
        ))
