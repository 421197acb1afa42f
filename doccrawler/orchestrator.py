"""
Job Pipeline Orchestrator
=========================
Top-level state machine for one documentation job.

Stages (each persisted before its work starts)::

    queued → analyzing_code → analyzing_prd → discovering → planning_features
           → crawling → analyzing_screens → generating_docs → completed | failed

Failure policy:

- **Fatal** (job → failed, ``error`` set): budget ≤ 0, exhausted login,
  fewer than ``min_screens`` persisted screens, doc generation failure.
- **Degraded** (logged to progress, pipeline continues): code/PRD analysis,
  feature planning (degrades to zero features), any single feature's crawl,
  screen analysis.

``run()`` never raises; a job always ends with either ``result`` or ``error``.
Credentials are erased as soon as discovery no longer needs the persisted
copy, by the crawl engine when the crawl ends, and again in the failure
handler.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .analysis import CodeAnalyzer, NullCodeAnalyzer, summarize_prd
from .auth.login import LoginConfig, authenticate, find_login_page
from .browser.base import BrowserSession
from .budget import BudgetConfig, estimate_cost, format_cost
from .crawl.config import CrawlConfig
from .crawl.engine import CrawlEngine, CrawlResult
from .discovery import (
    DiscoveryConfig,
    RouteTarget,
    detect_app_name,
    extract_navigation,
    route_from_url,
    routes_from_crawl_plan,
    run_discovery,
)
from .docs import DocWriter, ManifestDocWriter
from .errors import AuthenticationError, BrowserActionError, PipelineError, StoreError
from .feature_selection import get_prescan_candidates, normalize_route, select_features
from .generation import ContentGenerator
from .models import (
    CostEstimate,
    Credentials,
    DiscoveryResult,
    FeatureSelectionResult,
    JobStatus,
    ProgressType,
    ScreenStatus,
    utc_now,
)
from .prescan import prescan_pages
from .screen_analysis import AnalysisReport, analyze_screens
from .store.base import JobStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    crawl: CrawlConfig = field(default_factory=CrawlConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    login: LoginConfig = field(default_factory=LoginConfig)

    min_screens: int = 2
    prescan_enabled: bool = True
    prescan_max_candidates: int = 15
    prescan_page_timeout_s: float = 15.0
    generation_timeout_s: float = 30.0
    observe_timeout_s: float = 10.0
    prd_max_chars: int = 40000

    analysis_batch_size: int = 5
    quality_threshold: float = 60.0
    confidence_threshold: int = 4


class JobPipeline:
    """
    Usage::

        pipeline = JobPipeline(store, browser, generator)
        result = await pipeline.run(job.id)   # None when the job failed
    """

    def __init__(self, store: JobStore, browser: BrowserSession, generator: ContentGenerator,
                 doc_writer: Optional[DocWriter] = None,
                 code_analyzer: Optional[CodeAnalyzer] = None,
                 config: Optional[PipelineConfig] = None):
        self.store = store
        self.browser = browser
        self.generator = generator
        self.doc_writer = doc_writer or ManifestDocWriter()
        self.code_analyzer = code_analyzer or NullCodeAnalyzer()
        self.config = config or PipelineConfig()

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    async def run(self, job_id: str) -> Optional[Dict[str, Any]]:
        started = time.monotonic()
        try:
            return await self._run(job_id, started)
        except Exception as e:
            await self._fail(job_id, e)
            return None

    async def _run(self, job_id: str, started: float) -> Dict[str, Any]:
        job = await self.store.get_job(job_id)
        if job.budget_cents <= 0:
            raise PipelineError("Insufficient credits. Please add credits to continue.")

        # In-memory copy for re-authentication during the crawl
        credentials: Optional[Credentials] = job.credentials

        await self._enter(job_id, JobStatus.ANALYZING_CODE, "Analyzing codebase...")
        crawl_plan = await self._analyze_code(job_id, job.app_url)

        await self._enter(job_id, JobStatus.ANALYZING_PRD, "Reading product requirements...")
        prd_summary = await self._analyze_prd(job_id, job.prd_text)

        await self._enter(job_id, JobStatus.DISCOVERING, "Exploring your app...")
        discovered, post_login_route, login_url = await self._discover(job_id, crawl_plan, credentials)

        await self._enter(job_id, JobStatus.PLANNING_FEATURES, "Choosing features to document...")
        selection, estimate = await self._plan_features(job_id, discovered, post_login_route)

        await self._enter(job_id, JobStatus.CRAWLING,
                          f"Documenting {len(selection.selected)} features...")
        job = await self.store.get_job(job_id)
        engine = CrawlEngine(self.browser, self.generator, self.store, self.config.crawl)
        try:
            crawl = await engine.run(
                job_id, job.app_url, selection.selected,
                login_url=login_url,
                credentials=credentials,
                crawl_plan=crawl_plan,
                max_screens=job.max_screens,
            )
        except Exception as e:
            logger.exception(f"[PIPELINE] Crawl stopped early: {e}")
            await self._record_error(job_id, f"Crawl stopped early: {e}")
            crawl = CrawlResult()
        credentials = None

        # Re-query: a crash mid-crawl still leaves the persisted screens behind
        captured = await self.store.count_screens(job_id, ScreenStatus.CRAWLED)
        if captured < self.config.min_screens:
            raise PipelineError(
                f"Only {captured} screens captured (minimum {self.config.min_screens}). "
                f"The app may require login or have very few pages."
            )
        logger.info(f"[PIPELINE] Crawl finished with {captured} screens, "
                    f"{len(crawl.errors)} feature errors")

        await self._enter(job_id, JobStatus.ANALYZING_SCREENS, f"Analyzing {captured} screens...")
        await self._analyze_screens(job_id, prd_summary)

        await self._enter(job_id, JobStatus.GENERATING_DOCS, "Writing documentation...")
        docs = await self._generate_docs(job_id, crawl, prd_summary)

        return await self._complete(job_id, started, docs, selection, estimate)

    # -----------------------------------------------------------------------
    # Stage bookkeeping
    # -----------------------------------------------------------------------

    async def _enter(self, job_id: str, status: JobStatus, message: str) -> None:
        fields: Dict[str, Any] = {"status": status}
        if status == JobStatus.ANALYZING_CODE:
            fields["started_at"] = utc_now()
        await self.store.update_job(job_id, **fields)
        logger.info(f"[PIPELINE] {job_id}: {status.value}")
        await self.store.append_progress(job_id, ProgressType.INFO, message)

    async def _fail(self, job_id: str, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        if isinstance(error, (PipelineError, AuthenticationError)):
            logger.error(f"[PIPELINE] Job {job_id} failed: {message}")
        else:
            logger.exception(f"[PIPELINE] Job {job_id} crashed: {message}")
        try:
            await self.store.clear_credentials(job_id)
            await self.store.update_job(
                job_id, status=JobStatus.FAILED, error=message, completed_at=utc_now(),
            )
            await self.store.append_progress(job_id, ProgressType.ERROR, message)
        except StoreError as e:
            logger.error(f"[PIPELINE] Could not record failure for {job_id}: {e}")

    async def _record_error(self, job_id: str, message: str) -> None:
        """Append an ``error`` progress entry for a degraded, non-fatal stage."""
        try:
            await self.store.append_progress(job_id, ProgressType.ERROR, message)
        except StoreError as e:
            logger.error(f"[PIPELINE] Could not record '{message}' for {job_id}: {e}")

    # -----------------------------------------------------------------------
    # Stages
    # -----------------------------------------------------------------------

    async def _analyze_code(self, job_id: str, app_url: str) -> Dict[str, Any]:
        try:
            plan = await self.code_analyzer.analyze(app_url) or {}
        except Exception as e:
            logger.warning(f"[PIPELINE] Code analysis failed, continuing without it: {e}")
            await self._record_error(job_id, f"Code analysis failed, continuing: {e}")
            plan = {}
        await self.store.update_job(job_id, code_analysis=plan)
        return plan

    async def _analyze_prd(self, job_id: str, prd_text: str) -> Dict[str, Any]:
        summary = await summarize_prd(
            self.generator, prd_text, max_chars=self.config.prd_max_chars,
            timeout=self.config.generation_timeout_s * 2,
        )
        if prd_text and not summary.get("product_purpose"):
            await self.store.append_progress(job_id, ProgressType.ERROR,
                                             "PRD analysis failed, continuing without it")
        await self.store.update_job(job_id, prd_summary=summary)
        return summary

    async def _discover(self, job_id: str, crawl_plan: Dict[str, Any],
                        credentials: Optional[Credentials],
                        ) -> Tuple[List[DiscoveryResult], Optional[str], Optional[str]]:
        """Log in, collect routes and visit each once.

        Returns ``(results, post_login_route, login_url)``.  Raises
        ``AuthenticationError`` when every login attempt fails.
        """
        job = await self.store.get_job(job_id)
        app_url = job.app_url
        login_url = job.login_url

        if credentials and credentials.is_complete:
            if not login_url:
                login_url = await find_login_page(self.browser, app_url, self.config.login)
            if login_url:
                await self.store.append_progress(job_id, ProgressType.INFO, "Logging in...")
                if not await authenticate(self.browser, login_url, credentials, self.config.login):
                    raise AuthenticationError(
                        f"Login failed after {self.config.login.attempts} attempts. "
                        f"Please check your credentials."
                    )
                await self.store.append_progress(job_id, ProgressType.INFO, "Logged in successfully")
            else:
                await self.store.append_progress(
                    job_id, ProgressType.INFO, "No login page found, exploring without login",
                )
        else:
            try:
                await self.browser.navigate(app_url, timeout=self.config.discovery.route_timeout_s)
                await self.browser.settle()
            except BrowserActionError as e:
                logger.warning(f"[DISCOVERY] Could not open {app_url}: {e}")

        current = await self.browser.current_url()
        post_login_route = normalize_route(route_from_url(current, app_url))
        if post_login_route:
            logger.info(f"[DISCOVERY] Landing route: {post_login_route}")

        app_name = await detect_app_name(self.browser, job.product_description,
                                         self.config.observe_timeout_s)

        targets = routes_from_crawl_plan(crawl_plan)
        if targets:
            logger.info(f"[DISCOVERY] Using {len(targets)} routes from the crawl plan")
        else:
            targets = await extract_navigation(self.browser, app_url, self.config.discovery)
        known = {normalize_route(t.path) for t in targets}
        if post_login_route and post_login_route not in known:
            targets.insert(0, RouteTarget(path=post_login_route, label="Home"))
        if not targets:
            targets = [RouteTarget(path="/", label="Home")]

        await self.store.append_progress(job_id, ProgressType.INFO,
                                         f"Found {len(targets)} pages to explore")
        results = await run_discovery(self.browser, app_url, targets, self.config.discovery)

        await self.store.update_job(
            job_id,
            discovered_routes=results,
            app_name=app_name,
            post_login_route=post_login_route,
            login_url=login_url,
        )
        if credentials:
            await self.store.clear_credentials(job_id)
        return results, post_login_route, login_url

    async def _plan_features(self, job_id: str, discovered: List[DiscoveryResult],
                             post_login_route: Optional[str],
                             ) -> Tuple[FeatureSelectionResult, Optional[CostEstimate]]:
        """Budget, optional pre-scan and selection.  Degrades to zero features."""
        try:
            job = await self.store.get_job(job_id)
            candidates = get_prescan_candidates(discovered, post_login_route,
                                                max_candidates=max(len(discovered), 1))
            initial = estimate_cost(job.budget_cents, len(candidates), self.config.budget)
            logger.info(
                f"[BUDGET] {format_cost(job.budget_cents)} covers {initial.features_planned} "
                f"of {len(candidates)} features (~{format_cost(initial.estimated_cost_cents)})"
            )
            if initial.features_cut_for_budget:
                await self.store.append_progress(
                    job_id, ProgressType.INFO,
                    f"Budget covers {initial.features_planned} of {len(candidates)} features",
                )

            scans = None
            if self.config.prescan_enabled and candidates:
                async def report(message: str) -> None:
                    await self.store.append_progress(job_id, ProgressType.INFO, message)

                scans = await prescan_pages(
                    self.browser, self.generator,
                    get_prescan_candidates(discovered, post_login_route,
                                           self.config.prescan_max_candidates),
                    job.app_url,
                    page_timeout_s=self.config.prescan_page_timeout_s,
                    generation_timeout_s=self.config.generation_timeout_s,
                    on_progress=report,
                )

            selection = select_features(discovered, initial.features_planned,
                                        post_login_route=post_login_route,
                                        prescan_results=scans)
            refined = estimate_cost(job.budget_cents, len(selection.selected), self.config.budget)
            await self.store.update_job(
                job_id,
                selected_features=selection.selected,
                additional_features=selection.additional,
                estimated_cost_cents=refined.estimated_cost_cents,
            )
            names = ", ".join(f.name for f in selection.selected) or "none"
            await self.store.append_progress(
                job_id, ProgressType.INFO,
                f"Selected {len(selection.selected)} features: {names}",
            )
            return selection, refined
        except Exception as e:
            logger.exception(f"[PLANNER] Feature planning failed: {e}")
            await self._record_error(job_id, f"Feature planning failed: {e}")
            await self.store.update_job(job_id, selected_features=[], additional_features=[])
            return FeatureSelectionResult(), None

    async def _analyze_screens(self, job_id: str, prd_summary: Dict[str, Any]) -> Optional[AnalysisReport]:
        try:
            report = await analyze_screens(
                self.store, self.generator, job_id, prd_summary,
                batch_size=self.config.analysis_batch_size,
                timeout=self.config.generation_timeout_s,
                confidence_threshold=self.config.confidence_threshold,
            )
        except Exception as e:
            logger.exception(f"[ANALYSIS] Screen analysis failed: {e}")
            await self._record_error(job_id, f"Screen analysis failed, continuing: {e}")
            return None

        if report.failed:
            await self.store.append_progress(
                job_id, ProgressType.ERROR, f"{report.failed} screens could not be analyzed",
            )
        if report.analyzed and report.quality_score < self.config.quality_threshold:
            await self.store.append_progress(
                job_id, ProgressType.INFO,
                f"Low analysis confidence ({report.quality_score:.0f}%), docs may need review",
            )
        return report

    async def _generate_docs(self, job_id: str, crawl: CrawlResult,
                             prd_summary: Dict[str, Any]) -> Dict[str, str]:
        job = await self.store.get_job(job_id)
        screens = await self.store.list_screens(job_id)
        try:
            return await self.doc_writer.write(
                job, job.selected_features, screens, crawl.understandings, prd_summary,
            )
        except Exception as e:
            raise PipelineError(f"Documentation generation failed: {e}") from e

    async def _complete(self, job_id: str, started: float, docs: Dict[str, str],
                        selection: FeatureSelectionResult,
                        estimate: Optional[CostEstimate]) -> Dict[str, Any]:
        job = await self.store.get_job(job_id)
        screens = await self.store.list_screens(job_id)
        total_screens = len(screens)
        documented = len({s.feature_id for s in screens})
        actual_cost = estimate.estimated_cost_cents if estimate else 0

        result = {
            "docs_url": docs.get("docs_url"),
            "total_screens": total_screens,
            "duration_seconds": round(time.monotonic() - started),
            "features_documented": documented,
            "features_total": len(selection.selected),
            "estimated_cost_cents": job.estimated_cost_cents,
            "actual_cost_cents": actual_cost,
            "additional_features": [
                {"title": a.title, "description": a.description} for a in selection.additional
            ],
        }
        await self.store.update_job(
            job_id,
            status=JobStatus.COMPLETED,
            result=result,
            completed_at=utc_now(),
            budget_cents=max(0, job.budget_cents - actual_cost),
        )
        logger.info(f"[BUDGET] Deducted {format_cost(actual_cost)}, "
                    f"{format_cost(max(0, job.budget_cents - actual_cost))} remaining")
        await self.store.append_progress(
            job_id, ProgressType.COMPLETE,
            f"Documentation complete: {total_screens} screens across {documented} features",
        )
        return result
