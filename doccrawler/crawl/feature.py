"""
Per-Feature State Machine
=========================
Drives one feature through the two-phase crawl:

    NAVIGATE → HEALTH → SESSION → PREPARE → HERO
        → UNDERSTAND → PROBE → EMPTY_STATE          (explore)
        → PLAN → EXECUTE → COMPARE → SUBMIT → RESULT (document, looped per plan)
        → SUB_PAGES → DONE

Each handler does one step and returns the next ``FeatureStage``.  Browser
and generation calls are fallible; a handler either recovers locally or lets
the exception reach ``CrawlEngine``, which records it against the feature.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..auth.login import authenticate
from ..browser.base import BrowserSession
from ..browser.helpers import dismiss_overlays, scroll_to_top, wait_for_loading
from ..discovery import full_url
from ..errors import BrowserActionError
from ..generation import ContentGenerator, generate_json
from ..guard import check_page_health, detect_session_expired
from ..models import Feature, PageUnderstanding, ProgressType, ScreenshotPlan, ScreenType
from ..monitor import CrawlMonitor
from ..prompts import safe_submit_query, screenshot_plan_prompt, understanding_prompt
from ..store.base import JobStore
from .capture import CrawlError, CrawlSession, ScreenCapturer
from .compare import ChangeDetector
from .config import CrawlConfig
from .planning import parse_plans, parse_understanding, pick_safe_submit, probe_instruction, probe_targets

logger = logging.getLogger(__name__)


class FeatureStage(str, Enum):
    NAVIGATE = "navigate"
    HEALTH = "health"
    SESSION = "session"
    PREPARE = "prepare"
    HERO = "hero"
    UNDERSTAND = "understand"
    PROBE = "probe"
    EMPTY_STATE = "empty_state"
    PLAN = "plan"
    EXECUTE = "execute"
    COMPARE = "compare"
    SUBMIT = "submit"
    RESULT = "result"
    SUB_PAGES = "sub_pages"
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FeatureStage.DONE, FeatureStage.SKIPPED, FeatureStage.FAILED)


@dataclass
class FeatureRun:
    """Everything one feature's crawl carries between stages."""
    feature: Feature
    url: str
    code_context: Optional[Dict[str, Any]] = None
    stage: FeatureStage = FeatureStage.NAVIGATE
    history: List[FeatureStage] = field(default_factory=list)
    skip_reason: str = ""

    hero_image: bytes = b""
    baseline_image: bytes = b""
    last_image: bytes = b""
    understanding: Optional[PageUnderstanding] = None

    plans: List[ScreenshotPlan] = field(default_factory=list)
    plan_index: int = 0
    action_count: int = 0
    vision_checks: int = 0
    screens: int = 0

    @property
    def current_plan(self) -> Optional[ScreenshotPlan]:
        if self.plan_index < len(self.plans):
            return self.plans[self.plan_index]
        return None


class FeatureCrawler:
    def __init__(self, browser: BrowserSession, generator: ContentGenerator, store: JobStore,
                 session: CrawlSession, monitor: CrawlMonitor, config: CrawlConfig):
        self.browser = browser
        self.generator = generator
        self.store = store
        self.session = session
        self.monitor = monitor
        self.config = config
        self.capturer = ScreenCapturer(browser, store, session, monitor, config)
        self.detector = ChangeDetector(generator, config, monitor)
        self._handlers = {
            FeatureStage.NAVIGATE: self._navigate,
            FeatureStage.HEALTH: self._health,
            FeatureStage.SESSION: self._session,
            FeatureStage.PREPARE: self._prepare,
            FeatureStage.HERO: self._hero,
            FeatureStage.UNDERSTAND: self._understand,
            FeatureStage.PROBE: self._probe,
            FeatureStage.EMPTY_STATE: self._empty_state,
            FeatureStage.PLAN: self._plan,
            FeatureStage.EXECUTE: self._execute,
            FeatureStage.COMPARE: self._compare,
            FeatureStage.SUBMIT: self._submit,
            FeatureStage.RESULT: self._result,
            FeatureStage.SUB_PAGES: self._sub_pages,
        }

    async def run(self, run: FeatureRun) -> FeatureRun:
        while not run.stage.is_terminal:
            run.history.append(run.stage)
            run.stage = await self._handlers[run.stage](run)
        return run

    # ── Helpers ──

    async def _progress(self, message: str, kind: ProgressType = ProgressType.INFO) -> None:
        await self.store.append_progress(self.session.job_id, kind, message)

    def _error(self, run: FeatureRun, action: str, error: str) -> None:
        self.session.errors.append(CrawlError(run.feature.id, action, error))

    async def _return_to_clean_url(self, run: FeatureRun) -> None:
        await self.browser.navigate(run.url, timeout=self.config.page_timeout_s)
        await self.browser.settle()
        await dismiss_overlays(self.browser, timeout=self.config.overlay_timeout_s)

    async def _capture(self, run: FeatureRun, label: str, screen_type: ScreenType,
                       nav_label: str, follow_up: bool = True) -> Optional[bytes]:
        captured = await self.capturer.capture(
            run.feature, label, screen_type, nav_label,
            filename=f"{run.feature.slug}-{label}.png",
            code_context=run.code_context,
            follow_up_of=run.url if follow_up else None,
        )
        if captured is None:
            return None
        run.screens += 1
        return captured[1]

    def _next_plan(self, run: FeatureRun) -> FeatureStage:
        run.plan_index += 1
        return FeatureStage.EXECUTE

    # ── Shared preamble ──

    async def _navigate(self, run: FeatureRun) -> FeatureStage:
        name = run.feature.name
        try:
            await self.browser.navigate(run.url, timeout=self.config.page_timeout_s)
        except BrowserActionError as e:
            logger.warning(f"[CRAWL] Direct navigation to {run.url} failed ({e}); trying sidebar")
            try:
                await self.browser.act(
                    f'Click the sidebar or navigation link labeled "{name}"',
                    timeout=self.config.action_timeout_s,
                )
            except BrowserActionError as e2:
                logger.warning(f"[CRAWL] Sidebar fallback for {name} failed: {e2}")
        await self.browser.settle()
        return FeatureStage.HEALTH

    async def _health(self, run: FeatureRun) -> FeatureStage:
        issue = await check_page_health(self.browser)
        if issue:
            self.monitor.record_unhealthy()
            run.skip_reason = issue
            logger.info(f"[CRAWL] Skipping {run.feature.name}: {issue}")
            return FeatureStage.SKIPPED
        return FeatureStage.SESSION

    async def _session(self, run: FeatureRun) -> FeatureStage:
        if not await detect_session_expired(self.browser, self.session.login_url):
            return FeatureStage.PREPARE

        creds = self.session.credentials
        if not (creds and creds.is_complete and self.session.login_url):
            self._error(run, "re-authenticate", "Session expired and no credentials available")
            await self._progress(f"Session expired on {run.feature.name}; no credentials to re-login",
                                 ProgressType.ERROR)
            return FeatureStage.FAILED

        if self.session.reauth_count >= self.config.max_reauths:
            self._error(run, "re-authenticate",
                        f"Session expired; re-auth limit ({self.config.max_reauths}) reached")
            await self._progress(f"Session expired on {run.feature.name}; re-login limit reached",
                                 ProgressType.ERROR)
            return FeatureStage.FAILED

        self.session.reauth_count += 1
        self.monitor.record_reauth()
        logger.warning(f"[CRAWL] Session expired, re-authenticating "
                       f"({self.session.reauth_count}/{self.config.max_reauths})")
        await self._progress("Session expired, logging in again...")

        if not await authenticate(self.browser, self.session.login_url, creds, self.config.login):
            self._error(run, "re-authenticate", "Re-authentication failed")
            await self._progress(f"Re-login failed while documenting {run.feature.name}",
                                 ProgressType.ERROR)
            return FeatureStage.FAILED

        return FeatureStage.NAVIGATE

    async def _prepare(self, run: FeatureRun) -> FeatureStage:
        await dismiss_overlays(self.browser, timeout=self.config.overlay_timeout_s)
        await wait_for_loading(self.browser, max_wait_s=self.config.loading_max_wait_s)
        await scroll_to_top(self.browser)
        return FeatureStage.HERO

    async def _hero(self, run: FeatureRun) -> FeatureStage:
        image = await self._capture(run, "hero", ScreenType.HERO, run.feature.name,
                                    follow_up=False)
        if image is None:
            run.skip_reason = "hero already captured or page unavailable"
            return FeatureStage.SKIPPED
        run.hero_image = image
        return FeatureStage.UNDERSTAND

    # ── Explore ──

    async def _understand(self, run: FeatureRun) -> FeatureStage:
        feature = run.feature
        data = await generate_json(
            self.generator,
            understanding_prompt(feature.name, feature.route, feature.description),
            fallback={}, image=run.hero_image,
            timeout=self.config.generation_timeout_s, max_tokens=1500,
            label=f"understand {feature.name}",
        )
        run.understanding = parse_understanding(data, feature, self.config.max_elements)
        self.session.understandings[feature.id] = run.understanding
        u = run.understanding
        logger.info(
            f"[EXPLORE] {feature.name}: {u.complexity.value}, "
            f"{len(u.interactive_elements)} elements, empty_state={u.is_empty_state}"
        )
        return FeatureStage.PROBE

    async def _probe(self, run: FeatureRun) -> FeatureStage:
        targets = probe_targets(run.understanding, self.config.max_probes)
        for element in targets:
            try:
                await self.browser.act(probe_instruction(element), timeout=self.config.action_timeout_s)
                await self.browser.settle()
                seen = await self.browser.observe(
                    "Describe what appeared or changed in the main content area",
                    timeout=self.config.observe_timeout_s,
                )
                note = "; ".join(o.description for o in seen[:3]) or "no visible change"
                run.understanding.probe_notes.append(f"{element.description}: {note}")
                logger.debug(f"[EXPLORE] Probed {element.description}: {note}")
            except BrowserActionError as e:
                logger.debug(f"[EXPLORE] Probe of {element.description} failed: {e}")
            try:
                await self._return_to_clean_url(run)
            except BrowserActionError as e:
                logger.warning(f"[EXPLORE] Could not return to {run.url}: {e}")
                break
        return FeatureStage.EMPTY_STATE

    async def _empty_state(self, run: FeatureRun) -> FeatureStage:
        u = run.understanding
        if u.is_empty_state and u.empty_state_cta:
            logger.info(f"[EXPLORE] Empty state on {run.feature.name}, following '{u.empty_state_cta}'")
            try:
                await self.browser.act(f'Click the "{u.empty_state_cta}" button',
                                       timeout=self.config.action_timeout_s)
                await self.browser.settle()
            except BrowserActionError as e:
                logger.debug(f"[EXPLORE] Empty-state CTA failed: {e}")

        if not u.needs_documentation_phase:
            logger.info(f"[DOCUMENT] {run.feature.name} is simple with no controls, hero only")
            return FeatureStage.SUB_PAGES
        return FeatureStage.PLAN

    # ── Document ──

    async def _plan(self, run: FeatureRun) -> FeatureStage:
        if not self.session.has_capacity:
            return FeatureStage.SUB_PAGES
        try:
            run.baseline_image = await self.browser.screenshot()
        except BrowserActionError as e:
            logger.debug(f"[DOCUMENT] Fresh hero failed, using original: {e}")
            run.baseline_image = run.hero_image

        u = run.understanding
        data = await generate_json(
            self.generator,
            screenshot_plan_prompt(run.feature.name, u.purpose, u.user_goals,
                                   u.probe_notes, self.config.max_plans),
            fallback=[], image=run.baseline_image,
            timeout=self.config.generation_timeout_s, max_tokens=1500,
            label=f"plan {run.feature.name}",
        )
        run.plans = parse_plans(data, self.config.max_plans)
        logger.info(f"[DOCUMENT] {run.feature.name}: {len(run.plans)} screenshot plans")
        run.plan_index = 0
        return FeatureStage.EXECUTE if run.plans else FeatureStage.SUB_PAGES

    async def _execute(self, run: FeatureRun) -> FeatureStage:
        plan = run.current_plan
        if plan is None or not self.session.has_capacity:
            return FeatureStage.SUB_PAGES

        if run.plan_index > 0:
            try:
                await self._return_to_clean_url(run)
            except BrowserActionError as e:
                logger.warning(f"[DOCUMENT] Could not reset {run.url}: {e}")
                return FeatureStage.SUB_PAGES

        for action in plan.actions:
            try:
                await self.browser.act(action, timeout=self.config.action_timeout_s)
            except BrowserActionError as e:
                logger.info(f"[DOCUMENT] Plan '{plan.description}' abandoned at '{action}': {e}")
                return self._next_plan(run)
        await self.browser.settle()
        return FeatureStage.COMPARE

    async def _compare(self, run: FeatureRun) -> FeatureStage:
        plan = run.current_plan
        current = await self.browser.screenshot()
        changed, run.vision_checks = await self.detector.has_changed(
            run.baseline_image, current, run.vision_checks,
        )
        if not changed:
            self.monitor.record_discarded_shot()
            logger.info(f"[DOCUMENT] '{plan.description}' left the page unchanged, discarded")
            return self._next_plan(run)

        n = run.action_count + 1
        image = await self._capture(run, f"action-{n}", ScreenType.ACTION,
                                    plan.description or f"{run.feature.name} ({n})")
        if image is None:
            return self._next_plan(run)
        run.action_count = n
        run.last_image = image
        return FeatureStage.SUBMIT if plan.submit_after else self._next_plan(run)

    async def _submit(self, run: FeatureRun) -> FeatureStage:
        plan = run.current_plan
        if not self.session.has_capacity:
            return self._next_plan(run)
        try:
            seen = await self.browser.observe(safe_submit_query(), timeout=self.config.observe_timeout_s)
            label = pick_safe_submit(seen)
            if not label:
                logger.debug(f"[DOCUMENT] No safe submit button for '{plan.description}'")
                return self._next_plan(run)
            await self.browser.act(f'Click the "{label}" button', timeout=self.config.action_timeout_s)
            await self.browser.settle()
            await self.browser.wait(self.config.post_submit_wait_s)
        except BrowserActionError as e:
            logger.info(f"[DOCUMENT] Submit for '{plan.description}' failed: {e}")
            return self._next_plan(run)
        return FeatureStage.RESULT if plan.capture_result else self._next_plan(run)

    async def _result(self, run: FeatureRun) -> FeatureStage:
        plan = run.current_plan
        current = await self.browser.screenshot()
        changed, run.vision_checks = await self.detector.has_changed(
            run.last_image, current, run.vision_checks,
        )
        if changed:
            n = run.action_count
            await self._capture(run, f"result-{n}", ScreenType.RESULT,
                                f"{plan.description or run.feature.name} (result)")
        else:
            self.monitor.record_discarded_shot()
        return self._next_plan(run)

    # ── Merged groups ──

    async def _sub_pages(self, run: FeatureRun) -> FeatureStage:
        if not self.config.capture_sub_pages:
            return FeatureStage.DONE
        app_url = self.session.app_url
        for i, sub in enumerate(run.feature.sub_pages[1:], start=2):
            if sub.route == run.feature.route or not self.session.has_capacity:
                continue
            try:
                await self.browser.navigate(full_url(app_url, sub.route), timeout=self.config.page_timeout_s)
                await self.browser.settle()
                await dismiss_overlays(self.browser, timeout=self.config.overlay_timeout_s)
                await wait_for_loading(self.browser, max_wait_s=self.config.loading_max_wait_s)
            except BrowserActionError as e:
                logger.info(f"[CRAWL] Section {sub.name} unavailable: {e}")
                continue
            await self._capture(run, f"section-{i}", ScreenType.HERO,
                                f"{run.feature.name}: {sub.name}", follow_up=False)
        return FeatureStage.DONE
