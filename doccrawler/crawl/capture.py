"""
Screen capture: health check, dedup, snapshot, screenshot, upload, persist.

Shared state for one crawl invocation lives on ``CrawlSession``; nothing here
is module-global, so two jobs crawling in one process never see each
other's captures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ..browser.base import BrowserSession
from ..errors import StoreError
from ..guard import CaptureGuard, check_page_health, dom_hash, snapshot_page, url_key
from ..models import (
    Credentials,
    Feature,
    PageUnderstanding,
    ProgressType,
    ScreenRecord,
    ScreenType,
)
from ..monitor import CrawlMonitor
from ..store.base import JobStore
from .config import CrawlConfig

logger = logging.getLogger(__name__)


@dataclass
class CrawlError:
    feature_id: str
    action: str
    error: str


@dataclass
class CrawlSession:
    """Mutable state owned by exactly one crawl invocation."""
    job_id: str
    app_url: str
    max_screens: int
    login_url: Optional[str] = None
    credentials: Optional[Credentials] = None
    guard: CaptureGuard = field(default_factory=CaptureGuard)
    reauth_count: int = 0
    screens: List[ScreenRecord] = field(default_factory=list)
    errors: List[CrawlError] = field(default_factory=list)
    understandings: Dict[str, PageUnderstanding] = field(default_factory=dict)

    @property
    def has_capacity(self) -> bool:
        return len(self.screens) < self.max_screens

    def next_order_index(self) -> int:
        return len(self.screens)


class ScreenCapturer:
    """Turns the browser's current page into a persisted ``ScreenRecord``."""

    def __init__(self, browser: BrowserSession, store: JobStore, session: CrawlSession,
                 monitor: CrawlMonitor, config: CrawlConfig):
        self.browser = browser
        self.store = store
        self.session = session
        self.monitor = monitor
        self.config = config

    async def capture(self, feature: Feature, label: str, screen_type: ScreenType,
                      nav_label: str, filename: str,
                      code_context: Optional[Dict] = None,
                      follow_up_of: Optional[str] = None) -> Optional[Tuple[ScreenRecord, bytes]]:
        """Capture the current page.

        Returns ``None`` (a silent skip) for unhealthy pages and for a URL or
        DOM hash already captured in this crawl.  ``follow_up_of`` names the
        feature URL an action/result shot started from: while the browser is
        still on that URL the shot is a new state of an already-captured page
        and bypasses the duplicate check.  Every stored record is remembered.
        """
        if not self.session.has_capacity:
            return None

        issue = await check_page_health(self.browser)
        if issue:
            self.monitor.record_unhealthy()
            logger.info(f"[CRAWL] Skipped {nav_label}: {issue}")
            return None

        url = await self.browser.current_url()
        snapshot = await snapshot_page(self.browser)
        digest = dom_hash(snapshot)

        same_page = follow_up_of is not None and url_key(url) == url_key(follow_up_of)
        if not same_page:
            duplicate = self.session.guard.check(url, digest)
            if duplicate:
                self.monitor.record_duplicate()
                logger.info(f"[CRAWL] Skipping {nav_label} at {url}: {duplicate}")
                return None

        image = await self.browser.screenshot()
        ref = await self._upload(filename, image)

        record = ScreenRecord(
            job_id=self.session.job_id,
            url=url,
            route_path=urlparse(url).path or "/",
            nav_label=nav_label,
            screenshot_ref=ref or "",
            dom_snapshot=snapshot,
            feature_id=feature.id,
            label=label,
            order_index=self.session.next_order_index(),
            screen_type=screen_type,
            dom_hash=digest,
            code_context=code_context,
        )
        await self.store.insert_screen(record)
        self.session.guard.remember(url, digest)
        self.session.screens.append(record)
        self.monitor.record_screen(screen_type.value)
        await self.store.append_progress(
            self.session.job_id, ProgressType.INFO, f"Captured: {nav_label}", screenshot_ref=ref,
        )
        return record, image

    async def _upload(self, filename: str, image: bytes) -> Optional[str]:
        job_id = self.session.job_id
        try:
            return await self.store.upload_screenshot(job_id, filename, image)
        except StoreError as e:
            logger.warning(
                f"[CRAWL] Upload of {filename} failed ({e}); "
                f"retrying in {self.config.upload_retry_delay_s:.0f}s"
            )
        self.monitor.record_upload_retry()
        await self.browser.wait(self.config.upload_retry_delay_s)
        try:
            return await self.store.upload_screenshot(job_id, filename, image)
        except StoreError as e:
            logger.error(f"[CRAWL] Upload of {filename} failed after retry: {e}")
            await self.store.append_progress(
                job_id, ProgressType.ERROR, f"Screenshot upload failed for {filename}",
            )
            return None
