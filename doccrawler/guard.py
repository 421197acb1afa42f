"""
Duplicate & Session Guard
=========================
Decides whether a page is worth capturing and whether we are still logged in.

Responsibilities:
    1. Clean a page's markup and fingerprint it (DOM hash).
    2. Remember, per crawl invocation, which URL paths and DOM hashes have
       already been captured.  A hit on *either* skips the capture.
    3. Detect session expiry: the URL must look like an auth page *and* the
       page must carry a real login form (not just a password field inside
       an otherwise populated app screen).
    4. Detect unhealthy pages (browser error pages, bot-block interstitials).

``CaptureGuard`` is job-scoped: each crawl builds its own, so concurrent
jobs in one process never share dedup state.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Optional, Set
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from .browser.base import BrowserSession
from .errors import BrowserActionError

logger = logging.getLogger(__name__)

DOM_SNAPSHOT_MAX_CHARS = 16000
_STRIP_TAGS = ("script", "style", "svg", "noscript", "link", "meta")

AUTH_PAGE_PATTERNS = (
    "/login", "/sign-in", "/signin", "/sign-up", "/signup",
    "/register", "/auth", "/account/login",
)

_BOT_BLOCK_MARKERS = ("blocked", "attention required", "security service", "ray id")

_LOGIN_FORM_JS = """
() => {
  const passwordInputs = document.querySelectorAll('input[type="password"]');
  const hasNav = document.querySelectorAll("nav, aside, .sidebar, [role='navigation']").length > 0;
  const bodyText = (document.body && document.body.innerText) || "";
  return {passwords: passwordInputs.length, textLength: bodyText.length, hasNav};
}
"""

_BODY_TEXT_JS = "() => ((document.body && document.body.innerText) || '').slice(0, 2000)"
_OUTER_HTML_JS = "() => document.documentElement.outerHTML"


# ---------------------------------------------------------------------------
# Markup fingerprinting
# ---------------------------------------------------------------------------

def clean_markup(html: str, max_chars: int = DOM_SNAPSHOT_MAX_CHARS) -> str:
    """Drop non-content tags and truncate, giving a stable snapshot to hash and store."""
    soup = BeautifulSoup(html or "", "lxml")
    for tag in soup(list(_STRIP_TAGS)):
        tag.decompose()
    return str(soup)[:max_chars]


def dom_hash(snapshot: str) -> str:
    return hashlib.sha256(snapshot.encode("utf-8")).hexdigest()


async def snapshot_page(browser: BrowserSession) -> str:
    html = await browser.evaluate(_OUTER_HTML_JS)
    return clean_markup(html or "")


def url_key(url: str) -> str:
    """Dedup key for a URL: its path, without trailing slash."""
    try:
        path = urlparse(url).path
    except ValueError:
        return url
    return path.rstrip("/") or "/"


class CaptureGuard:
    """Per-crawl memory of captured URL paths and DOM hashes.

    Usage::

        guard = CaptureGuard()
        reason = guard.check(url, digest)
        if reason is None:
            guard.remember(url, digest)
    """

    def __init__(self):
        self._urls: Set[str] = set()
        self._hashes: Set[str] = set()

    def check(self, url: str, digest: str) -> Optional[str]:
        """Return why ``(url, digest)`` is a duplicate, or ``None`` if it is new."""
        if url_key(url) in self._urls:
            return "url already captured"
        if digest in self._hashes:
            return "identical page content already captured"
        return None

    def remember(self, url: str, digest: str) -> None:
        self._urls.add(url_key(url))
        self._hashes.add(digest)

    def __len__(self) -> int:
        return len(self._hashes)


# ---------------------------------------------------------------------------
# Login-state detection
# ---------------------------------------------------------------------------

def is_auth_page_url(url: str) -> bool:
    lower = (url or "").lower()
    return any(p in lower for p in AUTH_PAGE_PATTERNS)


def is_redirected_to_login(current_url: str, login_url: Optional[str] = None) -> bool:
    if login_url and current_url.startswith(login_url):
        return True
    return is_auth_page_url(current_url)


async def has_actual_login_form(browser: BrowserSession) -> bool:
    """True only for a real login screen, not an app page that merely has a password field."""
    try:
        info = await browser.evaluate(_LOGIN_FORM_JS)
    except BrowserActionError as e:
        logger.debug(f"[GUARD] Login-form probe failed: {e}")
        return False
    if not info or not info.get("passwords"):
        return False
    has_dashboard_content = info.get("textLength", 0) > 2000 and info.get("hasNav")
    return not has_dashboard_content


async def detect_session_expired(browser: BrowserSession, login_url: Optional[str] = None) -> bool:
    current = await browser.current_url()
    if not is_redirected_to_login(current, login_url):
        return False
    if await has_actual_login_form(browser):
        logger.warning(f"[GUARD] Session expired, login form at {current}")
        return True
    return False


# ---------------------------------------------------------------------------
# Page health
# ---------------------------------------------------------------------------

def is_bot_block_text(body_text: str) -> bool:
    lower = (body_text or "").lower()
    return "cloudflare" in lower and any(m in lower for m in _BOT_BLOCK_MARKERS)


async def check_page_health(browser: BrowserSession) -> Optional[str]:
    """Return a reason the current page must be skipped, or ``None`` if healthy."""
    url = await browser.current_url()
    if url.startswith("chrome-error://"):
        return "Browser error page (site unreachable)"
    try:
        text = await browser.evaluate(_BODY_TEXT_JS)
    except BrowserActionError:
        return None
    if is_bot_block_text(text or ""):
        return "Blocked by Cloudflare bot protection"
    return None
