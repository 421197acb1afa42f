"""
Page preparation helpers shared by pre-scan and the crawl engine.

All of these are best-effort: a failure is logged and swallowed, since a
page with a stray cookie banner is still worth capturing.
"""

from __future__ import annotations

import logging
import time

from ..errors import BrowserActionError
from .base import BrowserSession

logger = logging.getLogger(__name__)

_OVERLAY_JS = """
() => {
  const selectors = [
    '[class*="cookie"]', '[class*="consent"]', '[class*="popup"]',
    '[class*="modal"][class*="overlay"]', '[class*="banner"]',
    '[class*="toast"]', '[role="dialog"]', '[class*="onboarding"]',
  ];
  return selectors.some(sel => {
    const el = document.querySelector(sel);
    return el && el.offsetHeight > 0;
  });
}
"""

_LOADING_JS = """
() => {
  const sel = '[class*="spinner"], [class*="loading"], [class*="skeleton"], ' +
              '[aria-busy="true"], [role="progressbar"]';
  return Array.from(document.querySelectorAll(sel)).some(el => {
    const r = el.getBoundingClientRect();
    return r.width > 0 && r.height > 0 && getComputedStyle(el).visibility !== 'hidden';
  });
}
"""

DISMISS_INSTRUCTION = (
    "Close any popup, banner, cookie notice, or overlay that is blocking the main content. "
    "Click the X button, Close button, Accept button, or Dismiss button."
)


async def dismiss_overlays(browser: BrowserSession, timeout: float = 5.0) -> bool:
    """Try to clear a blocking overlay.  Returns ``True`` if one was found."""
    try:
        if not await browser.evaluate(_OVERLAY_JS):
            return False
    except BrowserActionError:
        return False

    try:
        await browser.act(DISMISS_INSTRUCTION, timeout=timeout)
    except BrowserActionError:
        try:
            await browser.act("Press the Escape key", timeout=timeout)
        except BrowserActionError as e:
            logger.debug(f"[BROWSER] Overlay dismissal failed: {e}")
    await browser.settle()
    return True


async def wait_for_loading(browser: BrowserSession, max_wait_s: float = 5.0,
                           poll_s: float = 0.5) -> bool:
    """Poll until no loading indicator is visible.  Returns ``False`` on timeout."""
    deadline = time.monotonic() + max_wait_s
    while True:
        try:
            busy = await browser.evaluate(_LOADING_JS)
        except BrowserActionError:
            return True
        if not busy:
            return True
        if time.monotonic() >= deadline:
            logger.debug(f"[BROWSER] Loading indicators still visible after {max_wait_s:.0f}s")
            return False
        await browser.wait(poll_s)


async def scroll_to_top(browser: BrowserSession) -> None:
    try:
        await browser.evaluate("() => window.scrollTo(0, 0)")
    except BrowserActionError:
        pass
