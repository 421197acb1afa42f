"""
Login Flow
==========
Finds the target app's login page and signs in through the browser's
natural-language ``act`` operation.

Security:
    - Username and password are passed as ``act`` variables
      (``%username%`` / ``%password%``); instruction text never carries them.
    - Credentials are never logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from ..browser.base import BrowserSession
from ..errors import BrowserActionError
from ..guard import has_actual_login_form, is_auth_page_url
from ..models import Credentials

logger = logging.getLogger(__name__)

COMMON_LOGIN_PATHS = ("/login", "/sign-in", "/signin", "/auth/login", "/auth", "/account/login")

_FIELD_COUNT_JS = """
() => document.querySelectorAll(
  'input[type="email"], input[type="password"], input[name="email"], input[name="password"]'
).length
"""

_LOGIN_LINK_JS = """
() => {
  const link = Array.from(document.querySelectorAll("a")).find(a => {
    const text = (a.innerText || "").toLowerCase();
    return text.includes("sign in") || text.includes("log in") || text.includes("login");
  });
  return link ? link.href : null;
}
"""


@dataclass
class LoginConfig:
    attempts: int = 2
    page_timeout_s: float = 30.0
    probe_timeout_s: float = 10.0
    action_timeout_s: float = 15.0
    post_submit_wait_s: float = 3.0


async def _navigate_quietly(browser: BrowserSession, url: str, timeout: float) -> bool:
    try:
        await browser.navigate(url, timeout=timeout)
    except BrowserActionError as e:
        logger.debug(f"[AUTH] Navigation to {url} failed: {e}")
        return False
    await browser.settle()
    return True


async def _login_field_count(browser: BrowserSession) -> int:
    try:
        return int(await browser.evaluate(_FIELD_COUNT_JS) or 0)
    except (BrowserActionError, TypeError, ValueError):
        return 0


async def find_login_page(browser: BrowserSession, app_url: str,
                          config: LoginConfig = None) -> Optional[str]:
    """Locate the login page for ``app_url``, or ``None`` when there is none.

    Order: redirect from the app URL, the app URL itself, common login
    paths, then a "Sign in" link on the app page.
    """
    cfg = config or LoginConfig()
    logger.info("[AUTH] Auto-detecting login page...")

    await _navigate_quietly(browser, app_url, cfg.page_timeout_s)
    current = await browser.current_url()
    if is_auth_page_url(current):
        logger.info(f"[AUTH] App URL redirected to login: {current}")
        return current
    if await _login_field_count(browser) >= 2:
        logger.info(f"[AUTH] App URL itself is the login page: {current}")
        return current

    parsed = urlparse(app_url)
    base = f"{parsed.scheme}://{parsed.netloc}"
    for path in COMMON_LOGIN_PATHS:
        candidate = f"{base}{path}"
        if not await _navigate_quietly(browser, candidate, cfg.probe_timeout_s):
            continue
        if await _login_field_count(browser) >= 1:
            logger.info(f"[AUTH] Found login page at: {candidate}")
            return candidate

    if await _navigate_quietly(browser, app_url, cfg.page_timeout_s):
        try:
            link = await browser.evaluate(_LOGIN_LINK_JS)
        except BrowserActionError:
            link = None
        if link:
            logger.info(f"[AUTH] Found login link: {link}")
            return link

    logger.warning("[AUTH] Could not find a login page")
    return None


async def authenticate(browser: BrowserSession, login_url: str, credentials: Credentials,
                       config: LoginConfig = None) -> bool:
    """Sign in at ``login_url``.  Returns ``True`` on success, ``False`` after all attempts fail."""
    cfg = config or LoginConfig()
    secrets = {"username": credentials.username, "password": credentials.password}

    for attempt in range(1, cfg.attempts + 1):
        logger.info(f"[AUTH] Login attempt {attempt}/{cfg.attempts} at {login_url}")
        if not await _navigate_quietly(browser, login_url, cfg.page_timeout_s):
            continue
        prior_url = await browser.current_url()
        try:
            await browser.act("Type %username% into the email or username input field",
                              timeout=cfg.action_timeout_s, variables=secrets)
            await browser.act("Type %password% into the password input field",
                              timeout=cfg.action_timeout_s, variables=secrets)
            await browser.act("Click the sign in, log in, or submit button",
                              timeout=cfg.action_timeout_s)
        except BrowserActionError as e:
            logger.warning(f"[AUTH] Login attempt {attempt} failed: {e}")
            continue

        await browser.settle()
        await browser.wait(cfg.post_submit_wait_s)

        current = await browser.current_url()
        still_on_login = (
            (is_auth_page_url(current) or current == prior_url)
            and await has_actual_login_form(browser)
        )
        if not still_on_login:
            logger.info(f"[AUTH] Login succeeded, landed on {current}")
            return True
        logger.warning(f"[AUTH] Still on login page after attempt {attempt}")

    logger.error(f"[AUTH] Login failed after {cfg.attempts} attempts")
    return False
