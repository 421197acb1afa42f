"""
Playwright Browser Session
==========================
``BrowserSession`` on async Playwright (Chromium).

``navigate`` / ``screenshot`` / ``evaluate`` map directly onto the page.
Natural-language ``act`` and ``observe`` work in two steps:

1. Tag every visible interactive element with a ``data-dc-idx`` index and
   collect its tag, type, visible text and hints.
2. Ask the content generation service which element (and which method)
   satisfies the instruction, then drive that element through Playwright.

Secrets passed as ``variables`` are substituted into the chosen argument
only after step 2, so the model only ever sees ``%password%``.

Usage::

    async with PlaywrightSession(generator, headless=True) as browser:
        await browser.navigate("https://app.example.com")
        await browser.act("Click the Projects link in the sidebar")
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout
from playwright.async_api import async_playwright

from ..errors import BrowserActionError
from ..generation import ContentGenerator, generate_json
from ..prompts import element_resolution_prompt, observation_prompt
from .base import BrowserSession, Observation

logger = logging.getLogger(__name__)

_IDX_ATTR = "data-dc-idx"
_KEY_PRESS = re.compile(r"^\s*press\s+(?:the\s+)?([A-Za-z]+)(?:\s+key)?\b", re.IGNORECASE)
_MAX_CANDIDATES = 300

_LAUNCH_ARGS = [
    '--disable-gpu',
    '--no-sandbox',
    '--disable-dev-shm-usage',
    '--disable-background-networking',
    '--disable-default-apps',
    '--disable-extensions',
    '--disable-sync',
    '--disable-translate',
    '--no-first-run',
]

_COLLECT_JS = """
(args) => {
  const [attr, limit] = args;
  const sel = 'a, button, input, select, textarea, summary, label, [role="button"], ' +
              '[role="tab"], [role="link"], [role="menuitem"], [role="checkbox"], ' +
              '[role="switch"], [role="option"], [onclick], [contenteditable="true"]';
  document.querySelectorAll('[' + attr + ']').forEach(el => el.removeAttribute(attr));
  const out = [];
  for (const el of document.querySelectorAll(sel)) {
    if (out.length >= limit) break;
    const rect = el.getBoundingClientRect();
    if (rect.width === 0 || rect.height === 0 || el.disabled) continue;
    if (el.type === 'hidden') continue;
    const idx = out.length;
    el.setAttribute(attr, String(idx));
    const text = (el.innerText || el.value || '').trim().replace(/\\s+/g, ' ').slice(0, 80);
    const hints = [];
    for (const a of ['placeholder', 'name', 'aria-label', 'title', 'role']) {
      const v = el.getAttribute(a);
      if (v) hints.push(a + '="' + v.slice(0, 40) + '"');
    }
    if (el.tagName === 'A' && el.getAttribute('href')) {
      hints.push('href="' + el.getAttribute('href').slice(0, 120) + '"');
    }
    const region = el.closest('nav, aside, header, [role="navigation"]') ? 'nav' :
                   el.closest('[role="dialog"], .modal') ? 'dialog' : 'main';
    hints.push('region=' + region);
    out.push({index: idx, tag: el.tagName.toLowerCase(), type: el.type || '',
              text, hint: hints.join(' ')});
  }
  return out;
}
"""


def substitute_variables(text: str, variables: Optional[Dict[str, str]]) -> str:
    for name, value in (variables or {}).items():
        text = text.replace(f"%{name}%", value)
    return text


class PlaywrightSession(BrowserSession):
    """Chromium session driven by async Playwright."""

    def __init__(self, generator: ContentGenerator, headless: bool = True,
                 viewport_width: int = 1280, viewport_height: int = 800,
                 user_agent: Optional[str] = None,
                 settle_delay_s: float = 1.0,
                 network_idle_timeout_s: float = 10.0,
                 resolution_timeout_s: float = 30.0):
        self.generator = generator
        self.headless = headless
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self.user_agent = user_agent
        self.settle_delay_s = settle_delay_s
        self.network_idle_timeout_s = network_idle_timeout_s
        self.resolution_timeout_s = resolution_timeout_s

        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless, args=_LAUNCH_ARGS,
        )
        ctx_kwargs = dict(viewport=self.viewport, locale='en-US', ignore_https_errors=True)
        if self.user_agent:
            ctx_kwargs["user_agent"] = self.user_agent
        self._context = await self._browser.new_context(**ctx_kwargs)
        self._page = await self._context.new_page()
        logger.info(f"[BROWSER] Chromium started (headless={self.headless})")

    async def close(self) -> None:
        try:
            if self._context:
                await self._context.close()
            if self._browser:
                await self._browser.close()
        finally:
            if self._playwright:
                await self._playwright.stop()
            self._page = self._context = self._browser = self._playwright = None

    async def __aenter__(self) -> "PlaywrightSession":
        await self.start()
        return self

    @property
    def page(self):
        if self._page is None:
            raise BrowserActionError("Browser session not started")
        return self._page

    # -----------------------------------------------------------------------
    # Primitives
    # -----------------------------------------------------------------------

    async def navigate(self, url: str, timeout: float = 30.0) -> None:
        try:
            await self.page.goto(url, wait_until="domcontentloaded", timeout=timeout * 1000)
        except PlaywrightTimeout as e:
            raise BrowserActionError(f"Navigation timed out: {url}") from e
        except PlaywrightError as e:
            raise BrowserActionError(f"Navigation failed: {url}: {e}") from e

    async def settle(self) -> None:
        try:
            await self.page.wait_for_load_state(
                "networkidle", timeout=self.network_idle_timeout_s * 1000,
            )
        except PlaywrightTimeout:
            logger.debug("[BROWSER] networkidle not reached, continuing")
        await self.wait(self.settle_delay_s)

    async def screenshot(self) -> bytes:
        try:
            return await self.page.screenshot(type="png")
        except PlaywrightError as e:
            raise BrowserActionError(f"Screenshot failed: {e}") from e

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        try:
            if arg is None:
                return await self.page.evaluate(script)
            return await self.page.evaluate(script, arg)
        except PlaywrightError as e:
            raise BrowserActionError(f"evaluate failed: {e}") from e

    async def current_url(self) -> str:
        return self.page.url

    # -----------------------------------------------------------------------
    # Natural-language operations
    # -----------------------------------------------------------------------

    async def act(self, instruction: str, timeout: float = 15.0,
                  variables: Optional[Dict[str, str]] = None) -> None:
        try:
            await asyncio.wait_for(self._act(instruction, variables), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise BrowserActionError(f"act timed out after {timeout:.0f}s: {instruction}") from e
        except PlaywrightError as e:
            raise BrowserActionError(f"act failed: {instruction}: {e}") from e

    async def _act(self, instruction: str, variables: Optional[Dict[str, str]]) -> None:
        key = _KEY_PRESS.match(instruction)
        if key:
            await self.page.keyboard.press(key.group(1).capitalize())
            return

        candidates = await self._collect_candidates()
        if not candidates:
            raise BrowserActionError(f"No interactive elements for: {instruction}")

        choice = await generate_json(
            self.generator,
            element_resolution_prompt(instruction, candidates),
            fallback={"index": -1},
            timeout=self.resolution_timeout_s,
            max_tokens=200,
            label="act",
        )
        idx = _as_index(choice.get("index"), len(candidates))
        if idx is None:
            raise BrowserActionError(f"No element matches: {instruction}")

        method = str(choice.get("method") or "click").lower()
        argument = substitute_variables(str(choice.get("argument") or ""), variables)
        locator = self.page.locator(f'[{_IDX_ATTR}="{idx}"]').first
        logger.debug(f"[BROWSER] act '{instruction[:60]}' -> [{idx}] {method}")

        if method == "fill":
            await locator.fill(argument)
        elif method == "select":
            await locator.select_option(label=argument)
        elif method == "check":
            await locator.check()
        elif method == "press":
            await locator.press(argument or "Enter")
        else:
            await locator.click()

    async def observe(self, query: str, timeout: float = 10.0) -> List[Observation]:
        try:
            return await asyncio.wait_for(self._observe(query), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise BrowserActionError(f"observe timed out after {timeout:.0f}s: {query[:60]}") from e
        except PlaywrightError as e:
            raise BrowserActionError(f"observe failed: {e}") from e

    async def _observe(self, query: str) -> List[Observation]:
        candidates = await self._collect_candidates()
        answer = await generate_json(
            self.generator,
            observation_prompt(query, candidates),
            fallback=[],
            timeout=self.resolution_timeout_s,
            max_tokens=1500,
            label="observe",
        )
        observations = []
        for item in answer:
            if not isinstance(item, dict) or not item.get("description"):
                continue
            idx = _as_index(item.get("index"), len(candidates))
            selector = f'[{_IDX_ATTR}="{idx}"]' if idx is not None else ""
            observations.append(Observation(description=str(item["description"]), selector=selector))
        return observations

    async def _collect_candidates(self) -> List[Dict]:
        return await self.page.evaluate(_COLLECT_JS, [_IDX_ATTR, _MAX_CANDIDATES])


def _as_index(value: Any, size: int) -> Optional[int]:
    try:
        idx = int(value)
    except (TypeError, ValueError):
        return None
    return idx if 0 <= idx < size else None
