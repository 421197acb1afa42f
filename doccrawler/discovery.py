"""
Discovery Crawl
===============
Visits a pre-bounded set of routes once each, with no AI calls per route.

Route sources, in order:
    1. The code-analysis crawl plan (``{"routes": [{"path": ...}, ...]}``).
    2. Navigation links read from the post-login page's nav/sidebar markup,
       grouped under their section headings (the parent-category hints).
    3. A natural-language ``observe`` of the navigation, when the markup
       yields nothing (canvas menus, shadow DOM...).

For each route we record title, form/table presence, error indicators and
the nav labels visible on the page.  A route that fails to load becomes an
inaccessible ``DiscoveryResult`` rather than an exception.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .browser.base import BrowserSession
from .errors import BrowserActionError
from .models import DiscoveryResult

logger = logging.getLogger(__name__)

_DYNAMIC_SEGMENT = re.compile(r"\[[^\]]+\]|/:[A-Za-z_]")
_GENERIC_APP_NAMES = {"home", "dashboard", "next.js", "app", ""}

_PAGE_INFO_JS = """
() => {
  const title = document.title || "";
  const hasForms = document.querySelectorAll("form, input, textarea, select").length > 0;
  const hasTables = document.querySelectorAll("table, [role='grid'], [role='table']").length > 0;
  const bodyText = ((document.body && document.body.innerText) || "").toLowerCase();
  const hasErrorIndicator = ["404", "not found", "error", "something went wrong",
                             "access denied", "forbidden"].some(s => bodyText.includes(s));
  const is404 = title.toLowerCase().includes("404") || title.toLowerCase().includes("not found");
  const navLinks = [];
  document.querySelectorAll("nav a, [role='navigation'] a, aside a, .sidebar a, .nav a").forEach(el => {
    const text = (el.innerText || "").trim();
    if (text && text.length < 50 && !navLinks.includes(text)) navLinks.push(text);
  });
  return {
    title,
    hasForms,
    hasTables,
    hasError: is404 || (hasErrorIndicator && !hasForms && !hasTables),
    navLinks: navLinks.slice(0, 20),
  };
}
"""

_NAV_LINKS_JS = """
() => {
  const roots = document.querySelectorAll("nav, aside, header, [role='navigation'], .sidebar");
  const out = [];
  const seen = new Set();
  const headingOf = (anchor, root) => {
    let node = anchor.parentElement;
    while (node && node !== root.parentElement) {
      for (const child of node.children) {
        if (child.contains(anchor)) continue;
        const isHeading = /^H[1-6]$/.test(child.tagName) || child.tagName === "SUMMARY" ||
          child.getAttribute("role") === "heading" ||
          (child.tagName === "BUTTON" && child.getAttribute("aria-expanded") !== null) ||
          /(title|heading|label|group)/i.test(child.className || "");
        const text = (child.innerText || "").trim();
        if (isHeading && text && text.length < 40 && !text.includes("\\n")) return text;
      }
      if (node === root) break;
      node = node.parentElement;
    }
    return null;
  };
  for (const root of roots) {
    for (const a of root.querySelectorAll("a[href]")) {
      const href = a.getAttribute("href");
      if (!href || href.startsWith("#") || href.startsWith("javascript:") || href.startsWith("mailto:")) continue;
      const label = (a.innerText || a.getAttribute("aria-label") || "").trim().replace(/\\s+/g, " ");
      if (!label || label.length > 50) continue;
      const url = a.href;
      if (seen.has(url)) continue;
      seen.add(url);
      out.push({url, label, parent: headingOf(a, root)});
    }
  }
  return out;
}
"""


@dataclass
class DiscoveryConfig:
    route_timeout_s: float = 45.0
    observe_timeout_s: float = 10.0
    max_routes: int = 40


@dataclass
class RouteTarget:
    """A route to visit, with its optional navigation label and section."""
    path: str
    label: str = ""
    parent_category: Optional[str] = None


def full_url(app_url: str, route: str) -> str:
    if route.startswith(("http://", "https://")):
        return route
    return f"{app_url.rstrip('/')}{route}"


def route_from_url(url: str, app_url: str) -> Optional[str]:
    """Path of ``url`` when it belongs to the app's origin, else ``None``."""
    target, base = urlparse(url), urlparse(app_url)
    if target.scheme not in ("http", "https", ""):
        return None
    if target.netloc and target.netloc != base.netloc:
        return None
    return target.path or "/"


# ---------------------------------------------------------------------------
# Route sources
# ---------------------------------------------------------------------------

def routes_from_crawl_plan(plan: Dict[str, Any]) -> List[RouteTarget]:
    targets, seen = [], set()
    for info in (plan or {}).get("routes", []):
        path = info.get("path") if isinstance(info, dict) else str(info)
        if not path or path in seen:
            continue
        if _DYNAMIC_SEGMENT.search(path):
            logger.debug(f"[DISCOVERY] Skipping dynamic route {path}")
            continue
        seen.add(path)
        targets.append(RouteTarget(path=path, parent_category=info.get("parentCategory")
                                   if isinstance(info, dict) else None))
    return targets


async def extract_navigation(browser: BrowserSession, app_url: str,
                             config: DiscoveryConfig = None) -> List[RouteTarget]:
    """Read nav links from the current page, falling back to ``observe``."""
    cfg = config or DiscoveryConfig()
    targets: List[RouteTarget] = []
    seen = set()

    try:
        links = await browser.evaluate(_NAV_LINKS_JS) or []
    except BrowserActionError as e:
        logger.warning(f"[DISCOVERY] Nav markup extraction failed: {e}")
        links = []

    for link in links:
        path = route_from_url(link.get("url", ""), app_url)
        if not path or path in seen:
            continue
        seen.add(path)
        targets.append(RouteTarget(path=path, label=link.get("label", ""),
                                   parent_category=link.get("parent")))

    if targets:
        logger.info(f"[DISCOVERY] Found {len(targets)} navigation links in markup")
        return targets[:cfg.max_routes]

    logger.info("[DISCOVERY] No nav markup found, falling back to observe")
    try:
        observations = await browser.observe(
            "Find all navigation links in the sidebar, top navigation bar, header, and any "
            "dropdown menus. Return each link with its text and URL.",
            timeout=cfg.observe_timeout_s,
        )
    except BrowserActionError as e:
        logger.warning(f"[DISCOVERY] Navigation observe failed: {e}")
        return []

    for obs in observations:
        match = re.search(r"""href=["']([^"']+)["']""", obs.description)
        if match:
            path = route_from_url(match.group(1), app_url)
        else:
            path = "/" + re.sub(r"\s+", "-", obs.description.strip().lower())
        if not path or path in seen:
            continue
        seen.add(path)
        targets.append(RouteTarget(path=path, label=obs.description))
    logger.info(f"[DISCOVERY] Observed {len(targets)} navigation links")
    return targets[:cfg.max_routes]


# ---------------------------------------------------------------------------
# Route visits
# ---------------------------------------------------------------------------

async def discover_route(browser: BrowserSession, app_url: str, target: RouteTarget,
                         config: DiscoveryConfig = None) -> DiscoveryResult:
    cfg = config or DiscoveryConfig()
    url = full_url(app_url, target.path)
    try:
        await browser.navigate(url, timeout=cfg.route_timeout_s)
        await browser.settle()
        actual = await browser.current_url()
        info = await browser.evaluate(_PAGE_INFO_JS) or {}
    except BrowserActionError as e:
        logger.error(f"[DISCOVERY] Failed to visit {target.path}: {e}")
        return DiscoveryResult(route=target.path, actual_url=url, is_accessible=False,
                               has_error=True, parent_category=target.parent_category)

    has_error = bool(info.get("hasError"))
    return DiscoveryResult(
        route=target.path,
        actual_url=actual,
        page_title=info.get("title", "") or target.label,
        is_accessible=not has_error,
        has_error=has_error,
        has_form=bool(info.get("hasForms")),
        has_table=bool(info.get("hasTables")),
        nav_elements=tuple(info.get("navLinks") or ()),
        parent_category=target.parent_category,
    )


async def run_discovery(browser: BrowserSession, app_url: str, targets: List[RouteTarget],
                        config: DiscoveryConfig = None) -> List[DiscoveryResult]:
    """Visit each target once, strictly in sequence."""
    cfg = config or DiscoveryConfig()
    bounded = targets[:cfg.max_routes]
    if len(targets) > len(bounded):
        logger.info(f"[DISCOVERY] Capping {len(targets)} routes to {cfg.max_routes}")

    results = []
    for i, target in enumerate(bounded, 1):
        logger.info(f"[DISCOVERY] [{i}/{len(bounded)}] Visiting: {target.path}")
        result = await discover_route(browser, app_url, target, cfg)
        results.append(result)
        if result.is_accessible:
            flags = "".join([", has form" if result.has_form else "",
                             ", has table" if result.has_table else ""])
            status = f"accessible{flags}"
        else:
            status = "ERROR" if result.has_error else "inaccessible"
        logger.info(f'[DISCOVERY]   -> {status} | "{result.page_title}"')

    logger.info(f"[DISCOVERY] Complete: {summarize_discovery(results)}")
    return results


def summarize_discovery(results: List[DiscoveryResult]) -> str:
    accessible = sum(1 for r in results if r.is_accessible)
    forms = sum(1 for r in results if r.is_accessible and r.has_form)
    tables = sum(1 for r in results if r.is_accessible and r.has_table)
    errors = sum(1 for r in results if r.has_error)
    return (f"{len(results)} routes visited: {accessible} accessible "
            f"({forms} with forms, {tables} with tables), {errors} errors")


# ---------------------------------------------------------------------------
# App identity
# ---------------------------------------------------------------------------

async def detect_app_name(browser: BrowserSession, product_description: str = "",
                          observe_timeout_s: float = 10.0) -> str:
    """Brand text from the header, then the product description, page title, hostname."""
    name = ""
    try:
        observations = await browser.observe(
            "Find the application or company name/logo in the header or navigation bar. "
            "Return the text of the brand name.",
            timeout=observe_timeout_s,
        )
        if observations:
            raw = observations[0].description.strip()
            quoted = re.search(r"""['"]([^'"]+)['"]""", raw)
            if quoted:
                raw = quoted.group(1)
            if len(raw) <= 30:
                name = raw
    except BrowserActionError as e:
        logger.debug(f"[DISCOVERY] Brand observe failed: {e}")

    if name.lower() in _GENERIC_APP_NAMES and product_description:
        match = re.match(r"^([A-Z][A-Za-z]+(?:\s[A-Z][A-Za-z]+)*)", product_description)
        if match:
            name = match.group(1)

    if name.lower() in _GENERIC_APP_NAMES:
        try:
            title = await browser.evaluate("() => document.title || ''") or ""
        except BrowserActionError:
            title = ""
        name = re.sub(r"\s*[-|–—]\s*(dashboard|home|admin|app|settings|next\.js).*$", "",
                      title, flags=re.IGNORECASE).strip()

    name = re.sub(r"\s*[-|–—]\s*(Dashboard|Home|Admin|App|Settings|Next\.js)$", "",
                  name, flags=re.IGNORECASE).strip()

    if name.lower() in _GENERIC_APP_NAMES:
        host = urlparse(await browser.current_url()).hostname or ""
        host = re.sub(r"^www\.", "", host).split(".")[0]
        name = host[:1].upper() + host[1:] if host else "Application"

    logger.info(f'[DISCOVERY] Detected app name: "{name}"')
    return name
