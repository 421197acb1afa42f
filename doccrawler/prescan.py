"""
Pre-scan
========
Optional vision pass that scores each candidate page's documentation value
(1-10) before feature selection.  A page that fails to scan gets the
neutral score 5 so the heuristic decides.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from .browser.base import BrowserSession
from .browser.helpers import dismiss_overlays, scroll_to_top
from .discovery import full_url
from .errors import BrowserActionError
from .feature_selection import DOCUMENTATION_VALUE_THRESHOLD
from .generation import ContentGenerator, generate_json
from .models import DiscoveryResult, PageScanResult
from .prompts import prescan_prompt

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], Awaitable[None]]


def _clamp_score(value) -> Optional[int]:
    try:
        return max(1, min(10, int(round(float(value)))))
    except (TypeError, ValueError):
        return None


async def prescan_pages(browser: BrowserSession, generator: ContentGenerator,
                        candidates: Sequence[DiscoveryResult], app_url: str,
                        page_timeout_s: float = 15.0,
                        generation_timeout_s: float = 30.0,
                        on_progress: Optional[ProgressCallback] = None) -> List[PageScanResult]:
    results: List[PageScanResult] = []
    logger.info(f"[PLANNER] Pre-scanning {len(candidates)} candidate pages...")

    for i, candidate in enumerate(candidates, 1):
        label = candidate.page_title or candidate.route
        if on_progress:
            await on_progress(f"Evaluating page {i}/{len(candidates)}: {label}...")

        fallback = PageScanResult(route=candidate.route, documentation_value=5,
                                  reason="Scan failed, default score",
                                  suggested_name=candidate.page_title, page_type="other")
        try:
            await browser.navigate(full_url(app_url, candidate.route), timeout=page_timeout_s)
        except BrowserActionError as e:
            # Navigation timeouts still leave a usable page more often than not
            logger.debug(f"[PLANNER] Pre-scan navigation issue on {candidate.route}: {e}")
        except Exception as e:
            logger.warning(f"[PLANNER] Failed to open {candidate.route}: {e}")
            results.append(fallback)
            continue
        try:
            await browser.settle()
            await dismiss_overlays(browser)
            await scroll_to_top(browser)
            image = await browser.screenshot()
        except Exception as e:
            logger.warning(f"[PLANNER] Failed to scan {candidate.route}: {e}")
            results.append(fallback)
            continue

        data = await generate_json(
            generator, prescan_prompt(candidate.route, candidate.page_title),
            fallback={}, image=image, timeout=generation_timeout_s,
            max_tokens=200, label=f"prescan {candidate.route}",
        )
        score = _clamp_score(data.get("score"))
        if score is None:
            results.append(fallback)
            continue

        scan = PageScanResult(
            route=candidate.route,
            documentation_value=score,
            reason=str(data.get("reason") or ""),
            suggested_name=str(data.get("suggestedName") or candidate.page_title or ""),
            page_type=str(data.get("pageType") or "other"),
        )
        results.append(scan)

        worth = scan.documentation_value >= DOCUMENTATION_VALUE_THRESHOLD
        logger.info(
            f"[PLANNER] [{'+' if worth else '-'}] {candidate.route}: "
            f"score={scan.documentation_value}/10 ({scan.page_type}) {scan.reason}"
        )
        if on_progress:
            verdict = "worth documenting" if worth else "skipping (not a core feature)"
            await on_progress(f"{label}: {verdict} ({scan.documentation_value}/10)")

    worth_it = sum(1 for r in results if r.documentation_value >= DOCUMENTATION_VALUE_THRESHOLD)
    logger.info(f"[PLANNER] Pre-scan complete: {worth_it} worth documenting, "
                f"{len(results) - worth_it} skipped")
    return results
