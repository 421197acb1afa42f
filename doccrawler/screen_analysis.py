"""
Screen Analysis
===============
Best-effort vision analysis of every crawled screen.

Screens are analysed in sequential batches; within a batch the calls run
concurrently with ``asyncio.gather``.  Each analysis touches only its own
screen record, so batches never contend on the store.

A screen whose analysis fails is marked ``failed``; the stage itself never
raises for a single screen.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .errors import StoreError
from .generation import ContentGenerator, generate_json
from .models import ScreenRecord, ScreenStatus
from .prompts import screen_analysis_prompt
from .store.base import JobStore

logger = logging.getLogger(__name__)


@dataclass
class AnalysisReport:
    analyzed: int = 0
    failed: int = 0
    high_confidence: int = 0
    quality_score: float = 0.0      # % of analysed screens at or above the confidence threshold


def _confidence(analysis: Dict) -> int:
    try:
        return int(analysis.get("confidence", 0))
    except (TypeError, ValueError):
        return 0


async def _analyze_one(store: JobStore, generator: ContentGenerator, screen: ScreenRecord,
                       prd_summary: Optional[Dict], timeout: float) -> Optional[Dict]:
    """Analyse one screen and persist the outcome.  Returns the analysis, or ``None`` on failure."""
    try:
        if not screen.screenshot_ref:
            raise StoreError("screen has no screenshot")
        image = await store.load_screenshot(screen.screenshot_ref)
        analysis = await generate_json(
            generator,
            screen_analysis_prompt(screen.nav_label, screen.route_path, screen.dom_snapshot, prd_summary),
            fallback={}, image=image, timeout=timeout, max_tokens=2000,
            label=f"analyze {screen.nav_label}",
        )
        if not analysis.get("summary") and not analysis.get("title"):
            raise ValueError("empty analysis")
        if screen.code_context:
            analysis["code_context"] = screen.code_context
        await store.update_screen(screen.job_id, screen.id, status=ScreenStatus.ANALYZED, analysis=analysis)
        return analysis
    except (StoreError, ValueError) as e:
        logger.warning(f"[ANALYSIS] {screen.label} of {screen.nav_label} failed: {e}")
        try:
            await store.update_screen(screen.job_id, screen.id, status=ScreenStatus.FAILED)
        except StoreError as e2:
            logger.error(f"[ANALYSIS] Could not mark {screen.id} failed: {e2}")
        return None


async def analyze_screens(store: JobStore, generator: ContentGenerator, job_id: str,
                          prd_summary: Optional[Dict] = None, batch_size: int = 5,
                          timeout: float = 30.0, confidence_threshold: int = 4) -> AnalysisReport:
    screens: List[ScreenRecord] = await store.list_screens(job_id, ScreenStatus.CRAWLED)
    report = AnalysisReport()
    batch_size = max(1, batch_size)

    for start in range(0, len(screens), batch_size):
        batch = screens[start:start + batch_size]
        logger.info(f"[ANALYSIS] Batch {start // batch_size + 1}: screens "
                    f"{start + 1}-{start + len(batch)} of {len(screens)}")
        results = await asyncio.gather(
            *(_analyze_one(store, generator, s, prd_summary, timeout) for s in batch)
        )
        for analysis in results:
            if analysis is None:
                report.failed += 1
                continue
            report.analyzed += 1
            if _confidence(analysis) >= confidence_threshold:
                report.high_confidence += 1

    if report.analyzed:
        report.quality_score = round(100.0 * report.high_confidence / report.analyzed, 1)
    logger.info(f"[ANALYSIS] {report.analyzed} analysed, {report.failed} failed, "
                f"quality {report.quality_score:.0f}%")
    return report
