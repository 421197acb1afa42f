"""
Crawl Monitor
=============
Counters and per-feature timings for one two-phase crawl.

Tracks:
- Screens captured by kind (hero / action / result)
- Captures skipped as duplicates or unhealthy pages
- Features completed, skipped and failed
- Re-authentications, vision change-checks, discarded action shots
- Upload retries
- Per-feature wall time

The crawl runs as one task per job, so the monitor is not locked.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List

logger = logging.getLogger(__name__)


@dataclass
class FeatureTiming:
    """Outcome and timing for one feature."""
    feature_id: str = ""
    name: str = ""
    screens: int = 0
    total_ms: float = 0.0
    status: str = "ok"   # ok | skipped | failed


@dataclass
class CrawlMetrics:
    """Snapshot of crawl counters at a point in time."""
    features_total: int = 0
    features_documented: int = 0
    features_skipped: int = 0
    features_failed: int = 0

    screens_captured: int = 0
    screens_by_kind: Dict[str, int] = field(default_factory=dict)
    duplicates_skipped: int = 0
    unhealthy_skipped: int = 0
    shots_discarded: int = 0

    reauthentications: int = 0
    vision_checks: int = 0
    upload_retries: int = 0

    avg_feature_ms: float = 0.0
    elapsed_sec: float = 0.0
    stop_reason: str = ""

    def to_dict(self) -> Dict:
        return dict(self.__dict__)


class CrawlMonitor:
    """
    Usage::

        monitor = CrawlMonitor(features_total=len(features))
        monitor.start()
        monitor.record_screen("hero")
        monitor.record_feature(FeatureTiming(feature_id="f1", screens=2))
        print(monitor.format_summary(monitor.snapshot()))
    """

    def __init__(self, features_total: int = 0):
        self._features_total = features_total
        self._start_time: float = 0.0
        self._end_time: float = 0.0
        self._screens = Counter()
        self._skips = Counter()
        self._reauths = 0
        self._vision_checks = 0
        self._discarded = 0
        self._upload_retries = 0
        self._timings: List[FeatureTiming] = []
        self._stop_reason = ""

    def start(self) -> None:
        self._start_time = time.monotonic()

    def stop(self, reason: str = "completed") -> None:
        self._end_time = time.monotonic()
        self._stop_reason = reason

    def record_screen(self, kind: str) -> None:
        self._screens[kind] += 1

    def record_duplicate(self) -> None:
        self._skips["duplicate"] += 1

    def record_unhealthy(self) -> None:
        self._skips["unhealthy"] += 1

    def record_reauth(self) -> None:
        self._reauths += 1

    def record_vision_check(self) -> None:
        self._vision_checks += 1

    def record_discarded_shot(self) -> None:
        self._discarded += 1

    def record_upload_retry(self) -> None:
        self._upload_retries += 1

    def record_feature(self, timing: FeatureTiming) -> None:
        self._timings.append(timing)
        logger.info(
            f"[MONITOR] {timing.name or timing.feature_id}: {timing.status}, "
            f"{timing.screens} screens in {timing.total_ms / 1000:.1f}s"
        )

    def snapshot(self) -> CrawlMetrics:
        end = self._end_time or time.monotonic()
        elapsed = end - self._start_time if self._start_time else 0.0
        totals = [t.total_ms for t in self._timings if t.total_ms > 0]
        statuses = Counter(t.status for t in self._timings)
        return CrawlMetrics(
            features_total=self._features_total,
            features_documented=statuses["ok"],
            features_skipped=statuses["skipped"],
            features_failed=statuses["failed"],
            screens_captured=sum(self._screens.values()),
            screens_by_kind=dict(self._screens),
            duplicates_skipped=self._skips["duplicate"],
            unhealthy_skipped=self._skips["unhealthy"],
            shots_discarded=self._discarded,
            reauthentications=self._reauths,
            vision_checks=self._vision_checks,
            upload_retries=self._upload_retries,
            avg_feature_ms=round(sum(totals) / len(totals), 1) if totals else 0.0,
            elapsed_sec=round(elapsed, 2),
            stop_reason=self._stop_reason,
        )

    def format_summary(self, metrics: CrawlMetrics) -> str:
        """Format a human-readable summary string."""
        kinds = ", ".join(f"{k}={v}" for k, v in sorted(metrics.screens_by_kind.items())) or "none"
        lines = [
            "=" * 65,
            "  CRAWL SUMMARY",
            "=" * 65,
            f"  Features:            {metrics.features_documented} documented / {metrics.features_total} planned",
            f"  Features skipped:    {metrics.features_skipped}",
            f"  Features failed:     {metrics.features_failed}",
            "-" * 65,
            f"  Screens captured:    {metrics.screens_captured} ({kinds})",
            f"  Duplicates skipped:  {metrics.duplicates_skipped}",
            f"  Unhealthy skipped:   {metrics.unhealthy_skipped}",
            f"  Unchanged discarded: {metrics.shots_discarded}",
            "-" * 65,
            f"  Re-authentications:  {metrics.reauthentications}",
            f"  Vision checks:       {metrics.vision_checks}",
            f"  Upload retries:      {metrics.upload_retries}",
            "-" * 65,
            f"  Avg feature time:    {metrics.avg_feature_ms / 1000:.1f} s",
            f"  Elapsed time:        {metrics.elapsed_sec:.1f} s",
            f"  Stop reason:         {metrics.stop_reason}",
            "=" * 65,
        ]
        return "\n".join(lines)
