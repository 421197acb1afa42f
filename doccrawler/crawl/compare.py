"""
"Did the page meaningfully change?"

Three tiers, cheapest first:

1. Byte-size delta of the two PNGs at or above ``byte_delta_threshold``
   counts as changed.
2. Otherwise, while the feature still has vision checks left, ask the
   generation service to compare the two images.
3. Otherwise (or if the vision answer is unusable) fall back to the
   byte-prefix heuristic: a small size delta *and* an identical prefix
   means unchanged.
"""

from __future__ import annotations

import logging

from ..generation import ContentGenerator, generate_json
from ..monitor import CrawlMonitor
from ..prompts import content_changed_prompt
from .config import CrawlConfig

logger = logging.getLogger(__name__)


def prefix_heuristic_changed(before: bytes, after: bytes, prefix_bytes: int = 1000,
                             small_delta_bytes: int = 500) -> bool:
    if abs(len(before) - len(after)) < small_delta_bytes:
        if before[:prefix_bytes] == after[:prefix_bytes]:
            return False
    return True


class ChangeDetector:
    def __init__(self, generator: ContentGenerator, config: CrawlConfig, monitor: CrawlMonitor):
        self.generator = generator
        self.config = config
        self.monitor = monitor

    async def has_changed(self, before: bytes, after: bytes, checks_used: int) -> "tuple[bool, int]":
        """Return ``(changed, checks_used)`` with the vision-check counter updated."""
        delta = abs(len(before) - len(after))
        if delta >= self.config.byte_delta_threshold:
            logger.debug(f"[DOCUMENT] Byte delta {delta} >= threshold, changed")
            return True, checks_used

        if checks_used < self.config.vision_checks_per_feature:
            checks_used += 1
            self.monitor.record_vision_check()
            verdict = await generate_json(
                self.generator, content_changed_prompt(), fallback={},
                image=after, reference_image=before,
                timeout=self.config.generation_timeout_s, max_tokens=150,
                label="change check",
            )
            if isinstance(verdict.get("changed"), bool):
                logger.debug(f"[DOCUMENT] Vision check: changed={verdict['changed']} {verdict.get('reason', '')}")
                return verdict["changed"], checks_used

        changed = prefix_heuristic_changed(
            before, after, self.config.prefix_bytes, self.config.small_delta_bytes,
        )
        return changed, checks_used
