"""
Code and PRD analysis collaborators.

Neither is part of the crawl itself: a ``CodeAnalyzer`` may supply a crawl
plan (routes plus component metadata), and the PRD summarizer condenses a
requirements document into context for screen analysis.  Both degrade to
empty defaults.
"""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from .generation import ContentGenerator, generate_json
from .prompts import prd_summary_prompt

logger = logging.getLogger(__name__)

PRD_MAX_CHARS = 40000

DEFAULT_PRD_SUMMARY: Dict[str, Any] = {
    "product_name": "",
    "product_purpose": "",
    "target_users": [],
    "main_features": [],
    "key_workflows": [],
    "user_roles": [],
    "terminology": {},
}


class CodeAnalyzer(ABC):
    @abstractmethod
    async def analyze(self, app_url: str) -> Dict[str, Any]:
        """Return a crawl plan ``{"routes": [{"path", "component", ...}]}`` or ``{}``."""


class NullCodeAnalyzer(CodeAnalyzer):
    async def analyze(self, app_url: str) -> Dict[str, Any]:
        return {}


class CrawlPlanFileAnalyzer(CodeAnalyzer):
    """Reads a crawl plan produced ahead of time by a repository scan."""

    def __init__(self, path: str):
        self.path = Path(path)

    async def analyze(self, app_url: str) -> Dict[str, Any]:
        plan = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(plan, dict):
            raise ValueError(f"crawl plan in {self.path} is not an object")
        logger.info(f"[PIPELINE] Loaded crawl plan with {len(plan.get('routes') or [])} routes")
        return plan


async def summarize_prd(generator: ContentGenerator, prd_text: Optional[str],
                        max_chars: int = PRD_MAX_CHARS, timeout: float = 60.0) -> Dict[str, Any]:
    if not prd_text or not prd_text.strip():
        return copy.deepcopy(DEFAULT_PRD_SUMMARY)

    text = prd_text
    if len(text) > max_chars:
        logger.info(f"[PIPELINE] PRD truncated from {len(text)} to {max_chars} chars")
        text = text[:max_chars]

    summary = await generate_json(
        generator, prd_summary_prompt(text), fallback={},
        timeout=timeout, max_tokens=4096, label="PRD summary",
    )
    merged = copy.deepcopy(DEFAULT_PRD_SUMMARY)
    merged.update({k: v for k, v in summary.items() if k in merged})
    return merged
