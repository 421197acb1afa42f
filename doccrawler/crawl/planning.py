"""
Turning model output into crawl decisions.

The generation service answers in loosely-shaped JSON; these helpers coerce
it into ``PageUnderstanding`` / ``ScreenshotPlan`` objects and apply the
action-safety rules before anything reaches the browser.
"""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional, Sequence

from ..browser.base import Observation
from ..models import Complexity, Feature, InteractiveElement, PageUnderstanding, ScreenshotPlan

logger = logging.getLogger(__name__)

UNSAFE_ACTION_WORDS = (
    "delete", "remove", "send", "invite", "share", "pay", "cancel", "deactivate", "reset",
)
SAFE_SUBMIT_LABELS = (
    "save", "update", "create", "add", "apply", "search", "filter", "next", "submit",
)

# Element types that only navigate or display; probing them teaches nothing
TRIVIAL_ELEMENT_TYPES = {"link", "table", "other"}

_UNSAFE_RE = re.compile(r"\b(" + "|".join(UNSAFE_ACTION_WORDS) + r")\w*\b", re.IGNORECASE)
_QUOTED_RE = re.compile(r"[\"'“‘]([^\"'”’]{1,40})[\"'”’]")


def is_unsafe(text: str) -> bool:
    return bool(_UNSAFE_RE.search(text or ""))


def _str_list(value: Any, limit: int) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()][:limit]


def default_understanding(feature: Feature) -> PageUnderstanding:
    """Used when the hero analysis fails: moderate, so the document phase still plans."""
    return PageUnderstanding(
        purpose=feature.description or f"The {feature.name} page",
        complexity=Complexity.MODERATE,
    )


def parse_understanding(data: Any, feature: Feature, max_elements: int = 12) -> PageUnderstanding:
    if not isinstance(data, dict) or not data:
        return default_understanding(feature)

    elements = []
    for raw in data.get("interactiveElements") or []:
        if not isinstance(raw, dict):
            continue
        description = str(raw.get("description") or "").strip()
        if not description:
            continue
        elements.append(InteractiveElement(
            description=description,
            type=str(raw.get("type") or "other").strip().lower(),
            probe_instruction=str(raw.get("probeInstruction") or "").strip(),
        ))

    cta = data.get("emptyStateCta")
    return PageUnderstanding(
        purpose=str(data.get("purpose") or feature.description or "").strip(),
        user_goals=_str_list(data.get("userGoals"), 4),
        interactive_elements=elements[:max_elements],
        is_empty_state=bool(data.get("isEmptyState")),
        empty_state_cta=str(cta).strip() if cta else None,
        related_features=_str_list(data.get("relatedFeatures"), 10),
        complexity=Complexity.parse(data.get("complexity"), Complexity.MODERATE),
    )


def probe_targets(understanding: PageUnderstanding, limit: int = 3) -> List[InteractiveElement]:
    """Non-trivial, safe elements worth a quick exploratory click."""
    targets = []
    for element in understanding.interactive_elements:
        if element.type in TRIVIAL_ELEMENT_TYPES:
            continue
        if is_unsafe(element.description) or is_unsafe(element.probe_instruction):
            logger.debug(f"[EXPLORE] Not probing unsafe element: {element.description}")
            continue
        targets.append(element)
        if len(targets) >= limit:
            break
    return targets


def probe_instruction(element: InteractiveElement) -> str:
    return element.probe_instruction or f'Click the "{element.description}"'


def parse_plans(data: Any, max_plans: int = 2) -> List[ScreenshotPlan]:
    """Coerce plan JSON, drop unsafe plans, keep at most ``max_plans``."""
    if isinstance(data, dict):
        data = data.get("plans") or data.get("screenshots") or []
    if not isinstance(data, list):
        return []

    plans: List[ScreenshotPlan] = []
    for raw in data:
        if not isinstance(raw, dict):
            continue
        actions = _str_list(raw.get("actions"), 8)
        if not actions:
            continue
        plan = ScreenshotPlan(
            description=str(raw.get("description") or "").strip(),
            actions=actions,
            value=str(raw.get("value") or "").strip(),
            submit_after=bool(raw.get("submitAfter")),
            capture_result=bool(raw.get("captureResult")),
        )
        if any(is_unsafe(a) for a in plan.actions):
            logger.warning(f"[DOCUMENT] Dropping unsafe plan: {plan.description}")
            continue
        plans.append(plan)
        if len(plans) >= max_plans:
            break
    return plans


def _label_from(description: str) -> str:
    quoted = _QUOTED_RE.search(description)
    if quoted:
        return quoted.group(1).strip()
    return description.strip()


def pick_safe_submit(observations: Sequence[Observation]) -> Optional[str]:
    """Label of the first observed button that is a known safe submit."""
    for obs in observations:
        label = _label_from(obs.description)
        if not label or is_unsafe(label) or is_unsafe(obs.description):
            continue
        words = set(re.findall(r"[a-z]+", label.lower()))
        if words & set(SAFE_SUBMIT_LABELS):
            return label
    return None
