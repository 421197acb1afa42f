"""
Feature Selection Engine
========================
Ranks discovered routes and caps them into documentable features.

Deterministic and side-effect free: identical inputs always yield identical
``selected`` / ``additional`` lists and priorities.  Steps:

1. Drop non-candidates (landing, auth, pricing, legal, error) by pattern.
   The post-login landing route is always kept.
2. With pre-scan scores, drop candidates below the documentation-value
   midpoint (5/10).
3. Derive a display name (pre-scan suggestion → route for generic titles →
   cleaned page title → route).
4. Score: pre-scan value × 20 when scanned, otherwise the keyword heuristic;
   +200 for the post-login landing route.
5. Drop negative scores.
6. De-duplicate by slug (first occurrence wins).
7. Merge 2+ siblings sharing a parent category into one feature.
8. Sort descending; the top ``max_features`` become *selected*, the rest
   *additional* (title + description only).
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    AdditionalFeature,
    DiscoveryResult,
    Feature,
    FeatureSelectionResult,
    PageScanResult,
    SubPage,
)

logger = logging.getLogger(__name__)

# Pre-scan verdicts at or above this value are worth documenting
DOCUMENTATION_VALUE_THRESHOLD = 5
PRESCAN_SCORE_MULTIPLIER = 20
POST_LOGIN_BOOST = 200
GROUP_BONUS = 10
SLUG_MAX_LEN = 60


# ---------------------------------------------------------------------------
# Route patterns
# ---------------------------------------------------------------------------

EXCLUDE_PATTERNS = [
    re.compile(r"^/?$"),
    re.compile(r"/(sign-in|signin|login|log-in)", re.IGNORECASE),
    re.compile(r"/(sign-up|signup|register)", re.IGNORECASE),
    re.compile(r"/(auth|oauth|callback)", re.IGNORECASE),
    re.compile(r"/(pricing|plans)", re.IGNORECASE),
    re.compile(r"/(error|404|500)", re.IGNORECASE),
    re.compile(r"/(terms|privacy|legal)", re.IGNORECASE),
    re.compile(r"/(verify|confirm|reset)", re.IGNORECASE),
]

# (keywords, bonus): every matching group adds its bonus once
_KEYWORD_SCORES = [
    (("profile", "account", "settings"), 90),
    (("team", "member", "user", "people"), 85),
    (("project", "task", "issue", "ticket"), 80),
    (("invoice", "billing", "payment", "subscription"), 75),
    (("calendar", "schedule", "event"), 70),
    (("report", "analytics", "insight"), 65),
    (("security", "password", "2fa"), 60),
    (("activity", "log", "audit", "history"), 55),
    (("notification", "alert", "inbox"), 50),
    (("contact", "customer", "client", "lead"), 75),
    (("order", "product", "inventory"), 70),
    (("message", "chat", "conversation"), 65),
    (("file", "document", "media"), 50),
    (("integration", "connect", "api"), 45),
    (("e-commerce", "ecommerce"), 80),
    (("table", "data"), 40),
    (("form",), 35),
]

# UI component showcase routes (template demos, not end-user features)
_COMPONENT_PAGES = (
    "button", "badge", "avatar", "modal", "alert", "tooltip", "image",
    "video", "icon", "card", "tab", "breadcrumb", "pagination", "progress",
    "spinner", "divider", "ribbon",
)

_FRAMEWORK_PREFIXES = (
    "Next.js ", "NextJS ", "React ", "ReactJS ", "Vue ", "VueJS ",
    "Angular ", "Svelte ", "Nuxt ", "Remix ",
)
_GENERIC_SUFFIXES = (" Page", " Template", " Component", " Demo", " Example", " View", " Screen")


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:SLUG_MAX_LEN]


def normalize_route(route: Optional[str]) -> Optional[str]:
    if route is None:
        return None
    return route.rstrip("/") or "/"


def should_exclude_route(route: str) -> bool:
    return any(p.search(route) for p in EXCLUDE_PATTERNS)


def score_feature(route: str, page_title: str, has_form: bool, has_table: bool) -> int:
    """Keyword heuristic favouring core app pages over demos and showcases."""
    r = route.lower()
    t = (page_title or "").lower()
    score = 0

    if r == "/" or re.match(r"^/dashboard/?$", r):
        score += 100
    for keywords, bonus in _KEYWORD_SCORES:
        if any(k in r for k in keywords):
            score += bonus

    if has_form:
        score += 30
    if has_table:
        score += 20
    if "chart" in r or "graph" in r:
        score += 10

    if any(k in r or k in t for k in ("blank", "empty")):
        score = -200
    if any(k in r for k in ("error", "404", "500", "not-found")):
        score = -200
    if any(k in r for k in ("sample", "demo", "example", "test")):
        score -= 50

    for comp in _COMPONENT_PAGES:
        if comp in r and "setting" not in r and "manage" not in r:
            score -= 30

    depth = len([seg for seg in route.split("/") if seg])
    if depth <= 1:
        score += 15
    elif depth == 2:
        score += 5

    return score


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------

def _split_title(title: str) -> List[str]:
    parts = re.split(r"\s*[|–—]\s*", title)
    if len(parts) > 1:
        return parts
    return re.split(r"\s+-\s+", title)


def clean_page_title(raw_title: str, app_name: str = "") -> str:
    """Strip separators, framework prefixes, generic suffixes and the app name."""
    title = _split_title(raw_title or "")[0].strip()

    for prefix in _FRAMEWORK_PREFIXES:
        if title.startswith(prefix):
            title = title[len(prefix):].strip()

    for suffix in _GENERIC_SUFFIXES:
        if title.endswith(suffix) and len(title) > len(suffix) + 2:
            title = title[: -len(suffix)].strip()

    if app_name and len(app_name) > 1:
        title = re.sub(re.escape(app_name), "", title, flags=re.IGNORECASE).strip()
        title = re.sub(r"^[\s|–—-]+|[\s|–—-]+$", "", title).strip()

    title = re.sub(r"\s+", " ", title).strip()
    return title if len(title) >= 2 else ""


def detect_app_name_from_titles(candidates: Iterable[DiscoveryResult]) -> str:
    """Find an app name repeated as a title suffix (e.g. ``"Orders | Acme"``)."""
    titles = [(c.page_title or "").strip() for c in candidates]
    titles = [t for t in titles if t]
    if len(titles) < 2:
        return ""

    suffixes = []
    for t in titles:
        match = re.search(r"\s*[|–—]\s*(.+)$", t) or re.search(r"\s+-\s+(.+)$", t)
        if match:
            suffixes.append(match.group(1).strip())
    if len(suffixes) < 2:
        return ""

    suffix, count = Counter(suffixes).most_common(1)[0]
    if count < 2:
        return ""
    return re.split(r"\s+-\s+", suffix)[0].strip()


def derive_name_from_route(route: str) -> str:
    stripped = re.sub(r"^/?(dashboard/?)?", "", route, count=1)
    first = stripped.split("/")[0].replace("-", " ")
    name = re.sub(r"\b\w", lambda m: m.group(0).upper(), first).strip()
    return name or "Dashboard"


# ---------------------------------------------------------------------------
# Candidate filtering
# ---------------------------------------------------------------------------

def _is_candidate(result: DiscoveryResult, post_login_route: Optional[str]) -> bool:
    if not result.is_accessible or result.has_error:
        return False
    if post_login_route and normalize_route(result.route) == post_login_route:
        return True
    return not should_exclude_route(result.route)


def get_prescan_candidates(results: Sequence[DiscoveryResult],
                           post_login_route: Optional[str] = None,
                           max_candidates: int = 15) -> List[DiscoveryResult]:
    """Candidates worth a vision pre-scan, capped by heuristic score."""
    landing = normalize_route(post_login_route)
    candidates = [r for r in results if _is_candidate(r, landing)]
    if len(candidates) <= max_candidates:
        return candidates

    logger.info(
        f"[PLANNER] {len(candidates)} candidates exceeds max {max_candidates}, "
        f"using heuristic pre-filter"
    )
    ranked = sorted(
        candidates,
        key=lambda c: score_feature(c.route, c.page_title, c.has_form, c.has_table),
        reverse=True,
    )
    return ranked[:max_candidates]


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def select_features(results: Sequence[DiscoveryResult],
                    max_features: int,
                    post_login_route: Optional[str] = None,
                    prescan_results: Optional[Sequence[PageScanResult]] = None,
                    parent_categories: Optional[Dict[str, str]] = None,
                    ) -> FeatureSelectionResult:
    """Rank ``results`` and split them into selected and additional features.

    Args:
        results:           Raw discovery output.
        max_features:      Budget-derived cap on the selected list.
        post_login_route:  Route the app lands on after login; always kept
                           and boosted.
        prescan_results:   Optional per-route vision scores.
        parent_categories: Optional ``route -> category`` hints, merged over
                           each result's own ``parent_category``.
    """
    landing = normalize_route(post_login_route)
    candidates = [r for r in results if _is_candidate(r, landing)]
    logger.info(
        f"[PLANNER] {len(results)} discovered pages, {len(candidates)} candidates, "
        f"budget {max_features} features"
    )

    scans: Dict[str, PageScanResult] = {s.route: s for s in (prescan_results or [])}

    if scans:
        worth: List[DiscoveryResult] = []
        excluded: List[PageScanResult] = []
        for c in candidates:
            scan = scans.get(c.route)
            if scan is None:
                if score_feature(c.route, c.page_title, c.has_form, c.has_table) >= 0:
                    worth.append(c)
            elif scan.documentation_value >= DOCUMENTATION_VALUE_THRESHOLD:
                worth.append(c)
            else:
                excluded.append(scan)
        for e in excluded:
            logger.info(f"[PLANNER]   EXCLUDED {e.route} (score={e.documentation_value}) {e.reason}")
        candidates = sorted(
            worth,
            key=lambda c: scans[c.route].documentation_value if c.route in scans else DOCUMENTATION_VALUE_THRESHOLD,
            reverse=True,
        )

    app_name = detect_app_name_from_titles(candidates)
    if app_name:
        logger.info(f'[PLANNER] Detected app name from titles: "{app_name}"')

    title_counts = Counter((c.page_title or "").strip() for c in candidates)
    common_title, common_count = title_counts.most_common(1)[0] if title_counts else ("", 0)
    generic_titles = common_count > 1

    # ── Name + score each candidate ──────────────────────────────────
    scored: List[tuple] = []
    for idx, c in enumerate(candidates):
        scan = scans.get(c.route)
        name = ""
        if scan and 2 <= len(scan.suggested_name) <= 50:
            name = scan.suggested_name
        elif generic_titles and c.page_title == common_title:
            name = derive_name_from_route(c.route)
        else:
            cleaned = clean_page_title(c.page_title, app_name)
            if cleaned and cleaned.lower() != "dashboard" and len(cleaned) <= 40:
                name = cleaned
            else:
                name = derive_name_from_route(c.route)

        if scan:
            score = scan.documentation_value * PRESCAN_SCORE_MULTIPLIER
        else:
            score = score_feature(c.route, c.page_title, c.has_form, c.has_table)
        if landing and normalize_route(c.route) == landing:
            score += POST_LOGIN_BOOST
            logger.info(f"[PLANNER] Homepage boost (+{POST_LOGIN_BOOST}) for {c.route}")

        feature = Feature(
            id=f"feature-{idx + 1}",
            name=name,
            slug=slugify(name),
            description=f"{name} feature page",
            route=c.route,
            has_form=c.has_form,
            priority=idx + 1,
        )
        scored.append((score, feature))

    scored.sort(key=lambda item: item[0], reverse=True)
    for score, f in scored:
        logger.debug(f"[PLANNER]   score={score:>4} | {f.name} ({f.route})")

    # ── Floor + slug de-dup ──────────────────────────────────────────
    unique: List[tuple] = []
    seen_slugs = set()
    for score, f in scored:
        if score < 0 or f.slug in seen_slugs:
            continue
        seen_slugs.add(f.slug)
        unique.append((score, f))

    # ── Parent-category grouping ─────────────────────────────────────
    route_to_parent = {r.route: r.parent_category for r in results if r.parent_category}
    route_to_parent.update(parent_categories or {})

    groups: Dict[str, List[tuple]] = {}
    ungrouped: List[tuple] = []
    for item in unique:
        parent = route_to_parent.get(item[1].route)
        if parent:
            groups.setdefault(parent, []).append(item)
        else:
            ungrouped.append(item)

    merged: List[tuple] = []
    for parent, children in groups.items():
        if len(children) < 2:
            ungrouped.extend(children)
            continue
        parent_slug = slugify(parent)
        if parent_slug in seen_slugs:
            # A standalone page already owns this slug; keep the children separate
            ungrouped.extend(children)
            continue
        seen_slugs.add(parent_slug)
        logger.info(
            f'[PLANNER] Grouping "{parent}" with {len(children)} sub-pages: '
            f'{", ".join(f.name for _, f in children)}'
        )
        best = max(score for score, _ in children)
        merged.append((best + GROUP_BONUS, Feature(
            id=f"feature-group-{parent_slug}",
            name=parent,
            slug=parent_slug,
            description=f"{parent} feature with {len(children)} sections",
            route=children[0][1].route,
            has_form=any(f.has_form for _, f in children),
            sub_pages=[SubPage(name=f.name, route=f.route) for _, f in children],
        )))

    ranked = merged + ungrouped
    ranked.sort(key=lambda item: item[0], reverse=True)

    selected = [f for _, f in ranked[:max_features]]
    for i, f in enumerate(selected, 1):
        f.priority = i
    additional = [AdditionalFeature(title=f.name, description=f.description)
                  for _, f in ranked[max_features:]]

    logger.info(f"[PLANNER] Selected {len(selected)} features, {len(additional)} additional")
    for f in selected:
        logger.info(f"[PLANNER]   {f.priority}. {f.name} ({f.route}){' [has form]' if f.has_form else ''}")
    return FeatureSelectionResult(selected=selected, additional=additional)
