"""
Job Data Model
==============
Records shared by every stage of the documentation pipeline.

Lifecycle overview:

- ``Job``: one documentation run; owned by the orchestrator
- ``DiscoveryResult``: one visited route, produced once by discovery
- ``Feature``: a page (or merged page group) selected for docs
- ``PageUnderstanding``: vision summary of a feature's hero shot (ephemeral)
- ``ScreenshotPlan``: one planned state change in the document phase
- ``ScreenRecord``: one persisted capture, keyed by job + order index
- ``CostEstimate``: computed spend plan, never persisted

All persisted records serialise through ``to_dict`` / ``from_dict`` so the
JSON store and the in-memory store share one wire shape.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class JobStatus(str, Enum):
    """Pipeline stages, in execution order, plus the two terminal states."""
    QUEUED = "queued"
    ANALYZING_CODE = "analyzing_code"
    ANALYZING_PRD = "analyzing_prd"
    DISCOVERING = "discovering"
    PLANNING_FEATURES = "planning_features"
    CRAWLING = "crawling"
    ANALYZING_SCREENS = "analyzing_screens"
    GENERATING_DOCS = "generating_docs"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ScreenStatus(str, Enum):
    CRAWLED = "crawled"
    ANALYZED = "analyzed"
    FAILED = "failed"


class ProgressType(str, Enum):
    INFO = "info"
    ERROR = "error"
    COMPLETE = "complete"


class ScreenType(str, Enum):
    """What a capture represents within its feature."""
    HERO = "hero"
    ACTION = "action"
    RESULT = "result"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"

    @classmethod
    def parse(cls, value: Any, default: "Complexity" = None) -> "Complexity":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return default or cls.MODERATE


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

@dataclass
class Credentials:
    """Login credentials for the target app.  Never logged, never persisted longer than needed."""
    username: str = ""
    password: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.username and self.password)

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, password='***')"


@dataclass
class Job:
    """
    One documentation run.

    ``status``, ``budget_cents`` and the timestamps are written only by the
    orchestrator; ``credentials`` is cleared by whichever stage finishes
    needing them (or by the orchestrator's failure handler).
    """
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.QUEUED
    app_url: str = ""
    login_url: Optional[str] = None
    credentials: Optional[Credentials] = None
    budget_cents: int = 0
    max_screens: Optional[int] = None

    # Stage outputs
    app_name: str = ""
    product_description: str = ""
    post_login_route: Optional[str] = None
    code_analysis: Dict[str, Any] = field(default_factory=dict)
    prd_text: str = ""
    prd_summary: Dict[str, Any] = field(default_factory=dict)
    discovered_routes: List["DiscoveryResult"] = field(default_factory=list)
    selected_features: List["Feature"] = field(default_factory=list)
    additional_features: List["AdditionalFeature"] = field(default_factory=list)
    estimated_cost_cents: int = 0

    # Outcome
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    created_at: str = field(default_factory=utc_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "app_url": self.app_url,
            "login_url": self.login_url,
            "credentials": asdict(self.credentials) if self.credentials else None,
            "budget_cents": self.budget_cents,
            "max_screens": self.max_screens,
            "app_name": self.app_name,
            "product_description": self.product_description,
            "post_login_route": self.post_login_route,
            "code_analysis": self.code_analysis,
            "prd_text": self.prd_text,
            "prd_summary": self.prd_summary,
            "discovered_routes": [r.to_dict() for r in self.discovered_routes],
            "selected_features": [f.to_dict() for f in self.selected_features],
            "additional_features": [asdict(a) for a in self.additional_features],
            "estimated_cost_cents": self.estimated_cost_cents,
            "error": self.error,
            "result": self.result,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        creds = data.get("credentials")
        return cls(
            id=data["id"],
            status=JobStatus(data.get("status", JobStatus.QUEUED.value)),
            app_url=data.get("app_url", ""),
            login_url=data.get("login_url"),
            credentials=Credentials(**creds) if creds else None,
            budget_cents=data.get("budget_cents", 0),
            max_screens=data.get("max_screens"),
            app_name=data.get("app_name", ""),
            product_description=data.get("product_description", ""),
            post_login_route=data.get("post_login_route"),
            code_analysis=data.get("code_analysis") or {},
            prd_text=data.get("prd_text", ""),
            prd_summary=data.get("prd_summary") or {},
            discovered_routes=[DiscoveryResult.from_dict(r) for r in data.get("discovered_routes", [])],
            selected_features=[Feature.from_dict(f) for f in data.get("selected_features", [])],
            additional_features=[AdditionalFeature(**a) for a in data.get("additional_features", [])],
            estimated_cost_cents=data.get("estimated_cost_cents", 0),
            error=data.get("error"),
            result=data.get("result"),
            created_at=data.get("created_at") or utc_now(),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )


@dataclass
class ProgressEntry:
    """One append-only progress log line."""
    type: ProgressType
    message: str
    screenshot_ref: Optional[str] = None
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "screenshot_ref": self.screenshot_ref,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProgressEntry":
        return cls(
            type=ProgressType(data["type"]),
            message=data["message"],
            screenshot_ref=data.get("screenshot_ref"),
            created_at=data.get("created_at") or utc_now(),
        )


# ---------------------------------------------------------------------------
# Discovery + features
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DiscoveryResult:
    """A single route visited during discovery.  Immutable once produced."""
    route: str
    page_title: str = ""
    actual_url: str = ""
    is_accessible: bool = True
    has_error: bool = False
    has_form: bool = False
    has_table: bool = False
    nav_elements: tuple = ()
    parent_category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["nav_elements"] = list(self.nav_elements)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiscoveryResult":
        return cls(
            route=data["route"],
            page_title=data.get("page_title", ""),
            actual_url=data.get("actual_url", ""),
            is_accessible=data.get("is_accessible", True),
            has_error=data.get("has_error", False),
            has_form=data.get("has_form", False),
            has_table=data.get("has_table", False),
            nav_elements=tuple(data.get("nav_elements", ())),
            parent_category=data.get("parent_category"),
        )


@dataclass
class SubPage:
    name: str
    route: str


@dataclass
class Feature:
    """A page, or a merged group of sibling pages, chosen for documentation."""
    id: str
    name: str
    slug: str
    description: str
    route: str
    has_form: bool = False
    priority: int = 0
    sub_pages: List[SubPage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feature":
        return cls(
            id=data["id"],
            name=data["name"],
            slug=data["slug"],
            description=data.get("description", ""),
            route=data["route"],
            has_form=data.get("has_form", False),
            priority=data.get("priority", 0),
            sub_pages=[SubPage(**s) for s in data.get("sub_pages", [])],
        )


@dataclass
class AdditionalFeature:
    """A candidate that did not fit the budget: title and description only."""
    title: str
    description: str


@dataclass
class FeatureSelectionResult:
    selected: List[Feature] = field(default_factory=list)
    additional: List[AdditionalFeature] = field(default_factory=list)


@dataclass
class PageScanResult:
    """Pre-scan verdict for one candidate route."""
    route: str
    documentation_value: int = 5          # 1-10
    reason: str = ""
    suggested_name: str = ""
    page_type: str = "unknown"


# ---------------------------------------------------------------------------
# Crawl
# ---------------------------------------------------------------------------

@dataclass
class InteractiveElement:
    description: str
    type: str = "other"                   # button | tab | dropdown | modal_trigger | form | ...
    probe_instruction: str = ""


@dataclass
class PageUnderstanding:
    """What the hero shot tells us about a feature page.  Consumed immediately."""
    purpose: str = ""
    user_goals: List[str] = field(default_factory=list)
    interactive_elements: List[InteractiveElement] = field(default_factory=list)
    is_empty_state: bool = False
    empty_state_cta: Optional[str] = None
    related_features: List[str] = field(default_factory=list)
    complexity: Complexity = Complexity.MODERATE
    probe_notes: List[str] = field(default_factory=list)

    @property
    def needs_documentation_phase(self) -> bool:
        return not (self.complexity == Complexity.SIMPLE and not self.interactive_elements)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["complexity"] = self.complexity.value
        return data


@dataclass
class ScreenshotPlan:
    description: str
    actions: List[str] = field(default_factory=list)
    value: str = ""
    submit_after: bool = False
    capture_result: bool = False


@dataclass
class ScreenRecord:
    """
    One persisted capture.

    ``(url, dom_hash)`` is unique per job run except for follow-up shots
    (action/result) taken while still on the feature's own URL.
    """
    job_id: str
    url: str
    route_path: str
    nav_label: str
    screenshot_ref: str
    dom_snapshot: str
    feature_id: str
    label: str                            # hero | action-N | result-N
    order_index: int
    screen_type: ScreenType = ScreenType.HERO
    dom_hash: str = ""
    code_context: Optional[Dict[str, Any]] = None
    status: ScreenStatus = ScreenStatus.CRAWLED
    analysis: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["screen_type"] = self.screen_type.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScreenRecord":
        data = dict(data)
        data["screen_type"] = ScreenType(data.get("screen_type", ScreenType.HERO.value))
        data["status"] = ScreenStatus(data.get("status", ScreenStatus.CRAWLED.value))
        return cls(**data)


# ---------------------------------------------------------------------------
# Budget
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CostEstimate:
    """Spend plan for a job.  Computed, never persisted."""
    screens_estimated: int
    features_planned: int
    features_available: int
    estimated_cost_cents: int
    user_credits_cents: int
    features_cut_for_budget: int
