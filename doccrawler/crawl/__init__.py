from .capture import CrawlError, CrawlSession, ScreenCapturer
from .compare import ChangeDetector, prefix_heuristic_changed
from .config import CrawlConfig
from .engine import CrawlEngine, CrawlResult, code_context_for
from .feature import FeatureCrawler, FeatureRun, FeatureStage
from .planning import UNSAFE_ACTION_WORDS, is_unsafe, parse_plans, parse_understanding, pick_safe_submit

__all__ = [
    "ChangeDetector",
    "CrawlConfig",
    "CrawlEngine",
    "CrawlError",
    "CrawlResult",
    "CrawlSession",
    "FeatureCrawler",
    "FeatureRun",
    "FeatureStage",
    "ScreenCapturer",
    "UNSAFE_ACTION_WORDS",
    "code_context_for",
    "is_unsafe",
    "parse_plans",
    "parse_understanding",
    "pick_safe_submit",
    "prefix_heuristic_changed",
]
