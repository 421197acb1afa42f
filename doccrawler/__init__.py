"""
doccrawler
Turns a running web application into screenshots and structured notes for
its end-user guide: log in, discover routes, pick features within a budget,
then explore and document each one.

CLI Usage:
    python -m doccrawler <url> [options]

    Options:
        --login-url     Login page URL (auto-detected when omitted)
        --username      Login username (or DOCCRAWLER_USERNAME)
        --password      Login password (or DOCCRAWLER_PASSWORD)
        --budget-cents  Credits for the job (default: 300)
        --max-screens   Screenshot cap (default: 50)
        --prd-file      Product requirements document
        --no-prescan    Skip the vision pre-scan
"""

from .budget import BudgetConfig, estimate_cost, format_cost, max_features_for_budget
from .crawl import CrawlConfig, CrawlEngine, CrawlResult, FeatureStage
from .docs import DocWriter, ManifestDocWriter
from .errors import AuthenticationError, BrowserActionError, GenerationError, PipelineError, StoreError
from .feature_selection import select_features
from .generation import AnthropicGenerator, ContentGenerator, generate_json, parse_json_response
from .models import (
    CostEstimate,
    Credentials,
    DiscoveryResult,
    Feature,
    Job,
    JobStatus,
    PageUnderstanding,
    ScreenRecord,
    ScreenshotPlan,
)
from .orchestrator import JobPipeline, PipelineConfig
from .run_config import PipelineRunConfig
from .store import JobStore, JsonJobStore, MemoryJobStore

__version__ = "0.1.0"

__all__ = [
    # Pipeline
    'JobPipeline',
    'PipelineConfig',
    'PipelineRunConfig',
    # Budget
    'BudgetConfig',
    'estimate_cost',
    'format_cost',
    'max_features_for_budget',
    # Selection + crawl
    'select_features',
    'CrawlConfig',
    'CrawlEngine',
    'CrawlResult',
    'FeatureStage',
    # Collaborators
    'ContentGenerator',
    'AnthropicGenerator',
    'generate_json',
    'parse_json_response',
    'DocWriter',
    'ManifestDocWriter',
    'JobStore',
    'JsonJobStore',
    'MemoryJobStore',
    # Models
    'CostEstimate',
    'Credentials',
    'DiscoveryResult',
    'Feature',
    'Job',
    'JobStatus',
    'PageUnderstanding',
    'ScreenRecord',
    'ScreenshotPlan',
    # Errors
    'AuthenticationError',
    'BrowserActionError',
    'GenerationError',
    'PipelineError',
    'StoreError',
]
