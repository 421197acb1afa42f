"""
Browser automation layer.

``BrowserSession`` is the abstract service every stage depends on; the
Playwright implementation lives in ``playwright_session`` and is imported
explicitly by callers that need a real browser.
"""

from .base import BrowserSession, Observation

__all__ = ["BrowserSession", "Observation"]
