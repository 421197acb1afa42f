"""
Shared fakes for the pipeline tests.

``FakeBrowser`` serves scripted pages and answers ``evaluate`` calls by
recognising which in-page script was sent.  ``FakeGenerator`` routes
prompts to canned JSON by keyword.  Neither touches the network.
"""

import json
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

import pytest

from doccrawler.browser.base import BrowserSession, Observation
from doccrawler.errors import BrowserActionError, GenerationError
from doccrawler.generation import ContentGenerator
from doccrawler.store.memory import MemoryJobStore


APP = "https://app.example.com"


@dataclass
class FakePage:
    title: str = "Page"
    body: str = ""
    text: str = ""
    screenshot: bytes = b""
    has_form: bool = False
    has_table: bool = False
    has_error: bool = False
    password_fields: int = 0
    login_fields: int = 0
    nav_links: List[Dict] = field(default_factory=list)

    def html(self) -> str:
        return f"<html><head><title>{self.title}</title></head><body>{self.body or self.title}</body></html>"

    def image(self) -> bytes:
        return self.screenshot or png(self.title)


def png(seed: str, size: int = 20000) -> bytes:
    """Deterministic fake PNG bytes; different seeds differ in the first bytes."""
    head = b"\x89PNG" + seed.encode("utf-8")
    return (head * (size // len(head) + 1))[:size]


class FakeBrowser(BrowserSession):
    settle_delay_s = 0.0

    def __init__(self, pages: Optional[Dict[str, FakePage]] = None, start_url: str = "about:blank"):
        self.pages: Dict[str, FakePage] = dict(pages or {})
        self.url = start_url
        self.acts: List[str] = []
        self.act_variables: List[Optional[Dict[str, str]]] = []
        self.navigations: List[str] = []
        self.observe_queries: List[str] = []
        self.waits: List[float] = []
        # instruction substring -> callable(browser) run on a successful act
        self.act_effects: Dict[str, Callable[["FakeBrowser"], None]] = {}
        # instruction substrings whose act raises
        self.act_failures: List[str] = []
        # urls whose navigation raises
        self.navigation_failures: List[str] = []
        # query substring -> observations
        self.observations: Dict[str, List[Observation]] = {}
        # url -> url the app redirects to
        self.redirects: Dict[str, str] = {}
        # per-url override of the current screenshot (state after an action)
        self.screen_override: Dict[str, bytes] = {}

    @property
    def page(self) -> FakePage:
        path_url = self.url.split("?")[0].rstrip("/") or self.url
        return self.pages.get(self.url) or self.pages.get(path_url) or FakePage(title=self.url)

    async def navigate(self, url: str, timeout: float = 30.0) -> None:
        self.navigations.append(url)
        if url in self.navigation_failures:
            raise BrowserActionError(f"Timeout navigating to {url}")
        self.url = self.redirects.get(url, url)
        self.screen_override.pop(self.url, None)

    async def act(self, instruction: str, timeout: float = 15.0,
                  variables: Optional[Dict[str, str]] = None) -> None:
        self.acts.append(instruction)
        self.act_variables.append(variables)
        for fragment in self.act_failures:
            if fragment in instruction:
                raise BrowserActionError(f"Could not perform: {instruction}")
        for fragment, effect in self.act_effects.items():
            if fragment in instruction:
                effect(self)

    async def observe(self, query: str, timeout: float = 10.0) -> List[Observation]:
        self.observe_queries.append(query)
        for fragment, found in self.observations.items():
            if fragment in query:
                return list(found)
        return []

    async def screenshot(self) -> bytes:
        return self.screen_override.get(self.url) or self.page.image()

    async def evaluate(self, script: str, arg=None):
        page = self.page
        if "passwordInputs" in script:
            return {"passwords": page.password_fields, "textLength": len(page.text), "hasNav": False}
        if "hasForms" in script:
            return {"title": page.title, "hasForms": page.has_form, "hasTables": page.has_table,
                    "hasError": page.has_error, "navLinks": []}
        if "headingOf" in script:
            return list(page.nav_links)
        if '[class*="cookie"]' in script or "spinner" in script:
            return False
        if "scrollTo" in script:
            return None
        if 'input[type="email"]' in script:
            return page.login_fields
        if "sign in" in script:
            return None
        if "outerHTML" in script:
            return page.html()
        if "innerText" in script:
            return page.text
        if "document.title" in script:
            return page.title
        return None

    async def current_url(self) -> str:
        return self.url

    async def wait(self, seconds: float) -> None:
        self.waits.append(seconds)


Response = Union[str, dict, list, Exception, Callable[[str], str]]


class FakeGenerator(ContentGenerator):
    """Routes a prompt to the first response whose keyword appears in it."""

    def __init__(self, routes: Optional[Dict[str, Response]] = None, default: Response = "{}"):
        self.routes: Dict[str, Response] = dict(routes or {})
        self.default = default
        self.calls: List[str] = []

    def calls_matching(self, keyword: str) -> List[str]:
        return [p for p in self.calls if keyword in p]

    async def generate(self, prompt: str, image: Optional[bytes] = None, *,
                       reference_image: Optional[bytes] = None,
                       max_tokens: int = 4096, temperature: float = 0.0) -> str:
        self.calls.append(prompt)
        response = self.default
        for keyword, candidate in self.routes.items():
            if keyword in prompt:
                response = candidate
                break
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        if isinstance(response, (dict, list)):
            return json.dumps(response)
        return response


# Prompt keywords, one per template
PRESCAN = "DOCUMENTATION VALUE"
UNDERSTAND = "for an end-user guide"
PLAN = "You are planning screenshots"
CHANGED = "MAIN CONTENT AREA"
ANALYZE = "one screen of a web application"
PRD = "product requirements document"


@pytest.fixture
def store():
    return MemoryJobStore()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def failing_generator():
    return FakeGenerator(default=GenerationError("service unavailable"))
