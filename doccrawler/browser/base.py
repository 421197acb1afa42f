"""
Browser Automation Service: abstract interface
==============================================
Every crawl stage talks to the browser through ``BrowserSession``.

Natural-language operations (``act`` / ``observe``) are interpreted by an
AI layer and are therefore non-deterministic: callers must treat each one as
a fallible external operation with its own timeout, and catch
``BrowserActionError`` at the step that issued it.

One session per job, used strictly sequentially.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Observation:
    """One element (or fact) reported by ``observe``."""
    description: str
    selector: str = ""


class BrowserSession(ABC):
    """
    Abstract browser session.

    Subclasses must implement the six primitives; ``settle`` and ``wait``
    have sensible defaults built on ``asyncio.sleep``.
    """

    settle_delay_s: float = 1.0

    @abstractmethod
    async def navigate(self, url: str, timeout: float = 30.0) -> None:
        """Load ``url``.  Raises ``BrowserActionError`` on failure or timeout."""

    @abstractmethod
    async def act(self, instruction: str, timeout: float = 15.0,
                  variables: Optional[Dict[str, str]] = None) -> None:
        """Perform a natural-language action.

        ``variables`` are substituted for ``%name%`` placeholders *after* the
        instruction has been interpreted, so secrets never reach the
        interpretation layer.  Raises ``BrowserActionError`` on failure.
        """

    @abstractmethod
    async def observe(self, query: str, timeout: float = 10.0) -> List[Observation]:
        """Describe elements matching a natural-language query."""

    @abstractmethod
    async def screenshot(self) -> bytes:
        """PNG bytes of the current viewport."""

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run a JS function expression in the page and return its value."""

    @abstractmethod
    async def current_url(self) -> str:
        ...

    async def settle(self) -> None:
        """Wait for the page to go quiet after a navigation or action."""
        await self.wait(self.settle_delay_s)

    async def wait(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "BrowserSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
