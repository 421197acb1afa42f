"""
Content Generation Service
==========================
Structured text and vision analysis backed by Anthropic's Messages API.

The pipeline only ever asks for JSON-shaped answers.  Model output is
untrusted: ``generate_json`` wraps every call with a timeout, strips code
fences, and substitutes a caller-supplied fallback on any failure so that a
bad answer degrades a stage instead of crashing it.

Usage::

    generator = AnthropicGenerator()          # reads ANTHROPIC_API_KEY
    data = await generate_json(
        generator, prompt, fallback={"score": 5}, image=png_bytes,
    )
"""

from __future__ import annotations

import asyncio
import base64
import copy
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import anthropic

from .errors import GenerationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"
DEFAULT_MAX_TOKENS = 4096
RATE_LIMIT_WAIT_S = 60.0

_FENCE_START = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_END = re.compile(r"\n?```\s*$")


class ContentGenerator(ABC):
    """Abstract generation service: prompt (+ optional images) in, text out."""

    @abstractmethod
    async def generate(self, prompt: str, image: Optional[bytes] = None, *,
                       reference_image: Optional[bytes] = None,
                       max_tokens: int = DEFAULT_MAX_TOKENS,
                       temperature: float = 0.0) -> str:
        """Return the model's text answer.

        ``reference_image`` is sent before ``image`` for before/after
        comparisons.  Raises ``GenerationError`` on failure.
        """


class AnthropicGenerator(ContentGenerator):
    """``ContentGenerator`` on the Anthropic async client.

    A rate-limit response is retried once after ``rate_limit_wait_s``.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 request_timeout: float = 120.0,
                 rate_limit_wait_s: float = RATE_LIMIT_WAIT_S):
        key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        if not key:
            raise GenerationError("Missing ANTHROPIC_API_KEY")
        self.model = model or os.environ.get("DOCCRAWLER_MODEL", DEFAULT_MODEL)
        self.rate_limit_wait_s = rate_limit_wait_s
        self._client = anthropic.AsyncAnthropic(api_key=key, timeout=request_timeout)

    async def generate(self, prompt: str, image: Optional[bytes] = None, *,
                       reference_image: Optional[bytes] = None,
                       max_tokens: int = DEFAULT_MAX_TOKENS,
                       temperature: float = 0.0) -> str:
        content = []
        for img in (reference_image, image):
            if img:
                content.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": "image/png",
                        "data": base64.b64encode(img).decode("ascii"),
                    },
                })
        content.append({"type": "text", "text": prompt})

        try:
            return await self._attempt(content, max_tokens, temperature)
        except anthropic.RateLimitError:
            logger.warning(
                f"[LLM] Rate limited. Waiting {self.rate_limit_wait_s:.0f}s and retrying..."
            )
            await asyncio.sleep(self.rate_limit_wait_s)
            try:
                return await self._attempt(content, max_tokens, temperature)
            except anthropic.APIError as e:
                raise GenerationError(f"Generation failed after rate-limit retry: {e}") from e
        except anthropic.APIError as e:
            raise GenerationError(f"Generation failed: {e}") from e

    async def _attempt(self, content: list, max_tokens: int, temperature: float) -> str:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": content}],
        )
        for block in response.content:
            if block.type == "text":
                return block.text
        raise GenerationError("No text block in model response")


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def parse_json_response(raw: str) -> Any:
    """Parse a model answer as JSON, tolerating ``` fences and surrounding prose.

    Raises ``ValueError`` when no JSON value can be recovered.
    """
    cleaned = (raw or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_END.sub("", _FENCE_START.sub("", cleaned))
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Prose around a single object/array: take the outermost bracketed span
    for opener, closer in (("{", "}"), ("[", "]")):
        start, end = cleaned.find(opener), cleaned.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(cleaned[start:end + 1])
            except json.JSONDecodeError:
                continue
    raise ValueError(f"Unparseable model response: {cleaned[:120]!r}")


async def generate_json(generator: ContentGenerator, prompt: str, fallback: Any, *,
                        image: Optional[bytes] = None,
                        reference_image: Optional[bytes] = None,
                        timeout: float = 30.0,
                        max_tokens: int = DEFAULT_MAX_TOKENS,
                        temperature: float = 0.0,
                        label: str = "generation") -> Any:
    """Call the generator and parse JSON, returning a copy of ``fallback`` on any failure.

    ``fallback`` must match the expected top-level type (dict or list); an
    answer of the wrong type is treated as malformed.
    """
    try:
        raw = await asyncio.wait_for(
            generator.generate(
                prompt, image,
                reference_image=reference_image,
                max_tokens=max_tokens,
                temperature=temperature,
            ),
            timeout=timeout,
        )
        data = parse_json_response(raw)
    except asyncio.TimeoutError:
        logger.warning(f"[LLM] {label}: timed out after {timeout:.0f}s, using fallback")
        return copy.deepcopy(fallback)
    except (GenerationError, ValueError) as e:
        logger.warning(f"[LLM] {label}: {e}, using fallback")
        return copy.deepcopy(fallback)

    if fallback is not None and not isinstance(data, type(fallback)):
        logger.warning(f"[LLM] {label}: expected {type(fallback).__name__}, got {type(data).__name__}")
        return copy.deepcopy(fallback)
    return data
