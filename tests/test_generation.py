"""Tests for model-output parsing and the generation fallbacks."""

import asyncio

import pytest

from doccrawler.errors import GenerationError
from doccrawler.generation import AnthropicGenerator, ContentGenerator, generate_json, parse_json_response

from conftest import FakeGenerator


class SlowGenerator(ContentGenerator):
    async def generate(self, prompt, image=None, *, reference_image=None, max_tokens=4096, temperature=0.0):
        await asyncio.sleep(1)
        return "{}"


class TestParseJsonResponse:

    def test_plain(self):
        assert parse_json_response('{"score": 7}') == {"score": 7}

    def test_code_fence(self):
        assert parse_json_response('```json\n{"score": 7}\n```') == {"score": 7}

    def test_prose_around_object(self):
        assert parse_json_response('Sure! {"changed": true} Hope that helps.') == {"changed": True}

    def test_prose_around_array(self):
        assert parse_json_response("Plans follow: [1, 2]") == [1, 2]

    def test_unrecoverable(self):
        with pytest.raises(ValueError):
            parse_json_response("I could not read the screenshot")


class TestGenerateJson:

    def test_success(self):
        gen = FakeGenerator({"rate": {"score": 8}})
        assert asyncio.run(generate_json(gen, "rate this", fallback={})) == {"score": 8}

    def test_generation_error_gives_fallback(self, failing_generator):
        fallback = {"score": 5}
        result = asyncio.run(generate_json(failing_generator, "rate this", fallback=fallback))
        assert result == fallback
        result["score"] = 1
        assert fallback == {"score": 5}

    def test_timeout_gives_fallback(self):
        result = asyncio.run(generate_json(SlowGenerator(), "x", fallback=[], timeout=0.01))
        assert result == []

    def test_wrong_type_gives_fallback(self):
        gen = FakeGenerator(default=[{"description": "x"}])
        assert asyncio.run(generate_json(gen, "x", fallback={})) == {}

    def test_garbage_gives_fallback(self):
        gen = FakeGenerator(default="no json here")
        assert asyncio.run(generate_json(gen, "x", fallback={"a": 1})) == {"a": 1}


class TestAnthropicGenerator:

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(GenerationError):
            AnthropicGenerator()

    def test_reference_image_sent_first(self, monkeypatch):
        gen = AnthropicGenerator(api_key="test-key")
        sent = {}

        async def fake_attempt(content, max_tokens, temperature):
            sent["content"] = content
            return "{}"

        monkeypatch.setattr(gen, "_attempt", fake_attempt)
        asyncio.run(gen.generate("compare", b"after", reference_image=b"before"))

        kinds = [block["type"] for block in sent["content"]]
        assert kinds == ["image", "image", "text"]
        # base64 of b"before"
        assert sent["content"][0]["source"]["data"] == "YmVmb3Jl"

    def test_model_from_environment(self, monkeypatch):
        monkeypatch.setenv("DOCCRAWLER_MODEL", "claude-test")
        assert AnthropicGenerator(api_key="k").model == "claude-test"
