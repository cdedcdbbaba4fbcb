"""Unit tests for PersonalizationEngine and the chat-completions client.

HTTP is mocked with respx; no request leaves the process.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import httpx
import pytest
import respx

from fakes import CountingLimiter
from site_personalizer.core.exceptions import GenerationError
from site_personalizer.personalization.engine import PersonalizationEngine
from site_personalizer.personalization.openai_client import build_payload, extract_content
from site_personalizer.personalization.prompts import SYSTEM_PROMPT

_URL = "https://api.openai.com/v1/chat/completions"
_CONTENT = [{"markdown": "We repair bikes"}]


def _completion(text: str | None) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def _engine(http: httpx.AsyncClient, limiter: CountingLimiter | None = None) -> PersonalizationEngine:
    return PersonalizationEngine(http, api_key="sk-test", api_url=_URL, rate_limiter=limiter)


class TestPayload:
    def test_build_payload(self) -> None:
        payload = build_payload("hello", "gpt-4o-mini", 0.7, 200)

        assert payload["messages"][0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert payload["messages"][1] == {"role": "user", "content": "hello"}
        assert payload["max_tokens"] == 200

    def test_extract_content_strips(self) -> None:
        assert extract_content(_completion("  Hi there!  ")) == "Hi there!"

    def test_extract_content_no_choices(self) -> None:
        with pytest.raises(GenerationError):
            extract_content({"choices": []})

    def test_extract_content_empty_message(self) -> None:
        with pytest.raises(GenerationError):
            extract_content(_completion("   "))


class TestRenderPrompt:
    def test_custom_prompt_wins(self) -> None:
        engine = PersonalizationEngine(MagicMock(), api_key="k")

        prompt = engine.render_prompt(_CONTENT, "intro", custom_prompt="Say hi.")

        assert prompt.startswith("Say hi.\n\nWebsite content:")

    def test_custom_template_without_prompt_raises(self) -> None:
        engine = PersonalizationEngine(MagicMock(), api_key="k")

        with pytest.raises(GenerationError):
            engine.render_prompt(_CONTENT, "custom_haiku")

    def test_unknown_template_raises(self) -> None:
        engine = PersonalizationEngine(MagicMock(), api_key="k")

        with pytest.raises(GenerationError, match="Unknown prompt type: nope"):
            engine.render_prompt(_CONTENT, "nope")


class TestGenerate:
    async def test_generate_returns_reply_and_takes_one_slot(self) -> None:
        limiter = CountingLimiter()
        with respx.mock:
            route = respx.post(_URL).mock(
                return_value=httpx.Response(200, json=_completion("I was checking out your site!"))
            )
            async with httpx.AsyncClient() as http:
                text = await _engine(http, limiter).generate(_CONTENT, "intro", business_name="Spokes")

        assert text == "I was checking out your site!"
        assert limiter.acquired == 1
        assert route.call_count == 1
        request = route.calls.last.request
        assert request.headers["Authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert "Spokes's website" in body["messages"][1]["content"]

    async def test_summarize_uses_summary_template(self) -> None:
        with respx.mock:
            route = respx.post(_URL).mock(
                return_value=httpx.Response(200, json=_completion("A bike repair shop."))
            )
            async with httpx.AsyncClient() as http:
                summary = await _engine(http).summarize(_CONTENT)

        assert summary == "A bike repair shop."
        body = json.loads(route.calls.last.request.content)
        assert "less than 30 word summary" in body["messages"][1]["content"]

    async def test_429_carries_retry_after(self) -> None:
        with respx.mock:
            respx.post(_URL).mock(
                return_value=httpx.Response(
                    429,
                    json={"error": {"message": "Rate limit reached"}},
                    headers={"Retry-After": "20"},
                )
            )
            async with httpx.AsyncClient() as http:
                with pytest.raises(GenerationError) as exc_info:
                    await _engine(http).generate(_CONTENT, "ps")

        assert exc_info.value.retry_after == 20.0
        assert exc_info.value.template == "ps"

    async def test_provider_error_message_is_surfaced(self) -> None:
        with respx.mock:
            respx.post(_URL).mock(
                return_value=httpx.Response(400, json={"error": {"message": "Bad model"}})
            )
            async with httpx.AsyncClient() as http:
                with pytest.raises(GenerationError, match="Bad model"):
                    await _engine(http).generate(_CONTENT, "intro")

    async def test_network_error(self) -> None:
        with respx.mock:
            respx.post(_URL).mock(side_effect=httpx.ConnectError("refused"))
            async with httpx.AsyncClient() as http:
                with pytest.raises(GenerationError):
                    await _engine(http).generate(_CONTENT, "intro")

    async def test_unknown_template_makes_no_request(self) -> None:
        limiter = CountingLimiter()
        with respx.mock(assert_all_called=False):
            route = respx.post(_URL)
            async with httpx.AsyncClient() as http:
                with pytest.raises(GenerationError):
                    await _engine(http, limiter).generate(_CONTENT, "nope")

        assert route.call_count == 0
        assert limiter.acquired == 0
