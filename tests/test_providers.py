"""Tests for the Claude and Gemini providers."""

from __future__ import annotations

import json

import httpx
import pytest

from bilisorter.config.models import HTTPSettings, LLMSettings
from bilisorter.errors import MissingCredentialError, TransportError
from bilisorter.remote.providers import ClaudeProvider, GeminiProvider, build_provider


def _recording_client(response: httpx.Response, seen: list[httpx.Request]) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return response

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_claude_provider_sends_messages_request() -> None:
    seen: list[httpx.Request] = []
    client = _recording_client(httpx.Response(200, json={"content": [{"type": "text", "text": "hello"}]}), seen)
    provider = build_provider(LLMSettings(provider="claude", claude_api_key="sk-test"), client=client)

    text = await provider.complete("prompt", "system")

    assert isinstance(provider, ClaudeProvider)
    assert text == "hello"
    request = seen[0]
    assert request.url == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-test"
    assert request.headers["anthropic-version"] == "2023-06-01"
    body = json.loads(request.content)
    assert body["max_tokens"] == 4096
    assert body["system"] == "system"
    assert body["messages"] == [{"role": "user", "content": "prompt"}]


@pytest.mark.asyncio
async def test_gemini_provider_joins_candidate_parts() -> None:
    seen: list[httpx.Request] = []
    payload = {"candidates": [{"content": {"parts": [{"text": '{"classifications"'}, {"text": ": []}"}]}}]}
    client = _recording_client(httpx.Response(200, json=payload), seen)
    provider = build_provider(
        LLMSettings(gemini_api_key="g-key", gemini_model="gemini-test"),
        HTTPSettings(gemini_base="https://gemini.example"),
        client=client,
    )

    text = await provider.complete("prompt", "system")

    assert isinstance(provider, GeminiProvider)
    assert text == '{"classifications": []}'
    request = seen[0]
    assert request.url == "https://gemini.example/v1beta/models/gemini-test:generateContent"
    assert request.headers["x-goog-api-key"] == "g-key"
    body = json.loads(request.content)
    assert body["generationConfig"] == {
        "maxOutputTokens": 8192,
        "temperature": 0.2,
        "responseMimeType": "application/json",
    }
    assert body["systemInstruction"] == {"parts": [{"text": "system"}]}


@pytest.mark.asyncio
async def test_gemini_without_candidates_is_an_error() -> None:
    client = _recording_client(httpx.Response(200, json={"candidates": []}), [])
    provider = build_provider(LLMSettings(gemini_api_key="g-key"), client=client)

    with pytest.raises(TransportError, match="no candidates"):
        await provider.complete("prompt", "system")


@pytest.mark.asyncio
async def test_error_status_carries_api_message() -> None:
    client = _recording_client(httpx.Response(429, json={"error": {"message": "quota exceeded"}}), [])
    provider = build_provider(LLMSettings(provider="claude", claude_api_key="sk"), client=client)

    with pytest.raises(TransportError, match="Claude API error: 429 - quota exceeded"):
        await provider.complete("prompt", "system")


def test_build_provider_requires_api_key() -> None:
    with pytest.raises(MissingCredentialError, match="Claude"):
        build_provider(LLMSettings(provider="claude", gemini_api_key="unused"))
