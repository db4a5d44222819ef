"""Classification providers normalized to a single ``complete`` call."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

import httpx

from bilisorter.config.models import HTTPSettings, LLMSettings
from bilisorter.errors import MissingCredentialError, TransportError

LOGGER = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"


class ClassificationProvider(Protocol):
    """Text-completion backend used by the suggestion engine."""

    name: str

    async def complete(self, prompt: str, system: str) -> str:
        """Return the raw response text for ``prompt``."""
        ...


class _HTTPProvider:
    """Shared request handling for the JSON-over-HTTP providers."""

    name = "provider"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    @property
    def model(self) -> str:
        return self._model

    async def _post(self, url: str, headers: dict[str, str], body: dict[str, Any]) -> dict[str, Any]:
        LOGGER.debug("%s request to %s with model %s", self.name, url, self._model)
        try:
            if self._client is not None:
                response = await self._client.post(url, headers=headers, json=body)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            raise TransportError(f"{self.name} request failed: {exc}") from exc

        if not response.is_success:
            raise TransportError(
                f"{self.name} API error: {response.status_code} - {_error_message(response)}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(f"{self.name} API returned a non-JSON body") from exc


class ClaudeProvider(_HTTPProvider):
    """Anthropic Messages API."""

    name = "Claude"

    def __init__(self, api_key: str, model: str, *, max_tokens: int = 4_096, **kwargs: Any) -> None:
        super().__init__(api_key, model, **kwargs)
        self._max_tokens = max_tokens

    async def complete(self, prompt: str, system: str) -> str:
        data = await self._post(
            f"{self._base_url}/v1/messages",
            {
                "Content-Type": "application/json",
                "x-api-key": self._api_key,
                "anthropic-version": ANTHROPIC_VERSION,
            },
            {
                "model": self._model,
                "max_tokens": self._max_tokens,
                "messages": [{"role": "user", "content": prompt}],
                "system": system,
            },
        )
        content = data.get("content") or []
        return (content[0].get("text") if content else None) or ""


class GeminiProvider(_HTTPProvider):
    """Google Generative Language ``generateContent`` API."""

    name = "Gemini"

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        max_tokens: int = 8_192,
        temperature: float = 0.2,
        **kwargs: Any,
    ) -> None:
        super().__init__(api_key, model, **kwargs)
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def complete(self, prompt: str, system: str) -> str:
        data = await self._post(
            f"{self._base_url}/v1beta/models/{self._model}:generateContent",
            {"Content-Type": "application/json", "x-goog-api-key": self._api_key},
            {
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "systemInstruction": {"parts": [{"text": system}]},
                "generationConfig": {
                    "maxOutputTokens": self._max_tokens,
                    "temperature": self._temperature,
                    "responseMimeType": "application/json",
                },
            },
        )
        candidates = data.get("candidates") or []
        if not candidates:
            raise TransportError("Gemini returned no candidates")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)


def build_provider(
    settings: LLMSettings,
    http: HTTPSettings | None = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> ClassificationProvider:
    """Return the provider selected by ``settings``.

    Args:
        settings: Provider selection, credentials and model names.
        http: Transport settings supplying base URLs and timeout.
        client: Optional shared ``httpx.AsyncClient``.

    Returns:
        ClassificationProvider: Configured provider instance.

    Raises:
        MissingCredentialError: If the selected provider has no API key.
    """
    http = http or HTTPSettings()
    api_key = settings.active_api_key
    if not api_key:
        raise MissingCredentialError(settings.provider_label)

    if settings.provider == "claude":
        return ClaudeProvider(
            api_key,
            settings.claude_model,
            max_tokens=settings.max_tokens,
            base_url=http.claude_base,
            timeout=http.timeout_seconds,
            client=client,
        )
    return GeminiProvider(
        api_key,
        settings.gemini_model,
        max_tokens=settings.gemini_max_tokens,
        temperature=settings.temperature,
        base_url=http.gemini_base,
        timeout=http.timeout_seconds,
        client=client,
    )


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:200] or "unknown error"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return "unknown error"


__all__ = [
    "ANTHROPIC_VERSION",
    "ClassificationProvider",
    "ClaudeProvider",
    "GeminiProvider",
    "build_provider",
]
