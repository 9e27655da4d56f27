"""HTTP clients for the remote categorisation providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from reach_inbox.core.config import AppSettings, ProviderSettings
from reach_inbox.core.errors import ProviderError, ProviderErrorKind
from reach_inbox.core.interfaces import ClassifierProvider

LOGGER = logging.getLogger(__name__)

_AUTH_MARKERS = ("invalid api key", "invalid_api_key", "incorrect api key", "unauthorized")
_QUOTA_MARKERS = ("insufficient", "quota", "balance", "billing")


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    """Wire protocol and defaults for a named provider."""

    kind: str
    base_url: str
    endpoint: str
    model: str
    requires_key: bool = True


PROVIDER_SPECS: dict[str, ProviderSpec] = {
    "groq": ProviderSpec(
        "openai", "https://api.groq.com", "/openai/v1/chat/completions", "llama3-8b-8192"
    ),
    "deepseek": ProviderSpec(
        "openai", "https://api.deepseek.com", "/v1/chat/completions", "deepseek-chat"
    ),
    "ollama": ProviderSpec(
        "ollama", "http://localhost:11434", "/api/chat", "llama2", requires_key=False
    ),
    "mistral": ProviderSpec(
        "openai", "https://api.mistral.ai", "/v1/chat/completions", "mistral-tiny"
    ),
    "anthropic": ProviderSpec(
        "anthropic", "https://api.anthropic.com", "/v1/messages", "claude-3-haiku-20240307"
    ),
    "openai": ProviderSpec(
        "openai", "https://api.openai.com", "/v1/chat/completions", "gpt-3.5-turbo"
    ),
}


def provider_error_from_response(provider: str, response: httpx.Response) -> ProviderError:
    """Map an HTTP error response onto a :class:`ProviderError` kind."""
    status = response.status_code
    # Wording only counts on client errors; a 5xx is never fatal.
    text = response.text.lower() if 400 <= status < 500 and response.content else ""
    if status in (401, 403) or any(marker in text for marker in _AUTH_MARKERS):
        kind = ProviderErrorKind.AUTH
    elif status == 402 or any(marker in text for marker in _QUOTA_MARKERS):
        kind = ProviderErrorKind.QUOTA
    elif status == 429:
        kind = ProviderErrorKind.RATE_LIMIT
    elif status in (408, 504):
        kind = ProviderErrorKind.TIMEOUT
    else:
        kind = ProviderErrorKind.TRANSIENT
    return ProviderError(
        f"{provider} responded with HTTP {status}",
        kind=kind,
        provider=provider,
        status_code=status,
    )


@dataclass(slots=True)
class HttpProvider(ABC):
    """Shared request plumbing for JSON-over-HTTP providers."""

    name: str
    model: str
    base_url: str
    endpoint: str
    api_key: str | None = None
    timeout_seconds: float = 30.0
    temperature: float = 0.3
    max_output_tokens: int = 150
    client: httpx.Client | None = None

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw text completion for the prompts."""
        data = self._post(self._payload(system_prompt, user_prompt))
        content = self._extract(data)
        if not isinstance(content, str) or not content.strip():
            raise ProviderError(
                f"{self.name} response missing completion text",
                kind=ProviderErrorKind.INVALID_RESPONSE,
                provider=self.name,
            )
        return content

    @property
    def url(self) -> str:
        """Full endpoint URL."""
        return self.base_url.rstrip("/") + "/" + self.endpoint.lstrip("/")

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    @abstractmethod
    def _payload(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        """Build the provider specific request body."""

    @abstractmethod
    def _extract(self, data: dict[str, Any]) -> Any:
        """Pull the completion text out of a decoded response."""

    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            if self.client is not None:
                response = self.client.post(
                    self.url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout_seconds,
                )
            else:
                response = httpx.post(
                    self.url,
                    json=payload,
                    headers=self._headers(),
                    timeout=self.timeout_seconds,
                )
        except httpx.TimeoutException as exc:
            raise ProviderError(
                f"{self.name} request timed out",
                kind=ProviderErrorKind.TIMEOUT,
                provider=self.name,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{self.name} request failed",
                kind=ProviderErrorKind.TRANSIENT,
                provider=self.name,
            ) from exc

        if response.status_code >= 400:
            raise provider_error_from_response(self.name, response)

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{self.name} returned invalid JSON",
                kind=ProviderErrorKind.INVALID_RESPONSE,
                provider=self.name,
            ) from exc
        if not isinstance(data, dict):
            raise ProviderError(
                f"{self.name} returned a non-object payload",
                kind=ProviderErrorKind.INVALID_RESPONSE,
                provider=self.name,
            )
        return data


@dataclass(slots=True)
class OpenAICompatibleProvider(HttpProvider):
    """Chat-completions API used by OpenAI, DeepSeek, Groq and Mistral."""

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def _payload(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_output_tokens,
        }

    def _extract(self, data: dict[str, Any]) -> Any:
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return None


@dataclass(slots=True)
class AnthropicProvider(HttpProvider):
    """Anthropic Messages API."""

    api_version: str = "2023-06-01"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key or "",
            "anthropic-version": self.api_version,
        }

    def _payload(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "system": system_prompt,
            "max_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": user_prompt}],
        }

    def _extract(self, data: dict[str, Any]) -> Any:
        try:
            return data["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None


@dataclass(slots=True)
class OllamaProvider(HttpProvider):
    """Local Ollama chat API; no credentials required."""

    def _payload(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "stream": False,
            "options": {
                "temperature": self.temperature,
                "num_predict": self.max_output_tokens,
            },
        }

    def _extract(self, data: dict[str, Any]) -> Any:
        message = data.get("message")
        if isinstance(message, dict):
            return message.get("content")
        return None


_PROVIDER_CLASSES: dict[str, type[HttpProvider]] = {
    "openai": OpenAICompatibleProvider,
    "anthropic": AnthropicProvider,
    "ollama": OllamaProvider,
}


def build_provider(
    name: str,
    settings: ProviderSettings,
    app_settings: AppSettings,
    *,
    client: httpx.Client | None = None,
) -> HttpProvider:
    """Construct the provider ``name`` from its configuration entry."""
    spec = PROVIDER_SPECS[name]
    classification = app_settings.classification
    provider_cls = _PROVIDER_CLASSES[spec.kind]
    return provider_cls(
        name=name,
        model=settings.model or spec.model,
        base_url=settings.base_url or spec.base_url,
        endpoint=spec.endpoint,
        api_key=settings.api_key,
        timeout_seconds=classification.request_timeout_seconds,
        temperature=classification.temperature,
        max_output_tokens=classification.max_output_tokens,
        client=client,
    )


def build_providers(
    app_settings: AppSettings, *, client: httpx.Client | None = None
) -> list[ClassifierProvider]:
    """Return the configured providers in their configured order."""
    providers: list[ClassifierProvider] = []
    for name in app_settings.classification.provider_order:
        spec = PROVIDER_SPECS.get(name)
        if spec is None:
            LOGGER.warning("Ignoring unknown classification provider '%s'", name)
            continue
        entry = app_settings.providers.get(name)
        if entry is None:
            LOGGER.debug("Provider %s is not configured; skipping", name)
            continue
        if spec.requires_key and not entry.api_key:
            LOGGER.debug("Provider %s has no API key; skipping", name)
            continue
        providers.append(build_provider(name, entry, app_settings, client=client))
    LOGGER.info(
        "Classification providers: %s",
        ", ".join(provider.name for provider in providers) or "(rules only)",
    )
    return providers


__all__ = [
    "AnthropicProvider",
    "HttpProvider",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "PROVIDER_SPECS",
    "ProviderSpec",
    "build_provider",
    "build_providers",
    "provider_error_from_response",
]
