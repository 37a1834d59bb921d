"""Provider collaborators and the factory selecting one from configuration."""

from __future__ import annotations

from typing import Optional

from ..config import ProviderSettings
from ..errors import ConfigError
from .ollama import OllamaProvider
from .openai import OpenAICompatibleProvider
from .provider import (
    ChatProvider,
    HttpTransport,
    ProviderCancelled,
    ProviderError,
    ProviderResponseError,
    ProviderRetryError,
    ProviderTransportError,
    StreamEvent,
    retry_with_backoff,
)

__all__ = [
    "ChatProvider",
    "HttpTransport",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "ProviderCancelled",
    "ProviderError",
    "ProviderResponseError",
    "ProviderRetryError",
    "ProviderTransportError",
    "StreamEvent",
    "provider_from_settings",
    "retry_with_backoff",
]

OPENAI_COMPATIBLE_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "deepseek": "https://api.deepseek.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "mistral": "https://api.mistral.ai/v1",
    "grok": "https://api.x.ai/v1",
}


def provider_from_settings(settings: ProviderSettings, *, transport: Optional[HttpTransport] = None) -> ChatProvider:
    """Instantiate the provider named in ``settings``."""
    if settings.name == "ollama":
        return OllamaProvider(
            base_url=settings.base_url or "http://localhost:11434",
            chat_model=settings.chat_model,
            embedding_model=settings.embedding_model,
            transport=transport,
            timeout=settings.timeout,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
        )
    default_url = OPENAI_COMPATIBLE_BASE_URLS.get(settings.name)
    if default_url is None and not settings.base_url:
        known = ", ".join(sorted([*OPENAI_COMPATIBLE_BASE_URLS, "ollama"]))
        raise ConfigError(
            f"Unknown provider '{settings.name}'; expected one of {known} or an explicit base_url.",
            details={"provider": settings.name},
        )
    try:
        return OpenAICompatibleProvider(
            api_key=settings.api_key,
            base_url=settings.base_url or default_url or "",
            chat_model=settings.chat_model,
            embedding_model=settings.embedding_model,
            transport=transport,
            timeout=settings.timeout,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            name=settings.name,
        )
    except ValueError as error:
        raise ConfigError(str(error), details={"provider": settings.name}) from error
