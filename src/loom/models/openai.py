"""Provider speaking the OpenAI-compatible chat completions API."""

from __future__ import annotations

import os
from typing import Any, Dict, Iterator, List, Optional

from .provider import ChatProvider, HttpTransport, ProviderResponseError

__all__ = ["OpenAICompatibleProvider"]

_DATA_PREFIX = "data:"
_DONE_MARKER = "[DONE]"


class OpenAICompatibleProvider(ChatProvider):
    """Streams server-sent events from ``/chat/completions`` and embeds via ``/embeddings``.

    Works for any vendor exposing the OpenAI wire format (DeepSeek,
    OpenRouter, Mistral, Grok and OpenAI itself).
    """

    name = "openai"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1",
        chat_model: str = "gpt-4o",
        embedding_model: Optional[str] = "text-embedding-3-small",
        transport: Optional[HttpTransport] = None,
        timeout: float = 120.0,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(
            chat_model=chat_model,
            embedding_model=embedding_model,
            transport=transport,
            timeout=timeout,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if name:
            self.name = name
        self._api_key = api_key or os.getenv("LOOM_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url.rstrip("/")
        if transport is None and not self._api_key:
            raise ValueError(f"An API key is required for the {self.name} provider.")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _stream_chat(self, messages: List[Dict[str, str]]) -> Iterator[str]:
        payload: Dict[str, Any] = {"model": self.chat_model, "messages": messages, "stream": True}
        if self._temperature is not None:
            payload["temperature"] = self._temperature
        if self._max_tokens is not None:
            payload["max_tokens"] = self._max_tokens

        lines = self._transport.post_lines(
            f"{self._base_url}/chat/completions", payload, self._headers(), self._timeout
        )
        for line in lines:
            line = line.strip()
            if not line.startswith(_DATA_PREFIX):
                continue
            data = line[len(_DATA_PREFIX):].strip()
            if data == _DONE_MARKER:
                return
            chunk = self._decode(data, self.name)
            if isinstance(chunk, dict) and chunk.get("error"):
                raise ProviderResponseError(f"{self.name} stream error: {chunk['error']}")
            choices = chunk.get("choices") if isinstance(chunk, dict) else None
            if not choices:
                continue
            delta = choices[0].get("delta") or {}
            content = delta.get("content")
            if isinstance(content, str):
                yield content
        raise ProviderResponseError(f"{self.name} stream ended without a [DONE] marker.")

    def _embed(self, texts: List[str]) -> List[List[float]]:
        if not self.embedding_model:
            raise ProviderResponseError(f"No embedding model configured for {self.name}.")
        payload = {"model": self.embedding_model, "input": texts, "encoding_format": "float"}
        raw = self._transport.post_json(f"{self._base_url}/embeddings", payload, self._headers(), self._timeout)
        body = self._decode(raw, self.name)
        items = body.get("data") if isinstance(body, dict) else None
        if not isinstance(items, list):
            raise ProviderResponseError(f"{self.name} embedding response did not include data.")
        ordered = sorted(items, key=lambda item: item.get("index", 0) if isinstance(item, dict) else 0)
        vectors: List[List[float]] = []
        for item in ordered:
            vector = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(vector, list):
                raise ProviderResponseError(f"{self.name} embedding entry is missing its vector.")
            vectors.append([float(value) for value in vector])
        return vectors
