"""Provider for a local Ollama server."""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional

from .provider import ChatProvider, HttpTransport, ProviderResponseError

__all__ = ["OllamaProvider"]


class OllamaProvider(ChatProvider):
    """Streams newline-delimited JSON from ``/api/chat``; embeds via ``/api/embed``."""

    name = "ollama"

    def __init__(
        self,
        *,
        base_url: str = "http://localhost:11434",
        chat_model: str = "llama3.1",
        embedding_model: Optional[str] = "nomic-embed-text",
        transport: Optional[HttpTransport] = None,
        timeout: float = 300.0,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        super().__init__(
            chat_model=chat_model,
            embedding_model=embedding_model,
            transport=transport,
            timeout=timeout,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        self._base_url = base_url.rstrip("/")

    def _stream_chat(self, messages: List[Dict[str, str]]) -> Iterator[str]:
        payload: Dict[str, Any] = {"model": self.chat_model, "messages": messages, "stream": True}
        options: Dict[str, Any] = {}
        if self._temperature is not None:
            options["temperature"] = self._temperature
        if self._max_tokens is not None:
            options["num_predict"] = self._max_tokens
        if options:
            payload["options"] = options

        for line in self._transport.post_lines(f"{self._base_url}/api/chat", payload, {}, self._timeout):
            if not line.strip():
                continue
            chunk = self._decode(line, self.name)
            if not isinstance(chunk, dict):
                continue
            if chunk.get("error"):
                raise ProviderResponseError(f"ollama stream error: {chunk['error']}")
            message = chunk.get("message") or {}
            content = message.get("content")
            if isinstance(content, str) and content:
                yield content
            if chunk.get("done"):
                return
        raise ProviderResponseError("ollama stream ended before the final chunk.")

    def _embed(self, texts: List[str]) -> List[List[float]]:
        if not self.embedding_model:
            raise ProviderResponseError("No embedding model configured for ollama.")
        payload = {"model": self.embedding_model, "input": texts}
        body = self._decode(
            self._transport.post_json(f"{self._base_url}/api/embed", payload, {}, self._timeout),
            self.name,
        )
        embeddings = body.get("embeddings") if isinstance(body, dict) else None
        if not isinstance(embeddings, list):
            raise ProviderResponseError("ollama embedding response did not include embeddings.")
        return [[float(value) for value in vector] for vector in embeddings]
