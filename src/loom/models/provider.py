"""Provider base class, stream events and retry helpers."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Protocol, Sequence, Tuple, Type, TypeVar

LOGGER = logging.getLogger(__name__)

__all__ = [
    "ChatProvider",
    "HttpTransport",
    "ProviderCancelled",
    "ProviderError",
    "ProviderResponseError",
    "ProviderRetryError",
    "ProviderTransportError",
    "StreamEvent",
    "UrllibTransport",
    "retry_with_backoff",
]

T = TypeVar("T")


class ProviderError(RuntimeError):
    """Base error for provider failures."""


class ProviderTransportError(ProviderError):
    """Raised when the HTTP exchange with a provider fails."""


class ProviderResponseError(ProviderError):
    """Raised when a provider response cannot be interpreted."""


class ProviderCancelled(ProviderError):
    """Raised when the caller cancels an in-flight request."""


class ProviderRetryError(ProviderError):
    """Raised after all retry attempts are exhausted."""


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """One item of a chat completion stream.

    A stream ends with exactly one terminal event: ``done`` or ``error``.
    """

    content_delta: str = ""
    error: Optional[ProviderError] = None
    done: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.done or self.error is not None

    @classmethod
    def delta(cls, text: str) -> "StreamEvent":
        return cls(content_delta=text)

    @classmethod
    def finished(cls) -> "StreamEvent":
        return cls(done=True)

    @classmethod
    def failed(cls, error: ProviderError) -> "StreamEvent":
        return cls(error=error)


class HttpTransport(Protocol):
    """Minimal HTTP surface used by providers; replaced by fakes in tests."""

    def post_json(self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str], timeout: float) -> str:
        ...

    def post_lines(
        self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str], timeout: float
    ) -> Iterator[str]:
        ...


class UrllibTransport:
    """Default transport built on ``urllib.request``."""

    def _request(self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str]) -> Any:
        import urllib.request

        return urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", **headers},
            method="POST",
        )

    def _open(self, request: Any, timeout: float) -> Any:
        import urllib.error
        import urllib.request

        try:
            return urllib.request.urlopen(request, timeout=timeout)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise ProviderTransportError("Provider request timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise ProviderTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise ProviderTransportError(f"Failed to reach provider endpoint: {error.reason}") from error

    def post_json(self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str], timeout: float) -> str:
        with self._open(self._request(url, payload, headers), timeout) as response:
            try:
                raw = response.read()
            except (OSError, TimeoutError) as error:  # pragma: no cover - network-dependent
                raise ProviderTransportError(f"Failed to read provider response: {error}") from error
        return raw.decode("utf-8")

    def post_lines(
        self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str], timeout: float
    ) -> Iterator[str]:
        with self._open(self._request(url, payload, headers), timeout) as response:
            try:
                for raw_line in response:
                    yield raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
            except (OSError, TimeoutError) as error:  # pragma: no cover - network-dependent
                raise ProviderTransportError(f"Stream interrupted: {error}") from error


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    retry_on: Tuple[Type[BaseException], ...] = (ProviderError,),
    sleep: Callable[[float], None] = time.sleep,
    description: str = "provider call",
) -> T:
    """Run ``operation`` with exponential backoff between failed attempts.

    Cancellation is never retried. After the final failure a
    :class:`ProviderRetryError` chained to the last error is raised.
    """
    last_error: Optional[BaseException] = None
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ProviderCancelled:
            raise
        except retry_on as error:
            last_error = error
            if attempt >= attempts:
                break
            delay = min(max_delay, base_delay * (2 ** (attempt - 1)))
            LOGGER.info("Retrying %s after attempt %d/%d failed: %s", description, attempt, attempts, error)
            sleep(delay)
    raise ProviderRetryError(f"{description} failed after {attempts} attempt(s): {last_error}") from last_error


class ChatProvider:
    """Shared behaviour for chat/embedding providers.

    Subclasses implement :meth:`_stream_chat` (yielding text deltas) and
    :meth:`_embed`.
    """

    name = "provider"

    def __init__(
        self,
        *,
        chat_model: str,
        embedding_model: Optional[str] = None,
        transport: Optional[HttpTransport] = None,
        timeout: float = 120.0,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> None:
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self._transport: HttpTransport = transport or UrllibTransport()
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens

    def chat_completion(
        self,
        user_input: str,
        system_prompt: str,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[StreamEvent]:
        """Stream the model answer as delta events plus one terminal event."""
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_input},
        ]
        try:
            for text in self._stream_chat(messages):
                if cancel is not None and cancel.is_set():
                    yield StreamEvent.failed(ProviderCancelled("Request cancelled by user."))
                    return
                if text:
                    yield StreamEvent.delta(text)
        except ProviderError as error:
            yield StreamEvent.failed(error)
            return
        yield StreamEvent.finished()

    def embed(self, texts: Sequence[str]) -> List[List[float]]:
        """Return one vector per input text; any failure fails the whole batch."""
        if not texts:
            return []
        vectors = self._embed(list(texts))
        if len(vectors) != len(texts):
            raise ProviderResponseError(
                f"Expected {len(texts)} embedding(s) from {self.name}, received {len(vectors)}."
            )
        return vectors

    def _stream_chat(self, messages: List[Dict[str, str]]) -> Iterator[str]:
        raise NotImplementedError("Subclasses must implement _stream_chat().")

    def _embed(self, texts: List[str]) -> List[List[float]]:
        raise NotImplementedError("Subclasses must implement _embed().")

    @staticmethod
    def _decode(raw: str, source: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError as error:
            raise ProviderResponseError(f"{source} returned invalid JSON: {raw[:200]}") from error
