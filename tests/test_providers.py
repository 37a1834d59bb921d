from __future__ import annotations

import json
import threading
from typing import Any, Dict, Iterator, List, Mapping, Optional

import pytest

from loom.config import ProviderSettings
from loom.errors import ConfigError
from loom.models import OllamaProvider, OpenAICompatibleProvider, provider_from_settings
from loom.models.provider import (
    ProviderCancelled,
    ProviderResponseError,
    ProviderTransportError,
    StreamEvent,
)


class FakeTransport:
    """Transport double returning canned bodies and recording requests."""

    def __init__(self, *, lines: Optional[List[str]] = None, body: Any = None, error: Optional[Exception] = None) -> None:
        self.lines = lines or []
        self.body = body
        self.error = error
        self.requests: List[Dict[str, Any]] = []

    def post_json(self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str], timeout: float) -> str:
        self.requests.append({"url": url, "payload": dict(payload), "headers": dict(headers)})
        if self.error is not None:
            raise self.error
        return self.body if isinstance(self.body, str) else json.dumps(self.body)

    def post_lines(
        self, url: str, payload: Mapping[str, Any], headers: Mapping[str, str], timeout: float
    ) -> Iterator[str]:
        self.requests.append({"url": url, "payload": dict(payload), "headers": dict(headers)})
        if self.error is not None:
            raise self.error
        yield from self.lines


def _sse(*contents: str, done: bool = True) -> List[str]:
    lines = [": keep-alive", ""]
    for content in contents:
        lines.append("data: " + json.dumps({"choices": [{"delta": {"content": content}}]}))
        lines.append("")
    if done:
        lines.append("data: [DONE]")
    return lines


def _openai(transport: FakeTransport, **kwargs: Any) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(api_key="sk-test", transport=transport, **kwargs)


def test_openai_stream_yields_deltas_then_done() -> None:
    transport = FakeTransport(lines=_sse("Hel", "lo"))
    provider = _openai(transport, base_url="https://example.test/v1/", temperature=0.2)

    events = list(provider.chat_completion("hi", "be brief"))

    assert events == [StreamEvent.delta("Hel"), StreamEvent.delta("lo"), StreamEvent.finished()]
    request = transport.requests[0]
    assert request["url"] == "https://example.test/v1/chat/completions"
    assert request["headers"]["Authorization"] == "Bearer sk-test"
    assert request["payload"]["stream"] is True
    assert request["payload"]["temperature"] == 0.2
    assert request["payload"]["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
    ]


def test_openai_stream_without_done_ends_with_error() -> None:
    events = list(_openai(FakeTransport(lines=_sse("partial", done=False))).chat_completion("hi", "sys"))

    assert events[0] == StreamEvent.delta("partial")
    assert events[-1].is_terminal
    assert isinstance(events[-1].error, ProviderResponseError)
    assert sum(1 for event in events if event.is_terminal) == 1


def test_openai_stream_error_object_is_reported() -> None:
    lines = ["data: " + json.dumps({"error": {"message": "quota exceeded"}})]

    events = list(_openai(FakeTransport(lines=lines)).chat_completion("hi", "sys"))

    assert len(events) == 1
    assert isinstance(events[0].error, ProviderResponseError)
    assert "quota exceeded" in str(events[0].error)


def test_transport_failure_becomes_error_event() -> None:
    transport = FakeTransport(error=ProviderTransportError("connection refused"))

    events = list(_openai(transport).chat_completion("hi", "sys"))

    assert len(events) == 1
    assert isinstance(events[0].error, ProviderTransportError)


def test_cancellation_stops_stream_with_cancelled_error() -> None:
    cancel = threading.Event()
    cancel.set()

    events = list(_openai(FakeTransport(lines=_sse("a", "b"))).chat_completion("hi", "sys", cancel=cancel))

    assert len(events) == 1
    assert isinstance(events[0].error, ProviderCancelled)


def test_openai_embeddings_are_ordered_by_index() -> None:
    body = {
        "data": [
            {"index": 1, "embedding": [0.0, 1.0]},
            {"index": 0, "embedding": [1, 0]},
        ]
    }
    transport = FakeTransport(body=body)

    vectors = _openai(transport).embed(["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert transport.requests[0]["url"].endswith("/embeddings")
    assert transport.requests[0]["payload"]["input"] == ["first", "second"]


def test_embedding_count_mismatch_fails_whole_batch() -> None:
    transport = FakeTransport(body={"data": [{"index": 0, "embedding": [1.0]}]})

    with pytest.raises(ProviderResponseError):
        _openai(transport).embed(["one", "two"])


def test_invalid_json_is_a_response_error() -> None:
    with pytest.raises(ProviderResponseError):
        _openai(FakeTransport(body="not json")).embed(["x"])


def test_missing_api_key_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOOM_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError):
        OpenAICompatibleProvider()


def test_ollama_streams_ndjson_until_done() -> None:
    lines = [
        json.dumps({"message": {"role": "assistant", "content": "Hi"}, "done": False}),
        "",
        json.dumps({"message": {"role": "assistant", "content": " there"}, "done": False}),
        json.dumps({"message": {"role": "assistant", "content": ""}, "done": True}),
    ]
    transport = FakeTransport(lines=lines)
    provider = OllamaProvider(transport=transport, max_tokens=64)

    events = list(provider.chat_completion("hi", "sys"))

    assert [event.content_delta for event in events[:-1]] == ["Hi", " there"]
    assert events[-1] == StreamEvent.finished()
    assert transport.requests[0]["url"] == "http://localhost:11434/api/chat"
    assert transport.requests[0]["payload"]["options"] == {"num_predict": 64}


def test_ollama_stream_without_final_chunk_is_an_error() -> None:
    lines = [json.dumps({"message": {"content": "Hi"}, "done": False})]

    events = list(OllamaProvider(transport=FakeTransport(lines=lines)).chat_completion("hi", "sys"))

    assert isinstance(events[-1].error, ProviderResponseError)


def test_ollama_embeddings() -> None:
    transport = FakeTransport(body={"embeddings": [[0.5, 0.5], [1, 0]]})

    assert OllamaProvider(transport=transport).embed(["a", "b"]) == [[0.5, 0.5], [1.0, 0.0]]
    assert transport.requests[0]["url"] == "http://localhost:11434/api/embed"


def test_provider_from_settings_selects_vendor_defaults() -> None:
    transport = FakeTransport(lines=_sse("ok"))

    provider = provider_from_settings(ProviderSettings(name="deepseek", chat_model="deepseek-chat"), transport=transport)
    list(provider.chat_completion("hi", "sys"))

    assert isinstance(provider, OpenAICompatibleProvider)
    assert provider.name == "deepseek"
    assert transport.requests[0]["url"] == "https://api.deepseek.com/v1/chat/completions"


def test_provider_from_settings_builds_ollama() -> None:
    provider = provider_from_settings(ProviderSettings(name="ollama", chat_model="llama3.1"), transport=FakeTransport())

    assert isinstance(provider, OllamaProvider)
    assert provider.chat_model == "llama3.1"


def test_provider_from_settings_rejects_unknown_vendor() -> None:
    with pytest.raises(ConfigError):
        provider_from_settings(ProviderSettings(name="mystery"), transport=FakeTransport())


def test_provider_from_settings_reports_missing_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LOOM_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ConfigError):
        provider_from_settings(ProviderSettings(name="openai"))
