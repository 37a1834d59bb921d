from __future__ import annotations

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from loom.changes.applier import StagedChange  # noqa: E402
from loom.models.provider import ChatProvider  # noqa: E402


def write_file(root: Path, relative: str, content: str) -> Path:
    target = root / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return target


@dataclass(frozen=True)
class BrokenStream:
    """Scripted response that streams ``text`` and then fails with ``error``."""

    text: str
    error: Exception


class ScriptedProvider(ChatProvider):
    """Provider double replaying canned responses and computing fake embeddings."""

    name = "scripted"

    def __init__(
        self,
        responses: Sequence[object] = (),
        *,
        embed_fn: Optional[Callable[[str], List[float]]] = None,
        embedding_model: Optional[str] = "text-embedding-3-small",
    ) -> None:
        super().__init__(chat_model="scripted-model", embedding_model=embedding_model)
        self.responses: List[object] = list(responses)
        self.requests: List[List[Dict[str, str]]] = []
        self.embed_calls: List[List[str]] = []
        self._embed_fn = embed_fn or (lambda text: [1.0, 0.0])

    def _stream_chat(self, messages: List[Dict[str, str]]) -> Iterator[str]:
        self.requests.append(messages)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        text = item.text if isinstance(item, BrokenStream) else str(item)
        for start in range(0, len(text), 7):
            yield text[start : start + 7]
        if isinstance(item, BrokenStream):
            raise item.error

    def _embed(self, texts: List[str]) -> List[List[float]]:
        self.embed_calls.append(list(texts))
        return [self._embed_fn(text) for text in texts]


@dataclass(slots=True)
class RecordingPresenter:
    """Presenter double that accepts or rejects every change."""

    accept: bool = True
    streamed: List[str] = field(default_factory=list)
    reviewed: List[str] = field(default_factory=list)
    diffs: List[str] = field(default_factory=list)
    restarts: int = 0

    def on_delta(self, text: str) -> None:
        self.streamed.append(text)

    def on_restart(self) -> None:
        self.restarts += 1
        self.streamed.clear()

    def review(self, change: StagedChange, diff: str) -> bool:
        self.reviewed.append(change.relative_path)
        self.diffs.append(diff)
        return self.accept


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    """Small project tree with one Python module and one text file."""

    root = tmp_path / "project"
    root.mkdir()
    write_file(root, "app.py", "def main():\n    return 1\n")
    write_file(root, "notes.txt", "remember the milk\n")
    return root


@pytest.fixture()
def make_provider() -> Callable[..., ScriptedProvider]:
    return ScriptedProvider


@pytest.fixture()
def presenter() -> RecordingPresenter:
    return RecordingPresenter()
