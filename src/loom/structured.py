"""Plain data records exchanged between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

__all__ = ["FileRecord", "CodeChange", "HistoryEntry", "SimilarityResult"]


@dataclass(frozen=True, slots=True)
class FileRecord:
    """A scanned file: its raw text and the condensed form used for prompts."""

    relative_path: str
    raw_content: str
    compressed_content: str


@dataclass(frozen=True, slots=True)
class CodeChange:
    """Full replacement content proposed for one file."""

    relative_path: str
    code: str


@dataclass(slots=True)
class HistoryEntry:
    """One completed prompt/response exchange."""

    prompt: str
    response: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def render(self) -> str:
        return (
            f"### History time:\n\n{self.created_at}\n---------\n\n"
            f"### Here is user request:\n\n{self.prompt}\n---------\n\n"
            f"### Here is the response from the assistant:\n\n{self.response}"
        )


@dataclass(frozen=True, slots=True)
class SimilarityResult:
    """Score of one stored entry against a query vector."""

    path: str
    score: float
