"""Session-scoped state passed through every pipeline turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List

from .memory.embeddings import EmbeddingStore
from .structured import HistoryEntry

LOGGER = logging.getLogger(__name__)

__all__ = ["SessionContext"]


@dataclass(slots=True)
class SessionContext:
    """Conversation history and the embedding store for one interactive session."""

    history: List[HistoryEntry] = field(default_factory=list)
    embeddings: EmbeddingStore = field(default_factory=EmbeddingStore)

    def add_history(self, prompt: str, response: str) -> HistoryEntry:
        entry = HistoryEntry(prompt=prompt, response=response)
        self.history.append(entry)
        return entry

    def clear_history(self) -> None:
        self.history.clear()

    def clear(self) -> None:
        """Drop all session state; called when the session ends."""
        LOGGER.debug("Clearing session with %d history entries", len(self.history))
        self.history.clear()
        self.embeddings.clear()
