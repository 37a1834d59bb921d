"""In-memory embedding store used to scope context in retrieval mode."""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np

from ..structured import SimilarityResult

LOGGER = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_THRESHOLD",
    "EmbeddingEntry",
    "EmbeddingStore",
    "content_digest",
    "cosine_similarity",
    "threshold_for_model",
]

DEFAULT_THRESHOLD = 0.3

# Similarity cut-offs that work well for common embedding models.
_MODEL_THRESHOLDS: Dict[str, float] = {
    "all-minilm:l6-v2": 0.22,
    "mxbai-embed-large": 0.5,
    "nomic-embed-text": 0.5,
    "text-embedding-3-large": 0.4,
    "text-embedding-3-small": 0.4,
    "text-embedding-ada-002": 0.77,
}


def threshold_for_model(model: str | None) -> float:
    """Return the default similarity threshold for an embedding model."""
    if not model:
        return DEFAULT_THRESHOLD
    return _MODEL_THRESHOLDS.get(model.strip().lower(), DEFAULT_THRESHOLD)


def content_digest(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Normalised dot product; ``0.0`` when either vector has zero norm."""
    first = np.asarray(left, dtype=np.float64)
    second = np.asarray(right, dtype=np.float64)
    if first.shape != second.shape:
        raise ValueError(f"Vector dimensions differ: {first.shape[0]} != {second.shape[0]}")
    norm = float(np.linalg.norm(first)) * float(np.linalg.norm(second))
    if norm == 0.0:
        return 0.0
    return float(np.dot(first, second) / norm)


@dataclass(frozen=True, slots=True)
class EmbeddingEntry:
    """Stored vector for one file along with the code it was computed from."""

    path: str
    vector: np.ndarray
    code: str
    digest: str


class EmbeddingStore:
    """Thread-safe map of path to embedding; last write per path wins."""

    def __init__(self) -> None:
        self._entries: Dict[str, EmbeddingEntry] = {}
        self._dimension: Optional[int] = None
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def save(self, path: str, code: str, vector: Sequence[float], *, digest: Optional[str] = None) -> bool:
        """Store ``vector`` for ``path``; returns ``False`` when it was rejected."""
        if len(vector) == 0:
            LOGGER.warning("No embeddings found for %s; entry not stored.", path)
            return False
        array = np.asarray(vector, dtype=np.float64)
        with self._lock:
            if self._dimension is not None and array.shape[0] != self._dimension:
                LOGGER.warning(
                    "Embedding for %s has dimension %d, expected %d; entry not stored.",
                    path,
                    array.shape[0],
                    self._dimension,
                )
                return False
            self._dimension = array.shape[0]
            self._entries[path] = EmbeddingEntry(
                path=path,
                vector=array,
                code=code,
                digest=digest or content_digest(code),
            )
        return True

    def is_current(self, path: str, digest: str) -> bool:
        with self._lock:
            entry = self._entries.get(path)
            return entry is not None and entry.digest == digest

    def prune(self, keep: Iterable[str]) -> List[str]:
        """Drop entries whose paths are not in ``keep``."""
        keep_set = set(keep)
        with self._lock:
            removed = [path for path in self._entries if path not in keep_set]
            for path in removed:
                del self._entries[path]
            if not self._entries:
                self._dimension = None
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._dimension = None

    def rank(self, query_vector: Sequence[float], top_n: int, threshold: float) -> List[SimilarityResult]:
        """Score every entry, keep those at or above ``threshold``, best first.

        Ties are broken by ascending path. ``top_n == -1`` returns every
        qualifying entry.
        """
        with self._lock:
            entries = list(self._entries.values())
        results = [
            SimilarityResult(path=entry.path, score=cosine_similarity(query_vector, entry.vector))
            for entry in entries
        ]
        results = [result for result in results if result.score >= threshold]
        results.sort(key=lambda result: (-result.score, result.path))
        if top_n >= 0:
            results = results[:top_n]
        return results

    def find_relevant_chunks(self, query_vector: Sequence[float], top_n: int, threshold: float) -> List[str]:
        """Return formatted ``File/Similarity/code`` chunks for the best matches."""
        chunks: List[str] = []
        for result in self.rank(query_vector, top_n, threshold):
            with self._lock:
                entry = self._entries.get(result.path)
            if entry is None:
                continue
            chunks.append(f"File: {result.path}\nSimilarity: {result.score:.4f}\n{entry.code}")
        return chunks
