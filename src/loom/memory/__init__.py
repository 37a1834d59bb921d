"""Session-scoped retrieval memory."""

from .embeddings import EmbeddingEntry, EmbeddingStore, content_digest, cosine_similarity, threshold_for_model

__all__ = [
    "EmbeddingEntry",
    "EmbeddingStore",
    "content_digest",
    "cosine_similarity",
    "threshold_for_model",
]
