"""Exception hierarchy shared by the context and change pipeline."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = [
    "LoomError",
    "ScanError",
    "RecoveryError",
    "ApplyError",
    "EmbeddingError",
    "ConfigError",
]


class LoomError(RuntimeError):
    """Base error carrying structured details for logs and reports."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ScanError(LoomError):
    """Raised when the repository walk or a file read fails."""


class RecoveryError(LoomError):
    """Raised when a requested-file list is present but cannot be decoded."""


class ApplyError(LoomError):
    """Raised when staging, committing or discarding a single change fails."""


class EmbeddingError(LoomError):
    """Raised when the retrieval round cannot embed every scanned file."""


class ConfigError(LoomError):
    """Raised when the configuration file holds invalid values."""
