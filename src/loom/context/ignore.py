"""Built-in and project-specific ignore rules for repository scans."""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Iterable, Sequence

__all__ = [
    "DEFAULT_IGNORE_FILE",
    "IgnoreRules",
    "load_ignore_patterns",
]

DEFAULT_IGNORE_FILE = ".loomignore"
TEMP_SUFFIX = ".tmp"

# Directory names pruned wherever they appear in the tree.
_ALWAYS_EXCLUDE_DIRS = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "__pycache__",
        ".mypy_cache",
        ".ruff_cache",
        ".pytest_cache",
        ".tox",
        ".venv",
        "venv",
        ".idea",
        ".vscode",
        "node_modules",
        "bin",
        "obj",
        "dist",
        "out",
        "build",
    }
)

_ALWAYS_EXCLUDE_SUFFIXES = frozenset(
    {
        TEMP_SUFFIX,
        ".tmpl",
        ".exe",
        ".dll",
        ".so",
        ".dylib",
        ".o",
        ".a",
        ".class",
        ".jar",
        ".pyc",
        ".log",
        ".bak",
        ".lock",
        ".sum",
        ".zip",
        ".gz",
        ".tar",
        ".pdf",
        ".mp3",
        ".wav",
        ".aac",
        ".flac",
        ".ogg",
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".ico",
        ".svg",
        ".webp",
        ".mkv",
        ".mp4",
        ".avi",
        ".mov",
        ".wmv",
    }
)

_ALWAYS_EXCLUDE_FILES = frozenset(
    {
        DEFAULT_IGNORE_FILE,
        "loom.yaml",
        "package-lock.json",
        "yarn.lock",
        "poetry.lock",
        "go.sum",
    }
)


def _normalise(path: str) -> str:
    return PurePosixPath(path.replace("\\", "/")).as_posix()


def load_ignore_patterns(path: Path) -> list[str]:
    """Read one glob per line, skipping blank lines and ``#`` comments.

    A missing file yields no patterns.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    patterns: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        patterns.append(stripped)
    return patterns


@dataclass(slots=True)
class IgnoreRules:
    """Combined static ignore set and custom glob patterns."""

    patterns: Sequence[str] = field(default_factory=tuple)
    extra_files: Iterable[str] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.patterns = tuple(self.patterns)
        self.extra_files = frozenset(_normalise(path) for path in self.extra_files)

    @classmethod
    def for_root(cls, root: Path, ignore_file: str = DEFAULT_IGNORE_FILE) -> "IgnoreRules":
        return cls(
            patterns=load_ignore_patterns(root / ignore_file),
            extra_files=(ignore_file,),
        )

    def is_default_ignored_dir(self, name: str) -> bool:
        return name.lower() in _ALWAYS_EXCLUDE_DIRS

    def is_default_ignored_file(self, relative_path: str) -> bool:
        """Check the built-in file set and the configured ignore file itself."""
        candidate = _normalise(relative_path)
        lowered = PurePosixPath(candidate).name.lower()
        if lowered in _ALWAYS_EXCLUDE_FILES or candidate in self.extra_files:
            return True
        return any(lowered.endswith(suffix) for suffix in _ALWAYS_EXCLUDE_SUFFIXES)

    def matches_custom(self, relative_path: str, *, is_dir: bool = False) -> bool:
        """Return ``True`` when a custom pattern excludes ``relative_path``.

        Patterns ending in ``/`` exclude every path below that prefix; all
        other patterns are glob-matched against the full relative path.
        """
        candidate = PurePosixPath(relative_path).as_posix()
        probe = f"{candidate}/" if is_dir else candidate
        for pattern in self.patterns:
            if pattern.endswith("/"):
                if probe.startswith(pattern):
                    return True
            elif not is_dir and fnmatch.fnmatchcase(candidate, pattern):
                return True
        return False
