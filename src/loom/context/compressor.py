"""Condense source files into tagged symbol outlines.

Languages with a registered structural capability are reduced to one
``<tag>\\n: <snippet>`` entry per captured declaration. Everything else is
passed through verbatim, prefixed by its path.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from tree_sitter import Parser, Query, QueryCursor
from tree_sitter_language_pack import get_language

from .python_symbols import PythonSymbolCapability
from .queries import LANGUAGE_QUERIES

LOGGER = logging.getLogger(__name__)

__all__ = [
    "StructuralCapability",
    "SymbolCompressor",
    "TreeSitterCapability",
    "detect_language",
]

_EXTENSION_LANGUAGE = {
    ".py": "python",
    ".pyi": "python",
    ".go": "go",
    ".cs": "csharp",
    ".java": "java",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
}


class StructuralCapability(Protocol):
    """Parses one language and returns ``(tag, snippet)`` captures in order."""

    language: str
    tags: Sequence[str]

    def extract(self, path: str, source: str) -> List[Tuple[str, str]]:
        ...


def detect_language(path: str) -> Optional[str]:
    """Return the language tag for ``path`` based on its extension."""
    return _EXTENSION_LANGUAGE.get(PurePosixPath(path.replace("\\", "/")).suffix.lower())


class TreeSitterCapability:
    """Run one declarative query per tag against a tree-sitter parse tree."""

    def __init__(self, language: str, queries: Sequence[Tuple[str, str]]) -> None:
        self.language = language
        self._language = get_language(language)
        self._parser = Parser(self._language)
        self._queries: List[Tuple[str, Query]] = []
        for tag, source in queries:
            try:
                self._queries.append((tag, Query(self._language, source)))
            except ValueError as error:
                LOGGER.warning("Skipping %s query for %s: %s", tag, language, error)
        self.tags = tuple(tag for tag, _ in self._queries)

    def extract(self, path: str, source: str) -> List[Tuple[str, str]]:
        payload = source.encode("utf-8")
        tree = self._parser.parse(payload)
        captures: List[Tuple[str, str]] = []
        for tag, query in self._queries:
            nodes = QueryCursor(query).captures(tree.root_node).get(tag, [])
            for node in sorted(nodes, key=lambda item: item.start_byte):
                body = node.child_by_field_name("body")
                end = body.start_byte if body is not None else node.end_byte
                snippet = payload[node.start_byte:end].decode("utf-8", errors="replace").strip()
                if snippet:
                    captures.append((tag, snippet))
        return captures


def _build_default_capability(language: str) -> Optional[StructuralCapability]:
    if language == "python":
        return PythonSymbolCapability()
    queries = LANGUAGE_QUERIES.get(language)
    if queries is None:
        return None
    try:
        return TreeSitterCapability(language, queries)
    except LookupError as error:
        LOGGER.warning("No tree-sitter grammar available for %s: %s", language, error)
        return None


class SymbolCompressor:
    """Registry of structural capabilities keyed by language tag."""

    def __init__(self, capabilities: Optional[Mapping[str, StructuralCapability]] = None) -> None:
        self._explicit = capabilities is not None
        self._capabilities: Dict[str, Optional[StructuralCapability]] = dict(capabilities or {})

    def register(self, capability: StructuralCapability) -> None:
        self._capabilities[capability.language] = capability

    def capability_for(self, language: str) -> Optional[StructuralCapability]:
        if language not in self._capabilities:
            if self._explicit:
                return None
            self._capabilities[language] = _build_default_capability(language)
        return self._capabilities[language]

    def compress(self, path: str, source: str) -> str:
        language = detect_language(path)
        capability = self.capability_for(language) if language else None
        if capability is None:
            return f"{path}\n{source}"
        try:
            captures = capability.extract(path, source)
        except ValueError as error:
            LOGGER.warning("Falling back to raw content for %s: %s", path, error)
            return f"{path}\n{source}"
        if not captures:
            return f"{path}\n{source}"
        return "\n".join([path, *(f"{tag}\n: {snippet}" for tag, snippet in captures)])
