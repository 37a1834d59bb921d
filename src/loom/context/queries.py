"""Tree-sitter query tables for the languages outlined by the compressor.

Each language maps a fixed, ordered set of tags to one query. Captured nodes
are rendered up to the start of their ``body`` field, so declarations collapse
to their header line.
"""

from __future__ import annotations

from typing import Dict, Tuple

__all__ = ["LANGUAGE_QUERIES"]

_GO: Tuple[Tuple[str, str], ...] = (
    ("package", "(package_clause) @package"),
    ("import", "(import_declaration) @import"),
    ("type", "(type_declaration) @type"),
    ("function", "(function_declaration) @function"),
    ("method", "(method_declaration) @method"),
)

_CSHARP: Tuple[Tuple[str, str], ...] = (
    ("using", "(using_directive) @using"),
    ("namespace", "(namespace_declaration) @namespace"),
    ("class", "(class_declaration) @class"),
    ("interface", "(interface_declaration) @interface"),
    ("method", "(method_declaration) @method"),
)

_JAVA: Tuple[Tuple[str, str], ...] = (
    ("package", "(package_declaration) @package"),
    ("import", "(import_declaration) @import"),
    ("class", "(class_declaration) @class"),
    ("interface", "(interface_declaration) @interface"),
    ("method", "(method_declaration) @method"),
)

_JAVASCRIPT: Tuple[Tuple[str, str], ...] = (
    ("import", "(import_statement) @import"),
    ("class", "(class_declaration) @class"),
    ("function", "(function_declaration) @function"),
    ("method", "(method_definition) @method"),
)

_TYPESCRIPT: Tuple[Tuple[str, str], ...] = (
    ("import", "(import_statement) @import"),
    ("interface", "(interface_declaration) @interface"),
    ("class", "(class_declaration) @class"),
    ("function", "(function_declaration) @function"),
    ("method", "(method_definition) @method"),
)

LANGUAGE_QUERIES: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "go": _GO,
    "csharp": _CSHARP,
    "java": _JAVA,
    "javascript": _JAVASCRIPT,
    "typescript": _TYPESCRIPT,
    "tsx": _TYPESCRIPT,
}
