"""Repository scanning and symbol compression."""

from .compressor import SymbolCompressor, StructuralCapability, detect_language
from .ignore import IgnoreRules, load_ignore_patterns
from .scanner import RepositoryScanner, scan

__all__ = [
    "IgnoreRules",
    "RepositoryScanner",
    "StructuralCapability",
    "SymbolCompressor",
    "detect_language",
    "load_ignore_patterns",
    "scan",
]
