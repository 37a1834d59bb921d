"""Context harvesting and change application pipeline for an interactive coding assistant."""

__all__ = ["__version__"]

__version__ = "0.1.0"
