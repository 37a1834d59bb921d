"""Configuration loading for loom.

Settings live in ``loom.yaml`` at the project root. A handful of environment
variables override the file so credentials never have to be written to disk.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .context.ignore import DEFAULT_IGNORE_FILE
from .errors import ConfigError

__all__ = [
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "ContextSettings",
    "LoggingSettings",
    "LoomConfig",
    "ProviderSettings",
    "load_config",
]

DEFAULT_CONFIG_NAME = "loom.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "provider": {
        "name": "openai",
        "base_url": None,
        "chat_model": "gpt-4o",
        "embedding_model": "text-embedding-3-small",
        "temperature": None,
        "max_tokens": None,
        "timeout": 120,
        "max_attempts": 3,
    },
    "context": {
        "token_budget": 100_000,
        "ignore_file": DEFAULT_IGNORE_FILE,
        "rag": False,
        "threshold": None,
        "top_n": -1,
        "embedding_workers": 8,
        "max_recovery_rounds": 1,
    },
    "logging": {
        "level": "WARNING",
        "file": None,
    },
}

# environment variable -> (section, key)
_ENV_OVERRIDES = {
    "LOOM_PROVIDER": ("provider", "name"),
    "LOOM_BASE_URL": ("provider", "base_url"),
    "LOOM_CHAT_MODEL": ("provider", "chat_model"),
    "LOOM_EMBEDDING_MODEL": ("provider", "embedding_model"),
    "LOOM_API_KEY": ("provider", "api_key"),
    "LOOM_TEMPERATURE": ("provider", "temperature"),
    "LOOM_TIMEOUT": ("provider", "timeout"),
    "LOOM_RAG": ("context", "rag"),
}

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


def _section(config: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = config.get(name)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping.", details={"section": name})
    return value


def _optional_str(section: Mapping[str, Any], key: str, default: Optional[str]) -> Optional[str]:
    value = section.get(key, default)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"Config value '{key}' must be a string.", details={"key": key, "value": value})
    return value.strip() or None


def _optional_float(section: Mapping[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    value = section.get(key, default)
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigError(f"Config value '{key}' must be a number.", details={"key": key, "value": value})
    try:
        return float(value)
    except (TypeError, ValueError) as error:
        raise ConfigError(f"Config value '{key}' must be a number.", details={"key": key, "value": value}) from error


def _int(section: Mapping[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Config value '{key}' must be an integer.", details={"key": key, "value": value})
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise ConfigError(f"Config value '{key}' must be an integer.", details={"key": key, "value": value}) from error


def _bool(section: Mapping[str, Any], key: str, default: bool) -> bool:
    value = section.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    raise ConfigError(f"Config value '{key}' must be a boolean.", details={"key": key, "value": value})


@dataclass(slots=True)
class ProviderSettings:
    """Which provider to talk to and how."""

    name: str = "openai"
    base_url: Optional[str] = None
    chat_model: str = "gpt-4o"
    embedding_model: Optional[str] = "text-embedding-3-small"
    api_key: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    timeout: float = 120.0
    max_attempts: int = 3

    @classmethod
    def from_config(cls, section: Mapping[str, Any]) -> "ProviderSettings":
        defaults = cls()
        name = _optional_str(section, "name", defaults.name) or defaults.name
        max_tokens = section.get("max_tokens")
        settings = cls(
            name=name.lower(),
            base_url=_optional_str(section, "base_url", None),
            chat_model=_optional_str(section, "chat_model", defaults.chat_model) or defaults.chat_model,
            embedding_model=_optional_str(section, "embedding_model", defaults.embedding_model),
            api_key=_optional_str(section, "api_key", None),
            temperature=_optional_float(section, "temperature", None),
            max_tokens=None if max_tokens is None else _int(section, "max_tokens", 0),
            timeout=_optional_float(section, "timeout", defaults.timeout) or defaults.timeout,
            max_attempts=_int(section, "max_attempts", defaults.max_attempts),
        )
        if settings.max_attempts < 1:
            raise ConfigError("provider.max_attempts must be at least 1.")
        return settings


@dataclass(slots=True)
class ContextSettings:
    """Context selection: budget, ignore file and retrieval mode."""

    token_budget: int = 100_000
    ignore_file: str = DEFAULT_IGNORE_FILE
    rag: bool = False
    threshold: Optional[float] = None
    top_n: int = -1
    embedding_workers: int = 8
    max_recovery_rounds: int = 1

    @classmethod
    def from_config(cls, section: Mapping[str, Any]) -> "ContextSettings":
        defaults = cls()
        settings = cls(
            token_budget=_int(section, "token_budget", defaults.token_budget),
            ignore_file=_optional_str(section, "ignore_file", defaults.ignore_file) or defaults.ignore_file,
            rag=_bool(section, "rag", defaults.rag),
            threshold=_optional_float(section, "threshold", None),
            top_n=_int(section, "top_n", defaults.top_n),
            embedding_workers=_int(section, "embedding_workers", defaults.embedding_workers),
            max_recovery_rounds=_int(section, "max_recovery_rounds", defaults.max_recovery_rounds),
        )
        if settings.token_budget <= 0:
            raise ConfigError("context.token_budget must be positive.")
        if settings.embedding_workers <= 0:
            raise ConfigError("context.embedding_workers must be positive.")
        if settings.max_recovery_rounds < 0:
            raise ConfigError("context.max_recovery_rounds cannot be negative.")
        return settings


@dataclass(slots=True)
class LoggingSettings:
    level: str = "WARNING"
    file: Optional[str] = None

    @classmethod
    def from_config(cls, section: Mapping[str, Any]) -> "LoggingSettings":
        defaults = cls()
        level = (_optional_str(section, "level", defaults.level) or defaults.level).upper()
        return cls(level=level, file=_optional_str(section, "file", None))


@dataclass(slots=True)
class LoomConfig:
    """Fully resolved configuration for one project root."""

    root: Path
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    context: ContextSettings = field(default_factory=ContextSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        root: Path,
        *,
        env: Optional[Mapping[str, str]] = None,
    ) -> "LoomConfig":
        merged: Dict[str, Dict[str, Any]] = {
            name: dict(_section(config, name)) for name in ("provider", "context", "logging")
        }
        environ = os.environ if env is None else env
        for variable, (section, key) in _ENV_OVERRIDES.items():
            value = environ.get(variable)
            if value is not None and value != "":
                merged[section][key] = value
        if not merged["provider"].get("api_key") and environ.get("OPENAI_API_KEY"):
            merged["provider"]["api_key"] = environ["OPENAI_API_KEY"]
        return cls(
            root=Path(root).resolve(),
            provider=ProviderSettings.from_config(merged["provider"]),
            context=ContextSettings.from_config(merged["context"]),
            logging=LoggingSettings.from_config(merged["logging"]),
        )


def load_config(
    root: Path,
    config_path: Optional[Path] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
) -> LoomConfig:
    """Load ``loom.yaml`` (or ``config_path``) for ``root``; a missing file means defaults."""
    root = Path(root)
    path = config_path or root / DEFAULT_CONFIG_NAME
    data: Any = {}
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as error:
            raise ConfigError(f"Failed to parse config {path}: {error}", details={"path": str(path)}) from error
        if not isinstance(data, Mapping):
            raise ConfigError("Configuration must be a mapping at the top level.", details={"path": str(path)})
    elif config_path is not None:
        raise ConfigError(f"Config file not found: {path}", details={"path": str(path)})
    return LoomConfig.from_config(data, root, env=env)
