from __future__ import annotations

from pathlib import Path

import pytest

from loom.config import DEFAULT_CONFIG_NAME, load_config
from loom.errors import ConfigError


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path, env={})

    assert config.root == tmp_path.resolve()
    assert config.provider.name == "openai"
    assert config.provider.max_attempts == 3
    assert config.context.token_budget == 100_000
    assert config.context.rag is False
    assert config.context.top_n == -1
    assert config.logging.level == "WARNING"


def test_yaml_values_are_loaded(tmp_path: Path) -> None:
    (tmp_path / DEFAULT_CONFIG_NAME).write_text(
        "provider:\n"
        "  name: Ollama\n"
        "  chat_model: llama3.1\n"
        "  temperature: 0.3\n"
        "context:\n"
        "  rag: yes\n"
        "  threshold: 0.42\n"
        "  top_n: 5\n"
        "  ignore_file: .customignore\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8",
    )

    config = load_config(tmp_path, env={})

    assert config.provider.name == "ollama"
    assert config.provider.chat_model == "llama3.1"
    assert config.provider.temperature == pytest.approx(0.3)
    assert config.context.rag is True
    assert config.context.threshold == pytest.approx(0.42)
    assert config.context.top_n == 5
    assert config.context.ignore_file == ".customignore"
    assert config.logging.level == "DEBUG"


def test_environment_overrides_file(tmp_path: Path) -> None:
    (tmp_path / DEFAULT_CONFIG_NAME).write_text("provider:\n  chat_model: gpt-4o\n", encoding="utf-8")

    config = load_config(
        tmp_path,
        env={"LOOM_CHAT_MODEL": "gpt-4o-mini", "LOOM_RAG": "true", "LOOM_TIMEOUT": "30", "OPENAI_API_KEY": "sk-env"},
    )

    assert config.provider.chat_model == "gpt-4o-mini"
    assert config.provider.timeout == 30.0
    assert config.provider.api_key == "sk-env"
    assert config.context.rag is True


def test_loom_api_key_takes_precedence(tmp_path: Path) -> None:
    config = load_config(tmp_path, env={"LOOM_API_KEY": "sk-loom", "OPENAI_API_KEY": "sk-openai"})

    assert config.provider.api_key == "sk-loom"


def test_explicit_missing_config_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path, tmp_path / "other.yaml", env={})


@pytest.mark.parametrize(
    "content",
    [
        "provider: [unclosed\n",
        "- just\n- a list\n",
        "provider: openai\n",
        "context:\n  rag: sometimes\n",
        "context:\n  token_budget: lots\n",
        "context:\n  token_budget: 0\n",
        "provider:\n  max_attempts: 0\n",
    ],
)
def test_invalid_configuration_is_rejected(tmp_path: Path, content: str) -> None:
    (tmp_path / DEFAULT_CONFIG_NAME).write_text(content, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(tmp_path, env={})
