from __future__ import annotations

from pathlib import Path

from loom.assembler import PromptAssembler
from loom.structured import HistoryEntry


def _entry(prompt: str, response: str) -> HistoryEntry:
    return HistoryEntry(prompt=prompt, response=response, created_at="2024-01-01T00:00:00+00:00")


def test_sections_render_in_reading_order(tmp_path: Path) -> None:
    assembler = PromptAssembler(tmp_path / "demo")

    package = assembler.build(["a.py\nx = 1"], [_entry("first", "done")], "  add tests  ", "File: b.py\ny = 2")

    prompt = package.user_prompt
    positions = [
        prompt.index("## Repository Context"),
        prompt.index("## Conversation History (most recent first)"),
        prompt.index("## Requested Files"),
        prompt.index("## User Request\nadd tests"),
    ]
    assert positions == sorted(positions)
    assert "`demo`" in package.system_prompt
    assert package.metadata["history_entries"] == 1
    assert package.metadata["context_chunks"] == 1


def test_history_is_most_recent_first(tmp_path: Path) -> None:
    history = [_entry("older", "r1"), _entry("newer", "r2")]

    prompt = PromptAssembler(tmp_path).build([], history, "go").user_prompt

    assert prompt.index("newer") < prompt.index("older")
    assert "### Here is user request:\n\nnewer" in prompt


def test_empty_sections_are_omitted(tmp_path: Path) -> None:
    package = PromptAssembler(tmp_path).build([], [], "just the request")

    assert package.user_prompt == "## User Request\njust the request"
    assert [section["label"] for section in package.metadata["sections"]] == ["request"]


def test_budget_truncates_context_but_never_the_request(tmp_path: Path) -> None:
    request = "r" * 40
    context = "c" * 400
    assembler = PromptAssembler(tmp_path, token_budget=20)

    package = assembler.build([context], [], request)

    sections = {section["label"]: section for section in package.metadata["sections"]}
    assert request in package.user_prompt
    assert sections["request"]["tokens"] == 10
    assert sections["repository_context"]["truncated"] is True
    assert "c" * 40 + "\n... (truncated)" in package.user_prompt
    assert "c" * 41 not in package.user_prompt


def test_oversized_request_excludes_lower_priority_sections(tmp_path: Path) -> None:
    package = PromptAssembler(tmp_path, token_budget=5).build(["context"], [_entry("p", "r")], "x" * 100)

    sections = {section["label"]: section for section in package.metadata["sections"]}
    assert sections["request"]["included"] is True
    assert sections["history"]["included"] is False
    assert sections["repository_context"]["included"] is False
    assert package.user_prompt == "## User Request\n" + "x" * 100


def test_system_prompt_carries_edit_and_context_request_contracts(tmp_path: Path) -> None:
    system_prompt = PromptAssembler(tmp_path / "shop").build([], [], "go").system_prompt

    assert system_prompt.startswith("You are a careful software engineer editing the `shop` project.")
    assert "## Response Format" in system_prompt
    assert system_prompt.endswith('you will receive them.')
