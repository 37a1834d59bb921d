"""Assemble bounded prompt packages from repository context and history."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from .prompts import render_system_prompt
from .structured import HistoryEntry

__all__ = ["PromptAssembler", "PromptPackage"]


@dataclass(slots=True)
class PromptPackage:
    """System and user prompts for one provider call."""

    system_prompt: str
    user_prompt: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class _Section:
    label: str
    title: str
    text: str
    priority: int
    order: int
    allow_truncate: bool = True


class PromptAssembler:
    """Combine context, history and the user request under a token budget.

    Sections are admitted in priority order: the user request first, then
    files the model asked for, then recent history, then repository context.
    Truncatable sections are cut to whatever budget remains.
    """

    DEFAULT_TOKEN_BUDGET = 100_000
    _CHARS_PER_TOKEN = 4

    def __init__(
        self,
        root: Path,
        *,
        token_budget: int = DEFAULT_TOKEN_BUDGET,
    ) -> None:
        self.root = Path(root)
        self._token_budget = max(1, token_budget)
        self._system_prompt = render_system_prompt(self.root.name)

    def build(
        self,
        contexts: Sequence[str],
        history: Sequence[HistoryEntry],
        user_input: str,
        requested_context: str = "",
    ) -> PromptPackage:
        sections = [
            _Section("request", "## User Request", user_input.strip(), priority=0, order=3, allow_truncate=False),
            _Section("requested_context", "## Requested Files", requested_context, priority=1, order=2),
            _Section(
                "history",
                "## Conversation History (most recent first)",
                "\n\n".join(entry.render() for entry in reversed(history)),
                priority=2,
                order=1,
            ),
            _Section("repository_context", "## Repository Context", "\n\n".join(contexts), priority=3, order=0),
        ]
        rendered, section_metadata, tokens_used = self._assemble(sections)
        return PromptPackage(
            system_prompt=self._system_prompt,
            user_prompt=rendered,
            metadata={
                "token_budget": self._token_budget,
                "tokens_used": tokens_used,
                "sections": section_metadata,
                "context_chunks": len(contexts),
                "history_entries": len(history),
            },
        )

    def _assemble(self, sections: Sequence[_Section]) -> tuple[str, list[dict[str, Any]], int]:
        remaining = self._token_budget
        admitted: list[tuple[_Section, str]] = []
        metadata: list[dict[str, Any]] = []
        tokens_used = 0

        for section in sorted(sections, key=lambda item: item.priority):
            text = section.text.strip()
            if not text:
                continue
            estimated = self._estimate_tokens(text)
            applied = ""
            truncated = False
            if estimated <= remaining or not section.allow_truncate:
                applied = text
            elif remaining > 0:
                applied = self._truncate_text_to_tokens(text, remaining)
                truncated = bool(applied)
            tokens = self._estimate_tokens(applied)
            metadata.append(
                {"label": section.label, "included": bool(applied), "truncated": truncated, "tokens": tokens}
            )
            if applied:
                admitted.append((section, applied))
                tokens_used += tokens
                remaining = max(0, remaining - tokens)

        admitted.sort(key=lambda item: item[0].order)
        body = "\n\n".join(f"{section.title}\n{text}" for section, text in admitted)
        return body, metadata, tokens_used

    def _estimate_tokens(self, text: str) -> int:
        if not text:
            return 0
        return max(1, math.ceil(len(text) / self._CHARS_PER_TOKEN))

    def _truncate_text_to_tokens(self, text: str, allowed_tokens: int) -> str:
        if allowed_tokens <= 0:
            return ""
        max_chars = allowed_tokens * self._CHARS_PER_TOKEN
        if len(text) <= max_chars:
            return text
        truncated = text[:max_chars].rstrip()
        if not truncated:
            return ""
        return f"{truncated}\n... (truncated)"
