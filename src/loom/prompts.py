"""Prompt templates describing the response contract given to the model."""

from __future__ import annotations

__all__ = [
    "CONTEXT_REQUEST_INSTRUCTION",
    "EDIT_FORMAT_INSTRUCTION",
    "render_system_prompt",
]

EDIT_FORMAT_INSTRUCTION = (
    "## Response Format\n"
    "When you change a file, return its complete new content. Put a label line "
    "`File: <relative/path.ext>` directly above a fenced code block holding the whole file, "
    "for example:\n\n"
    "File: src/app/main.py\n"
    "```python\n"
    "<entire updated file>\n"
    "```\n\n"
    "Use one label and one block per file and never repeat a file. Paths are relative to the "
    "project root. Do not abbreviate code with comments such as `... existing code ...`."
)

CONTEXT_REQUEST_INSTRUCTION = (
    "## Requesting More Context\n"
    "The repository context may show only symbol outlines. If you need the full source of some "
    "files before answering, reply with nothing but a JSON array of their relative paths, for "
    'example `["src/app/main.py", "src/app/util.py"]`, and you will receive them.'
)


def render_system_prompt(root_name: str) -> str:
    """Render the system prompt for the project called ``root_name``."""
    return "\n\n".join(
        [
            f"You are a careful software engineer editing the `{root_name}` project.",
            EDIT_FORMAT_INSTRUCTION,
            CONTEXT_REQUEST_INSTRUCTION,
        ]
    )
