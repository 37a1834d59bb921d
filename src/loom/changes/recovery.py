"""Rehydrate files the model asked for instead of answering with edits."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import TypeAdapter, ValidationError

from ..errors import RecoveryError

LOGGER = logging.getLogger(__name__)

__all__ = ["RecoveryResolver", "find_requested_paths"]

_PATH_LIST_ADAPTER = TypeAdapter(List[str])
_ESCAPED_WHITESPACE = {"n": " ", "r": " ", "t": " "}
_TRAILING_COMMA_RE = re.compile(r",(\s*\])")


def _locate_array(text: str) -> Optional[Tuple[int, str]]:
    """Return the start offset and cleaned text of the first string array.

    An array is recognised by ``[`` followed (after whitespace) by a double
    quote. Escaped whitespace outside string literals, such as a stray
    ``\\n`` between items, is replaced by a space.
    """
    start = 0
    while True:
        opening = text.find("[", start)
        if opening == -1:
            return None
        cursor = opening + 1
        while cursor < len(text) and text[cursor] in " \t\r\n":
            cursor += 1
        if cursor < len(text) and text[cursor] == '"':
            break
        start = opening + 1

    cleaned: List[str] = []
    in_string = False
    index = opening
    while index < len(text):
        char = text[index]
        if in_string:
            cleaned.append(char)
            if char == "\\" and index + 1 < len(text):
                cleaned.append(text[index + 1])
                index += 2
                continue
            if char == '"':
                in_string = False
        elif char == '"':
            in_string = True
            cleaned.append(char)
        elif char == "\\" and text[index + 1 : index + 2] in _ESCAPED_WHITESPACE:
            cleaned.append(_ESCAPED_WHITESPACE[text[index + 1]])
            index += 2
            continue
        else:
            cleaned.append(char)
            if char == "]":
                return opening, "".join(cleaned)
        index += 1
    raise RecoveryError(
        "Requested file list is not terminated.",
        details={"offset": opening},
    )


def find_requested_paths(response_text: str) -> List[str]:
    """Return the file paths requested by ``response_text``.

    An empty list means no request was found. A list that is present but
    cannot be decoded raises :class:`RecoveryError`.
    """
    if not response_text:
        return []
    located = _locate_array(response_text)
    if located is None:
        return []
    offset, token = located
    try:
        paths = _PATH_LIST_ADAPTER.validate_json(_TRAILING_COMMA_RE.sub(r"\1", token))
    except ValidationError as error:
        raise RecoveryError(
            f"Malformed requested file list: {error.errors()[0]['msg']}",
            details={"offset": offset, "token": token},
        ) from error
    return [path.strip() for path in paths if path.strip()]


class RecoveryResolver:
    """Read requested files from the project root into a follow-up context."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    def resolve(self, response_text: str) -> str:
        blocks: List[str] = []
        for requested in find_requested_paths(response_text):
            target = self._resolve_path(requested)
            if target is None:
                LOGGER.warning("Ignoring requested path outside the project: %s", requested)
                continue
            try:
                content = target.read_text(encoding="utf-8", errors="replace")
            except OSError as error:
                LOGGER.info("Skipping requested file %s: %s", requested, error)
                continue
            blocks.append(f"File: {requested}\n{content}")
        return "\n\n".join(blocks)

    def _resolve_path(self, requested: str) -> Optional[Path]:
        candidate = Path(requested)
        if candidate.is_absolute():
            return None
        resolved = (self.root / candidate).resolve()
        try:
            resolved.relative_to(self.root)
        except ValueError:
            return None
        return resolved
