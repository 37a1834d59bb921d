"""Parse free-form model output into per-file code changes.

The response is scanned line by line. A *label* names a file and must take
one of two forms, optionally behind decoration such as ``#`` or ``*``::

    File: path/to/module.py
    3. path/to/module.py

The first fenced code block after an accepted label becomes that file's new
content. Lines shaped like a label but keyed by anything else (``Note: x.py``,
``step. x.py``) are rejected and also cancel any label still waiting for its
block, so a block is never attributed to the wrong file.
"""

from __future__ import annotations

import enum
import re
from typing import List, Optional

from ..structured import CodeChange

__all__ = ["ChangeExtractor", "extract_changes"]

_PATH = r"(?:[\w.\-]+[/\\])*[\w.\-]*\.\w+"

# decoration, key, separator, decoration, path, trailing noise
_LABEL_RE = re.compile(
    r"^(?P<prefix>[^\w\n]*)(?P<key>\w+)\s*(?P<sep>[:.])[^\S\n]*(?P<deco>[^\w\n./\\]*)"
    rf"(?P<path>{_PATH})(?P<trail>.*)$"
)
_FENCE_OPEN_RE = re.compile(r"^\s*(?P<ticks>`{3,})(?P<info>[^`]*)$")


class _ScanState(enum.Enum):
    SEEKING_LABEL = "seeking_label"
    LABEL_CANDIDATE = "label_candidate"
    SEEKING_FENCE = "seeking_fence"
    IN_FENCE = "in_fence"


def _is_closing_fence(line: str, ticks: int) -> bool:
    stripped = line.strip()
    return len(stripped) >= ticks and set(stripped) == {"`"}


def _label_path(match: re.Match[str]) -> Optional[str]:
    """Return the labelled path when the candidate uses a supported form."""
    key = match.group("key")
    separator = match.group("sep")
    if separator == ":" and key.lower() == "file":
        return match.group("path")
    if separator == "." and key.isdigit():
        return match.group("path")
    return None


class ChangeExtractor:
    """Finite-state scanner over response lines.

    Never raises; an empty list means there is nothing to apply.
    """

    def extract(self, response_text: str) -> List[CodeChange]:
        if not response_text:
            return []
        lines = response_text.replace("\r\n", "\n").replace("\r", "\n").split("\n")

        state = _ScanState.SEEKING_LABEL
        pending_path: Optional[str] = None
        fence_ticks = 0
        block: List[str] = []
        changes: List[CodeChange] = []
        seen: set[str] = set()

        for line in lines:
            if state is _ScanState.IN_FENCE:
                if _is_closing_fence(line, fence_ticks):
                    if pending_path is not None and pending_path not in seen:
                        seen.add(pending_path)
                        changes.append(CodeChange(relative_path=pending_path, code="\n".join(block)))
                    pending_path = None
                    block = []
                    state = _ScanState.SEEKING_LABEL
                else:
                    block.append(line)
                continue

            fence = _FENCE_OPEN_RE.match(line)
            if fence is not None:
                # A fence with no pending label is consumed so its body is not
                # mistaken for labels.
                fence_ticks = len(fence.group("ticks"))
                block = []
                state = _ScanState.IN_FENCE
                continue

            candidate = _LABEL_RE.match(line.strip())
            if candidate is None:
                continue
            state = _ScanState.LABEL_CANDIDATE
            pending_path = _label_path(candidate)
            state = _ScanState.SEEKING_FENCE if pending_path is not None else _ScanState.SEEKING_LABEL

        return changes


def extract_changes(response_text: str) -> List[CodeChange]:
    """Module-level shortcut for :meth:`ChangeExtractor.extract`."""
    return ChangeExtractor().extract(response_text)
