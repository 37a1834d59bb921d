"""Stage, review and commit extracted code changes.

Every change is written next to its target as ``<path>.tmp``. Accepted
changes are moved over the original with a single rename; rejected ones are
deleted. Leftover temp files from an interrupted turn are swept before the
next turn starts.
"""

from __future__ import annotations

import difflib
import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence

from ..context.ignore import TEMP_SUFFIX
from ..errors import ApplyError
from ..structured import CodeChange

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("loom.telemetry")

__all__ = [
    "ApplyReport",
    "ChangeApplier",
    "ChangeReviewer",
    "StagedChange",
    "sweep_temp_files",
]

# Version-control metadata is never part of the project tree.
_SWEEP_SKIP_DIRS = frozenset({".git", ".hg", ".svn"})


class ChangeReviewer(Protocol):
    """Presents a staged change and returns the user's decision."""

    def review(self, change: "StagedChange", diff: str) -> bool:
        ...


@dataclass(slots=True)
class StagedChange:
    """A change written to its temp sibling and awaiting a decision."""

    relative_path: str
    original_path: Path
    temp_path: Path
    existed: bool


@dataclass(slots=True)
class ApplyReport:
    """Outcome of one review pass over a set of changes."""

    committed: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    failed: List[ApplyError] = field(default_factory=list)

    @property
    def any_committed(self) -> bool:
        return bool(self.committed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "committed": list(self.committed),
            "rejected": list(self.rejected),
            "failed": [{"message": str(error), **error.details} for error in self.failed],
        }


def _serialise_event_value(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def _emit_change_event(event: str, **fields: Any) -> None:
    """Log one JSON line describing a change lifecycle transition."""
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


def _validate_relative_path(relative_path: str) -> PurePosixPath:
    """Reject paths that would write outside the project tree."""
    normalised = PurePosixPath(relative_path.replace("\\", "/"))
    if not relative_path.strip() or normalised.is_absolute() or Path(relative_path).is_absolute():
        raise ApplyError(f"Absolute or empty paths are not permitted: {relative_path!r}", details={"path": relative_path})
    parts = normalised.parts
    if any(part == ".." for part in parts):
        raise ApplyError(f"Path escaping detected: {relative_path}", details={"path": relative_path})
    if parts and parts[0] in _SWEEP_SKIP_DIRS:
        raise ApplyError(f"Changes may not target {parts[0]}: {relative_path}", details={"path": relative_path})
    return normalised


def sweep_temp_files(root: Path) -> List[Path]:
    """Delete every ``*.tmp`` file under ``root`` and return the removed paths."""
    removed: List[Path] = []
    root = Path(root)
    for current, dirs, files in os.walk(root):
        dirs[:] = [name for name in dirs if name not in _SWEEP_SKIP_DIRS]
        for name in files:
            if not name.endswith(TEMP_SUFFIX):
                continue
            target = Path(current) / name
            try:
                target.unlink()
            except FileNotFoundError:
                continue
            except OSError as error:
                LOGGER.warning("Unable to remove leftover temp file %s: %s", target, error)
                continue
            removed.append(target)
    _emit_change_event(
        "temp_sweep_completed",
        root=root,
        removed=[path.relative_to(root) for path in removed],
    )
    return removed


class ChangeApplier:
    """Drive the stage, review, commit and discard lifecycle for one turn."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    def stage(self, change: CodeChange) -> StagedChange:
        """Write ``change`` to ``<path>.tmp`` without touching the original."""
        relative = _validate_relative_path(change.relative_path)
        original = self.root.joinpath(*relative.parts)
        temp = original.with_name(original.name + TEMP_SUFFIX)
        try:
            temp.parent.mkdir(parents=True, exist_ok=True)
            temp.write_text(change.code, encoding="utf-8", newline="")
        except OSError as error:
            _emit_change_event("change_stage_failed", path=change.relative_path, error=str(error))
            raise ApplyError(
                f"failed to stage changes for file {change.relative_path}: {error}",
                details={"path": change.relative_path, "stage": "stage"},
            ) from error
        staged = StagedChange(
            relative_path=change.relative_path,
            original_path=original,
            temp_path=temp,
            existed=original.exists(),
        )
        _emit_change_event("change_staged", path=change.relative_path, bytes=len(change.code.encode("utf-8")))
        return staged

    def diff(self, staged: StagedChange) -> str:
        """Return a unified diff between the original file and the staged copy."""
        before = self._read_lines(staged.original_path) if staged.existed else []
        after = self._read_lines(staged.temp_path)
        return "".join(
            difflib.unified_diff(
                before,
                after,
                fromfile=f"a/{staged.relative_path}" if staged.existed else "/dev/null",
                tofile=f"b/{staged.relative_path}",
            )
        )

    def apply_changes(self, relative_path: str) -> None:
        """Atomically replace ``relative_path`` with its staged temp file."""
        relative = _validate_relative_path(relative_path)
        original = self.root.joinpath(*relative.parts)
        temp = original.with_name(original.name + TEMP_SUFFIX)
        try:
            os.replace(temp, original)
        except OSError as error:
            _emit_change_event("change_commit_failed", path=relative_path, error=str(error))
            raise ApplyError(
                f"failed to apply changes to file {relative_path}: {error}",
                details={"path": relative_path, "stage": "commit"},
            ) from error
        _emit_change_event("change_committed", path=relative_path)

    def discard(self, staged: StagedChange) -> None:
        try:
            staged.temp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as error:
            raise ApplyError(
                f"failed to discard staged file {staged.relative_path}: {error}",
                details={"path": staged.relative_path, "stage": "discard"},
            ) from error
        _emit_change_event("change_discarded", path=staged.relative_path)

    def process(self, changes: Sequence[CodeChange] | Iterable[CodeChange], reviewer: ChangeReviewer) -> ApplyReport:
        """Stage and review each change in order, committing accepted ones.

        Failures are recorded per file and never stop the remaining changes.
        """
        report = ApplyReport()
        for change in changes:
            staged: Optional[StagedChange] = None
            try:
                staged = self.stage(change)
                accepted = reviewer.review(staged, self.diff(staged))
                if accepted:
                    self.apply_changes(change.relative_path)
                    report.committed.append(change.relative_path)
                else:
                    self.discard(staged)
                    report.rejected.append(change.relative_path)
            except ApplyError as error:
                LOGGER.warning("%s", error)
                report.failed.append(error)
                if staged is not None:
                    self._discard_quietly(staged)
        return report

    def _discard_quietly(self, staged: StagedChange) -> None:
        try:
            staged.temp_path.unlink()
        except OSError:
            LOGGER.debug("Temp file %s already gone or left for the next sweep", staged.temp_path)

    @staticmethod
    def _read_lines(path: Path) -> List[str]:
        try:
            return path.read_text(encoding="utf-8", errors="replace").splitlines(keepends=True)
        except OSError as error:
            raise ApplyError(f"failed to read {path.name} for review: {error}", details={"path": str(path)}) from error
