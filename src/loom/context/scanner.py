"""Walk a project tree and produce condensed file records."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator, List, Optional

from ..errors import ScanError
from ..structured import FileRecord
from .compressor import SymbolCompressor
from .ignore import DEFAULT_IGNORE_FILE, IgnoreRules

LOGGER = logging.getLogger(__name__)

__all__ = ["RepositoryScanner", "scan"]


class RepositoryScanner:
    """Depth-first walker that reads every non-ignored file under ``root``.

    Entries within a directory are visited in lexical order so that output
    ordering is stable across platforms. Any read failure aborts the scan.
    """

    def __init__(
        self,
        root: Path,
        *,
        rules: Optional[IgnoreRules] = None,
        compressor: Optional[SymbolCompressor] = None,
        ignore_file: str = DEFAULT_IGNORE_FILE,
    ) -> None:
        self.root = Path(root).resolve()
        self.ignore_file = ignore_file
        self._rules = rules
        self.compressor = compressor or SymbolCompressor()

    def scan(self) -> List[FileRecord]:
        if not self.root.is_dir():
            raise ScanError(f"Project root is not a directory: {self.root}", details={"root": str(self.root)})
        # Reload per scan so edits to the ignore file apply to the next turn.
        rules = self._rules or IgnoreRules.for_root(self.root, self.ignore_file)
        records: List[FileRecord] = []
        for relative in self._walk(self.root, rules):
            absolute = self.root / relative
            try:
                data = absolute.read_bytes()
            except OSError as error:
                raise ScanError(
                    f"failed to read file: {relative}",
                    details={"path": relative, "error": str(error)},
                ) from error
            raw = data.decode("utf-8", errors="replace")
            records.append(
                FileRecord(
                    relative_path=relative,
                    raw_content=raw,
                    compressed_content=self.compressor.compress(relative, raw),
                )
            )
        LOGGER.debug("Scanned %d files under %s", len(records), self.root)
        return records

    def _walk(self, directory: Path, rules: IgnoreRules, prefix: str = "") -> Iterator[str]:
        try:
            with os.scandir(directory) as iterator:
                entries = sorted(iterator, key=lambda entry: entry.name)
        except OSError as error:
            raise ScanError(
                f"failed to list directory: {prefix or '.'}",
                details={"path": prefix or ".", "error": str(error)},
            ) from error

        for entry in entries:
            relative = f"{prefix}{entry.name}"
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError as error:
                raise ScanError(
                    f"failed to stat path: {relative}",
                    details={"path": relative, "error": str(error)},
                ) from error
            if is_dir:
                if rules.is_default_ignored_dir(entry.name) or rules.matches_custom(relative, is_dir=True):
                    continue
                yield from self._walk(Path(entry.path), rules, f"{relative}/")
                continue
            if entry.is_symlink() and not entry.is_file():
                LOGGER.debug("Skipping symlink without a regular file target: %s", relative)
                continue
            if rules.is_default_ignored_file(relative) or rules.matches_custom(relative):
                continue
            yield relative


def scan(root: Path, *, ignore_file: str = DEFAULT_IGNORE_FILE, compressor: Optional[SymbolCompressor] = None) -> List[FileRecord]:
    """Convenience wrapper returning the records for ``root``."""
    return RepositoryScanner(root, ignore_file=ignore_file, compressor=compressor).scan()
