from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from loom.changes.applier import ChangeApplier, StagedChange, sweep_temp_files
from loom.errors import ApplyError
from loom.structured import CodeChange


class _Decisions:
    """Reviewer double answering from a mapping of path to decision."""

    def __init__(self, **decisions: bool) -> None:
        self._decisions = decisions
        self.seen: list[tuple[str, str]] = []

    def review(self, change: StagedChange, diff: str) -> bool:
        self.seen.append((change.relative_path, diff))
        assert change.temp_path.exists()
        return self._decisions.get(change.relative_path.replace("/", "_").replace(".", "_"), False)


def test_rejected_change_leaves_original_untouched(tmp_path: Path) -> None:
    original = tmp_path / "main.go"
    original.write_bytes(b"package main\r\n\r\nfunc main() {}\r\n")

    report = ChangeApplier(tmp_path).process([CodeChange("main.go", "package other\n")], _Decisions(main_go=False))

    assert report.rejected == ["main.go"]
    assert original.read_bytes() == b"package main\r\n\r\nfunc main() {}\r\n"
    assert not (tmp_path / "main.go.tmp").exists()


def test_accepted_change_replaces_original_exactly(tmp_path: Path) -> None:
    original = tmp_path / "main.go"
    original.write_text("package main\n", encoding="utf-8")
    new_code = "package main\r\n\r\nfunc main() {\n\tprintln(\"é\")\n}"

    report = ChangeApplier(tmp_path).process([CodeChange("main.go", new_code)], _Decisions(main_go=True))

    assert report.committed == ["main.go"]
    assert report.any_committed
    assert original.read_bytes() == new_code.encode("utf-8")
    assert not (tmp_path / "main.go.tmp").exists()


def test_new_file_in_missing_directory_is_created(tmp_path: Path) -> None:
    reviewer = _Decisions(pkg_util_helpers_py=True)

    report = ChangeApplier(tmp_path).process([CodeChange("pkg/util/helpers.py", "def helper():\n    pass\n")], reviewer)

    assert report.committed == ["pkg/util/helpers.py"]
    assert (tmp_path / "pkg" / "util" / "helpers.py").read_text(encoding="utf-8") == "def helper():\n    pass\n"
    path, diff = reviewer.seen[0]
    assert diff.startswith("--- /dev/null")
    assert "+def helper():" in diff


def test_stage_writes_sibling_temp_file(tmp_path: Path) -> None:
    (tmp_path / "a.py").write_text("x = 1\n", encoding="utf-8")
    applier = ChangeApplier(tmp_path)

    staged = applier.stage(CodeChange("a.py", "x = 2\n"))

    assert staged.temp_path == tmp_path.resolve() / "a.py.tmp"
    assert staged.existed
    assert (tmp_path / "a.py").read_text(encoding="utf-8") == "x = 1\n"
    diff = applier.diff(staged)
    assert "-x = 1" in diff
    assert "+x = 2" in diff


def test_failures_are_reported_per_file(tmp_path: Path) -> None:
    changes = [
        CodeChange("../escape.py", "bad"),
        CodeChange("/etc/passwd", "bad"),
        CodeChange("ok.py", "good = True\n"),
    ]

    report = ChangeApplier(tmp_path).process(changes, _Decisions(ok_py=True))

    assert report.committed == ["ok.py"]
    assert len(report.failed) == 2
    assert all(isinstance(error, ApplyError) for error in report.failed)
    assert (tmp_path / "ok.py").read_text(encoding="utf-8") == "good = True\n"
    assert not (tmp_path.parent / "escape.py").exists()
    payload = report.to_dict()
    assert payload["failed"][0]["path"] == "../escape.py"


def test_changes_targeting_git_metadata_are_refused(tmp_path: Path) -> None:
    with pytest.raises(ApplyError):
        ChangeApplier(tmp_path).stage(CodeChange(".git/config", "[core]"))


def test_apply_changes_without_staged_file_raises(tmp_path: Path) -> None:
    (tmp_path / "a.py").write_text("x = 1\n", encoding="utf-8")

    with pytest.raises(ApplyError) as excinfo:
        ChangeApplier(tmp_path).apply_changes("a.py")

    assert "failed to apply changes to file a.py" in str(excinfo.value)
    assert (tmp_path / "a.py").read_text(encoding="utf-8") == "x = 1\n"


def test_discard_removes_temp_file(tmp_path: Path) -> None:
    applier = ChangeApplier(tmp_path)
    staged = applier.stage(CodeChange("notes.md", "# Notes\n"))

    applier.discard(staged)
    applier.discard(staged)

    assert not staged.temp_path.exists()
    assert not (tmp_path / "notes.md").exists()


def test_sweep_removes_leftover_temp_files(tmp_path: Path) -> None:
    (tmp_path / "keep.py").write_text("x = 1\n", encoding="utf-8")
    (tmp_path / "keep.py.tmp").write_text("x = 2\n", encoding="utf-8")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    (nested / "deep.go.tmp").write_text("package deep\n", encoding="utf-8")
    git_dir = tmp_path / ".git"
    git_dir.mkdir()
    (git_dir / "index.tmp").write_text("git internal", encoding="utf-8")

    removed = sweep_temp_files(tmp_path)

    assert sorted(path.name for path in removed) == ["deep.go.tmp", "keep.py.tmp"]
    assert (tmp_path / "keep.py").exists()
    assert (git_dir / "index.tmp").exists()


def test_lifecycle_events_are_logged(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="loom.telemetry")

    ChangeApplier(tmp_path).process([CodeChange("a.py", "x = 1\n")], _Decisions(a_py=True))

    events = [
        json.loads(record.getMessage())
        for record in caplog.records
        if record.name == "loom.telemetry"
    ]
    assert [event["event"] for event in events] == ["change_staged", "change_committed"]
    assert events[1]["path"] == "a.py"
    assert "timestamp" in events[0]
