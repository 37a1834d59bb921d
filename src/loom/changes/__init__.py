"""Turn model responses into reviewed file edits."""

from .applier import ApplyReport, ChangeApplier, ChangeReviewer, StagedChange, sweep_temp_files
from .extractor import ChangeExtractor, extract_changes
from .recovery import RecoveryResolver, find_requested_paths

__all__ = [
    "ApplyReport",
    "ChangeApplier",
    "ChangeExtractor",
    "ChangeReviewer",
    "RecoveryResolver",
    "StagedChange",
    "extract_changes",
    "find_requested_paths",
    "sweep_temp_files",
]
