"""Tree capture and diff.

Public Interface:
    - capture: Walk a directory into a TreeCapture
    - CaptureFilter: Exclusion rules for a walk
    - TreeCapture / FileEntry: Capture models
    - diff / diff_hashes: Classify added/removed/modified/unchanged paths
    - DiffResult / ChangeStatus: Diff models
"""

from .capture import CaptureFilter
from .capture import FileEntry
from .capture import TreeCapture
from .capture import capture
from .capture import capture_paths
from .diff import ChangeStatus
from .diff import DiffResult
from .diff import diff
from .diff import diff_hashes

__all__ = [
    "capture",
    "capture_paths",
    "CaptureFilter",
    "FileEntry",
    "TreeCapture",
    "diff",
    "diff_hashes",
    "DiffResult",
    "ChangeStatus",
]
