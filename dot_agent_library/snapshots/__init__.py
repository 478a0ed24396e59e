"""Point-in-time snapshots of profile sources and installed targets.

Public Interface:
    - SnapshotStore: save / list / get / latest / diff / restore / delete / prune
    - Snapshot / SnapshotSubject / SnapshotTrigger / SubjectKind: Models
    - PruneResult: Result of SnapshotStore.prune
    - collect_garbage: Delete blobs no snapshot or manifest refers to
"""

from .gc import collect_garbage
from .models import Snapshot
from .models import SnapshotSubject
from .models import SnapshotTrigger
from .models import SubjectKind
from .store import PruneResult
from .store import SnapshotStore

__all__ = [
    "SnapshotStore",
    "Snapshot",
    "SnapshotSubject",
    "SnapshotTrigger",
    "SubjectKind",
    "PruneResult",
    "collect_garbage",
]
