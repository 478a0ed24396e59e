"""dot-agent library: profile installation, reconciliation and snapshots.

Public Interface:
    - DotAgentEngine: Facade over every operation
    - EngineSettings / load_config: Configuration
    - Installer / ReconcileReport / Outcome / ActionKind: Reconciliation
    - SnapshotStore / Snapshot / SnapshotSubject: Snapshots
    - ProfileManager: Profile sources
    - DotAgentError and subclasses: Error taxonomy
"""

from .config import EngineSettings
from .config import load_config
from .engine import DotAgentEngine
from .errors import BlobNotFoundError
from .errors import ConflictError
from .errors import CorruptManifestError
from .errors import DotAgentError
from .errors import EngineIOError
from .errors import HashMismatchError
from .errors import LocalModificationsError
from .errors import NotInstalledError
from .errors import SnapshotNotFoundError
from .install import ActionKind
from .install import Installer
from .install import Outcome
from .install import ReconcileReport
from .profiles import ProfileManager
from .snapshots import Snapshot
from .snapshots import SnapshotStore
from .snapshots import SnapshotSubject

__all__ = [
    "DotAgentEngine",
    "EngineSettings",
    "load_config",
    "Installer",
    "ReconcileReport",
    "Outcome",
    "ActionKind",
    "SnapshotStore",
    "Snapshot",
    "SnapshotSubject",
    "ProfileManager",
    "DotAgentError",
    "EngineIOError",
    "ConflictError",
    "LocalModificationsError",
    "CorruptManifestError",
    "SnapshotNotFoundError",
    "HashMismatchError",
    "BlobNotFoundError",
    "NotInstalledError",
]
