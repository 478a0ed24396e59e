"""Profile installation and reconciliation.

Public Interface:
    - Installer: install / upgrade / diff / remove / switch / status
    - ReconcileReport / FileAction / ActionKind / Outcome: Report models
    - TargetStatus: Result of Installer.status
    - FileTransaction: Staged rename-based file changes
    - prefix_path: Profile-relative path to installed path mapping
"""

from .installer import Installer
from .installer import TargetStatus
from .models import ActionKind
from .models import FileAction
from .models import Outcome
from .models import ReconcileReport
from .prefix import prefix_path
from .transaction import FileTransaction

__all__ = [
    "Installer",
    "TargetStatus",
    "ActionKind",
    "FileAction",
    "Outcome",
    "ReconcileReport",
    "prefix_path",
    "FileTransaction",
]
