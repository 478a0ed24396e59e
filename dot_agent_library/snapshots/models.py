"""Snapshot models.

A snapshot records the tree of a profile source or an installed target at
one point in time. File bytes live in the content store; the snapshot holds
only paths, hashes and modes, plus (for targets) the manifest records in
force when it was taken.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from dot_agent_library.config.settings import EngineSettings
from dot_agent_library.locking import profile_lock_key
from dot_agent_library.locking import target_lock_key
from dot_agent_library.manifest.models import HASH_PATTERN
from dot_agent_library.manifest.models import InstallationManifest
from dot_agent_library.manifest.models import InstalledFileRecord
from dot_agent_library.manifest.models import InstalledProfile
from dot_agent_library.storage.paths import target_key
from dot_agent_library.tree.capture import CaptureFilter
from dot_agent_library.tree.capture import FileEntry
from dot_agent_library.tree.capture import TreeCapture


class SubjectKind(str, Enum):
    PROFILE = "profile"
    TARGET = "target"


class SnapshotTrigger(str, Enum):
    """What caused a snapshot to be taken."""

    MANUAL = "manual"
    PRE_INSTALL = "pre-install"
    PRE_UPGRADE = "pre-upgrade"
    PRE_REMOVE = "pre-remove"
    PRE_SWITCH = "pre-switch"
    PRE_RESTORE = "pre-restore"


@dataclass(frozen=True)
class SnapshotSubject:
    """The directory a snapshot is taken of.

    Attributes:
        kind: profile or target
        key: Profile name, or short hash of the resolved target path
        root: Directory captured and restored
    """

    kind: SubjectKind
    key: str
    root: Path

    @classmethod
    def for_profile(cls, name: str, root: Path) -> "SnapshotSubject":
        return cls(kind=SubjectKind.PROFILE, key=name, root=Path(root))

    @classmethod
    def for_target(cls, root: Path) -> "SnapshotSubject":
        root = Path(root).resolve()
        return cls(kind=SubjectKind.TARGET, key=target_key(root), root=root)

    @property
    def is_target(self) -> bool:
        return self.kind == SubjectKind.TARGET

    @property
    def lock_key(self) -> str:
        if self.is_target:
            return target_lock_key(self.root)
        return profile_lock_key(self.key)

    def capture_filter(self, settings: EngineSettings) -> CaptureFilter:
        if self.is_target:
            return CaptureFilter.for_target(settings)
        return CaptureFilter.for_profile(settings)

    def __str__(self) -> str:
        return f"{self.kind.value} {self.key} ({self.root})"


class SnapshotEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    content_hash: str = Field(pattern=HASH_PATTERN)
    executable: bool = False
    size: int = 0


class Snapshot(BaseModel):
    """An immutable point-in-time record of a subject's tree."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    subject_kind: SubjectKind
    subject_key: str
    subject_root: str
    label: str | None = None
    trigger: SnapshotTrigger = SnapshotTrigger.MANUAL
    created_at: datetime
    sequence: int = Field(ge=0, description="Per-subject counter ordering snapshots with equal timestamps")
    profiles_affected: list[str] = Field(default_factory=list)
    tree: list[SnapshotEntry] = Field(default_factory=list)
    installed_files: dict[str, InstalledFileRecord] | None = None
    installed_profiles: dict[str, InstalledProfile] | None = None

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.created_at, self.sequence)

    @property
    def file_count(self) -> int:
        return len(self.tree)

    def capture(self) -> TreeCapture:
        return TreeCapture(
            entries=tuple(
                FileEntry(path=e.path, content_hash=e.content_hash, executable=e.executable, size=e.size)
                for e in self.tree
            )
        )

    def content_hashes(self) -> set[str]:
        hashes = {e.content_hash for e in self.tree}
        if self.installed_files:
            hashes.update(r.content_hash for r in self.installed_files.values())
        return hashes

    def manifest(self) -> InstallationManifest | None:
        """Manifest in force when the snapshot was taken (target snapshots only)."""
        if self.installed_files is None:
            return None
        return InstallationManifest(
            target=self.subject_root,
            profiles=dict(self.installed_profiles or {}),
            files=dict(self.installed_files),
        )

    @staticmethod
    def entries_from(tree: TreeCapture) -> list[SnapshotEntry]:
        return [
            SnapshotEntry(path=e.path, content_hash=e.content_hash, executable=e.executable, size=e.size)
            for e in tree
        ]
