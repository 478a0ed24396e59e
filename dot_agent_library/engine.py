"""Engine facade wiring storage, profiles, installer and snapshots.

Contract:
- Inputs: EngineSettings (explicit, or loaded with load_config)
- Outputs: ReconcileReport / Snapshot / DiffResult objects
- Side Effects: Everything the underlying components do; creates the
  engine home layout on construction

Example:
    >>> engine = DotAgentEngine.from_config()
    >>> engine.profiles.create("work")
    >>> report = engine.install("work", Path("~/project/.claude").expanduser())
    >>> report.outcome
    <Outcome.INSTALLED: 'installed'>
"""

import logging
from pathlib import Path

from dot_agent_library.config.loader import load_config
from dot_agent_library.config.settings import EngineSettings
from dot_agent_library.install.installer import Installer
from dot_agent_library.install.installer import TargetStatus
from dot_agent_library.install.models import ReconcileReport
from dot_agent_library.locking import LockManager
from dot_agent_library.manifest.store import TargetRegistry
from dot_agent_library.profiles.manager import ProfileManager
from dot_agent_library.profiles.models import validate_profile_name
from dot_agent_library.snapshots.gc import collect_garbage
from dot_agent_library.snapshots.models import Snapshot
from dot_agent_library.snapshots.models import SnapshotSubject
from dot_agent_library.snapshots.models import SnapshotTrigger
from dot_agent_library.snapshots.store import PruneResult
from dot_agent_library.snapshots.store import SnapshotStore
from dot_agent_library.storage.content_store import ContentStore
from dot_agent_library.storage.paths import StoragePaths
from dot_agent_library.tree.diff import DiffResult

logger = logging.getLogger(__name__)


class DotAgentEngine:
    """Profile-name based entry point to every engine operation."""

    def __init__(self, settings: EngineSettings) -> None:
        self.settings = settings
        self.paths = StoragePaths.from_settings(settings).ensure()
        self.content_store = ContentStore(self.paths.objects_dir)
        self.profiles = ProfileManager(self.paths.profiles_dir, ignore_dirs=settings.profile_excluded_dirs)
        self.registry = TargetRegistry(self.paths.state_dir)
        self.locks = LockManager(self.paths.locks_dir, timeout=settings.lock_timeout)
        self.snapshots = SnapshotStore(
            self.paths.snapshots_dir,
            self.content_store,
            settings,
            self.locks,
            self.registry,
        )
        self.installer = Installer(self.content_store, settings, self.locks, self.registry, self.snapshots)
        logger.debug(f"Engine initialized at {self.paths.home}")

    @classmethod
    def from_config(cls, config_path: Path | None = None, home: Path | str | None = None) -> "DotAgentEngine":
        return cls(load_config(config_path=config_path, home=home))

    # Installation

    def install(
        self,
        profile: str,
        target: Path,
        force: bool = False,
        prefix: bool | None = None,
        dry_run: bool = False,
        snapshot: bool = False,
    ) -> ReconcileReport:
        return self.installer.install(
            profile, self.profiles.resolve(profile), target, force=force, prefix=prefix, dry_run=dry_run, snapshot=snapshot
        )

    def upgrade(
        self,
        profile: str,
        target: Path,
        force: bool = False,
        dry_run: bool = False,
        snapshot: bool = False,
    ) -> ReconcileReport:
        return self.installer.upgrade(
            profile, self.profiles.resolve(profile), target, force=force, dry_run=dry_run, snapshot=snapshot
        )

    def diff(self, profile: str, target: Path, prefix: bool | None = None) -> ReconcileReport:
        return self.installer.diff(profile, self.profiles.resolve(profile), target, prefix=prefix)

    def remove(
        self,
        profile: str,
        target: Path,
        force: bool = False,
        dry_run: bool = False,
        snapshot: bool = False,
    ) -> ReconcileReport:
        return self.installer.remove(profile, target, force=force, dry_run=dry_run, snapshot=snapshot)

    def switch(
        self,
        old_profile: str,
        new_profile: str,
        target: Path,
        force: bool = False,
        prefix: bool | None = None,
        dry_run: bool = False,
    ) -> ReconcileReport:
        return self.installer.switch(
            old_profile,
            new_profile,
            self.profiles.resolve(new_profile),
            target,
            force=force,
            prefix=prefix,
            dry_run=dry_run,
        )

    def status(self, target: Path) -> TargetStatus:
        return self.installer.status(target)

    # Snapshots

    def target_subject(self, target: Path) -> SnapshotSubject:
        return SnapshotSubject.for_target(target)

    def profile_subject(self, profile: str) -> SnapshotSubject:
        return SnapshotSubject.for_profile(profile, self.profiles.resolve(profile))

    def _named_profile_subject(self, profile: str) -> SnapshotSubject:
        """Subject of a profile name whose directory may no longer exist."""
        return SnapshotSubject.for_profile(profile, self.profiles.profiles_dir / validate_profile_name(profile))

    def snapshot_target(self, target: Path, label: str | None = None) -> Snapshot:
        return self.snapshots.save(self.target_subject(target), label=label, trigger=SnapshotTrigger.MANUAL)

    def snapshot_profile(self, profile: str, label: str | None = None) -> Snapshot:
        return self.snapshots.save(self.profile_subject(profile), label=label, trigger=SnapshotTrigger.MANUAL)

    def restore_target(
        self, target: Path, snapshot_id: str, dry_run: bool = False, save_current: bool = False
    ) -> DiffResult:
        return self.snapshots.restore(
            self.target_subject(target), snapshot_id, dry_run=dry_run, save_current=save_current
        )

    def restore_profile(
        self, profile: str, snapshot_id: str, dry_run: bool = False, save_current: bool = False
    ) -> DiffResult:
        # A removed profile can be restored; its directory is recreated.
        return self.snapshots.restore(
            self._named_profile_subject(profile), snapshot_id, dry_run=dry_run, save_current=save_current
        )

    def prune_target(self, target: Path, keep_n: int, dry_run: bool = False) -> PruneResult:
        return self.snapshots.prune(self.target_subject(target), keep_n, dry_run=dry_run)

    def prune_profile(self, profile: str, keep_n: int, dry_run: bool = False) -> PruneResult:
        return self.snapshots.prune(self._named_profile_subject(profile), keep_n, dry_run=dry_run)

    def collect_garbage(self) -> list[str]:
        return collect_garbage(self.content_store, self.snapshots, self.registry)
