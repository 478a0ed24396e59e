"""Install, upgrade, diff, remove and switch profiles on a target directory.

Contract:
- Inputs: Profile name and source directory, target directory, flags
- Outputs: ReconcileReport describing every path considered
- Side Effects: Writes/deletes files in the target and its manifest

Every operation plans first (captures, hashing, conflict detection) and
raises before any write when the plan cannot be applied. Writes go through a
FileTransaction; saving the manifest is the commit point, and a failed
manifest save rolls the files back.

Reconciliation of one tracked path (upgrade):

    live vs record   profile vs record   action
    -------------    -----------------   ------
    missing          any                 create (recreate)
    clean            unchanged           unchanged
    clean            changed             update
    divergent        unchanged           keep_local (locally_modified=True)
    divergent        changed             conflict (adopt if live == new, update with force)
    clean            removed             delete
    divergent        removed             orphaned (record kept; delete with force)
"""

import logging
from dataclasses import dataclass
from dataclasses import field
from datetime import UTC
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from dot_agent_library.config.settings import EngineSettings
from dot_agent_library.errors import ConflictError
from dot_agent_library.errors import LocalModificationsError
from dot_agent_library.errors import NotInstalledError
from dot_agent_library.errors import ProfileNotFoundError
from dot_agent_library.errors import TargetNotFoundError
from dot_agent_library.locking import LockManager
from dot_agent_library.manifest.models import InstallationManifest
from dot_agent_library.manifest.models import InstalledFileRecord
from dot_agent_library.manifest.models import InstalledProfile
from dot_agent_library.manifest.store import ManifestStore
from dot_agent_library.manifest.store import TargetRegistry
from dot_agent_library.profiles.models import ProfileMetadata
from dot_agent_library.snapshots.models import SnapshotSubject
from dot_agent_library.snapshots.models import SnapshotTrigger
from dot_agent_library.storage.content_store import ContentStore
from dot_agent_library.tree.capture import CaptureFilter
from dot_agent_library.tree.capture import FileEntry
from dot_agent_library.tree.capture import TreeCapture
from dot_agent_library.tree.capture import capture
from dot_agent_library.tree.capture import capture_paths

from .models import ActionKind
from .models import FileAction
from .models import Outcome
from .models import ReconcileReport
from .prefix import installed_path_for
from .transaction import FileTransaction

if TYPE_CHECKING:
    from dot_agent_library.snapshots.store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceFile:
    """A profile file together with the path it installs to."""

    source_path: str
    installed_path: str
    entry: FileEntry


@dataclass(frozen=True)
class ProfileSource:
    """Captured content of a profile, keyed by installed path."""

    name: str
    root: Path
    prefixed: bool
    files: dict[str, SourceFile]
    tree_hash: str
    version: str | None = None


@dataclass
class Plan:
    """Actions plus the writes, deletes and manifest edits that apply them."""

    actions: list[FileAction] = field(default_factory=list)
    writes: list[tuple[str, str, bool]] = field(default_factory=list)  # (path, hash, executable)
    deletes: list[str] = field(default_factory=list)
    records: list[InstalledFileRecord] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)

    @property
    def conflicts(self) -> list[str]:
        return sorted(a.path for a in self.actions if a.kind == ActionKind.CONFLICT)

    def paths_of(self, *kinds: ActionKind) -> list[str]:
        return sorted(a.path for a in self.actions if a.kind in kinds)


@dataclass
class TargetStatus:
    """Installed profiles and drift of one target."""

    target: Path
    profiles: list[InstalledProfile]
    divergent: list[str]
    missing: list[str]

    @property
    def is_clean(self) -> bool:
        return not self.divergent and not self.missing


class Installer:
    """Reconciles profile sources against target directories."""

    def __init__(
        self,
        content_store: ContentStore,
        settings: EngineSettings,
        locks: LockManager,
        registry: TargetRegistry,
        snapshots: "SnapshotStore | None" = None,
    ) -> None:
        self.content_store = content_store
        self.settings = settings
        self.locks = locks
        self.registry = registry
        self.snapshots = snapshots
        self.protected = frozenset(settings.protected_paths)

    # ------------------------------------------------------------------
    # Planning helpers
    # ------------------------------------------------------------------

    def load_source(self, profile_name: str, profile_root: Path, prefix: bool) -> ProfileSource:
        """Capture a profile into the content store and map its installed paths.

        Raises:
            ProfileNotFoundError: If profile_root is not a directory
            ConflictError: If two profile files map to the same installed path
        """
        profile_root = Path(profile_root)
        if not profile_root.is_dir():
            raise ProfileNotFoundError(profile_name)
        metadata = ProfileMetadata.load_from_dir(profile_root)
        patterns = metadata.exclude if metadata else []
        tree = capture(profile_root, CaptureFilter.for_install(self.settings, patterns), store=self.content_store)

        files: dict[str, SourceFile] = {}
        for entry in tree:
            installed = installed_path_for(entry.path, profile_name, prefix)
            if installed in files:
                raise ConflictError(
                    [installed],
                    f"Profile {profile_name} maps {files[installed].source_path} and {entry.path} to {installed}",
                )
            files[installed] = SourceFile(source_path=entry.path, installed_path=installed, entry=entry)

        return ProfileSource(
            name=profile_name,
            root=profile_root,
            prefixed=prefix,
            files=files,
            tree_hash=tree.tree_hash,
            version=metadata.version if metadata else None,
        )

    def _check_target(self, target: Path) -> Path:
        target = Path(target)
        if not target.is_dir():
            raise TargetNotFoundError(target)
        return target

    def _live(self, target: Path, manifest: InstallationManifest, source: ProfileSource | None = None) -> TreeCapture:
        paths = set(manifest.files)
        if source is not None:
            paths.update(source.files)
        return capture_paths(target, paths)

    def _record(self, profile: str, source_file: SourceFile, now: datetime, **kwargs) -> InstalledFileRecord:
        return InstalledFileRecord(
            profile=profile,
            source_path=source_file.source_path,
            installed_path=source_file.installed_path,
            content_hash=source_file.entry.content_hash,
            executable=source_file.entry.executable,
            installed_at=now,
            **kwargs,
        )

    def _plan_new_file(
        self,
        plan: Plan,
        manifest: InstallationManifest,
        source: ProfileSource,
        source_file: SourceFile,
        live: TreeCapture,
        force: bool,
        now: datetime,
    ) -> None:
        """Plan a profile file the manifest does not track for this profile."""
        path = source_file.installed_path
        entry = source_file.entry
        owner = manifest.owner_of(path)
        live_entry = live.get(path)

        if owner is not None and owner != source.name and not force:
            plan.actions.append(
                FileAction(path, ActionKind.CONFLICT, source_file.source_path, entry.content_hash, f"owned by {owner}")
            )
            return

        if live_entry is None:
            kind, reason = ActionKind.CREATE, None
        elif live_entry.content_hash == entry.content_hash and live_entry.executable == entry.executable:
            kind, reason = ActionKind.ADOPT, "identical content already present"
        elif live_entry.content_hash == entry.content_hash:
            kind, reason = ActionKind.UPDATE, "mode changed"
        elif source_file.source_path in self.protected:
            plan.actions.append(
                FileAction(path, ActionKind.PROTECTED, source_file.source_path, entry.content_hash, "protected path")
            )
            return
        elif force:
            kind, reason = ActionKind.UPDATE, "existing content overwritten (force)"
        else:
            plan.actions.append(
                FileAction(path, ActionKind.CONFLICT, source_file.source_path, entry.content_hash, "untracked file differs")
            )
            return

        plan.actions.append(FileAction(path, kind, source_file.source_path, entry.content_hash, reason))
        if kind != ActionKind.ADOPT:
            plan.writes.append((path, entry.content_hash, entry.executable))
        plan.records.append(self._record(source.name, source_file, now))

    def plan_install(
        self,
        manifest: InstallationManifest,
        source: ProfileSource,
        live: TreeCapture,
        force: bool = False,
    ) -> Plan:
        plan = Plan()
        now = datetime.now(UTC)
        for path in sorted(source.files):
            self._plan_new_file(plan, manifest, source, source.files[path], live, force, now)
        return plan

    def plan_upgrade(
        self,
        manifest: InstallationManifest,
        source: ProfileSource,
        live: TreeCapture,
        force: bool = False,
    ) -> Plan:
        plan = Plan()
        now = datetime.now(UTC)
        records = {r.installed_path: r for r in manifest.records_for(source.name)}

        for path in sorted(set(records) | set(source.files)):
            record = records.get(path)
            source_file = source.files.get(path)
            live_entry = live.get(path)

            if record is None:
                self._plan_new_file(plan, manifest, source, source_file, live, force, now)
                continue

            if source_file is None:
                self._plan_removed_file(plan, record, live_entry, force)
                continue

            new = source_file.entry
            changed = new.content_hash != record.content_hash or new.executable != record.executable

            if live_entry is None:
                plan.actions.append(
                    FileAction(path, ActionKind.CREATE, record.source_path, new.content_hash, "missing locally")
                )
                plan.writes.append((path, new.content_hash, new.executable))
                plan.records.append(self._record(source.name, source_file, now))
                continue

            divergent = live_entry.content_hash != record.content_hash
            if not divergent:
                if record.source_path in self.protected and new.content_hash != live_entry.content_hash:
                    plan.actions.append(
                        FileAction(path, ActionKind.PROTECTED, record.source_path, new.content_hash, "protected path")
                    )
                    plan.records.append(record)
                elif changed:
                    plan.actions.append(FileAction(path, ActionKind.UPDATE, record.source_path, new.content_hash))
                    plan.writes.append((path, new.content_hash, new.executable))
                    plan.records.append(self._record(source.name, source_file, now))
                else:
                    plan.actions.append(FileAction(path, ActionKind.UNCHANGED, record.source_path, new.content_hash))
                    if record.locally_modified:
                        plan.records.append(record.model_copy(update={"locally_modified": False}))
                continue

            if live_entry.content_hash == new.content_hash:
                plan.actions.append(
                    FileAction(path, ActionKind.ADOPT, record.source_path, new.content_hash, "local edit matches profile")
                )
                if live_entry.executable != new.executable:
                    plan.writes.append((path, new.content_hash, new.executable))
                plan.records.append(self._record(source.name, source_file, now))
            elif not changed:
                plan.actions.append(
                    FileAction(path, ActionKind.KEEP_LOCAL, record.source_path, record.content_hash, "locally modified")
                )
                plan.records.append(record.model_copy(update={"locally_modified": True}))
            elif force and record.source_path not in self.protected:
                plan.actions.append(
                    FileAction(path, ActionKind.UPDATE, record.source_path, new.content_hash, "local edit overwritten (force)")
                )
                plan.writes.append((path, new.content_hash, new.executable))
                plan.records.append(self._record(source.name, source_file, now))
            elif force:
                plan.actions.append(
                    FileAction(path, ActionKind.PROTECTED, record.source_path, new.content_hash, "protected path")
                )
                plan.records.append(record.model_copy(update={"locally_modified": True}))
            else:
                # Record keeps the old hash so the divergence stays visible.
                plan.actions.append(
                    FileAction(
                        path,
                        ActionKind.CONFLICT,
                        record.source_path,
                        new.content_hash,
                        "locally modified and changed in profile",
                    )
                )
                plan.records.append(record.model_copy(update={"locally_modified": True}))

        return plan

    def _plan_removed_file(
        self,
        plan: Plan,
        record: InstalledFileRecord,
        live_entry: FileEntry | None,
        force: bool,
    ) -> None:
        """Plan a tracked file that is no longer part of the profile."""
        path = record.installed_path
        if live_entry is None:
            plan.actions.append(FileAction(path, ActionKind.MISSING, record.source_path, record.content_hash))
            plan.dropped.append(path)
        elif record.source_path in self.protected:
            plan.actions.append(
                FileAction(path, ActionKind.PROTECTED, record.source_path, record.content_hash, "protected path kept")
            )
            plan.dropped.append(path)
        elif live_entry.content_hash == record.content_hash or force:
            plan.actions.append(FileAction(path, ActionKind.DELETE, record.source_path, record.content_hash))
            plan.deletes.append(path)
            plan.dropped.append(path)
        else:
            plan.actions.append(
                FileAction(path, ActionKind.ORPHANED, record.source_path, record.content_hash, "locally modified")
            )
            plan.records.append(record.model_copy(update={"locally_modified": True}))

    def plan_remove(
        self,
        manifest: InstallationManifest,
        profile_name: str,
        live: TreeCapture,
        force: bool = False,
    ) -> Plan:
        plan = Plan()
        for record in manifest.records_for(profile_name):
            path = record.installed_path
            live_entry = live.get(path)
            if live_entry is not None and live_entry.content_hash != record.content_hash and not force:
                if record.source_path in self.protected:
                    self._plan_removed_file(plan, record, live_entry, force)
                    continue
                plan.actions.append(
                    FileAction(path, ActionKind.KEEP_LOCAL, record.source_path, record.content_hash, "locally modified")
                )
                plan.records.append(record.model_copy(update={"locally_modified": True}))
                continue
            self._plan_removed_file(plan, record, live_entry, force)
        return plan

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _commit(self, target: Path, store: ManifestStore, manifest: InstallationManifest, plan: Plan) -> None:
        """Apply plan's file changes, then save manifest (already edited by the caller)."""
        tx = FileTransaction(target)
        with tx:
            for path, content_hash, executable in plan.writes:
                tx.write(path, self.content_store.get(content_hash), executable)
            for path in plan.deletes:
                tx.delete(path)
        tx.commit()
        try:
            store.save(manifest)
        except Exception:
            logger.error(f"Manifest save failed for {target}, rolling back file changes")
            tx.rollback()
            raise
        tx.finalize()

        if manifest.is_empty:
            self.registry.discard(target)
        else:
            self.registry.add(target)

        for action in plan.actions:
            if action.kind in (ActionKind.CONFLICT, ActionKind.KEEP_LOCAL, ActionKind.ORPHANED):
                logger.warning(f"{action.kind.value}: {action.path} ({action.reason})")
            else:
                logger.debug(f"{action.kind.value}: {action.path}")

    def _apply_to_manifest(self, manifest: InstallationManifest, plan: Plan) -> None:
        manifest.remove(plan.dropped)
        manifest.record(plan.records)

    def _profile_entry(
        self,
        manifest: InstallationManifest,
        source: ProfileSource,
        now: datetime,
    ) -> InstalledProfile:
        existing = manifest.profiles.get(source.name)
        return InstalledProfile(
            name=source.name,
            version=source.version,
            prefixed=source.prefixed,
            source_tree_hash=source.tree_hash,
            installed_at=existing.installed_at if existing else now,
            updated_at=now,
        )

    def _pre_snapshot(self, target: Path, trigger: SnapshotTrigger, *profiles: str) -> str | None:
        if self.snapshots is None:
            return None
        snapshot = self.snapshots.save(
            SnapshotSubject.for_target(target),
            label=trigger.value,
            trigger=trigger,
            profiles_affected=list(profiles),
        )
        return snapshot.id

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def install(
        self,
        profile_name: str,
        profile_root: Path,
        target: Path,
        force: bool = False,
        prefix: bool | None = None,
        dry_run: bool = False,
        snapshot: bool = False,
    ) -> ReconcileReport:
        """Install a profile into a target.

        Args:
            profile_name: Profile name (also the installed path prefix)
            profile_root: Profile source directory
            target: Target directory
            force: Overwrite untracked files that differ
            prefix: Prefix installed paths (default: settings.prefix_by_default)
            dry_run: Plan only
            snapshot: Snapshot the target before writing

        Returns:
            Report with outcome installed, or already_installed if the
            manifest already records the profile

        Raises:
            ConflictError: If existing files differ and force is False
            TargetNotFoundError: If the target does not exist
        """
        target = self._check_target(target)
        prefix = self.settings.prefix_by_default if prefix is None else prefix
        report = ReconcileReport("install", profile_name, target, dry_run=dry_run)

        with self.locks.for_target(target):
            store = ManifestStore(target)
            manifest = store.load()
            if manifest.has_profile(profile_name):
                logger.info(f"Profile {profile_name} already installed in {target}")
                report.outcome = Outcome.ALREADY_INSTALLED
                return report

            source = self.load_source(profile_name, profile_root, prefix)
            live = self._live(target, manifest, source)
            plan = self.plan_install(manifest, source, live, force)
            report.actions = plan.actions
            if plan.conflicts:
                raise ConflictError(plan.conflicts)
            if dry_run:
                report.outcome = Outcome.INSTALLED
                return report

            if snapshot:
                report.snapshot_id = self._pre_snapshot(target, SnapshotTrigger.PRE_INSTALL, profile_name)
            now = datetime.now(UTC)
            manifest.profiles[profile_name] = self._profile_entry(manifest, source, now)
            self._apply_to_manifest(manifest, plan)
            self._commit(target, store, manifest, plan)

        report.outcome = Outcome.INSTALLED
        logger.info(f"Installed {profile_name} into {target}: {report.summary()}")
        return report

    def upgrade(
        self,
        profile_name: str,
        profile_root: Path,
        target: Path,
        force: bool = False,
        prefix: bool | None = None,
        dry_run: bool = False,
        snapshot: bool = False,
    ) -> ReconcileReport:
        """Reconcile an installed profile with its current source.

        Local edits are never overwritten without force: paths changed on both
        sides are reported as conflicts and left alone.

        Raises:
            NotInstalledError: If the manifest has no record of the profile
        """
        target = self._check_target(target)
        report = ReconcileReport("upgrade", profile_name, target, dry_run=dry_run)

        with self.locks.for_target(target):
            store = ManifestStore(target)
            manifest = store.load()
            installed = manifest.profiles.get(profile_name)
            if installed is None:
                raise NotInstalledError(profile_name, target)

            prefix = installed.prefixed if prefix is None else prefix
            source = self.load_source(profile_name, profile_root, prefix)
            live = self._live(target, manifest, source)
            plan = self.plan_upgrade(manifest, source, live, force)
            report.actions = plan.actions
            report.outcome = Outcome.CONFLICTED if plan.conflicts else Outcome.UPGRADED
            if dry_run:
                return report

            if snapshot and (plan.writes or plan.deletes):
                report.snapshot_id = self._pre_snapshot(target, SnapshotTrigger.PRE_UPGRADE, profile_name)
            now = datetime.now(UTC)
            manifest.profiles[profile_name] = self._profile_entry(manifest, source, now)
            self._apply_to_manifest(manifest, plan)
            self._commit(target, store, manifest, plan)

        if plan.conflicts:
            logger.warning(f"Upgrade of {profile_name} left {len(plan.conflicts)} conflict(s) in {target}")
        logger.info(f"Upgraded {profile_name} in {target}: {report.summary()}")
        return report

    def diff(
        self,
        profile_name: str,
        profile_root: Path,
        target: Path,
        prefix: bool | None = None,
    ) -> ReconcileReport:
        """Preview what install (or upgrade, if installed) would do. Never writes."""
        target = self._check_target(target)
        manifest = ManifestStore(target).load()
        installed = manifest.profiles.get(profile_name)
        report = ReconcileReport("diff", profile_name, target, dry_run=True)

        if installed is None:
            prefix = self.settings.prefix_by_default if prefix is None else prefix
            source = self.load_source(profile_name, profile_root, prefix)
            plan = self.plan_install(manifest, source, self._live(target, manifest, source))
            report.outcome = Outcome.CONFLICTED if plan.conflicts else Outcome.INSTALLED
        else:
            prefix = installed.prefixed if prefix is None else prefix
            source = self.load_source(profile_name, profile_root, prefix)
            plan = self.plan_upgrade(manifest, source, self._live(target, manifest, source))
            report.outcome = Outcome.CONFLICTED if plan.conflicts else Outcome.UPGRADED

        report.actions = plan.actions
        return report

    def remove(
        self,
        profile_name: str,
        target: Path,
        force: bool = False,
        dry_run: bool = False,
        snapshot: bool = False,
    ) -> ReconcileReport:
        """Remove a profile's files from a target.

        Locally modified files are kept (and stay in the manifest) unless
        force; protected paths are kept but no longer tracked.

        Returns:
            Report with outcome removed, or partial if files were kept

        Raises:
            NotInstalledError: If the manifest has no record of the profile
        """
        target = self._check_target(target)
        report = ReconcileReport("remove", profile_name, target, dry_run=dry_run)

        with self.locks.for_target(target):
            store = ManifestStore(target)
            manifest = store.load()
            if not manifest.has_profile(profile_name):
                raise NotInstalledError(profile_name, target)

            plan = self.plan_remove(manifest, profile_name, self._live(target, manifest), force)
            report.actions = plan.actions
            kept = plan.paths_of(ActionKind.KEEP_LOCAL)
            report.outcome = Outcome.PARTIAL if kept else Outcome.REMOVED
            if dry_run:
                return report

            if snapshot and plan.deletes:
                report.snapshot_id = self._pre_snapshot(target, SnapshotTrigger.PRE_REMOVE, profile_name)
            self._apply_removal(manifest, profile_name, plan)
            self._commit(target, store, manifest, plan)

        if kept:
            logger.warning(f"Kept {len(kept)} locally modified file(s) of {profile_name} in {target}")
        logger.info(f"Removed {profile_name} from {target}: {report.summary()}")
        return report

    def _apply_removal(self, manifest: InstallationManifest, profile_name: str, plan: Plan) -> None:
        self._apply_to_manifest(manifest, plan)
        if not manifest.records_for(profile_name):
            manifest.profiles.pop(profile_name, None)

    def switch(
        self,
        old_name: str,
        new_name: str,
        new_root: Path,
        target: Path,
        force: bool = False,
        prefix: bool | None = None,
        dry_run: bool = False,
    ) -> ReconcileReport:
        """Replace one installed profile with another, all or nothing.

        Both halves are planned before anything changes and applied as one
        transaction under a single manifest save, so a failure leaves the
        target in its pre-switch state. With snapshot_before_switch the
        target is also snapshotted first.

        Raises:
            NotInstalledError: If old_name is not installed
            LocalModificationsError: If old_name has locally modified files and force is False
            ConflictError: If installing new_name would clobber files and force is False
        """
        target = self._check_target(target)
        prefix = self.settings.prefix_by_default if prefix is None else prefix
        report = ReconcileReport("switch", new_name, target, dry_run=dry_run)

        with self.locks.for_target(target):
            store = ManifestStore(target)
            manifest = store.load()
            if not manifest.has_profile(old_name):
                raise NotInstalledError(old_name, target)

            source = self.load_source(new_name, new_root, prefix)
            live = self._live(target, manifest, source)

            removal = self.plan_remove(manifest, old_name, live, force)
            kept = removal.paths_of(ActionKind.KEEP_LOCAL)
            if kept:
                raise LocalModificationsError(kept)

            # Plan the install against the state the removal leaves behind.
            self._apply_removal(manifest, old_name, removal)
            freed = set(removal.deletes)
            live_after = TreeCapture(entries=tuple(e for e in live if e.path not in freed))
            installation = Plan()
            if not manifest.has_profile(new_name):
                installation = self.plan_install(manifest, source, live_after, force)
                if installation.conflicts:
                    raise ConflictError(installation.conflicts)

            report.actions = removal.actions + installation.actions
            report.sort()
            report.outcome = Outcome.SWITCHED
            if dry_run:
                return report

            if self.settings.snapshot_before_switch:
                report.snapshot_id = self._pre_snapshot(target, SnapshotTrigger.PRE_SWITCH, old_name, new_name)

            if not manifest.has_profile(new_name):
                manifest.profiles[new_name] = self._profile_entry(manifest, source, datetime.now(UTC))
                self._apply_to_manifest(manifest, installation)
            written = {path for path, _, _ in installation.writes}
            combined = Plan(
                actions=report.actions,
                writes=installation.writes,
                deletes=[path for path in removal.deletes if path not in written],
            )
            self._commit(target, store, manifest, combined)

        logger.info(f"Switched {target} from {old_name} to {new_name}")
        return report

    def status(self, target: Path) -> TargetStatus:
        """Installed profiles and divergent/missing paths. Takes no lock."""
        target = self._check_target(target)
        manifest = ManifestStore(target).load()
        live = self._live(target, manifest)
        return TargetStatus(
            target=target,
            profiles=[manifest.profiles[name] for name in sorted(manifest.profiles)],
            divergent=sorted(manifest.divergence(live)),
            missing=sorted(manifest.missing(live)),
        )
