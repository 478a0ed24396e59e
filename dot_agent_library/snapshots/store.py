"""Snapshot storage and restore.

Contract:
- Inputs: SnapshotSubject (profile source or installed target), snapshot ids
- Outputs: Snapshot records, DiffResult of snapshot vs live tree
- Side Effects: Writes snapshot records and blobs; restore replaces the
  subject directory; prune deletes records and collects garbage

Layout:
    snapshots/<kind>s/<key>/<id>.json       one immutable record per snapshot
    snapshots/<kind>s/<key>/.restore.json   journal of an in-progress restore

Restore builds the complete new directory beside the subject root (snapshot
files, the subject's excluded content and, for targets, the snapshot's
manifest) and swaps it in with two renames. The journal lets the next
mutating call for the subject finish or undo a swap that was interrupted.
"""

import json
import logging
import os
import re
import shutil
import uuid
from collections.abc import Iterable
from collections.abc import Iterator
from dataclasses import dataclass
from dataclasses import field
from datetime import UTC
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from dot_agent_library.config.settings import EngineSettings
from dot_agent_library.errors import CorruptManifestError
from dot_agent_library.errors import EngineIOError
from dot_agent_library.errors import SnapshotNotFoundError
from dot_agent_library.errors import TargetNotFoundError
from dot_agent_library.locking import LockManager
from dot_agent_library.manifest.store import MANIFEST_FILENAME
from dot_agent_library.manifest.store import ManifestStore
from dot_agent_library.manifest.store import TargetRegistry
from dot_agent_library.storage.content_store import ContentStore
from dot_agent_library.storage.json_store import load_json
from dot_agent_library.storage.json_store import save_json
from dot_agent_library.tree.capture import ENGINE_TEMP_PREFIX
from dot_agent_library.tree.capture import CaptureFilter
from dot_agent_library.tree.capture import TreeCapture
from dot_agent_library.tree.capture import capture
from dot_agent_library.tree.diff import DiffResult
from dot_agent_library.tree.diff import diff

from .gc import collect_garbage
from .models import Snapshot
from .models import SnapshotSubject
from .models import SnapshotTrigger
from .models import SubjectKind

logger = logging.getLogger(__name__)

SNAPSHOT_ID_PATTERN = re.compile(r"^[0-9]{8}-[0-9]{6}-[0-9a-f]{6}$")
JOURNAL_FILENAME = ".restore.json"


@dataclass
class PruneResult:
    """Snapshots and blobs removed by a prune."""

    removed: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    collected_blobs: list[str] = field(default_factory=list)


def new_snapshot_id(created_at: datetime) -> str:
    return f"{created_at:%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"


class SnapshotStore:
    """Saves, lists, restores and prunes snapshots of profiles and targets."""

    def __init__(
        self,
        snapshots_dir: Path,
        content_store: ContentStore,
        settings: EngineSettings,
        locks: LockManager,
        registry: TargetRegistry,
    ) -> None:
        self.snapshots_dir = Path(snapshots_dir)
        self.snapshots_dir.mkdir(parents=True, exist_ok=True)
        self.content_store = content_store
        self.settings = settings
        self.locks = locks
        self.registry = registry

    def subject_dir(self, subject: SnapshotSubject) -> Path:
        return self.snapshots_dir / f"{subject.kind.value}s" / subject.key

    def _record_path(self, subject: SnapshotSubject, snapshot_id: str) -> Path:
        return self.subject_dir(subject) / f"{snapshot_id}.json"

    def _journal_path(self, subject: SnapshotSubject) -> Path:
        return self.subject_dir(subject) / JOURNAL_FILENAME

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def _load_record(self, path: Path) -> Snapshot:
        try:
            data = load_json(path)
        except json.JSONDecodeError as e:
            raise CorruptManifestError(path, f"invalid JSON: {e}") from e
        except OSError as e:
            raise EngineIOError(path, "Failed to read snapshot") from e
        if data is None:
            raise SnapshotNotFoundError(path.stem)
        try:
            return Snapshot.model_validate(data)
        except ValidationError as e:
            raise CorruptManifestError(path, str(e)) from e

    def _iter_record_paths(self, directory: Path) -> Iterator[Path]:
        if not directory.is_dir():
            return
        for path in sorted(directory.iterdir()):
            if path.suffix == ".json" and not path.name.startswith(".") and path.is_file():
                yield path

    def list(self, subject: SnapshotSubject) -> list[Snapshot]:
        """Snapshots of a subject, newest first."""
        snapshots = [self._load_record(p) for p in self._iter_record_paths(self.subject_dir(subject))]
        return sorted(snapshots, key=lambda s: s.sort_key, reverse=True)

    def iter_all(self) -> Iterator[Snapshot]:
        """Every snapshot record of every subject."""
        for kind in SubjectKind:
            kind_dir = self.snapshots_dir / f"{kind.value}s"
            if not kind_dir.is_dir():
                continue
            for subject_dir in sorted(kind_dir.iterdir()):
                if subject_dir.is_dir():
                    for path in self._iter_record_paths(subject_dir):
                        yield self._load_record(path)

    def get(self, subject: SnapshotSubject, snapshot_id: str) -> Snapshot:
        """Load one snapshot.

        Raises:
            SnapshotNotFoundError: If the subject has no snapshot with this id
            CorruptManifestError: If the record fails validation
        """
        if not SNAPSHOT_ID_PATTERN.match(snapshot_id):
            raise SnapshotNotFoundError(snapshot_id)
        path = self._record_path(subject, snapshot_id)
        if not path.exists():
            raise SnapshotNotFoundError(snapshot_id)
        return self._load_record(path)

    def latest(self, subject: SnapshotSubject) -> Snapshot | None:
        snapshots = self.list(subject)
        return snapshots[0] if snapshots else None

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(
        self,
        subject: SnapshotSubject,
        label: str | None = None,
        trigger: SnapshotTrigger = SnapshotTrigger.MANUAL,
        profiles_affected: Iterable[str] = (),
    ) -> Snapshot:
        """Capture the subject's tree and record it.

        Raises:
            TargetNotFoundError: If the subject root does not exist
            EngineIOError: If any file cannot be read (nothing is recorded)
        """
        with self.locks.hold(subject.lock_key):
            self._recover(subject)
            tree = capture(subject.root, subject.capture_filter(self.settings), store=self.content_store)

            installed_files = None
            installed_profiles = None
            if subject.is_target:
                manifest = ManifestStore(subject.root).load()
                installed_files = dict(manifest.files)
                installed_profiles = dict(manifest.profiles)

            existing = self.list(subject)
            sequence = max((s.sequence for s in existing), default=-1) + 1
            created_at = datetime.now(UTC)
            snapshot = Snapshot(
                id=new_snapshot_id(created_at),
                subject_kind=subject.kind,
                subject_key=subject.key,
                subject_root=str(subject.root),
                label=label,
                trigger=SnapshotTrigger(trigger),
                created_at=created_at,
                sequence=sequence,
                profiles_affected=list(profiles_affected),
                tree=Snapshot.entries_from(tree),
                installed_files=installed_files,
                installed_profiles=installed_profiles,
            )

            path = self._record_path(subject, snapshot.id)
            try:
                save_json(path, snapshot.model_dump(mode="json"))
            except OSError as e:
                raise EngineIOError(path, "Failed to write snapshot") from e

        logger.info(f"Saved snapshot {snapshot.id} of {subject} ({snapshot.file_count} file(s), {snapshot.trigger.value})")
        return snapshot

    # ------------------------------------------------------------------
    # Diff
    # ------------------------------------------------------------------

    def _capture_live(self, subject: SnapshotSubject) -> TreeCapture:
        if not subject.root.exists():
            return TreeCapture()
        return capture(subject.root, subject.capture_filter(self.settings))

    def diff(self, subject: SnapshotSubject, snapshot_id: str) -> DiffResult:
        """Compare a snapshot (base) with the subject's live tree."""
        snapshot = self.get(subject, snapshot_id)
        return diff(snapshot.capture(), self._capture_live(subject))

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def restore(
        self,
        subject: SnapshotSubject,
        snapshot_id: str,
        dry_run: bool = False,
        save_current: bool = False,
    ) -> DiffResult:
        """Make the subject's tree identical to a snapshot.

        Args:
            subject: Subject to restore
            snapshot_id: Snapshot to restore
            dry_run: Only compute the changes
            save_current: Snapshot the current state first (trigger pre-restore)

        Returns:
            Changes from the live tree to the snapshot

        Raises:
            SnapshotNotFoundError: If the snapshot does not exist
            HashMismatchError: If a stored blob is corrupt (nothing is changed)
            BlobNotFoundError: If a blob is missing (nothing is changed)
        """
        with self.locks.hold(subject.lock_key):
            self._recover(subject)
            snapshot = self.get(subject, snapshot_id)

            # Fetch and verify everything before touching the subject.
            blobs = {h: self.content_store.get(h) for h in {e.content_hash for e in snapshot.tree}}
            changes = diff(self._capture_live(subject), snapshot.capture())
            if dry_run:
                return changes

            if save_current and subject.root.is_dir():
                self.save(subject, label=f"before restore of {snapshot_id}", trigger=SnapshotTrigger.PRE_RESTORE)

            staging = self._stage(subject, snapshot, blobs)
            self._swap(subject, staging)

            if subject.is_target:
                manifest = snapshot.manifest()
                if manifest is None or manifest.is_empty:
                    self.registry.discard(subject.root)
                else:
                    self.registry.add(subject.root)

        logger.info(f"Restored {subject} to snapshot {snapshot_id} ({len(changes.changes)} change(s))")
        return changes

    def _sibling(self, root: Path, tag: str) -> Path:
        return root.parent / f"{ENGINE_TEMP_PREFIX}{tag}-{uuid.uuid4().hex[:12]}-{root.name}"

    def _stage(self, subject: SnapshotSubject, snapshot: Snapshot, blobs: dict[str, bytes]) -> Path:
        root = subject.root
        if not root.parent.is_dir():
            raise TargetNotFoundError(root.parent)
        staging = self._sibling(root, "restore")
        try:
            staging.mkdir()
            if root.is_dir():
                shutil.copymode(root, staging)
                self._copy_excluded(root, staging, "", subject.capture_filter(self.settings))

            for entry in snapshot.tree:
                path = staging / entry.path
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(blobs[entry.content_hash])
                if entry.executable:
                    path.chmod(path.stat().st_mode | 0o111)

            manifest = snapshot.manifest()
            if manifest is not None and not manifest.is_empty:
                manifest.target = str(root)
                save_json(staging / MANIFEST_FILENAME, manifest.model_dump(mode="json"))
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise EngineIOError(staging, "Failed to stage restore") from e
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        return staging

    def _copy_excluded(self, src: Path, dst: Path, rel_dir: str, capture_filter: CaptureFilter) -> None:
        """Copy everything under src that the subject's captures leave out."""
        with os.scandir(src) as it:
            children = sorted(it, key=lambda e: e.name)
        for child in children:
            if child.name.startswith(ENGINE_TEMP_PREFIX):
                continue
            rel = f"{rel_dir}/{child.name}" if rel_dir else child.name
            is_dir = child.is_dir(follow_symlinks=False)
            target = dst / child.name
            if child.is_symlink() or capture_filter.excludes(rel, is_dir=is_dir):
                if is_dir:
                    shutil.copytree(child.path, target, symlinks=True)
                else:
                    shutil.copy2(child.path, target, follow_symlinks=False)
            elif is_dir:
                target.mkdir(exist_ok=True)
                shutil.copymode(child.path, target)
                self._copy_excluded(Path(child.path), target, rel, capture_filter)

    def _swap(self, subject: SnapshotSubject, staging: Path) -> None:
        root = subject.root
        backup = self._sibling(root, "backup")
        journal = self._journal_path(subject)
        save_json(journal, {"root": str(root), "staging": str(staging), "backup": str(backup)})
        try:
            if root.exists():
                os.replace(root, backup)
            os.replace(staging, root)
        except OSError as e:
            self._recover(subject)
            raise EngineIOError(root, "Failed to swap restored tree into place") from e
        shutil.rmtree(backup, ignore_errors=True)
        journal.unlink(missing_ok=True)

    def _recover(self, subject: SnapshotSubject) -> None:
        """Finish or undo a restore swap left behind by an interrupted process."""
        journal = self._journal_path(subject)
        try:
            data = load_json(journal)
        except (OSError, json.JSONDecodeError) as e:
            raise CorruptManifestError(journal, f"unreadable restore journal: {e}") from e
        if data is None:
            return

        root = Path(data["root"])
        staging = Path(data["staging"])
        backup = Path(data["backup"])
        if not root.exists() and backup.exists():
            os.replace(backup, root)
            logger.warning(f"Rolled back interrupted restore of {root}")
        elif backup.exists():
            logger.warning(f"Completed interrupted restore of {root}")
        shutil.rmtree(staging, ignore_errors=True)
        shutil.rmtree(backup, ignore_errors=True)
        journal.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Delete / prune
    # ------------------------------------------------------------------

    def delete(self, subject: SnapshotSubject, snapshot_id: str) -> None:
        """Delete one snapshot record. Blobs are reclaimed by the next garbage collection."""
        with self.locks.hold(subject.lock_key):
            self._recover(subject)
            self.get(subject, snapshot_id)
            path = self._record_path(subject, snapshot_id)
            try:
                path.unlink()
            except OSError as e:
                raise EngineIOError(path, "Failed to delete snapshot") from e
        logger.info(f"Deleted snapshot {snapshot_id} of {subject}")

    def prune(self, subject: SnapshotSubject, keep_n: int, dry_run: bool = False) -> PruneResult:
        """Keep the keep_n newest snapshots of a subject, delete the rest, then collect garbage."""
        if keep_n < 0:
            raise ValueError("keep_n must be >= 0")

        with self.locks.hold(subject.lock_key):
            self._recover(subject)
            snapshots = self.list(subject)
            result = PruneResult(
                removed=[s.id for s in snapshots[keep_n:]],
                kept=[s.id for s in snapshots[:keep_n]],
            )
            if dry_run:
                return result

            for snapshot_id in result.removed:
                path = self._record_path(subject, snapshot_id)
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                except OSError as e:
                    raise EngineIOError(path, "Failed to delete snapshot") from e

        if result.removed:
            logger.info(f"Pruned {len(result.removed)} snapshot(s) of {subject}, kept {len(result.kept)}")
        result.collected_blobs = collect_garbage(self.content_store, self, self.registry)
        return result
