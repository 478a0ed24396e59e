"""
Unit tests for the snapshot store.

Tests cover save/list ordering, restore round-trips, blob verification,
pruning with garbage collection and recovery of interrupted restores.
"""

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from dot_agent_library.engine import DotAgentEngine
from dot_agent_library.errors import BlobNotFoundError
from dot_agent_library.errors import CorruptManifestError
from dot_agent_library.errors import HashMismatchError
from dot_agent_library.errors import SnapshotNotFoundError
from dot_agent_library.manifest import MANIFEST_FILENAME
from dot_agent_library.manifest import ManifestStore
from dot_agent_library.snapshots import SnapshotTrigger
from dot_agent_library.snapshots.store import JOURNAL_FILENAME
from dot_agent_library.storage.content_store import compute_hash
from dot_agent_library.tree import ChangeStatus


@pytest.mark.unit
class TestSaveAndList:
    """Test recording snapshots."""

    def test_save_records_tree_and_blobs(self, engine: DotAgentEngine, target: Path, tree_writer: Callable) -> None:
        """Test a snapshot lists every captured file and stores its bytes."""
        tree_writer(target, {"agents/a.md": "a", "rules/r.md": "r"})

        snapshot = engine.snapshot_target(target, label="before experiments")

        assert snapshot.label == "before experiments"
        assert snapshot.trigger == SnapshotTrigger.MANUAL
        assert [e.path for e in snapshot.tree] == ["agents/a.md", "rules/r.md"]
        for entry in snapshot.tree:
            assert engine.content_store.contains(entry.content_hash)

    def test_target_snapshot_records_manifest(
        self, engine: DotAgentEngine, make_profile: Callable, target: Path
    ) -> None:
        """Test target snapshots carry the manifest in force but not the manifest file itself."""
        make_profile("work", {"agents/a.md": "a"})
        engine.install("work", target)

        snapshot = engine.snapshot_target(target)

        assert MANIFEST_FILENAME not in [e.path for e in snapshot.tree]
        assert list(snapshot.installed_profiles) == ["work"]
        assert list(snapshot.installed_files) == ["agents/work-a.md"]

    def test_list_newest_first(self, engine: DotAgentEngine, target: Path) -> None:
        """Test listing orders snapshots newest first with increasing sequence numbers."""
        ids = [engine.snapshot_target(target).id for _ in range(3)]

        snapshots = engine.snapshots.list(engine.target_subject(target))

        assert [s.id for s in snapshots] == list(reversed(ids))
        assert [s.sequence for s in snapshots] == [2, 1, 0]
        assert engine.snapshots.latest(engine.target_subject(target)).id == ids[-1]

    def test_list_unknown_subject_is_empty(self, engine: DotAgentEngine, target: Path) -> None:
        """Test a subject without snapshots lists nothing."""
        assert engine.snapshots.list(engine.target_subject(target)) == []
        assert engine.snapshots.latest(engine.target_subject(target)) is None

    def test_get_unknown_id_raises(self, engine: DotAgentEngine, target: Path) -> None:
        """Test unknown and malformed ids raise SnapshotNotFoundError."""
        subject = engine.target_subject(target)

        with pytest.raises(SnapshotNotFoundError):
            engine.snapshots.get(subject, "20250101-000000-abcdef")
        with pytest.raises(SnapshotNotFoundError):
            engine.snapshots.get(subject, "../../etc/passwd")

    def test_corrupt_record_raises(self, engine: DotAgentEngine, target: Path) -> None:
        """Test a record that fails validation is reported as corrupt."""
        subject = engine.target_subject(target)
        record_dir = engine.snapshots.subject_dir(subject)
        record_dir.mkdir(parents=True)
        (record_dir / "20250101-000000-abcdef.json").write_text(json.dumps({"id": "x"}))

        with pytest.raises(CorruptManifestError):
            engine.snapshots.list(subject)

    def test_diff_against_live(self, engine: DotAgentEngine, target: Path, tree_writer: Callable) -> None:
        """Test diff compares the snapshot with the live tree."""
        tree_writer(target, {"keep.md": "k", "edit.md": "1", "gone.md": "g"})
        snapshot = engine.snapshot_target(target)
        tree_writer(target, {"edit.md": "2", "new.md": "n"})
        (target / "gone.md").unlink()

        result = engine.snapshots.diff(engine.target_subject(target), snapshot.id)

        assert result.changes == [
            ("edit.md", ChangeStatus.MODIFIED),
            ("gone.md", ChangeStatus.REMOVED),
            ("new.md", ChangeStatus.ADDED),
        ]


@pytest.mark.unit
class TestRestore:
    """Test restoring subjects from snapshots."""

    def test_round_trip_restores_exact_tree(
        self, engine: DotAgentEngine, target: Path, tree_writer: Callable, tree_reader: Callable
    ) -> None:
        """Test restore brings back every file, including empty files and non-ASCII names."""
        original = {
            "empty.md": b"",
            "rules/日本語.md": "ルール".encode(),
            "agents/café.md": b"caf\xc3\xa9",
            "hooks/run.sh": b"#!/bin/sh\n",
        }
        tree_writer(target, original)
        (target / "hooks/run.sh").chmod(0o755)
        snapshot = engine.snapshot_target(target)

        tree_writer(target, {"rules/日本語.md": "changed", "extra/new.md": "new"})
        (target / "empty.md").unlink()
        (target / "hooks/run.sh").chmod(0o644)

        engine.restore_target(target, snapshot.id)

        assert tree_reader(target) == original
        assert (target / "hooks/run.sh").stat().st_mode & 0o111
        assert not (target / "extra").exists()

    def test_restore_preserves_excluded_content(
        self, engine: DotAgentEngine, target: Path, tree_writer: Callable
    ) -> None:
        """Test content the target filter excludes is left as it is now."""
        tree_writer(target, {"agents/a.md": "a", "projects/session.jsonl": "old", "history.jsonl": "h1"})
        snapshot = engine.snapshot_target(target)
        tree_writer(target, {"agents/a.md": "edited", "projects/session.jsonl": "new", "history.jsonl": "h2"})

        engine.restore_target(target, snapshot.id)

        assert (target / "agents/a.md").read_text() == "a"
        assert (target / "projects/session.jsonl").read_text() == "new"
        assert (target / "history.jsonl").read_text() == "h2"

    def test_restore_brings_back_manifest(
        self, engine: DotAgentEngine, make_profile: Callable, target: Path
    ) -> None:
        """Test restoring a target restores the manifest recorded with the snapshot."""
        make_profile("work", {"agents/a.md": "a"})
        engine.install("work", target)
        snapshot = engine.snapshot_target(target)
        engine.remove("work", target)
        assert engine.registry.list_targets() == []

        engine.restore_target(target, snapshot.id)

        manifest = ManifestStore(target).load()
        assert list(manifest.profiles) == ["work"]
        assert manifest.files["agents/work-a.md"].content_hash == compute_hash(b"a")
        assert engine.registry.list_targets() == [target.resolve()]

    def test_restore_to_empty_manifest_drops_manifest(
        self, engine: DotAgentEngine, make_profile: Callable, target: Path, tree_reader: Callable
    ) -> None:
        """Test restoring to a pre-install snapshot removes the manifest and registration."""
        snapshot = engine.snapshot_target(target)
        make_profile("work", {"agents/a.md": "a"})
        engine.install("work", target)

        engine.restore_target(target, snapshot.id)

        assert tree_reader(target) == {}
        assert not (target / MANIFEST_FILENAME).exists()
        assert engine.registry.list_targets() == []

    def test_dry_run_changes_nothing(
        self, engine: DotAgentEngine, target: Path, tree_writer: Callable, tree_reader: Callable
    ) -> None:
        """Test dry-run restore reports the changes without applying them."""
        tree_writer(target, {"a.md": "1"})
        snapshot = engine.snapshot_target(target)
        tree_writer(target, {"a.md": "2"})
        before = tree_reader(target)

        result = engine.restore_target(target, snapshot.id, dry_run=True)

        assert result.modified == ["a.md"]
        assert tree_reader(target) == before

    def test_save_current_snapshots_first(self, engine: DotAgentEngine, target: Path, tree_writer: Callable) -> None:
        """Test save_current records the state being replaced."""
        tree_writer(target, {"a.md": "1"})
        snapshot = engine.snapshot_target(target)
        tree_writer(target, {"a.md": "2"})

        engine.restore_target(target, snapshot.id, save_current=True)

        latest = engine.snapshots.latest(engine.target_subject(target))
        assert latest.trigger == SnapshotTrigger.PRE_RESTORE
        assert latest.tree[0].content_hash == compute_hash(b"2")

    def test_corrupt_blob_aborts_before_changes(
        self, engine: DotAgentEngine, target: Path, tree_writer: Callable, tree_reader: Callable
    ) -> None:
        """Test a blob whose bytes no longer match its hash aborts the restore untouched."""
        tree_writer(target, {"a.md": "original", "b.md": "b"})
        snapshot = engine.snapshot_target(target)
        tree_writer(target, {"a.md": "current"})
        before = tree_reader(target)

        blob = engine.content_store._blob_path(compute_hash(b"original"))
        blob.unlink()
        blob.write_bytes(b"bit rot")

        with pytest.raises(HashMismatchError):
            engine.restore_target(target, snapshot.id)

        assert tree_reader(target) == before

    def test_missing_blob_aborts_before_changes(
        self, engine: DotAgentEngine, target: Path, tree_writer: Callable, tree_reader: Callable
    ) -> None:
        """Test a missing blob aborts the restore untouched."""
        tree_writer(target, {"a.md": "original"})
        snapshot = engine.snapshot_target(target)
        tree_writer(target, {"a.md": "current"})
        engine.content_store._blob_path(compute_hash(b"original")).unlink()

        with pytest.raises(BlobNotFoundError):
            engine.restore_target(target, snapshot.id)

        assert (target / "a.md").read_text() == "current"

    def test_restore_removed_profile(self, engine: DotAgentEngine, make_profile: Callable, tree_reader: Callable) -> None:
        """Test a deleted profile directory is recreated from its snapshot."""
        make_profile("work", {"agents/a.md": "a", ".dot-agent.yaml": "name: work\n"})
        snapshot = engine.snapshot_profile("work")
        engine.profiles.remove("work")

        engine.restore_profile("work", snapshot.id)

        assert tree_reader(engine.profiles.resolve("work")) == {"agents/a.md": b"a"}
        assert (engine.profiles.resolve("work") / ".dot-agent.yaml").read_text() == "name: work\n"

    def test_interrupted_swap_recovered(self, engine: DotAgentEngine, target: Path, tree_writer: Callable) -> None:
        """Test a swap interrupted after moving the root aside is rolled back on the next call."""
        tree_writer(target, {"a.md": "a"})
        subject = engine.target_subject(target)
        backup = target.parent / ".dot-agent-backup-000000000000-target"
        target.rename(backup)
        journal = engine.snapshots.subject_dir(subject) / JOURNAL_FILENAME
        journal.parent.mkdir(parents=True)
        journal.write_text(
            json.dumps(
                {
                    "root": str(subject.root),
                    "staging": str(target.parent / ".dot-agent-restore-000000000000-target"),
                    "backup": str(backup),
                }
            )
        )

        snapshot = engine.snapshot_target(target)

        assert (target / "a.md").read_text() == "a"
        assert not backup.exists()
        assert not journal.exists()
        assert [e.path for e in snapshot.tree] == ["a.md"]


@pytest.mark.unit
class TestPrune:
    """Test pruning and garbage collection."""

    def test_prune_keeps_newest_and_collects_blobs(
        self, engine: DotAgentEngine, target: Path, tree_writer: Callable
    ) -> None:
        """Test keep_n=3 of 10 snapshots keeps the newest and frees blobs only pruned snapshots used."""
        ids = []
        for i in range(10):
            tree_writer(target, {"shared.md": "same", "a.md": f"version {i}"})
            ids.append(engine.snapshot_target(target).id)

        result = engine.prune_target(target, keep_n=3)

        remaining = [s.id for s in engine.snapshots.list(engine.target_subject(target))]
        assert remaining == list(reversed(ids[-3:]))
        assert sorted(result.removed) == sorted(ids[:7])
        assert sorted(result.collected_blobs) == sorted(compute_hash(f"version {i}".encode()) for i in range(7))
        for i in range(7, 10):
            assert engine.content_store.contains(compute_hash(f"version {i}".encode()))
        assert engine.content_store.contains(compute_hash(b"same"))

    def test_prune_keeps_blobs_of_installed_files(
        self, engine: DotAgentEngine, make_profile: Callable, target: Path
    ) -> None:
        """Test blobs referenced by a registered manifest survive pruning every snapshot."""
        make_profile("work", {"agents/a.md": "installed"})
        engine.install("work", target)
        engine.snapshot_target(target)

        engine.prune_target(target, keep_n=0)

        assert engine.snapshots.list(engine.target_subject(target)) == []
        assert engine.content_store.contains(compute_hash(b"installed"))

    def test_prune_dry_run(self, engine: DotAgentEngine, target: Path) -> None:
        """Test dry-run prune reports without deleting."""
        ids = [engine.snapshot_target(target).id for _ in range(4)]

        result = engine.prune_target(target, keep_n=1, dry_run=True)

        assert result.kept == [ids[-1]]
        assert len(engine.snapshots.list(engine.target_subject(target))) == 4

    def test_negative_keep_rejected(self, engine: DotAgentEngine, target: Path) -> None:
        """Test keep_n must not be negative."""
        with pytest.raises(ValueError):
            engine.prune_target(target, keep_n=-1)

    def test_delete_single_snapshot(self, engine: DotAgentEngine, target: Path) -> None:
        """Test delete removes one record."""
        first = engine.snapshot_target(target)
        second = engine.snapshot_target(target)
        subject = engine.target_subject(target)

        engine.snapshots.delete(subject, first.id)

        assert [s.id for s in engine.snapshots.list(subject)] == [second.id]
        with pytest.raises(SnapshotNotFoundError):
            engine.snapshots.delete(subject, first.id)
