"""Unit tests for staged file transactions."""

import os
from collections.abc import Callable
from pathlib import Path
from unittest.mock import patch

import pytest

from dot_agent_library.errors import EngineIOError
from dot_agent_library.install.transaction import FileTransaction


@pytest.mark.unit
class TestFileTransaction:
    """Test staging, commit, rollback and finalize."""

    def test_commit_applies_writes_and_deletes(self, target: Path, tree_writer: Callable, tree_reader: Callable) -> None:
        """Test a committed transaction replaces, creates and deletes files."""
        tree_writer(target, {"keep.md": "old", "gone/file.md": "bye"})
        tx = FileTransaction(target)
        tx.write("keep.md", b"new")
        tx.write("deep/new/file.md", b"created")
        tx.delete("gone/file.md")

        tx.commit()
        tx.finalize()

        assert tree_reader(target) == {"deep/new/file.md": b"created", "keep.md": b"new"}
        assert not (target / "gone").exists()
        assert sorted(p.name for p in target.iterdir()) == ["deep", "keep.md"]

    def test_staging_does_not_touch_destinations(self, target: Path, tree_writer: Callable) -> None:
        """Test nothing visible changes before commit."""
        tree_writer(target, {"a.md": "old"})
        tx = FileTransaction(target)
        tx.write("a.md", b"new")

        assert (target / "a.md").read_text() == "old"

        tx.abort()

        assert sorted(p.name for p in target.iterdir()) == ["a.md"]

    def test_rollback_restores_previous_state(
        self, target: Path, tree_writer: Callable, tree_reader: Callable
    ) -> None:
        """Test rollback after commit undoes every step."""
        tree_writer(target, {"a.md": "old-a", "b.md": "old-b"})
        before = tree_reader(target)
        tx = FileTransaction(target)
        tx.write("a.md", b"new-a")
        tx.write("sub/c.md", b"c")
        tx.delete("b.md")
        tx.commit()

        tx.rollback()

        assert tree_reader(target) == before
        assert not (target / "sub").exists()

    def test_failed_commit_rolls_back(self, target: Path, tree_writer: Callable, tree_reader: Callable) -> None:
        """Test a failure midway leaves the target as it was."""
        tree_writer(target, {"a.md": "old-a", "b.md": "old-b"})
        before = tree_reader(target)
        tx = FileTransaction(target)
        tx.write("a.md", b"new-a")
        tx.write("b.md", b"new-b")

        real_replace = os.replace
        calls = []

        def flaky_replace(src, dst):
            calls.append((src, dst))
            # a.md: backup + install succeed; b.md: backup fails
            if len(calls) == 3:
                raise OSError("disk full")
            return real_replace(src, dst)

        with patch("dot_agent_library.install.transaction.os.replace", side_effect=flaky_replace):
            with pytest.raises(EngineIOError):
                tx.commit()

        assert tree_reader(target) == before
        assert sorted(p.name for p in target.iterdir()) == ["a.md", "b.md"]

    def test_executable_bit_applied(self, target: Path) -> None:
        """Test staged files can be made executable."""
        tx = FileTransaction(target)
        tx.write("hooks/run.sh", b"#!/bin/sh\n", executable=True)
        tx.commit()
        tx.finalize()

        assert (target / "hooks" / "run.sh").stat().st_mode & 0o111

    def test_exception_in_block_aborts(self, target: Path) -> None:
        """Test leaving the with-block by exception discards staged files."""
        with pytest.raises(RuntimeError):
            with FileTransaction(target) as tx:
                tx.write("dir/a.md", b"a")
                raise RuntimeError("planning failed")

        assert list(target.iterdir()) == []

    def test_finalize_requires_commit(self, target: Path) -> None:
        """Test finalize refuses to run before commit."""
        with pytest.raises(RuntimeError):
            FileTransaction(target).finalize()
