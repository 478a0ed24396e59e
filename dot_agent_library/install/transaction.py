"""Staged, rename-based file changes under one root directory.

Contract:
- Inputs: Relative POSIX paths with new content or deletions
- Outputs: None (filesystem changes)
- Side Effects: write() stages temp files beside their destinations;
  commit() moves originals aside as backups and renames staged files into
  place, undoing every applied step if any step fails; finalize() drops the
  backups and prunes directories emptied by deletions.

Typical use:
    >>> tx = FileTransaction(target)
    >>> tx.write("agents/a.md", b"...")
    >>> tx.delete("rules/old.md")
    >>> tx.commit()
    >>> try:
    ...     manifest_store.save(manifest)
    ... except Exception:
    ...     tx.rollback()
    ...     raise
    >>> tx.finalize()
"""

import contextlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dot_agent_library.errors import EngineIOError
from dot_agent_library.storage.json_store import temp_path_for

logger = logging.getLogger(__name__)


@dataclass
class _Step:
    rel_path: str
    path: Path
    staged: Path | None = None  # None for deletions
    backup: Path | None = None
    applied: bool = False


class FileTransaction:
    """Collects file writes and deletions and applies them together."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._steps: list[_Step] = []
        self._created_dirs: list[Path] = []
        self._state = "staging"

    def __enter__(self) -> "FileTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None and self._state == "staging":
            self.abort()

    def _ensure_parent(self, path: Path) -> None:
        missing = []
        parent = path.parent
        while parent != self.root and not parent.exists():
            missing.append(parent)
            parent = parent.parent
        for directory in reversed(missing):
            try:
                directory.mkdir()
            except FileExistsError:
                continue
            except OSError as e:
                raise EngineIOError(directory, "Failed to create directory") from e
            self._created_dirs.append(directory)

    def write(self, rel_path: str, data: bytes, executable: bool = False) -> None:
        """Stage new content for rel_path."""
        path = self.root / rel_path
        self._ensure_parent(path)
        staged = temp_path_for(path, "stage")
        try:
            with open(staged, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if executable:
                staged.chmod(staged.stat().st_mode | 0o111)
        except OSError as e:
            with contextlib.suppress(OSError):
                staged.unlink()
            raise EngineIOError(path, "Failed to stage file") from e
        self._steps.append(_Step(rel_path=rel_path, path=path, staged=staged))

    def delete(self, rel_path: str) -> None:
        self._steps.append(_Step(rel_path=rel_path, path=self.root / rel_path))

    def abort(self) -> None:
        """Discard staged files without touching any destination."""
        for step in self._steps:
            if step.staged is not None:
                with contextlib.suppress(OSError):
                    step.staged.unlink()
        self._remove_created_dirs()
        self._steps.clear()
        self._state = "aborted"

    def commit(self) -> None:
        """Apply every staged step.

        Raises:
            EngineIOError: If a step fails; all applied steps are rolled back first
        """
        if self._state != "staging":
            raise RuntimeError(f"Cannot commit a transaction in state {self._state}")
        self._state = "committing"
        try:
            for step in self._steps:
                self._apply(step)
        except OSError as e:
            failed = next((s for s in self._steps if not s.applied), None)
            logger.error(f"Commit failed at {failed.rel_path if failed else '?'}, rolling back")
            self.rollback()
            raise EngineIOError(failed.path if failed else self.root, "Failed to apply change") from e
        self._state = "committed"
        logger.debug(f"Committed {len(self._steps)} change(s) under {self.root}")

    def _apply(self, step: _Step) -> None:
        if step.path.exists():
            step.backup = temp_path_for(step.path, "bak")
            os.replace(step.path, step.backup)
        if step.staged is not None:
            os.replace(step.staged, step.path)
        step.applied = True

    def rollback(self) -> None:
        """Undo applied steps in reverse order and drop staged leftovers."""
        for step in reversed(self._steps):
            if step.applied:
                if step.staged is not None:
                    with contextlib.suppress(FileNotFoundError):
                        step.path.unlink()
                if step.backup is not None:
                    os.replace(step.backup, step.path)
                step.applied = False
            elif step.backup is not None and step.backup.exists():
                os.replace(step.backup, step.path)
            if step.staged is not None:
                with contextlib.suppress(OSError):
                    step.staged.unlink()
        self._remove_created_dirs()
        self._state = "rolled_back"

    def finalize(self) -> None:
        """Drop backups and prune directories left empty by deletions."""
        if self._state != "committed":
            raise RuntimeError(f"Cannot finalize a transaction in state {self._state}")
        for step in self._steps:
            if step.backup is not None:
                with contextlib.suppress(FileNotFoundError):
                    step.backup.unlink()
        for step in self._steps:
            if step.staged is None:
                self._prune_empty_parents(step.path)
        self._state = "finalized"

    def _prune_empty_parents(self, path: Path) -> None:
        parent = path.parent
        while parent != self.root and self.root in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                return
            parent = parent.parent

    def _remove_created_dirs(self) -> None:
        for directory in reversed(self._created_dirs):
            with contextlib.suppress(OSError):
                directory.rmdir()
        self._created_dirs.clear()
