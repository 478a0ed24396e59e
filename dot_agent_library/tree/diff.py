"""Diff engine: classify paths between two tree captures."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from dataclasses import field
from enum import Enum

from .capture import FileEntry
from .capture import TreeCapture


class ChangeStatus(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


@dataclass
class DiffResult:
    """Partition of paths from a base capture to a target capture.

    All lists are sorted by path.
    """

    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    @property
    def changes(self) -> list[tuple[str, ChangeStatus]]:
        """Every changed path with its status, ordered by path."""
        items = [(p, ChangeStatus.ADDED) for p in self.added]
        items += [(p, ChangeStatus.REMOVED) for p in self.removed]
        items += [(p, ChangeStatus.MODIFIED) for p in self.modified]
        return sorted(items, key=lambda item: item[0])

    def status_of(self, path: str) -> ChangeStatus | None:
        for status, paths in (
            (ChangeStatus.ADDED, self.added),
            (ChangeStatus.REMOVED, self.removed),
            (ChangeStatus.MODIFIED, self.modified),
            (ChangeStatus.UNCHANGED, self.unchanged),
        ):
            if path in paths:
                return status
        return None

    def summary(self) -> str:
        if not self.has_changes:
            return f"No changes ({len(self.unchanged)} unchanged)"
        return (
            f"{len(self.added)} added, {len(self.removed)} removed, "
            f"{len(self.modified)} modified, {len(self.unchanged)} unchanged"
        )


def _entries_differ(a: FileEntry, b: FileEntry) -> bool:
    return a.content_hash != b.content_hash or a.executable != b.executable


def diff(base: TreeCapture, target: TreeCapture) -> DiffResult:
    """Compare two captures.

    Added: in target, not base. Removed: in base, not target. Modified: in
    both with a different hash or executable bit. Pure function.
    """
    result = DiffResult()
    for path in sorted(set(base.paths) | set(target.paths)):
        old = base.get(path)
        new = target.get(path)
        if old is None:
            result.added.append(path)
        elif new is None:
            result.removed.append(path)
        elif _entries_differ(old, new):
            result.modified.append(path)
        else:
            result.unchanged.append(path)
    return result


def diff_hashes(recorded: dict[str, str], live: TreeCapture, paths: Iterable[str] | None = None) -> DiffResult:
    """Compare recorded path -> hash pairs (e.g. manifest records) with a live capture.

    Only hashes are compared. When paths is given, live files outside that
    set are ignored, so untracked files never show up as added.
    """
    result = DiffResult()
    scope = set(paths) if paths is not None else set(recorded) | set(live.paths)
    for path in sorted(scope):
        expected = recorded.get(path)
        entry = live.get(path)
        if expected is None and entry is None:
            continue
        if expected is None:
            result.added.append(path)
        elif entry is None:
            result.removed.append(path)
        elif entry.content_hash != expected:
            result.modified.append(path)
        else:
            result.unchanged.append(path)
    return result
