"""Reconciliation report models."""

from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from pathlib import Path


class ActionKind(str, Enum):
    """What reconciliation does (or would do) with one installed path."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ADOPT = "adopt"  # existing identical content taken under management
    UNCHANGED = "unchanged"
    KEEP_LOCAL = "keep_local"  # local edit kept, profile content unchanged
    CONFLICT = "conflict"
    ORPHANED = "orphaned"  # gone from the profile but locally modified
    PROTECTED = "protected"
    MISSING = "missing"  # tracked file already gone from the target


class Outcome(str, Enum):
    ALREADY_INSTALLED = "already_installed"
    INSTALLED = "installed"
    UPGRADED = "upgraded"
    CONFLICTED = "conflicted"
    REMOVED = "removed"
    PARTIAL = "partial"
    SWITCHED = "switched"


# Kinds that change the target when applied.
MUTATING_KINDS = frozenset({ActionKind.CREATE, ActionKind.UPDATE, ActionKind.DELETE})


@dataclass(frozen=True)
class FileAction:
    """One planned or applied action on an installed path."""

    path: str
    kind: ActionKind
    source_path: str | None = None
    content_hash: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "kind": self.kind.value,
            "source_path": self.source_path,
            "content_hash": self.content_hash,
            "reason": self.reason,
        }


@dataclass
class ReconcileReport:
    """Result of an install, upgrade, diff, remove or switch.

    Attributes:
        operation: Operation name ("install", "upgrade", ...)
        profile: Profile the operation applies to
        target: Target directory
        outcome: Final outcome (None for previews that were not classified)
        actions: Per-path actions sorted by path
        dry_run: True when nothing was written
    """

    operation: str
    profile: str
    target: Path
    outcome: Outcome | None = None
    actions: list[FileAction] = field(default_factory=list)
    dry_run: bool = False
    snapshot_id: str | None = None

    def sort(self) -> None:
        self.actions.sort(key=lambda a: a.path)

    def paths(self, kind: ActionKind) -> list[str]:
        return sorted(a.path for a in self.actions if a.kind == kind)

    @property
    def conflicts(self) -> list[str]:
        return self.paths(ActionKind.CONFLICT)

    @property
    def kept(self) -> list[str]:
        """Paths left in place because of local modifications."""
        return sorted(a.path for a in self.actions if a.kind in (ActionKind.KEEP_LOCAL, ActionKind.ORPHANED))

    @property
    def changed(self) -> list[str]:
        return sorted(a.path for a in self.actions if a.kind in MUTATING_KINDS)

    @property
    def has_changes(self) -> bool:
        return bool(self.changed)

    def counts(self) -> dict[str, int]:
        result: dict[str, int] = {}
        for action in self.actions:
            result[action.kind.value] = result.get(action.kind.value, 0) + 1
        return result

    def summary(self) -> str:
        parts = [f"{count} {kind}" for kind, count in sorted(self.counts().items())]
        prefix = "[dry-run] " if self.dry_run else ""
        outcome = self.outcome.value if self.outcome else "planned"
        return f"{prefix}{self.operation} {self.profile}: {outcome} ({', '.join(parts) or 'no files'})"

    def to_dict(self) -> dict:
        return {
            "operation": self.operation,
            "profile": self.profile,
            "target": str(self.target),
            "outcome": self.outcome.value if self.outcome else None,
            "dry_run": self.dry_run,
            "snapshot_id": self.snapshot_id,
            "actions": [a.to_dict() for a in self.actions],
        }
