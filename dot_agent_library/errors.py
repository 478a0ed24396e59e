"""Error taxonomy for the reconciliation engine.

Every error raised by the library derives from DotAgentError and carries an
exit_code so an outer command layer can map failures to process exit codes.

Contract:
- Planning errors (ConflictError, CorruptManifestError, ...) are raised before
  any filesystem mutation.
- EngineIOError wraps the underlying OSError (available as __cause__).
"""

from pathlib import Path


class DotAgentError(Exception):
    """Base class for all engine errors."""

    exit_code = 1


class EngineIOError(DotAgentError):
    """A path could not be read or written."""

    def __init__(self, path: Path | str, message: str) -> None:
        self.path = Path(path)
        super().__init__(f"{message}: {path}")


class SymlinkRejectedError(EngineIOError):
    """Tree capture found a symlink; symlinks are not supported."""

    def __init__(self, path: Path | str) -> None:
        super().__init__(path, "Symlinks are not supported")


class TargetNotFoundError(DotAgentError):
    """Target directory (or snapshot subject root) does not exist."""

    exit_code = 3

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(f"Target directory does not exist: {path}")


class ConflictError(DotAgentError):
    """One or more paths cannot be written without destroying foreign content.

    Attributes:
        paths: Installed paths (target-relative, POSIX) in conflict
    """

    exit_code = 6

    def __init__(self, paths: list[str], message: str | None = None) -> None:
        self.paths = sorted(paths)
        super().__init__(message or f"Conflict detected - existing files differ: {', '.join(self.paths)}")


class LocalModificationsError(ConflictError):
    """Tracked files were edited outside the engine."""

    exit_code = 4

    def __init__(self, paths: list[str]) -> None:
        super().__init__(paths, f"Local modifications detected: {', '.join(sorted(paths))}")


class CorruptManifestError(DotAgentError):
    """A manifest or snapshot record failed structural validation."""

    exit_code = 13

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Corrupt manifest {path}: {reason}")


class SnapshotNotFoundError(DotAgentError):
    exit_code = 12

    def __init__(self, snapshot_id: str) -> None:
        self.snapshot_id = snapshot_id
        super().__init__(f"Snapshot not found: {snapshot_id}")


class HashMismatchError(DotAgentError):
    """Stored blob bytes do not match their content hash (store corruption)."""

    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"Content hash mismatch: expected {expected}, got {actual}")


class BlobNotFoundError(DotAgentError):
    def __init__(self, content_hash: str) -> None:
        self.content_hash = content_hash
        super().__init__(f"Blob not found in content store: {content_hash}")


class NotInstalledError(DotAgentError):
    exit_code = 2

    def __init__(self, profile: str, target: Path | str) -> None:
        self.profile = profile
        super().__init__(f"Profile {profile} is not installed in {target}")


class ProfileNotFoundError(DotAgentError):
    exit_code = 2

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Profile not found: {name}")


class ProfileExistsError(DotAgentError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Profile already exists: {name}")


class InvalidProfileNameError(DotAgentError):
    exit_code = 5

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Invalid profile name: '{name}' - must contain only alphanumeric, hyphen, underscore")


class TargetLockedError(DotAgentError):
    """Another writer holds the lock for this target."""

    def __init__(self, key: str, timeout: float) -> None:
        self.key = key
        super().__init__(f"Could not lock {key} within {timeout:.1f}s (another operation is running)")
