"""Tree capture: deterministic (path, hash, mode) listings of a directory.

Captures are the unit snapshots and installations are built from. A capture
is all-or-nothing: any unreadable file or symlink aborts it.
"""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import os
import stat
from collections.abc import Iterable
from collections.abc import Iterator
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from dot_agent_library.errors import EngineIOError
from dot_agent_library.errors import SymlinkRejectedError
from dot_agent_library.errors import TargetNotFoundError
from dot_agent_library.storage.content_store import compute_hash

if TYPE_CHECKING:
    from dot_agent_library.config.settings import EngineSettings
    from dot_agent_library.storage.content_store import ContentStore

logger = logging.getLogger(__name__)

# Engine metadata, temp files and staging directories all start with this.
ENGINE_PREFIX = ".dot-agent"
ENGINE_TEMP_PREFIX = ".dot-agent-"


@dataclass(frozen=True)
class FileEntry:
    """One regular file in a capture."""

    path: str  # relative POSIX path
    content_hash: str
    executable: bool = False
    size: int = 0

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "content_hash": self.content_hash,
            "executable": self.executable,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: dict) -> FileEntry:
        return cls(
            path=data["path"],
            content_hash=data["content_hash"],
            executable=bool(data.get("executable", False)),
            size=int(data.get("size", 0)),
        )


@dataclass(frozen=True)
class TreeCapture:
    """Ordered listing of a directory's files at one point in time."""

    entries: tuple[FileEntry, ...] = ()
    _index: dict[str, FileEntry] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ordered = tuple(sorted(self.entries, key=lambda e: e.path))
        object.__setattr__(self, "entries", ordered)
        object.__setattr__(self, "_index", {e.path: e for e in ordered})
        if len(self._index) != len(ordered):
            raise ValueError("Duplicate path in tree capture")

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[FileEntry]:
        return iter(self.entries)

    def __contains__(self, path: object) -> bool:
        return path in self._index

    def get(self, path: str) -> FileEntry | None:
        return self._index.get(path)

    @property
    def paths(self) -> list[str]:
        return [e.path for e in self.entries]

    @property
    def content_hashes(self) -> set[str]:
        return {e.content_hash for e in self.entries}

    @property
    def tree_hash(self) -> str:
        """Hash of the canonical listing, identical for identical trees."""
        digest = hashlib.sha256()
        for entry in self.entries:
            mode = "x" if entry.executable else "-"
            digest.update(f"{entry.path}\0{entry.content_hash}\0{mode}\n".encode("utf-8", "surrogateescape"))
        return "sha256:" + digest.hexdigest()

    def to_list(self) -> list[dict]:
        return [e.to_dict() for e in self.entries]

    @classmethod
    def from_list(cls, data: Iterable[dict]) -> TreeCapture:
        return cls(entries=tuple(FileEntry.from_dict(d) for d in data))


@dataclass(frozen=True)
class CaptureFilter:
    """Exclusion rules applied while walking a directory.

    Attributes:
        excluded_dirs: Directory names skipped at any depth
        excluded_root_dirs: Directory names skipped only at the top level
        excluded_files: File names skipped at any depth
        excluded_prefixes: Name prefixes (files or directories) skipped at any depth
        excluded_patterns: fnmatch globs tested against the relative POSIX path
    """

    excluded_dirs: frozenset[str] = frozenset()
    excluded_root_dirs: frozenset[str] = frozenset()
    excluded_files: frozenset[str] = frozenset()
    excluded_prefixes: tuple[str, ...] = ()
    excluded_patterns: tuple[str, ...] = ()

    @classmethod
    def for_target(cls, settings: EngineSettings) -> CaptureFilter:
        """Filter for installed targets (skips agent system dirs and engine metadata)."""
        return cls(
            excluded_root_dirs=frozenset(settings.target_excluded_root_dirs),
            excluded_files=frozenset(settings.target_excluded_files),
            excluded_prefixes=(ENGINE_PREFIX,),
        )

    @classmethod
    def for_profile(cls, settings: EngineSettings) -> CaptureFilter:
        """Filter for profile sources; keeps the profile's own metadata file."""
        return cls(
            excluded_dirs=frozenset(settings.profile_excluded_dirs),
            excluded_files=frozenset(settings.profile_excluded_files),
            excluded_prefixes=(ENGINE_TEMP_PREFIX,),
        )

    @classmethod
    def for_install(cls, settings: EngineSettings, patterns: Iterable[str] = ()) -> CaptureFilter:
        """Filter selecting the files of a profile that get installed."""
        return cls(
            excluded_dirs=frozenset(settings.profile_excluded_dirs),
            excluded_files=frozenset(settings.profile_excluded_files),
            excluded_prefixes=(ENGINE_PREFIX,),
            excluded_patterns=tuple(patterns),
        )

    def excludes(self, rel_path: str, is_dir: bool) -> bool:
        """Check whether a relative POSIX path is excluded."""
        parts = PurePosixPath(rel_path).parts
        if not parts:
            return False
        name = parts[-1]

        if any(name.startswith(prefix) for prefix in self.excluded_prefixes):
            return True

        if is_dir:
            if name in self.excluded_dirs:
                return True
            if len(parts) == 1 and name in self.excluded_root_dirs:
                return True
            return False

        if name in self.excluded_files:
            return True
        return any(fnmatch.fnmatchcase(rel_path, pattern) for pattern in self.excluded_patterns)


def _is_executable(mode: int) -> bool:
    if os.name == "nt":
        return False
    return bool(mode & stat.S_IXUSR)


def _walk(root: Path, rel_dir: str, capture_filter: CaptureFilter) -> Iterator[tuple[str, Path]]:
    """Yield (relative path, absolute path) of every included file, sorted."""
    directory = root / rel_dir if rel_dir else root
    try:
        with os.scandir(directory) as it:
            children = sorted(it, key=lambda e: e.name)
    except OSError as e:
        raise EngineIOError(directory, "Failed to list directory") from e

    for child in children:
        rel = f"{rel_dir}/{child.name}" if rel_dir else child.name
        if child.is_symlink():
            # Excluded locations may hold anything, including symlinks.
            if capture_filter.excludes(rel, is_dir=False) or capture_filter.excludes(rel, is_dir=True):
                continue
            raise SymlinkRejectedError(Path(child.path))
        if child.is_dir(follow_symlinks=False):
            if capture_filter.excludes(rel, is_dir=True):
                continue
            yield from _walk(root, rel, capture_filter)
        elif child.is_file(follow_symlinks=False):
            if capture_filter.excludes(rel, is_dir=False):
                continue
            yield rel, Path(child.path)
        elif not capture_filter.excludes(rel, is_dir=False):
            raise EngineIOError(child.path, "Unsupported file type")


def capture(
    root: Path,
    capture_filter: CaptureFilter | None = None,
    store: ContentStore | None = None,
) -> TreeCapture:
    """Capture a directory tree.

    Args:
        root: Directory to walk
        capture_filter: Exclusion rules (default: exclude nothing)
        store: When given, every captured file's bytes are put into it

    Returns:
        TreeCapture sorted by path

    Raises:
        TargetNotFoundError: If root is not a directory
        SymlinkRejectedError: If a symlink is found outside excluded locations
        EngineIOError: If any file cannot be read (the capture is abandoned)
    """
    root = Path(root)
    if not root.is_dir():
        raise TargetNotFoundError(root)
    capture_filter = capture_filter or CaptureFilter()

    entries = []
    for rel, path in _walk(root, "", capture_filter):
        try:
            data = path.read_bytes()
            mode = path.stat().st_mode
        except OSError as e:
            raise EngineIOError(path, "Failed to read file") from e

        content_hash = store.put(data) if store is not None else compute_hash(data)
        entries.append(
            FileEntry(
                path=rel,
                content_hash=content_hash,
                executable=_is_executable(mode),
                size=len(data),
            )
        )

    result = TreeCapture(entries=tuple(entries))
    logger.debug(f"Captured {len(result)} file(s) under {root}")
    return result


def capture_paths(root: Path, paths: Iterable[str]) -> TreeCapture:
    """Capture only the given relative paths under root.

    Missing paths are left out of the result. Used to read the live state of
    tracked files, which may sit in locations a full target capture excludes.

    Raises:
        SymlinkRejectedError: If a path is a symlink
        EngineIOError: If a path exists but cannot be read
    """
    root = Path(root)
    entries = []
    for rel in sorted(set(paths)):
        path = root / rel
        if path.is_symlink():
            raise SymlinkRejectedError(path)
        if not path.exists():
            continue
        if not path.is_file():
            raise EngineIOError(path, "Expected a regular file")
        try:
            data = path.read_bytes()
            mode = path.stat().st_mode
        except OSError as e:
            raise EngineIOError(path, "Failed to read file") from e
        entries.append(
            FileEntry(
                path=rel,
                content_hash=compute_hash(data),
                executable=_is_executable(mode),
                size=len(data),
            )
        )
    return TreeCapture(entries=tuple(entries))
