"""Path layout for engine-owned storage.

The layout is derived from explicit settings rather than read from the
environment on every call, so several engines with different homes can live
in one process.

Contract:
- Inputs: EngineSettings (or a home directory)
- Outputs: Resolved Path objects
- Side Effects: ensure() creates the directories
"""

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path

from dot_agent_library.config.settings import EngineSettings


@dataclass(frozen=True)
class StoragePaths:
    """On-disk layout rooted at the engine home.

    Example:
        >>> paths = StoragePaths(home=Path("/tmp/dot-agent"))
        >>> paths.objects_dir
        PosixPath('/tmp/dot-agent/store/objects')
    """

    home: Path

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "StoragePaths":
        return cls(home=Path(settings.home))

    @property
    def profiles_dir(self) -> Path:
        return self.home / "profiles"

    @property
    def store_dir(self) -> Path:
        return self.home / "store"

    @property
    def objects_dir(self) -> Path:
        return self.store_dir / "objects"

    @property
    def snapshots_dir(self) -> Path:
        return self.home / "snapshots"

    @property
    def locks_dir(self) -> Path:
        return self.home / "locks"

    @property
    def state_dir(self) -> Path:
        return self.home / "state"

    def ensure(self) -> "StoragePaths":
        """Create every directory of the layout."""
        for directory in (self.profiles_dir, self.objects_dir, self.snapshots_dir, self.locks_dir, self.state_dir):
            directory.mkdir(parents=True, exist_ok=True)
        return self


def target_key(target: Path) -> str:
    """Short stable key for a target directory (hash of its resolved path)."""
    digest = hashlib.sha256(os.fsencode(Path(target).resolve())).hexdigest()
    return digest[:12]
