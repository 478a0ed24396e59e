"""Profile directory management.

Contract:
- Inputs: Profile names, source directories
- Outputs: ProfileInfo records and profile paths
- Side Effects: Creates, copies, imports and removes directories under
  profiles_dir. Never touches snapshots or installed targets.
"""

import logging
import os
import shutil
import uuid
from collections.abc import Iterable
from datetime import UTC
from datetime import datetime
from pathlib import Path

from dot_agent_library.errors import EngineIOError
from dot_agent_library.errors import ProfileExistsError
from dot_agent_library.errors import ProfileNotFoundError
from dot_agent_library.errors import TargetNotFoundError
from dot_agent_library.tree.capture import ENGINE_TEMP_PREFIX

from .models import ProfileInfo
from .models import ProfileMetadata
from .models import ProfileSource
from .models import validate_profile_name

logger = logging.getLogger(__name__)

SCAFFOLD_DIRS = ("agents", "commands", "hooks", "rules", "skills")

CLAUDE_MD_TEMPLATE = """# {name} Profile

## Overview

<!-- Describe what this profile is for -->

## Usage

```bash
dot-agent install {name}
```

## Customization

<!-- Add project-specific instructions here -->
"""


class ProfileManager:
    """Manages profile source directories under one profiles directory.

    Example:
        >>> manager = ProfileManager(Path("/tmp/dot-agent/profiles"))
        >>> info = manager.create("work", description="Work setup")
        >>> manager.resolve("work")
        PosixPath('/tmp/dot-agent/profiles/work')
    """

    def __init__(self, profiles_dir: Path, ignore_dirs: Iterable[str] = ()) -> None:
        """Initialize profile manager.

        Args:
            profiles_dir: Directory holding one subdirectory per profile
            ignore_dirs: Directory names skipped when copying or importing
        """
        self.profiles_dir = Path(profiles_dir)
        self.profiles_dir.mkdir(parents=True, exist_ok=True)
        self.ignore_dirs = frozenset(ignore_dirs)

    def _path(self, name: str) -> Path:
        return self.profiles_dir / validate_profile_name(name)

    def _info(self, name: str, path: Path) -> ProfileInfo:
        file_count = 0
        for dirpath, dirnames, filenames in os.walk(path):
            dirnames[:] = [d for d in dirnames if d not in self.ignore_dirs]
            file_count += len(filenames)
        return ProfileInfo(
            name=name,
            path=path,
            metadata=ProfileMetadata.load_from_dir(path),
            file_count=file_count,
        )

    def list_profiles(self) -> list[ProfileInfo]:
        """All profiles, sorted by name."""
        profiles = []
        for path in sorted(self.profiles_dir.iterdir()):
            if path.is_dir() and not path.name.startswith("."):
                profiles.append(self._info(path.name, path))
        return profiles

    def exists(self, name: str) -> bool:
        return self._path(name).is_dir()

    def resolve(self, name: str) -> Path:
        """Path of a profile directory.

        Raises:
            InvalidProfileNameError: If the name is invalid
            ProfileNotFoundError: If no such profile exists
        """
        path = self._path(name)
        if not path.is_dir():
            raise ProfileNotFoundError(name)
        return path

    def get(self, name: str) -> ProfileInfo:
        return self._info(name, self.resolve(name))

    def create(self, name: str, description: str | None = None) -> ProfileInfo:
        """Create a scaffolded profile with a CLAUDE.md template.

        Raises:
            InvalidProfileNameError: If the name is invalid
            ProfileExistsError: If the profile already exists
        """
        path = self._path(name)
        if path.exists():
            raise ProfileExistsError(name)

        staging = self._staging_for(name)
        try:
            staging.mkdir()
            for directory in SCAFFOLD_DIRS:
                (staging / directory).mkdir()
            (staging / "CLAUDE.md").write_text(CLAUDE_MD_TEMPLATE.format(name=name), encoding="utf-8")
            ProfileMetadata(name=name, description=description).save_to_dir(staging)
            os.rename(staging, path)
        except OSError as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise EngineIOError(path, "Failed to create profile") from e

        logger.info(f"Created profile {name} at {path}")
        return self.get(name)

    def copy(self, source_name: str, dest_name: str, force: bool = False) -> ProfileInfo:
        """Copy a profile under a new name; metadata is renamed, source kept.

        Raises:
            ProfileNotFoundError: If the source profile does not exist
            ProfileExistsError: If dest exists and force is False
        """
        source = self.resolve(source_name)
        metadata = ProfileMetadata.load_from_dir(source)
        if metadata is None:
            metadata = ProfileMetadata(name=dest_name)
        now = datetime.now(UTC)
        metadata = metadata.model_copy(update={"name": dest_name, "created_at": now, "updated_at": now})
        self._install_copy(source, dest_name, force, metadata)
        logger.info(f"Copied profile {source_name} to {dest_name}")
        return self.get(dest_name)

    def import_dir(
        self,
        source: Path,
        name: str,
        force: bool = False,
        origin: ProfileSource | None = None,
    ) -> ProfileInfo:
        """Import a directory (e.g. a fetched git checkout) as a profile.

        Args:
            source: Directory to import
            name: Profile name
            force: Replace an existing profile of the same name
            origin: Where the directory came from (default: local)

        Raises:
            TargetNotFoundError: If source is not a directory
            ProfileExistsError: If the profile exists and force is False
        """
        source = Path(source)
        if not source.is_dir():
            raise TargetNotFoundError(source)
        validate_profile_name(name)

        existing = ProfileMetadata.load_from_dir(source)
        metadata = ProfileMetadata(
            name=name,
            version=existing.version if existing else None,
            description=existing.description if existing else None,
            exclude=existing.exclude if existing else [],
            source=origin or ProfileSource(),
        )
        self._install_copy(source, name, force, metadata)
        logger.info(f"Imported {source} as profile {name}")
        return self.get(name)

    def remove(self, name: str) -> None:
        """Delete a profile directory. Snapshots of the profile are kept."""
        path = self.resolve(name)
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise EngineIOError(path, "Failed to remove profile") from e
        logger.info(f"Removed profile {name}")

    def _staging_for(self, name: str) -> Path:
        return self.profiles_dir / f"{ENGINE_TEMP_PREFIX}new-{uuid.uuid4().hex[:12]}-{name}"

    def _ignore(self, directory: str, names: list[str]) -> set[str]:
        ignored = {n for n in names if n.startswith(ENGINE_TEMP_PREFIX)}
        ignored.update(n for n in names if n in self.ignore_dirs and Path(directory, n).is_dir())
        return ignored

    def _install_copy(self, source: Path, name: str, force: bool, metadata: ProfileMetadata) -> None:
        """Copy source into place as profile name, replacing an existing one only with force."""
        path = self._path(name)
        if path.exists() and not force:
            raise ProfileExistsError(name)

        staging = self._staging_for(name)
        try:
            shutil.copytree(source, staging, symlinks=True, ignore=self._ignore)
            metadata.save_to_dir(staging)
        except (OSError, shutil.Error) as e:
            shutil.rmtree(staging, ignore_errors=True)
            raise EngineIOError(source, "Failed to copy profile") from e

        old = None
        try:
            if path.exists():
                old = self.profiles_dir / f"{ENGINE_TEMP_PREFIX}old-{uuid.uuid4().hex[:12]}-{name}"
                os.rename(path, old)
            os.rename(staging, path)
        except OSError as e:
            if old is not None and old.exists() and not path.exists():
                os.rename(old, path)
            shutil.rmtree(staging, ignore_errors=True)
            raise EngineIOError(path, "Failed to replace profile") from e
        if old is not None:
            shutil.rmtree(old, ignore_errors=True)
