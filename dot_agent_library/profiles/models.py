"""Profile metadata models.

Each profile directory may carry a `.dot-agent.yaml` describing where it
came from and which of its files are not installed. Profiles without the
file are still valid; their metadata is derived from the directory name.
"""

from __future__ import annotations

import re
from datetime import UTC
from datetime import datetime
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError

from dot_agent_library.errors import CorruptManifestError
from dot_agent_library.errors import EngineIOError
from dot_agent_library.errors import InvalidProfileNameError
from dot_agent_library.storage.json_store import atomic_write_bytes

METADATA_FILENAME = ".dot-agent.yaml"
NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]{0,63}$")


def validate_profile_name(name: str) -> str:
    """Check a profile name: 1-64 chars, leading letter, then [A-Za-z0-9_-].

    Raises:
        InvalidProfileNameError: If the name does not match
    """
    if not NAME_PATTERN.match(name):
        raise InvalidProfileNameError(name)
    return name


class SourceKind(str, Enum):
    LOCAL = "local"
    GIT = "git"
    MARKETPLACE = "marketplace"


class ProfileSource(BaseModel):
    """Where a profile came from (git URL, marketplace plugin, ...)."""

    kind: SourceKind = SourceKind.LOCAL
    details: dict[str, str] = Field(default_factory=dict, description="Free-form origin details (url, branch, ...)")


class ProfileMetadata(BaseModel):
    """Contents of a profile's .dot-agent.yaml."""

    name: str
    version: str | None = None
    description: str | None = None
    source: ProfileSource = Field(default_factory=ProfileSource)
    exclude: list[str] = Field(default_factory=list, description="fnmatch globs of files that are never installed")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def load_from_dir(cls, root: Path) -> ProfileMetadata | None:
        """Load metadata from a profile directory.

        Returns:
            Metadata, or None if the profile has no metadata file

        Raises:
            CorruptManifestError: If the file is not valid YAML or fails validation
        """
        path = Path(root) / METADATA_FILENAME
        if not path.exists():
            return None
        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise CorruptManifestError(path, f"invalid YAML: {e}") from e
        except OSError as e:
            raise EngineIOError(path, "Failed to read profile metadata") from e
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise CorruptManifestError(path, str(e)) from e

    def save_to_dir(self, root: Path) -> None:
        path = Path(root) / METADATA_FILENAME
        text = yaml.safe_dump(
            self.model_dump(mode="json"),
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
        try:
            atomic_write_bytes(path, text.encode("utf-8"))
        except OSError as e:
            raise EngineIOError(path, "Failed to write profile metadata") from e


class ProfileInfo(BaseModel):
    """A profile directory as seen by the profile manager."""

    name: str
    path: Path
    metadata: ProfileMetadata | None = None
    file_count: int = 0

    @property
    def version(self) -> str | None:
        return self.metadata.version if self.metadata else None

    @property
    def description(self) -> str | None:
        return self.metadata.description if self.metadata else None
