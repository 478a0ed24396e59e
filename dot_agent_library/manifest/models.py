"""Installation manifest models.

The manifest is the engine's record of which files on a target belong to
which profile and the content last written there. It is loaded from loosely
typed JSON and validated into these strict models; anything that does not
validate is rejected as corrupt.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Literal

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import model_validator

from dot_agent_library.tree.capture import TreeCapture

HASH_PATTERN = r"^sha256:[0-9a-f]{64}$"
MANIFEST_VERSION = 1


class StrictModel(BaseModel):
    """Base model rejecting unknown fields."""

    model_config = ConfigDict(extra="forbid")


class InstalledFileRecord(StrictModel):
    """One file written to a target by the engine."""

    profile: str = Field(description="Profile that owns the file")
    source_path: str = Field(description="Path relative to the profile root")
    installed_path: str = Field(description="Path relative to the target root")
    content_hash: str = Field(pattern=HASH_PATTERN, description="Hash of the content last written by the engine")
    executable: bool = Field(default=False, description="Executable bit written with the file")
    installed_at: datetime = Field(description="When the engine last wrote or adopted the file")
    locally_modified: bool = Field(default=False, description="Divergence observed during the last reconciliation")


class InstalledProfile(StrictModel):
    """A profile installed on a target."""

    name: str
    version: str | None = Field(default=None, description="Profile version at install/upgrade time")
    prefixed: bool = Field(default=True, description="Whether installed paths carry the profile prefix")
    source_tree_hash: str | None = Field(default=None, description="Tree hash of the installed profile source")
    installed_at: datetime
    updated_at: datetime


class InstallationManifest(StrictModel):
    """All installed file records for one target, keyed by installed path."""

    version: Literal[1] = MANIFEST_VERSION
    target: str
    profiles: dict[str, InstalledProfile] = Field(default_factory=dict)
    files: dict[str, InstalledFileRecord] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_consistency(self) -> "InstallationManifest":
        for name, profile in self.profiles.items():
            if profile.name != name:
                raise ValueError(f"profile key {name!r} does not match name {profile.name!r}")
        for path, record in self.files.items():
            if record.installed_path != path:
                raise ValueError(f"file key {path!r} does not match installed_path {record.installed_path!r}")
            if record.profile not in self.profiles:
                raise ValueError(f"file {path!r} belongs to unknown profile {record.profile!r}")
        return self

    @property
    def is_empty(self) -> bool:
        return not self.profiles and not self.files

    def has_profile(self, name: str) -> bool:
        return name in self.profiles

    def records_for(self, profile: str) -> list[InstalledFileRecord]:
        """Records owned by a profile, sorted by installed path."""
        return [r for path, r in sorted(self.files.items()) if r.profile == profile]

    def owner_of(self, installed_path: str) -> str | None:
        record = self.files.get(installed_path)
        return record.profile if record else None

    def record(self, entries: Iterable[InstalledFileRecord]) -> None:
        """Add or replace records; installed_path stays unique per target."""
        for entry in entries:
            self.files[entry.installed_path] = entry

    def remove(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.files.pop(path, None)

    def divergence(self, live_capture: TreeCapture, profile: str | None = None) -> set[str]:
        """Tracked paths whose live content no longer matches the recorded hash.

        Missing files are not reported here; see missing().
        """
        divergent = set()
        for path, record in self.files.items():
            if profile is not None and record.profile != profile:
                continue
            entry = live_capture.get(path)
            if entry is not None and entry.content_hash != record.content_hash:
                divergent.add(path)
        return divergent

    def missing(self, live_capture: TreeCapture, profile: str | None = None) -> set[str]:
        """Tracked paths that no longer exist on the target."""
        return {
            path
            for path, record in self.files.items()
            if (profile is None or record.profile == profile) and path not in live_capture
        }

    def tracked_hashes(self) -> set[str]:
        return {record.content_hash for record in self.files.values()}
