"""Persistence for installation manifests and the registry of known targets."""

import json
import logging
from datetime import UTC
from datetime import datetime
from pathlib import Path

from filelock import FileLock
from pydantic import ValidationError

from dot_agent_library.errors import CorruptManifestError
from dot_agent_library.errors import EngineIOError
from dot_agent_library.storage.json_store import load_json
from dot_agent_library.storage.json_store import save_json

from .models import InstallationManifest

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = ".dot-agent-manifest.json"


def parse_manifest(data: object, source: Path | str) -> InstallationManifest:
    """Validate raw JSON data into a manifest.

    Raises:
        CorruptManifestError: If the data does not validate
    """
    if not isinstance(data, dict):
        raise CorruptManifestError(source, "top level must be an object")
    try:
        return InstallationManifest.model_validate(data)
    except ValidationError as e:
        raise CorruptManifestError(source, str(e)) from e


class ManifestStore:
    """Loads and atomically saves the manifest of one target.

    Nothing is cached: every load() re-reads the file so readers tolerate
    concurrent writers.
    """

    def __init__(self, target: Path) -> None:
        self.target = Path(target)
        self.path = self.target / MANIFEST_FILENAME

    def exists(self) -> bool:
        return self.path.exists()

    def empty(self) -> InstallationManifest:
        return InstallationManifest(target=str(self.target))

    def load(self) -> InstallationManifest:
        """Load the manifest, or an empty one if the target has none.

        Raises:
            CorruptManifestError: If the file is not valid JSON or fails validation
            EngineIOError: If the file exists but cannot be read
        """
        try:
            data = load_json(self.path)
        except json.JSONDecodeError as e:
            raise CorruptManifestError(self.path, f"invalid JSON: {e}") from e
        except OSError as e:
            raise EngineIOError(self.path, "Failed to read manifest") from e

        if data is None:
            return self.empty()
        return parse_manifest(data, self.path)

    def save(self, manifest: InstallationManifest) -> None:
        """Persist the manifest atomically; an empty manifest deletes the file."""
        if manifest.is_empty:
            self.delete()
            return
        try:
            save_json(self.path, manifest.model_dump(mode="json"))
        except OSError as e:
            raise EngineIOError(self.path, "Failed to write manifest") from e
        logger.debug(f"Saved manifest for {self.target} ({len(manifest.files)} file(s))")

    def delete(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise EngineIOError(self.path, "Failed to delete manifest") from e
        logger.debug(f"Deleted manifest for {self.target}")


class TargetRegistry:
    """JSON list of targets that hold a manifest.

    Garbage collection walks this list to find every live manifest.
    """

    FILENAME = "targets.json"

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.state_dir / self.FILENAME
        self._lock = FileLock(str(self.path) + ".lock")

    def _read(self) -> dict[str, str]:
        try:
            data = load_json(self.path)
        except json.JSONDecodeError as e:
            raise CorruptManifestError(self.path, f"invalid JSON: {e}") from e
        except OSError as e:
            raise EngineIOError(self.path, "Failed to read target registry") from e
        if data is None:
            return {}
        targets = data.get("targets") if isinstance(data, dict) else None
        if not isinstance(targets, dict):
            raise CorruptManifestError(self.path, "missing 'targets' mapping")
        return {str(k): str(v) for k, v in targets.items()}

    def _write(self, targets: dict[str, str]) -> None:
        try:
            save_json(self.path, {"targets": dict(sorted(targets.items()))})
        except OSError as e:
            raise EngineIOError(self.path, "Failed to write target registry") from e

    def list_targets(self) -> list[Path]:
        return [Path(p) for p in sorted(self._read())]

    def add(self, target: Path) -> None:
        key = str(Path(target).resolve())
        with self._lock:
            targets = self._read()
            if key in targets:
                return
            targets[key] = datetime.now(UTC).isoformat()
            self._write(targets)
        logger.debug(f"Registered target {key}")

    def discard(self, target: Path) -> None:
        key = str(Path(target).resolve())
        with self._lock:
            targets = self._read()
            if targets.pop(key, None) is None:
                return
            self._write(targets)
        logger.debug(f"Unregistered target {key}")
