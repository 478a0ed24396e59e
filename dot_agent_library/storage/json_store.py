"""Atomic file persistence helpers.

Every write goes to a temporary file in the destination directory and is
then moved into place with os.replace, so readers see either the old or the
new content and a crash never leaves a half-written file.
"""

import contextlib
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def temp_path_for(path: Path, tag: str = "tmp") -> Path:
    """Sibling temporary path that no capture will pick up."""
    return path.with_name(f".dot-agent-{tag}-{uuid.uuid4().hex[:12]}-{path.name}")


def atomic_write_bytes(path: Path, data: bytes, executable: bool = False) -> None:
    """Write bytes to path atomically.

    Args:
        path: Target file path
        data: Content to write
        executable: Set the executable bits on the written file
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = temp_path_for(path)
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if executable:
            mode = temp_path.stat().st_mode
            temp_path.chmod(mode | 0o111)
        os.replace(temp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink()
        raise


def save_json(path: Path, data: Any) -> None:
    """Save data as a JSON file atomically.

    Args:
        path: Target file path
        data: JSON-serializable data (datetimes are written with str())
    """
    # ASCII output escapes undecodable filename bytes (surrogates) as \udcXX.
    payload = json.dumps(data, indent=2, default=str)
    atomic_write_bytes(path, payload.encode("ascii"))
    logger.debug(f"Saved JSON to {path}")


def load_json(path: Path) -> Any | None:
    """Load JSON file or return None if not found.

    Args:
        path: File path to load

    Returns:
        Parsed JSON, or None if the file doesn't exist

    Raises:
        json.JSONDecodeError: If the file exists but is not valid JSON
        OSError: If the file exists but cannot be read
    """
    if not path.exists():
        return None
    with open(path, encoding="utf-8") as f:
        return json.load(f)
