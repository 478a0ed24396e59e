"""Content-addressed blob storage.

Blobs are keyed by "sha256:<hex>" of their bytes and live at
objects/<first two hex chars>/<remaining hex chars>. Identical content is
stored once no matter how many profiles, targets or snapshots refer to it.
"""

import contextlib
import hashlib
import logging
from collections.abc import Iterable
from collections.abc import Iterator
from pathlib import Path

from dot_agent_library.errors import BlobNotFoundError
from dot_agent_library.errors import EngineIOError
from dot_agent_library.errors import HashMismatchError

from .json_store import atomic_write_bytes

logger = logging.getLogger(__name__)

HASH_PREFIX = "sha256:"


def compute_hash(data: bytes) -> str:
    """Compute the content hash of bytes.

    Example:
        >>> compute_hash(b"")
        'sha256:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
    """
    return HASH_PREFIX + hashlib.sha256(data).hexdigest()


class ContentStore:
    """Content-addressed blob store.

    Example:
        >>> store = ContentStore(Path("/tmp/store"))
        >>> h = store.put(b"hello")
        >>> store.get(h)
        b'hello'
    """

    def __init__(self, objects_dir: Path) -> None:
        """Initialize content store.

        Args:
            objects_dir: Directory holding the blob fan-out directories
        """
        self.objects_dir = Path(objects_dir)
        self.objects_dir.mkdir(parents=True, exist_ok=True)

    def _blob_path(self, content_hash: str) -> Path:
        if not content_hash.startswith(HASH_PREFIX):
            raise ValueError(f"Unsupported content hash: {content_hash}")
        digest = content_hash[len(HASH_PREFIX) :]
        if len(digest) != 64 or any(c not in "0123456789abcdef" for c in digest):
            raise ValueError(f"Malformed content hash: {content_hash}")
        return self.objects_dir / digest[:2] / digest[2:]

    def put(self, data: bytes) -> str:
        """Store bytes and return their hash.

        Writing identical bytes twice is a no-op the second time.
        """
        content_hash = compute_hash(data)
        blob_path = self._blob_path(content_hash)
        if blob_path.exists():
            return content_hash
        try:
            atomic_write_bytes(blob_path, data)
        except OSError as e:
            raise EngineIOError(blob_path, "Failed to write blob") from e
        logger.debug(f"Stored blob {content_hash[:19]} ({len(data)} bytes)")
        return content_hash

    def put_file(self, path: Path) -> str:
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            raise EngineIOError(path, "Failed to read file") from e
        return self.put(data)

    def get(self, content_hash: str) -> bytes:
        """Fetch and verify blob bytes.

        Raises:
            BlobNotFoundError: If no blob is stored under the hash
            HashMismatchError: If the stored bytes do not hash to content_hash
        """
        blob_path = self._blob_path(content_hash)
        try:
            data = blob_path.read_bytes()
        except FileNotFoundError as e:
            raise BlobNotFoundError(content_hash) from e
        except OSError as e:
            raise EngineIOError(blob_path, "Failed to read blob") from e

        actual = compute_hash(data)
        if actual != content_hash:
            logger.error(f"Content store corruption at {blob_path}")
            raise HashMismatchError(content_hash, actual)
        return data

    def contains(self, content_hash: str) -> bool:
        try:
            return self._blob_path(content_hash).is_file()
        except ValueError:
            return False

    def iter_hashes(self) -> Iterator[str]:
        """Yield the hash of every stored blob."""
        for fan_dir in sorted(self.objects_dir.iterdir()):
            if not fan_dir.is_dir() or len(fan_dir.name) != 2:
                continue
            for blob in sorted(fan_dir.iterdir()):
                if blob.is_file() and not blob.name.startswith("."):
                    yield f"{HASH_PREFIX}{fan_dir.name}{blob.name}"

    def collect_garbage(self, live_hashes: Iterable[str]) -> list[str]:
        """Delete every blob not referenced by live_hashes.

        Callers must pass the union of references from every live manifest
        and snapshot.

        Returns:
            Hashes of deleted blobs
        """
        live = set(live_hashes)
        removed = []
        for content_hash in list(self.iter_hashes()):
            if content_hash in live:
                continue
            blob_path = self._blob_path(content_hash)
            try:
                blob_path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise EngineIOError(blob_path, "Failed to delete blob") from e
            removed.append(content_hash)
            with contextlib.suppress(OSError):
                blob_path.parent.rmdir()

        if removed:
            logger.info(f"Garbage collection removed {len(removed)} blob(s)")
        return removed
