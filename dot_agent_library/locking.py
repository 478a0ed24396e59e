"""Advisory locks serializing writers per target.

Lock files live under the engine home rather than inside the target, so a
restore that swaps the target directory never moves a held lock.

One FileLock is kept per key, and FileLock is re-entrant within a thread:
an operation holding a target lock may call other locked operations on the
same target (switch takes and restores snapshots this way). A second
LockManager over the same directory contends like another process.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from filelock import FileLock
from filelock import Timeout

from dot_agent_library.errors import TargetLockedError
from dot_agent_library.storage.paths import target_key

logger = logging.getLogger(__name__)


def target_lock_key(target: Path) -> str:
    return f"target-{target_key(target)}"


def profile_lock_key(name: str) -> str:
    return f"profile-{name}"


class LockManager:
    """Hands out one FileLock per target or profile key."""

    def __init__(self, locks_dir: Path, timeout: float = 30.0) -> None:
        self.locks_dir = Path(locks_dir)
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout
        self._locks: dict[str, FileLock] = {}

    def lock_path(self, key: str) -> Path:
        return self.locks_dir / f"{key}.lock"

    def _lock_for(self, key: str) -> FileLock:
        lock = self._locks.get(key)
        if lock is None:
            lock = FileLock(str(self.lock_path(key)), timeout=self.timeout)
            self._locks[key] = lock
        return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Hold the lock for key for the duration of the block.

        Raises:
            TargetLockedError: If the lock is not acquired within the timeout
        """
        lock = self._lock_for(key)
        try:
            lock.acquire()
        except Timeout as e:
            raise TargetLockedError(key, self.timeout) from e
        logger.debug(f"Acquired lock {key}")
        try:
            yield
        finally:
            lock.release()

    def for_target(self, target: Path):
        return self.hold(target_lock_key(target))
