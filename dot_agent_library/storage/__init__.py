"""Storage module for dot_agent_library.

Provides content-addressed blob storage and JSON persistence with atomic writes.

Public Interface:
    - ContentStore: Content-addressed blob store
    - compute_hash: Content hashing
    - StoragePaths: On-disk layout under the engine home
    - target_key: Stable short key for a target directory
    - save_json / load_json / atomic_write_bytes: Atomic persistence
"""

from .content_store import ContentStore
from .content_store import compute_hash
from .json_store import atomic_write_bytes
from .json_store import load_json
from .json_store import save_json
from .paths import StoragePaths
from .paths import target_key

__all__ = [
    "ContentStore",
    "compute_hash",
    "StoragePaths",
    "target_key",
    "atomic_write_bytes",
    "save_json",
    "load_json",
]
