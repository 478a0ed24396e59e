"""Garbage collection of unreferenced blobs.

A blob is live while any snapshot record or any registered target manifest
refers to it. A manifest or snapshot that cannot be read aborts the
collection, since its references are unknown.
"""

import logging
from typing import TYPE_CHECKING

from dot_agent_library.manifest.store import ManifestStore
from dot_agent_library.manifest.store import TargetRegistry
from dot_agent_library.storage.content_store import ContentStore

if TYPE_CHECKING:
    from .store import SnapshotStore

logger = logging.getLogger(__name__)


def live_hashes(snapshots: "SnapshotStore", registry: TargetRegistry) -> set[str]:
    """Union of blob references from every snapshot and registered manifest.

    Raises:
        CorruptManifestError: If any snapshot record or manifest is corrupt
    """
    live: set[str] = set()
    for snapshot in snapshots.iter_all():
        live.update(snapshot.content_hashes())

    for target in registry.list_targets():
        if not target.is_dir():
            logger.warning(f"Registered target {target} no longer exists")
            continue
        live.update(ManifestStore(target).load().tracked_hashes())
    return live


def collect_garbage(content_store: ContentStore, snapshots: "SnapshotStore", registry: TargetRegistry) -> list[str]:
    """Delete every blob no snapshot or manifest refers to.

    Returns:
        Hashes of deleted blobs
    """
    live = live_hashes(snapshots, registry)
    removed = content_store.collect_garbage(live)
    logger.info(f"Garbage collection kept {len(live)} live blob(s), removed {len(removed)}")
    return removed
