"""One-shot migration of the legacy single-array cache layout.

Early installs kept both lists in one ``media-logbook-entries`` array with a
``list`` field per entry.  This splits it into the per-partition keys used
by ``LocalCache``.  Entries without a ``list`` field predate the futurelog
and belong to the backlog.
"""

from __future__ import annotations

import json
import logging

from medialog.models.entries import ListType
from medialog.storage.backends import StorageBackend
from medialog.storage.cache import PARTITION_KEYS

logger = logging.getLogger("medialog.storage.migrate")

LEGACY_ENTRIES_KEY = "media-logbook-entries"
MIGRATED_KEY = "media-logbook-migrated"


def migrate_legacy_storage(backend: StorageBackend) -> int:
    """Split the legacy array into partition keys, once per install.

    Args:
        backend: The install's storage backend.

    Returns:
        Number of entries moved (0 when already migrated or nothing to move).
    """
    if backend.get(MIGRATED_KEY):
        return 0

    moved = 0
    raw = backend.get(LEGACY_ENTRIES_KEY)
    if raw:
        try:
            entries = json.loads(raw)
            if not isinstance(entries, list):
                raise ValueError("legacy payload is not a list")
        except ValueError as exc:
            # Unreadable legacy data is abandoned; the install is still marked migrated
            logger.warning("Skipping unreadable legacy cache: %s", exc)
        else:
            buckets: dict[ListType, list[dict]] = {p: [] for p in ListType}
            for entry in entries:
                if not isinstance(entry, dict):
                    continue
                partition = (
                    ListType.FUTURELOG
                    if entry.get("list") == ListType.FUTURELOG.value
                    else ListType.BACKLOG
                )
                buckets[partition].append({**entry, "list": partition.value})
            for partition, items in buckets.items():
                if items:
                    backend.set(PARTITION_KEYS[partition], json.dumps(items))
                    moved += len(items)
            backend.delete(LEGACY_ENTRIES_KEY)
            logger.info("Migrated %d legacy entries into partitioned storage", moved)

    backend.set(MIGRATED_KEY, "true")
    return moved
