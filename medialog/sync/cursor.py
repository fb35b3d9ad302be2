"""Per-partition sync cursors.

A cursor remembers the server time of the last successful pull so the next
pull only asks for entries modified after it.  The server's clock is used,
never ours, so client clock skew cannot skip or repeat changes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from medialog.models.base import as_utc, isoformat_z
from medialog.models.entries import ListType
from medialog.storage.backends import StorageBackend
from medialog.storage.identity import get_device_id

logger = logging.getLogger("medialog.sync.cursor")

CURSOR_KEY_PREFIX = "media-logbook-sync-state:"


@dataclass
class SyncCursor:
    """Bookmark for incremental pulls.

    Attributes:
        partition:      List this cursor belongs to.
        last_sync_time: Server time of the last successful pull (None = never synced).
        device_id:      Stable per-install identifier.
    """

    partition: ListType
    last_sync_time: datetime | None
    device_id: str

    def to_json(self) -> str:
        return json.dumps(
            {
                "lastSyncTime": isoformat_z(self.last_sync_time) if self.last_sync_time else None,
                "deviceId": self.device_id,
            }
        )


class CursorStore:
    """Persists one SyncCursor per partition."""

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend

    @staticmethod
    def _key(partition: ListType) -> str:
        return f"{CURSOR_KEY_PREFIX}{partition.value}"

    def get(self, partition: ListType) -> SyncCursor:
        """Return the partition's cursor, creating an empty one on first access."""
        raw = self._backend.get(self._key(partition))
        if raw:
            try:
                data = json.loads(raw)
                last = data.get("lastSyncTime")
                return SyncCursor(
                    partition=partition,
                    last_sync_time=as_utc(datetime.fromisoformat(last.replace("Z", "+00:00")))
                    if last
                    else None,
                    device_id=data.get("deviceId") or get_device_id(self._backend),
                )
            except (ValueError, AttributeError) as exc:
                # A lost cursor only costs one full pull
                logger.warning("Unreadable %s cursor, starting over: %s", partition.value, exc)

        cursor = SyncCursor(
            partition=partition,
            last_sync_time=None,
            device_id=get_device_id(self._backend),
        )
        self._backend.set(self._key(partition), cursor.to_json())
        return cursor

    def advance(self, partition: ListType, server_time: datetime) -> SyncCursor:
        """Move the cursor to *server_time* after a successful pull."""
        cursor = self.get(partition)
        cursor.last_sync_time = as_utc(server_time)
        self._backend.set(self._key(partition), cursor.to_json())
        return cursor

    def reset(self, partition: ListType | None = None) -> None:
        """Forget cursors so the next pull is a full one.

        Args:
            partition: Reset only this partition (default: all).
        """
        partitions = [partition] if partition is not None else list(ListType)
        for p in partitions:
            self._backend.delete(self._key(p))
        logger.info("Reset sync cursor(s): %s", ", ".join(p.value for p in partitions))
