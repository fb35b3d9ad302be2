"""Cross-device backup: last-write-wins merge plus push/pull against a BackupStore.

Merge rule
----------
For every id present on either side, keep the version with the later
``last_modified``.  Equal timestamps fall back to comparing the canonical
JSON of both versions, so the version chosen for an id never depends on
argument order.  List order follows the first argument, then the ids only
the second one has, so the user's own ordering survives a merge:

    by_id(merge_entries(a, b)) == by_id(merge_entries(b, a))
    merge_entries(a, merge_entries(a, b)) == merge_entries(a, b)

Placeholder records (creates still awaiting the server) never enter a
snapshot and never come out of a merge; ``pull`` keeps the local ones
where they were.

Push failures never propagate.  A connectivity failure sets the
``sync-pending`` flag so ``retry_pending()`` can redo exactly the push.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Callable, Iterable

from medialog.backup.stores import BackupStore
from medialog.errors import NetworkError, NotFoundError, SyncError
from medialog.models.base import utc_now
from medialog.models.entries import BackupSnapshot, ListType, MediaEntry
from medialog.storage.backends import StorageBackend
from medialog.storage.cache import LocalCache
from medialog.storage.identity import get_device_id
from medialog.sync.config_loader import BackupConfig, get_sync_config

logger = logging.getLogger("medialog.backup")

OBJECT_ID_KEY = "gist-id"
PENDING_KEY = "sync-pending"


# ---------------------------------------------------------------------------
# Pure merge
# ---------------------------------------------------------------------------


def _canonical(entry: MediaEntry) -> str:
    return json.dumps(entry.to_wire(), sort_keys=True, separators=(",", ":"))


def _newer(a: MediaEntry, b: MediaEntry) -> MediaEntry:
    if a.last_modified != b.last_modified:
        return a if a.last_modified > b.last_modified else b
    return a if _canonical(a) >= _canonical(b) else b


def merge_entries(local: Iterable[MediaEntry], remote: Iterable[MediaEntry]) -> list[MediaEntry]:
    """Last-write-wins union of two record sets.

    Args:
        local:  Records from the local cache.
        remote: Records from the backup snapshot.

    Returns:
        One record per id.  Local ids keep their order with the winning
        version in place; ids only the snapshot has are appended in snapshot order.
    """
    winners: dict[str, MediaEntry] = {}
    for entry in (*local, *remote):
        if entry.is_placeholder:
            continue
        current = winners.get(entry.id)
        winners[entry.id] = entry if current is None else _newer(current, entry)
    return list(winners.values())


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class BackupMergeEngine:
    """Pushes the LocalCache to a backup object and merges it back in.

    Usage::

        engine = BackupMergeEngine(cache, GistBackupStore(http, token), backend)
        await engine.sync()          # startup: pull, merge, then push
        engine.schedule_push()       # after local changes
        await engine.retry_pending() # connectivity is back
    """

    def __init__(
        self,
        cache: LocalCache,
        store: BackupStore,
        backend: StorageBackend,
        config: BackupConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the engine.

        Args:
            cache:   Cache to snapshot and merge into.
            store:   Where the backup object lives.
            backend: Persists the object id and the pending flag.
            config:  Snapshot version (defaults to sync_config.yaml).
            clock:   Returns the current aware UTC time.
        """
        self._cache = cache
        self._store = store
        self._backend = backend
        self._config = config or get_sync_config().backup
        self._clock = clock
        self._push_task: asyncio.Task | None = None
        self._push_again = False

    @property
    def object_id(self) -> str | None:
        return self._backend.get(OBJECT_ID_KEY) or None

    @property
    def is_pending(self) -> bool:
        """True when the last push failed for lack of connectivity."""
        return self._backend.get(PENDING_KEY) == "true"

    def _set_pending(self, pending: bool) -> None:
        if pending:
            self._backend.set(PENDING_KEY, "true")
        else:
            self._backend.delete(PENDING_KEY)

    def snapshot(self) -> BackupSnapshot:
        """Serialise the confirmed records of both partitions."""
        return BackupSnapshot(
            version=self._config.snapshot_version,
            backlog=[e for e in self._cache.load(ListType.BACKLOG) if not e.is_placeholder],
            futurelog=[e for e in self._cache.load(ListType.FUTURELOG) if not e.is_placeholder],
            last_modified=self._clock(),
            device_id=get_device_id(self._backend),
        )

    async def push(self) -> bool:
        """Write the current cache to the backup object.

        Creates the object on first use and updates it afterwards; if the
        remembered object was deleted remotely a new one is created.

        Returns:
            True on success.  Failures are logged, never raised.
        """
        snapshot = self.snapshot()
        object_id = self.object_id
        try:
            if object_id:
                try:
                    await self._store.update(object_id, snapshot)
                except NotFoundError:
                    logger.warning("Backup object %s vanished, creating a new one", object_id)
                    object_id = None
            if not object_id:
                object_id = await self._store.create(snapshot)
                self._backend.set(OBJECT_ID_KEY, object_id)
        except NetworkError as exc:
            self._set_pending(True)
            logger.warning("Backup push deferred (offline): %s", exc)
            return False
        except SyncError as exc:
            logger.error("Backup push failed: %s", exc)
            return False

        self._set_pending(False)
        logger.info(
            "Pushed backup %s (%d backlog, %d futurelog)",
            object_id,
            len(snapshot.backlog),
            len(snapshot.futurelog),
        )
        return True

    async def pull(self) -> bool:
        """Merge the backup object into the cache.

        Returns:
            True if either partition changed (and was saved).

        Raises:
            SyncError: The object could not be fetched.  A vanished object is
                forgotten instead, so the next push creates a fresh one.
        """
        object_id = self.object_id
        if not object_id:
            logger.debug("No backup object yet, nothing to pull")
            return False
        try:
            remote = await self._store.fetch(object_id)
        except NotFoundError:
            logger.warning("Backup object %s no longer exists, forgetting it", object_id)
            self._backend.delete(OBJECT_ID_KEY)
            return False

        changed = False
        for partition in ListType:
            snapshot_entries = remote.entries_for(partition)
            pulled = [e for e in snapshot_entries if e.partition is partition]
            if len(pulled) != len(snapshot_entries):
                logger.warning(
                    "Ignoring %d backup entries filed under %s but belonging elsewhere",
                    len(snapshot_entries) - len(pulled),
                    partition.value,
                )

            local = self._cache.load(partition)
            winners = {e.id: e for e in merge_entries(local, pulled)}
            # Placeholders stay in their slot; snapshot-only ids go last
            merged = [e if e.is_placeholder else winners.pop(e.id, e) for e in local]
            merged.extend(winners.values())
            if merged != local:
                self._cache.save(partition, merged)
                changed = True
        logger.info("Pulled backup %s from %s (changed=%s)", object_id, remote.device_id, changed)
        return changed

    async def sync(self) -> bool:
        """Pull then push; run at startup and on demand.

        Returns:
            The push outcome.
        """
        try:
            await self.pull()
        except SyncError as exc:
            logger.warning("Backup pull failed, pushing local state only: %s", exc)
        return await self.push()

    async def retry_pending(self) -> bool:
        """Redo the push if a previous one was deferred; False when nothing was pending."""
        if not self.is_pending:
            return False
        return await self.push()

    # ------------------------------------------------------------------
    # Background pushes
    # ------------------------------------------------------------------

    def schedule_push(self) -> asyncio.Task:
        """Push in the background, coalescing bursts of local changes.

        A request arriving while a push runs causes exactly one more push
        after it, not one per request.
        """
        if self._push_task is not None and not self._push_task.done():
            self._push_again = True
            return self._push_task
        self._push_task = asyncio.create_task(self._push_loop(), name="medialog-backup-push")
        return self._push_task

    async def _push_loop(self) -> None:
        while True:
            self._push_again = False
            await self.push()
            if not self._push_again:
                return

    async def drain(self) -> None:
        """Wait for a scheduled push to finish."""
        if self._push_task is not None:
            await self._push_task

    async def close(self) -> None:
        if self._push_task is not None and not self._push_task.done():
            self._push_task.cancel()
            try:
                await self._push_task
            except asyncio.CancelledError:
                pass
        self._push_task = None
