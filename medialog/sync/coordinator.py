"""Background reconciliation between the LocalCache and the entry store.

Two triggers drive pulls:
1. A fixed-interval timer, only acting while the host is in the foreground
2. The hidden → visible transition (and explicit focus events)

Each trigger pulls every configured partition:
1. Read the partition's cursor
2. Full pull without a cursor, otherwise only entries modified since it
3. Merge by id — remote wins for ids it returns, other local ids are untouched
4. Advance the cursor to the server-reported time
5. Save (and so notify subscribers) only if the merge changed something

A failed pull leaves cursor and cache untouched; the next tick retries.
Pulls are never queued: a trigger that finds a pull of the same partition
in flight is dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable

from medialog.models.base import utc_now
from medialog.models.entries import ListType, MediaEntry
from medialog.remote.base import EntryStore
from medialog.storage.cache import LocalCache
from medialog.sync.config_loader import PollingConfig, get_sync_config
from medialog.sync.cursor import CursorStore

logger = logging.getLogger("medialog.sync.coordinator")

SyncCallback = Callable[[ListType, bool], None]


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass
class PullResult:
    """Outcome of one successful pull.

    Attributes:
        partition:   List that was pulled.
        received:    Number of entries the server returned.
        changed:     True if the merge altered the cache.
        is_initial:  True for a full (cursor-less) pull.
        server_time: New cursor position.
        pulled_at:   Local time the pull finished.
    """

    partition: ListType
    received: int
    changed: bool
    is_initial: bool
    server_time: datetime
    pulled_at: datetime = field(default_factory=utc_now)


def merge_pulled(existing: list[MediaEntry], pulled: list[MediaEntry]) -> list[MediaEntry]:
    """Overlay pulled entries onto the cached ones by id.

    Cached order is kept; pulled ids not yet cached are appended in the
    order received.  Cached ids absent from *pulled* are left alone.
    """
    merged = list(existing)
    positions = {entry.id: index for index, entry in enumerate(merged)}
    for entry in pulled:
        if entry.id in positions:
            merged[positions[entry.id]] = entry
        else:
            positions[entry.id] = len(merged)
            merged.append(entry)
    return merged


class SyncCoordinator:
    """Drive periodic and event-triggered pulls.

    Usage::

        coordinator = SyncCoordinator(cache, store, CursorStore(backend))
        coordinator.start()            # sync now, then every interval while visible
        coordinator.set_visible(False) # host went to background
        coordinator.set_visible(True)  # back in front: immediate sync
        await coordinator.stop()
    """

    def __init__(
        self,
        cache: LocalCache,
        store: EntryStore,
        cursors: CursorStore,
        config: PollingConfig | None = None,
        on_sync: SyncCallback | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            cache:   Cache pulled entries are merged into.
            store:   Source of remote changes.
            cursors: Per-partition cursor persistence.
            config:  Interval and partitions (defaults to sync_config.yaml).
            on_sync: Callback(partition, has_new_data) after every attempt.
        """
        self._cache = cache
        self._store = store
        self._cursors = cursors
        self._config = config or get_sync_config().polling
        self._on_sync = on_sync
        self._in_flight: set[ListType] = set()
        self._status: dict[ListType, SyncStatus] = {p: SyncStatus.IDLE for p in ListType}
        self._last_error: dict[ListType, str | None] = {p: None for p in ListType}
        self._visible = True
        self._timer: asyncio.Task | None = None
        self._triggered: set[asyncio.Task] = set()

    @property
    def partitions(self) -> list[ListType]:
        return list(self._config.partitions)

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_visible(self) -> bool:
        return self._visible

    def status(self, partition: ListType) -> SyncStatus:
        return self._status[partition]

    def last_error(self, partition: ListType) -> str | None:
        return self._last_error[partition]

    def is_pulling(self, partition: ListType) -> bool:
        return partition in self._in_flight

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def pull(self, partition: ListType) -> PullResult | None:
        """Pull one partition.

        Returns:
            PullResult, or None when the trigger was dropped because a pull
            of this partition was already in flight.

        Raises:
            SyncError: The pull failed; cursor and cache are unchanged.
        """
        if partition in self._in_flight:
            logger.debug("Pull of %s already in flight, dropping trigger", partition.value)
            return None

        self._in_flight.add(partition)
        self._status[partition] = SyncStatus.SYNCING
        try:
            cursor = self._cursors.get(partition)
            page = await self._store.pull(partition, cursor.last_sync_time)

            pulled = [e for e in page.entries if e.partition is partition]
            if len(pulled) != len(page.entries):
                logger.warning(
                    "Ignoring %d pulled entries outside %s",
                    len(page.entries) - len(pulled),
                    partition.value,
                )

            existing = self._cache.load(partition)
            merged = merge_pulled(existing, pulled)
            changed = merged != existing
            if changed:
                self._cache.save(partition, merged)
            self._cursors.advance(partition, page.server_time)
        except Exception as exc:
            self._status[partition] = SyncStatus.ERROR
            self._last_error[partition] = str(exc)
            raise
        finally:
            self._in_flight.discard(partition)

        self._status[partition] = SyncStatus.IDLE
        self._last_error[partition] = None
        result = PullResult(
            partition=partition,
            received=len(page.entries),
            changed=changed,
            is_initial=cursor.last_sync_time is None,
            server_time=page.server_time,
        )
        logger.info(
            "Pulled %s: %d received, changed=%s, initial=%s",
            partition.value,
            result.received,
            result.changed,
            result.is_initial,
        )
        return result

    async def sync_all(self) -> dict[ListType, PullResult | None]:
        """Pull every configured partition, one after another.

        Failures are logged and recorded in ``status()``; they do not stop
        the remaining partitions.

        Returns:
            Mapping partition → PullResult (None for failed or dropped pulls).
        """
        results: dict[ListType, PullResult | None] = {}
        for partition in self.partitions:
            try:
                result = await self.pull(partition)
            except Exception as exc:
                logger.warning("Sync failed for %s: %s", partition.value, exc)
                result = None
            results[partition] = result
            self._emit(partition, bool(result and result.changed))
        return results

    def _emit(self, partition: ListType, has_new_data: bool) -> None:
        if self._on_sync is None:
            return
        try:
            self._on_sync(partition, has_new_data)
        except Exception:
            logger.exception("on_sync callback failed for %s", partition.value)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Sync immediately, then every interval while visible."""
        if self.is_running:
            return
        self._timer = asyncio.create_task(self._run(), name="medialog-sync-timer")
        logger.info(
            "Background sync started (every %ss, partitions=%s)",
            self._config.interval_seconds,
            [p.value for p in self.partitions],
        )

    async def stop(self) -> None:
        """Stop the timer and any triggered syncs still running."""
        tasks = [t for t in (self._timer, *self._triggered) if t is not None]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._timer = None
        self._triggered.clear()
        logger.info("Background sync stopped")

    async def _run(self) -> None:
        await self.sync_all()
        while True:
            await asyncio.sleep(self._config.interval_seconds)
            if self._visible or not self._config.foreground_only:
                await self.sync_all()

    def set_visible(self, visible: bool) -> None:
        """Record a foreground/background transition; coming to the front syncs at once."""
        was_visible = self._visible
        self._visible = visible
        if visible and not was_visible:
            logger.debug("Host became visible, syncing")
            self._trigger()

    def on_focus(self) -> None:
        """Sync now if the host is visible (window focus, network back online)."""
        if self._visible:
            self._trigger()

    def _trigger(self) -> asyncio.Task:
        task = asyncio.create_task(self.sync_all())
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)
        return task
