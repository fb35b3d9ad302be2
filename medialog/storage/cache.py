"""Partitioned local cache of media entries with subscriber fan-out.

The cache is the only shared mutable state of a running client.  All reads
and writes are synchronous and run to completion on the event loop, so no
locking is needed: a coroutine can only be suspended at a network call,
never in the middle of a ``save``.

Usage::

    cache = LocalCache(MemoryBackend(), SubscriberRegistry())
    unsubscribe = cache.subscribe(ListType.BACKLOG, render)
    cache.save(ListType.BACKLOG, entries)   # render() sees the persisted list
"""

from __future__ import annotations

import json
import logging
from typing import Callable, Iterable

import pydantic

from medialog.models.entries import ListType, MediaEntry
from medialog.storage.backends import StorageBackend

logger = logging.getLogger("medialog.cache")

EntriesCallback = Callable[[list[MediaEntry]], None]

#: Storage key per partition.
PARTITION_KEYS: dict[ListType, str] = {
    ListType.BACKLOG: "media-logbook-backlog",
    ListType.FUTURELOG: "media-logbook-futurelog",
}


class SubscriberRegistry:
    """Owns the per-partition subscriber lists.

    One registry is created by whoever builds the cache and injected into
    it; nothing about subscribers lives at module scope.
    """

    def __init__(self) -> None:
        self._callbacks: dict[ListType, list[EntriesCallback]] = {p: [] for p in ListType}

    def add(self, partition: ListType, callback: EntriesCallback) -> None:
        self._callbacks[partition].append(callback)

    def remove(self, partition: ListType, callback: EntriesCallback) -> None:
        try:
            self._callbacks[partition].remove(callback)
        except ValueError:
            pass  # already unsubscribed

    def callbacks(self, partition: ListType) -> tuple[EntriesCallback, ...]:
        # Snapshot so a callback may unsubscribe itself during fan-out
        return tuple(self._callbacks[partition])

    def clear(self) -> None:
        for callbacks in self._callbacks.values():
            callbacks.clear()

    def __len__(self) -> int:
        return sum(len(c) for c in self._callbacks.values())


class LocalCache:
    """Authoritative local copy of the entries of both partitions.

    ``load`` returns entries in persisted order; sorting and filtering are
    the caller's business.  ``save`` replaces a partition wholesale and then
    notifies that partition's subscribers with a fresh ``load`` so they see
    exactly what was persisted.
    """

    def __init__(self, backend: StorageBackend, subscribers: SubscriberRegistry) -> None:
        self._backend = backend
        self._subscribers = subscribers

    def load(self, partition: ListType) -> list[MediaEntry]:
        """Return the partition's entries; a corrupt payload reads as empty."""
        try:
            raw = self._backend.get(PARTITION_KEYS[partition])
            if not raw:
                return []
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError(f"expected a list, got {type(items).__name__}")
            return [MediaEntry.model_validate(item) for item in items]
        except (ValueError, pydantic.ValidationError) as exc:
            logger.warning("Corrupt %s cache, resetting to empty: %s", partition.value, exc)
            return []

    def save(self, partition: ListType, entries: Iterable[MediaEntry]) -> None:
        """Atomically replace the partition and notify its subscribers."""
        payload = json.dumps([e.to_wire() for e in entries])
        self._backend.set(PARTITION_KEYS[partition], payload)
        self.notify(partition)

    def subscribe(self, partition: ListType, callback: EntriesCallback) -> Callable[[], None]:
        """Register *callback* for every future save of *partition*.

        Returns:
            A function that removes the subscription.
        """
        self._subscribers.add(partition, callback)

        def unsubscribe() -> None:
            self._subscribers.remove(partition, callback)

        return unsubscribe

    def notify(self, partition: ListType) -> None:
        callbacks = self._subscribers.callbacks(partition)
        if not callbacks:
            return
        entries = self.load(partition)
        for callback in callbacks:
            try:
                callback(list(entries))
            except Exception:
                logger.exception("Subscriber %r failed for %s", callback, partition.value)

    def find(
        self, entry_id: str, partition: ListType | None = None
    ) -> tuple[ListType, int, MediaEntry] | None:
        """Locate an entry by id.

        Args:
            entry_id:  Identifier to look up.
            partition: Restrict the search to one partition.

        Returns:
            (partition, index, entry) or None when the id is unknown.
        """
        partitions = [partition] if partition is not None else list(ListType)
        for p in partitions:
            for index, entry in enumerate(self.load(p)):
                if entry.id == entry_id:
                    return p, index, entry
        return None

    def clear(self) -> None:
        """Drop both partitions (sign-out of a cloud account)."""
        for partition in ListType:
            self._backend.delete(PARTITION_KEYS[partition])
            self.notify(partition)
