"""Entry store strategies.

The pipeline and coordinator talk to one ``EntryStore`` chosen at startup:
``ApiEntryStore`` for a signed-in cloud account, ``LocalEntryStore`` for an
install that never leaves the device.  Neither caller branches on the mode.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable

from medialog.models.base import utc_now
from medialog.models.entries import EntryChanges, EntryDraft, ListType, MediaEntry, SyncPage
from medialog.remote.api import EntriesApi

logger = logging.getLogger("medialog.remote")


class EntryStore(ABC):
    """Where confirmed entries come from.

    Subclasses must implement create(), update(), delete() and pull().
    """

    #: Unique slug matching Settings.storage_mode.
    MODE: str = "unknown"

    @abstractmethod
    async def create(self, draft: EntryDraft, placeholder: MediaEntry) -> MediaEntry:
        """Confirm a new entry.

        Args:
            draft:       The user's input.
            placeholder: The optimistic record already visible locally.

        Returns:
            The confirmed entry carrying its permanent id.
        """

    @abstractmethod
    async def update(self, entry: MediaEntry, changes: EntryChanges) -> MediaEntry:
        """Confirm a partial update.

        Args:
            entry:   The optimistic post-update record.
            changes: The fields that changed.

        Returns:
            The confirmed entry.
        """

    @abstractmethod
    async def delete(self, entry: MediaEntry) -> None:
        """Confirm a deletion."""

    @abstractmethod
    async def pull(self, partition: ListType, since: datetime | None) -> SyncPage:
        """Return entries changed after *since* (everything when None)."""


class ApiEntryStore(EntryStore):
    """Cloud mode: the REST API is the source of truth."""

    MODE = "cloud"

    def __init__(self, api: EntriesApi) -> None:
        self._api = api

    async def create(self, draft: EntryDraft, placeholder: MediaEntry) -> MediaEntry:
        return await self._api.create_entry(draft)

    async def update(self, entry: MediaEntry, changes: EntryChanges) -> MediaEntry:
        return await self._api.update_entry(entry.id, changes)

    async def delete(self, entry: MediaEntry) -> None:
        await self._api.delete_entry(entry.id)

    async def pull(self, partition: ListType, since: datetime | None) -> SyncPage:
        return await self._api.sync_entries(partition, since)


class LocalEntryStore(EntryStore):
    """Local-only mode: every write is confirmed immediately on-device."""

    MODE = "local"

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    async def create(self, draft: EntryDraft, placeholder: MediaEntry) -> MediaEntry:
        return placeholder.model_copy(update={"id": str(uuid.uuid4())})

    async def update(self, entry: MediaEntry, changes: EntryChanges) -> MediaEntry:
        return entry

    async def delete(self, entry: MediaEntry) -> None:
        return None

    async def pull(self, partition: ListType, since: datetime | None) -> SyncPage:
        return SyncPage(entries=[], server_time=self._clock(), is_initial=since is None)
