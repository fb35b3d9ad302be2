"""Optimistic create/update/delete with reconciliation and rollback.

Every operation follows the same three steps:

1. Apply the change to the LocalCache (subscribers see it immediately).
2. Await the EntryStore (the only suspension point).
3. On success replace the optimistic record with the confirmed one;
   on failure restore the pre-call state and re-raise.

The round trip only ever confirms or reverts what the user already sees.
A background pull that touches the same id while a call is in flight may
still interleave between steps 1 and 3; see DESIGN.md for why that race is
kept.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

import pydantic

from medialog.errors import NotFoundError, ValidationError
from medialog.models.base import utc_now
from medialog.models.entries import (
    EntryChanges,
    EntryDraft,
    ListType,
    MediaEntry,
    is_placeholder_id,
    new_placeholder_id,
)
from medialog.remote.base import EntryStore
from medialog.storage.cache import LocalCache

logger = logging.getLogger("medialog.sync.pipeline")


class MutationPipeline:
    """Applies user mutations optimistically.

    Usage::

        pipeline = MutationPipeline(cache, store, owner=lambda: user_id)
        entry = await pipeline.create(EntryDraft(title="Dune", media_type="movie", year=2021))
        await pipeline.update(entry.id, EntryChanges(status="completed"))
        await pipeline.delete(entry.id)
    """

    def __init__(
        self,
        cache: LocalCache,
        store: EntryStore,
        owner: Callable[[], str],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the pipeline.

        Args:
            cache: Local cache the optimistic records are written to.
            store: Confirms or rejects each mutation.
            owner: Returns the user id stamped on optimistic records.
            clock: Returns the current aware UTC time.
        """
        self._cache = cache
        self._store = store
        self._owner = owner
        self._clock = clock
        self._pending: set[str] = set()

    @property
    def pending_ids(self) -> frozenset[str]:
        """Identifiers with a mutation awaiting the store."""
        return frozenset(self._pending)

    # ------------------------------------------------------------------
    # Cache helpers (synchronous, run to completion)
    # ------------------------------------------------------------------

    def _locate(self, entry_id: str) -> tuple[ListType, int, MediaEntry]:
        if is_placeholder_id(entry_id):
            raise ValidationError(f"Entry {entry_id} is still awaiting confirmation")
        if entry_id in self._pending:
            raise ValidationError(f"Entry {entry_id} already has a change in flight")
        found = self._cache.find(entry_id)
        if found is None:
            raise NotFoundError(f"Entry {entry_id} not found")
        return found

    def _remove(self, partition: ListType, entry_id: str) -> None:
        entries = self._cache.load(partition)
        remaining = [e for e in entries if e.id != entry_id]
        if len(remaining) != len(entries):
            self._cache.save(partition, remaining)

    def _replace(
        self,
        partition: ListType,
        entry_id: str,
        entry: MediaEntry,
        insert_at: int | None = None,
    ) -> None:
        """Swap the record with *entry_id* for *entry*.

        When the id is no longer cached the record is inserted at *insert_at*,
        or dropped if no position is given.
        """
        entries = self._cache.load(partition)
        for index, existing in enumerate(entries):
            if existing.id == entry_id:
                entries[index] = entry
                break
        else:
            if insert_at is None:
                return
            entries.insert(min(insert_at, len(entries)), entry)
        self._cache.save(partition, entries)

    def _confirm_create(self, partition: ListType, placeholder_id: str, confirmed: MediaEntry) -> None:
        merged: list[MediaEntry] = []
        placed = False
        for existing in self._cache.load(partition):
            if existing.id == placeholder_id:
                if not placed:
                    merged.append(confirmed)
                    placed = True
            elif existing.id == confirmed.id:
                # A pull already delivered the confirmed record; keep the placeholder's slot
                continue
            else:
                merged.append(existing)
        if not placed:
            merged.append(confirmed)
        self._cache.save(partition, merged)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create(self, draft: EntryDraft) -> MediaEntry:
        """Create an entry; a placeholder is visible until the store answers.

        Args:
            draft: The user's input.

        Returns:
            The confirmed entry.

        Raises:
            SyncError: The store rejected or could not confirm the entry; the
                placeholder has been removed again.
        """
        partition = draft.partition
        placeholder = draft.to_entry(new_placeholder_id(), self._owner(), self._clock())
        self._cache.save(partition, [*self._cache.load(partition), placeholder])
        self._pending.add(placeholder.id)
        logger.debug("Optimistic create %s (%s)", placeholder.id, draft.title)

        try:
            confirmed = await self._store.create(draft, placeholder)
        except Exception as exc:
            self._remove(partition, placeholder.id)
            logger.warning("Create of %r failed, rolled back: %s", draft.title, exc)
            raise
        finally:
            self._pending.discard(placeholder.id)

        self._confirm_create(partition, placeholder.id, confirmed)
        logger.info("Created %s %s", partition.value, confirmed.id)
        return confirmed

    async def update(self, entry_id: str, changes: EntryChanges) -> MediaEntry:
        """Apply a partial update; the previous record comes back on failure.

        Raises:
            NotFoundError:   Unknown id, or the entry vanished remotely (it is
                             then removed locally as well).
            ValidationError: Empty or invalid changes, or the entry is pending.
            SyncError:       Any other store failure (after rollback).
        """
        if changes.is_empty():
            raise ValidationError("No fields to update")
        partition, index, previous = self._locate(entry_id)
        try:
            optimistic = previous.apply(changes, self._clock())
        except pydantic.ValidationError as exc:
            raise ValidationError(str(exc)) from exc

        self._replace(partition, entry_id, optimistic)
        self._pending.add(entry_id)
        try:
            confirmed = await self._store.update(optimistic, changes)
        except NotFoundError:
            # Deleted on another device; nothing to roll back to
            self._remove(partition, entry_id)
            logger.warning("Update of %s failed: entry no longer exists remotely", entry_id)
            raise
        except Exception as exc:
            self._replace(partition, entry_id, previous, insert_at=index)
            logger.warning("Update of %s failed, rolled back: %s", entry_id, exc)
            raise
        finally:
            self._pending.discard(entry_id)

        self._replace(partition, entry_id, confirmed)
        return confirmed

    async def delete(self, entry_id: str) -> None:
        """Delete an entry; it is re-inserted at its old position on failure.

        Raises:
            NotFoundError: Unknown id, or already deleted remotely (not re-inserted).
            SyncError:     Any other store failure (after rollback).
        """
        partition, index, previous = self._locate(entry_id)
        self._remove(partition, entry_id)
        self._pending.add(entry_id)
        try:
            await self._store.delete(previous)
        except NotFoundError:
            logger.warning("Delete of %s: entry was already gone remotely", entry_id)
            raise
        except Exception as exc:
            self._replace(partition, entry_id, previous, insert_at=index)
            logger.warning("Delete of %s failed, rolled back: %s", entry_id, exc)
            raise
        finally:
            self._pending.discard(entry_id)
        logger.info("Deleted %s %s", partition.value, entry_id)
