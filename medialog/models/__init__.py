"""Pydantic schemas shared by every layer of the sync engine."""

from medialog.models.base import MediaLogBase, utc_now
from medialog.models.entries import (
    PLACEHOLDER_PREFIX,
    BackupSnapshot,
    EntryChanges,
    EntryDraft,
    EntryStatus,
    ListType,
    MediaEntry,
    MediaType,
    SyncPage,
    is_placeholder_id,
    new_placeholder_id,
)

__all__ = [
    "PLACEHOLDER_PREFIX",
    "BackupSnapshot",
    "EntryChanges",
    "EntryDraft",
    "EntryStatus",
    "ListType",
    "MediaEntry",
    "MediaLogBase",
    "MediaType",
    "SyncPage",
    "is_placeholder_id",
    "new_placeholder_id",
    "utc_now",
]
