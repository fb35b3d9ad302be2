"""medialog — offline-first sync engine for the media logbook."""

from medialog.client import MediaLogClient, configure_logging
from medialog.models.entries import EntryChanges, EntryDraft, ListType, MediaEntry

__all__ = [
    "EntryChanges",
    "EntryDraft",
    "ListType",
    "MediaEntry",
    "MediaLogClient",
    "configure_logging",
]

__version__ = "0.1.0"
