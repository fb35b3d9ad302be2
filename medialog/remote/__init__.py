"""Remote side of the sync engine.

Available stores:
    ApiEntryStore   — REST API (cloud accounts)
    LocalEntryStore — on-device confirmation (local-only installs)
"""

from __future__ import annotations

from medialog.remote.api import EntriesApi
from medialog.remote.base import ApiEntryStore, EntryStore, LocalEntryStore

__all__ = [
    "ApiEntryStore",
    "EntriesApi",
    "EntryStore",
    "LocalEntryStore",
    "build_entry_store",
]

# Registry: storage mode → store class
ENTRY_STORES: dict[str, type[EntryStore]] = {
    ApiEntryStore.MODE: ApiEntryStore,
    LocalEntryStore.MODE: LocalEntryStore,
}


def build_entry_store(mode: str, api: EntriesApi | None = None) -> EntryStore:
    """Instantiate the store for a storage mode, once, at startup.

    Args:
        mode: 'cloud' or 'local' (Settings.storage_mode).
        api:  Required for 'cloud'.

    Raises:
        KeyError:   If the mode is not registered.
        ValueError: If 'cloud' is requested without an API client.
    """
    if mode not in ENTRY_STORES:
        raise KeyError(f"No entry store registered for mode '{mode}'. Available: {list(ENTRY_STORES)}")
    if mode == ApiEntryStore.MODE:
        if api is None:
            raise ValueError("cloud mode needs an EntriesApi")
        return ApiEntryStore(api)
    return LocalEntryStore()
