"""Local persistence for medialog.

Modules:
    backends — key/value backends (memory, file) and their registry
    cache    — LocalCache and the injected SubscriberRegistry
    identity — per-install device id and local user id
    migrate  — legacy single-array cache migration
"""

from medialog.storage.backends import (
    STORAGE_BACKENDS,
    FileBackend,
    MemoryBackend,
    StorageBackend,
    get_storage_backend,
)
from medialog.storage.cache import LocalCache, SubscriberRegistry

__all__ = [
    "STORAGE_BACKENDS",
    "FileBackend",
    "LocalCache",
    "MemoryBackend",
    "StorageBackend",
    "SubscriberRegistry",
    "get_storage_backend",
]
