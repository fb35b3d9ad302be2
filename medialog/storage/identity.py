"""Stable per-install identifiers, created on first access."""

from __future__ import annotations

import uuid

from medialog.storage.backends import StorageBackend

DEVICE_ID_KEY = "media-logbook-device-id"
LOCAL_USER_KEY = "media-logbook-user"


def _get_or_create(backend: StorageBackend, key: str, prefix: str) -> str:
    value = backend.get(key)
    if not value:
        value = f"{prefix}{uuid.uuid4()}"
        backend.set(key, value)
    return value


def get_device_id(backend: StorageBackend) -> str:
    """Identifier of this install; stamped on cursors and backup snapshots."""
    return _get_or_create(backend, DEVICE_ID_KEY, "device-")


def get_local_user_id(backend: StorageBackend) -> str:
    """Owner id used for entries created while not signed in."""
    return _get_or_create(backend, LOCAL_USER_KEY, "local-")
