"""Key/value persistence backends.

The cache, cursors, credentials and backup bookkeeping all persist plain
strings under well-known keys, so any store that can get/set/delete a
string works.  One backend is chosen at startup from ``Settings.storage_backend``.
"""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from urllib.parse import quote, unquote

logger = logging.getLogger("medialog.storage.backends")


class StorageBackend(ABC):
    """Abstract string store."""

    #: Registry slug (matches Settings.storage_backend).
    NAME: str = "unknown"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value or None when the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store *value*, replacing any previous value atomically."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove *key*; a missing key is not an error."""

    @abstractmethod
    def keys(self) -> list[str]:
        """Return all stored keys."""


class MemoryBackend(StorageBackend):
    """Process-local store; nothing survives a restart."""

    NAME = "memory"

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class FileBackend(StorageBackend):
    """One file per key inside a directory.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so a crash never leaves a half-written value.
    """

    NAME = "file"

    def __init__(self, directory: Path | str) -> None:
        self._dir = Path(directory).expanduser()
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self._dir / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Could not read %s: %s", path, exc)
            return None

    def set(self, key: str, value: str) -> None:
        fd, tmp = tempfile.mkstemp(dir=self._dir, prefix=".tmp-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(value)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[str]:
        return [unquote(p.stem) for p in self._dir.glob("*.json")]


# Registry: backend slug → class
STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {
    MemoryBackend.NAME: MemoryBackend,
    FileBackend.NAME: FileBackend,
}


def get_storage_backend(name: str) -> type[StorageBackend]:
    """Return the backend class for a given slug.

    Args:
        name: e.g. 'memory', 'file'

    Returns:
        The backend class (not an instance).

    Raises:
        KeyError: If the name is not registered.
    """
    if name not in STORAGE_BACKENDS:
        raise KeyError(
            f"No storage backend registered for '{name}'. "
            f"Available: {list(STORAGE_BACKENDS)}"
        )
    return STORAGE_BACKENDS[name]
