"""Backup object stores.

A backup store keeps exactly one JSON BackupSnapshot per object id.  The
engine creates the object once, remembers its id, and updates it in place
from then on.

Available stores:
    GistBackupStore — a private GitHub Gist holding one named file
    FileBackupStore — one JSON file per object in a local directory
"""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from pathlib import Path

import httpx
import pydantic

from medialog.errors import (
    AuthorizationError,
    NetworkError,
    NotFoundError,
    ServerError,
    SyncError,
    raise_for_response,
    response_object,
)
from medialog.models.entries import BackupSnapshot
from medialog.storage.backends import FileBackend
from medialog.sync.config_loader import BackupConfig, get_sync_config

logger = logging.getLogger("medialog.backup.stores")

_GITHUB_ACCEPT = "application/vnd.github+json"


def _serialise(snapshot: BackupSnapshot) -> str:
    return json.dumps(snapshot.to_wire(), indent=2)


def _parse(content: str, source: str) -> BackupSnapshot:
    try:
        return BackupSnapshot.model_validate(json.loads(content))
    except (ValueError, pydantic.ValidationError) as exc:
        raise ServerError(f"Backup {source} is not a valid snapshot: {exc}") from exc


class BackupStore(ABC):
    """Abstract base class for backup object stores.

    Subclasses must implement create(), update() and fetch().
    """

    #: Unique slug for this store.
    NAME: str = "unknown"

    @abstractmethod
    async def create(self, snapshot: BackupSnapshot) -> str:
        """Write a new backup object.

        Returns:
            The id of the created object.
        """

    @abstractmethod
    async def update(self, object_id: str, snapshot: BackupSnapshot) -> None:
        """Overwrite an existing backup object.

        Raises:
            NotFoundError: The object no longer exists.
        """

    @abstractmethod
    async def fetch(self, object_id: str) -> BackupSnapshot:
        """Read a backup object.

        Raises:
            NotFoundError: The object no longer exists.
            ServerError:   The stored content is not a snapshot.
        """


# ---------------------------------------------------------------------------
# GitHub Gist
# ---------------------------------------------------------------------------


class GistBackupStore(BackupStore):
    """Stores the snapshot as one file of a private Gist.

    Only the ``gist`` token scope is needed.  GitHub truncates file content
    above roughly one megabyte in the gist listing; the raw URL is followed
    when that happens.
    """

    NAME = "gist"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token: str,
        api_url: str = "https://api.github.com",
        config: BackupConfig | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            http_client: Shared httpx client.
            token:       GitHub token with the ``gist`` scope.
            api_url:     GitHub REST base URL.
            config:      File name and description (defaults to sync_config.yaml).
        """
        self._http = http_client
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._config = config or get_sync_config().backup

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise AuthorizationError("No GitHub token configured for backup")
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": _GITHUB_ACCEPT,
        }

    async def _send(self, method: str, path: str, json_body: dict | None = None) -> httpx.Response:
        url = f"{self._api_url}{path}"
        try:
            response = await self._http.request(method, url, headers=self._headers(), json=json_body)
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        raise_for_response(response)
        return response

    def _files(self, snapshot: BackupSnapshot) -> dict:
        return {self._config.filename: {"content": _serialise(snapshot)}}

    async def create(self, snapshot: BackupSnapshot) -> str:
        response = await self._send(
            "POST",
            "/gists",
            {
                "description": self._config.description,
                "public": False,
                "files": self._files(snapshot),
            },
        )
        gist_id = response_object(response).get("id")
        if not gist_id:
            raise ServerError("Gist created without an id")
        logger.info("Created backup gist %s", gist_id)
        return str(gist_id)

    async def update(self, object_id: str, snapshot: BackupSnapshot) -> None:
        await self._send("PATCH", f"/gists/{object_id}", {"files": self._files(snapshot)})
        logger.debug("Updated backup gist %s", object_id)

    async def fetch(self, object_id: str) -> BackupSnapshot:
        response = await self._send("GET", f"/gists/{object_id}")
        files = response_object(response).get("files") or {}
        file = files.get(self._config.filename)
        if not file:
            raise NotFoundError(f"Gist {object_id} has no {self._config.filename}")

        content = file.get("content") or ""
        if file.get("truncated") and file.get("raw_url"):
            try:
                raw = await self._http.get(file["raw_url"], headers=self._headers())
            except httpx.TransportError as exc:
                raise NetworkError(f"Fetching raw gist content failed: {exc}") from exc
            raise_for_response(raw)
            content = raw.text
        return _parse(content, f"gist {object_id}")


# ---------------------------------------------------------------------------
# Local directory
# ---------------------------------------------------------------------------


class FileBackupStore(BackupStore):
    """Keeps backup objects as JSON files, e.g. on a synced folder."""

    NAME = "file"

    def __init__(self, directory: Path | str) -> None:
        self._files = FileBackend(directory)

    def _write(self, object_id: str, snapshot: BackupSnapshot) -> None:
        try:
            self._files.set(object_id, _serialise(snapshot))
        except OSError as exc:
            raise SyncError(f"Writing backup file {object_id} failed: {exc}") from exc

    async def create(self, snapshot: BackupSnapshot) -> str:
        object_id = uuid.uuid4().hex
        self._write(object_id, snapshot)
        logger.info("Created backup file %s", object_id)
        return object_id

    async def update(self, object_id: str, snapshot: BackupSnapshot) -> None:
        if self._files.get(object_id) is None:
            raise NotFoundError(f"Backup file {object_id} not found")
        self._write(object_id, snapshot)

    async def fetch(self, object_id: str) -> BackupSnapshot:
        content = self._files.get(object_id)
        if content is None:
            raise NotFoundError(f"Backup file {object_id} not found")
        return _parse(content, f"file {object_id}")
