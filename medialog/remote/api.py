"""HTTP client for the media logbook entries API.

Endpoints used:
    GET  /entries?list={partition}                     — full list
    GET  /entries/sync?list={partition}&since={iso}    — incremental changes
    POST /entries/create                               — create from draft
    POST /entries/update  {id, updates}                — partial update
    POST /entries/delete  {id}                         — delete
    POST /entries/import  {entries}                    — bulk upload of local-only entries

Every request goes through ``CredentialManager.authorized_fetch`` and every
failure leaves this module as a ``medialog.errors.SyncError``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx
import pydantic

from medialog.auth.credentials import CredentialManager
from medialog.errors import ServerError, raise_for_response, response_object
from medialog.models.base import isoformat_z
from medialog.models.entries import EntryChanges, EntryDraft, ListType, MediaEntry, SyncPage

logger = logging.getLogger("medialog.remote.api")


class EntriesApi:
    """Thin, typed wrapper over the entries endpoints."""

    def __init__(self, http_client: httpx.AsyncClient, credentials: CredentialManager) -> None:
        """Initialize the API client.

        Args:
            http_client: Client whose base_url points at the API root (e.g. ``.../api``).
            credentials: Attaches and renews the access token.
        """
        self._client = http_client
        self._credentials = credentials

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        request = self._client.build_request(method, path, params=params, json=json)
        response = await self._credentials.authorized_fetch(request)
        raise_for_response(response)
        return response_object(response)

    @staticmethod
    def _parse_entry(raw: Any) -> MediaEntry:
        try:
            return MediaEntry.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise ServerError(f"Malformed entry in response: {exc}") from exc

    async def fetch_entries(self, partition: ListType) -> list[MediaEntry]:
        """Return every remote entry of *partition*."""
        data = await self._request("GET", "/entries", params={"list": partition.value})
        return [self._parse_entry(e) for e in data.get("entries", [])]

    async def sync_entries(self, partition: ListType, since: datetime | None) -> SyncPage:
        """Return entries modified after *since* (all entries when None).

        Args:
            partition: List to pull.
            since:     Cursor from the previous successful pull.

        Returns:
            SyncPage with the entries and the server's current time.
        """
        params = {"list": partition.value}
        if since is not None:
            params["since"] = isoformat_z(since)
        data = await self._request("GET", "/entries/sync", params=params)
        try:
            page = SyncPage.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ServerError(f"Malformed sync response: {exc}") from exc
        logger.debug(
            "Pulled %d %s entries (initial=%s, serverTime=%s)",
            len(page.entries),
            partition.value,
            page.is_initial,
            page.server_time,
        )
        return page

    async def create_entry(self, draft: EntryDraft) -> MediaEntry:
        data = await self._request("POST", "/entries/create", json=draft.to_create_payload())
        if "entry" not in data:
            raise ServerError("Create response did not include the entry")
        return self._parse_entry(data["entry"])

    async def update_entry(self, entry_id: str, changes: EntryChanges) -> MediaEntry:
        data = await self._request(
            "POST", "/entries/update", json={"id": entry_id, "updates": changes.to_updates()}
        )
        if "entry" not in data:
            raise ServerError("Update response did not include the entry")
        return self._parse_entry(data["entry"])

    async def delete_entry(self, entry_id: str) -> None:
        data = await self._request("POST", "/entries/delete", json={"id": entry_id})
        if not data.get("success"):
            raise ServerError(f"Delete of {entry_id} was not confirmed")

    async def import_entries(self, entries: list[MediaEntry]) -> int:
        """Upload entries that only ever existed locally.

        The server inserts with ``ON CONFLICT (id) DO NOTHING`` so re-running
        an interrupted import is safe.

        Returns:
            Number of entries the server accepted.
        """
        data = await self._request(
            "POST", "/entries/import", json={"entries": [e.to_wire() for e in entries]}
        )
        imported = int(data.get("imported", 0))
        logger.info("Imported %d of %d local entries", imported, len(entries))
        return imported
