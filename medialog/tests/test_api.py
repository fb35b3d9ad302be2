"""Tests for EntriesApi — request shapes and status-code → error mapping."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Callable

import httpx
import pytest

from medialog.auth.credentials import Credential, CredentialManager
from medialog.errors import (
    AuthorizationError,
    NetworkError,
    NotFoundError,
    ServerError,
    ValidationError,
    error_for_response,
)
from medialog.models.entries import EntryChanges, EntryDraft, EntryStatus, ListType, MediaType
from medialog.remote import ApiEntryStore, LocalEntryStore, build_entry_store
from medialog.remote.api import EntriesApi
from medialog.tests.conftest import API_BASE, Recorder, json_response, make_entry

Factory = Callable[..., CredentialManager]

SERVER_ENTRY = {
    "id": "srv-1",
    "user_id": "user-1",
    "title": "Dune",
    "type": "movie",
    "status": "planned",
    "year": 2021,
    "list_type": "backlog",
    "created_at": "2026-02-23T12:00:00.000Z",
    "updated_at": "2026-02-23T12:00:00.000Z",
}


@pytest.fixture
def make_api(make_credentials: Factory, valid_credential: Credential) -> Callable[[Recorder], EntriesApi]:
    def _make(recorder: Recorder) -> EntriesApi:
        manager = make_credentials(recorder, valid_credential)
        return EntriesApi(manager._client, manager)

    return _make


def _body(request: httpx.Request) -> dict:
    return json.loads(request.content)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    def _response(self, status: int, body: object) -> httpx.Response:
        return httpx.Response(status, json=body, request=httpx.Request("GET", f"{API_BASE}/entries"))

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (400, ValidationError),
            (401, AuthorizationError),
            (404, NotFoundError),
            (409, ValidationError),
            (422, ValidationError),
            (500, ServerError),
            (503, ServerError),
        ],
    )
    def test_status_maps_to_error_class(self, status: int, expected: type) -> None:
        error = error_for_response(self._response(status, {"error": "x"}))
        assert type(error) is expected
        assert error.status_code == status

    def test_server_message_kept_verbatim(self) -> None:
        error = error_for_response(self._response(400, {"error": "Missing required fields"}))
        assert error.detail == "Missing required fields"

    def test_non_json_body_falls_back_to_text(self) -> None:
        response = httpx.Response(502, text="Bad gateway", request=httpx.Request("GET", API_BASE))
        assert error_for_response(response).detail == "Bad gateway"


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


class TestEntriesApi:
    @pytest.mark.asyncio
    async def test_fetch_entries(self, make_api) -> None:
        recorder = Recorder({"/entries": [json_response(200, {"entries": [SERVER_ENTRY]})]})
        entries = await make_api(recorder).fetch_entries(ListType.BACKLOG)
        assert [e.id for e in entries] == ["srv-1"]
        assert entries[0].partition is ListType.BACKLOG
        assert recorder.calls[0].url.params["list"] == "backlog"

    @pytest.mark.asyncio
    async def test_sync_without_cursor_omits_since(self, make_api) -> None:
        recorder = Recorder(
            {"/entries/sync": [json_response(200, {"entries": [], "serverTime": "2026-02-23T12:00:00.000Z", "isInitial": True})]}
        )
        page = await make_api(recorder).sync_entries(ListType.FUTURELOG, None)
        assert "since" not in recorder.calls[0].url.params
        assert page.is_initial
        assert page.server_time == datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_sync_sends_cursor_as_iso_z(self, make_api) -> None:
        recorder = Recorder(
            {"/entries/sync": [json_response(200, {"entries": [], "serverTime": "2026-02-23T12:05:00.000Z", "isInitial": False})]}
        )
        since = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)
        await make_api(recorder).sync_entries(ListType.BACKLOG, since)
        assert recorder.calls[0].url.params["since"] == "2026-02-23T12:00:00.000Z"

    @pytest.mark.asyncio
    async def test_create_sends_list_type(self, make_api) -> None:
        recorder = Recorder({"/entries/create": [json_response(201, {"entry": SERVER_ENTRY})]})
        draft = EntryDraft(title="Dune", media_type=MediaType.MOVIE, year=2021)
        entry = await make_api(recorder).create_entry(draft)
        body = _body(recorder.calls[0])
        assert body["listType"] == "backlog"
        assert "list" not in body
        assert body["type"] == "movie"
        assert entry.id == "srv-1"

    @pytest.mark.asyncio
    async def test_update_sends_only_set_fields(self, make_api) -> None:
        updated = {**SERVER_ENTRY, "status": "completed"}
        recorder = Recorder({"/entries/update": [json_response(200, {"entry": updated})]})
        entry = await make_api(recorder).update_entry(
            "srv-1", EntryChanges(status=EntryStatus.COMPLETED, completed_at="23/02/26")
        )
        assert _body(recorder.calls[0]) == {
            "id": "srv-1",
            "updates": {"status": "completed", "completedAt": "23/02/26"},
        }
        assert entry.status is EntryStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_update_404_raises_not_found(self, make_api) -> None:
        recorder = Recorder({"/entries/update": [json_response(404, {"error": "Entry not found"})]})
        with pytest.raises(NotFoundError, match="Entry not found"):
            await make_api(recorder).update_entry("gone", EntryChanges(title="x"))

    @pytest.mark.asyncio
    async def test_delete_unconfirmed_is_server_error(self, make_api) -> None:
        recorder = Recorder({"/entries/delete": [json_response(200, {"success": False})]})
        with pytest.raises(ServerError):
            await make_api(recorder).delete_entry("srv-1")

    @pytest.mark.asyncio
    async def test_create_validation_error_is_surfaced(self, make_api) -> None:
        recorder = Recorder({"/entries/create": [json_response(400, {"error": "Missing required fields"})]})
        with pytest.raises(ValidationError, match="Missing required fields"):
            await make_api(recorder).create_entry(EntryDraft(title="Dune", media_type=MediaType.MOVIE))

    @pytest.mark.asyncio
    async def test_malformed_entry_is_server_error(self, make_api) -> None:
        recorder = Recorder({"/entries/create": [json_response(201, {"entry": {"id": "x"}})]})
        with pytest.raises(ServerError):
            await make_api(recorder).create_entry(EntryDraft(title="Dune", media_type=MediaType.MOVIE))

    @pytest.mark.asyncio
    async def test_transport_failure_is_network_error(
        self, make_credentials: Factory, valid_credential: Credential
    ) -> None:
        def offline(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        manager = make_credentials(offline, valid_credential)
        api = EntriesApi(manager._client, manager)
        with pytest.raises(NetworkError):
            await api.fetch_entries(ListType.BACKLOG)

    @pytest.mark.asyncio
    async def test_import_returns_count(self, make_api) -> None:
        recorder = Recorder({"/entries/import": [json_response(200, {"success": True, "imported": 2})]})
        imported = await make_api(recorder).import_entries([make_entry("a"), make_entry("b")])
        assert imported == 2
        assert [e["id"] for e in _body(recorder.calls[0])["entries"]] == ["a", "b"]


# ---------------------------------------------------------------------------
# Store selection
# ---------------------------------------------------------------------------


class TestEntryStores:
    def test_build_cloud_store(self, make_api) -> None:
        assert isinstance(build_entry_store("cloud", make_api(Recorder({}))), ApiEntryStore)

    def test_build_local_store(self) -> None:
        assert isinstance(build_entry_store("local"), LocalEntryStore)

    def test_cloud_needs_api(self) -> None:
        with pytest.raises(ValueError):
            build_entry_store("cloud")

    def test_unknown_mode(self) -> None:
        with pytest.raises(KeyError, match="local"):
            build_entry_store("hybrid")

    @pytest.mark.asyncio
    async def test_local_store_mints_permanent_id(self) -> None:
        placeholder = make_entry("temp-123")
        confirmed = await LocalEntryStore().create(
            EntryDraft(title="Dune", media_type=MediaType.MOVIE), placeholder
        )
        assert not confirmed.is_placeholder
        assert confirmed.title == placeholder.title

    @pytest.mark.asyncio
    async def test_local_store_pull_is_empty(self) -> None:
        page = await LocalEntryStore().pull(ListType.BACKLOG, None)
        assert page.entries == []
        assert page.is_initial
