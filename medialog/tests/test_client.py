"""Tests for MediaLogClient wiring — local-only mode end to end, cloud login and upload."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from medialog.backup.stores import FileBackupStore, GistBackupStore
from medialog.client import MediaLogClient
from medialog.config import Settings
from medialog.errors import AuthorizationError, ValidationError
from medialog.models.entries import EntryStatus, ListType
from medialog.remote.base import ApiEntryStore, LocalEntryStore
from medialog.storage.backends import FileBackend, MemoryBackend
from medialog.storage.migrate import LEGACY_ENTRIES_KEY
from medialog.tests.conftest import Recorder, json_response, mock_http_client

SERVER_ENTRY = {
    "id": "srv-1",
    "userId": "user-1",
    "title": "Dune",
    "type": "movie",
    "status": "planned",
    "year": 2021,
    "list": "backlog",
    "createdAt": "2026-02-23T12:00:00.000Z",
}


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "storage_mode": "local",
        "storage_backend": "memory",
        "storage_dir": tmp_path,
        "backup_enabled": False,
        "github_token": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


class TestFromSettings:
    def test_local_mode_memory_backend(self, tmp_path: Path) -> None:
        client = MediaLogClient.from_settings(_settings(tmp_path))
        assert isinstance(client.store, LocalEntryStore)
        assert isinstance(client.backend, MemoryBackend)
        assert client.backup is None

    def test_cloud_mode_file_backend(self, tmp_path: Path) -> None:
        client = MediaLogClient.from_settings(
            _settings(tmp_path, storage_mode="cloud", storage_backend="file")
        )
        assert isinstance(client.store, ApiEntryStore)
        assert isinstance(client.backend, FileBackend)

    def test_undecodable_files_do_not_break_startup(self, tmp_path: Path) -> None:
        for name in ("media-logbook-credentials", "media-logbook-backlog"):
            (tmp_path / f"{name}.json").write_bytes(b"\xff\xfe[garbage")
        client = MediaLogClient.from_settings(
            _settings(tmp_path, storage_mode="cloud", storage_backend="file")
        )
        assert not client.credentials.is_authenticated
        assert client.entries(ListType.BACKLOG) == []
        assert client.cursors.get(ListType.BACKLOG).last_sync_time is None

    def test_backup_store_selection(self, tmp_path: Path) -> None:
        gist = MediaLogClient.from_settings(_settings(tmp_path, backup_enabled=True, github_token="ghp_x"))
        folder = MediaLogClient.from_settings(_settings(tmp_path, backup_enabled=True))
        assert isinstance(gist.backup._store, GistBackupStore)
        assert isinstance(folder.backup._store, FileBackupStore)


# ---------------------------------------------------------------------------
# Local-only mode
# ---------------------------------------------------------------------------


class TestLocalMode:
    @pytest.mark.asyncio
    async def test_create_update_delete(self, tmp_path: Path) -> None:
        async with MediaLogClient.from_settings(_settings(tmp_path)) as client:
            renders: list[int] = []
            client.subscribe(ListType.BACKLOG, lambda entries: renders.append(len(entries)))

            entry = await client.create({"title": "Dune", "type": "movie", "year": 2021})
            assert not entry.is_placeholder
            assert entry.user_id.startswith("local-")

            updated = await client.update(entry.id, {"status": "completed", "completedAt": "23/02/26"})
            assert updated.status is EntryStatus.COMPLETED
            assert client.entries(ListType.BACKLOG) == [updated]

            await client.delete(entry.id)
            assert client.entries(ListType.BACKLOG) == []
            # placeholder, confirmed, updated optimistic, updated confirmed, deleted
            assert renders == [1, 1, 1, 1, 0]

    @pytest.mark.asyncio
    async def test_partition_cannot_be_changed(self, tmp_path: Path) -> None:
        async with MediaLogClient.from_settings(_settings(tmp_path)) as client:
            entry = await client.create({"title": "Dune", "type": "movie"})
            with pytest.raises(ValidationError):
                await client.update(entry.id, {"list": "futurelog"})

    @pytest.mark.asyncio
    async def test_invalid_draft_rejected(self, tmp_path: Path) -> None:
        async with MediaLogClient.from_settings(_settings(tmp_path)) as client:
            with pytest.raises(ValidationError):
                await client.create({"title": "", "type": "movie"})
            assert client.entries(ListType.BACKLOG) == []

    @pytest.mark.asyncio
    async def test_legacy_data_migrated_on_start(self, tmp_path: Path) -> None:
        backend = MemoryBackend({LEGACY_ENTRIES_KEY: json.dumps([SERVER_ENTRY])})
        async with MediaLogClient.from_settings(_settings(tmp_path), backend=backend) as client:
            assert [e.id for e in client.entries(ListType.BACKLOG)] == ["srv-1"]

    @pytest.mark.asyncio
    async def test_backup_pushed_after_changes(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path, backup_enabled=True)
        async with MediaLogClient.from_settings(settings) as client:
            assert client.backup.object_id is not None
            await client.create({"title": "Dune", "type": "movie"})
            await client.backup.drain()
            snapshot = await client.backup._store.fetch(client.backup.object_id)
            assert [e.title for e in snapshot.backlog] == ["Dune"]

    @pytest.mark.asyncio
    async def test_upload_requires_cloud_account(self, tmp_path: Path) -> None:
        async with MediaLogClient.from_settings(_settings(tmp_path)) as client:
            with pytest.raises(AuthorizationError):
                await client.upload_local_entries()


# ---------------------------------------------------------------------------
# Cloud mode
# ---------------------------------------------------------------------------


class TestCloudMode:
    def _client(self, tmp_path: Path, recorder: Recorder) -> MediaLogClient:
        return MediaLogClient.from_settings(
            _settings(tmp_path, storage_mode="cloud"),
            http_client=mock_http_client(recorder),
        )

    @pytest.mark.asyncio
    async def test_login_runs_full_pull(self, tmp_path: Path) -> None:
        recorder = Recorder(
            {
                "/auth/login": [json_response(200, {"access_token": "a", "refresh_token": "r", "expires_in": 900})],
                "/entries/sync": [
                    json_response(200, {"entries": [SERVER_ENTRY], "serverTime": "2026-02-23T12:00:00.000Z", "isInitial": True})
                ],
            }
        )
        client = self._client(tmp_path, recorder)
        try:
            await client.login("jeff", "hunter2")
            assert [e.id for e in client.entries(ListType.BACKLOG)] == ["srv-1"]
            assert client.coordinator.is_running
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_upload_local_entries_then_resync(self, tmp_path: Path) -> None:
        recorder = Recorder(
            {
                "/auth/login": [json_response(200, {"access_token": "a", "refresh_token": "r", "expires_in": 900})],
                "/entries/sync": [
                    json_response(200, {"entries": [SERVER_ENTRY], "serverTime": "2026-02-23T12:00:00.000Z", "isInitial": True})
                ],
                "/entries/import": [json_response(200, {"success": True, "imported": 1})],
            }
        )
        client = self._client(tmp_path, recorder)
        try:
            await client.login("jeff", "hunter2")
            await client.coordinator.stop()
            imported = await client.upload_local_entries()
            assert imported == 1
            assert recorder.count("/entries/import") == 1
            sync_calls = [r for r in recorder.calls if r.url.path.endswith("/entries/sync")]
            assert "since" not in sync_calls[-1].url.params
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_sign_out_clears_cache(self, tmp_path: Path) -> None:
        recorder = Recorder(
            {
                "/auth/login": [json_response(200, {"access_token": "a", "refresh_token": "r", "expires_in": 900})],
                "/auth/signout": [json_response(200, {"success": True})],
                "/entries/sync": [
                    json_response(200, {"entries": [SERVER_ENTRY], "serverTime": "2026-02-23T12:00:00.000Z", "isInitial": True})
                ],
            }
        )
        client = self._client(tmp_path, recorder)
        try:
            await client.login("jeff", "hunter2")
            await client.sign_out()
            assert client.entries(ListType.BACKLOG) == []
            assert not client.credentials.is_authenticated
            assert not client.coordinator.is_running
        finally:
            await client.close()
