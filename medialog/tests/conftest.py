"""Shared fixtures, sample entries and mock HTTP plumbing for sync engine tests."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock

import httpx
import pytest

from medialog.auth.credentials import Credential, CredentialManager
from medialog.models.entries import EntryStatus, ListType, MediaEntry, MediaType
from medialog.remote.base import EntryStore
from medialog.storage.backends import MemoryBackend
from medialog.storage.cache import LocalCache, SubscriberRegistry
from medialog.sync.config_loader import (
    BackupConfig,
    CredentialConfig,
    PollingConfig,
    SyncConfig,
    load_sync_config,
)

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

API_BASE = "https://medialog.test/api"
TEST_USER_ID = "user-1"
NOW = datetime(2026, 2, 23, 12, 0, tzinfo=timezone.utc)

Handler = Callable[[httpx.Request], httpx.Response]


def make_entry(
    entry_id: str,
    title: str = "Dune",
    partition: ListType = ListType.BACKLOG,
    status: EntryStatus = EntryStatus.PLANNED,
    created_at: datetime = NOW - timedelta(days=10),
    updated_at: datetime | None = None,
    media_type: MediaType = MediaType.MOVIE,
) -> MediaEntry:
    """Build a confirmed entry with sensible defaults."""
    return MediaEntry(
        id=entry_id,
        user_id=TEST_USER_ID,
        title=title,
        media_type=media_type,
        status=status,
        year=2021,
        partition=partition,
        created_at=created_at,
        updated_at=updated_at or created_at,
    )


def json_response(status_code: int, body: object) -> httpx.Response:
    return httpx.Response(status_code, json=body)


def mock_http_client(handler: Handler) -> httpx.AsyncClient:
    """AsyncClient rooted at API_BASE whose requests are answered by *handler*."""
    return httpx.AsyncClient(base_url=API_BASE, transport=httpx.MockTransport(handler))


class Recorder:
    """Mock API: records every request and answers per path from a script.

    Each path maps to a list of responses consumed in order; the last one
    repeats once the others are used up.
    """

    def __init__(self, routes: dict[str, list[httpx.Response]]) -> None:
        self.routes = routes
        self.calls: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path.removeprefix("/api")
        responses = self.routes[path]
        scripted = responses.pop(0) if len(responses) > 1 else responses[0]
        # Fresh copy: a Response object is bound to the request that received it
        return httpx.Response(scripted.status_code, headers=scripted.headers, content=scripted.content)

    def count(self, path: str) -> int:
        return sum(1 for r in self.calls if r.url.path.removeprefix("/api") == path)


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the real bundled sync config for tests."""
    return load_sync_config()


@pytest.fixture
def polling_config() -> PollingConfig:
    return PollingConfig(
        interval_seconds=60,
        foreground_only=True,
        partitions=[ListType.BACKLOG, ListType.FUTURELOG],
    )


@pytest.fixture
def credential_config() -> CredentialConfig:
    return CredentialConfig(expiry_buffer_seconds=30, default_access_ttl_seconds=900)


@pytest.fixture
def backup_config() -> BackupConfig:
    return BackupConfig(
        filename="media-logback-data.json",
        description="Media Logbook Sync Data",
        snapshot_version="1.0",
    )


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def cache(backend: MemoryBackend) -> LocalCache:
    return LocalCache(backend, SubscriberRegistry())


@pytest.fixture
def sync_initial_raw() -> dict:
    return json.loads((FIXTURES_DIR / "sync_initial.json").read_text())


# ---------------------------------------------------------------------------
# Remote fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_store() -> AsyncMock:
    """EntryStore double; set return_value / side_effect per test."""
    return AsyncMock(spec=EntryStore)


@pytest.fixture
def valid_credential() -> Credential:
    return Credential(
        access_token="access-1",
        expires_at=NOW + timedelta(minutes=15),
        refresh_token="refresh-1",
        user_id=TEST_USER_ID,
    )


@pytest.fixture
def make_credentials(
    backend: MemoryBackend, credential_config: CredentialConfig
) -> Callable[..., CredentialManager]:
    """Factory: CredentialManager over a MockTransport client, clock pinned to NOW."""

    def _make(handler: Handler, credential: Credential | None = None, **kwargs) -> CredentialManager:
        manager = CredentialManager(
            mock_http_client(handler),
            backend,
            config=credential_config,
            clock=kwargs.pop("clock", lambda: NOW),
            **kwargs,
        )
        if credential is not None:
            manager.store(credential)
        return manager

    return _make
