"""MediaLogClient — the one object a host application talks to.

Everything is wired once, at startup, from ``Settings``:

    backend ─┬─ LocalCache ◀── MutationPipeline ──▶ EntryStore (api | local)
             ├─ CredentialManager ◀── EntriesApi
             ├─ CursorStore ◀── SyncCoordinator ──▶ EntryStore
             └─ BackupMergeEngine ──▶ BackupStore (gist | file)

Usage::

    configure_logging()
    async with MediaLogClient.from_settings() as client:
        await client.login("jeff", "hunter2")
        entry = await client.create({"title": "Dune", "type": "movie", "year": 2021})
        client.subscribe(ListType.BACKLOG, render)
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Callable

import httpx
import pydantic

from medialog.auth.credentials import Credential, CredentialManager
from medialog.backup.merge import BackupMergeEngine
from medialog.backup.stores import BackupStore, FileBackupStore, GistBackupStore
from medialog.config import Settings, get_settings
from medialog.errors import AuthorizationError, ValidationError
from medialog.models.entries import EntryChanges, EntryDraft, ListType, MediaEntry
from medialog.remote import EntriesApi, build_entry_store
from medialog.remote.base import EntryStore
from medialog.storage.backends import MemoryBackend, StorageBackend, get_storage_backend
from medialog.storage.cache import EntriesCallback, LocalCache, SubscriberRegistry
from medialog.storage.identity import get_local_user_id
from medialog.storage.migrate import migrate_legacy_storage
from medialog.sync.coordinator import SyncCallback, SyncCoordinator
from medialog.sync.cursor import CursorStore
from medialog.sync.pipeline import MutationPipeline

logger = logging.getLogger("medialog.client")


def configure_logging(level: str = "INFO") -> None:
    """Install the default log format on the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _build_backend(settings: Settings) -> StorageBackend:
    backend_cls = get_storage_backend(settings.storage_backend)
    if backend_cls is MemoryBackend:
        return MemoryBackend()
    return backend_cls(settings.storage_dir)


class MediaLogClient:
    """Facade over cache, pipeline, coordinator, credentials and backup."""

    def __init__(
        self,
        settings: Settings,
        backend: StorageBackend,
        http_client: httpx.AsyncClient,
        backup_store: BackupStore | None = None,
        on_sync: SyncCallback | None = None,
        on_reauth_required: Callable[[], None] | None = None,
    ) -> None:
        """Wire the engine.

        Args:
            settings:           Client settings.
            backend:            Key/value persistence for every component.
            http_client:        Client whose base_url is the API root.
            backup_store:       Backup target; None disables backup.
            on_sync:            Callback(partition, has_new_data) after each pull.
            on_reauth_required: Called when the user must sign in again.
        """
        self.settings = settings
        self.backend = backend
        self._http = http_client
        self._on_sync = on_sync

        self.cache = LocalCache(backend, SubscriberRegistry())
        self.credentials = CredentialManager(
            http_client, backend, on_reauth_required=on_reauth_required
        )
        self.api = EntriesApi(http_client, self.credentials)
        self.store: EntryStore = build_entry_store(settings.storage_mode, self.api)
        self.cursors = CursorStore(backend)
        self.pipeline = MutationPipeline(self.cache, self.store, owner=self._owner)
        self.coordinator = SyncCoordinator(
            self.cache, self.store, self.cursors, on_sync=self._handle_sync
        )
        self.backup = (
            BackupMergeEngine(self.cache, backup_store, backend) if backup_store is not None else None
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        backend: StorageBackend | None = None,
        http_client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> "MediaLogClient":
        """Build a client from settings, choosing backend and backup store.

        Args:
            settings:    Defaults to ``get_settings()``.
            backend:     Override the configured storage backend.
            http_client: Override the HTTP client (tests pass a MockTransport one).
            **kwargs:    Forwarded to ``__init__`` (``on_sync``, ``on_reauth_required``).
        """
        settings = settings or get_settings()
        backend = backend or _build_backend(settings)
        http_client = http_client or httpx.AsyncClient(
            base_url=settings.api_base_url, timeout=settings.request_timeout_seconds
        )

        backup_store: BackupStore | None = None
        if settings.backup_enabled:
            if settings.github_token:
                backup_store = GistBackupStore(
                    http_client, settings.github_token, api_url=settings.github_api_url
                )
            else:
                backup_store = FileBackupStore(settings.storage_dir.expanduser() / "backup")
        return cls(settings, backend, http_client, backup_store=backup_store, **kwargs)

    @property
    def is_cloud(self) -> bool:
        return self.store.MODE == "cloud"

    def _owner(self) -> str:
        return self.credentials.user_id or get_local_user_id(self.backend)

    def _handle_sync(self, partition: ListType, has_new_data: bool) -> None:
        if has_new_data and self.backup is not None:
            self.backup.schedule_push()
        if self._on_sync is not None:
            self._on_sync(partition, has_new_data)

    def _after_mutation(self) -> None:
        if self.backup is not None:
            self.backup.schedule_push()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Migrate legacy data, reconcile the backup and start background pulls."""
        migrate_legacy_storage(self.backend)
        if self.backup is not None:
            await self.backup.sync()
        if self.is_cloud and self.credentials.is_authenticated:
            self.coordinator.start()
        logger.info(
            "%s started (mode=%s, backend=%s, backup=%s)",
            self.settings.app_name,
            self.store.MODE,
            self.backend.NAME,
            self.backup is not None,
        )

    async def close(self) -> None:
        await self.coordinator.stop()
        if self.backup is not None:
            await self.backup.close()
        await self._http.aclose()

    async def __aenter__(self) -> "MediaLogClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def set_visible(self, visible: bool) -> None:
        self.coordinator.set_visible(visible)

    async def on_focus(self) -> None:
        """Host regained focus or connectivity: pull now and retry a deferred backup."""
        if self.is_cloud and self.credentials.is_authenticated:
            self.coordinator.on_focus()
        if self.backup is not None:
            await self.backup.retry_pending()

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> Credential:
        """Sign in, then run a full pull of both partitions."""
        credential = await self.credentials.authenticate(username, password)
        self.cursors.reset()
        if self.is_cloud:
            await self.coordinator.sync_all()
            self.coordinator.start()
        return credential

    async def sign_out(self, revoke_all: bool = False) -> None:
        """Sign out and drop the cached copy of the account's entries."""
        await self.coordinator.stop()
        await self.credentials.sign_out(revoke_all=revoke_all)
        self.cache.clear()
        self.cursors.reset()

    async def upload_local_entries(self) -> int:
        """Import entries created while signed out into the account.

        Ids are preserved by the server, so the following full pull simply
        replaces the local copies with the server's.

        Returns:
            Number of entries the server accepted.

        Raises:
            AuthorizationError: Not signed in to a cloud account.
        """
        if not (self.is_cloud and self.credentials.is_authenticated):
            raise AuthorizationError("Sign in to a cloud account before uploading local entries")
        local = [
            entry
            for partition in ListType
            for entry in self.cache.load(partition)
            if not entry.is_placeholder
        ]
        if not local:
            return 0
        imported = await self.api.import_entries(local)
        self.cursors.reset()
        await self.coordinator.sync_all()
        return imported

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def entries(self, partition: ListType) -> list[MediaEntry]:
        return self.cache.load(partition)

    def subscribe(self, partition: ListType, callback: EntriesCallback) -> Callable[[], None]:
        return self.cache.subscribe(partition, callback)

    async def create(self, draft: EntryDraft | dict[str, Any]) -> MediaEntry:
        if not isinstance(draft, EntryDraft):
            try:
                draft = EntryDraft.model_validate(draft)
            except pydantic.ValidationError as exc:
                raise ValidationError(str(exc)) from exc
        entry = await self.pipeline.create(draft)
        self._after_mutation()
        return entry

    async def update(self, entry_id: str, changes: EntryChanges | dict[str, Any]) -> MediaEntry:
        if not isinstance(changes, EntryChanges):
            try:
                changes = EntryChanges.model_validate(changes)
            except pydantic.ValidationError as exc:
                raise ValidationError(str(exc)) from exc
        entry = await self.pipeline.update(entry_id, changes)
        self._after_mutation()
        return entry

    async def delete(self, entry_id: str) -> None:
        await self.pipeline.delete(entry_id)
        self._after_mutation()
