"""Pydantic models for media entries, sync pages and backup snapshots.

The API speaks camelCase JSON, but raw database rows are spread into some
responses (``...entry`` on the server), so snake_case column names such as
``user_id`` / ``list_type`` / ``created_at`` are accepted as input aliases.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, ConfigDict, Field, field_validator, model_validator

from medialog.models.base import MediaLogBase, as_utc, utc_now

#: Reserved prefix of locally minted ids awaiting server confirmation.
PLACEHOLDER_PREFIX = "temp-"


def new_placeholder_id() -> str:
    return f"{PLACEHOLDER_PREFIX}{uuid.uuid4()}"


def is_placeholder_id(entry_id: str) -> bool:
    return entry_id.startswith(PLACEHOLDER_PREFIX)


class MediaType(str, Enum):
    MOVIE = "movie"
    TV = "tv"
    GAME = "game"
    COMIC = "comic"


class EntryStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAUSED = "paused"
    DROPPED = "dropped"
    REPLAYING = "replaying"


class ListType(str, Enum):
    """The two partitions. Identifiers never move between them."""

    BACKLOG = "backlog"
    FUTURELOG = "futurelog"


# ---------- Entries ----------


class MediaEntry(MediaLogBase):
    """A tracked item as stored in the local cache and returned by the API.

    ``release_date`` and ``completed_at`` are free-form "DD/MM/YY" strings
    owned by the UI; they are carried, never interpreted.
    """

    id: str
    user_id: str = Field(
        default="", alias="userId", validation_alias=AliasChoices("userId", "user_id")
    )
    title: str
    media_type: MediaType = Field(alias="type", validation_alias=AliasChoices("type", "media_type"))
    status: EntryStatus
    year: int | None = None
    partition: ListType = Field(
        alias="list", validation_alias=AliasChoices("list", "listType", "list_type")
    )
    seasons_completed: int | None = Field(
        default=None,
        alias="seasonsCompleted",
        validation_alias=AliasChoices("seasonsCompleted", "seasons_completed"),
    )
    cover_url: str | None = Field(
        default=None, alias="coverUrl", validation_alias=AliasChoices("coverUrl", "cover_url")
    )
    release_date: str | None = Field(
        default=None,
        alias="releaseDate",
        validation_alias=AliasChoices("releaseDate", "release_date"),
    )
    completed_at: str | None = Field(
        default=None,
        alias="completedAt",
        validation_alias=AliasChoices("completedAt", "completed_at"),
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        alias="createdAt",
        validation_alias=AliasChoices("createdAt", "created_at"),
    )
    updated_at: datetime | None = Field(
        default=None,
        alias="updatedAt",
        validation_alias=AliasChoices("updatedAt", "updated_at"),
    )

    @field_validator("created_at", "updated_at")
    @classmethod
    def _normalise_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _default_updated_at(self) -> "MediaEntry":
        # Rows written before updated_at existed were backfilled with created_at
        if self.updated_at is None:
            self.updated_at = self.created_at
        return self

    @property
    def last_modified(self) -> datetime:
        return self.updated_at or self.created_at

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder_id(self.id)

    def apply(self, changes: "EntryChanges", updated_at: datetime) -> "MediaEntry":
        """Return a copy with *changes* applied and the modification time bumped."""
        data = self.model_dump()
        data.update(changes.model_dump(exclude_unset=True))
        data["updated_at"] = updated_at
        return MediaEntry.model_validate(data)


class EntryDraft(MediaLogBase):
    """User-supplied fields for a new entry (no id, owner or timestamps)."""

    title: str = Field(min_length=1)
    media_type: MediaType = Field(alias="type", validation_alias=AliasChoices("type", "media_type"))
    status: EntryStatus = EntryStatus.PLANNED
    year: int | None = None
    partition: ListType = Field(
        default=ListType.BACKLOG,
        alias="list",
        validation_alias=AliasChoices("list", "listType", "partition"),
    )
    seasons_completed: int | None = Field(default=None, alias="seasonsCompleted")
    cover_url: str | None = Field(default=None, alias="coverUrl")
    release_date: str | None = Field(default=None, alias="releaseDate")
    completed_at: str | None = Field(default=None, alias="completedAt")

    def to_create_payload(self) -> dict[str, Any]:
        """Body for ``POST /entries/create`` (the partition travels as ``listType``)."""
        payload = self.to_wire()
        payload["listType"] = payload.pop("list")
        return payload

    def to_entry(self, entry_id: str, user_id: str, now: datetime) -> MediaEntry:
        return MediaEntry.model_validate(
            {
                **self.model_dump(),
                "id": entry_id,
                "user_id": user_id,
                "created_at": now,
                "updated_at": now,
            }
        )


class EntryChanges(MediaLogBase):
    """Partial update of an entry.

    The partition is deliberately absent: an entry belongs to one list for
    its whole lifetime, so unknown keys (including ``list``) are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1)
    media_type: MediaType | None = Field(
        default=None, alias="type", validation_alias=AliasChoices("type", "media_type")
    )
    status: EntryStatus | None = None
    year: int | None = None
    seasons_completed: int | None = Field(default=None, alias="seasonsCompleted")
    cover_url: str | None = Field(default=None, alias="coverUrl")
    release_date: str | None = Field(default=None, alias="releaseDate")
    completed_at: str | None = Field(default=None, alias="completedAt")

    def to_updates(self) -> dict[str, Any]:
        """The ``updates`` object for ``POST /entries/update``; only fields that were set."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)

    def is_empty(self) -> bool:
        return not self.model_fields_set


# ---------- Sync ----------


class SyncPage(MediaLogBase):
    """One ``GET /entries/sync`` response."""

    entries: list[MediaEntry] = Field(default_factory=list)
    server_time: datetime = Field(alias="serverTime")
    is_initial: bool = Field(default=False, alias="isInitial")

    @field_validator("server_time")
    @classmethod
    def _normalise_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


# ---------- Backup ----------


class BackupSnapshot(MediaLogBase):
    """Portable serialisation of the whole local cache, as stored in the backup object."""

    version: str = "1.0"
    backlog: list[MediaEntry] = Field(default_factory=list)
    futurelog: list[MediaEntry] = Field(default_factory=list)
    last_modified: datetime = Field(default_factory=utc_now, alias="lastModified")
    device_id: str = Field(default="", alias="deviceId")

    def entries_for(self, partition: ListType) -> list[MediaEntry]:
        if partition is ListType.BACKLOG:
            return list(self.backlog)
        return list(self.futurelog)
