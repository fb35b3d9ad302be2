"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_z(value: datetime) -> str:
    """Serialise an aware datetime the way the API does (``...Z`` suffix, milliseconds)."""
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class MediaLogBase(BaseModel):
    """Base model with shared config for all medialog schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict using the camelCase wire names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
