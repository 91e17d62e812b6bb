"""Core data models used throughout the PermaServe application."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class MalformedDescriptorError(ValueError):
    """Raised when a descriptor row cannot be interpreted."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DescriptorRecord(BaseModel):
    """Durable copy of the descriptor row returned by the ledger."""

    name: str
    row: dict[str, Any] = Field(default_factory=dict)
    fetched_at: datetime = Field(default_factory=_utcnow)


class ItemMetadata(BaseModel):
    """Typed view over a descriptor row.

    ``published`` is ``None`` when the row carries neither a true nor a false
    flag, which is what a record left behind by a deleted item looks like.
    ``chunk_count`` is only known for published items.
    """

    name: str
    published: bool | None = None
    chunk_count: int | None = None
    fetched_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_record(cls, record: DescriptorRecord) -> "ItemMetadata":
        published = _parse_flag(record.row.get("published"))
        chunk_count = None
        if published:
            chunk_count = _parse_count(record.row.get("top"))
        return cls(
            name=record.name,
            published=published,
            chunk_count=chunk_count,
            fetched_at=record.fetched_at,
        )


def _parse_flag(value: Any) -> bool | None:
    if isinstance(value, (bool, int)) and value in (0, 1):
        return bool(value)
    return None


def _parse_count(value: Any) -> int:
    if isinstance(value, bool):
        raise MalformedDescriptorError(f"unexpected chunk count: {value!r}")
    if isinstance(value, int) and value >= 0:
        return value
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    raise MalformedDescriptorError(f"unexpected chunk count: {value!r}")
