"""Per-item descriptor cache with a time-to-live."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum

import structlog

from permaserve.models import DescriptorRecord, ItemMetadata
from permaserve.settings import Settings
from permaserve.utils import write_exclusive
from .dispatch import BackgroundDispatcher
from .ledger import LedgerError, LedgerTable

logger = structlog.get_logger(__name__)

PENDING_RETRY_SECONDS = 60


class MetadataState(str, Enum):
    FRESH_PUBLISHED = "fresh_published"
    FRESH_UNPUBLISHED = "fresh_unpublished"
    FRESH_BROKEN = "fresh_broken"
    FRESH_MISSING = "fresh_missing"
    STALE_OR_MISSING = "stale_or_missing"


class BrokenReason(str, Enum):
    MALFORMED = "malformed"
    SIZE_EXCEEDED = "size_exceeded"


@dataclass(slots=True)
class MetadataLookup:
    """What the cache knows about an item right now.

    ``retry_after`` is the number of seconds left before the record expires,
    or the pending delay when no fresh record exists.
    """

    state: MetadataState
    retry_after: int = 0
    chunk_count: int | None = None
    reason: BrokenReason | None = None
    detail: str | None = None


class MetadataCache:
    """Reads descriptor records from disk and refreshes them from the ledger."""

    def __init__(
        self,
        settings: Settings,
        ledger: LedgerTable,
        dispatcher: BackgroundDispatcher,
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._dispatcher = dispatcher

    def get_metadata(self, item: str) -> MetadataLookup:
        path = self._settings.descriptor_path(item)
        try:
            modified = path.stat().st_mtime
        except FileNotFoundError:
            return self._request(item)

        ttl = self._settings.metadata_ttl
        age = time.time() - modified
        if age >= ttl:
            logger.info("metadata.expired", item=item, age=int(age))
            path.unlink(missing_ok=True)
            return self._request(item)
        retry_after = int(ttl - age)

        try:
            record = DescriptorRecord.model_validate_json(path.read_bytes())
            metadata = ItemMetadata.from_record(record)
        except FileNotFoundError:
            return self._request(item)
        except (OSError, ValueError) as exc:
            logger.warning("metadata.malformed", item=item, error=str(exc))
            return MetadataLookup(
                MetadataState.FRESH_BROKEN,
                retry_after,
                reason=BrokenReason.MALFORMED,
                detail=str(exc),
            )

        if metadata.published is None:
            return MetadataLookup(MetadataState.FRESH_MISSING, retry_after)
        if not metadata.published:
            return MetadataLookup(MetadataState.FRESH_UNPUBLISHED, retry_after)

        count = metadata.chunk_count
        if count - 1 > self._settings.node_range_limit:
            return MetadataLookup(
                MetadataState.FRESH_BROKEN,
                retry_after,
                chunk_count=count,
                reason=BrokenReason.SIZE_EXCEEDED,
                detail=f"{count} chunks exceeds limit {self._settings.node_range_limit}",
            )
        return MetadataLookup(MetadataState.FRESH_PUBLISHED, retry_after, chunk_count=count)

    def _request(self, item: str) -> MetadataLookup:
        if self._dispatcher.spawn(f"descriptor:{item}", lambda: self._fetch(item)):
            logger.info("metadata.requested", item=item)
        return MetadataLookup(MetadataState.STALE_OR_MISSING, PENDING_RETRY_SECONDS)

    async def _fetch(self, item: str) -> None:
        try:
            row = await self._ledger.fetch_descriptor(item)
        except LedgerError as exc:
            logger.warning("metadata.fetch_failed", item=item, error=str(exc))
            return
        if row is None:
            logger.info("metadata.absent", item=item)
            return
        record = DescriptorRecord(name=item, row=row)
        path = self._settings.descriptor_path(item)
        try:
            stored = await asyncio.to_thread(
                write_exclusive, path, record.model_dump_json().encode("utf-8")
            )
        except OSError as exc:
            logger.warning("metadata.write_failed", item=item, error=str(exc))
            return
        if stored:
            logger.info("metadata.stored", item=item)
        else:
            logger.debug("metadata.write_lost", item=item)
