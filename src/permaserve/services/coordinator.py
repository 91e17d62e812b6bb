"""Top-level retrieval state machine for a single item request."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum

import structlog

from permaserve.settings import Settings
from permaserve.utils import is_valid_item_name
from .assembly import AssemblyPipeline
from .chunks import ChunkStore
from .dispatch import BackgroundDispatcher
from .journal import ErrorJournal
from .ledger import LedgerTable
from .metadata import BrokenReason, MetadataCache, MetadataState

logger = structlog.get_logger(__name__)

BASE_RETRY_SECONDS = 30
PER_CHUNK_RETRY_SECONDS = 3


class StatusKind(str, Enum):
    INVALID_NAME = "invalid_name"
    NOT_PUBLISHED = "not_published"
    NOT_FOUND = "not_found"
    BROKEN = "broken"
    TOO_LARGE = "too_large"
    METADATA_PENDING = "metadata_pending"
    DOWNLOADING = "downloading"
    ASSEMBLING_STARTED = "assembling_started"
    ALREADY_ASSEMBLED = "already_assembled"


@dataclass(slots=True)
class RetrievalStatus:
    """Outcome of one ``resolve`` call, ready to be rendered for a person."""

    kind: StatusKind
    item: str
    title: str
    message: str
    hint: str = ""
    retry_after: int = 0
    requested: int = 0
    present: int = 0
    total: int | None = None
    limit: int | None = None
    reason: str | None = None


def retry_delay(chunks: int) -> int:
    return BASE_RETRY_SECONDS + PER_CHUNK_RETRY_SECONDS * chunks


class RetrievalCoordinator:
    """Drives metadata, chunk and assembly work for one item per call.

    Holds no state between calls; everything durable lives on disk.
    """

    def __init__(
        self,
        settings: Settings,
        metadata: MetadataCache,
        chunks: ChunkStore,
        assembly: AssemblyPipeline,
    ) -> None:
        self._settings = settings
        self._metadata = metadata
        self._chunks = chunks
        self._assembly = assembly

    def is_assembled(self, item: str) -> bool:
        if not is_valid_item_name(item, self._settings.max_name_length):
            return False
        return self._settings.pages_path(item).is_dir()

    async def lookup(self, item: str) -> RetrievalStatus:
        """Like ``resolve`` but reports items whose directory already exists."""
        if self.is_assembled(item):
            return RetrievalStatus(
                StatusKind.ALREADY_ASSEMBLED,
                item,
                "Page is available",
                f"Serving from {self._settings.pages_path(item)}",
            )
        return await self.resolve(item)

    async def resolve(self, item: str) -> RetrievalStatus:
        limit = self._settings.max_name_length
        if not is_valid_item_name(item, limit):
            return RetrievalStatus(
                StatusKind.INVALID_NAME,
                item,
                "Invalid page name",
                f"Valid page names have at most {limit} characters",
            )

        lookup = self._metadata.get_metadata(item)
        if lookup.state is MetadataState.STALE_OR_MISSING:
            return RetrievalStatus(
                StatusKind.METADATA_PENDING,
                item,
                "Searching for page on blockchain...",
                "Requested page metadata",
                "If it exists, check back later",
                retry_after=lookup.retry_after,
            )
        if lookup.state is MetadataState.FRESH_UNPUBLISHED:
            return RetrievalStatus(
                StatusKind.NOT_PUBLISHED,
                item,
                "Page is not published",
                "Make sure it is published and check back later",
                retry_after=lookup.retry_after,
            )
        if lookup.state is MetadataState.FRESH_MISSING:
            return RetrievalStatus(
                StatusKind.NOT_FOUND,
                item,
                "Page not found",
                "This page was likely deleted",
            )
        if lookup.state is MetadataState.FRESH_BROKEN:
            if lookup.reason is BrokenReason.SIZE_EXCEEDED:
                node_limit = self._settings.node_range_limit
                return RetrievalStatus(
                    StatusKind.TOO_LARGE,
                    item,
                    "Page is too large",
                    f"Node count: {lookup.chunk_count} | Limit: {node_limit}",
                    total=lookup.chunk_count,
                    limit=node_limit,
                    reason=lookup.reason.value,
                )
            return RetrievalStatus(
                StatusKind.BROKEN,
                item,
                "Broken page metadata file",
                "Check back later",
                retry_after=lookup.retry_after,
                reason=lookup.detail,
            )

        total = lookup.chunk_count or 0
        missing = await asyncio.to_thread(self._chunks.missing, item, total)
        present = total - len(missing)
        requested = 0
        for index in missing:
            if self._chunks.has_or_fetch(item, index):
                present += 1
            else:
                requested += 1
        if requested:
            logger.info(
                "retrieval.downloading", item=item, requested=requested, present=present, total=total
            )
            return RetrievalStatus(
                StatusKind.DOWNLOADING,
                item,
                "Downloading page from blockchain...",
                f"Data nodes requested: {requested}, had {present}/{total}",
                "Please check back later",
                retry_after=retry_delay(requested),
                requested=requested,
                present=present,
                total=total,
            )

        if await asyncio.to_thread(self._claim_assembly, item):
            paths = [self._chunks.path_for(item, index) for index in range(total)]
            self._assembly.assemble(item, paths)
        return RetrievalStatus(
            StatusKind.ASSEMBLING_STARTED,
            item,
            "Processing page...",
            f"Decompressing {total} downloaded page data nodes",
            "Please check back later",
            retry_after=retry_delay(total),
            present=present,
            total=total,
        )

    def _claim_assembly(self, item: str) -> bool:
        """Create the placeholder directory; only the creator assembles."""
        destination = self._settings.pages_path(item)
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            destination.mkdir()
        except FileExistsError:
            logger.debug("retrieval.assembly_claimed", item=item)
            return False
        logger.info("retrieval.assembling", item=item)
        return True


def create_coordinator(
    settings: Settings,
    ledger: LedgerTable,
    dispatcher: BackgroundDispatcher,
) -> RetrievalCoordinator:
    """Wire the cache, store and pipeline around a single dispatcher."""
    return RetrievalCoordinator(
        settings=settings,
        metadata=MetadataCache(settings, ledger, dispatcher),
        chunks=ChunkStore(settings, ledger, dispatcher),
        assembly=AssemblyPipeline(settings, ErrorJournal(settings), dispatcher),
    )
