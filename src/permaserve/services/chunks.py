"""Fetch-or-read cache for individual content chunks."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from permaserve.settings import Settings
from permaserve.utils import decode_hex, write_exclusive
from .dispatch import BackgroundDispatcher
from .ledger import LedgerError, LedgerTable

logger = structlog.get_logger(__name__)


class ChunkStore:
    """Chunk files are written once and never revalidated afterwards."""

    def __init__(
        self,
        settings: Settings,
        ledger: LedgerTable,
        dispatcher: BackgroundDispatcher,
    ) -> None:
        self._settings = settings
        self._ledger = ledger
        self._dispatcher = dispatcher

    def path_for(self, item: str, index: int) -> Path:
        return self._settings.chunk_path(item, index)

    def missing(self, item: str, total: int) -> list[int]:
        """Indices below ``total`` with no chunk file; blocking, run it off the loop."""
        return [index for index in range(total) if not self.path_for(item, index).is_file()]

    def has_or_fetch(self, item: str, index: int) -> bool:
        """Return ``True`` if the chunk is on disk, else request it and return ``False``."""
        if self.path_for(item, index).is_file():
            return True
        if self._dispatcher.spawn(f"chunk:{item}:{index}", lambda: self._fetch(item, index)):
            logger.debug("chunk.requested", item=item, index=index)
        return False

    async def _fetch(self, item: str, index: int) -> None:
        try:
            row = await self._ledger.fetch_chunk(item, index)
        except LedgerError as exc:
            logger.warning("chunk.fetch_failed", item=item, index=index, error=str(exc))
            return
        if row is None or "data" not in row:
            logger.info("chunk.absent", item=item, index=index)
            return
        try:
            payload = decode_hex(row["data"])
        except (TypeError, ValueError) as exc:
            logger.warning("chunk.undecodable", item=item, index=index, error=str(exc))
            return
        try:
            stored = await asyncio.to_thread(write_exclusive, self.path_for(item, index), payload)
        except OSError as exc:
            logger.warning("chunk.write_failed", item=item, index=index, error=str(exc))
            return
        if stored:
            logger.info("chunk.stored", item=item, index=index, size=len(payload))
        else:
            logger.debug("chunk.write_lost", item=item, index=index)
