"""Test doubles and payload builders shared across test modules."""

from __future__ import annotations

import asyncio
import io
import tarfile

import brotli

from permaserve.models import DescriptorRecord
from permaserve.services.ledger import LedgerError
from permaserve.settings import Settings

class StubLedger:
    """In-memory ledger that counts the queries it receives."""

    def __init__(self) -> None:
        self.descriptor: dict | None = None
        self.chunks: dict[int, bytes] = {}
        self.raw_rows: dict[int, dict] = {}
        self.fail = False
        self.gate: asyncio.Event | None = None
        self.delay = 0.0
        self.descriptor_calls = 0
        self.chunk_calls: list[int] = []

    async def fetch_descriptor(self, item: str) -> dict | None:
        self.descriptor_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise LedgerError("node unavailable")
        return self.descriptor

    async def fetch_chunk(self, item: str, index: int) -> dict | None:
        self.chunk_calls.append(index)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise LedgerError("node unavailable")
        if index in self.raw_rows:
            return self.raw_rows[index]
        if index not in self.chunks:
            return None
        return {"id": index, "data": self.chunks[index].hex()}


def build_page(files: dict[str, bytes]) -> bytes:
    """Brotli-compressed tar archive holding ``files``."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            archive.addfile(info, io.BytesIO(content))
    return brotli.compress(buffer.getvalue())


def split(payload: bytes, parts: int) -> dict[int, bytes]:
    size = -(-len(payload) // parts)
    return {index: payload[index * size : (index + 1) * size] for index in range(parts)}


def write_descriptor(settings: Settings, item: str, row: dict) -> None:
    path = settings.descriptor_path(item)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DescriptorRecord(name=item, row=row).model_dump_json(), encoding="utf-8")


