"""Streaming assembly of a complete chunk set into a served directory.

Chunk files are concatenated in index order, decompressed with brotli and
extracted as a tar stream. Nothing is ever staged on disk between stages.
"""

from __future__ import annotations

import asyncio
import io
import shutil
import tarfile
from collections.abc import Sequence
from pathlib import Path, PurePosixPath

import brotli
import structlog

from permaserve.settings import Settings
from .dispatch import BackgroundDispatcher
from .journal import ErrorJournal

logger = structlog.get_logger(__name__)

_READ_SIZE = 64 * 1024


class AssemblyError(RuntimeError):
    """A pipeline stage could not process the stream."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


class ChunkConcatenation(io.RawIOBase):
    """Read-only view of several files laid end to end."""

    def __init__(self, paths: Sequence[Path]) -> None:
        super().__init__()
        self._paths = list(paths)
        self._position = 0
        self._current: io.BufferedReader | None = None

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while self._position < len(self._paths):
            path = self._paths[self._position]
            try:
                if self._current is None:
                    self._current = path.open("rb")
                count = self._current.readinto(buffer)
            except OSError as exc:
                raise AssemblyError("read", f"{path.name}: {exc}") from exc
            if count:
                return count
            self._current.close()
            self._current = None
            self._position += 1
        return 0

    def close(self) -> None:
        if self._current is not None:
            self._current.close()
            self._current = None
        super().close()


class BrotliReader(io.RawIOBase):
    """Decompresses a brotli stream pulled from ``source``."""

    def __init__(self, source: io.RawIOBase | io.BufferedIOBase) -> None:
        super().__init__()
        self._source = source
        self._decompressor = brotli.Decompressor()
        self._pending = b""
        self._exhausted = False

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending and not self._exhausted:
            data = self._source.read(_READ_SIZE)
            if not data:
                self._exhausted = True
                if not self._decompressor.is_finished():
                    raise AssemblyError("decompress", "compressed stream is truncated")
                break
            try:
                self._pending = self._decompressor.process(data)
            except brotli.error as exc:
                raise AssemblyError("decompress", str(exc) or "invalid brotli data") from exc
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size

    def close(self) -> None:
        self._source.close()
        super().close()


class UnsafeMemberError(ValueError):
    """Archive member that must not be written to disk."""


def _member_path(member: tarfile.TarInfo) -> Path:
    normalized = member.name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute():
        raise UnsafeMemberError(f"absolute path {member.name}")
    parts = [part for part in relative.parts if part != "."]
    if not parts:
        raise UnsafeMemberError(f"empty path {member.name!r}")
    if ".." in parts:
        raise UnsafeMemberError(f"parent reference in {member.name}")
    if not (member.isdir() or member.isfile()):
        raise UnsafeMemberError(f"unsupported member type for {member.name}")
    return Path(*parts)


class AssemblyPipeline:
    """Turns a complete chunk set into the item's served directory."""

    def __init__(
        self,
        settings: Settings,
        journal: ErrorJournal,
        dispatcher: BackgroundDispatcher,
    ) -> None:
        self._settings = settings
        self._journal = journal
        self._dispatcher = dispatcher

    def assemble(self, item: str, chunk_paths: Sequence[Path]) -> None:
        """Run the pipeline in the background; the caller does not wait."""
        paths = list(chunk_paths)
        self._dispatcher.spawn(
            f"assemble:{item}", lambda: asyncio.to_thread(self.run, item, paths)
        )

    def run(self, item: str, chunk_paths: Sequence[Path]) -> list[Path]:
        destination = self._settings.pages_path(item)
        destination.mkdir(parents=True, exist_ok=True)
        logger.info("assembly.started", item=item, chunks=len(chunk_paths))
        extracted: list[Path] = []
        stream = io.BufferedReader(
            BrotliReader(io.BufferedReader(ChunkConcatenation(chunk_paths))),
            buffer_size=_READ_SIZE,
        )
        try:
            with stream:
                self._extract(item, stream, destination, extracted)
        except AssemblyError as exc:
            logger.warning(
                "assembly.failed",
                item=item,
                stage=exc.stage,
                error=exc.message,
                files=len(extracted),
            )
            self._journal.append(item, str(exc))
            return extracted
        logger.info("assembly.finished", item=item, files=len(extracted))
        return extracted

    def _extract(
        self,
        item: str,
        stream: io.BufferedReader,
        destination: Path,
        extracted: list[Path],
    ) -> None:
        try:
            with tarfile.open(fileobj=stream, mode="r|") as archive:
                for member in archive:
                    target = self._extract_member(item, archive, member, destination)
                    if target is not None:
                        extracted.append(target)
        except (tarfile.TarError, EOFError) as exc:
            raise AssemblyError("extract", str(exc) or type(exc).__name__) from exc

    def _extract_member(
        self,
        item: str,
        archive: tarfile.TarFile,
        member: tarfile.TarInfo,
        destination: Path,
    ) -> Path | None:
        try:
            relative = _member_path(member)
        except UnsafeMemberError as exc:
            self._journal.append(item, f"extract: skipped {exc}")
            return None
        target = destination / relative
        if member.isdir():
            target.mkdir(parents=True, exist_ok=True)
            return None
        source = archive.extractfile(member)
        if source is None:
            self._journal.append(item, f"extract: no data for {member.name}")
            return None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with source, target.open("wb") as fh:
                shutil.copyfileobj(source, fh)
        except OSError as exc:
            self._journal.append(item, f"extract: cannot write {member.name}: {exc}")
            return None
        return target
