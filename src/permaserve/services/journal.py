"""Append-only per-item error journal."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from permaserve.settings import Settings

logger = structlog.get_logger(__name__)


class ErrorJournal:
    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def append(self, item: str, message: str) -> None:
        """Best effort: a failed write is logged and otherwise ignored."""
        path = self._settings.journal_path(item)
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        logger.warning("journal.append", item=item, message=message)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8", newline="") as fh:
                fh.write(f"{stamp} {message}\r\n")
        except OSError as exc:
            logger.error("journal.write_failed", item=item, error=str(exc))

    def read(self, item: str) -> str:
        path = self._settings.journal_path(item)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
