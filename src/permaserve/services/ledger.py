"""Ledger clients that read PermaStore tables from an Antelope API node."""

from __future__ import annotations

from typing import Any, Protocol

import httpx
import structlog

from permaserve.settings import Settings

logger = structlog.get_logger(__name__)

DESCRIPTOR_TABLE = "files"
CHUNK_TABLE = "nodes"


class LedgerError(RuntimeError):
    """Raised when the API node cannot answer a table query."""


class LedgerTable(Protocol):
    """Protocol for components that read PermaStore rows."""

    async def fetch_descriptor(self, item: str) -> dict[str, Any] | None:
        ...

    async def fetch_chunk(self, item: str, index: int) -> dict[str, Any] | None:
        ...


class AntelopeLedger:
    """Reads rows through the chain API ``get_table_rows`` endpoint."""

    def __init__(self, client: httpx.AsyncClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings

    async def fetch_descriptor(self, item: str) -> dict[str, Any] | None:
        rows = await self._get_table_rows(item, DESCRIPTOR_TABLE)
        return rows[0] if rows else None

    async def fetch_chunk(self, item: str, index: int) -> dict[str, Any] | None:
        rows = await self._get_table_rows(
            item, CHUNK_TABLE, lower_bound=index, upper_bound=index
        )
        return rows[0] if rows else None

    async def _get_table_rows(
        self,
        scope: str,
        table: str,
        *,
        lower_bound: int | None = None,
        upper_bound: int | None = None,
    ) -> list[dict[str, Any]]:
        url = f"{self._settings.api_node.rstrip('/')}/v1/chain/get_table_rows"
        body: dict[str, Any] = {
            "json": True,
            "code": self._settings.contract_account,
            "scope": scope,
            "table": table,
            "limit": 1,
            "reverse": False,
            "show_payer": False,
        }
        if lower_bound is not None:
            body["lower_bound"] = str(lower_bound)
        if upper_bound is not None:
            body["upper_bound"] = str(upper_bound)
        logger.debug("ledger.query", scope=scope, table=table, lower_bound=lower_bound)
        try:
            response = await self._client.post(
                url, json=body, timeout=self._settings.request_timeout
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise LedgerError(f"{table} query for {scope} failed: {exc}") from exc
        except ValueError as exc:
            raise LedgerError(f"{table} query for {scope} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise LedgerError(f"{table} query for {scope} returned unexpected payload")
        rows = payload.get("rows") or []
        return [row for row in rows if isinstance(row, dict)]
