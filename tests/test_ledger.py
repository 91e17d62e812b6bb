import json

import httpx
import pytest

from permaserve.services.ledger import AntelopeLedger, LedgerError


def _ledger(settings, handler) -> AntelopeLedger:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AntelopeLedger(client=client, settings=settings)


@pytest.mark.asyncio
async def test_chunk_query_targets_exact_index(settings) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200, json={"rows": [{"id": 7, "data": "cafe"}], "more": False})

    row = await _ledger(settings, handler).fetch_chunk("demo", 7)

    assert row == {"id": 7, "data": "cafe"}
    url, body = seen[0]
    assert url == "https://api.uxnetwork.io/v1/chain/get_table_rows"
    assert body["code"] == "permastoreux"
    assert body["scope"] == "demo"
    assert body["table"] == "nodes"
    assert body["lower_bound"] == body["upper_bound"] == "7"
    assert body["limit"] == 1


@pytest.mark.asyncio
async def test_descriptor_query_returns_none_without_rows(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["table"] == "files"
        assert "lower_bound" not in body
        return httpx.Response(200, json={"rows": [], "more": False})

    assert await _ledger(settings, handler).fetch_descriptor("demo") is None


@pytest.mark.asyncio
async def test_http_and_payload_errors_raise_ledger_error(settings) -> None:
    def server_error(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"code": 500, "message": "Internal Service Error"})

    def not_json(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    with pytest.raises(LedgerError):
        await _ledger(settings, server_error).fetch_descriptor("demo")
    with pytest.raises(LedgerError):
        await _ledger(settings, not_json).fetch_chunk("demo", 0)
