"""FastAPI front end: serves assembled pages and drives retrieval for the rest."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx
import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from permaserve.services import (
    AntelopeLedger,
    BackgroundDispatcher,
    LedgerTable,
    StatusKind,
    create_coordinator,
)
from permaserve.settings import Settings, configure_logging, get_settings

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

logger = structlog.get_logger(__name__)

_STATUS_CODES = {
    StatusKind.INVALID_NAME: status.HTTP_400_BAD_REQUEST,
    StatusKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def create_app(
    settings: Optional[Settings] = None,
    ledger: Optional[LedgerTable] = None,
) -> FastAPI:
    """Factory used by uvicorn."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    settings.ensure_directories()
    client: httpx.AsyncClient | None = None
    if ledger is None:
        client = httpx.AsyncClient(timeout=settings.request_timeout)
        ledger = AntelopeLedger(client=client, settings=settings)
    dispatcher = BackgroundDispatcher(settings.max_concurrency)
    coordinator = create_coordinator(settings, ledger, dispatcher)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await dispatcher.cancel_all()
        if client is not None:
            await client.aclose()

    app = FastAPI(title="PermaServe", lifespan=lifespan)
    app.state.dispatcher = dispatcher
    app.state.coordinator = coordinator
    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

    @app.get("/", response_class=HTMLResponse)
    async def home(request: Request) -> HTMLResponse:
        pages = sorted(path.name for path in settings.pages_dir.iterdir() if path.is_dir())
        return templates.TemplateResponse(request, "index.html", {"pages": pages})

    @app.get("/favicon.ico", include_in_schema=False)
    async def favicon() -> Response:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/{item}/{path:path}")
    async def page_file(item: str, path: str):
        if not coordinator.is_assembled(item):
            if path:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
            return RedirectResponse(f"/{item}", status_code=status.HTTP_302_FOUND)
        root = settings.pages_path(item).resolve()
        target = (root / path).resolve()
        if not target.is_relative_to(root):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        if target.is_dir():
            target = target / "index.html"
        if not target.is_file():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        return FileResponse(target)

    @app.get("/{item}", response_class=HTMLResponse)
    async def page(request: Request, item: str):
        if coordinator.is_assembled(item):
            return RedirectResponse(f"/{item}/", status_code=status.HTTP_302_FOUND)
        result = await coordinator.resolve(item)
        logger.info("web.resolve", item=item, kind=result.kind.value, retry_after=result.retry_after)
        headers = {"Retry-After": str(result.retry_after)} if result.retry_after > 0 else None
        return templates.TemplateResponse(
            request,
            "status.html",
            {"status": result},
            status_code=_STATUS_CODES.get(result.kind, status.HTTP_200_OK),
            headers=headers,
        )

    return app
