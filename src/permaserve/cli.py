"""Command-line interface for PermaServe."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

import httpx
import typer
from rich.console import Console
from rich.table import Table

from permaserve.services import (
    AntelopeLedger,
    BackgroundDispatcher,
    ErrorJournal,
    RetrievalStatus,
    StatusKind,
    create_coordinator,
)
from permaserve.settings import configure_logging, get_settings

console = Console()
app = typer.Typer(help="PermaServe – serve PermaStore pages from an Antelope chain")

_PENDING = {StatusKind.METADATA_PENDING, StatusKind.DOWNLOADING}
_FAILED = {
    StatusKind.INVALID_NAME,
    StatusKind.NOT_FOUND,
    StatusKind.BROKEN,
    StatusKind.TOO_LARGE,
}


@app.callback()
def main() -> None:
    """Apply the configured log level before any command runs."""
    configure_logging(get_settings().log_level)


@app.command()
def init(data_dir: Optional[Path] = typer.Option(None, help="Override data directory")) -> None:
    """Create the cache and pages directories."""
    settings = get_settings()
    if data_dir:
        settings = settings.model_copy(update={"data_dir": data_dir})
        settings.ensure_directories()
        _write_env_var("PERMASERVE_DATA_DIR", str(data_dir))
        console.print("Updated .env with PERMASERVE_DATA_DIR")
    console.print(f"[green]Data directory ready:[/green] {settings.data_dir}")


def _write_env_var(key: str, value: str) -> None:
    env_path = Path(".env")
    lines = []
    if env_path.exists():
        lines = [line for line in env_path.read_text().splitlines() if not line.startswith(f"{key}=")]
    lines.append(f"{key}={value}")
    env_path.write_text("\n".join(lines) + "\n")


@app.command()
def config(
    json_output: bool = typer.Option(False, "--json", help="Output settings as JSON"),
) -> None:
    """Display the resolved settings."""
    settings = get_settings()
    if json_output:
        typer.echo(settings.model_dump_json(indent=2))
        return
    table = Table(title="PermaServe Settings")
    table.add_column("Key")
    table.add_column("Value", overflow="fold")
    for key, value in settings.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


def _print_status(result: RetrievalStatus) -> None:
    colour = "red" if result.kind in _FAILED else "green"
    line = f"[{colour}]{result.title}[/{colour}] {result.message}"
    if result.retry_after:
        line += f" [dim](retry in {result.retry_after}s)[/dim]"
    console.print(line)


async def _handle_fetch(
    item: str, wait: bool, max_polls: int, poll_interval: float
) -> RetrievalStatus:
    settings = get_settings()
    dispatcher = BackgroundDispatcher(settings.max_concurrency)
    async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
        ledger = AntelopeLedger(client=client, settings=settings)
        coordinator = create_coordinator(settings, ledger, dispatcher)
        polls = 0
        while True:
            result = await coordinator.lookup(item)
            polls += 1
            _print_status(result)
            await dispatcher.drain()
            if not wait or result.kind not in _PENDING or polls >= max_polls:
                break
            await asyncio.sleep(min(result.retry_after, poll_interval))
    return result


@app.command()
def fetch(
    item: str = typer.Argument(..., help="PermaStore page name"),
    wait: bool = typer.Option(False, "--wait/--no-wait", help="Poll until the page is assembled"),
    max_polls: int = typer.Option(20, help="Give up after this many polls"),
    poll_interval: float = typer.Option(5.0, help="Upper bound on seconds between polls"),
) -> None:
    """Retrieve a page from the chain into the local cache."""
    result = asyncio.run(_handle_fetch(item, wait, max_polls, poll_interval))
    if result.kind in _FAILED:
        raise typer.Exit(code=1)
    if result.kind is StatusKind.ASSEMBLING_STARTED:
        errors = ErrorJournal(get_settings()).read(item)
        if errors:
            console.print(f"[red]Assembly reported errors:[/red]\n{errors}")
            raise typer.Exit(code=1)
        console.print(f"[green]Assembled[/green] {item}")


@app.command()
def journal(item: str = typer.Argument(..., help="PermaStore page name")) -> None:
    """Print the assembly error journal for a page."""
    text = ErrorJournal(get_settings()).read(item)
    if not text:
        console.print(f"[green]No errors recorded for {item}.")
        return
    typer.echo(text.rstrip())


@app.command()
def doctor() -> None:
    """Environment checks (Python, deps, data directory)."""
    checks: list[tuple[str, bool, str]] = []
    checks.append(("python>=3.11", sys.version_info >= (3, 11), sys.version))
    for mod in ("httpx", "brotli", "structlog", "fastapi"):
        try:
            module = __import__(mod)
            ver = getattr(module, "__version__", "unknown")
            checks.append((f"{mod} import", True, ver))
        except Exception as exc:  # pragma: no cover
            checks.append((f"{mod} import", False, str(exc)))
    settings = get_settings()
    for directory in (settings.cache_dir, settings.pages_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
            probe = directory / ".permaserve_doctor"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink()
            checks.append((f"{directory.name} writable", True, str(directory)))
        except OSError as exc:  # pragma: no cover
            checks.append((f"{directory.name} writable", False, str(exc)))

    passed = True
    for name, ok, note in checks:
        status = "[green]OK[/green]" if ok else "[red]FAIL[/red]"
        console.print(f"{status} {name} ({note})")
        passed = passed and ok
    if not passed:
        raise typer.Exit(code=1)
    console.print("[green]Doctor checks passed.[/green]")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(57057, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """Launch the web server."""
    import uvicorn

    uvicorn.run(
        "permaserve.web.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


if __name__ == "__main__":  # pragma: no cover
    app()
