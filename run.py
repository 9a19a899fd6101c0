"""Entry-point for the subtopic video bridge service."""

from __future__ import annotations

import asyncio
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import typer
import uvicorn
from rich.console import Console

from app.bootstrap import BootstrapError, ServiceBundle, build_services, initialize_app
from app.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from app.services.errors import VideoBridgeError
from app.ui.console import ConsoleUI
from app.ui.modern import ModernUI
from app.ui.overview import collect_inspection
from app.web import create_app


LOGGER = logging.getLogger("video_bridge.cli")

T = TypeVar("T")

cli = typer.Typer(add_completion=False, help="Subtopic video bridge commands")


def _prepare_logging(storage_root: Path) -> None:
    log_file = get_log_file_path(storage_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


class UIStyle(str, Enum):
    MODERN = "modern"
    CONSOLE = "console"


style_option = typer.Option(
    UIStyle.MODERN,
    "--style",
    "-s",
    help="Select the inspection presentation style.",
    show_default=True,
)

database_option = typer.Option(
    None,
    "--database",
    "-d",
    help="Database to use instead of the configured one.",
)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
PORT_ENV = "PORT"


def _default_port() -> int:
    raw = os.environ.get(PORT_ENV, "").strip()
    if not raw:
        return DEFAULT_PORT
    try:
        return int(raw)
    except ValueError:
        LOGGER.warning("Ignoring invalid %s value %r; using %s", PORT_ENV, raw, DEFAULT_PORT)
        return DEFAULT_PORT


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=_default_port())


def _run_with_services(operation: Callable[[ServiceBundle], Awaitable[T]]) -> T:
    async def _runner(config) -> T:
        services = build_services(config)
        try:
            return await operation(services)
        finally:
            await services.aclose()

    try:
        config = initialize_app()
        _prepare_logging(config.storage_root)
        return asyncio.run(_runner(config))
    except (BootstrapError, VideoBridgeError) as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server", envvar=PORT_ENV),
) -> None:
    """Run the FastAPI service."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    services = build_services(config)
    app = create_app(
        config=config,
        store=services.store,
        orchestrator=services.orchestrator,
        resolver=services.resolver,
        writer=services.writer,
        closers=services.closers,
    )
    LOGGER.info("Serving on http://%s:%s (provider=%s)", host, port, config.provider_base_url)

    server_config = uvicorn.Config(app, host=host, port=port, log_config=None)
    server = uvicorn.Server(server_config)
    app.state.server = server
    server.run()


@cli.command()
def inspect(style: UIStyle = style_option, database: Optional[str] = database_option) -> None:
    """Render collection counts and sample document shapes."""

    async def _collect(services: ServiceBundle):
        store = services.store.with_database(database)
        return await collect_inspection(store, store.database_name)

    snapshot = _run_with_services(_collect)
    if style is UIStyle.MODERN:
        ui = ModernUI(snapshot)
    else:
        ui = ConsoleUI(snapshot)
    ui.run()


@cli.command()
def locate(
    identifier: str = typer.Argument(..., help="Subtopic identifier to resolve"),
    collection: Optional[str] = typer.Option(
        None, "--collection", "-c", help="Collection to search first"
    ),
    database: Optional[str] = database_option,
) -> None:
    """Report which collection and storage shape hold IDENTIFIER."""

    async def _locate(services: ServiceBundle):
        store = services.store.with_database(database)
        return await services.resolver.for_store(store).locate(identifier, collection)

    outcome = _run_with_services(_locate)
    console = Console()
    if not outcome.matched:
        console.print(f"[yellow]'{identifier}' not found[/yellow]")
        console.print(f"Collections searched: {', '.join(outcome.collections_searched) or '<none>'}")
        raise typer.Exit(code=1)
    console.print(
        f"[green]Found[/green] '{identifier}' as {outcome.location.value} "
        f"in '{outcome.collection_name}' via {outcome.strategy}"
    )


@cli.command()
def generate(
    text: str = typer.Argument(..., help="Script the presenter should read"),
    max_wait: Optional[float] = typer.Option(
        None, "--max-wait", help="Seconds to wait for the provider before giving up"
    ),
) -> None:
    """Run one generation job and print the resulting video URL."""

    async def _generate(services: ServiceBundle):
        orchestrator = services.orchestrator
        handle = await orchestrator.submit_job(text)
        typer.echo(f"Submitted job {handle.id}; polling for completion…")
        return await orchestrator.await_completion(handle, max_wait=max_wait)

    result = _run_with_services(_generate)
    typer.echo(f"Video ready after {result.polls} status checks: {result.result_url}")


if __name__ == "__main__":
    cli()
