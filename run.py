"""Entry-point for the Solution Portal application."""

from __future__ import annotations

import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from portal.bootstrap import initialize_app
from portal.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from portal.services.storage import CatalogRepository
from portal.ui.overview import CatalogOverviewUI
from portal.web import create_app


LOGGER = logging.getLogger("solution_portal.cli")


cli = typer.Typer(add_completion=False, help="Solution Portal management commands")


def _prepare_logging(storage_root: Path) -> None:
    log_file = get_log_file_path(storage_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="SOLUTION_PORTAL_ROOT_PATH",
    ),
) -> None:
    """Run the FastAPI-powered portal."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    repository = CatalogRepository(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(repository, config=app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server

    browser_host = host
    if not browser_host or browser_host in {"0.0.0.0", "::"}:
        browser_host = "127.0.0.1"
    url = f"http://{browser_host}:{port}{normalized_root}/docs"

    def _open_browser_later() -> None:
        time.sleep(1.0)
        try:
            webbrowser.open(url, new=2, autoraise=True)
        except Exception as error:  # noqa: BLE001 - a missing browser must not stop the server
            LOGGER.debug("Could not open a browser at %s: %s", url, error)

    threading.Thread(target=_open_browser_later, daemon=True).start()

    LOGGER.info("Serving the portal on %s", url)
    server.run()


@cli.command()
def overview(
    faculty: Optional[int] = typer.Option(
        None,
        "--faculty",
        "-f",
        help="Only show the faculty with this id.",
    ),
) -> None:
    """Render the visible catalog as a tree."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = CatalogRepository(config)
    CatalogOverviewUI(repository, faculty_id=faculty).run()


if __name__ == "__main__":
    cli()
