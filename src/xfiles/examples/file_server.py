"""Serve a directory over x-files.

    python -m xfiles.examples.file_server --root ./shared --allow-write
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Annotated

import typer

from xfiles.protocol.base import DEFAULT_MAX_FILE_SIZE
from xfiles.server.config import HandlerConfig
from xfiles.server.handler import FilesHandler
from xfiles.transport.websocket.server import FilesServer

app = typer.Typer(
    name="xfiles-server",
    help="x-files WebSocket file server",
    add_completion=False,
)


def build_config(
    roots: list[Path] | None = None,
    allow_write: bool = False,
    allow_delete: bool = False,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
) -> HandlerConfig:
    roots = roots or [Path(os.getcwd())]
    return HandlerConfig(
        allowed_paths=[os.path.abspath(root) for root in roots],
        allow_write=allow_write,
        allow_delete=allow_delete,
        max_file_size=max_file_size,
    )


async def run_server(config: HandlerConfig, host: str, port: int, path: str) -> None:
    handler = FilesHandler(config)
    for root in handler.capabilities.allowed_paths:
        logging.info(f"Serving files from {root}")

    server = FilesServer(handler, host=host, port=port, path=path)
    try:
        await server.serve()
    finally:
        await handler.close_all()


@app.command()
def serve(
    root: Annotated[
        list[Path] | None,
        typer.Option(
            "--root",
            "-r",
            help="Allow-listed root directory (repeatable, default: current directory)",
        ),
    ] = None,
    host: Annotated[
        str,
        typer.Option("--host", "-h", help="Host to bind to"),
    ] = "127.0.0.1",
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to bind to"),
    ] = 8080,
    path: Annotated[
        str,
        typer.Option("--path", help="WebSocket route path"),
    ] = "/",
    allow_write: Annotated[
        bool,
        typer.Option("--allow-write", help="Enable write and mkdir"),
    ] = False,
    allow_delete: Annotated[
        bool,
        typer.Option("--allow-delete", help="Enable delete"),
    ] = False,
    max_file_size: Annotated[
        int,
        typer.Option("--max-file-size", help="Read/write size limit in bytes"),
    ] = DEFAULT_MAX_FILE_SIZE,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Logging level"),
    ] = "INFO",
) -> None:
    """Serve the allow-listed roots until interrupted."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = build_config(root, allow_write, allow_delete, max_file_size)
    asyncio.run(run_server(config, host, port, path))


if __name__ == "__main__":
    app()
