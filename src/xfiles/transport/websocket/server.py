"""WebSocket server transport on Starlette, hosted by uvicorn."""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

import uvicorn
from starlette.applications import Starlette
from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from xfiles.transport.base import NORMAL_CLOSURE
from xfiles.transport.server import ServerConnection

if TYPE_CHECKING:
    from xfiles.server.handler import FilesHandler

logger = logging.getLogger(__name__)


class StarletteWebSocketConnection(ServerConnection):
    """Adapts an accepted Starlette WebSocket to the connection contract.

    The WebSocket itself is the hook context: headers, query parameters,
    cookies and the peer address are all available on it.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    @property
    def context(self) -> WebSocket:
        return self._websocket

    @property
    def is_open(self) -> bool:
        return (
            self._websocket.application_state == WebSocketState.CONNECTED
            and self._websocket.client_state == WebSocketState.CONNECTED
        )

    async def send(self, frame: str) -> None:
        if not self.is_open:
            raise ConnectionError("Cannot send: websocket is closed")
        try:
            await self._websocket.send_text(frame)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            raise ConnectionError(f"Failed to send frame: {e}") from e

    def messages(self) -> AsyncIterator[str]:
        return self._frame_iterator()

    async def _frame_iterator(self) -> AsyncIterator[str]:
        while True:
            try:
                message = await self._websocket.receive()
            except (RuntimeError, OSError) as e:
                raise ConnectionError(f"Failed to receive frame: {e}") from e

            if message["type"] == "websocket.disconnect":
                return

            text = message.get("text")
            if text is None and message.get("bytes") is not None:
                text = message["bytes"].decode("utf-8", errors="replace")
            if text is not None:
                yield text

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if (
            self._websocket.application_state == WebSocketState.DISCONNECTED
            or self._websocket.client_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await self._websocket.close(code=code, reason=reason)
        except (RuntimeError, OSError) as e:
            logger.debug(f"Ignoring error while closing websocket: {e}")


def create_app(handler: "FilesHandler", path: str = "/") -> Starlette:
    """Build a Starlette app that serves ``handler`` on a WebSocket route.

    Mount the returned app inside a larger ASGI application to share a port
    with other routes.
    """

    async def files_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()
        await handler.handle_connection(StarletteWebSocketConnection(websocket))

    return Starlette(routes=[WebSocketRoute(path, files_endpoint)])


class FilesServer:
    """Hosts a FilesHandler on a uvicorn server."""

    def __init__(
        self,
        handler: "FilesHandler",
        host: str = "127.0.0.1",
        port: int = 8080,
        path: str = "/",
    ) -> None:
        self.handler = handler
        self.host = host
        self.port = port
        self.path = path
        self.app = create_app(handler, path)
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    async def start(self) -> None:
        """Start serving in a background task. Ignored if already running."""
        if self.running:
            return
        config = uvicorn.Config(
            app=self.app, host=self.host, port=self.port, log_level="info"
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve())
        logger.info(
            f"x-files server listening on ws://{self.host}:{self.port}{self.path}"
        )

    async def serve(self) -> None:
        """Serve in the foreground until the server is told to exit."""
        await self.start()
        if self._serve_task is not None:
            await self._serve_task

    async def stop(self) -> None:
        """Close every session, then shut uvicorn down."""
        await self.handler.close_all()
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            await self._serve_task
            self._serve_task = None
        self._server = None
