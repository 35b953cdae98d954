"""WebSocket client transport built on the ``websockets`` asyncio client."""

import logging
from collections.abc import AsyncIterator
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    WebSocketException,
)
from websockets.protocol import State

from xfiles.transport.base import NORMAL_CLOSURE, Connection
from xfiles.transport.client import ClientTransport

logger = logging.getLogger(__name__)


class WebSocketClientConnection(Connection):
    def __init__(self, websocket: ClientConnection) -> None:
        self._websocket = websocket

    @property
    def is_open(self) -> bool:
        return self._websocket.state is State.OPEN

    @property
    def close_code(self) -> int | None:
        return self._websocket.close_code

    @property
    def close_reason(self) -> str | None:
        return self._websocket.close_reason

    async def send(self, frame: str) -> None:
        try:
            await self._websocket.send(frame)
        except ConnectionClosed as e:
            raise ConnectionError(f"Cannot send: {e}") from e

    def messages(self) -> AsyncIterator[str]:
        return self._frame_iterator()

    async def _frame_iterator(self) -> AsyncIterator[str]:
        try:
            async for message in self._websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                yield message
        except ConnectionClosedOK:
            return
        except ConnectionClosed as e:
            raise ConnectionError(f"Connection lost: {e}") from e

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        await self._websocket.close(code=code, reason=reason)


class WebSocketClientTransport(ClientTransport):
    """Opens WebSocket connections with ``websockets``.

    Extra keyword arguments (``additional_headers``, ``open_timeout``, ...)
    are passed straight through to ``websockets.asyncio.client.connect``.
    """

    def __init__(self, **connect_options: Any) -> None:
        self._connect_options = connect_options

    async def connect(self, url: str) -> WebSocketClientConnection:
        try:
            websocket = await connect(url, **self._connect_options)
        except (OSError, TimeoutError, WebSocketException) as e:
            raise ConnectionError(f"Failed to connect to {url}: {e}") from e

        logger.debug(f"Opened websocket to {url}")
        return WebSocketClientConnection(websocket)
