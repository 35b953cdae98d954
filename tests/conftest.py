import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import pytest

from xfiles.server.config import HandlerConfig
from xfiles.server.handler import FilesHandler
from xfiles.transport.base import NORMAL_CLOSURE
from xfiles.transport.client import ClientTransport
from xfiles.transport.server import ServerConnection


class MemoryConnection(ServerConnection):
    """In-process connection end. Frames sent here land in the peer's inbox.

    Without a peer, sent frames are only recorded so tests can inspect them.
    """

    def __init__(self, context: Any = None):
        self.sent: list[dict[str, Any]] = []
        self.peer: "MemoryConnection | None" = None
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._context = context
        self._inbox: asyncio.Queue[str | Exception | None] = asyncio.Queue()

    @property
    def context(self) -> Any:
        return self._context

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def send(self, frame: str) -> None:
        if self.closed:
            raise ConnectionError("Connection closed")
        self.sent.append(json.loads(frame))
        if self.peer is not None:
            self.peer._inbox.put_nowait(frame)

    def messages(self) -> AsyncIterator[str]:
        return self._frame_iterator()

    async def _frame_iterator(self) -> AsyncIterator[str]:
        while True:
            frame = await self._inbox.get()
            if frame is None:
                return
            if isinstance(frame, Exception):
                self.closed = True
                raise frame
            yield frame

    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        self._shutdown(code, reason)
        if self.peer is not None:
            self.peer._shutdown(code, reason)

    def _shutdown(self, code: int, reason: str) -> None:
        if self.closed:
            return
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self._inbox.put_nowait(None)

    # Test helpers
    def feed(self, message: dict[str, Any] | str) -> None:
        """Simulate an inbound frame from the peer."""
        frame = message if isinstance(message, str) else json.dumps(message)
        self._inbox.put_nowait(frame)

    def end(self) -> None:
        """Simulate the peer closing after its queued frames were read."""
        self._inbox.put_nowait(None)

    def drop(self) -> None:
        """Simulate the peer going away."""
        self._shutdown(1006, "Connection lost")

    def fail(self, error: Exception) -> None:
        """Simulate a transport failure while reading."""
        self._inbox.put_nowait(error)


def memory_pair(context: Any = None) -> tuple[MemoryConnection, MemoryConnection]:
    client_end = MemoryConnection()
    server_end = MemoryConnection(context)
    client_end.peer = server_end
    server_end.peer = client_end
    return client_end, server_end


class HandlerTransport(ClientTransport):
    """Client transport that serves every connection with a real handler."""

    def __init__(self, handler: FilesHandler, context: Any = None):
        self.handler = handler
        self.context = context
        self.connect_attempts = 0
        self.refuse = False
        self.server_ends: list[MemoryConnection] = []
        self.server_tasks: list[asyncio.Task[None]] = []

    async def connect(self, url: str) -> MemoryConnection:
        self.connect_attempts += 1
        if self.refuse:
            raise ConnectionError(f"Connection refused: {url}")

        client_end, server_end = memory_pair(self.context)
        self.server_ends.append(server_end)
        self.server_tasks.append(
            asyncio.create_task(self.handler.handle_connection(server_end))
        )
        return client_end


class ScriptedTransport(ClientTransport):
    """Client transport whose server side is driven by the test."""

    def __init__(self):
        self.connect_attempts = 0
        self.refuse = False
        self.server_ends: list[MemoryConnection] = []
        self.connected = asyncio.Event()
        # When set, connect() parks on the gate until the test opens it.
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def connect(self, url: str) -> MemoryConnection:
        self.connect_attempts += 1
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.refuse:
            raise ConnectionError(f"Connection refused: {url}")

        client_end, server_end = memory_pair()
        self.server_ends.append(server_end)
        self.connected.set()
        return client_end

    @property
    def server(self) -> MemoryConnection:
        """Server end of the most recent connection."""
        return self.server_ends[-1]

    @property
    def client(self) -> MemoryConnection:
        """Client end of the most recent connection."""
        return self.server.peer

    def push(self, message: dict[str, Any] | str) -> None:
        """Deliver a frame from the server side of the latest connection."""
        self.client.feed(message)

    def requests(self) -> list[dict[str, Any]]:
        """Frames the client sent on the latest connection."""
        return self.client.sent


async def yield_to_event_loop(seconds: float = 0.01) -> None:
    """Let the event loop process pending tasks and callbacks."""
    await asyncio.sleep(seconds)


@pytest.fixture
def yield_loop():
    """Helper to yield to event loop in tests."""
    return yield_to_event_loop


@pytest.fixture
def make_connection():
    """Factory for standalone connections with optional hook context."""
    return MemoryConnection


@pytest.fixture
def make_pair():
    return memory_pair


@pytest.fixture
def root(tmp_path):
    """Allow-listed root directory for a test."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def make_handler(root):
    """Factory for handlers rooted at ``root``."""

    def factory(**overrides: Any) -> FilesHandler:
        overrides.setdefault("allowed_paths", [str(root)])
        return FilesHandler(HandlerConfig(**overrides))

    return factory


@pytest.fixture
def handler_transport():
    return HandlerTransport


@pytest.fixture
def scripted_transport():
    return ScriptedTransport()


CAPABILITIES = {
    "allowedPaths": ["/data"],
    "allowWrite": True,
    "allowDelete": True,
    "maxFileSize": 1024,
}


async def open_scripted_client(client, transport, config=None):
    """Connect ``client`` through a ScriptedTransport and push capabilities."""
    task = asyncio.create_task(client.connect())
    await transport.connected.wait()
    transport.connected.clear()
    transport.push({"type": "connected", "config": config or CAPABILITIES})
    return await task


@pytest.fixture
def capabilities_payload():
    return dict(CAPABILITIES)


@pytest.fixture
def open_client():
    return open_scripted_client
