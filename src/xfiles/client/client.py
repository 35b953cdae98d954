"""Client for a remote x-files server.

FilesClient numbers every request, matches results back to their callers by
request id and keeps the connection alive across transient drops with
exponential backoff. Results may arrive in any order; each caller only ever
sees the result carrying its own request id.
"""

import asyncio
import base64
import logging
from enum import Enum
from types import TracebackType
from typing import Any, Self

from xfiles.client.callbacks import CallbackManager
from xfiles.client.pending import PendingRequestTable
from xfiles.client.reconnect import ReconnectPolicy
from xfiles.protocol.entries import DirectoryEntry, ServerCapabilities
from xfiles.protocol.envelopes import ConnectedEnvelope, ErrorEnvelope, ResultEnvelope
from xfiles.protocol.requests import (
    DEFAULT_ENCODING,
    DEFAULT_MAX_RESULTS,
    CopyRequest,
    DeleteRequest,
    ExistsRequest,
    ListRequest,
    MkdirRequest,
    ReadRequest,
    RenameRequest,
    Request,
    SearchOptions,
    SearchRequest,
    StatRequest,
    WriteRequest,
)
from xfiles.protocol.results import (
    CopyResult,
    CreateDirectoryResult,
    DeleteResult,
    DownloadResult,
    ExistsResult,
    ReadFileResult,
    RenameResult,
    WriteFileResult,
)
from xfiles.shared.exceptions import (
    AlreadyConnectingError,
    ConnectionClosedError,
    NotConnectedError,
    ProtocolDecodeError,
    XFilesError,
)
from xfiles.shared.message_parser import (
    MessageParser,
    parse_json_message,
    serialize_message,
)
from xfiles.transport.base import NORMAL_CLOSURE, Connection
from xfiles.transport.client import ClientTransport


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    ACTIVE = "active"


class FilesClient:
    """Talks to one x-files server.

    Usage:
        async with FilesClient("ws://localhost:8080") as client:
            entries = await client.list_directory("/home/user")
    """

    def __init__(
        self,
        url: str,
        transport: ClientTransport | None = None,
        reconnect: ReconnectPolicy | None = None,
    ):
        if transport is None:
            from xfiles.transport.websocket.client import WebSocketClientTransport

            transport = WebSocketClientTransport()

        self.url = url
        self.transport = transport
        self.reconnect = reconnect or ReconnectPolicy()
        self.callbacks = CallbackManager()
        self.pending = PendingRequestTable()
        self.parser = MessageParser()
        self.logger = logging.getLogger("xfiles.client.client")

        self._state = ConnectionState.DISCONNECTED
        self._connection: Connection | None = None
        self._capabilities: ServerCapabilities | None = None
        self._handshake: asyncio.Future[ServerCapabilities] | None = None
        self._message_loop_task: asyncio.Task[None] | None = None
        self._last_request_id = 0

        self._auto_reconnect = self.reconnect.auto_reconnect
        self._reconnect_attempts = 0
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnect_waiting = False
        # Bumped by disconnect() so an attempt already in flight can tell.
        self._disconnects = 0

    # ================================
    # State
    # ================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.ACTIVE

    @property
    def capabilities(self) -> ServerCapabilities | None:
        """What the server pushed on the last successful handshake."""
        return self._capabilities

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def reconnect_scheduled(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ================================
    # Lifecycle
    # ================================

    async def connect(self) -> ServerCapabilities:
        """Connect and complete the capabilities handshake.

        Returns immediately if already connected. Re-arms automatic
        reconnection and resets the attempt counter.

        Raises:
            AlreadyConnectingError: If a connection attempt is in progress.
            AuthenticationFailedError: If the server refused the connection.
            ConnectionError: If the server can't be reached or the connection
                dropped during the handshake.
        """
        if self._state is ConnectionState.ACTIVE and self._capabilities is not None:
            return self._capabilities
        if self._state is ConnectionState.CONNECTING:
            raise AlreadyConnectingError()

        self._auto_reconnect = self.reconnect.auto_reconnect
        self._reconnect_attempts = 0
        self._cancel_reconnect()
        return await self._open()

    async def disconnect(self) -> None:
        """Close the connection and stop reconnecting.

        Doesn't wait for in-flight requests; they fail with
        ConnectionClosedError.
        """
        self._auto_reconnect = False
        self._disconnects += 1
        await self._stop_reconnect()

        connection = self._connection
        if connection is not None:
            await connection.close(NORMAL_CLOSURE, "Client disconnect")
        await self._wait_for_message_loop()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    async def _open(self) -> ServerCapabilities:
        """Open a transport connection and wait for the capabilities push."""
        self._state = ConnectionState.CONNECTING
        self._last_request_id = 0

        disconnects = self._disconnects
        try:
            connection = await self.transport.connect(self.url)
        except asyncio.CancelledError:
            self._state = ConnectionState.DISCONNECTED
            raise
        except ConnectionError as e:
            self._state = ConnectionState.DISCONNECTED
            self.logger.warning(f"Failed to connect to {self.url}: {e}")
            await self.callbacks.call_error(e)
            self._schedule_reconnect()
            raise

        if disconnects != self._disconnects:
            self._state = ConnectionState.DISCONNECTED
            await connection.close(NORMAL_CLOSURE, "Client disconnect")
            raise ConnectionClosedError("Disconnected while connecting")

        self._connection = connection
        handshake = asyncio.get_running_loop().create_future()
        self._handshake = handshake
        self._message_loop_task = asyncio.create_task(
            self._message_loop(connection), name="xfiles_client_message_loop"
        )

        try:
            capabilities = await handshake
        except BaseException:
            await connection.close(NORMAL_CLOSURE, "Handshake failed")
            await self._wait_for_message_loop()
            raise

        await self.callbacks.call_connect(capabilities)
        return capabilities

    # ================================
    # Reconnection
    # ================================

    def _schedule_reconnect(self) -> None:
        """Schedule the next retry, unless disabled or out of attempts."""
        if not self._auto_reconnect or self._reconnect_waiting:
            return
        if self._reconnect_attempts >= self.reconnect.max_attempts:
            self.logger.warning(
                f"Giving up on {self.url} after {self._reconnect_attempts} "
                "reconnect attempts"
            )
            return

        delay = self.reconnect.delay_for(self._reconnect_attempts)
        self.logger.info(
            f"Reconnecting in {delay:.2f}s (attempt {self._reconnect_attempts + 1})"
        )
        self._reconnect_waiting = True
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay), name="xfiles_client_reconnect"
        )

    async def _reconnect_after(self, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            self._reconnect_waiting = False
        if self._state is not ConnectionState.DISCONNECTED:
            return

        self._reconnect_attempts += 1
        try:
            await self._open()
        except (XFilesError, ConnectionError) as e:
            self.logger.warning(
                f"Reconnect attempt {self._reconnect_attempts} failed: {e}"
            )

    def _cancel_reconnect(self) -> asyncio.Task[None] | None:
        task = self._reconnect_task
        self._reconnect_task = None
        self._reconnect_waiting = False
        if task is None or task.done() or task is asyncio.current_task():
            return None
        task.cancel()
        return task

    async def _stop_reconnect(self) -> None:
        """Cancel a pending or in-flight retry and wait for it to unwind."""
        task = self._cancel_reconnect()
        if task is not None:
            await asyncio.wait({task})

    # ================================
    # Message loop
    # ================================

    async def _message_loop(self, connection: Connection) -> None:
        """Process server frames until the connection ends."""
        error: Exception | None = None
        try:
            async for frame in connection.messages():
                try:
                    await self._handle_frame(frame)
                except Exception as e:
                    self.logger.warning(f"Error handling server message: {e}")
                    continue
        except ConnectionError as e:
            self.logger.error(f"Transport error: {e}")
            error = e
        finally:
            await self._on_connection_lost(connection, error)

    async def _wait_for_message_loop(self) -> None:
        task = self._message_loop_task
        if task is None or task.done() or task is asyncio.current_task():
            return
        await asyncio.wait({task})

    def _handshake_pending(self) -> bool:
        return self._handshake is not None and not self._handshake.done()

    async def _handle_frame(self, frame: str) -> None:
        try:
            message = self.parser.parse_server_message(parse_json_message(frame))
        except ProtocolDecodeError as e:
            if self._handshake_pending():
                self._handshake.set_exception(e)
                return
            self.logger.warning(f"Undecodable message from server: {e}")
            await self.callbacks.call_error(e)
            return

        if isinstance(message, ConnectedEnvelope):
            self._handle_connected(message.config)
        elif isinstance(message, ErrorEnvelope):
            await self._handle_error(message)
        elif isinstance(message, ResultEnvelope):
            self._handle_result(message)

    def _handle_connected(self, capabilities: ServerCapabilities) -> None:
        if not self._handshake_pending():
            self.logger.warning("Ignoring repeated capabilities push")
            return

        self._capabilities = capabilities
        self._state = ConnectionState.ACTIVE
        self._reconnect_attempts = 0
        self.logger.info(f"Connected to {self.url}")
        self._handshake.set_result(capabilities)

    async def _handle_error(self, envelope: ErrorEnvelope) -> None:
        error = envelope.to_error()
        if self._handshake_pending():
            self._handshake.set_exception(error)
            return
        self.logger.warning(f"Server reported an error: {error}")
        await self.callbacks.call_error(error)

    def _handle_result(self, envelope: ResultEnvelope) -> None:
        if self._handshake_pending():
            self._handshake.set_exception(
                ProtocolDecodeError("Received a result before the capabilities push")
            )
            return
        if not self.pending.resolve(envelope):
            self.logger.debug(
                f"Ignoring result for unknown request {envelope.request_id}"
            )

    async def _on_connection_lost(
        self, connection: Connection, error: Exception | None
    ) -> None:
        """Fail everything still pending and decide whether to retry."""
        if self._connection is not connection:
            return

        self._connection = None
        self._message_loop_task = None
        was_active = self._state is ConnectionState.ACTIVE
        self._state = ConnectionState.DISCONNECTED

        if self._handshake_pending():
            self._handshake.set_exception(
                ConnectionClosedError("Connection closed during handshake")
            )
        failed = self.pending.fail_all(ConnectionClosedError())
        if failed:
            self.logger.debug(f"Failed {failed} pending requests on disconnect")

        if error is not None:
            await self.callbacks.call_error(error)
        if was_active:
            self.logger.info(f"Disconnected from {self.url}")
            await self.callbacks.call_disconnect()

        self._schedule_reconnect()

    # ================================
    # Requests
    # ================================

    async def _request(self, request_type: type[Request], **fields: Any) -> Any:
        """Send one request and wait for its result data.

        Raises:
            NotConnectedError: If the client isn't connected. Nothing is sent.
            ConnectionClosedError: If the connection closes first.
            XFilesError: The error the server reported for this request.
        """
        connection = self._connection
        if self._state is not ConnectionState.ACTIVE or connection is None:
            raise NotConnectedError()

        self._last_request_id += 1
        request = request_type(request_id=self._last_request_id, **fields)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self.pending.track(request, future)

        try:
            await connection.send(serialize_message(request.to_protocol()))
        except ConnectionError as e:
            self.pending.untrack(request.request_id)
            raise ConnectionClosedError(f"Failed to send request: {e}") from e

        return await future

    # ================================
    # File operations
    # ================================

    async def list_directory(self, path: str) -> list[DirectoryEntry]:
        """Immediate children of ``path``, directories first."""
        data = await self._request(ListRequest, path=path)
        return [DirectoryEntry.from_protocol(item) for item in data]

    async def get_stats(self, path: str) -> DirectoryEntry:
        data = await self._request(StatRequest, path=path)
        return DirectoryEntry.from_protocol(data)

    async def read_file(
        self, path: str, encoding: str = DEFAULT_ENCODING
    ) -> ReadFileResult:
        data = await self._request(ReadRequest, path=path, encoding=encoding)
        return ReadFileResult.from_protocol(data)

    async def write_file(
        self, path: str, content: str, encoding: str = DEFAULT_ENCODING
    ) -> WriteFileResult:
        data = await self._request(
            WriteRequest, path=path, content=content, encoding=encoding
        )
        return WriteFileResult.from_protocol(data)

    async def create_directory(self, path: str) -> CreateDirectoryResult:
        """Create ``path`` and missing ancestors. Succeeds if it exists."""
        data = await self._request(MkdirRequest, path=path)
        return CreateDirectoryResult.from_protocol(data)

    async def delete_item(self, path: str) -> DeleteResult:
        data = await self._request(DeleteRequest, path=path)
        return DeleteResult.from_protocol(data)

    async def rename(self, old_path: str, new_path: str) -> RenameResult:
        data = await self._request(RenameRequest, old_path=old_path, new_path=new_path)
        return RenameResult.from_protocol(data)

    async def copy(self, source: str, destination: str) -> CopyResult:
        data = await self._request(CopyRequest, source=source, destination=destination)
        return CopyResult.from_protocol(data)

    async def exists(self, path: str) -> ExistsResult:
        data = await self._request(ExistsRequest, path=path)
        return ExistsResult.from_protocol(data)

    async def search(
        self,
        path: str,
        pattern: str,
        recursive: bool = True,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[DirectoryEntry]:
        """Entries under ``path`` whose name matches the regex ``pattern``."""
        options = SearchOptions(recursive=recursive, max_results=max_results)
        data = await self._request(
            SearchRequest, path=path, pattern=pattern, options=options
        )
        return [DirectoryEntry.from_protocol(item) for item in data]

    # ================================
    # Upload / download
    # ================================

    async def upload_file(
        self,
        path: str,
        content: str,
        encoding: str = DEFAULT_ENCODING,
        is_base64: bool = False,
    ) -> WriteFileResult:
        """Write text, or base64 data when ``is_base64`` is set."""
        return await self.write_file(path, content, "base64" if is_base64 else encoding)

    async def upload_binary(self, path: str, data: bytes) -> WriteFileResult:
        content = base64.b64encode(data).decode("ascii")
        return await self.write_file(path, content, "base64")

    async def download_file(self, path: str) -> DownloadResult:
        """Fetch a file, as text if it looks like UTF-8 text, else as base64."""
        result = await self.read_file(path, "base64")
        raw = base64.b64decode(result.content)
        if b"\0" not in raw:
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError:
                pass
            else:
                return DownloadResult(content=text, size=result.size, is_binary=False)
        return DownloadResult(content=result.content, size=result.size, is_binary=True)

    async def download_binary(self, path: str) -> bytes:
        result = await self.read_file(path, "base64")
        return base64.b64decode(result.content)
