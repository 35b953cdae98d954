"""Per-connection lifecycle for the x-files server.

A connection moves through Accepted -> Authenticating -> Active -> Closed.
Requests on one connection are handled strictly in arrival order; separate
connections are independent of each other.
"""

import inspect
import logging

from xfiles.protocol.base import ProtocolModel
from xfiles.protocol.entries import ServerCapabilities
from xfiles.protocol.envelopes import ConnectedEnvelope, ErrorEnvelope, ResultEnvelope
from xfiles.server.config import HandlerConfig
from xfiles.server.dispatcher import OperationDispatcher
from xfiles.server.sessions import ConnectionSession, SessionManager
from xfiles.shared.exceptions import AuthenticationFailedError, ProtocolDecodeError
from xfiles.shared.message_parser import (
    MessageParser,
    parse_json_message,
    serialize_message,
)
from xfiles.transport.base import AUTHENTICATION_FAILURE, NORMAL_CLOSURE
from xfiles.transport.server import ServerConnection


class FilesHandler:
    """Serves the x-files protocol on accepted connections.

    Capabilities are computed once at construction and are identical for all
    connections of one handler. Each handler owns its own session registry,
    so several handlers can live in one process without sharing state.
    """

    def __init__(self, config: HandlerConfig | None = None):
        self.config = config or HandlerConfig()
        self._capabilities = self.config.to_capabilities()
        self.sessions = SessionManager()
        self.parser = MessageParser()
        self.dispatcher = OperationDispatcher(
            self._capabilities, authorize=self.config.authorize
        )
        self.logger = logging.getLogger("xfiles.server.handler")

    @property
    def capabilities(self) -> ServerCapabilities:
        return self._capabilities

    @property
    def connection_count(self) -> int:
        return self.sessions.count()

    # ================================
    # Lifecycle
    # ================================

    async def handle_connection(self, connection: ServerConnection) -> None:
        """Serve one accepted connection until it closes.

        Authenticates, pushes capabilities, then processes requests in order.
        Returns once the connection is closed.
        """
        session = ConnectionSession(connection=connection)
        session.state = "authenticating"

        if not await self._authenticate(session):
            session.state = "closed"
            return

        self.sessions.register(session)
        session.state = "active"
        self.logger.info(f"Session {session.id} connected")

        try:
            await self._send(session, ConnectedEnvelope(config=self._capabilities))
            await self._message_loop(session)
        except ConnectionError as e:
            self.logger.info(f"Transport closed on session {session.id}: {e}")
        finally:
            session.state = "closed"
            self.sessions.unregister(session.id)
            self.logger.info(f"Session {session.id} disconnected")

    async def close_all(self) -> None:
        """Close every live session. Used at shutdown."""
        await self.sessions.close_all(NORMAL_CLOSURE, "Server closing")

    async def _authenticate(self, session: ConnectionSession) -> bool:
        """Run the authentication hook, refusing the connection on failure."""
        authenticate = self.config.authenticate
        if authenticate is None:
            return True

        try:
            authenticated = authenticate(session.context)
            if inspect.isawaitable(authenticated):
                authenticated = await authenticated
        except Exception as e:
            self.logger.warning(f"Authentication hook failed: {e}")
            error = AuthenticationFailedError("Authentication error")
            await self._refuse(session, error)
            return False

        if not authenticated:
            await self._refuse(session, AuthenticationFailedError())
            return False
        return True

    async def _refuse(
        self, session: ConnectionSession, error: AuthenticationFailedError
    ) -> None:
        self.logger.warning(f"Refusing connection: {error}")
        try:
            await self._send(session, ErrorEnvelope.from_error(error))
        except ConnectionError as e:
            self.logger.debug(f"Could not deliver refusal: {e}")
        try:
            await session.connection.close(AUTHENTICATION_FAILURE, error.message)
        except ConnectionError as e:
            self.logger.debug(f"Could not close refused connection: {e}")

    # ================================
    # Message loop
    # ================================

    async def _message_loop(self, session: ConnectionSession) -> None:
        """Handle inbound frames one at a time until the connection closes."""
        async for frame in session.connection.messages():
            await self._handle_frame(session, frame)
            if not session.connection.is_open:
                return

    async def _handle_frame(self, session: ConnectionSession, frame: str) -> None:
        """Decode a frame and answer it with exactly one envelope."""
        try:
            payload = parse_json_message(frame)
        except ProtocolDecodeError as e:
            self.logger.warning(f"Undecodable frame on session {session.id}: {e}")
            await self._send(session, ErrorEnvelope.from_error(e))
            return

        try:
            request = self.parser.parse_request(payload)
        except ProtocolDecodeError as e:
            self.logger.warning(f"Invalid request on session {session.id}: {e}")
            request_id = self.parser.extract_request_id(payload)
            if request_id is None:
                await self._send(session, ErrorEnvelope.from_error(e))
            else:
                await self._send(session, ResultEnvelope.failed(request_id, e))
            return

        envelope = await self.dispatcher.handle(request, session)
        await self._send(session, envelope)

    async def _send(self, session: ConnectionSession, envelope: ProtocolModel) -> None:
        await session.connection.send(serialize_message(envelope.to_protocol()))
