import logging
from collections.abc import Awaitable, Callable

from xfiles.protocol.entries import ServerCapabilities

logger = logging.getLogger(__name__)


class CallbackManager:
    """Lifecycle callbacks for a FilesClient.

    One callback per event; registering again replaces the previous one.
    Callback failures are logged and never reach the client.
    """

    def __init__(self):
        self._connect: Callable[[ServerCapabilities], Awaitable[None]] | None = None
        self._disconnect: Callable[[], Awaitable[None]] | None = None
        self._error: Callable[[Exception], Awaitable[None]] | None = None

    def on_connect(
        self, callback: Callable[[ServerCapabilities], Awaitable[None]]
    ) -> None:
        """Register your callback for completed handshakes.

        Args:
            callback: Async function called with the capabilities the server
                pushed, after every successful connect or reconnect.
        """
        self._connect = callback

    def on_disconnect(self, callback: Callable[[], Awaitable[None]]) -> None:
        """Register your callback for losing an active connection."""
        self._disconnect = callback

    def on_error(self, callback: Callable[[Exception], Awaitable[None]]) -> None:
        """Register your callback for connection-level errors.

        Called for authentication, decode and transport failures that aren't
        tied to a pending request.
        """
        self._error = callback

    async def call_connect(self, capabilities: ServerCapabilities) -> None:
        if self._connect:
            try:
                await self._connect(capabilities)
            except Exception as e:
                logger.warning(f"Connect callback failed: {e}")

    async def call_disconnect(self) -> None:
        if self._disconnect:
            try:
                await self._disconnect()
            except Exception as e:
                logger.warning(f"Disconnect callback failed: {e}")

    async def call_error(self, error: Exception) -> None:
        if self._error:
            try:
                await self._error(error)
            except Exception as e:
                logger.warning(f"Error callback failed: {e}")
