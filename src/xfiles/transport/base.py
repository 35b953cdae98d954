from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

# WebSocket close status codes used by the protocol.
NORMAL_CLOSURE = 1000
AUTHENTICATION_FAILURE = 4001


class Connection(ABC):
    """One live, bidirectional, message-framed connection.

    Frames are opaque text; encoding and decoding belong to the protocol
    layer so that malformed frames can be reported to the peer.
    """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """True while frames can still be sent."""

    @abstractmethod
    async def send(self, frame: str) -> None:
        """Send one frame.

        Raises:
            ConnectionError: If the connection is closed or the send fails.
        """

    @abstractmethod
    def messages(self) -> AsyncIterator[str]:
        """Stream of inbound frames.

        The iterator ends when the connection closes normally.

        Raises:
            ConnectionError: When the connection fails.
        """

    @abstractmethod
    async def close(self, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        """Close the connection. Safe to call more than once."""
