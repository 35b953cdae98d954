"""Server side of the transport contract."""

from abc import abstractmethod
from typing import Any

from xfiles.transport.base import Connection


class ServerConnection(Connection):
    """A connection accepted by the server.

    Carries the transport-level context (request headers, peer address,
    ...) that authentication and authorization hooks inspect.
    """

    @property
    @abstractmethod
    def context(self) -> Any:
        """Transport-specific context for this connection."""
