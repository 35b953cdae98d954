"""Client side of the transport contract."""

from abc import ABC, abstractmethod

from xfiles.transport.base import Connection


class ClientTransport(ABC):
    """Opens connections to an x-files server."""

    @abstractmethod
    async def connect(self, url: str) -> Connection:
        """Open a new connection to ``url``.

        Raises:
            ConnectionError: If the connection can't be established.
        """
