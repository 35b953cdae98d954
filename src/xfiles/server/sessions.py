import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Literal

from xfiles.transport.base import NORMAL_CLOSURE
from xfiles.transport.server import ServerConnection

SessionState = Literal["accepted", "authenticating", "active", "closed"]

logger = logging.getLogger(__name__)


@dataclass
class ConnectionSession:
    """Server-side record of one live connection."""

    connection: ServerConnection
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = "accepted"
    opened_at: float = field(default_factory=time.time)

    @property
    def context(self) -> Any:
        """Transport-level context handed to authorization hooks."""
        return self.connection.context


class SessionManager:
    """Owns the set of live sessions for one handler instance."""

    def __init__(self):
        self._sessions: dict[str, ConnectionSession] = {}

    def register(self, session: ConnectionSession) -> None:
        self._sessions[session.id] = session

    def unregister(self, session_id: str) -> ConnectionSession | None:
        return self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> ConnectionSession | None:
        return self._sessions.get(session_id)

    def session_ids(self) -> list[str]:
        return list(self._sessions.keys())

    def count(self) -> int:
        return len(self._sessions)

    async def close_all(
        self, code: int = NORMAL_CLOSURE, reason: str = "Server closing"
    ) -> None:
        """Close every registered session and forget about all of them."""
        sessions = list(self._sessions.values())
        self._sessions.clear()

        for session in sessions:
            session.state = "closed"
            try:
                await session.connection.close(code, reason)
            except Exception as e:
                logger.warning(f"Error closing session {session.id}: {e}")
