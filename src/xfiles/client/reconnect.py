from dataclasses import dataclass


@dataclass
class ReconnectPolicy:
    """How a client retries after losing its connection.

    The delay before retry ``k`` (0-based count of attempts already made) is
    ``min(base_delay * 2**k, max_delay)`` seconds.
    """

    auto_reconnect: bool = True
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2**attempt), self.max_delay)
