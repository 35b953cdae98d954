import asyncio
from typing import Any

from xfiles.protocol.envelopes import ResultEnvelope
from xfiles.protocol.requests import Request


class PendingRequestTable:
    """Outstanding requests of one client, keyed by request id.

    An entry lives from the moment its request is sent until the matching
    result arrives or the connection closes.
    """

    def __init__(self):
        self._requests: dict[int, tuple[Request, asyncio.Future[Any]]] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def track(self, request: Request, future: asyncio.Future[Any]) -> None:
        self._requests[request.request_id] = (request, future)

    def get(self, request_id: int) -> tuple[Request, asyncio.Future[Any]] | None:
        return self._requests.get(request_id)

    def untrack(self, request_id: int) -> tuple[Request, asyncio.Future[Any]] | None:
        return self._requests.pop(request_id, None)

    def request_ids(self) -> list[int]:
        return list(self._requests.keys())

    def resolve(self, envelope: ResultEnvelope) -> bool:
        """Complete the request matching ``envelope``.

        Returns:
            False if no request was pending under that id (late or duplicate
            result), True otherwise.
        """
        entry = self._requests.pop(envelope.request_id, None)
        if entry is None:
            return False

        _, future = entry
        if future.done():
            return True
        if envelope.success:
            future.set_result(envelope.data)
        else:
            future.set_exception(envelope.to_error())
        return True

    def fail_all(self, error: Exception) -> int:
        """Fail every pending request with ``error``. Returns how many."""
        entries = list(self._requests.values())
        self._requests.clear()

        for _, future in entries:
            if not future.done():
                future.set_exception(error)
        return len(entries)
