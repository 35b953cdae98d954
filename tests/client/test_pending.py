import asyncio

import pytest

from xfiles.client.pending import PendingRequestTable
from xfiles.protocol.envelopes import ResultEnvelope
from xfiles.protocol.requests import ListRequest
from xfiles.shared.exceptions import ConnectionClosedError, NotFoundError


class TestPendingRequestTable:
    def setup_method(self):
        self.table = PendingRequestTable()

    async def test_track_and_get(self):
        # Arrange
        request = ListRequest(request_id=1, path="/data")
        future = asyncio.get_running_loop().create_future()

        # Act
        self.table.track(request, future)

        # Assert
        tracked_request, tracked_future = self.table.get(1)
        assert tracked_request is request
        assert tracked_future is future
        assert len(self.table) == 1
        assert self.table.request_ids() == [1]

    async def test_resolve_success_sets_data(self):
        future = asyncio.get_running_loop().create_future()
        self.table.track(ListRequest(request_id=1, path="/data"), future)

        resolved = self.table.resolve(ResultEnvelope.succeeded(1, ["x"]))

        assert resolved is True
        assert future.result() == ["x"]
        assert len(self.table) == 0

    async def test_resolve_failure_sets_typed_error(self):
        future = asyncio.get_running_loop().create_future()
        self.table.track(ListRequest(request_id=2, path="/data"), future)

        self.table.resolve(ResultEnvelope.failed(2, NotFoundError("gone")))

        with pytest.raises(NotFoundError, match="gone"):
            future.result()

    async def test_resolve_unknown_id_returns_false(self):
        future = asyncio.get_running_loop().create_future()
        self.table.track(ListRequest(request_id=1, path="/data"), future)

        resolved = self.table.resolve(ResultEnvelope.succeeded(99, None))

        assert resolved is False
        assert not future.done()

    async def test_duplicate_result_is_ignored(self):
        future = asyncio.get_running_loop().create_future()
        self.table.track(ListRequest(request_id=1, path="/data"), future)
        self.table.resolve(ResultEnvelope.succeeded(1, "first"))

        resolved = self.table.resolve(ResultEnvelope.succeeded(1, "second"))

        assert resolved is False
        assert future.result() == "first"

    async def test_untrack(self):
        future = asyncio.get_running_loop().create_future()
        self.table.track(ListRequest(request_id=1, path="/data"), future)

        self.table.untrack(1)

        assert self.table.get(1) is None
        assert self.table.untrack(1) is None

    async def test_fail_all(self):
        # Arrange
        loop = asyncio.get_running_loop()
        futures = [loop.create_future() for _ in range(3)]
        for i, future in enumerate(futures, start=1):
            self.table.track(ListRequest(request_id=i, path="/data"), future)

        # Act
        failed = self.table.fail_all(ConnectionClosedError())

        # Assert
        assert failed == 3
        assert len(self.table) == 0
        for future in futures:
            assert isinstance(future.exception(), ConnectionClosedError)

    async def test_fail_all_skips_cancelled_futures(self):
        future = asyncio.get_running_loop().create_future()
        self.table.track(ListRequest(request_id=1, path="/data"), future)
        future.cancel()

        self.table.fail_all(ConnectionClosedError())

        assert future.cancelled()
