import asyncio
import base64

import pytest

from xfiles.client.client import FilesClient
from xfiles.client.reconnect import ReconnectPolicy
from xfiles.shared.exceptions import (
    AccessDeniedError,
    DeleteDisabledError,
    NotFoundError,
    TooLargeError,
    WriteDisabledError,
)


@pytest.fixture
def scripted_client(scripted_transport):
    return FilesClient(
        "ws://files.test",
        transport=scripted_transport,
        reconnect=ReconnectPolicy(auto_reconnect=False),
    )


@pytest.fixture
def make_client(make_handler, handler_transport):
    """Client wired to a real handler through an in-memory transport."""

    async def factory(**config):
        handler = make_handler(**config)
        client = FilesClient(
            "ws://files.test",
            transport=handler_transport(handler),
            reconnect=ReconnectPolicy(auto_reconnect=False),
        )
        await client.connect()
        return client

    return factory


class TestWireProtocol:
    async def test_request_ids_increase_from_one(
        self, scripted_client, scripted_transport, open_client, yield_loop
    ):
        # Arrange
        await open_client(scripted_client, scripted_transport)

        # Act
        tasks = [
            asyncio.create_task(scripted_client.exists(f"/data/{name}"))
            for name in ("a", "b", "c")
        ]
        await yield_loop()

        # Assert
        requests = scripted_transport.requests()
        assert [request["requestId"] for request in requests] == [1, 2, 3]
        assert requests[0] == {
            "type": "exists",
            "requestId": 1,
            "path": "/data/a",
        }

        for task in tasks:
            task.cancel()

    async def test_results_matched_by_id_not_order(
        self, scripted_client, scripted_transport, open_client, yield_loop
    ):
        # Arrange
        await open_client(scripted_client, scripted_transport)
        first = asyncio.create_task(scripted_client.exists("/data/a"))
        second = asyncio.create_task(scripted_client.exists("/data/b"))
        await yield_loop()

        # Act
        scripted_transport.push(
            {
                "type": "result",
                "requestId": 2,
                "success": True,
                "data": {"exists": False},
            }
        )
        scripted_transport.push(
            {
                "type": "result",
                "requestId": 1,
                "success": True,
                "data": {"exists": True, "isFile": True, "isDirectory": False},
            }
        )

        # Assert
        assert (await first).exists is True
        assert (await second).exists is False

    async def test_unknown_result_id_is_ignored(
        self, scripted_client, scripted_transport, open_client, yield_loop
    ):
        await open_client(scripted_client, scripted_transport)
        task = asyncio.create_task(scripted_client.get_stats("/data"))
        await yield_loop()

        scripted_transport.push(
            {"type": "result", "requestId": 77, "success": True, "data": None}
        )
        await yield_loop()

        assert not task.done()
        assert scripted_client.connected
        task.cancel()

    async def test_failed_result_raises_typed_error(
        self, scripted_client, scripted_transport, open_client, yield_loop
    ):
        await open_client(scripted_client, scripted_transport)
        task = asyncio.create_task(scripted_client.read_file("/etc/passwd"))
        await yield_loop()

        scripted_transport.push(
            {
                "type": "result",
                "requestId": 1,
                "success": False,
                "error": "Access denied: /etc/passwd",
                "code": "access_denied",
            }
        )

        with pytest.raises(AccessDeniedError, match="/etc/passwd"):
            await task

    async def test_search_sends_options(
        self, scripted_client, scripted_transport, open_client, yield_loop
    ):
        await open_client(scripted_client, scripted_transport)
        task = asyncio.create_task(
            scripted_client.search("/data", r"\.md$", recursive=False, max_results=7)
        )
        await yield_loop()

        assert scripted_transport.requests()[0]["options"] == {
            "recursive": False,
            "maxResults": 7,
        }
        task.cancel()

    async def test_rename_uses_wire_names(
        self, scripted_client, scripted_transport, open_client, yield_loop
    ):
        await open_client(scripted_client, scripted_transport)
        task = asyncio.create_task(scripted_client.rename("/data/a", "/data/b"))
        await yield_loop()

        request = scripted_transport.requests()[0]
        assert request["oldPath"] == "/data/a"
        assert request["newPath"] == "/data/b"
        task.cancel()


class TestOperations:
    async def test_write_list_read(self, make_client, root):
        # Arrange
        client = await make_client(allow_write=True)

        # Act
        await client.create_directory(str(root / "docs"))
        written = await client.write_file(str(root / "docs" / "a.txt"), "hello")
        entries = await client.list_directory(str(root / "docs"))
        read = await client.read_file(str(root / "docs" / "a.txt"))

        # Assert
        assert written.size == 5
        assert [entry.name for entry in entries] == ["a.txt"]
        assert entries[0].is_file
        assert read.content == "hello"
        await client.disconnect()

    async def test_get_stats(self, make_client, root):
        (root / "a.txt").write_text("abc")
        client = await make_client()

        entry = await client.get_stats(str(root / "a.txt"))

        assert entry.name == "a.txt"
        assert entry.size == 3
        await client.disconnect()

    async def test_rename_and_copy(self, make_client, root):
        (root / "a.txt").write_text("x")
        client = await make_client(allow_write=True)

        renamed = await client.rename(str(root / "a.txt"), str(root / "b.txt"))
        copied = await client.copy(str(root / "b.txt"), str(root / "c.txt"))

        assert renamed.new_path == str(root / "b.txt")
        assert copied.destination == str(root / "c.txt")
        assert sorted(p.name for p in root.iterdir()) == ["b.txt", "c.txt"]
        await client.disconnect()

    async def test_delete(self, make_client, root):
        (root / "d").mkdir()
        client = await make_client(allow_delete=True)

        result = await client.delete_item(str(root / "d"))

        assert result.deleted == str(root / "d")
        assert not (await client.exists(str(root / "d"))).exists
        await client.disconnect()

    async def test_search(self, make_client, root):
        (root / "one.md").write_text("")
        (root / "two.txt").write_text("")
        client = await make_client()

        results = await client.search(str(root), r"\.MD$")

        assert [entry.name for entry in results] == ["one.md"]
        await client.disconnect()

    async def test_permission_errors_are_typed(self, make_client, root):
        (root / "a.txt").write_text("x")
        client = await make_client()

        with pytest.raises(WriteDisabledError):
            await client.write_file(str(root / "b.txt"), "x")
        with pytest.raises(DeleteDisabledError):
            await client.delete_item(str(root / "a.txt"))
        with pytest.raises(NotFoundError):
            await client.read_file(str(root / "missing.txt"))
        await client.disconnect()

    async def test_read_over_limit(self, make_client, root):
        (root / "big.bin").write_bytes(b"x" * 2048)
        client = await make_client(max_file_size=1024)

        with pytest.raises(TooLargeError):
            await client.read_file(str(root / "big.bin"))
        await client.disconnect()


class TestUploadDownload:
    async def test_upload_and_download_binary(self, make_client, root):
        client = await make_client(allow_write=True)
        data = bytes(range(256))

        result = await client.upload_binary(str(root / "blob.bin"), data)
        downloaded = await client.download_binary(str(root / "blob.bin"))

        assert result.size == 256
        assert downloaded == data
        assert (root / "blob.bin").read_bytes() == data
        await client.disconnect()

    async def test_upload_base64_text(self, make_client, root):
        client = await make_client(allow_write=True)
        content = base64.b64encode(b"from base64").decode("ascii")

        await client.upload_file(str(root / "a.txt"), content, is_base64=True)

        assert (root / "a.txt").read_bytes() == b"from base64"
        await client.disconnect()

    async def test_download_text_file(self, make_client, root):
        (root / "a.txt").write_text("plain text")
        client = await make_client()

        result = await client.download_file(str(root / "a.txt"))

        assert result.is_binary is False
        assert result.content == "plain text"
        assert result.size == 10
        await client.disconnect()

    async def test_download_binary_file(self, make_client, root):
        (root / "a.bin").write_bytes(b"\x00\x01\xff")
        client = await make_client()

        result = await client.download_file(str(root / "a.bin"))

        assert result.is_binary is True
        assert base64.b64decode(result.content) == b"\x00\x01\xff"
        await client.disconnect()
