"""Typed payloads carried in the ``data`` field of successful results."""

from pydantic import Field

from xfiles.protocol.base import ProtocolModel


class ReadFileResult(ProtocolModel):
    content: str
    size: int


class WriteFileResult(ProtocolModel):
    path: str
    size: int


class CreateDirectoryResult(ProtocolModel):
    path: str


class DeleteResult(ProtocolModel):
    deleted: str


class RenameResult(ProtocolModel):
    old_path: str = Field(alias="oldPath")
    new_path: str = Field(alias="newPath")


class CopyResult(ProtocolModel):
    source: str
    destination: str


class ExistsResult(ProtocolModel):
    exists: bool
    is_directory: bool | None = Field(default=None, alias="isDirectory")
    is_file: bool | None = Field(default=None, alias="isFile")


class DownloadResult(ProtocolModel):
    """Client-side view of a downloaded file.

    ``content`` is text when the bytes decode as UTF-8, otherwise base64.
    """

    content: str
    size: int
    is_binary: bool = Field(alias="isBinary")
