"""Filesystem snapshots and the capabilities a connection operates under."""

from datetime import datetime

from pydantic import ConfigDict, Field

from xfiles.protocol.base import DEFAULT_MAX_FILE_SIZE, ProtocolModel


class DirectoryEntry(ProtocolModel):
    """One filesystem node as seen at listing or stat time.

    Entries are immutable snapshots and are never cached beyond the response
    that carried them.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    path: str
    """
    Absolute, canonical path on the server.
    """

    is_directory: bool = Field(alias="isDirectory")
    is_file: bool = Field(alias="isFile")
    size: int
    """
    Size in bytes as reported by the filesystem.
    """

    modified_at: datetime = Field(alias="modified")
    created_at: datetime = Field(alias="created")
    permissions: str | None = None
    """
    Octal permission bits, e.g. "644".
    """


class ServerCapabilities(ProtocolModel):
    """Permissions and limits pushed to every connection after acceptance."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    allowed_paths: list[str] = Field(alias="allowedPaths")
    allow_write: bool = Field(default=False, alias="allowWrite")
    allow_delete: bool = Field(default=False, alias="allowDelete")
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, alias="maxFileSize")
