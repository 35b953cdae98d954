from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from xfiles.protocol.base import DEFAULT_MAX_FILE_SIZE
from xfiles.protocol.entries import ServerCapabilities

# Hooks may be plain functions or coroutines.
Authenticator = Callable[[Any], bool | Awaitable[bool]]
Authorizer = Callable[[str, str, Any], bool | Awaitable[bool]]


def _default_allowed_paths() -> list[str]:
    return [str(Path.home())]


@dataclass
class HandlerConfig:
    """Construction-time settings for a FilesHandler."""

    allowed_paths: list[str] = field(default_factory=_default_allowed_paths)
    """
    Roots users can access. Nothing outside these is ever touched.
    """

    allow_write: bool = False
    allow_delete: bool = False
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    """
    Limit in bytes for both reads and writes.
    """

    authenticate: Authenticator | None = None
    """
    Called with the connection context once per connection. Falsy refuses it.
    """

    authorize: Authorizer | None = None
    """
    Called with (operation kind, primary path, connection context) before
    every operation. Falsy refuses the operation.
    """

    def to_capabilities(self) -> ServerCapabilities:
        return ServerCapabilities(
            allowed_paths=list(self.allowed_paths),
            allow_write=self.allow_write,
            allow_delete=self.allow_delete,
            max_file_size=self.max_file_size,
        )
