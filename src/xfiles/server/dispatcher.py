"""Per-request authorization, permission checks and operation routing.

Every request goes through the same sequence: authorization hook, permission
flags, path validation of every path-bearing field, then the operation
itself. Nothing touches storage until all checks have passed.
"""

import inspect
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel

from xfiles.protocol.entries import ServerCapabilities
from xfiles.protocol.envelopes import ResultEnvelope
from xfiles.protocol.requests import (
    DELETE_OPERATIONS,
    OPERATION_KINDS,
    WRITE_OPERATIONS,
    ClientRequest,
    CopyRequest,
    ReadRequest,
    Request,
    SearchOptions,
    SearchRequest,
    WriteRequest,
)
from xfiles.server.config import Authorizer
from xfiles.server.operations import FileOperations
from xfiles.server.sessions import ConnectionSession
from xfiles.shared.exceptions import (
    DeleteDisabledError,
    FileSystemError,
    NotAuthorizedError,
    NotFoundError,
    OperationError,
    WriteDisabledError,
    XFilesError,
)
from xfiles.shared.paths import PathValidator

# Handlers receive the typed request and its validated paths keyed by wire
# field name.
OperationHandler = Callable[[Any, dict[str, str]], Awaitable[Any]]

logger = logging.getLogger(__name__)


class OperationDispatcher:
    """Executes decoded requests under one set of capabilities."""

    def __init__(
        self, capabilities: ServerCapabilities, authorize: Authorizer | None = None
    ):
        self.capabilities = capabilities
        self.authorize = authorize
        self.validator = PathValidator(capabilities.allowed_paths)
        self.operations = FileOperations(capabilities.max_file_size)

        self._handlers: dict[str, OperationHandler] = {
            "list": self._handle_list,
            "stat": self._handle_stat,
            "read": self._handle_read,
            "write": self._handle_write,
            "mkdir": self._handle_mkdir,
            "delete": self._handle_delete,
            "rename": self._handle_rename,
            "copy": self._handle_copy,
            "exists": self._handle_exists,
            "search": self._handle_search,
        }
        missing = set(OPERATION_KINDS) - self._handlers.keys()
        if missing:
            raise RuntimeError(f"No handler for operations: {sorted(missing)}")

    # ================================
    # Entry points
    # ================================

    async def handle(
        self, request: ClientRequest, session: ConnectionSession
    ) -> ResultEnvelope:
        """Run one request and wrap the outcome in exactly one envelope."""
        try:
            data = await self.dispatch(request, session)
        except Exception as e:
            error = to_protocol_error(e)
            logger.debug(
                f"{request.type} request {request.request_id} failed: {error}"
            )
            return ResultEnvelope.failed(request.request_id, error)
        return ResultEnvelope.succeeded(request.request_id, data)

    async def dispatch(self, request: ClientRequest, session: ConnectionSession) -> Any:
        """Authorize, check, validate and execute a request.

        Returns:
            The operation result in wire form.

        Raises:
            NotAuthorizedError: If the authorization hook refuses.
            WriteDisabledError: For mutating operations without allow_write.
            DeleteDisabledError: For delete without allow_delete.
            AccessDeniedError: On the first path outside the allow-list.
        """
        await self._authorize(request, session)
        self._check_permissions(request)
        paths = {
            name: self.validator.validate(value)
            for name, value in request.path_fields.items()
        }

        handler = self._handlers[request.type]
        return _to_wire(await handler(request, paths))

    # ================================
    # Checks
    # ================================

    async def _authorize(self, request: Request, session: ConnectionSession) -> None:
        if self.authorize is None:
            return

        try:
            allowed = self.authorize(
                request.type, request.primary_path, session.context
            )
            if inspect.isawaitable(allowed):
                allowed = await allowed
        except Exception as e:
            logger.warning(f"Authorization hook failed for {request.type}: {e}")
            allowed = False

        if not allowed:
            raise NotAuthorizedError()

    def _check_permissions(self, request: Request) -> None:
        if request.type in WRITE_OPERATIONS and not self.capabilities.allow_write:
            raise WriteDisabledError()
        if request.type in DELETE_OPERATIONS and not self.capabilities.allow_delete:
            raise DeleteDisabledError()

    # ================================
    # Operation handlers
    # ================================

    async def _handle_list(self, request: Request, paths: dict[str, str]) -> Any:
        return await self.operations.list_directory(paths["path"])

    async def _handle_stat(self, request: Request, paths: dict[str, str]) -> Any:
        return await self.operations.get_stats(paths["path"])

    async def _handle_read(self, request: ReadRequest, paths: dict[str, str]) -> Any:
        return await self.operations.read_file(paths["path"], request.encoding)

    async def _handle_write(self, request: WriteRequest, paths: dict[str, str]) -> Any:
        return await self.operations.write_file(
            paths["path"], request.content, request.encoding
        )

    async def _handle_mkdir(self, request: Request, paths: dict[str, str]) -> Any:
        return await self.operations.create_directory(paths["path"])

    async def _handle_delete(self, request: Request, paths: dict[str, str]) -> Any:
        return await self.operations.delete_item(paths["path"])

    async def _handle_rename(self, request: Request, paths: dict[str, str]) -> Any:
        return await self.operations.rename_item(paths["oldPath"], paths["newPath"])

    async def _handle_copy(self, request: CopyRequest, paths: dict[str, str]) -> Any:
        return await self.operations.copy_item(paths["source"], paths["destination"])

    async def _handle_exists(self, request: Request, paths: dict[str, str]) -> Any:
        return await self.operations.exists(paths["path"])

    async def _handle_search(
        self, request: SearchRequest, paths: dict[str, str]
    ) -> Any:
        options = request.options or SearchOptions()
        return await self.operations.search_files(
            paths["path"],
            request.pattern,
            recursive=options.recursive,
            max_results=options.max_results,
        )


def to_protocol_error(error: Exception) -> XFilesError:
    """Classify any failure raised while handling a request."""
    if isinstance(error, XFilesError):
        return error
    if isinstance(error, FileNotFoundError):
        return NotFoundError(str(error))
    if isinstance(error, OSError):
        return FileSystemError(str(error))
    if isinstance(error, re.error):
        return OperationError(f"Invalid search pattern: {error}")
    if isinstance(error, (LookupError, ValueError)):
        return OperationError(str(error))

    logger.warning(f"Unexpected error handling request: {error!r}")
    return OperationError(str(error) or type(error).__name__)


def _to_wire(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(data, list):
        return [_to_wire(item) for item in data]
    return data
