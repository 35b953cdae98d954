"""Error taxonomy shared by the handler and the client.

Every error carries a machine-readable ``code`` that travels next to the
human-readable message in result and error envelopes, so the client can
raise the same exception class the server raised.
"""


class XFilesError(Exception):
    """Base class for all x-files errors."""

    code = "operation_failed"
    default_message = "Operation failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class OperationError(XFilesError):
    """A request failed for a reason without a more specific class."""


class AuthenticationFailedError(XFilesError):
    code = "authentication_failed"
    default_message = "Authentication failed"


class NotAuthorizedError(XFilesError):
    code = "not_authorized"
    default_message = "Operation not authorized"


class AccessDeniedError(XFilesError):
    """Path resolves outside every allow-listed root."""

    code = "access_denied"
    default_message = "Access denied"

    def __init__(self, path: str | None = None, message: str | None = None):
        if message is None and path is not None:
            message = f"Access denied: {path}"
        super().__init__(message)
        self.path = path


class WriteDisabledError(XFilesError):
    code = "write_disabled"
    default_message = "Write operations are not allowed"


class DeleteDisabledError(XFilesError):
    code = "delete_disabled"
    default_message = "Delete operations are not allowed"


class TooLargeError(XFilesError):
    code = "too_large"
    default_message = "File too large"


class FileSystemError(XFilesError):
    """Underlying filesystem failure, message surfaced verbatim."""

    code = "filesystem"


class NotFoundError(FileSystemError):
    code = "not_found"
    default_message = "No such file or directory"


class ProtocolDecodeError(XFilesError):
    code = "protocol_decode"
    default_message = "Malformed message"


class ConnectionClosedError(XFilesError, ConnectionError):
    code = "connection_closed"
    default_message = "Connection closed"


class NotConnectedError(XFilesError, ConnectionError):
    code = "not_connected"
    default_message = "Not connected"


class AlreadyConnectingError(XFilesError):
    code = "already_connecting"
    default_message = "Connection already in progress"


_ERRORS_BY_CODE: dict[str, type[XFilesError]] = {
    cls.code: cls
    for cls in (
        OperationError,
        AuthenticationFailedError,
        NotAuthorizedError,
        WriteDisabledError,
        DeleteDisabledError,
        TooLargeError,
        FileSystemError,
        NotFoundError,
        ProtocolDecodeError,
        ConnectionClosedError,
        NotConnectedError,
        AlreadyConnectingError,
    )
}


def error_from_code(code: str | None, message: str | None) -> XFilesError:
    """Rebuild the exception a peer reported.

    Unknown or missing codes fall back to OperationError so that a peer that
    only sends the message string still produces a useful exception.
    """
    if code == AccessDeniedError.code:
        return AccessDeniedError(message=message)
    error_class = _ERRORS_BY_CODE.get(code or "", OperationError)
    return error_class(message)
