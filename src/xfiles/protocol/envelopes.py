"""Server-to-client envelopes.

The very first message on an accepted connection is always a
ConnectedEnvelope. Every answer to a request is a ResultEnvelope echoing the
request id. ErrorEnvelope reports connection-level problems that can't be
tied to a request.
"""

from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter

from xfiles.protocol.base import ProtocolModel
from xfiles.protocol.entries import ServerCapabilities
from xfiles.shared.exceptions import XFilesError, error_from_code


class ConnectedEnvelope(ProtocolModel):
    type: Literal["connected"] = "connected"
    config: ServerCapabilities


class ResultEnvelope(ProtocolModel):
    type: Literal["result"] = "result"
    request_id: int = Field(alias="requestId")
    success: bool
    data: Any = None
    error: str | None = None
    code: str | None = None
    """
    Machine-readable error kind, only set on failures.
    """

    @classmethod
    def succeeded(cls, request_id: int, data: Any) -> "ResultEnvelope":
        return cls(request_id=request_id, success=True, data=data)

    @classmethod
    def failed(cls, request_id: int, error: XFilesError) -> "ResultEnvelope":
        return cls(
            request_id=request_id,
            success=False,
            error=error.message,
            code=error.code,
        )

    def to_error(self) -> XFilesError:
        return error_from_code(self.code, self.error)


class ErrorEnvelope(ProtocolModel):
    type: Literal["error"] = "error"
    error: str
    code: str | None = None

    @classmethod
    def from_error(cls, error: XFilesError) -> "ErrorEnvelope":
        return cls(error=error.message, code=error.code)

    def to_error(self) -> XFilesError:
        return error_from_code(self.code, self.error)


ServerMessage = Annotated[
    ConnectedEnvelope | ResultEnvelope | ErrorEnvelope,
    Field(discriminator="type"),
]

server_message_adapter: TypeAdapter[Any] = TypeAdapter(ServerMessage)
