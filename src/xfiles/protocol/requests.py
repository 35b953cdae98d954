"""Client requests, one model per operation kind.

Requests are decoded through a discriminated union on ``type``, so an
unknown operation kind fails validation instead of reaching the dispatcher.
"""

from typing import Annotated, Any, Literal, get_args

from pydantic import Field, TypeAdapter

from xfiles.protocol.base import ProtocolModel

OperationKind = Literal[
    "list",
    "stat",
    "read",
    "write",
    "mkdir",
    "delete",
    "rename",
    "copy",
    "exists",
    "search",
]

OPERATION_KINDS: tuple[str, ...] = get_args(OperationKind)

# Operations refused unless the handler allows writes.
WRITE_OPERATIONS = frozenset({"write", "mkdir", "rename", "copy"})
DELETE_OPERATIONS = frozenset({"delete"})

DEFAULT_ENCODING = "utf-8"
DEFAULT_MAX_RESULTS = 100


class Request(ProtocolModel):
    """Base class for client requests."""

    type: str
    request_id: int = Field(alias="requestId")
    """
    Unique per connection, increasing from 1, never reused.
    """

    @property
    def path_fields(self) -> dict[str, str]:
        """Every path-bearing field, keyed by wire name."""
        return {"path": getattr(self, "path")}

    @property
    def primary_path(self) -> str:
        """The path handed to the authorization hook."""
        return next(iter(self.path_fields.values()), "")


class ListRequest(Request):
    type: Literal["list"] = "list"
    path: str


class StatRequest(Request):
    type: Literal["stat"] = "stat"
    path: str


class ReadRequest(Request):
    type: Literal["read"] = "read"
    path: str
    encoding: str = DEFAULT_ENCODING
    """
    Any Python codec name, or "base64"/"hex" for binary transfer.
    """


class WriteRequest(Request):
    type: Literal["write"] = "write"
    path: str
    content: str
    encoding: str = DEFAULT_ENCODING


class MkdirRequest(Request):
    type: Literal["mkdir"] = "mkdir"
    path: str


class DeleteRequest(Request):
    type: Literal["delete"] = "delete"
    path: str


class RenameRequest(Request):
    type: Literal["rename"] = "rename"
    old_path: str = Field(alias="oldPath")
    new_path: str = Field(alias="newPath")

    @property
    def path_fields(self) -> dict[str, str]:
        return {"oldPath": self.old_path, "newPath": self.new_path}


class CopyRequest(Request):
    type: Literal["copy"] = "copy"
    source: str
    destination: str

    @property
    def path_fields(self) -> dict[str, str]:
        return {"source": self.source, "destination": self.destination}


class ExistsRequest(Request):
    type: Literal["exists"] = "exists"
    path: str


class SearchOptions(ProtocolModel):
    recursive: bool = True
    max_results: int = Field(default=DEFAULT_MAX_RESULTS, alias="maxResults", ge=0)


class SearchRequest(Request):
    type: Literal["search"] = "search"
    path: str
    pattern: str
    """
    Regular expression matched case-insensitively against entry names.
    """

    options: SearchOptions | None = None


ClientRequest = Annotated[
    ListRequest
    | StatRequest
    | ReadRequest
    | WriteRequest
    | MkdirRequest
    | DeleteRequest
    | RenameRequest
    | CopyRequest
    | ExistsRequest
    | SearchRequest,
    Field(discriminator="type"),
]

client_request_adapter: TypeAdapter[Any] = TypeAdapter(ClientRequest)
