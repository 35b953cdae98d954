"""Frame codec for the x-files protocol.

One frame carries exactly one JSON object. The transport guarantees frame
boundaries, so there is no accumulation logic here.
"""

import json
from typing import Any

from pydantic import ValidationError

from xfiles.protocol.envelopes import ServerMessage, server_message_adapter
from xfiles.protocol.requests import ClientRequest, client_request_adapter
from xfiles.shared.exceptions import ProtocolDecodeError


def parse_json_message(frame: str | bytes) -> dict[str, Any]:
    """Decode one frame into a JSON object.

    Raises:
        ProtocolDecodeError: If the frame isn't valid JSON or isn't an object.
    """
    if isinstance(frame, bytes):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolDecodeError(f"Frame is not valid UTF-8: {e}") from e

    try:
        message = json.loads(frame)
    except json.JSONDecodeError as e:
        raise ProtocolDecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(message, dict):
        raise ProtocolDecodeError("Message must be a JSON object")
    return message


def serialize_message(message: dict[str, Any]) -> str:
    """Serialize a message to a compact JSON frame.

    Raises:
        ValueError: If the message isn't JSON serializable.
    """
    try:
        return json.dumps(message, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize message to JSON: {e}") from e


class MessageParser:
    """Turns decoded payloads into typed requests and envelopes."""

    def parse_request(self, payload: dict[str, Any]) -> ClientRequest:
        """Validate a client payload against the ten request models.

        Raises:
            ProtocolDecodeError: For unknown operation kinds or bad fields.
        """
        try:
            return client_request_adapter.validate_python(payload)
        except ValidationError as e:
            kind = payload.get("type")
            raise ProtocolDecodeError(
                f"Invalid '{kind}' request: {_summarize(e)}"
            ) from e

    def parse_server_message(self, payload: dict[str, Any]) -> ServerMessage:
        """Validate a server payload as one of the three envelope kinds.

        Raises:
            ProtocolDecodeError: If the payload isn't a known envelope.
        """
        try:
            return server_message_adapter.validate_python(payload)
        except ValidationError as e:
            raise ProtocolDecodeError(
                f"Invalid server message: {_summarize(e)}"
            ) from e

    def extract_request_id(self, payload: dict[str, Any]) -> int | None:
        """Best-effort request id from a payload that failed validation."""
        request_id = payload.get("requestId")
        if isinstance(request_id, int) and not isinstance(request_id, bool):
            return request_id
        return None


def _summarize(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        parts.append(f"{location}: {detail['msg']}" if location else detail["msg"])
    return "; ".join(parts)
