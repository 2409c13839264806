"""
JSON-RPC 2.0 codec for the MCP client side.

This module builds request envelopes and decodes response envelopes. It does
no I/O: transports move the bytes, connections decide what a result means.

Envelope rules:
- Requests always carry ``"jsonrpc": "2.0"``, a freshly generated ``id``
  and the ``method``; ``params`` is omitted when empty.
- Notifications are requests without an ``id``.
- A response is a success iff it has a top-level ``result`` member, an error
  iff it has a top-level ``error`` member carrying at least a ``message``.
  Any other shape is a decode failure.
- When the caller passes the id of the originating request, the response id
  must match it. Error responses with a null id (the server could not parse
  the request) are accepted.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

from mcp_multiclient.errors import JSONRPCDecodeError, ProtocolError

# =============================================================================
# Protocol Constants
# =============================================================================

JSONRPC_VERSION = "2.0"

# MCP protocol revision announced during the handshake
MCP_PROTOCOL_VERSION = "2024-11-05"

# MCP method names
METHOD_INITIALIZE = "initialize"
METHOD_INITIALIZED = "notifications/initialized"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"
METHOD_RESOURCES_LIST = "resources/list"
METHOD_RESOURCES_READ = "resources/read"

# JSON-RPC 2.0 error code for a method the server does not implement
METHOD_NOT_FOUND = -32601


def new_request_id() -> str:
    """Return a fresh, globally unique request id."""
    return str(uuid.uuid4())


# =============================================================================
# Data Classes
# =============================================================================


@dataclass
class JSONRPCRequest:
    """
    A JSON-RPC 2.0 request (or notification when ``id`` is None).

    Attributes:
        method: The remote method to invoke.
        params: Parameters for the method.
        id: Request identifier; None for notifications.
        jsonrpc: Protocol version (always "2.0").
    """

    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    jsonrpc: str = JSONRPC_VERSION

    @property
    def is_notification(self) -> bool:
        """Check if this is a notification (no id field)."""
        return self.id is None

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the request to a dictionary for JSON serialization.

        Returns:
            Dictionary with jsonrpc, id (unless a notification), method and
            params (unless empty).
        """
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc}
        if self.id is not None:
            data["id"] = self.id
        data["method"] = self.method
        if self.params:
            data["params"] = self.params
        return data

    def to_json(self) -> str:
        """Serialize the request to a compact JSON string."""
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass
class JSONRPCError:
    """
    A JSON-RPC 2.0 error object as reported by a server.

    Attributes:
        message: Human-readable error message.
        code: Integer error code, if the server sent one.
        data: Optional structured error data.
    """

    message: str
    code: int | None = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the error to a dictionary."""
        result: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        return result

    def to_exception(self, details: dict[str, Any] | None = None) -> ProtocolError:
        """Build the ProtocolError raised for this error object."""
        return ProtocolError(
            self.message, code=self.code, data=self.data, details=details
        )


@dataclass
class JSONRPCResponse:
    """
    A decoded JSON-RPC 2.0 response.

    Exactly one of ``result`` and ``error`` is meaningful; ``is_error`` tells
    which. ``result`` may legitimately be None when the server sent
    ``"result": null``.

    Attributes:
        id: Response identifier.
        result: Success payload.
        error: Error object, for error responses.
        jsonrpc: Protocol version reported by the server.
    """

    id: str | int | None
    result: Any = None
    error: JSONRPCError | None = None
    jsonrpc: str = JSONRPC_VERSION

    @property
    def is_error(self) -> bool:
        """Check if this is an error response."""
        return self.error is not None

    def unwrap(self) -> Any:
        """
        Return the result, or raise the error as a ProtocolError.

        Raises:
            ProtocolError: If this is an error response.
        """
        if self.error is not None:
            raise self.error.to_exception(details={"request_id": self.id})
        return self.result


# =============================================================================
# Encoding
# =============================================================================


def create_request(
    method: str,
    params: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> JSONRPCRequest:
    """
    Build a JSON-RPC request with a fresh id.

    Args:
        method: The remote method name (e.g., "tools/list").
        params: Method parameters; omitted from the envelope when empty.
        request_id: Explicit id to use instead of a generated one.

    Returns:
        JSONRPCRequest ready to be serialized.

    Example:
        >>> request = create_request("tools/list")
        >>> sorted(request.to_dict())
        ['id', 'jsonrpc', 'method']
    """
    return JSONRPCRequest(
        method=method,
        params=dict(params) if params else {},
        id=request_id if request_id is not None else new_request_id(),
    )


def create_notification(
    method: str,
    params: dict[str, Any] | None = None,
) -> JSONRPCRequest:
    """Build a JSON-RPC notification (a request without an id)."""
    return JSONRPCRequest(method=method, params=dict(params) if params else {})


# =============================================================================
# Decoding
# =============================================================================


def decode_response(
    raw: str | bytes | dict[str, Any],
    expected_id: str | int | None = None,
) -> JSONRPCResponse:
    """
    Decode a raw response body into a JSONRPCResponse.

    Args:
        raw: Response body as text, bytes, or an already-parsed object.
        expected_id: Id of the originating request. When given, the response
            id must match it.

    Returns:
        JSONRPCResponse carrying either a result or an error.

    Raises:
        JSONRPCDecodeError: If the body is not a JSON-RPC response, or its
            id does not belong to the originating request.

    Example:
        >>> response = decode_response('{"jsonrpc":"2.0","id":"1","result":{"tools":[]}}', "1")
        >>> response.result
        {'tools': []}
    """
    if isinstance(raw, dict):
        data: Any = raw
    else:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise JSONRPCDecodeError(
                    "Response is not valid UTF-8", details={"error": str(e)}
                ) from e
        if not raw or not raw.strip():
            raise JSONRPCDecodeError("Empty response body")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise JSONRPCDecodeError(
                f"Invalid JSON in response: {e.msg}",
                details={"raw": raw[:100]},
            ) from e

    if not isinstance(data, dict):
        raise JSONRPCDecodeError(
            "Response must be a JSON object",
            details={"type": type(data).__name__},
        )

    response_id = data.get("id")
    jsonrpc = data.get("jsonrpc", JSONRPC_VERSION)

    if "result" in data:
        response = JSONRPCResponse(
            id=response_id, result=data["result"], jsonrpc=jsonrpc
        )
    elif "error" in data:
        response = JSONRPCResponse(
            id=response_id, error=_decode_error(data["error"]), jsonrpc=jsonrpc
        )
    else:
        raise JSONRPCDecodeError(
            "Response has neither 'result' nor 'error'",
            details={"keys": sorted(data.keys())},
        )

    if expected_id is not None and response_id != expected_id:
        if not (response.is_error and response_id is None):
            raise JSONRPCDecodeError(
                f"Response ID mismatch: expected {expected_id}, got {response_id}",
                details={"expected_id": expected_id, "response_id": response_id},
            )

    return response


def _decode_error(error: Any) -> JSONRPCError:
    """Decode the ``error`` member of a response envelope."""
    if not isinstance(error, dict) or "message" not in error:
        raise JSONRPCDecodeError(
            "Error response must carry an object with a 'message'",
            details={"error": str(error)[:100]},
        )

    code = error.get("code")
    return JSONRPCError(
        message=str(error["message"]),
        code=code if isinstance(code, int) else None,
        data=error.get("data"),
    )
