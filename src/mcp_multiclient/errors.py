"""
Error types for the MCP multi-client runtime.

Every failure raised by the runtime derives from ClientError, which carries an
internal error code, a human-readable message and optional structured
details. The split between hard failures and soft tool results is:

- NotConnectedError: an operation was invoked on a connection that is not
  in the connected state (a precondition violation, never a transport error).
- TransportError: the remote server could not be reached, answered with a
  non-2xx status, did not answer in time, or its process went away.
- JSONRPCDecodeError: the remote answered with something that is not a
  JSON-RPC response envelope.
- ProtocolError: the remote answered with a well-formed JSON-RPC error.

Tool invocations fold transport, decode and protocol failures into an error
result instead of raising; every other operation propagates them.
"""

from __future__ import annotations

from typing import Any


class ClientError(Exception):
    """
    Base exception class for MCP client errors.

    Attributes:
        error_code: Internal error code string (e.g., "failed_precondition",
            "unavailable", "protocol_error", "not_found").
        message: Human-readable error message.
        details: Optional structured details (e.g., server name, request id).

    Example:
        >>> raise ClientError(
        ...     error_code="unavailable",
        ...     message="Server 'weather' did not answer",
        ...     details={"server": "weather"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a ClientError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class NotConnectedError(ClientError):
    """
    Raised when an operation requires a connected server connection.

    Maps to the "failed_precondition" error code.
    """

    def __init__(
        self,
        message: str = "Not connected to MCP server",
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a NotConnectedError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class TransportError(ClientError):
    """
    Raised when a request could not be delivered or answered.

    Covers unreachable hosts, non-2xx HTTP statuses, oversized bodies and
    dead local processes. Maps to the "unavailable" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a TransportError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class TransportTimeoutError(TransportError):
    """Raised when a remote call exceeds its timeout."""


class JSONRPCDecodeError(ClientError):
    """
    Raised when a response body is not a valid JSON-RPC response envelope.

    Maps to the "invalid_response" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a JSONRPCDecodeError."""
        super().__init__(
            error_code="invalid_response", message=message, details=details
        )


class ProtocolError(ClientError):
    """
    Raised when a remote server answers with a JSON-RPC error object.

    Attributes:
        code: The JSON-RPC error code reported by the server, if any.
        data: The optional "data" member of the JSON-RPC error.
    """

    def __init__(
        self,
        message: str,
        code: int | None = None,
        data: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize a ProtocolError."""
        super().__init__(
            error_code="protocol_error", message=message, details=details
        )
        self.code = code
        self.data = data


class ServerNotFoundError(ClientError):
    """Raised when no connection is registered under a server name."""

    def __init__(self, server_name: str) -> None:
        """Initialize a ServerNotFoundError."""
        super().__init__(
            error_code="not_found",
            message=f"Server not found: {server_name}",
            details={"server": server_name},
        )


class UnsupportedTransportError(ClientError):
    """Raised when a transport kind has no usable implementation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnsupportedTransportError."""
        super().__init__(
            error_code="unimplemented", message=message, details=details
        )


class InvalidArgumentError(ClientError):
    """
    Raised when a caller passes invalid input.

    Maps to the "invalid_argument" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )
