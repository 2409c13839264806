"""
Transports that carry JSON-RPC envelopes to MCP servers.

Two transport kinds exist:

- HTTP: each request is POSTed to ``<server url>/mcp``. The response body is
  either a JSON document or a ``text/event-stream`` whose data events carry
  JSON-RPC messages. A ``Mcp-Session-Id`` header handed out by the server is
  echoed on every later request.
- LOCAL_PROCESS: the server runs as a child process speaking newline-delimited
  JSON-RPC on stdin/stdout. The process is started on first use; exchanges
  are serialised because they share one pipe.

Transports return raw response text; decoding is the codec's job. Every
exchange has a deadline, and expiry raises TransportTimeoutError.
"""

from __future__ import annotations

import asyncio
import json
import os
import shlex
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import httpx

from mcp_multiclient.errors import (
    TransportError,
    TransportTimeoutError,
    UnsupportedTransportError,
)
from mcp_multiclient.logging import get_logger
from mcp_multiclient.protocol import JSONRPCRequest

logger = get_logger(__name__)

# Path the MCP endpoint is mounted on below a server's base url
MCP_ENDPOINT_PATH = "/mcp"

# Default deadline for a single exchange: 30 seconds
DEFAULT_TIMEOUT = 30.0

# Largest response body accepted: 10 MB
MAX_RESPONSE_SIZE = 10 * 1024 * 1024

SESSION_HEADER = "Mcp-Session-Id"


class TransportKind(str, Enum):
    """Supported transport kinds."""

    HTTP = "http"
    LOCAL_PROCESS = "stdio"


class Transport(ABC):
    """
    Abstract base class for MCP transports.

    A transport delivers one request and hands back the raw text of the
    matching response. Notifications get no response.
    """

    kind: TransportKind

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """Human-readable address of the remote end."""

    @property
    def server_url(self) -> str:
        """Address reported for the server this transport reaches."""
        return self.endpoint

    @abstractmethod
    async def send(
        self,
        request: JSONRPCRequest,
        timeout: float | None = None,
    ) -> str | None:
        """
        Deliver a request and return the raw response text.

        Args:
            request: The request or notification to deliver.
            timeout: Deadline in seconds (transport default if None).

        Returns:
            Raw response text, or None for notifications.

        Raises:
            TransportError: Delivery failed.
            TransportTimeoutError: The deadline expired.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the transport's resources. Safe to call repeatedly."""


# =============================================================================
# HTTP Transport
# =============================================================================


class HttpTransport(Transport):
    """
    JSON-RPC over HTTP POST.

    The response body is streamed and reading stops as soon as it grows past
    ``max_response_bytes``.

    Attributes:
        base_url: Server base url; requests go to ``base_url + "/mcp"``.
        default_timeout: Deadline applied when send() gets none.
        connect_timeout: Limit on establishing the connection, in seconds.

    Example:
        >>> async with httpx.AsyncClient() as client:
        ...     transport = HttpTransport("http://localhost:8080", client)
        ...     body = await transport.send(create_request("tools/list"))
    """

    kind = TransportKind.HTTP

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        max_response_bytes: int = MAX_RESPONSE_SIZE,
        connect_timeout: float | None = None,
    ) -> None:
        """
        Initialize the HTTP transport.

        Args:
            base_url: Server base url.
            client: Shared httpx client. When omitted the transport creates
                and owns one.
            timeout: Default deadline in seconds.
            max_response_bytes: Largest response body accepted.
            connect_timeout: Connect limit in seconds (the request deadline
                if None).
        """
        self.base_url = base_url
        self.default_timeout = timeout or DEFAULT_TIMEOUT
        self.connect_timeout = connect_timeout
        self.max_response_bytes = max_response_bytes
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient()
        self._session_id: str | None = None

    @property
    def endpoint(self) -> str:
        """Full url of the MCP endpoint."""
        return self.base_url.rstrip("/") + MCP_ENDPOINT_PATH

    @property
    def server_url(self) -> str:
        return self.base_url

    @property
    def session_id(self) -> str | None:
        """Session id assigned by the server, if any."""
        return self._session_id

    async def send(
        self,
        request: JSONRPCRequest,
        timeout: float | None = None,
    ) -> str | None:
        timeout = timeout or self.default_timeout
        try:
            return await asyncio.wait_for(self._post(request, timeout), timeout=timeout)
        except TimeoutError:
            logger.error(
                "MCP request timeout",
                extra={
                    "endpoint": self.endpoint,
                    "method": request.method,
                    "request_id": request.id,
                    "timeout": timeout,
                },
            )
            raise TransportTimeoutError(
                f"Request to {self.endpoint} timed out after {timeout}s",
                details={"method": request.method, "request_id": request.id},
            ) from None

    async def _post(self, request: JSONRPCRequest, timeout: float) -> str | None:
        headers = {"Accept": "application/json, text/event-stream"}
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id

        try:
            async with self._client.stream(
                "POST",
                self.endpoint,
                json=request.to_dict(),
                headers=headers,
                timeout=httpx.Timeout(timeout, connect=self.connect_timeout or timeout),
            ) as response:
                response.raise_for_status()

                session_id = response.headers.get(SESSION_HEADER)
                if session_id:
                    self._session_id = session_id

                logger.debug(
                    "MCP response received",
                    extra={
                        "endpoint": self.endpoint,
                        "method": request.method,
                        "request_id": request.id,
                        "status_code": response.status_code,
                    },
                )

                if request.is_notification:
                    return None

                body = await self._read_body(response)
                content_type = response.headers.get("content-type", "")
                encoding = response.encoding or "utf-8"
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(
                f"Request to {self.endpoint} timed out: {e}",
                details={"method": request.method, "request_id": request.id},
            ) from e
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {e.response.status_code} from {self.endpoint}",
                details={
                    "method": request.method,
                    "status_code": e.response.status_code,
                },
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(
                f"Request to {self.endpoint} failed: {e}",
                details={"method": request.method, "error": type(e).__name__},
            ) from e

        text = body.decode(encoding, errors="replace")
        if content_type.startswith("text/event-stream"):
            return _extract_sse_message(text, request.id)
        return text

    async def _read_body(self, response: httpx.Response) -> bytes:
        """
        Read a streamed body, giving up once it exceeds the size limit.

        Raises:
            TransportError: If the body is larger than ``max_response_bytes``.
        """
        declared = response.headers.get("content-length")
        if declared is not None and declared.isdigit():
            if int(declared) > self.max_response_bytes:
                raise TransportError(
                    f"Response too large: {declared} bytes",
                    details={"max_size": self.max_response_bytes},
                )

        chunks: list[bytes] = []
        received = 0
        async for chunk in response.aiter_bytes():
            received += len(chunk)
            if received > self.max_response_bytes:
                raise TransportError(
                    f"Response too large: more than {self.max_response_bytes} bytes",
                    details={"max_size": self.max_response_bytes},
                )
            chunks.append(chunk)
        return b"".join(chunks)

    async def close(self) -> None:
        self._session_id = None
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()


def _extract_sse_message(body: str, request_id: str | None) -> str:
    """
    Pick the JSON-RPC message answering ``request_id`` out of an SSE body.

    Raises:
        TransportError: If no data event answers the request.
    """
    fallback: str | None = None
    for event in body.replace("\r\n", "\n").split("\n\n"):
        data_lines = [
            line[5:].lstrip() for line in event.split("\n") if line.startswith("data:")
        ]
        if not data_lines:
            continue
        payload = "\n".join(data_lines)
        try:
            message = json.loads(payload)
        except json.JSONDecodeError:
            continue
        if not isinstance(message, dict) or "method" in message:
            # server-initiated request or notification
            continue
        if message.get("id") == request_id:
            return payload
        fallback = payload

    if fallback is not None:
        return fallback
    raise TransportError(
        "Event stream carried no response",
        details={"request_id": request_id},
    )


# =============================================================================
# Local Process Transport
# =============================================================================


class LocalProcessTransport(Transport):
    """
    JSON-RPC over the stdin/stdout pipes of a child process.

    Attributes:
        command: Executable to launch.
        args: Arguments passed to the executable.
        env: Extra environment variables for the child.
        default_timeout: Deadline applied when send() gets none.

    Example:
        >>> transport = LocalProcessTransport("python", ["-m", "my_mcp_server"])
        >>> body = await transport.send(create_request("tools/list"))
        >>> await transport.close()
    """

    kind = TransportKind.LOCAL_PROCESS

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        max_response_bytes: int = MAX_RESPONSE_SIZE,
    ) -> None:
        """
        Initialize the local process transport.

        Args:
            command: Executable to launch.
            args: Command arguments.
            env: Extra environment variables, merged over the current ones.
            timeout: Default deadline in seconds.
            max_response_bytes: Largest single response line accepted.
        """
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.default_timeout = timeout or DEFAULT_TIMEOUT
        self.max_response_bytes = max_response_bytes
        self._process: asyncio.subprocess.Process | None = None
        self._lock = asyncio.Lock()

    @property
    def endpoint(self) -> str:
        """Pseudo-url naming the launched command."""
        return "stdio:" + shlex.join([self.command, *self.args])

    @property
    def is_running(self) -> bool:
        """Whether the child process is alive."""
        return self._process is not None and self._process.returncode is None

    async def send(
        self,
        request: JSONRPCRequest,
        timeout: float | None = None,
    ) -> str | None:
        timeout = timeout or self.default_timeout
        async with self._lock:
            try:
                return await asyncio.wait_for(self._exchange(request), timeout=timeout)
            except TimeoutError:
                logger.error(
                    "MCP request timeout",
                    extra={
                        "endpoint": self.endpoint,
                        "method": request.method,
                        "request_id": request.id,
                        "timeout": timeout,
                    },
                )
                raise TransportTimeoutError(
                    f"Request to {self.endpoint} timed out after {timeout}s",
                    details={"method": request.method, "request_id": request.id},
                ) from None

    async def _exchange(self, request: JSONRPCRequest) -> str | None:
        process = await self._ensure_started()
        if process.stdin is None or process.stdout is None:
            raise TransportError(
                "Local MCP server pipes are not available",
                details={"command": self.command},
            )

        try:
            process.stdin.write(request.to_json().encode("utf-8") + b"\n")
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise TransportError(
                f"Local MCP server is not accepting input: {e}",
                details={"command": self.command},
            ) from e

        if request.is_notification:
            return None

        while True:
            try:
                line = await process.stdout.readline()
            except ValueError as e:
                raise TransportError(
                    "Response line exceeds the size limit",
                    details={"max_size": self.max_response_bytes},
                ) from e

            if not line:
                raise TransportError(
                    "Local MCP server closed its output",
                    details={"command": self.command, "returncode": process.returncode},
                )

            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue

            try:
                message: Any = json.loads(text)
            except json.JSONDecodeError:
                # Servers occasionally print diagnostics to stdout
                logger.debug(
                    "Skipping non-JSON output from local MCP server",
                    extra={"command": self.command, "line": text[:100]},
                )
                continue

            if not isinstance(message, dict) or "method" in message:
                continue
            if message.get("id") == request.id:
                return text
            if message.get("id") is None and "error" in message:
                return text

            logger.debug(
                "Skipping stale response from local MCP server",
                extra={"expected_id": request.id, "response_id": message.get("id")},
            )

    async def _ensure_started(self) -> asyncio.subprocess.Process:
        if self._process is not None and self._process.returncode is None:
            return self._process

        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
                limit=self.max_response_bytes,
            )
        except OSError as e:
            raise TransportError(
                f"Failed to start local MCP server: {e}",
                details={"command": self.command, "error": str(e)},
            ) from e

        self._process = process
        logger.info(
            "Local MCP server started",
            extra={"command": self.command, "pid": process.pid},
        )
        return process

    async def close(self) -> None:
        process = self._process
        self._process = None
        if process is None or process.returncode is not None:
            return

        if process.stdin is not None:
            process.stdin.close()
        try:
            await asyncio.wait_for(process.wait(), timeout=5.0)
        except TimeoutError:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5.0)
            except TimeoutError:
                process.kill()
                await process.wait()

        logger.info(
            "Local MCP server stopped",
            extra={"command": self.command, "returncode": process.returncode},
        )


# =============================================================================
# Factory
# =============================================================================


def create_transport(
    kind: TransportKind | str,
    *,
    url: str | None = None,
    command: str | None = None,
    args: list[str] | None = None,
    env: dict[str, str] | None = None,
    client: httpx.AsyncClient | None = None,
    timeout: float | None = None,
    max_response_bytes: int = MAX_RESPONSE_SIZE,
    connect_timeout: float | None = None,
) -> Transport:
    """
    Build a transport of the requested kind.

    Raises:
        UnsupportedTransportError: If the kind is unknown or lacks the
            settings it needs (a url for HTTP, a command for a local process).
    """
    try:
        kind = TransportKind(kind)
    except ValueError as e:
        raise UnsupportedTransportError(
            f"Unsupported transport: {kind}", details={"transport": str(kind)}
        ) from e

    if kind is TransportKind.HTTP:
        if not url:
            raise UnsupportedTransportError(
                "HTTP transport requires a server url", details={"transport": kind.value}
            )
        return HttpTransport(
            url,
            client=client,
            timeout=timeout,
            max_response_bytes=max_response_bytes,
            connect_timeout=connect_timeout,
        )

    if not command:
        raise UnsupportedTransportError(
            "Local process transport requires a command",
            details={"transport": kind.value, "url": url},
        )
    return LocalProcessTransport(
        command,
        args=args,
        env=env,
        timeout=timeout,
        max_response_bytes=max_response_bytes,
    )
