"""
Per-server connection state machine.

A ServerConnection owns the handshake with exactly one MCP server, the cached
tool and resource catalog of that server, and the tool-invocation and
resource-read operations against it.

State transitions:
- uninitialized → initializing (initialize() called)
- initializing → connected (handshake and catalog load succeeded)
- initializing → previous state (handshake or catalog load failed)
- any → closed (close() called)

A connected connection that is initialized again stays connected while the
handshake re-runs; if that fails, the existing catalog is kept.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any

from mcp_multiclient import __version__
from mcp_multiclient.errors import (
    ClientError,
    JSONRPCDecodeError,
    NotConnectedError,
    ProtocolError,
    TransportError,
)
from mcp_multiclient.logging import get_logger
from mcp_multiclient.protocol import (
    MCP_PROTOCOL_VERSION,
    METHOD_INITIALIZE,
    METHOD_INITIALIZED,
    METHOD_NOT_FOUND,
    METHOD_RESOURCES_LIST,
    METHOD_RESOURCES_READ,
    METHOD_TOOLS_CALL,
    METHOD_TOOLS_LIST,
    create_notification,
    create_request,
    decode_response,
)
from mcp_multiclient.schema import CallToolResult, ReadResourceResult, Resource, Tool
from mcp_multiclient.transport import Transport, TransportKind

logger = get_logger(__name__)

DEFAULT_CLIENT_NAME = "mcp-multiclient"

# Upper bound on pages followed through nextCursor for a single listing
MAX_LIST_PAGES = 100

# Capabilities this client announces during the handshake
CLIENT_CAPABILITIES: dict[str, Any] = {
    "tools": {"listChanged": True},
    "resources": {"listChanged": True, "subscribe": True},
}

_EMPTY_CATALOG: tuple[tuple[Tool, ...], tuple[Resource, ...]] = ((), ())


class ConnectionState(str, Enum):
    """Lifecycle states of a server connection."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    CLOSED = "closed"


class ServerConnection:
    """
    Stateful session with one MCP server.

    The catalog is held as one immutable (tools, resources) pair and replaced
    in a single assignment, so concurrent readers never see a half-built list.
    No lock guards requests: concurrent tool calls go to the transport in
    parallel.

    Attributes:
        name: Logical server name, the registry key.
        url: Base url of the server (or the pseudo-url of a local process).
        state: Current lifecycle state.

    Example:
        >>> connection = ServerConnection("weather", HttpTransport("http://localhost:9000"))
        >>> await connection.initialize()
        >>> result = await connection.call_tool("forecast", {"city": "Oslo"})
    """

    def __init__(
        self,
        name: str,
        transport: Transport,
        *,
        url: str | None = None,
        timeout: float | None = None,
        protocol_version: str = MCP_PROTOCOL_VERSION,
        client_name: str = DEFAULT_CLIENT_NAME,
        client_version: str = __version__,
    ) -> None:
        """
        Initialize a connection in the uninitialized state.

        Args:
            name: Logical server name.
            transport: Transport carrying requests to the server.
            url: Base url reported for this server. Defaults to the
                transport's server url.
            timeout: Per-request deadline in seconds (transport default if None).
            protocol_version: MCP protocol version announced in the handshake.
            client_name: Client name announced in the handshake.
            client_version: Client version announced in the handshake.
        """
        self._name = name
        self._transport = transport
        self._url = url or transport.server_url
        self._timeout = timeout
        self.protocol_version = protocol_version
        self.client_name = client_name
        self.client_version = client_version

        self._state = ConnectionState.UNINITIALIZED
        self._catalog = _EMPTY_CATALOG
        self._server_info: dict[str, Any] = {}
        self._server_capabilities: dict[str, Any] | None = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def url(self) -> str:
        return self._url

    @property
    def transport_kind(self) -> TransportKind:
        return self._transport.kind

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def tools(self) -> tuple[Tool, ...]:
        """Current tool catalog; empty unless connected."""
        if not self.is_connected:
            return ()
        return tuple(tool.detached() for tool in self._catalog[0])

    @property
    def resources(self) -> tuple[Resource, ...]:
        """Current resource catalog; empty unless connected."""
        if not self.is_connected:
            return ()
        return tuple(resource.detached() for resource in self._catalog[1])

    @property
    def server_info(self) -> dict[str, Any]:
        """The ``serverInfo`` object from the last successful handshake."""
        return copy.deepcopy(self._server_info)

    @property
    def server_capabilities(self) -> dict[str, Any] | None:
        """The ``capabilities`` object from the last successful handshake."""
        if self._server_capabilities is None:
            return None
        return copy.deepcopy(self._server_capabilities)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Run the handshake and load the tool and resource catalog.

        Raises:
            TransportError: The server could not be reached.
            ProtocolError: The server rejected the handshake or tools/list.
            JSONRPCDecodeError: The server answered with garbage.
            NotConnectedError: The connection was closed while initializing.
        """
        previous_state = self._state
        if previous_state is not ConnectionState.CONNECTED:
            self._state = ConnectionState.INITIALIZING

        logger.info(
            "Initializing connection to MCP server",
            extra={"server": self._name, "url": self._url},
        )

        succeeded = False
        try:
            result = await self._request(
                METHOD_INITIALIZE,
                {
                    "protocolVersion": self.protocol_version,
                    "capabilities": CLIENT_CAPABILITIES,
                    "clientInfo": {
                        "name": self.client_name,
                        "version": self.client_version,
                    },
                },
            )
            if not isinstance(result, dict):
                result = {}
            capabilities = result.get("capabilities")
            if not isinstance(capabilities, dict):
                capabilities = None

            await self._notify_initialized()

            tools = await self._fetch_tools()
            resources = await self._fetch_resources(capabilities)

            if self._state is ConnectionState.CLOSED:
                raise NotConnectedError(
                    "Connection closed during initialization",
                    details={"server": self._name},
                )

            self._catalog = (tools, resources)
            server_info = result.get("serverInfo")
            self._server_info = dict(server_info) if isinstance(server_info, dict) else {}
            self._server_capabilities = capabilities
            self._state = ConnectionState.CONNECTED
            succeeded = True

        except ClientError as e:
            logger.error(
                "Failed to initialize connection to MCP server",
                extra={"server": self._name, "url": self._url, "error": e.message},
            )
            raise

        finally:
            if not succeeded and self._state is ConnectionState.INITIALIZING:
                self._state = previous_state

        logger.info(
            "Connected to MCP server",
            extra={
                "server": self._name,
                "tools_count": len(tools),
                "resources_count": len(resources),
            },
        )

    async def refresh_catalog(self) -> None:
        """
        Re-fetch tools and resources from a connected server.

        Raises:
            NotConnectedError: If the connection is not connected.
            ClientError: If fetching the tool list fails.
        """
        self._require_connected()
        tools = await self._fetch_tools()
        resources = await self._fetch_resources(self._server_capabilities)
        if self.is_connected:
            self._catalog = (tools, resources)

    async def close(self) -> None:
        """Drop the catalog, mark the connection closed and release the transport."""
        if self._state is ConnectionState.CONNECTED:
            logger.info("Closing connection to MCP server", extra={"server": self._name})
        self._catalog = _EMPTY_CATALOG
        self._state = ConnectionState.CLOSED
        await self._transport.close()

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def list_tools(self) -> list[Tool]:
        """
        Return a snapshot of the tool catalog.

        Raises:
            NotConnectedError: If the connection is not connected.
        """
        self._require_connected()
        return [tool.detached() for tool in self._catalog[0]]

    def list_resources(self) -> list[Resource]:
        """
        Return a snapshot of the resource catalog.

        Raises:
            NotConnectedError: If the connection is not connected.
        """
        self._require_connected()
        return [resource.detached() for resource in self._catalog[1]]

    def available_tool_names(self) -> list[str]:
        """Names of the cached tools; empty when not connected."""
        tools = self._catalog[0] if self.is_connected else ()
        return [tool.name for tool in tools]

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> CallToolResult:
        """
        Invoke a tool on the server.

        Tool failures, protocol errors and transport failures all come back
        as a CallToolResult with ``is_error=True``.

        Args:
            name: Tool name.
            arguments: Tool arguments (empty object when omitted).

        Returns:
            The decoded CallToolResult.

        Raises:
            NotConnectedError: If the connection is not connected.
        """
        self._require_connected()

        logger.info(
            "Calling tool",
            extra={"server": self._name, "tool": name, "arguments": arguments},
        )

        try:
            result = await self._request(
                METHOD_TOOLS_CALL,
                {"name": name, "arguments": dict(arguments) if arguments else {}},
            )
        except ProtocolError as e:
            logger.warning(
                "Tool call returned an error",
                extra={"server": self._name, "tool": name, "error": e.message},
            )
            return CallToolResult.from_error(f"Error: {e.message}")
        except (TransportError, JSONRPCDecodeError) as e:
            logger.error(
                "Tool call failed",
                extra={"server": self._name, "tool": name, "error": e.message},
            )
            return CallToolResult.from_error(f"Tool call failed: {e.message}")

        return CallToolResult.from_result(result)

    async def read_resource(self, uri: str) -> ReadResourceResult:
        """
        Read a resource from the server.

        Args:
            uri: Resource URI.

        Returns:
            The parsed resource contents.

        Raises:
            NotConnectedError: If the connection is not connected.
            ProtocolError: If the server answered with an error.
            TransportError: If the server could not be reached.
            JSONRPCDecodeError: If the response could not be decoded.
        """
        self._require_connected()

        logger.info("Reading resource", extra={"server": self._name, "uri": uri})

        try:
            result = await self._request(METHOD_RESOURCES_READ, {"uri": uri})
        except ClientError as e:
            logger.error(
                "Failed to read resource",
                extra={"server": self._name, "uri": uri, "error": e.message},
            )
            raise

        return ReadResourceResult.from_result(result)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_connected(self) -> None:
        if self._state is not ConnectionState.CONNECTED:
            raise NotConnectedError(
                "Not connected to MCP server",
                details={"server": self._name, "state": self._state.value},
            )

    async def _request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        request = create_request(method, params)
        raw = await self._transport.send(request, timeout=self._timeout)
        if raw is None:
            raise JSONRPCDecodeError(
                "No response from server", details={"method": method}
            )
        return decode_response(raw, expected_id=request.id).unwrap()

    async def _notify_initialized(self) -> None:
        try:
            await self._transport.send(
                create_notification(METHOD_INITIALIZED), timeout=self._timeout
            )
        except TransportError as e:
            logger.warning(
                "Failed to send initialized notification",
                extra={"server": self._name, "error": e.message},
            )

    async def _list_paginated(self, method: str, key: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        cursor: str | None = None
        for _ in range(MAX_LIST_PAGES):
            result = await self._request(method, {"cursor": cursor} if cursor else None)
            if not isinstance(result, dict):
                break
            page = result.get(key) or []
            if not isinstance(page, list):
                raise JSONRPCDecodeError(
                    f"'{key}' in {method} result must be a list",
                    details={"server": self._name},
                )
            items.extend(entry for entry in page if isinstance(entry, dict))
            cursor = result.get("nextCursor")
            if not cursor:
                break
        return items

    async def _fetch_tools(self) -> tuple[Tool, ...]:
        entries = await self._list_paginated(METHOD_TOOLS_LIST, "tools")
        tools = tuple(Tool.from_dict(entry) for entry in entries)
        logger.info(
            "Loaded tools from MCP server",
            extra={"server": self._name, "tools_count": len(tools)},
        )
        return tools

    async def _fetch_resources(
        self, capabilities: dict[str, Any] | None
    ) -> tuple[Resource, ...]:
        if capabilities is not None and "resources" not in capabilities:
            return ()

        try:
            entries = await self._list_paginated(METHOD_RESOURCES_LIST, "resources")
        except ProtocolError as e:
            if e.code == METHOD_NOT_FOUND:
                logger.info(
                    "MCP server does not list resources",
                    extra={"server": self._name},
                )
            else:
                logger.warning(
                    "Failed to load resources from MCP server",
                    extra={"server": self._name, "error": e.message, "code": e.code},
                )
            return ()

        resources = tuple(Resource.from_dict(entry) for entry in entries)
        logger.info(
            "Loaded resources from MCP server",
            extra={"server": self._name, "resources_count": len(resources)},
        )
        return resources

    def __repr__(self) -> str:
        return (
            f"ServerConnection(name={self._name!r}, url={self._url!r}, "
            f"state={self._state.value!r})"
        )
