"""
Client service: the composition root of the runtime.

MCPClientService wires the shared HTTP client, the connection registry and
the catalog aggregator together, and exposes the operations the REST facade
serves. Remote operations are bounded by a semaphore sized from
``client.max_concurrent_requests``; excess callers wait for a slot.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx

from mcp_multiclient import __version__
from mcp_multiclient.aggregator import CatalogAggregator
from mcp_multiclient.config import AppConfig, MCPServerEntry
from mcp_multiclient.connection import ServerConnection
from mcp_multiclient.errors import (
    ClientError,
    InvalidArgumentError,
    ServerNotFoundError,
)
from mcp_multiclient.logging import get_logger
from mcp_multiclient.models import (
    ApiCallResult,
    ConnectionResult,
    ResourceInfo,
    ServerInfo,
    ToolInfo,
)
from mcp_multiclient.registry import ConnectionRegistry
from mcp_multiclient.transport import TransportKind, create_transport

logger = get_logger(__name__)

SUPPORTED_HTTP_METHODS = frozenset({"GET", "POST", "PUT", "DELETE"})


def _epoch_millis() -> int:
    return int(time.time() * 1000)


class MCPClientService:
    """
    Runtime facade over every MCP server connection.

    Example:
        >>> async with MCPClientService(config) as service:
        ...     result = await service.connect("http://localhost:9000", "weather")
        ...     outcome = await service.call_tool("weather", "forecast", {"city": "Oslo"})
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            config: Application configuration (defaults when omitted).
            http_client: Shared httpx client. When omitted the service builds
                one from the client settings and closes it on shutdown.
        """
        self.config = config or AppConfig()
        client_config = self.config.client

        self._owns_http_client = http_client is None
        if http_client is None:
            http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    client_config.request_timeout_seconds,
                    connect=client_config.connect_timeout_seconds,
                ),
                limits=httpx.Limits(
                    max_connections=client_config.max_concurrent_requests,
                    max_keepalive_connections=client_config.max_concurrent_requests,
                ),
            )
        self._http_client = http_client

        self.registry = ConnectionRegistry(self._build_connection)
        self.aggregator = CatalogAggregator(self.registry)
        self._semaphore = asyncio.Semaphore(client_config.max_concurrent_requests)

    def _build_connection(self, entry: MCPServerEntry) -> ServerConnection:
        client_config = self.config.client
        transport = create_transport(
            entry.transport,
            url=entry.url or None,
            command=entry.command,
            args=entry.args,
            env=entry.env,
            client=self._http_client,
            timeout=client_config.request_timeout_seconds,
            max_response_bytes=client_config.max_response_bytes,
            connect_timeout=client_config.connect_timeout_seconds,
        )
        return ServerConnection(
            entry.name,
            transport,
            url=entry.url or None,
            timeout=client_config.request_timeout_seconds,
            protocol_version=client_config.protocol_version,
            client_name=client_config.client_name,
            client_version=client_config.client_version or __version__,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Connect every configured server; failures are logged and skipped."""
        logger.info(
            "Initializing MCP client service",
            extra={"configured_servers": len(self.config.servers)},
        )

        for entry in self.config.servers:
            try:
                async with self._semaphore:
                    await self.registry.connect_entry(entry)
            except ClientError as e:
                logger.error(
                    "Failed to connect to configured MCP server",
                    extra={"server": entry.name, "error": e.message},
                )

    async def shutdown(self) -> None:
        """Close every connection, then the shared HTTP client."""
        await self.registry.close_all()
        if self._owns_http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def __aenter__(self) -> MCPClientService:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    async def connect(self, url: str, name: str | None = None) -> ConnectionResult:
        """
        Connect to an HTTP MCP server and register it.

        Args:
            url: Server base url.
            name: Logical name; ``server-<epoch millis>`` when omitted.

        Returns:
            ConnectionResult with the tools of the new server on success.
        """
        name = name or f"server-{_epoch_millis()}"

        try:
            if not url or not url.strip():
                raise InvalidArgumentError("Server URL is required", details={"server": name})
            entry = MCPServerEntry(name=name, url=url, transport=TransportKind.HTTP)
            async with self._semaphore:
                await self.registry.connect_entry(entry)
        except ClientError as e:
            logger.error(
                "Failed to connect to MCP server",
                extra={"server": name, "url": url, "error": e.message},
            )
            return ConnectionResult(success=False, message=f"Connection failed: {e.message}")

        return ConnectionResult(
            success=True,
            message=f"Successfully connected to {name}",
            available_tools=self.aggregator.tools_for_server(name),
        )

    async def disconnect(self, name: str) -> bool:
        return await self.registry.disconnect(name)

    def list_servers(self) -> list[ServerInfo]:
        return self.aggregator.list_servers()

    def list_tools(self) -> list[ToolInfo]:
        return self.aggregator.list_tools()

    def get_tool_info(self, server_name: str, tool_name: str) -> ToolInfo | None:
        return self.aggregator.find_tool(server_name, tool_name)

    def list_resources(self, server_name: str | None = None) -> list[ResourceInfo]:
        """
        Resources of every server, or of one server.

        Raises:
            ServerNotFoundError: If ``server_name`` is not registered.
        """
        if server_name is not None and server_name not in self.registry:
            raise ServerNotFoundError(server_name)
        return self.aggregator.list_resources(server_name)

    # -------------------------------------------------------------------------
    # Remote operations
    # -------------------------------------------------------------------------

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
    ) -> ApiCallResult:
        """
        Invoke a tool on a named server.

        Returns:
            ApiCallResult whose ``success`` is the negation of the tool's
            error flag and whose ``data`` is the parsed content.
        """
        connection = self.registry.get(server_name)
        if connection is None:
            return ApiCallResult(success=False, message=f"Server not found: {server_name}")

        try:
            async with self._semaphore:
                result = await connection.call_tool(tool_name, arguments)
        except ClientError as e:
            logger.error(
                "Failed to call tool",
                extra={"server": server_name, "tool": tool_name, "error": e.message},
            )
            return ApiCallResult(success=False, message=f"Tool call failed: {e.message}")

        return ApiCallResult(
            success=not result.is_error,
            message="Tool execution failed" if result.is_error else "Success",
            data=result.content,
        )

    async def read_resource(self, server_name: str, uri: str) -> ApiCallResult:
        """Read a resource from a named server."""
        connection = self.registry.get(server_name)
        if connection is None:
            return ApiCallResult(success=False, message=f"Server not found: {server_name}")

        try:
            async with self._semaphore:
                result = await connection.read_resource(uri)
        except ClientError as e:
            return ApiCallResult(success=False, message=f"Resource read failed: {e.message}")

        return ApiCallResult(success=True, message="Success", data=result.contents)

    async def call_endpoint(
        self,
        server_url: str,
        http_method: str,
        path: str,
        payload: Any = None,
    ) -> ApiCallResult:
        """
        Send a raw HTTP request to a server, outside of the MCP protocol.

        Args:
            server_url: Server base url.
            http_method: GET, POST, PUT or DELETE.
            path: Path appended to the base url.
            payload: JSON body for POST and PUT.

        Returns:
            ApiCallResult carrying the response body text on success.
        """
        method = http_method.upper()
        if method not in SUPPORTED_HTTP_METHODS:
            return ApiCallResult(
                success=False, message=f"Unsupported HTTP method: {http_method}"
            )

        url = server_url.rstrip("/") + "/" + path.lstrip("/")
        body = payload if method in ("POST", "PUT") and payload is not None else None

        try:
            async with self._semaphore:
                response = await self._http_client.request(
                    method,
                    url,
                    json=body,
                    timeout=httpx.Timeout(
                        self.config.client.request_timeout_seconds,
                        connect=self.config.client.connect_timeout_seconds,
                    ),
                )
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(
                "Failed to call API endpoint",
                extra={"method": method, "url": url, "error": str(e)},
            )
            return ApiCallResult(success=False, message=f"API call failed: {e}")

        return ApiCallResult(success=True, message="API call successful", data=response.text)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def test_server(self, name: str) -> dict[str, Any]:
        """Connectivity summary of one server from the cached catalog."""
        connection = self.registry.get(name)
        tools = self.aggregator.tools_for_server(name)
        return {
            "serverName": name,
            "connected": connection is not None and connection.is_connected,
            "toolCount": len(tools),
            "availableTools": [tool.name for tool in tools],
            "timestamp": _epoch_millis(),
        }

    def health(self) -> dict[str, Any]:
        servers = self.list_servers()
        return {
            "status": "UP",
            "totalServers": len(servers),
            "connectedServers": sum(1 for server in servers if server.connected),
            "timestamp": _epoch_millis(),
        }
