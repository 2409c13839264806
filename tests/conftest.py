"""
Pytest configuration for the MCP multi-client tests.

HTTP MCP servers are simulated in-process: FakeMCPServer answers JSON-RPC
requests, and FakeNetwork routes httpx requests to servers by host through an
httpx.MockTransport. Requests to an unknown host fail like a refused
connection.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from mcp_multiclient.config import AppConfig
from mcp_multiclient.connection import ServerConnection
from mcp_multiclient.service import MCPClientService
from mcp_multiclient.transport import HttpTransport

# Configure pytest-asyncio mode
pytest_plugins = ["pytest_asyncio"]

FAKE_STDIO_SERVER = Path(__file__).parent / "fake_stdio_server.py"


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (deselect with '-m \"not integration\"')",
    )


# =============================================================================
# Fake MCP Server
# =============================================================================


class FakeMCPServer:
    """
    In-process MCP server speaking JSON-RPC over the httpx mock transport.

    Behaviour is tuned by mutating attributes:
    - ``errors`` maps a method to a JSON-RPC error object to answer with.
    - ``http_status`` maps a method to an HTTP status code to answer with.
    - ``raw_bodies`` maps a method to a raw response body.
    - ``tool_results`` maps a tool name to the ``result`` of tools/call.
    - ``routes`` maps (HTTP method, path) to a plain HTTP response for raw
      endpoint calls.
    - ``gates`` maps a method to an event the reply waits for.
    """

    def __init__(
        self,
        tools: list[dict[str, Any]] | None = None,
        resources: list[dict[str, Any]] | None = None,
        capabilities: dict[str, Any] | None = None,
        server_info: dict[str, Any] | None = None,
        page_size: int | None = None,
    ) -> None:
        self.tools = list(tools or [])
        self.resources = list(resources or [])
        self.capabilities = (
            capabilities if capabilities is not None else {"tools": {}, "resources": {}}
        )
        self.server_info = server_info or {"name": "fake-server", "version": "1.0.0"}
        self.page_size = page_size
        self.resource_contents: dict[str, list[Any]] = {}
        self.tool_results: dict[str, Any] = {}
        self.errors: dict[str, dict[str, Any]] = {}
        self.http_status: dict[str, int] = {}
        self.raw_bodies: dict[str, str] = {}
        self.routes: dict[tuple[str, str], httpx.Response] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.session_id: str | None = None
        self.requests: list[dict[str, Any]] = []
        self.request_headers: list[httpx.Headers] = []

    @property
    def methods(self) -> list[str]:
        """Methods received so far, in order."""
        return [request["method"] for request in self.requests]

    async def handle(self, request: httpx.Request) -> httpx.Response:
        if request.url.path != "/mcp":
            route = self.routes.get((request.method, request.url.path))
            if route is None:
                return httpx.Response(404, text="Not Found")
            return route

        message = json.loads(request.content)
        self.requests.append(message)
        self.request_headers.append(request.headers)
        method = message["method"]

        headers = {}
        if self.session_id:
            headers["Mcp-Session-Id"] = self.session_id

        if "id" not in message:
            return httpx.Response(202, headers=headers)

        if method in self.gates:
            await self.gates[method].wait()

        if method in self.http_status:
            return httpx.Response(self.http_status[method], text="server error")
        if method in self.raw_bodies:
            return httpx.Response(200, text=self.raw_bodies[method], headers=headers)

        if method in self.errors:
            body = {"jsonrpc": "2.0", "id": message["id"], "error": self.errors[method]}
        else:
            body = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "result": self._result(method, message.get("params") or {}),
            }
        return httpx.Response(200, json=body, headers=headers)

    def _result(self, method: str, params: dict[str, Any]) -> Any:
        if method == "initialize":
            return {
                "protocolVersion": params.get("protocolVersion"),
                "capabilities": self.capabilities,
                "serverInfo": self.server_info,
            }
        if method == "tools/list":
            return self._page("tools", self.tools, params.get("cursor"))
        if method == "resources/list":
            return self._page("resources", self.resources, params.get("cursor"))
        if method == "tools/call":
            name = params["name"]
            if name in self.tool_results:
                return self.tool_results[name]
            return {
                "content": [{"type": "text", "text": json.dumps(params.get("arguments"))}],
                "isError": False,
            }
        if method == "resources/read":
            return {"contents": self.resource_contents.get(params["uri"], [])}
        return {}

    def _page(self, key: str, items: list[Any], cursor: str | None) -> dict[str, Any]:
        if self.page_size is None:
            return {key: items}
        start = int(cursor or 0)
        end = start + self.page_size
        page: dict[str, Any] = {key: items[start:end]}
        if end < len(items):
            page["nextCursor"] = str(end)
        return page


class FakeNetwork:
    """Routes httpx requests to fake servers by host."""

    def __init__(self) -> None:
        self.servers: dict[str, FakeMCPServer] = {}

    def add(self, host: str, server: FakeMCPServer | None = None) -> FakeMCPServer:
        """Register a server under a host and return it."""
        server = server or FakeMCPServer()
        self.servers[host] = server
        return server

    async def handler(self, request: httpx.Request) -> httpx.Response:
        server = self.servers.get(request.url.host)
        if server is None:
            raise httpx.ConnectError("Connection refused", request=request)
        return await server.handle(request)


def weather_tools() -> list[dict[str, Any]]:
    return [
        {
            "name": "forecast",
            "description": "Weather forecast for a city",
            "inputSchema": {
                "type": "object",
                "properties": {"city": {"type": "string"}},
                "required": ["city"],
            },
        },
        {"name": "alerts", "description": "Active weather alerts"},
    ]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def weather_server(network: FakeNetwork) -> FakeMCPServer:
    """Fake server at http://weather.test exposing two tools and one resource."""
    server = network.add(
        "weather.test",
        FakeMCPServer(
            tools=weather_tools(),
            resources=[
                {
                    "uri": "file:///stations.csv",
                    "name": "stations",
                    "description": "Station list",
                    "mimeType": "text/csv",
                }
            ],
        ),
    )
    server.resource_contents["file:///stations.csv"] = [
        {"uri": "file:///stations.csv", "mimeType": "text/csv", "text": "id,name\n1,Oslo"}
    ]
    return server


@pytest.fixture
async def http_client(network: FakeNetwork) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(network.handler)) as client:
        yield client


@pytest.fixture
def make_connection(
    http_client: httpx.AsyncClient,
) -> Callable[..., ServerConnection]:
    """Factory for HTTP connections going through the fake network."""

    def _make(name: str = "weather", url: str = "http://weather.test") -> ServerConnection:
        return ServerConnection(
            name, HttpTransport(url, client=http_client), url=url, timeout=5.0
        )

    return _make


@pytest.fixture
async def service(http_client: httpx.AsyncClient) -> AsyncIterator[MCPClientService]:
    client_service = MCPClientService(AppConfig(), http_client=http_client)
    yield client_service
    await client_service.shutdown()


@pytest.fixture
def stdio_command() -> tuple[str, list[str]]:
    """Command line launching the fake local-process MCP server."""
    return sys.executable, [str(FAKE_STDIO_SERVER)]
