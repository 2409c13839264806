"""
Read-side views merged across every registered connection.

A connection that cannot answer (for example because it is not connected)
contributes nothing to an aggregate instead of failing it; the failure is
logged.
"""

from __future__ import annotations

from mcp_multiclient.errors import ClientError
from mcp_multiclient.logging import get_logger
from mcp_multiclient.models import ResourceInfo, ServerInfo, ToolInfo
from mcp_multiclient.registry import ConnectionRegistry

logger = get_logger(__name__)


class CatalogAggregator:
    """
    Builds the unified tool catalog and the per-server status list.

    Tool identity in the merged catalog is (server name, tool name), so two
    servers may expose tools with the same name.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    def list_tools(self) -> list[ToolInfo]:
        """Every tool of every connected server, tagged with its owner."""
        all_tools: list[ToolInfo] = []

        for server_name, connection in self._registry.list():
            try:
                tools = connection.list_tools()
            except ClientError as e:
                logger.error(
                    "Failed to list tools from server",
                    extra={"server": server_name, "error": e.message},
                )
                continue

            all_tools.extend(
                ToolInfo(
                    name=tool.name,
                    description=tool.description,
                    server_name=server_name,
                    server_url=connection.url,
                    input_schema=tool.to_dict()["inputSchema"],
                )
                for tool in tools
            )

        return all_tools

    def tools_for_server(self, server_name: str) -> list[ToolInfo]:
        """Tools of one server from the merged catalog."""
        return [tool for tool in self.list_tools() if tool.server_name == server_name]

    def find_tool(self, server_name: str, tool_name: str) -> ToolInfo | None:
        """Look up one tool by its (server name, tool name) identity."""
        for tool in self.tools_for_server(server_name):
            if tool.name == tool_name:
                return tool
        return None

    def list_resources(self, server_name: str | None = None) -> list[ResourceInfo]:
        """Resources of every connected server, or of one server."""
        all_resources: list[ResourceInfo] = []

        for name, connection in self._registry.list():
            if server_name is not None and name != server_name:
                continue
            try:
                resources = connection.list_resources()
            except ClientError as e:
                logger.error(
                    "Failed to list resources from server",
                    extra={"server": name, "error": e.message},
                )
                continue

            all_resources.extend(
                ResourceInfo(
                    uri=resource.uri,
                    name=resource.name,
                    description=resource.description,
                    mime_type=resource.mime_type,
                    server_name=name,
                )
                for resource in resources
            )

        return all_resources

    def list_servers(self) -> list[ServerInfo]:
        """Status summary (name, url, connected flag, tool count) per server."""
        servers: list[ServerInfo] = []

        for server_name, connection in self._registry.list():
            try:
                servers.append(
                    ServerInfo(
                        name=server_name,
                        url=connection.url,
                        connected=connection.is_connected,
                        tool_count=len(connection.available_tool_names()),
                    )
                )
            except ClientError as e:
                logger.error(
                    "Failed to summarize server",
                    extra={"server": server_name, "error": e.message},
                )

        return servers
