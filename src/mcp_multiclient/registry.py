"""
Connection registry for the MCP multi-client runtime.

The registry maps logical server names to live ServerConnection objects. It
is the only state shared between concurrent callers: every insert, replace
and remove happens under one asyncio lock, while the slow handshake runs
outside of it. Snapshots returned by list() are point-in-time copies that
stay valid while the map keeps changing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from mcp_multiclient.config import MCPServerEntry
from mcp_multiclient.connection import ServerConnection
from mcp_multiclient.errors import ClientError
from mcp_multiclient.logging import get_logger
from mcp_multiclient.transport import TransportKind

logger = get_logger(__name__)

# Builds an unconnected ServerConnection for a server entry
ConnectionFactory = Callable[[MCPServerEntry], ServerConnection]


class ConnectionRegistry:
    """
    Concurrency-safe mapping from server name to ServerConnection.

    Connections are created through a factory so the registry does not need
    to know how transports are wired.

    Example:
        >>> registry = ConnectionRegistry(factory)
        >>> connection = await registry.connect("weather", "http://localhost:9000")
        >>> registry.get("weather") is connection
        True
        >>> await registry.disconnect("weather")
        True
    """

    def __init__(self, factory: ConnectionFactory) -> None:
        """
        Initialize an empty registry.

        Args:
            factory: Callable building an uninitialized connection for a
                server entry.
        """
        self._factory = factory
        self._connections: dict[str, ServerConnection] = {}
        self._lock = asyncio.Lock()

    async def connect(
        self,
        name: str,
        url: str,
        kind: TransportKind | str = TransportKind.HTTP,
    ) -> ServerConnection:
        """
        Connect to a server by name and url and register the connection.

        Args:
            name: Logical server name.
            url: Server base url.
            kind: Transport kind.

        Returns:
            The connected ServerConnection.

        Raises:
            ClientError: If the connection could not be established.
        """
        return await self.connect_entry(MCPServerEntry(name=name, url=url, transport=kind))

    async def connect_entry(self, entry: MCPServerEntry) -> ServerConnection:
        """
        Connect to the server described by a configuration entry.

        The handshake runs before the registry is touched; on failure nothing
        is inserted. An existing connection under the same name is replaced
        and then closed.

        Args:
            entry: Server configuration entry.

        Returns:
            The connected ServerConnection.

        Raises:
            ClientError: If the transport cannot be built or the handshake fails.
        """
        logger.info(
            "Connecting to MCP server",
            extra={"server": entry.name, "url": entry.url, "transport": entry.transport},
        )

        connection = self._factory(entry)
        try:
            await connection.initialize()
        except BaseException:
            await connection.close()
            raise

        async with self._lock:
            previous = self._connections.get(entry.name)
            self._connections[entry.name] = connection

        if previous is not None and previous is not connection:
            logger.info(
                "Replaced existing connection",
                extra={"server": entry.name, "previous_url": previous.url},
            )
            await self._close_quietly(entry.name, previous)

        logger.info("Successfully connected to MCP server", extra={"server": entry.name})
        return connection

    async def disconnect(self, name: str) -> bool:
        """
        Remove and close a connection.

        Args:
            name: Server name.

        Returns:
            True if a connection existed and was removed, False otherwise.
        """
        async with self._lock:
            connection = self._connections.pop(name, None)

        if connection is None:
            return False

        await self._close_quietly(name, connection)
        logger.info("Disconnected from MCP server", extra={"server": name})
        return True

    def get(self, name: str) -> ServerConnection | None:
        """Look up a connection by server name."""
        return self._connections.get(name)

    def list(self) -> list[tuple[str, ServerConnection]]:
        """Point-in-time snapshot of (name, connection) pairs in insertion order."""
        return list(self._connections.items())

    def names(self) -> list[str]:
        """Names of all registered servers."""
        return list(self._connections)

    async def close_all(self) -> None:
        """Close every connection and empty the registry, continuing past failures."""
        async with self._lock:
            connections = list(self._connections.items())
            self._connections.clear()

        logger.info("Cleaning up MCP connections", extra={"count": len(connections)})

        for name, connection in connections:
            if await self._close_quietly(name, connection):
                logger.info("Closed connection", extra={"server": name})

    async def _close_quietly(self, name: str, connection: ServerConnection) -> bool:
        try:
            await connection.close()
        except (ClientError, OSError) as e:
            logger.error(
                "Error closing connection",
                extra={"server": name, "error": str(e)},
            )
            return False
        return True

    def __contains__(self, name: object) -> bool:
        return name in self._connections

    def __len__(self) -> int:
        return len(self._connections)
