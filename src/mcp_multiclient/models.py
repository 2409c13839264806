"""
Data shapes exchanged with the REST facade.

These models are serialized with camelCase keys (``serverName``,
``toolCount``, ...), matching the JSON the facade has always produced.
Python code constructs and reads them by field name.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _FacadeModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ToolInfo(_FacadeModel):
    """A tool attributed to the server that exposes it."""

    name: str = Field(default="", description="Tool name")
    description: str = Field(default="", description="Tool description")
    server_name: str = Field(
        ..., alias="serverName", description="Name of the owning server"
    )
    server_url: str = Field(
        ..., alias="serverUrl", description="Base url of the owning server"
    )
    input_schema: dict[str, Any] | None = Field(
        default=None, alias="inputSchema", description="JSON schema of the arguments"
    )


class ServerInfo(_FacadeModel):
    """Status summary of one registered server."""

    name: str
    url: str
    connected: bool
    tool_count: int = Field(default=0, alias="toolCount")


class ResourceInfo(_FacadeModel):
    """A resource attributed to the server that exposes it."""

    uri: str
    name: str = ""
    description: str = ""
    mime_type: str | None = Field(default=None, alias="mimeType")
    server_name: str = Field(..., alias="serverName")


class ConnectionResult(_FacadeModel):
    """Outcome of a connect request."""

    success: bool
    message: str
    available_tools: list[ToolInfo] | None = Field(
        default=None, alias="availableTools"
    )


class ApiCallResult(_FacadeModel):
    """Outcome of a tool call, resource read or raw endpoint call."""

    success: bool
    message: str
    data: Any = None
