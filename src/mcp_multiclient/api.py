"""
REST facade over MCPClientService.

All routes live under ``/api/mcp``. Request bodies use camelCase keys.
Missing required fields answer 400, failed operations answer 500 with the
result body, and an unknown tool answers 404.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from mcp_multiclient import __version__
from mcp_multiclient.config import AppConfig
from mcp_multiclient.errors import ServerNotFoundError
from mcp_multiclient.logging import get_logger
from mcp_multiclient.models import (
    ApiCallResult,
    ConnectionResult,
    ResourceInfo,
    ServerInfo,
    ToolInfo,
)
from mcp_multiclient.service import MCPClientService

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/mcp",
    tags=["mcp"],
)


# =============================================================================
# Request Bodies
# =============================================================================


class _RequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ConnectRequest(_RequestBody):
    server_url: str | None = Field(default=None, alias="serverUrl")
    server_name: str | None = Field(default=None, alias="serverName")


class CallToolRequest(_RequestBody):
    server_name: str | None = Field(default=None, alias="serverName")
    tool_name: str | None = Field(default=None, alias="toolName")
    parameters: dict[str, Any] | None = None


class CallEndpointRequest(_RequestBody):
    server_url: str | None = Field(default=None, alias="serverUrl")
    method: str | None = None
    endpoint: str | None = None
    payload: Any = None


class ReadResourceRequest(_RequestBody):
    server_name: str | None = Field(default=None, alias="serverName")
    uri: str | None = None


def get_service(request: Request) -> MCPClientService:
    return request.app.state.service


def _respond(result: ConnectionResult | ApiCallResult, *, failure_status: int = 500) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_200_OK if result.success else failure_status,
        content=result.model_dump(by_alias=True, mode="json"),
    )


def _bad_request(result: ConnectionResult | ApiCallResult) -> JSONResponse:
    return _respond(result, failure_status=status.HTTP_400_BAD_REQUEST)


# =============================================================================
# Routes
# =============================================================================


@router.get("/health")
async def health_endpoint(service: MCPClientService = Depends(get_service)) -> dict[str, Any]:
    return service.health()


@router.post("/connect", response_model=ConnectionResult)
async def connect_endpoint(
    body: ConnectRequest, service: MCPClientService = Depends(get_service)
) -> JSONResponse:
    """
    Connect to an MCP server at runtime.
    """
    if not body.server_url or not body.server_url.strip():
        return _bad_request(ConnectionResult(success=False, message="Server URL is required"))

    logger.info(
        "Received connect request",
        extra={"url": body.server_url, "server": body.server_name},
    )
    result = await service.connect(body.server_url, body.server_name)
    return _respond(result)


@router.get("/servers", response_model=list[ServerInfo])
async def list_servers_endpoint(
    service: MCPClientService = Depends(get_service),
) -> list[ServerInfo]:
    return service.list_servers()


@router.delete("/servers/{server_name}")
async def disconnect_endpoint(
    server_name: str, service: MCPClientService = Depends(get_service)
) -> dict[str, Any]:
    success = await service.disconnect(server_name)
    return {
        "success": success,
        "message": (
            "Disconnected successfully"
            if success
            else "Server not found or already disconnected"
        ),
        "serverName": server_name,
    }


@router.get("/servers/{server_name}/resources", response_model=list[ResourceInfo])
async def list_resources_endpoint(
    server_name: str, service: MCPClientService = Depends(get_service)
) -> list[ResourceInfo]:
    try:
        return service.list_resources(server_name)
    except ServerNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e


@router.get("/tools", response_model=list[ToolInfo])
async def list_tools_endpoint(
    service: MCPClientService = Depends(get_service),
) -> list[ToolInfo]:
    return service.list_tools()


@router.post("/tools/call", response_model=ApiCallResult)
async def call_tool_endpoint(
    body: CallToolRequest, service: MCPClientService = Depends(get_service)
) -> JSONResponse:
    """
    Invoke a tool on a connected server.

    A tool that reports an error answers 500 with ``success=false``.
    """
    if body.server_name is None or body.tool_name is None:
        return _bad_request(
            ApiCallResult(success=False, message="serverName and toolName are required")
        )

    result = await service.call_tool(body.server_name, body.tool_name, body.parameters)
    return _respond(result)


@router.get("/tools/{server_name}/{tool_name}", response_model=ToolInfo)
async def tool_info_endpoint(
    server_name: str,
    tool_name: str,
    service: MCPClientService = Depends(get_service),
) -> ToolInfo:
    tool = service.get_tool_info(server_name, tool_name)
    if tool is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tool not found")
    return tool


@router.post("/call", response_model=ApiCallResult)
async def call_endpoint_endpoint(
    body: CallEndpointRequest, service: MCPClientService = Depends(get_service)
) -> JSONResponse:
    """
    Send a raw HTTP request to a server, bypassing the MCP protocol.
    """
    if body.server_url is None or body.method is None or body.endpoint is None:
        return _bad_request(
            ApiCallResult(
                success=False, message="serverUrl, method, and endpoint are required"
            )
        )

    result = await service.call_endpoint(
        body.server_url, body.method, body.endpoint, body.payload
    )
    return _respond(result)


@router.post("/resources/read", response_model=ApiCallResult)
async def read_resource_endpoint(
    body: ReadResourceRequest, service: MCPClientService = Depends(get_service)
) -> JSONResponse:
    if body.server_name is None or body.uri is None:
        return _bad_request(
            ApiCallResult(success=False, message="serverName and uri are required")
        )

    result = await service.read_resource(body.server_name, body.uri)
    return _respond(result)


@router.get("/test/{server_name}")
async def test_server_endpoint(
    server_name: str, service: MCPClientService = Depends(get_service)
) -> dict[str, Any]:
    return service.test_server(server_name)


# =============================================================================
# Application
# =============================================================================


def create_app(
    config: AppConfig | None = None,
    service: MCPClientService | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    The service is started when the application starts up and shut down
    when it stops.

    Args:
        config: Application configuration, used when no service is given.
        service: Pre-built service, for embedding and tests.

    Returns:
        The configured FastAPI application.
    """
    service = service or MCPClientService(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await service.start()
        try:
            yield
        finally:
            await service.shutdown()

    app = FastAPI(title="MCP Multi-Client", version=__version__, lifespan=lifespan)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app
