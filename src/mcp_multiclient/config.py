"""
Configuration management for the MCP multi-client runtime.

Configuration is loaded from multiple sources with layered precedence:
1. Built-in defaults (Pydantic model defaults)
2. YAML config file (/etc/mcp-multiclient/config.yml or --config path)
3. Environment variables (MCP_MULTICLIENT_* prefix, __ for nesting)
4. Command-line arguments (highest precedence)

The static server list lives under ``servers`` in the YAML file:

    servers:
      - name: weather
        url: http://localhost:9000
      - name: files
        transport: stdio
        command: python
        args: ["-m", "files_mcp_server"]
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from mcp_multiclient.protocol import MCP_PROTOCOL_VERSION
from mcp_multiclient.transport import TransportKind

DEFAULT_CONFIG_PATH = Path("/etc/mcp-multiclient/config.yml")
DEFAULT_ENV_PREFIX = "MCP_MULTICLIENT_"

_VALID_LOG_LEVELS = {"debug", "info", "warn", "warning", "error", "critical"}


def _normalize_log_level(v: str) -> str:
    v_lower = v.lower()
    if v_lower not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level: {v}. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    # Normalize 'warn' to 'warning'
    if v_lower == "warn":
        return "warning"
    return v_lower


# =============================================================================
# Server Configuration
# =============================================================================


class ServerConfig(BaseModel):
    """REST facade listener settings.

    Attributes:
        listen_host: Address the facade binds to.
        listen_port: Port the facade binds to.
        log_level: Initial application log level.
    """

    listen_host: str = Field(
        default="127.0.0.1",
        description="Address the REST facade binds to",
    )
    listen_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port the REST facade binds to",
    )
    log_level: str = Field(
        default="info",
        description="Log level: debug, info, warn, error",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        return _normalize_log_level(v)


# =============================================================================
# Client Configuration
# =============================================================================


class ClientConfig(BaseModel):
    """Settings for talking to remote MCP servers.

    Attributes:
        protocol_version: MCP protocol version announced in the handshake.
        client_name: Client name announced in the handshake.
        client_version: Client version announced in the handshake.
        request_timeout_seconds: Deadline for a single remote call.
        connect_timeout_seconds: Deadline for establishing a TCP connection.
        max_concurrent_requests: Upper bound on in-flight remote operations.
        max_response_bytes: Largest response body accepted.
    """

    protocol_version: str = Field(
        default=MCP_PROTOCOL_VERSION,
        description="MCP protocol version announced during initialize",
    )
    client_name: str = Field(
        default="mcp-multiclient",
        description="Client name announced during initialize",
    )
    client_version: str | None = Field(
        default=None,
        description="Client version announced during initialize (package version if unset)",
    )
    request_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=3600,
        description="Deadline for a single remote call",
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=600,
        description="Deadline for opening a connection to a server",
    )
    max_concurrent_requests: int = Field(
        default=32,
        ge=1,
        le=1024,
        description="Maximum number of remote operations in flight",
    )
    max_response_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Largest response body accepted from a server",
    )


class MCPServerEntry(BaseModel):
    """One entry of the static server list.

    Attributes:
        name: Logical server name (registry key).
        url: Server base url (HTTP transport).
        transport: Transport kind: 'http' or 'stdio'.
        command: Executable to launch (stdio transport).
        args: Arguments for the executable.
        env: Extra environment variables for the child process.
    """

    name: str = Field(..., min_length=1, description="Logical server name")
    url: str = Field(default="", description="Server base url")
    transport: TransportKind = Field(
        default=TransportKind.HTTP,
        description="Transport kind: 'http' or 'stdio'",
    )
    command: str | None = Field(
        default=None,
        description="Executable to launch for the stdio transport",
    )
    args: list[str] = Field(
        default_factory=list,
        description="Arguments for the stdio command",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the stdio command",
    )

    @field_validator("transport", mode="before")
    @classmethod
    def validate_transport(cls, v: Any) -> Any:
        """Accept transport names case-insensitively."""
        if isinstance(v, str):
            v_lower = v.lower()
            if v_lower in ("local_process", "local-process", "process"):
                return TransportKind.LOCAL_PROCESS.value
            return v_lower
        return v


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level.
        log_to_stdout: Whether to log to stdout.
        json_format: Whether to emit JSON log lines.
    """

    level: str = Field(
        default="info",
        description="Log level",
    )
    log_to_stdout: bool = Field(
        default=True,
        description="Whether to log to stdout",
    )
    json_format: bool = Field(
        default=True,
        description="Whether to emit JSON-formatted log lines",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        return _normalize_log_level(v)


# =============================================================================
# Main Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """
    Main application configuration model.

    Attributes:
        server: REST facade listener settings.
        client: Remote call settings.
        logging: Logging configuration.
        servers: Servers to connect to at startup.
    """

    server: ServerConfig = Field(
        default_factory=ServerConfig,
        description="REST facade listener settings",
    )
    client: ClientConfig = Field(
        default_factory=ClientConfig,
        description="Remote call settings",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    servers: list[MCPServerEntry] = Field(
        default_factory=list,
        description="Servers to connect to at startup",
    )

    @model_validator(mode="after")
    def validate_unique_server_names(self) -> AppConfig:
        """Reject duplicate server names."""
        seen: set[str] = set()
        for entry in self.servers:
            if entry.name in seen:
                raise ValueError(f"Duplicate server name: {entry.name}")
            seen.add(entry.name)
        return self


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge two dictionaries.

    Args:
        base: The base dictionary.
        override: The dictionary with values to override.

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_path: Path) -> dict[str, Any]:
    """
    Load configuration from a YAML file.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        yaml.YAMLError: If the YAML is invalid.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def _load_env_config(prefix: str = DEFAULT_ENV_PREFIX) -> dict[str, Any]:
    """
    Load configuration from environment variables.

    Nested keys use a double underscore separator, e.g.
    MCP_MULTICLIENT_CLIENT__REQUEST_TIMEOUT_SECONDS=10. The server list
    cannot be set from the environment. Values are left as strings for
    the pydantic models to coerce.
    """
    result: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        parts = key[len(prefix) :].lower().split("__")
        if parts[0] == "servers":
            continue

        current = result
        for part in parts[:-1]:
            current = current.setdefault(part, {})
        current[parts[-1]] = value

    return result


def _parse_cli_args(args: list[str] | None = None) -> dict[str, Any]:
    """
    Parse command-line arguments.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Dictionary with parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="MCP multi-client runtime",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--host",
        type=str,
        help="Override the REST facade listen address",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Override the REST facade listen port",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        help="Override log level",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )

    parsed = parser.parse_args(args)

    result: dict[str, Any] = {}

    if parsed.config:
        result["_config_path"] = parsed.config

    server: dict[str, Any] = {}
    if parsed.host:
        server["listen_host"] = parsed.host
    if parsed.port:
        server["listen_port"] = parsed.port
    if parsed.log_level:
        server["log_level"] = parsed.log_level
        result["logging"] = {"level": parsed.log_level}

    if parsed.debug:
        server["log_level"] = "debug"
        result["logging"] = {"level": "debug", "json_format": False}

    if server:
        result["server"] = server

    return result


def load_config(
    config_path: Path | str | None = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
    cli_args: list[str] | None = None,
) -> AppConfig:
    """
    Load configuration from all sources with layered precedence.

    Args:
        config_path: Path to YAML configuration file. If None, uses the CLI
            --config argument or the default path when it exists.
        env_prefix: Prefix for environment variables.
        cli_args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Fully configured AppConfig instance.

    Raises:
        FileNotFoundError: If specified config file doesn't exist.
        ValidationError: If configuration is invalid.

    Example:
        >>> config = load_config(cli_args=[])
        >>> config.server.listen_port
        8080
    """
    config_dict: dict[str, Any] = {}

    cli_config = _parse_cli_args(cli_args)

    if config_path is None:
        if "_config_path" in cli_config:
            config_path = Path(cli_config.pop("_config_path"))
        elif DEFAULT_CONFIG_PATH.exists():
            config_path = DEFAULT_CONFIG_PATH
    else:
        cli_config.pop("_config_path", None)
        config_path = Path(config_path)

    if config_path is not None:
        config_dict = _deep_merge(config_dict, _load_yaml_config(config_path))

    config_dict = _deep_merge(config_dict, _load_env_config(env_prefix))
    config_dict = _deep_merge(config_dict, cli_config)

    return AppConfig(**config_dict)
