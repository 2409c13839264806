"""
Tests for configuration loading.

Covers model defaults and validation, YAML loading, environment overrides
and CLI overrides, and the precedence between them.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from mcp_multiclient.config import (
    AppConfig,
    ClientConfig,
    LoggingConfig,
    MCPServerEntry,
    ServerConfig,
    _deep_merge,
    _load_env_config,
    _parse_cli_args,
    load_config,
)
from mcp_multiclient.transport import TransportKind

# =============================================================================
# Model Tests
# =============================================================================


class TestModels:
    """Tests for configuration model defaults and validation."""

    def test_defaults(self) -> None:
        config = AppConfig()
        assert config.server.listen_host == "127.0.0.1"
        assert config.server.listen_port == 8080
        assert config.client.protocol_version == "2024-11-05"
        assert config.client.request_timeout_seconds == 30.0
        assert config.client.max_concurrent_requests == 32
        assert config.logging.json_format is True
        assert config.servers == []

    def test_log_level_normalized(self) -> None:
        assert ServerConfig(log_level="WARN").log_level == "warning"
        assert LoggingConfig(level="DEBUG").level == "debug"

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            LoggingConfig(level="chatty")

    def test_invalid_port(self) -> None:
        with pytest.raises(ValidationError):
            ServerConfig(listen_port=70000)

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ValidationError):
            ClientConfig(request_timeout_seconds=0)

    def test_server_entry_defaults(self) -> None:
        entry = MCPServerEntry(name="weather", url="http://localhost:9000")
        assert entry.transport is TransportKind.HTTP
        assert entry.args == []
        assert entry.env == {}

    @pytest.mark.parametrize("value", ["stdio", "STDIO", "local_process", "process"])
    def test_server_entry_stdio_aliases(self, value: str) -> None:
        entry = MCPServerEntry(name="local", transport=value, command="server")
        assert entry.transport is TransportKind.LOCAL_PROCESS

    def test_server_entry_unknown_transport(self) -> None:
        with pytest.raises(ValidationError):
            MCPServerEntry(name="x", transport="carrier-pigeon")

    def test_server_entry_requires_name(self) -> None:
        with pytest.raises(ValidationError):
            MCPServerEntry(name="", url="http://localhost")

    def test_duplicate_server_names(self) -> None:
        """Test that two servers may not share a name."""
        with pytest.raises(ValidationError, match="Duplicate server name"):
            AppConfig(
                servers=[
                    {"name": "a", "url": "http://one"},
                    {"name": "a", "url": "http://two"},
                ]
            )


# =============================================================================
# Helper Tests
# =============================================================================


class TestHelpers:
    """Tests for merge and parse helpers."""

    def test_deep_merge(self) -> None:
        base = {"server": {"listen_host": "a", "listen_port": 1}, "servers": [1]}
        override = {"server": {"listen_port": 2}, "servers": [2]}

        merged = _deep_merge(base, override)

        assert merged == {"server": {"listen_host": "a", "listen_port": 2}, "servers": [2]}
        assert base["server"]["listen_port"] == 1

    def test_load_env_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MCP_MULTICLIENT_CLIENT__REQUEST_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("MCP_MULTICLIENT_LOGGING__JSON_FORMAT", "false")
        monkeypatch.setenv("MCP_MULTICLIENT_SERVERS", "ignored")
        monkeypatch.setenv("UNRELATED_VARIABLE", "x")

        assert _load_env_config() == {
            "client": {"request_timeout_seconds": "5"},
            "logging": {"json_format": "false"},
        }

    def test_parse_cli_args(self) -> None:
        result = _parse_cli_args(["--host", "0.0.0.0", "--port", "9000", "--log-level", "debug"])

        assert result == {
            "server": {"listen_host": "0.0.0.0", "listen_port": 9000, "log_level": "debug"},
            "logging": {"level": "debug"},
        }

    def test_parse_cli_debug(self) -> None:
        result = _parse_cli_args(["--debug"])
        assert result["logging"] == {"level": "debug", "json_format": False}


# =============================================================================
# load_config Tests
# =============================================================================


def _write_config(path: Path) -> Path:
    path.write_text(
        """
server:
  listen_port: 9100
client:
  request_timeout_seconds: 12
servers:
  - name: weather
    url: http://localhost:9000
  - name: files
    transport: stdio
    command: python
    args: ["-m", "files_server"]
    env:
      FILES_ROOT: /srv
"""
    )
    return path


class TestLoadConfig:
    """Tests for layered configuration loading."""

    def test_defaults_only(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("mcp_multiclient.config.DEFAULT_CONFIG_PATH", tmp_path / "none.yml")

        config = load_config(cli_args=[])

        assert config == AppConfig()

    def test_yaml(self, tmp_path: Path) -> None:
        config = load_config(_write_config(tmp_path / "config.yml"), cli_args=[])

        assert config.server.listen_port == 9100
        assert config.client.request_timeout_seconds == 12
        assert [entry.name for entry in config.servers] == ["weather", "files"]
        files = config.servers[1]
        assert files.transport is TransportKind.LOCAL_PROCESS
        assert files.args == ["-m", "files_server"]
        assert files.env == {"FILES_ROOT": "/srv"}

    def test_config_path_from_cli(self, tmp_path: Path) -> None:
        path = _write_config(tmp_path / "config.yml")
        config = load_config(cli_args=["--config", str(path)])
        assert config.server.listen_port == 9100

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yml", cli_args=[])

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config(path, cli_args=[]) == AppConfig()

    def test_precedence(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that CLI beats environment, which beats YAML."""
        path = _write_config(tmp_path / "config.yml")
        monkeypatch.setenv("MCP_MULTICLIENT_SERVER__LISTEN_PORT", "9200")
        monkeypatch.setenv("MCP_MULTICLIENT_CLIENT__REQUEST_TIMEOUT_SECONDS", "20")

        config = load_config(path, cli_args=["--port", "9300"])

        assert config.server.listen_port == 9300
        assert config.client.request_timeout_seconds == 20
        assert len(config.servers) == 2

    def test_invalid_values(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yml"
        path.write_text("client:\n  max_concurrent_requests: 0\n")
        with pytest.raises(ValidationError):
            load_config(path, cli_args=[])

    def test_env_values_coerced_by_models(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that env values reach the models as strings."""
        monkeypatch.setenv("MCP_MULTICLIENT_CLIENT__CLIENT_VERSION", "2")
        monkeypatch.setenv("MCP_MULTICLIENT_CLIENT__CLIENT_NAME", "gateway,eu-west")
        monkeypatch.setenv("MCP_MULTICLIENT_CLIENT__CONNECT_TIMEOUT_SECONDS", "2.5")
        monkeypatch.setenv("MCP_MULTICLIENT_LOGGING__JSON_FORMAT", "off")

        path = tmp_path / "config.yml"
        path.write_text("")

        config = load_config(path, cli_args=[])

        assert config.client.client_version == "2"
        assert config.client.client_name == "gateway,eu-west"
        assert config.client.connect_timeout_seconds == 2.5
        assert config.logging.json_format is False
