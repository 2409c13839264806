"""
Command-line entry point: load configuration, set up logging and serve the
REST facade with uvicorn.
"""

from __future__ import annotations

import sys

import uvicorn
import yaml
from pydantic import ValidationError

from mcp_multiclient.api import create_app
from mcp_multiclient.config import load_config
from mcp_multiclient.logging import get_logger, setup_logging

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    """
    Run the MCP multi-client facade.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Process exit code.
    """
    try:
        config = load_config(cli_args=argv)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.logging)
    logger.info(
        "Starting MCP multi-client",
        extra={
            "host": config.server.listen_host,
            "port": config.server.listen_port,
            "configured_servers": len(config.servers),
        },
    )

    app = create_app(config)
    uvicorn.run(
        app,
        host=config.server.listen_host,
        port=config.server.listen_port,
        log_level=config.server.log_level,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
