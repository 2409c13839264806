"""
MCP Multi-Client - runtime for talking to many MCP servers at once.

This package connects to remote MCP servers (JSON-RPC 2.0 over HTTP or over a
local child process), discovers their tools and resources, invokes tools,
reads resources, and exposes the merged catalog through a small REST facade.
"""

__version__ = "0.1.0"
