"""
Catalog value objects and content parsing for MCP results.

Tools and resources are frozen snapshots: a connection replaces its catalog
wholesale on reload, and callers only ever receive copies.

Content parsing tolerates the variety of shapes servers send:
- a list maps every item to ``{"type", "text"}`` when both are present
  (resources also keep ``{"type", "blob"}``), anything else to its raw JSON
  text;
- a single object with ``text`` unwraps to that text;
- a single ``{"type", "blob"}`` object (resources) is kept as is;
- anything else falls back to its raw JSON text. Plain strings are their
  own raw text.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field, replace
from typing import Any

# =============================================================================
# Catalog Entries
# =============================================================================


@dataclass(frozen=True)
class Tool:
    """
    A tool advertised by a server.

    Attributes:
        name: Tool name (empty string if the server omitted it).
        description: Tool description (empty string if omitted).
        input_schema: JSON schema of the tool arguments, if advertised.
    """

    name: str = ""
    description: str = ""
    input_schema: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.name is None:
            object.__setattr__(self, "name", "")
        if self.description is None:
            object.__setattr__(self, "description", "")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tool:
        """Build a Tool from one entry of a ``tools/list`` result."""
        schema = data.get("inputSchema")
        return cls(
            name=_as_text(data.get("name")) or "",
            description=_as_text(data.get("description")) or "",
            input_schema=copy.deepcopy(schema) if isinstance(schema, dict) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape (schema is deep-copied)."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": copy.deepcopy(self.input_schema),
        }

    def detached(self) -> Tool:
        """Return a copy that shares no mutable state with this tool."""
        return replace(self, input_schema=copy.deepcopy(self.input_schema))


@dataclass(frozen=True)
class Resource:
    """
    A resource advertised by a server.

    Attributes:
        uri: Resource URI.
        name: Display name (empty string if omitted).
        description: Description (empty string if omitted).
        mime_type: MIME type, if advertised.
        annotations: Opaque annotations, if advertised.
    """

    uri: str = ""
    name: str = ""
    description: str = ""
    mime_type: str | None = None
    annotations: Any = None

    def __post_init__(self) -> None:
        for attr in ("uri", "name", "description"):
            if getattr(self, attr) is None:
                object.__setattr__(self, attr, "")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Resource:
        """Build a Resource from one entry of a ``resources/list`` result."""
        mime_type = data.get("mimeType")
        return cls(
            uri=_as_text(data.get("uri")) or "",
            name=_as_text(data.get("name")) or "",
            description=_as_text(data.get("description")) or "",
            mime_type=_as_text(mime_type) if mime_type is not None else None,
            annotations=copy.deepcopy(data.get("annotations")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire shape."""
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
            "annotations": copy.deepcopy(self.annotations),
        }

    def detached(self) -> Resource:
        """Return a copy that shares no mutable state with this resource."""
        return replace(self, annotations=copy.deepcopy(self.annotations))


# =============================================================================
# Results
# =============================================================================


@dataclass
class CallToolResult:
    """
    Outcome of a tool invocation.

    A tool that fails is a normal outcome, reported with ``is_error=True``
    rather than an exception.

    Attributes:
        content: Decoded content: a string, a ``{type, text}`` item, or a
            list of items.
        is_error: Whether the tool (or the call) failed.
    """

    content: Any = None
    is_error: bool = False

    @classmethod
    def from_error(cls, message: str) -> CallToolResult:
        """Build an error result carrying a message."""
        return cls(content=message, is_error=True)

    @classmethod
    def from_result(cls, result: Any) -> CallToolResult:
        """Build a result from the ``result`` member of a ``tools/call`` response."""
        if not isinstance(result, dict):
            return cls(content=parse_tool_content(result), is_error=False)
        return cls(
            content=parse_tool_content(result.get("content")),
            is_error=result.get("isError") is True,
        )


@dataclass
class ReadResourceResult:
    """
    Contents returned by ``resources/read``.

    Attributes:
        contents: Parsed content items; never None.
    """

    contents: list[Any] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.contents is None:
            self.contents = []

    @classmethod
    def from_result(cls, result: Any) -> ReadResourceResult:
        """Build a result from the ``result`` member of a ``resources/read`` response."""
        contents = result.get("contents") if isinstance(result, dict) else None
        if not isinstance(contents, list):
            return cls()
        return cls(contents=[parse_resource_content(item) for item in contents])


# =============================================================================
# Content Parsing
# =============================================================================


def parse_tool_content(content: Any) -> Any:
    """
    Parse the ``content`` member of a tool result.

    Args:
        content: Raw content value from the response.

    Returns:
        None when absent, a list of parsed items for a list, the unwrapped
        text for a single text object, otherwise the raw JSON text.

    Example:
        >>> parse_tool_content([{"type": "text", "text": "42"}])
        [{'type': 'text', 'text': '42'}]
        >>> parse_tool_content({"type": "text", "text": "42"})
        '42'
    """
    if content is None:
        return None

    if isinstance(content, list):
        return [_parse_item(item, allow_blob=False) for item in content]

    if isinstance(content, dict) and "text" in content:
        return _as_text(content["text"])

    return _raw_text(content)


def parse_resource_content(content: Any) -> Any:
    """
    Parse one entry of a ``resources/read`` ``contents`` list.

    Typed text and blob items keep their ``type`` and payload, an untyped
    object with ``text`` unwraps to the text, anything else falls back to its
    raw JSON text.
    """
    if isinstance(content, dict) and "text" in content and "type" not in content:
        return _as_text(content["text"])
    return _parse_item(content, allow_blob=True)


def _parse_item(item: Any, *, allow_blob: bool) -> Any:
    if isinstance(item, dict) and "type" in item:
        if "text" in item:
            return {"type": _as_text(item["type"]), "text": _as_text(item["text"])}
        if allow_blob and "blob" in item:
            return {"type": _as_text(item["type"]), "blob": _as_text(item["blob"])}
    return _raw_text(item)


def _as_text(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return _raw_text(value)


def _raw_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))
