"""Shared tool metadata for ACP integration.

Single source of truth for how an agent-loop tool is shown to the client:
its ACP kind and a human-readable title built from the tool's primary
argument.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .types import ToolKind

# Argument keys checked, in order, for the argument a title is built from.
PRIMARY_ARGUMENT_KEYS = ("path", "file", "file_path", "url", "command", "pattern", "query")

# Argument keys that name a file the tool touches.
PATH_ARGUMENT_KEYS = ("path", "file", "file_path")


@dataclass(frozen=True)
class ToolMeta:
    """Metadata for a tool's ACP display properties.

    Attributes:
        kind: ACP tool kind (read, edit, delete, move, search, execute, fetch, think, other)
        title_fn: Function to generate human-readable title from arguments
    """

    kind: ToolKind
    title_fn: Callable[[dict[str, Any]], str]


def _truncate(s: str, max_len: int = 50) -> str:
    """Truncate string with ellipsis if too long."""
    return s[:max_len] + "..." if len(s) > max_len else s


def primary_argument(arguments: dict[str, Any]) -> str:
    """Return the first non-empty argument among PRIMARY_ARGUMENT_KEYS."""
    for key in PRIMARY_ARGUMENT_KEYS:
        value = arguments.get(key)
        if value not in (None, ""):
            return str(value)
    return ""


def path_argument(arguments: dict[str, Any]) -> str:
    """Return the file path a tool operates on, or an empty string."""
    for key in PATH_ARGUMENT_KEYS:
        value = arguments.get(key)
        if value not in (None, ""):
            return str(value)
    return ""


def _file_label(arguments: dict[str, Any]) -> str:
    path = path_argument(arguments)
    return f" {path.rstrip('/').split('/')[-1]}" if path else ""


# =============================================================================
# Tool Metadata Registry
# =============================================================================

TOOL_METADATA: dict[str, ToolMeta] = {
    # File operations
    "read_file": ToolMeta(
        kind=ToolKind.READ,
        title_fn=lambda args: f"Reading{_file_label(args)}",
    ),
    "write_file": ToolMeta(
        kind=ToolKind.EDIT,
        title_fn=lambda args: f"Writing{_file_label(args)}",
    ),
    "edit_file": ToolMeta(
        kind=ToolKind.EDIT,
        title_fn=lambda args: f"Editing{_file_label(args)}",
    ),
    "delete_file": ToolMeta(
        kind=ToolKind.DELETE,
        title_fn=lambda args: f"Deleting{_file_label(args)}",
    ),
    "move_file": ToolMeta(
        kind=ToolKind.MOVE,
        title_fn=lambda args: f"Moving{_file_label(args)}",
    ),
    "list_files": ToolMeta(
        kind=ToolKind.READ,
        title_fn=lambda args: f"Listing files{_file_label(args)}",
    ),
    # Search operations
    "search_files": ToolMeta(
        kind=ToolKind.SEARCH,
        title_fn=lambda args: f"Searching{_file_label(args) or ' files'}",
    ),
    "find_files": ToolMeta(
        kind=ToolKind.SEARCH,
        title_fn=lambda args: f"Finding files: {args.get('pattern', '*')}",
    ),
    # Execution
    "run_command": ToolMeta(
        kind=ToolKind.EXECUTE,
        title_fn=lambda args: f"Running: {_truncate(str(args.get('command', '')))}",
    ),
    # Web operations
    "web_fetch": ToolMeta(
        kind=ToolKind.FETCH,
        title_fn=lambda args: f"Fetching {_truncate(str(args.get('url', '')))}",
    ),
    "web_search": ToolMeta(
        kind=ToolKind.SEARCH,
        title_fn=lambda args: f"Searching: {_truncate(str(args.get('query', '...')))}",
    ),
}


# =============================================================================
# Public API
# =============================================================================


def get_tool_title(tool_name: str, arguments: dict[str, Any]) -> str:
    """Generate a human-readable title for a tool call.

    Args:
        tool_name: Name of the tool being called
        arguments: Tool arguments dictionary

    Returns:
        Title for display in the client; unknown tools use their name,
        followed by their primary argument when there is one

    Example:
        >>> get_tool_title("read_file", {"path": "src/main.py"})
        'Reading main.py'
    """
    meta = TOOL_METADATA.get(tool_name)
    if meta:
        try:
            return meta.title_fn(arguments)
        except Exception:
            pass

    argument = primary_argument(arguments)
    return f"{tool_name}: {_truncate(argument)}" if argument else tool_name


def get_tool_kind(tool_name: str) -> ToolKind:
    """Get the ACP tool kind for a tool.

    Example:
        >>> get_tool_kind("run_command")
        <ToolKind.EXECUTE: 'execute'>
        >>> get_tool_kind("unknown_tool")
        <ToolKind.OTHER: 'other'>
    """
    meta = TOOL_METADATA.get(tool_name)
    return meta.kind if meta else ToolKind.OTHER


def register_tool_metadata(
    tool_name: str,
    kind: ToolKind | str,
    title_fn: Callable[[dict[str, Any]], str],
) -> None:
    """Register metadata for a custom tool.

    Allows agent loops to register their own tools for proper ACP display.
    """
    TOOL_METADATA[tool_name] = ToolMeta(kind=ToolKind(kind), title_fn=title_fn)
