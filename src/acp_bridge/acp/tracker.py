"""Tool-call lifecycle tracking for one prompt turn.

The agent loop reports tool invocations and tool results through callbacks
that do not always carry a stable call identifier. The tracker assigns each
invocation an ACP ``toolCallId``, remembers it under a correlation key, and
resolves the matching result:

1. exact match on the agent loop's call id, when it supplied one;
2. otherwise the oldest pending invocation with the same tool name (FIFO).

The FIFO fallback considers every pending invocation of the tool, including
ones recorded under the agent loop's own call id, so a result whose id was
lost or rewritten still closes its call. It is a heuristic: two interleaved
calls of the same tool without matching ids can be attributed to the wrong
invocation.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .tool_metadata import get_tool_kind, get_tool_title, path_argument
from .types import ToolKind

logger = logging.getLogger(__name__)

# Tools whose invocation carries the file's new content.
FILE_WRITE_TOOLS = frozenset({"write_file", "edit_file"})


class ToolCallPhase(str, Enum):
    """Lifecycle phase reported for a tool call."""

    RUNNING = "running"
    FINISHED = "finished"
    ERROR = "error"


@dataclass(frozen=True)
class ToolCallEvent:
    """A lifecycle transition of one tracked tool call."""

    tool_call_id: str
    tool_name: str
    kind: ToolKind
    title: str
    phase: ToolCallPhase
    locations: tuple[str, ...] = ()
    raw_input: dict[str, Any] | None = None
    output: Any | None = None


@dataclass(frozen=True)
class FileEdit:
    """New full text of a file written by a tool call."""

    tool_call_id: str
    uri: str
    new_text: str


@dataclass
class _TrackedCall:
    tool_call_id: str
    tool_name: str
    kind: ToolKind
    title: str
    locations: tuple[str, ...]


def new_tool_call_ids() -> Iterator[int]:
    """Counter for tool call ids; share one per process so ids are never reused."""
    return itertools.count(1)


def path_to_uri(path: str, workspace_root: str) -> str:
    """Resolve ``path`` against the workspace root and return a file:// URI."""
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = Path(workspace_root) / candidate
    return candidate.as_uri()


@dataclass
class ToolCallTracker:
    """Maps agent-loop tool invocations to ACP tool call identities."""

    workspace_root: str
    ids: Iterator[int] = field(default_factory=new_tool_call_ids)
    _entries: dict[str, _TrackedCall] = field(default_factory=dict, init=False)

    @property
    def pending(self) -> int:
        """Number of invocations still waiting for a result."""
        return len(self._entries)

    def start(
        self,
        tool_name: str,
        parameters: dict[str, Any] | None = None,
        call_id: str | None = None,
    ) -> tuple[ToolCallEvent, FileEdit | None]:
        """Track a new invocation and return its ``running`` event.

        Write and edit tools also return the file edit they carry.
        """
        params = parameters or {}
        counter = next(self.ids)
        tool_call_id = f"tc_{counter}"

        locations: tuple[str, ...] = ()
        file_path = path_argument(params)
        if file_path:
            locations = (path_to_uri(file_path, self.workspace_root),)

        tracked = _TrackedCall(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            kind=get_tool_kind(tool_name),
            title=get_tool_title(tool_name, params),
            locations=locations,
        )
        key = call_id or f"{tool_name}_{counter}"
        self._entries[key] = tracked

        event = ToolCallEvent(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            kind=tracked.kind,
            title=tracked.title,
            phase=ToolCallPhase.RUNNING,
            locations=locations,
            raw_input=params,
        )

        edit = None
        if tool_name in FILE_WRITE_TOOLS and locations:
            new_text = params.get("content", params.get("new_text", ""))
            edit = FileEdit(
                tool_call_id=tool_call_id,
                uri=locations[0],
                new_text="" if new_text is None else str(new_text),
            )
        return event, edit

    def finish(
        self,
        tool_name: str,
        success: bool,
        call_id: str | None = None,
        output: Any | None = None,
    ) -> ToolCallEvent | None:
        """Resolve a result to its invocation and return the terminal event.

        Returns None when no tracked invocation matches; such results cannot
        be attributed to a client-visible tool call.
        """
        key = self._resolve_key(tool_name, call_id)
        if key is None:
            logger.debug(f"Dropping result for untracked tool call {tool_name} ({call_id})")
            return None

        tracked = self._entries.pop(key)
        return ToolCallEvent(
            tool_call_id=tracked.tool_call_id,
            tool_name=tracked.tool_name,
            kind=tracked.kind,
            title=tracked.title,
            phase=ToolCallPhase.FINISHED if success else ToolCallPhase.ERROR,
            locations=tracked.locations,
            output=output,
        )

    def _resolve_key(self, tool_name: str, call_id: str | None) -> str | None:
        if call_id and call_id in self._entries:
            return call_id
        # Dicts keep insertion order, so the first hit is the oldest pending call
        for key, tracked in self._entries.items():
            if tracked.tool_name == tool_name:
                return key
        return None

    def clear(self) -> None:
        """Forget all pending invocations."""
        self._entries.clear()
