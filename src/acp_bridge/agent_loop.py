"""Interface between the bridge and the agent loop it drives.

The agent loop (prompt construction, provider selection, retries) lives
outside the bridge. It receives the prompt, the workspace context and an
AgentRunOptions whose callback table it calls while it works; it returns an
AgentRunResult when it is done.

Usage:
    class MyLoop:
        async def run(self, prompt, context, options):
            options.callbacks.on_chunk("Hello")
            return AgentRunResult(success=True, final_response="Hello")
"""

from __future__ import annotations

import asyncio
import importlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .acp.client import AcpClient
    from .acp.types import PlanEntry
    from .context import ProjectContext

logger = logging.getLogger(__name__)


def _noop(*args: Any, **kwargs: Any) -> None:
    return None


@dataclass(frozen=True)
class AgentCallbacks:
    """Fixed set of callback slots the agent loop reports through.

    Every slot defaults to a no-op, so an agent loop can call any of them
    whether or not the caller is interested.
    """

    on_chunk: Callable[[str], None] = _noop
    on_thought: Callable[[str], None] = _noop
    on_iteration: Callable[[int, str], None] = _noop
    on_tool_call: Callable[[str, dict[str, Any], str | None], None] = _noop
    on_tool_result: Callable[[str, bool, str | None, Any], None] = _noop
    on_plan: Callable[[list[PlanEntry]], None] = _noop


PermissionRequester = Callable[[str, dict[str, Any]], Awaitable[bool]]


@dataclass
class ChatMessage:
    """One entry of a session's in-memory conversation history."""

    role: str  # "user" or "assistant"
    content: str


@dataclass
class AgentRunOptions:
    """Everything the agent loop gets besides the prompt and context.

    Attributes:
        cancel_event: Set when the client cancels the turn; the loop should
            stop producing callbacks and return promptly
        callbacks: Where to report streamed output and tool activity
        history: Earlier turns of this session, oldest first
        mode: Current session mode id
        settings: Current config option values (e.g. {"model": "..."})
        request_permission: Ask the user before running a tool; present
            only when the session requires confirmation
        client: Access to the client's file system, if it offers one
    """

    cancel_event: asyncio.Event
    callbacks: AgentCallbacks = field(default_factory=AgentCallbacks)
    history: list[ChatMessage] = field(default_factory=list)
    mode: str = ""
    settings: dict[str, str] = field(default_factory=dict)
    request_permission: PermissionRequester | None = None
    client: AcpClient | None = None


@dataclass
class AgentRunResult:
    """Outcome of one agent loop run."""

    success: bool
    final_response: str = ""
    cancelled: bool = False
    error: str | None = None


@runtime_checkable
class AgentLoop(Protocol):
    """Protocol implemented by agent loops the bridge can drive."""

    async def run(
        self,
        prompt: str,
        context: ProjectContext,
        options: AgentRunOptions,
    ) -> AgentRunResult: ...


class EchoAgentLoop:
    """Agent loop that streams the prompt back word by word.

    Used when no agent loop is configured, which keeps the bridge usable
    for wiring up and testing an editor integration.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    async def run(
        self,
        prompt: str,
        context: ProjectContext,
        options: AgentRunOptions,
    ) -> AgentRunResult:
        options.callbacks.on_thought(f"Echoing prompt in {context.name}")
        words = prompt.split(" ")
        for index, word in enumerate(words):
            if options.cancel_event.is_set():
                return AgentRunResult(success=False, cancelled=True)
            options.callbacks.on_chunk(word if index == 0 else f" {word}")
            if self.delay:
                await asyncio.sleep(self.delay)
        return AgentRunResult(success=True, final_response=prompt)


def load_agent_loop(spec: str) -> AgentLoop:
    """Load an agent loop from a ``module:attribute`` import path.

    The attribute may be an agent loop instance, or a class/factory that
    returns one when called without arguments.
    """
    module_name, _, attr = spec.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Agent must be given as 'module:attribute', got {spec!r}")

    module = importlib.import_module(module_name)
    try:
        target = getattr(module, attr)
    except AttributeError as e:
        raise ValueError(f"Module {module_name!r} has no attribute {attr!r}") from e

    if isinstance(target, type) or not isinstance(target, AgentLoop):
        loop = target()
    else:
        loop = target
    if not isinstance(loop, AgentLoop):
        raise TypeError(f"{spec} did not produce an agent loop (missing async run())")

    logger.info(f"Loaded agent loop {spec}")
    return loop
