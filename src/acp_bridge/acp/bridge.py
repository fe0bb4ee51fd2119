"""Prompt-turn orchestration between the agent loop and the ACP client.

One turn: resolve the workspace context, run the agent loop with a callback
table, translate every callback into a session/update notification in the
order it fires, and turn the loop's outcome into a stop reason.

Callback mapping:
- on_chunk -> agent_message_chunk
- on_thought -> agent_thought_chunk
- on_iteration -> debug log only
- on_tool_call -> tool_call (status in_progress), plus a tool_call_update
  carrying the diff for write/edit tools
- on_tool_result -> tool_call_update (status completed/failed)
- on_plan -> plan
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from ..agent_loop import (
    AgentCallbacks,
    AgentLoop,
    AgentRunOptions,
    AgentRunResult,
    ChatMessage,
    PermissionRequester,
)
from ..context import ContextProvider, ProjectContext, minimal_context, scan_project
from .client import AcpClient
from .tracker import FileEdit, ToolCallEvent, ToolCallPhase, ToolCallTracker, new_tool_call_ids
from .transport import StdioTransport
from .types import (
    AgentPlanUpdate,
    ClientMethod,
    FileEditToolCallContent,
    PlanEntry,
    SessionNotification,
    StopReason,
    ToolCallLocation,
    ToolCallProgress,
    ToolCallStart,
    ToolCallStatus,
    update_agent_message,
    update_agent_thought,
)

logger = logging.getLogger(__name__)

FALLBACK_FAILURE_MESSAGE = "Agent run failed without a specific error message"

_WIRE_STATUS = {
    ToolCallPhase.RUNNING: ToolCallStatus.IN_PROGRESS,
    ToolCallPhase.FINISHED: ToolCallStatus.COMPLETED,
    ToolCallPhase.ERROR: ToolCallStatus.FAILED,
}


class TurnFailedError(Exception):
    """The agent loop reported a failure that is not a cancellation."""

    def __init__(self, message: str | None = None) -> None:
        self.message = message or FALLBACK_FAILURE_MESSAGE
        super().__init__(self.message)


@dataclass
class TurnOptions:
    """Inputs of one prompt turn.

    ``response_parts`` collects the agent text sent to the client during the
    turn, so the caller can record the answer in the session history.
    """

    session_id: str
    prompt: str
    workspace_root: str
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    history: list[ChatMessage] = field(default_factory=list)
    mode: str = ""
    settings: dict[str, str] = field(default_factory=dict)
    request_permission: PermissionRequester | None = None
    client: AcpClient | None = None
    response_parts: list[str] = field(default_factory=list)


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool, dict, list)):
        return value
    return str(value)


class SessionBridge:
    """Runs prompt turns and streams their progress to the client.

    Args:
        transport: Transport the session/update notifications go out on
        agent_loop: The agent loop driven for every turn
        context_provider: Resolves the workspace context for a cwd;
            defaults to scanning the directory
        tool_call_ids: Counter for tool call ids, shared by every turn so
            ids are never reused within the process
    """

    def __init__(
        self,
        transport: StdioTransport,
        agent_loop: AgentLoop,
        context_provider: ContextProvider | None = None,
        tool_call_ids: Iterator[int] | None = None,
    ) -> None:
        self.transport = transport
        self.agent_loop = agent_loop
        self.context_provider = context_provider or scan_project
        self._tool_call_ids = tool_call_ids or new_tool_call_ids()

    async def resolve_context(self, root: str) -> ProjectContext:
        """Context for ``root``; a minimal one if the provider fails.

        The provider walks the file system, so it runs in a worker thread and
        the event loop keeps reading input (a session/cancel among it).
        """
        try:
            context = await asyncio.to_thread(self.context_provider, root)
        except Exception as e:
            logger.warning(f"Context scan of {root} failed: {e}")
            context = None
        return context or minimal_context(root)

    def send_update(self, session_id: str, update: Any) -> None:
        """Send one session/update notification."""
        self.transport.notify(
            ClientMethod.SESSION_UPDATE,
            SessionNotification(sessionId=session_id, update=update),
        )

    async def run_turn(self, options: TurnOptions) -> StopReason:
        """Run one prompt turn to completion.

        Returns END_TURN or CANCELLED; raises TurnFailedError when the agent
        loop fails.
        """
        session_id = options.session_id
        context = await self.resolve_context(options.workspace_root)
        tracker = ToolCallTracker(options.workspace_root, ids=self._tool_call_ids)
        streamed = 0
        active = True

        def on_chunk(text: str) -> None:
            nonlocal streamed
            if not active or not text:
                return
            streamed += 1
            options.response_parts.append(text)
            self.send_update(session_id, update_agent_message(text))

        def on_thought(text: str) -> None:
            if active and text:
                self.send_update(session_id, update_agent_thought(text))

        def on_iteration(iteration: int, status: str) -> None:
            logger.debug(f"Session {session_id} iteration {iteration}: {status}")

        def on_tool_call(
            tool_name: str,
            parameters: dict[str, Any] | None = None,
            call_id: str | None = None,
        ) -> None:
            if not active:
                return
            event, edit = tracker.start(tool_name, parameters, call_id)
            self._send_tool_start(session_id, event)
            if edit is not None:
                self._send_file_edit(session_id, edit)

        def on_tool_result(
            tool_name: str,
            success: bool,
            call_id: str | None = None,
            output: Any | None = None,
        ) -> None:
            if not active:
                return
            event = tracker.finish(tool_name, success, call_id, output)
            if event is not None:
                self._send_tool_end(session_id, event)

        def on_plan(entries: list[PlanEntry]) -> None:
            if active:
                self.send_update(session_id, AgentPlanUpdate(entries=list(entries)))

        run_options = AgentRunOptions(
            cancel_event=options.cancel_event,
            callbacks=AgentCallbacks(
                on_chunk=on_chunk,
                on_thought=on_thought,
                on_iteration=on_iteration,
                on_tool_call=on_tool_call,
                on_tool_result=on_tool_result,
                on_plan=on_plan,
            ),
            history=list(options.history),
            mode=options.mode,
            settings=dict(options.settings),
            request_permission=options.request_permission,
            client=options.client,
        )

        try:
            result: AgentRunResult = await self.agent_loop.run(
                options.prompt, context, run_options
            )
        except asyncio.CancelledError:
            logger.info(f"Turn cancelled for session {session_id}")
            return StopReason.CANCELLED
        except Exception as e:
            logger.warning(f"Agent loop raised for session {session_id}: {e}")
            raise TurnFailedError(str(e)) from e
        finally:
            active = False
            if tracker.pending:
                logger.debug(f"Discarding {tracker.pending} unresolved tool calls")
            tracker.clear()

        if result.cancelled or options.cancel_event.is_set():
            return StopReason.CANCELLED

        if not result.success:
            logger.warning(f"Turn failed for session {session_id}: {result.error}")
            raise TurnFailedError(result.error)

        if streamed == 0 and result.final_response:
            options.response_parts.append(result.final_response)
            self.send_update(session_id, update_agent_message(result.final_response))

        return StopReason.END_TURN

    # =========================================================================
    # Tool call notifications
    # =========================================================================

    def _send_tool_start(self, session_id: str, event: ToolCallEvent) -> None:
        self.send_update(
            session_id,
            ToolCallStart(
                toolCallId=event.tool_call_id,
                title=event.title or event.tool_name,
                kind=event.kind,
                status=_WIRE_STATUS[event.phase],
                locations=[ToolCallLocation(path=uri) for uri in event.locations] or None,
                rawInput=event.raw_input,
            ),
        )

    def _send_file_edit(self, session_id: str, edit: FileEdit) -> None:
        self.send_update(
            session_id,
            ToolCallProgress(
                toolCallId=edit.tool_call_id,
                content=[FileEditToolCallContent(path=edit.uri, newText=edit.new_text)],
            ),
        )

    def _send_tool_end(self, session_id: str, event: ToolCallEvent) -> None:
        self.send_update(
            session_id,
            ToolCallProgress(
                toolCallId=event.tool_call_id,
                status=_WIRE_STATUS[event.phase],
                rawOutput=_json_safe(event.output),
            ),
        )
