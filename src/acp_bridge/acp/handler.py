"""ACP protocol handler.

Routes incoming JSON-RPC traffic to the ACP method handlers and owns the
in-memory session table. This is the agent side of the protocol:

- initialize: Negotiate protocol version and capabilities
- session/new: Create a new session
- session/load: Resume an in-memory session and replay its history
- session/prompt: Run a prompt turn (or a slash command)
- session/cancel: Cancel the running turn (notification)
- session/set_mode: Change the session mode
- session/set_config_option: Change a session config option
- session/list: List sessions, optionally filtered by cwd
- session/delete: Forget a session

Every request is handled on its own task, so a long session/prompt never
blocks a session/cancel arriving behind it.

See: https://agentclientprotocol.com/protocol/prompt-turn
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import IO, Any

from pydantic import ValidationError

from .. import __version__
from ..agent_loop import AgentLoop, ChatMessage
from ..config import BridgeConfig
from ..context import ContextProvider, ProjectContext
from .bridge import SessionBridge, TurnFailedError, TurnOptions
from .client import AcpClient
from .commands import AVAILABLE_COMMANDS, ParsedCommand, SlashCommandHandler, parse_slash_command
from .content import prompt_to_text
from .transport import JsonRpcProtocolError, StdioTransport
from .types import (
    AgentCapabilities,
    AgentMethod,
    AvailableCommandsUpdate,
    CancelNotification,
    ClientCapabilities,
    ConfigOptionUpdate,
    CurrentModeUpdate,
    DeleteSessionRequest,
    DeleteSessionResponse,
    Implementation,
    IncomingMessage,
    InitializeRequest,
    InitializeResponse,
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    ListSessionsRequest,
    ListSessionsResponse,
    LoadSessionRequest,
    LoadSessionResponse,
    McpServer,
    NewSessionRequest,
    NewSessionResponse,
    PromptCapabilities,
    PromptRequest,
    PromptResponse,
    SessionCapabilities,
    SessionConfigOption,
    SessionConfigSelectOption,
    SessionInfo,
    SessionInfoUpdate,
    SessionMode,
    SessionModeState,
    SetSessionConfigOptionRequest,
    SetSessionConfigOptionResponse,
    SetSessionModeRequest,
    SetSessionModeResponse,
    StopReason,
    negotiate_protocol_version,
    update_agent_message,
    update_user_message,
)

logger = logging.getLogger(__name__)

MODEL_CONFIG_ID = "model"
TITLE_MAX_LEN = 60


class TurnState(str, Enum):
    """State of a session's most recent prompt turn."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class AcpSession:
    """In-memory state of one ACP session."""

    session_id: str
    cwd: str
    mode: str
    settings: dict[str, str] = field(default_factory=dict)
    mcp_servers: list[McpServer] = field(default_factory=list)
    history: list[ChatMessage] = field(default_factory=list)
    title: str | None = None
    state: TurnState = TurnState.IDLE
    cancel_event: asyncio.Event | None = None
    always_allowed: set[str] = field(default_factory=set)
    client: AcpClient | None = None
    updated_at: str = field(default_factory=_now)

    @property
    def is_running(self) -> bool:
        return self.state is TurnState.RUNNING

    def touch(self) -> None:
        self.updated_at = _now()

    def cancel(self) -> bool:
        """Signal the running or claimed turn to stop; False if there is none."""
        if self.cancel_event is not None:
            self.cancel_event.set()
            return True
        return False


@dataclass
class _Reply:
    """A method result plus session updates to send after the response."""

    result: Any
    updates: list[tuple[str, Any]] = field(default_factory=list)


class AcpHandler:
    """Handles ACP protocol methods for the stdio bridge.

    Args:
        transport: Transport to answer on
        agent_loop: Agent loop driven for every prompt turn
        config: Bridge configuration (modes, models, timeouts)
        context_provider: Workspace context resolver passed to the bridge
        tool_call_ids: Process-wide tool call id counter
    """

    def __init__(
        self,
        transport: StdioTransport,
        agent_loop: AgentLoop,
        config: BridgeConfig | None = None,
        context_provider: ContextProvider | None = None,
        tool_call_ids: Iterator[int] | None = None,
    ) -> None:
        self.transport = transport
        self.config = config or BridgeConfig()
        self.bridge = SessionBridge(
            transport,
            agent_loop,
            context_provider=context_provider,
            tool_call_ids=tool_call_ids,
        )
        self._initialized = False
        self._client_capabilities = ClientCapabilities()
        self._sessions: dict[str, AcpSession] = {}
        self._tasks: set[asyncio.Task[None]] = set()

        self._handlers = {
            AgentMethod.SESSION_NEW: self._handle_session_new,
            AgentMethod.SESSION_LOAD: self._handle_session_load,
            AgentMethod.SESSION_PROMPT: self._handle_session_prompt,
            AgentMethod.SESSION_SET_MODE: self._handle_session_set_mode,
            AgentMethod.SESSION_SET_CONFIG_OPTION: self._handle_session_set_config_option,
            AgentMethod.SESSION_LIST: self._handle_session_list,
            AgentMethod.SESSION_DELETE: self._handle_session_delete,
        }

    @property
    def sessions(self) -> dict[str, AcpSession]:
        return self._sessions

    # =========================================================================
    # Dispatch
    # =========================================================================

    def handle_message(self, message: IncomingMessage) -> None:
        """Transport entry point for every message that is not one of our replies."""
        if isinstance(message, JsonRpcRequest):
            claimed = self._claim_turn(message)
            task = asyncio.create_task(self._dispatch_request(message, claimed))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif isinstance(message, JsonRpcNotification):
            self._handle_notification(message.method, message.params)
        else:
            logger.debug(f"Discarding response to unknown request id {message.id}")

    def _claim_turn(self, request: JsonRpcRequest) -> tuple[AcpSession, asyncio.Event] | None:
        """Give a session/prompt its cancel event before its task first runs.

        A session/cancel read in the same chunk is handled before the prompt
        task starts; the claimed event lets it reach that turn.
        """
        if request.method != AgentMethod.SESSION_PROMPT or not isinstance(request.params, dict):
            return None
        session_id = request.params.get("sessionId")
        session = self._sessions.get(session_id) if isinstance(session_id, str) else None
        if session is None or session.is_running or session.cancel_event is not None:
            return None
        session.cancel_event = asyncio.Event()
        return session, session.cancel_event

    async def _dispatch_request(
        self,
        request: JsonRpcRequest,
        claimed: tuple[AcpSession, asyncio.Event] | None = None,
    ) -> None:
        try:
            await self._answer_request(request)
        finally:
            # A claim that never became a turn (slash command, bad params) is released
            if claimed is not None:
                session, event = claimed
                if session.cancel_event is event and not session.is_running:
                    session.cancel_event = None

    async def _answer_request(self, request: JsonRpcRequest) -> None:
        try:
            result = await self._handle_request(request.method, request.params)
        except JsonRpcProtocolError as e:
            self.transport.error(request.id, e.code, e.message, e.data)
            return
        except ValidationError as e:
            self.transport.error(
                request.id,
                JsonRpcErrorCode.INVALID_PARAMS,
                f"Invalid params for {request.method}",
                [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
            )
            return
        except Exception as e:
            logger.exception(f"Error handling {request.method}: {e}")
            self.transport.error(
                request.id, JsonRpcErrorCode.INTERNAL_ERROR, str(e) or "Internal error"
            )
            return

        if isinstance(result, _Reply):
            self.transport.respond(request.id, result.result)
            for session_id, update in result.updates:
                self.bridge.send_update(session_id, update)
        else:
            self.transport.respond(request.id, result)

    async def _handle_request(self, method: str, params: Any) -> Any:
        """Route a request to its method handler."""
        params = {} if params is None else params

        if method == AgentMethod.INITIALIZE:
            return self._handle_initialize(params)

        if not self._initialized:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.PROTOCOL_ERROR,
                message="Not initialized. Call 'initialize' first.",
            )

        handler = self._handlers.get(method)
        if handler is None:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.METHOD_NOT_FOUND,
                message=f"Method not found: {method}",
            )
        return await handler(params)

    def _handle_notification(self, method: str, params: Any) -> None:
        if method == AgentMethod.SESSION_CANCEL:
            self._handle_session_cancel(params or {})
        elif method == AgentMethod.INITIALIZED:
            pass
        else:
            logger.warning(f"Unknown notification: {method}")

    async def shutdown(self) -> None:
        """Cancel running turns and wait for in-flight requests to finish."""
        for session in self._sessions.values():
            session.cancel()
        if not self._tasks:
            return
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    # =========================================================================
    # Initialization
    # =========================================================================

    def _handle_initialize(self, params: Any) -> InitializeResponse:
        request = InitializeRequest.model_validate(params)
        self._client_capabilities = request.clientCapabilities

        version = negotiate_protocol_version(request.protocolVersion)
        self._initialized = True
        logger.info(
            f"ACP initialized with protocol version {version} "
            f"(client asked for {request.protocolVersion})"
        )

        return InitializeResponse(
            protocolVersion=version,
            agentCapabilities=AgentCapabilities(
                loadSession=True,
                promptCapabilities=PromptCapabilities(embeddedContext=True),
                sessionCapabilities=SessionCapabilities(list={}),
            ),
            agentInfo=Implementation(name=self.config.agent_name, version=__version__),
            authMethods=[],
        )

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    def _create_session(
        self,
        session_id: str,
        cwd: str,
        mcp_servers: list[McpServer],
    ) -> AcpSession:
        session = AcpSession(
            session_id=session_id,
            cwd=cwd,
            mode=self.config.default_mode,
            mcp_servers=mcp_servers,
        )
        model = self.config.initial_model
        if model is not None:
            session.settings[MODEL_CONFIG_ID] = model
        session.client = AcpClient(
            self.transport,
            session_id,
            capabilities=self._client_capabilities,
            permission_timeout=self.config.permission_timeout,
            always_allowed=session.always_allowed,
        )
        self._sessions[session_id] = session
        return session

    def _get_session(self, session_id: str) -> AcpSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.INVALID_PARAMS,
                message=f"Unknown sessionId: {session_id}",
            )
        return session

    async def _handle_session_new(self, params: Any) -> _Reply:
        request = NewSessionRequest.model_validate(params)
        context = await self.bridge.resolve_context(request.cwd)
        session = self._create_session(str(uuid.uuid4()), request.cwd, request.mcpServers)
        logger.info(f"Created ACP session: {session.session_id} in {request.cwd}")

        response = NewSessionResponse(
            sessionId=session.session_id,
            modes=self._mode_state(session),
            configOptions=self._config_options(session),
        )
        return _Reply(response, updates=self._opening_updates(session, context, resumed=False))

    async def _handle_session_load(self, params: Any) -> _Reply:
        request = LoadSessionRequest.model_validate(params)
        context = await self.bridge.resolve_context(request.cwd)

        session = self._sessions.get(request.sessionId)
        if session is not None:
            session.cwd = request.cwd
            session.mcp_servers = request.mcpServers
            logger.info(f"Loaded ACP session: {request.sessionId}")
        else:
            # History does not outlive the process; start empty under the given id
            session = self._create_session(request.sessionId, request.cwd, request.mcpServers)
            logger.info(f"Session {request.sessionId} not in memory, starting it empty")

        for message in session.history:
            if message.role == "user":
                self.bridge.send_update(session.session_id, update_user_message(message.content))
            else:
                self.bridge.send_update(session.session_id, update_agent_message(message.content))

        response = LoadSessionResponse(
            modes=self._mode_state(session),
            configOptions=self._config_options(session),
        )
        return _Reply(response, updates=self._opening_updates(session, context, resumed=True))

    def _opening_updates(
        self, session: AcpSession, context: ProjectContext, resumed: bool
    ) -> list[tuple[str, Any]]:
        """Command list and welcome line sent after session/new and session/load."""
        verb = "Resumed" if resumed else "Started"
        welcome = f"{verb} session in `{context.root}`. {context.summary}".rstrip()
        return [
            (session.session_id, AvailableCommandsUpdate(availableCommands=AVAILABLE_COMMANDS)),
            (session.session_id, update_agent_message(welcome)),
        ]

    async def _handle_session_list(self, params: Any) -> ListSessionsResponse:
        request = ListSessionsRequest.model_validate(params)

        sessions = [
            s for s in self._sessions.values() if request.cwd is None or s.cwd == request.cwd
        ]
        sessions.sort(key=lambda s: s.updated_at, reverse=True)

        start = 0
        if request.cursor:
            try:
                start = int(request.cursor)
            except ValueError:
                start = -1
            if start < 0:
                raise JsonRpcProtocolError(
                    code=JsonRpcErrorCode.INVALID_PARAMS,
                    message=f"Invalid cursor: {request.cursor}",
                )

        end = start + self.config.list_page_size
        page = sessions[start:end]
        return ListSessionsResponse(
            sessions=[
                SessionInfo(
                    sessionId=s.session_id,
                    cwd=s.cwd,
                    title=s.title,
                    updatedAt=s.updated_at,
                )
                for s in page
            ],
            nextCursor=str(end) if end < len(sessions) else None,
        )

    async def _handle_session_delete(self, params: Any) -> DeleteSessionResponse:
        request = DeleteSessionRequest.model_validate(params)
        session = self._sessions.pop(request.sessionId, None)
        if session is None:
            logger.debug(f"Delete of unknown session {request.sessionId}")
        else:
            session.cancel()
            logger.info(f"Deleted ACP session: {request.sessionId}")
        return DeleteSessionResponse()

    # =========================================================================
    # Modes and config options
    # =========================================================================

    def _mode_state(self, session: AcpSession) -> SessionModeState:
        return SessionModeState(
            availableModes=[
                SessionMode(id=m.id, name=m.name, description=m.description)
                for m in self.config.modes
            ],
            currentModeId=session.mode,
        )

    def _config_options(self, session: AcpSession) -> list[SessionConfigOption] | None:
        if not self.config.models:
            return None
        return [
            SessionConfigOption(
                id=MODEL_CONFIG_ID,
                name="Model",
                description="AI model to use",
                category="model",
                currentValue=session.settings.get(MODEL_CONFIG_ID, ""),
                options=[
                    SessionConfigSelectOption(
                        value=m.value,
                        name=m.name,
                        description=m.description,
                    )
                    for m in self.config.models
                ],
            )
        ]

    async def _handle_session_set_mode(self, params: Any) -> _Reply:
        request = SetSessionModeRequest.model_validate(params)
        session = self._get_session(request.sessionId)

        if self.config.get_mode(request.modeId) is None:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.INVALID_PARAMS,
                message=f"Unknown modeId: {request.modeId}",
            )

        session.mode = request.modeId
        logger.info(f"Session {session.session_id} mode set to {request.modeId}")
        return _Reply(
            SetSessionModeResponse(),
            updates=[(session.session_id, CurrentModeUpdate(currentModeId=request.modeId))],
        )

    async def _handle_session_set_config_option(self, params: Any) -> _Reply:
        request = SetSessionConfigOptionRequest.model_validate(params)
        session = self._get_session(request.sessionId)

        options = self._config_options(session) or []
        option = next((o for o in options if o.id == request.configId), None)
        if option is None:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.INVALID_PARAMS,
                message=f"Unknown configId: {request.configId}",
            )
        if request.value not in [o.value for o in option.options]:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.INVALID_PARAMS,
                message=f"Invalid value for {request.configId}: {request.value}",
            )

        session.settings[request.configId] = request.value
        updated = self._config_options(session) or []
        return _Reply(
            SetSessionConfigOptionResponse(configOptions=updated),
            updates=[(session.session_id, ConfigOptionUpdate(configOptions=updated))],
        )

    # =========================================================================
    # Prompt turns
    # =========================================================================

    async def _handle_session_prompt(self, params: Any) -> PromptResponse:
        """Handle session/prompt.

        Follows the ACP prompt turn lifecycle:
        https://agentclientprotocol.com/protocol/prompt-turn
        """
        request = PromptRequest.model_validate(params)
        session = self._get_session(request.sessionId)

        if session.is_running:
            raise JsonRpcProtocolError(
                code=JsonRpcErrorCode.PROTOCOL_ERROR,
                message=f"A prompt turn is already running for session {session.session_id}",
            )

        text = prompt_to_text(request.prompt)
        command = parse_slash_command(text)
        if command is not None:
            self._run_slash_command(session, command)
            return PromptResponse(stopReason=StopReason.END_TURN)

        session.state = TurnState.RUNNING
        if session.cancel_event is None:
            session.cancel_event = asyncio.Event()
        mode = self.config.get_mode(session.mode)
        requester = None
        if mode is not None and mode.confirm_tools and session.client is not None:
            requester = session.client.request_permission
        options = TurnOptions(
            session_id=session.session_id,
            prompt=text,
            workspace_root=session.cwd,
            cancel_event=session.cancel_event,
            history=list(session.history),
            mode=session.mode,
            settings=dict(session.settings),
            request_permission=requester,
            client=session.client,
        )

        try:
            stop_reason = await self.bridge.run_turn(options)
        except TurnFailedError as e:
            session.state = TurnState.FAILED
            raise JsonRpcProtocolError(code=JsonRpcErrorCode.AGENT_ERROR, message=e.message) from e
        except Exception:
            session.state = TurnState.FAILED
            raise
        finally:
            session.cancel_event = None
            session.touch()

        if stop_reason is StopReason.CANCELLED:
            session.state = TurnState.CANCELLED
            logger.info(f"Turn cancelled for session {session.session_id}")
        else:
            session.state = TurnState.COMPLETED
            self._record_turn(session, text, "".join(options.response_parts))

        return PromptResponse(stopReason=stop_reason)

    def _record_turn(self, session: AcpSession, prompt: str, response: str) -> None:
        session.history.append(ChatMessage(role="user", content=prompt))
        if response:
            session.history.append(ChatMessage(role="assistant", content=response))

        if session.title is None and prompt.strip():
            first_line = prompt.strip().splitlines()[0]
            title = first_line[:TITLE_MAX_LEN] + ("..." if len(first_line) > TITLE_MAX_LEN else "")
            session.title = title
            self.bridge.send_update(
                session.session_id,
                SessionInfoUpdate(title=title, updatedAt=session.updated_at),
            )

    def _run_slash_command(self, session: AcpSession, command: ParsedCommand) -> None:
        result = SlashCommandHandler(session, self.config).execute(command)
        if result.message:
            self.bridge.send_update(session.session_id, update_agent_message(result.message))
        if result.mode_changed:
            self.bridge.send_update(
                session.session_id, CurrentModeUpdate(currentModeId=session.mode)
            )
        if result.config_changed:
            self.bridge.send_update(
                session.session_id,
                ConfigOptionUpdate(configOptions=self._config_options(session) or []),
            )
        session.touch()

    def _handle_session_cancel(self, params: Any) -> None:
        try:
            notification = CancelNotification.model_validate(params)
        except ValidationError as e:
            logger.warning(f"Ignoring malformed session/cancel: {e}")
            return

        session = self._sessions.get(notification.sessionId)
        if session is None:
            logger.debug(f"Cancel for unknown session {notification.sessionId}")
            return
        if session.cancel():
            logger.info(f"Cancelling turn for session {notification.sessionId}")


async def run_stdio_bridge(
    config: BridgeConfig,
    agent_loop: AgentLoop,
    reader: asyncio.StreamReader | None = None,
    output: IO[str] | None = None,
) -> None:
    """Serve ACP over stdio until the client closes the input stream."""
    transport = StdioTransport(output=output)
    handler = AcpHandler(transport, agent_loop, config=config)
    try:
        await transport.start(handler.handle_message, reader)
    finally:
        await handler.shutdown()
