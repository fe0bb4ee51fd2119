"""ACP type definitions.

Defines the message shapes of the Agent Client Protocol exchanged between
the bridge (agent side) and the editor (client side).
See: https://agentclientprotocol.com/protocol/schema

Note: Field names use camelCase to match the ACP protocol specification.
This is required for protocol compatibility - do not change to snake_case.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_serializer

# Protocol version (integer, negotiated during initialize)
PROTOCOL_VERSION = 1
SUPPORTED_PROTOCOL_VERSIONS = (1,)


class AcpModel(BaseModel):
    """Base model for ACP types with camelCase serialization."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )

    field_meta: dict[str, Any] | None = Field(default=None, alias="_meta")


def to_wire(model: BaseModel) -> dict[str, Any]:
    """Dump a model the way it travels on the wire."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# JSON-RPC 2.0 Base Types
# =============================================================================


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str
    method: str
    params: Any | None = None


class JsonRpcNotification(BaseModel):
    """JSON-RPC 2.0 notification (no response expected)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: Any | None = None


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any | None = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response.

    Serializes exactly one of ``result`` or ``error``. A successful response
    keeps ``"result": null`` when the result is empty.
    """

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str | None
    result: Any | None = None
    error: JsonRpcError | None = None

    @model_serializer(mode="wrap")
    def _serialize(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        data.setdefault("id", None)
        if self.error is None:
            data.pop("error", None)
            data.setdefault("result", None)
        else:
            data.pop("result", None)
        return data


IncomingMessage = Union[JsonRpcRequest, JsonRpcNotification, JsonRpcResponse]


class JsonRpcErrorCode:
    """JSON-RPC 2.0 error codes used by the bridge."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603

    # Application codes
    AGENT_ERROR = -32000
    PROTOCOL_ERROR = -32001


def parse_message(raw: Any) -> IncomingMessage | None:
    """Classify a decoded JSON value as request, response or notification.

    Presence of ``id`` and ``method`` means request, ``id`` with ``result``
    or ``error`` means response, ``method`` alone means notification.
    Anything else (or a shape that fails validation) returns None.
    """
    if not isinstance(raw, dict):
        return None

    has_id = "id" in raw and raw["id"] is not None
    has_method = "method" in raw
    is_reply = "result" in raw or "error" in raw

    try:
        if has_method and has_id:
            return JsonRpcRequest.model_validate(raw)
        if has_method:
            return JsonRpcNotification.model_validate(raw)
        if has_id and is_reply:
            return JsonRpcResponse.model_validate(raw)
    except ValidationError:
        return None
    return None


# =============================================================================
# Method Names
# =============================================================================


class AgentMethod:
    """Methods the client calls on the agent."""

    INITIALIZE = "initialize"
    INITIALIZED = "initialized"
    SESSION_NEW = "session/new"
    SESSION_LOAD = "session/load"
    SESSION_PROMPT = "session/prompt"
    SESSION_CANCEL = "session/cancel"
    SESSION_SET_MODE = "session/set_mode"
    SESSION_SET_CONFIG_OPTION = "session/set_config_option"
    SESSION_LIST = "session/list"
    SESSION_DELETE = "session/delete"


class ClientMethod:
    """Methods the agent calls on the client."""

    SESSION_UPDATE = "session/update"
    SESSION_REQUEST_PERMISSION = "session/request_permission"
    FS_READ_TEXT_FILE = "fs/read_text_file"
    FS_WRITE_TEXT_FILE = "fs/write_text_file"


# =============================================================================
# Capability Types
# =============================================================================


class FileSystemCapability(AcpModel):
    """Client file system capabilities."""

    readTextFile: bool = False
    writeTextFile: bool = False


class ClientCapabilities(AcpModel):
    """Capabilities supported by the client."""

    fs: FileSystemCapability = Field(default_factory=FileSystemCapability)
    terminal: bool = False


class PromptCapabilities(AcpModel):
    """Prompt content kinds the agent accepts besides text."""

    audio: bool = False
    embeddedContext: bool = False
    image: bool = False


class McpCapabilities(AcpModel):
    """Auxiliary tool-server transports the agent accepts."""

    http: bool = False
    sse: bool = False


class SessionCapabilities(AcpModel):
    """Optional session methods the agent supports."""

    list: dict[str, Any] | None = None


class AgentCapabilities(AcpModel):
    """Capabilities supported by the agent."""

    loadSession: bool = False
    promptCapabilities: PromptCapabilities = Field(default_factory=PromptCapabilities)
    mcpCapabilities: McpCapabilities = Field(default_factory=McpCapabilities)
    sessionCapabilities: SessionCapabilities = Field(default_factory=SessionCapabilities)


class Implementation(AcpModel):
    """Name and version of a protocol participant."""

    name: str
    version: str
    title: str | None = None


class AuthMethod(AcpModel):
    """Authentication method."""

    id: str
    name: str
    description: str | None = None


# =============================================================================
# Initialize
# =============================================================================


class InitializeRequest(AcpModel):
    """Request parameters for the initialize method."""

    protocolVersion: int = PROTOCOL_VERSION
    clientCapabilities: ClientCapabilities = Field(default_factory=ClientCapabilities)
    clientInfo: Implementation | None = None


class InitializeResponse(AcpModel):
    """Response to the initialize method."""

    protocolVersion: int
    agentCapabilities: AgentCapabilities = Field(default_factory=AgentCapabilities)
    agentInfo: Implementation | None = None
    authMethods: list[AuthMethod] = Field(default_factory=list)


def negotiate_protocol_version(requested: int) -> int:
    """Echo a supported version, otherwise answer with the latest one."""
    if requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return PROTOCOL_VERSION


# =============================================================================
# MCP Server Configuration
# =============================================================================


class EnvVariable(AcpModel):
    """Environment variable passed to a stdio MCP server."""

    name: str
    value: str


class HttpHeader(AcpModel):
    """HTTP header passed to an http/sse MCP server."""

    name: str
    value: str


class McpServer(AcpModel):
    """Auxiliary tool server attached to a session.

    Stdio servers carry ``command``/``args``/``env``; http and sse servers
    carry ``type``/``url``/``headers``.
    """

    name: str
    type: Literal["stdio", "http", "sse"] = "stdio"
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: list[EnvVariable] = Field(default_factory=list)
    url: str | None = None
    headers: list[HttpHeader] = Field(default_factory=list)


# =============================================================================
# Session Modes and Config Options
# =============================================================================


class SessionMode(AcpModel):
    """Session mode definition."""

    id: str
    name: str
    description: str | None = None


class SessionModeState(AcpModel):
    """Session modes state."""

    availableModes: list[SessionMode] = Field(default_factory=list)
    currentModeId: str


class SessionConfigSelectOption(AcpModel):
    """One choice of a select config option."""

    value: str
    name: str
    description: str | None = None


class SessionConfigOption(AcpModel):
    """A named enumerated setting with a current value."""

    id: str
    name: str
    description: str | None = None
    category: Literal["mode", "model", "thought_level"] | None = None
    type: Literal["select"] = "select"
    currentValue: str
    options: list[SessionConfigSelectOption] = Field(default_factory=list)


# =============================================================================
# Session Management
# =============================================================================


class NewSessionRequest(AcpModel):
    """Request parameters for creating a new session."""

    cwd: str
    mcpServers: list[McpServer] = Field(default_factory=list)


class NewSessionResponse(AcpModel):
    """Response from creating a new session."""

    sessionId: str
    modes: SessionModeState | None = None
    configOptions: list[SessionConfigOption] | None = None


class LoadSessionRequest(AcpModel):
    """Request parameters for loading an existing session."""

    sessionId: str
    cwd: str
    mcpServers: list[McpServer] = Field(default_factory=list)


class LoadSessionResponse(AcpModel):
    """Response from loading an existing session."""

    modes: SessionModeState | None = None
    configOptions: list[SessionConfigOption] | None = None


class SetSessionModeRequest(AcpModel):
    """Request parameters for setting a session mode."""

    sessionId: str
    modeId: str


class SetSessionModeResponse(AcpModel):
    """Response to session/set_mode method."""


class SetSessionConfigOptionRequest(AcpModel):
    """Request parameters for changing a config option."""

    sessionId: str
    configId: str
    value: Any


class SetSessionConfigOptionResponse(AcpModel):
    """Response to session/set_config_option with the full option set."""

    configOptions: list[SessionConfigOption] = Field(default_factory=list)


class ListSessionsRequest(AcpModel):
    """Request parameters for listing sessions."""

    cwd: str | None = None
    cursor: str | None = None


class SessionInfo(AcpModel):
    """Summary of one session for session/list."""

    sessionId: str
    cwd: str
    title: str | None = None
    updatedAt: str | None = None


class ListSessionsResponse(AcpModel):
    """Response from listing sessions."""

    sessions: list[SessionInfo] = Field(default_factory=list)
    nextCursor: str | None = None


class DeleteSessionRequest(AcpModel):
    """Request parameters for deleting a session."""

    sessionId: str


class DeleteSessionResponse(AcpModel):
    """Response to session/delete (empty on success)."""


# =============================================================================
# Content Types
# =============================================================================


class TextContentBlock(AcpModel):
    """Text content block."""

    type: Literal["text"] = "text"
    text: str


class ImageContentBlock(AcpModel):
    """Image content block."""

    type: Literal["image"] = "image"
    data: str  # Base64 encoded
    mimeType: str
    uri: str | None = None


class AudioContentBlock(AcpModel):
    """Audio content block."""

    type: Literal["audio"] = "audio"
    data: str  # Base64 encoded
    mimeType: str


class ResourceContentBlock(AcpModel):
    """Resource link content block (reference to external resource)."""

    type: Literal["resource_link"] = "resource_link"
    uri: str
    name: str | None = None
    title: str | None = None
    description: str | None = None
    mimeType: str | None = None
    size: int | None = None


class TextResourceContents(AcpModel):
    """Inline text of an embedded resource."""

    uri: str
    text: str
    mimeType: str | None = None


class BlobResourceContents(AcpModel):
    """Inline binary data of an embedded resource."""

    uri: str
    blob: str  # Base64 encoded
    mimeType: str | None = None


class EmbeddedResourceContentBlock(AcpModel):
    """Resource content block (embedded content)."""

    type: Literal["resource"] = "resource"
    resource: Union[TextResourceContents, BlobResourceContents]


ContentBlock = Annotated[
    Union[
        TextContentBlock,
        ImageContentBlock,
        AudioContentBlock,
        ResourceContentBlock,
        EmbeddedResourceContentBlock,
    ],
    Field(discriminator="type"),
]


def text_block(text: str) -> TextContentBlock:
    """Create a text content block."""
    return TextContentBlock(text=text)


# =============================================================================
# Prompt Turn
# =============================================================================


class PromptRequest(AcpModel):
    """Request parameters for sending a user prompt."""

    sessionId: str
    prompt: list[ContentBlock]


class StopReason(str, Enum):
    """Reason why the agent stopped processing."""

    END_TURN = "end_turn"
    MAX_TOKENS = "max_tokens"
    MAX_TURN_REQUESTS = "max_turn_requests"
    REFUSAL = "refusal"
    CANCELLED = "cancelled"


class PromptResponse(AcpModel):
    """Response from processing a user prompt."""

    stopReason: StopReason


class CancelNotification(AcpModel):
    """Notification to cancel the running prompt turn."""

    sessionId: str


# =============================================================================
# Tool Calls
# =============================================================================


class ToolKind(str, Enum):
    """Semantic kind of a tool call, used by clients for icons."""

    READ = "read"
    EDIT = "edit"
    DELETE = "delete"
    MOVE = "move"
    SEARCH = "search"
    EXECUTE = "execute"
    THINK = "think"
    FETCH = "fetch"
    OTHER = "other"


class ToolCallStatus(str, Enum):
    """Status of a tool call on the wire."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolCallLocation(AcpModel):
    """A file affected by a tool call."""

    path: str
    line: int | None = None


class ContentToolCallContent(AcpModel):
    """Regular content produced by a tool call."""

    type: Literal["content"] = "content"
    content: ContentBlock


class FileEditToolCallContent(AcpModel):
    """File modification: the full new text of ``path``."""

    type: Literal["diff"] = "diff"
    path: str
    oldText: str | None = None
    newText: str


ToolCallContent = Annotated[
    Union[ContentToolCallContent, FileEditToolCallContent],
    Field(discriminator="type"),
]


# =============================================================================
# Plans and Commands
# =============================================================================


class PlanEntry(AcpModel):
    """An ordered unit of work reported as part of a plan."""

    content: str
    priority: Literal["high", "medium", "low"] = "medium"
    status: Literal["pending", "in_progress", "completed"] = "pending"


class AvailableCommandInput(AcpModel):
    """Hint shown for a command's free-form argument."""

    hint: str


class AvailableCommand(AcpModel):
    """Slash command advertised to the client."""

    name: str
    description: str
    input: AvailableCommandInput | None = None


# =============================================================================
# Session Update (Agent -> Client notifications)
# =============================================================================


class UserMessageChunk(AcpModel):
    """Replayed user message content."""

    sessionUpdate: Literal["user_message_chunk"] = "user_message_chunk"
    content: ContentBlock


class AgentMessageChunk(AcpModel):
    """Streamed agent response content."""

    sessionUpdate: Literal["agent_message_chunk"] = "agent_message_chunk"
    content: ContentBlock


class AgentThoughtChunk(AcpModel):
    """Streamed agent reasoning content."""

    sessionUpdate: Literal["agent_thought_chunk"] = "agent_thought_chunk"
    content: ContentBlock


class ToolCallStart(AcpModel):
    """A new tool call started."""

    sessionUpdate: Literal["tool_call"] = "tool_call"
    toolCallId: str
    title: str
    kind: ToolKind = ToolKind.OTHER
    status: ToolCallStatus = ToolCallStatus.PENDING
    locations: list[ToolCallLocation] | None = None
    content: list[ToolCallContent] | None = None
    rawInput: Any | None = None


class ToolCallProgress(AcpModel):
    """Update to an existing tool call; unset fields stay unchanged."""

    sessionUpdate: Literal["tool_call_update"] = "tool_call_update"
    toolCallId: str
    status: ToolCallStatus | None = None
    title: str | None = None
    kind: ToolKind | None = None
    locations: list[ToolCallLocation] | None = None
    content: list[ToolCallContent] | None = None
    rawOutput: Any | None = None


class AgentPlanUpdate(AcpModel):
    """Full replacement of the current plan."""

    sessionUpdate: Literal["plan"] = "plan"
    entries: list[PlanEntry] = Field(default_factory=list)


class AvailableCommandsUpdate(AcpModel):
    """Slash commands available in the session."""

    sessionUpdate: Literal["available_commands_update"] = "available_commands_update"
    availableCommands: list[AvailableCommand] = Field(default_factory=list)


class CurrentModeUpdate(AcpModel):
    """The session's mode changed."""

    sessionUpdate: Literal["current_mode_update"] = "current_mode_update"
    currentModeId: str


class ConfigOptionUpdate(AcpModel):
    """The session's config options changed."""

    sessionUpdate: Literal["config_option_update"] = "config_option_update"
    configOptions: list[SessionConfigOption] = Field(default_factory=list)


class SessionInfoUpdate(AcpModel):
    """Session metadata changed."""

    sessionUpdate: Literal["session_info_update"] = "session_info_update"
    title: str | None = None
    updatedAt: str | None = None


SessionUpdate = Annotated[
    Union[
        UserMessageChunk,
        AgentMessageChunk,
        AgentThoughtChunk,
        ToolCallStart,
        ToolCallProgress,
        AgentPlanUpdate,
        AvailableCommandsUpdate,
        CurrentModeUpdate,
        ConfigOptionUpdate,
        SessionInfoUpdate,
    ],
    Field(discriminator="sessionUpdate"),
]


class SessionNotification(AcpModel):
    """Params of a session/update notification."""

    sessionId: str
    update: SessionUpdate


def update_agent_message(text: str) -> AgentMessageChunk:
    """Create an agent_message_chunk update carrying text."""
    return AgentMessageChunk(content=text_block(text))


def update_agent_thought(text: str) -> AgentThoughtChunk:
    """Create an agent_thought_chunk update carrying text."""
    return AgentThoughtChunk(content=text_block(text))


def update_user_message(text: str) -> UserMessageChunk:
    """Create a user_message_chunk update carrying text."""
    return UserMessageChunk(content=text_block(text))


# =============================================================================
# Permission Request (Client Method)
# =============================================================================


class PermissionOption(AcpModel):
    """A choice offered in a permission request."""

    optionId: str
    name: str
    kind: Literal["allow_once", "allow_always", "reject_once", "reject_always"]


class PermissionToolCall(AcpModel):
    """The tool call a permission request is about."""

    toolCallId: str
    title: str | None = None
    kind: ToolKind | None = None
    status: ToolCallStatus | None = None
    rawInput: Any | None = None


class RequestPermissionRequest(AcpModel):
    """Request user authorization for a tool call."""

    sessionId: str
    toolCall: PermissionToolCall
    options: list[PermissionOption]


class SelectedPermissionOutcome(AcpModel):
    """The user picked one of the offered options."""

    outcome: Literal["selected"] = "selected"
    optionId: str


class CancelledPermissionOutcome(AcpModel):
    """The prompt turn was cancelled before the user answered."""

    outcome: Literal["cancelled"] = "cancelled"


class RequestPermissionResponse(AcpModel):
    """Response to a permission request."""

    outcome: Annotated[
        Union[SelectedPermissionOutcome, CancelledPermissionOutcome],
        Field(discriminator="outcome"),
    ]


# =============================================================================
# File System Operations (Client Methods)
# =============================================================================


class ReadTextFileRequest(AcpModel):
    """Request to read content from a text file."""

    sessionId: str
    path: str
    line: int | None = None  # 1-based line number
    limit: int | None = None  # Max lines to read


class ReadTextFileResponse(AcpModel):
    """Response containing the contents of a text file."""

    content: str


class WriteTextFileRequest(AcpModel):
    """Request to write content to a text file."""

    sessionId: str
    path: str
    content: str


class WriteTextFileResponse(AcpModel):
    """Response from writing a text file."""
