"""Agent Client Protocol (ACP) implementation.

ACP standardizes communication between code editors and AI coding agents.
This package provides the agent side over stdio, enabling editors like Zed,
JetBrains AI Assistant or Neovim to drive an agent loop.

Protocol: newline-delimited JSON-RPC 2.0 over stdio
See: https://agentclientprotocol.com
"""

from .bridge import FALLBACK_FAILURE_MESSAGE, SessionBridge, TurnFailedError, TurnOptions
from .client import AcpCapabilityError, AcpClient
from .commands import AVAILABLE_COMMANDS, SlashCommandResult, parse_slash_command
from .content import prompt_to_text
from .handler import AcpHandler, AcpSession, TurnState, run_stdio_bridge
from .tool_metadata import get_tool_kind, get_tool_title, register_tool_metadata
from .tracker import FileEdit, ToolCallEvent, ToolCallPhase, ToolCallTracker
from .transport import AGENT_REQUEST_ID_OFFSET, JsonRpcProtocolError, StdioTransport
from .types import (
    PROTOCOL_VERSION,
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    StopReason,
    ToolCallStatus,
    ToolKind,
    parse_message,
)

__all__ = [
    # Protocol
    "PROTOCOL_VERSION",
    "JsonRpcErrorCode",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "StopReason",
    "ToolCallStatus",
    "ToolKind",
    "parse_message",
    # Transport
    "AGENT_REQUEST_ID_OFFSET",
    "JsonRpcProtocolError",
    "StdioTransport",
    # Tool calls
    "FileEdit",
    "ToolCallEvent",
    "ToolCallPhase",
    "ToolCallTracker",
    "get_tool_kind",
    "get_tool_title",
    "register_tool_metadata",
    # Turns
    "FALLBACK_FAILURE_MESSAGE",
    "SessionBridge",
    "TurnFailedError",
    "TurnOptions",
    "prompt_to_text",
    # Handler
    "AVAILABLE_COMMANDS",
    "AcpCapabilityError",
    "AcpClient",
    "AcpHandler",
    "AcpSession",
    "SlashCommandResult",
    "TurnState",
    "parse_slash_command",
    "run_stdio_bridge",
]
