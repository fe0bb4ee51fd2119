"""Agent-to-client requests for one ACP session.

Wraps the requests the bridge sends to the editor on behalf of a session:

- session/request_permission, shown by the editor as a native permission
  dialog when a tool needs confirmation
- fs/read_text_file and fs/write_text_file, offered only when the client
  advertised the file system capability during initialize

Permission flow:
1. The agent loop asks before running a tool (manual mode only)
2. AcpClient sends session/request_permission with allow/reject options
3. The editor shows the dialog and answers with the selected option
4. The answer is mapped back to allowed/denied; "Allow always" is
   remembered for the rest of the session
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from pydantic import ValidationError

from .tool_metadata import get_tool_kind, get_tool_title
from .transport import JsonRpcProtocolError, StdioTransport
from .types import (
    ClientCapabilities,
    ClientMethod,
    PermissionOption,
    PermissionToolCall,
    ReadTextFileRequest,
    ReadTextFileResponse,
    RequestPermissionRequest,
    RequestPermissionResponse,
    SelectedPermissionOutcome,
    ToolCallStatus,
    WriteTextFileRequest,
)

logger = logging.getLogger(__name__)

ALLOW_ONCE = "allow_once"
ALLOW_ALWAYS = "allow_always"
REJECT_ONCE = "reject_once"

PERMISSION_OPTIONS = [
    PermissionOption(optionId=ALLOW_ONCE, name="Allow once", kind="allow_once"),
    PermissionOption(optionId=ALLOW_ALWAYS, name="Allow always", kind="allow_always"),
    PermissionOption(optionId=REJECT_ONCE, name="Reject", kind="reject_once"),
]


class AcpCapabilityError(Exception):
    """The client did not advertise the capability a request needs."""


class AcpClient:
    """Requests the bridge sends to the editor for one session.

    Args:
        transport: Transport the requests go out on
        session_id: Session the requests belong to
        capabilities: Capabilities the client advertised in initialize
        permission_timeout: Seconds to wait for a permission answer; None
            waits indefinitely
        always_allowed: Session-scoped set of tool names the user allowed
            permanently; shared with the session so it outlives this client
    """

    def __init__(
        self,
        transport: StdioTransport,
        session_id: str,
        capabilities: ClientCapabilities | None = None,
        permission_timeout: float | None = None,
        always_allowed: set[str] | None = None,
    ) -> None:
        self._transport = transport
        self._session_id = session_id
        self._capabilities = capabilities or ClientCapabilities()
        self._permission_timeout = permission_timeout
        self.always_allowed = always_allowed if always_allowed is not None else set()

    @property
    def can_read_files(self) -> bool:
        return self._capabilities.fs.readTextFile

    @property
    def can_write_files(self) -> bool:
        return self._capabilities.fs.writeTextFile

    # =========================================================================
    # Permissions
    # =========================================================================

    async def request_permission(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        tool_call_id: str | None = None,
    ) -> bool:
        """Ask the user whether ``tool_name`` may run.

        Returns True if allowed. A timeout, a cancelled dialog or a failed
        request all count as denied.
        """
        if tool_name in self.always_allowed:
            logger.debug(f"Using cached approval for {tool_name}")
            return True

        args = arguments or {}
        request = RequestPermissionRequest(
            sessionId=self._session_id,
            toolCall=PermissionToolCall(
                toolCallId=tool_call_id or f"approval_{uuid.uuid4().hex[:8]}",
                title=get_tool_title(tool_name, args),
                kind=get_tool_kind(tool_name),
                status=ToolCallStatus.PENDING,
                rawInput=args,
            ),
            options=PERMISSION_OPTIONS,
        )

        try:
            raw = await asyncio.wait_for(
                self._transport.request(ClientMethod.SESSION_REQUEST_PERMISSION, request),
                timeout=self._permission_timeout,
            )
            response = RequestPermissionResponse.model_validate(raw)
        except TimeoutError:
            logger.warning(
                f"Permission request for {tool_name} timed out after {self._permission_timeout}s"
            )
            return False
        except (JsonRpcProtocolError, ValidationError) as e:
            logger.warning(f"Permission request for {tool_name} failed: {e}")
            return False

        outcome = response.outcome
        if not isinstance(outcome, SelectedPermissionOutcome):
            logger.debug(f"Permission request for {tool_name} was cancelled")
            return False

        logger.debug(f"Permission response for {tool_name}: {outcome.optionId}")
        if outcome.optionId == ALLOW_ALWAYS:
            self.always_allowed.add(tool_name)
            return True
        return outcome.optionId == ALLOW_ONCE

    # =========================================================================
    # File System
    # =========================================================================

    async def read_text_file(
        self,
        path: str,
        line: int | None = None,
        limit: int | None = None,
    ) -> str:
        """Read a file through the editor, including unsaved buffer changes."""
        if not self.can_read_files:
            raise AcpCapabilityError("Client does not support fs/read_text_file")

        request = ReadTextFileRequest(
            sessionId=self._session_id,
            path=path,
            line=line,
            limit=limit,
        )
        raw = await self._transport.request(ClientMethod.FS_READ_TEXT_FILE, request)
        return ReadTextFileResponse.model_validate(raw).content

    async def write_text_file(self, path: str, content: str) -> None:
        """Write a file through the editor."""
        if not self.can_write_files:
            raise AcpCapabilityError("Client does not support fs/write_text_file")

        request = WriteTextFileRequest(
            sessionId=self._session_id,
            path=path,
            content=content,
        )
        await self._transport.request(ClientMethod.FS_WRITE_TEXT_FILE, request)
