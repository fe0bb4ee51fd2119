"""ACP JSON-RPC transport layer.

Newline-delimited JSON-RPC 2.0 over stdio. One JSON document per line,
no length prefix. The transport owns the input buffer and the table of
agent-initiated requests awaiting a response; routing by method is left to
the handler registered with ``start()``.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import sys
from collections.abc import Callable
from typing import IO, Any

from pydantic import BaseModel

from .types import (
    IncomingMessage,
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    parse_message,
)

logger = logging.getLogger(__name__)

# Agent-initiated request ids start above this offset so they never collide
# with the small integers editors use for their own requests.
AGENT_REQUEST_ID_OFFSET = 1000

READ_CHUNK_SIZE = 64 * 1024

MessageHandler = Callable[[IncomingMessage], None]


class JsonRpcProtocolError(Exception):
    """Exception for JSON-RPC protocol errors."""

    def __init__(
        self,
        code: int,
        message: str,
        data: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


class StdioTransport:
    """ACP transport over stdio (stdin/stdout).

    Incoming bytes are fed through ``feed()``; every complete line is parsed
    and either resolves a pending agent-initiated request or is handed to the
    registered handler. Outgoing messages are written synchronously, so the
    order of ``notify``/``respond`` calls is the order on the wire.
    """

    def __init__(self, output: IO[str] | None = None) -> None:
        self._output = output
        self._handler: MessageHandler | None = None
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending_requests: dict[int | str, asyncio.Future[Any]] = {}
        self._next_request_id = AGENT_REQUEST_ID_OFFSET

    @property
    def pending_requests(self) -> int:
        """Number of agent-initiated requests still awaiting a response."""
        return len(self._pending_requests)

    def set_handler(self, handler: MessageHandler) -> None:
        """Set the handler for incoming requests and notifications."""
        self._handler = handler

    async def start(
        self,
        handler: MessageHandler,
        reader: asyncio.StreamReader | None = None,
    ) -> None:
        """Read from stdin (or ``reader``) until end-of-input.

        Returns once the client closes the channel; nothing can be exchanged
        after that point.
        """
        self.set_handler(handler)
        if reader is None:
            reader = await self._connect_stdin()

        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self.feed(chunk)

        # Flush a final line that arrived without a trailing newline
        self.feed(self._decoder.decode(b"", final=True) + "\n")
        logger.info("Input stream closed")

    async def _connect_stdin(self) -> asyncio.StreamReader:
        reader = asyncio.StreamReader()
        protocol = asyncio.StreamReaderProtocol(reader)
        loop = asyncio.get_running_loop()
        await loop.connect_read_pipe(lambda: protocol, sys.stdin)
        return reader

    # =========================================================================
    # Ingest
    # =========================================================================

    def feed(self, data: bytes | str) -> None:
        """Append incoming data and dispatch every complete line.

        The partial line after the last newline is kept for the next call,
        so chunk boundaries may fall anywhere, including inside a multi-byte
        character.
        """
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data

        if "\n" not in self._buffer:
            return

        complete, self._buffer = self._buffer.rsplit("\n", 1)
        for line in complete.split("\n"):
            self._process_line(line)

    def _process_line(self, line: str) -> None:
        stripped = line.strip()
        if not stripped:
            return

        try:
            raw = json.loads(stripped)
        except json.JSONDecodeError:
            logger.debug(f"Dropping malformed line: {stripped[:200]}")
            return

        message = parse_message(raw)
        if message is None:
            logger.debug(f"Dropping line that is not a JSON-RPC message: {stripped[:200]}")
            return

        if isinstance(message, JsonRpcResponse) and self._resolve_pending(message):
            return

        if self._handler is None:
            logger.warning(f"No handler registered, dropping {type(message).__name__}")
            return
        self._handler(message)

    def _resolve_pending(self, response: JsonRpcResponse) -> bool:
        """Complete the request ``response`` answers, if it is one of ours."""
        if response.id is None:
            return False
        future = self._pending_requests.pop(response.id, None)
        if future is None:
            return False

        if future.done():
            # The awaiting side gave up (cancelled); nothing to deliver.
            return True

        if response.error is not None:
            future.set_exception(
                JsonRpcProtocolError(
                    code=response.error.code,
                    message=response.error.message,
                    data=response.error.data,
                )
            )
        else:
            future.set_result(response.result)
        return True

    # =========================================================================
    # Outbound
    # =========================================================================

    def send(self, message: JsonRpcRequest | JsonRpcResponse | JsonRpcNotification) -> None:
        """Write one message as a single line and flush."""
        data = message.model_dump_json(exclude_none=True)
        out = self._output if self._output is not None else sys.stdout
        out.write(data + "\n")
        out.flush()

    def respond(self, request_id: int | str, result: Any) -> None:
        """Send a successful response to a client request."""
        self.send(JsonRpcResponse(id=request_id, result=_plain(result)))

    def error(
        self,
        request_id: int | str | None,
        code: int,
        message: str,
        data: Any | None = None,
    ) -> None:
        """Send an error response to a client request."""
        self.send(
            JsonRpcResponse(
                id=request_id,
                error=JsonRpcError(code=code, message=message, data=data),
            )
        )

    def notify(self, method: str, params: Any | None = None) -> None:
        """Send a notification; no reply is expected."""
        self.send(JsonRpcNotification(method=method, params=_plain(params)))

    async def request(self, method: str, params: Any | None = None) -> Any:
        """Send an agent-initiated request and wait for the client's answer.

        Raises JsonRpcProtocolError when the client answers with an error.
        There is no timeout; callers that need one wrap this call.
        """
        self._next_request_id += 1
        request_id = self._next_request_id

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future
        self.send(JsonRpcRequest(id=request_id, method=method, params=_plain(params)))

        try:
            return await future
        finally:
            self._pending_requests.pop(request_id, None)


def _plain(value: Any) -> Any:
    """Turn pydantic models into wire dicts; pass anything else through."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


def create_error_response(
    request_id: int | str | None,
    code: int = JsonRpcErrorCode.INTERNAL_ERROR,
    message: str = "Internal error",
    data: Any | None = None,
) -> JsonRpcResponse:
    """Create a JSON-RPC error response."""
    return JsonRpcResponse(
        id=request_id,
        error=JsonRpcError(code=code, message=message, data=data),
    )
