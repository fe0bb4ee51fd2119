"""Stdio isolation for the ACP bridge.

While serving, the process stdout carries nothing but JSON-RPC lines written
by the transport. ``reserve_stdout`` hands the real stream to the transport
and swaps ``sys.stdout`` for a stand-in that diverts any other write (a stray
``print`` in an agent loop, a chatty library) to stderr.

This module only imports the standard library so it can run before anything
else is imported.
"""

from __future__ import annotations

import io
import logging
import sys
from typing import IO

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
STRAY_PREFIX = "[stdout] "


class StrayStdout(io.TextIOBase):
    """Replacement for sys.stdout that writes to stderr.

    Every line is tagged with ``STRAY_PREFIX`` so it stands apart from log
    records. ``protocol_stream`` keeps the real stdout for the transport.
    """

    def __init__(self, protocol_stream: IO[str], stderr: IO[str]) -> None:
        super().__init__()
        self.protocol_stream = protocol_stream
        self._stderr = stderr
        self._line_start = True

    def writable(self) -> bool:
        return True

    def write(self, data: str) -> int:
        for piece in data.splitlines(keepends=True):
            if self._line_start:
                self._stderr.write(STRAY_PREFIX)
            self._stderr.write(piece)
            self._line_start = piece.endswith("\n")
        return len(data)

    def flush(self) -> None:
        self._stderr.flush()


def reserve_stdout() -> IO[str]:
    """Claim stdout for protocol traffic and return the real stream.

    Safe to call more than once; later calls return the stream claimed first.
    """
    if isinstance(sys.stdout, StrayStdout):
        return sys.stdout.protocol_stream
    protocol_stream = sys.stdout
    sys.stdout = StrayStdout(protocol_stream, sys.stderr)
    return protocol_stream


def configure_logging(level: int | str = logging.INFO) -> None:
    """Send every log record to stderr through a single root handler.

    Handlers attached to named loggers by earlier imports are dropped so
    nothing logs around the root handler.
    """
    for named in list(logging.Logger.manager.loggerDict.values()):
        if isinstance(named, logging.Logger):
            named.handlers.clear()
            named.propagate = True
    logging.basicConfig(stream=sys.stderr, level=level, format=LOG_FORMAT, force=True)
