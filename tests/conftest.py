"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import io
import json
from typing import Any

import pytest

from acp_bridge.acp.transport import StdioTransport
from acp_bridge.agent_loop import AgentRunOptions, AgentRunResult
from acp_bridge.context import ProjectContext


class RecordingOutput(io.StringIO):
    """Captures what the transport writes and parses it back."""

    def messages(self) -> list[dict[str, Any]]:
        return [json.loads(line) for line in self.getvalue().splitlines() if line.strip()]

    def updates(self) -> list[dict[str, Any]]:
        """The ``update`` objects of every session/update notification, in order."""
        return [
            m["params"]["update"]
            for m in self.messages()
            if m.get("method") == "session/update"
        ]

    def responses(self) -> list[dict[str, Any]]:
        return [m for m in self.messages() if "method" not in m]

    def response_to(self, request_id: int | str) -> dict[str, Any] | None:
        return next((m for m in self.responses() if m.get("id") == request_id), None)


class ScriptedAgentLoop:
    """Agent loop that replays a fixed list of callback invocations.

    Each script step is ``(callback_name, *args)``; the loop yields to the
    event loop between steps.
    """

    def __init__(
        self,
        script: list[tuple[Any, ...]] | None = None,
        result: AgentRunResult | None = None,
        raises: Exception | None = None,
        wait_for_cancel: bool = False,
    ) -> None:
        self.script = script or []
        self.result = result or AgentRunResult(success=True)
        self.raises = raises
        self.wait_for_cancel = wait_for_cancel
        self.calls: list[tuple[str, ProjectContext, AgentRunOptions]] = []
        self.started = asyncio.Event()

    async def run(
        self,
        prompt: str,
        context: ProjectContext,
        options: AgentRunOptions,
    ) -> AgentRunResult:
        self.calls.append((prompt, context, options))
        self.started.set()
        for name, *args in self.script:
            getattr(options.callbacks, name)(*args)
            await asyncio.sleep(0)
        if self.wait_for_cancel:
            await options.cancel_event.wait()
            return AgentRunResult(success=False, cancelled=True)
        if self.raises is not None:
            raise self.raises
        return self.result


@pytest.fixture
def output() -> RecordingOutput:
    return RecordingOutput()


@pytest.fixture
def transport(output: RecordingOutput) -> StdioTransport:
    return StdioTransport(output=output)


@pytest.fixture
def scripted_loop() -> type[ScriptedAgentLoop]:
    """Factory for scripted agent loops."""
    return ScriptedAgentLoop


@pytest.fixture
def static_context():
    """Context provider that never touches the file system."""

    def provide(root: str) -> ProjectContext:
        return ProjectContext(root=root, name="proj", type="Python", summary="proj is a project.")

    return provide
