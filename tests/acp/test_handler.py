"""Tests for AcpHandler method routing and session state.

Messages are handed to the handler the way the transport would; replies
are read back from the recorded output.
"""

from __future__ import annotations

import asyncio
import json
import threading
from typing import Any

import pytest

from acp_bridge import __version__
from acp_bridge.acp.handler import AcpHandler, TurnState
from acp_bridge.acp.types import JsonRpcErrorCode, parse_message
from acp_bridge.agent_loop import AgentRunResult
from acp_bridge.config import BridgeConfig, ModelConfig
from acp_bridge.context import ProjectContext

MODELS_CONFIG = BridgeConfig(
    models=[
        ModelConfig(value="a/one", name="One"),
        ModelConfig(value="b/two", name="Two"),
    ]
)


def _send(handler: AcpHandler, message: dict[str, Any]) -> None:
    handler.handle_message(parse_message({"jsonrpc": "2.0", **message}))


async def _drain(handler: AcpHandler) -> None:
    await asyncio.gather(*list(handler._tasks))


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


async def _request(
    handler: AcpHandler,
    output,
    request_id: int,
    method: str,
    params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    _send(handler, {"id": request_id, "method": method, "params": params})
    await _drain(handler)
    response = output.response_to(request_id)
    assert response is not None
    return response


def _prompt(session_id: str, text: str) -> dict[str, Any]:
    return {"sessionId": session_id, "prompt": [{"type": "text", "text": text}]}


@pytest.fixture
def make_handler(transport, scripted_loop, static_context):
    def make(loop=None, config: BridgeConfig | None = None) -> AcpHandler:
        return AcpHandler(
            transport,
            loop or scripted_loop(),
            config=config,
            context_provider=static_context,
        )

    return make


async def _initialized(handler: AcpHandler, output) -> None:
    await _request(handler, output, 0, "initialize", {"protocolVersion": 1})


async def _new_session(handler: AcpHandler, output, request_id: int = 1, cwd: str = "/proj") -> str:
    response = await _request(handler, output, request_id, "session/new", {"cwd": cwd})
    return response["result"]["sessionId"]


# =============================================================================
# Initialization Tests
# =============================================================================


class TestInitialize:
    """Protocol handshake."""

    @pytest.mark.asyncio
    async def test_initialize_response(self, make_handler, output) -> None:
        handler = make_handler()

        response = await _request(
            handler,
            output,
            0,
            "initialize",
            {"protocolVersion": 1, "clientCapabilities": {"fs": {"readTextFile": True}}},
        )

        result = response["result"]
        assert result["protocolVersion"] == 1
        capabilities = result["agentCapabilities"]
        assert capabilities["loadSession"] is True
        assert capabilities["promptCapabilities"]["embeddedContext"] is True
        assert capabilities["sessionCapabilities"] == {"list": {}}
        assert result["agentInfo"] == {"name": "acp-bridge", "version": __version__}
        assert result["authMethods"] == []

    @pytest.mark.asyncio
    async def test_newer_client_version_is_negotiated_down(self, make_handler, output) -> None:
        handler = make_handler()

        response = await _request(handler, output, 0, "initialize", {"protocolVersion": 42})

        assert response["result"]["protocolVersion"] == 1

    @pytest.mark.asyncio
    async def test_requests_before_initialize_are_rejected(self, make_handler, output) -> None:
        handler = make_handler()

        response = await _request(handler, output, 1, "session/new", {"cwd": "/proj"})

        assert response["error"]["code"] == JsonRpcErrorCode.PROTOCOL_ERROR
        assert handler.sessions == {}

    @pytest.mark.asyncio
    async def test_unknown_method(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)

        response = await _request(handler, output, 1, "session/teleport", {})

        assert response["error"] == {
            "code": JsonRpcErrorCode.METHOD_NOT_FOUND,
            "message": "Method not found: session/teleport",
        }

    @pytest.mark.asyncio
    async def test_invalid_params(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)

        response = await _request(handler, output, 1, "session/new", {})

        error = response["error"]
        assert error["code"] == JsonRpcErrorCode.INVALID_PARAMS
        assert error["data"][0]["loc"] == ["cwd"]

    @pytest.mark.asyncio
    async def test_unknown_notification_is_ignored(self, make_handler, output) -> None:
        handler = make_handler()

        _send(handler, {"method": "something/else", "params": {}})
        _send(handler, {"method": "initialized"})

        assert output.messages() == []


# =============================================================================
# Session Lifecycle Tests
# =============================================================================


class TestSessionLifecycle:
    """session/new, session/load, session/list and session/delete."""

    @pytest.mark.asyncio
    async def test_new_session(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)

        session_id = await _new_session(handler, output)

        response = output.response_to(1)
        assert response["result"]["modes"] == {
            "availableModes": [
                {
                    "id": "auto",
                    "name": "Auto",
                    "description": "Agent runs tools without confirmation",
                },
                {
                    "id": "manual",
                    "name": "Manual",
                    "description": "Confirm each tool call before it runs",
                },
            ],
            "currentModeId": "auto",
        }
        assert "configOptions" not in response["result"]

        messages = output.messages()
        assert messages[-3]["id"] == 1
        assert all(m["method"] == "session/update" for m in messages[-2:])
        assert all(m["params"]["sessionId"] == session_id for m in messages[-2:])
        update = messages[-2]["params"]["update"]
        assert update["sessionUpdate"] == "available_commands_update"
        assert [c["name"] for c in update["availableCommands"]] == [
            "help",
            "status",
            "mode",
            "model",
            "clear",
        ]
        assert messages[-1]["params"]["update"] == {
            "sessionUpdate": "agent_message_chunk",
            "content": {"type": "text", "text": "Started session in `/proj`. proj is a project."},
        }
        assert handler.sessions[session_id].cwd == "/proj"

    @pytest.mark.asyncio
    async def test_new_session_advertises_model_option(self, make_handler, output) -> None:
        handler = make_handler(config=MODELS_CONFIG)
        await _initialized(handler, output)

        session_id = await _new_session(handler, output)

        (option,) = output.response_to(1)["result"]["configOptions"]
        assert option["id"] == "model"
        assert option["type"] == "select"
        assert option["currentValue"] == "a/one"
        assert [o["value"] for o in option["options"]] == ["a/one", "b/two"]
        assert handler.sessions[session_id].settings == {"model": "a/one"}

    @pytest.mark.asyncio
    async def test_welcome_falls_back_when_scan_fails(
        self, transport, output, scripted_loop
    ) -> None:
        def broken(root: str):
            raise OSError("permission denied")

        handler = AcpHandler(transport, scripted_loop(), context_provider=broken)
        await _initialized(handler, output)

        await _new_session(handler, output, cwd="/work/app")

        assert output.updates()[-1]["content"]["text"] == (
            "Started session in `/work/app`. Workspace at /work/app"
        )

    @pytest.mark.asyncio
    async def test_session_ids_are_unique(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)

        first = await _new_session(handler, output, 1)
        second = await _new_session(handler, output, 2)

        assert first != second

    @pytest.mark.asyncio
    async def test_load_replays_history_before_responding(
        self, make_handler, output, scripted_loop
    ) -> None:
        loop = scripted_loop(script=[("on_chunk", "Hi there")])
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)
        await _request(handler, output, 2, "session/prompt", _prompt(session_id, "Hello"))
        before = len(output.messages())

        await _request(
            handler, output, 3, "session/load", {"sessionId": session_id, "cwd": "/proj"}
        )

        replay = output.messages()[before:]
        assert [m.get("method", "response") for m in replay] == [
            "session/update",
            "session/update",
            "response",
            "session/update",
            "session/update",
        ]
        assert replay[0]["params"]["update"] == {
            "sessionUpdate": "user_message_chunk",
            "content": {"type": "text", "text": "Hello"},
        }
        assert replay[1]["params"]["update"]["sessionUpdate"] == "agent_message_chunk"
        assert replay[1]["params"]["update"]["content"]["text"] == "Hi there"
        assert replay[2]["result"]["modes"]["currentModeId"] == "auto"
        assert replay[3]["params"]["update"]["sessionUpdate"] == "available_commands_update"
        assert replay[4]["params"]["update"]["content"]["text"] == (
            "Resumed session in `/proj`. proj is a project."
        )

    @pytest.mark.asyncio
    async def test_load_unknown_session_starts_empty(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)

        response = await _request(
            handler, output, 1, "session/load", {"sessionId": "old-id", "cwd": "/proj"}
        )

        assert "error" not in response
        assert handler.sessions["old-id"].history == []

    @pytest.mark.asyncio
    async def test_list_filters_and_paginates(self, make_handler, output) -> None:
        handler = make_handler(config=BridgeConfig(list_page_size=2))
        await _initialized(handler, output)
        ids = {
            await _new_session(handler, output, 1, "/proj"),
            await _new_session(handler, output, 2, "/proj"),
            await _new_session(handler, output, 3, "/proj"),
        }
        await _new_session(handler, output, 4, "/elsewhere")

        first = (await _request(handler, output, 5, "session/list", {"cwd": "/proj"}))["result"]
        second = (
            await _request(
                handler, output, 6, "session/list", {"cwd": "/proj", "cursor": first["nextCursor"]}
            )
        )["result"]

        assert len(first["sessions"]) == 2
        assert first["nextCursor"] == "2"
        assert len(second["sessions"]) == 1
        assert "nextCursor" not in second
        listed = {s["sessionId"] for s in first["sessions"] + second["sessions"]}
        assert listed == ids
        assert all(s["cwd"] == "/proj" for s in first["sessions"])

    @pytest.mark.asyncio
    async def test_list_without_filter(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)
        await _new_session(handler, output, 1, "/a")
        await _new_session(handler, output, 2, "/b")

        result = (await _request(handler, output, 3, "session/list", {}))["result"]

        assert {s["cwd"] for s in result["sessions"]} == {"/a", "/b"}

    @pytest.mark.asyncio
    async def test_list_rejects_bad_cursor(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)

        response = await _request(handler, output, 1, "session/list", {"cursor": "abc"})

        assert response["error"]["code"] == JsonRpcErrorCode.INVALID_PARAMS

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        first = await _request(handler, output, 2, "session/delete", {"sessionId": session_id})
        second = await _request(handler, output, 3, "session/delete", {"sessionId": session_id})

        assert first["result"] == {}
        assert second["result"] == {}
        assert session_id not in handler.sessions


# =============================================================================
# Mode and Config Option Tests
# =============================================================================


class TestModesAndConfig:
    """session/set_mode and session/set_config_option."""

    @pytest.mark.asyncio
    async def test_set_mode(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        response = await _request(
            handler, output, 2, "session/set_mode", {"sessionId": session_id, "modeId": "manual"}
        )

        assert response["result"] == {}
        assert handler.sessions[session_id].mode == "manual"
        assert output.messages()[-1]["params"]["update"] == {
            "sessionUpdate": "current_mode_update",
            "currentModeId": "manual",
        }

    @pytest.mark.asyncio
    async def test_set_unknown_mode(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        response = await _request(
            handler, output, 2, "session/set_mode", {"sessionId": session_id, "modeId": "yolo"}
        )

        assert response["error"]["code"] == JsonRpcErrorCode.INVALID_PARAMS
        assert handler.sessions[session_id].mode == "auto"

    @pytest.mark.asyncio
    async def test_set_config_option(self, make_handler, output) -> None:
        handler = make_handler(config=MODELS_CONFIG)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        response = await _request(
            handler,
            output,
            2,
            "session/set_config_option",
            {"sessionId": session_id, "configId": "model", "value": "b/two"},
        )

        (option,) = response["result"]["configOptions"]
        assert option["currentValue"] == "b/two"
        assert handler.sessions[session_id].settings["model"] == "b/two"
        update = output.messages()[-1]["params"]["update"]
        assert update["sessionUpdate"] == "config_option_update"
        assert update["configOptions"][0]["currentValue"] == "b/two"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("config_id", "value"),
        [("model", "c/three"), ("temperature", "hot")],
    )
    async def test_set_config_option_rejects(
        self, make_handler, output, config_id: str, value: str
    ) -> None:
        handler = make_handler(config=MODELS_CONFIG)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        response = await _request(
            handler,
            output,
            2,
            "session/set_config_option",
            {"sessionId": session_id, "configId": config_id, "value": value},
        )

        assert response["error"]["code"] == JsonRpcErrorCode.INVALID_PARAMS
        assert handler.sessions[session_id].settings["model"] == "a/one"


# =============================================================================
# Prompt Turn Tests
# =============================================================================


class TestPromptTurn:
    """session/prompt and session/cancel."""

    @pytest.mark.asyncio
    async def test_prompt_streams_then_responds(
        self, make_handler, output, scripted_loop
    ) -> None:
        loop = scripted_loop(script=[("on_chunk", "Hello"), ("on_chunk", " back")])
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)
        before = len(output.messages())

        response = await _request(
            handler, output, 2, "session/prompt", _prompt(session_id, "Say hello\nplease")
        )

        assert response["result"] == {"stopReason": "end_turn"}
        turn = output.messages()[before:]
        assert [m.get("method", "response") for m in turn] == [
            "session/update",
            "session/update",
            "session/update",
            "response",
        ]
        assert [m["params"]["update"]["sessionUpdate"] for m in turn[:3]] == [
            "agent_message_chunk",
            "agent_message_chunk",
            "session_info_update",
        ]
        assert turn[2]["params"]["update"]["title"] == "Say hello"

        session = handler.sessions[session_id]
        assert session.state is TurnState.COMPLETED
        assert [(m.role, m.content) for m in session.history] == [
            ("user", "Say hello\nplease"),
            ("assistant", "Hello back"),
        ]
        assert loop.calls[0][0] == "Say hello\nplease"

    @pytest.mark.asyncio
    async def test_second_turn_sees_history_and_keeps_title(
        self, make_handler, output, scripted_loop
    ) -> None:
        loop = scripted_loop(script=[("on_chunk", "ok")])
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        await _request(handler, output, 2, "session/prompt", _prompt(session_id, "first"))
        await _request(handler, output, 3, "session/prompt", _prompt(session_id, "second"))

        second_options = loop.calls[1][2]
        assert [m.content for m in second_options.history] == ["first", "ok"]
        titles = [u for u in output.updates() if u["sessionUpdate"] == "session_info_update"]
        assert len(titles) == 1
        assert handler.sessions[session_id].title == "first"

    @pytest.mark.asyncio
    async def test_long_title_is_truncated(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        await _request(handler, output, 2, "session/prompt", _prompt(session_id, "x" * 100))

        assert handler.sessions[session_id].title == "x" * 60 + "..."

    @pytest.mark.asyncio
    async def test_prompt_unknown_session(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)

        response = await _request(handler, output, 2, "session/prompt", _prompt("nope", "hi"))

        assert response["error"] == {
            "code": JsonRpcErrorCode.INVALID_PARAMS,
            "message": "Unknown sessionId: nope",
        }

    @pytest.mark.asyncio
    async def test_cancel_running_turn(self, make_handler, output, scripted_loop) -> None:
        loop = scripted_loop(script=[("on_chunk", "Working")], wait_for_cancel=True)
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        _send(handler, {"id": 2, "method": "session/prompt", "params": _prompt(session_id, "go")})
        await loop.started.wait()
        assert handler.sessions[session_id].is_running

        _send(handler, {"method": "session/cancel", "params": {"sessionId": session_id}})
        await _drain(handler)

        assert output.response_to(2)["result"] == {"stopReason": "cancelled"}
        session = handler.sessions[session_id]
        assert session.state is TurnState.CANCELLED
        assert session.history == []

    @pytest.mark.asyncio
    async def test_cancel_in_same_chunk_as_prompt(
        self, make_handler, transport, output, scripted_loop
    ) -> None:
        loop = scripted_loop(wait_for_cancel=True)
        handler = make_handler(loop)
        transport.set_handler(handler.handle_message)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)
        prompt = {
            "jsonrpc": "2.0",
            "id": 2,
            "method": "session/prompt",
            "params": _prompt(session_id, "go"),
        }
        cancel = {"jsonrpc": "2.0", "method": "session/cancel", "params": {"sessionId": session_id}}

        transport.feed(json.dumps(prompt) + "\n" + json.dumps(cancel) + "\n")
        await asyncio.wait_for(_drain(handler), timeout=5)

        assert output.response_to(2)["result"] == {"stopReason": "cancelled"}
        session = handler.sessions[session_id]
        assert session.state is TurnState.CANCELLED
        assert session.cancel_event is None

    @pytest.mark.asyncio
    async def test_cancel_behind_slash_command_does_not_leak(
        self, make_handler, transport, output, scripted_loop
    ) -> None:
        loop = scripted_loop()
        handler = make_handler(loop)
        transport.set_handler(handler.handle_message)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)
        command = {
            "jsonrpc": "2.0",
            "id": 2,
            "method": "session/prompt",
            "params": _prompt(session_id, "/status"),
        }
        cancel = {"jsonrpc": "2.0", "method": "session/cancel", "params": {"sessionId": session_id}}

        transport.feed(json.dumps(command) + "\n" + json.dumps(cancel) + "\n")
        await _drain(handler)
        response = await _request(handler, output, 3, "session/prompt", _prompt(session_id, "hi"))

        assert output.response_to(2)["result"] == {"stopReason": "end_turn"}
        assert response["result"] == {"stopReason": "end_turn"}

    @pytest.mark.asyncio
    async def test_cancel_reaches_turn_during_slow_scan(
        self, transport, output, scripted_loop
    ) -> None:
        gate = threading.Event()
        gate.set()

        def slow_scan(root: str) -> ProjectContext:
            gate.wait(timeout=5)
            return ProjectContext(root=root, name="big")

        loop = scripted_loop(wait_for_cancel=True)
        handler = AcpHandler(transport, loop, context_provider=slow_scan)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)
        gate.clear()

        _send(handler, {"id": 2, "method": "session/prompt", "params": _prompt(session_id, "go")})
        await asyncio.sleep(0.05)
        assert loop.calls == []
        _send(handler, {"method": "session/cancel", "params": {"sessionId": session_id}})
        gate.set()
        await asyncio.wait_for(_drain(handler), timeout=5)

        assert output.response_to(2)["result"] == {"stopReason": "cancelled"}
        assert loop.calls[0][1].name == "big"

    @pytest.mark.asyncio
    async def test_prompt_while_running_is_rejected(
        self, make_handler, output, scripted_loop
    ) -> None:
        loop = scripted_loop(wait_for_cancel=True)
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        _send(handler, {"id": 2, "method": "session/prompt", "params": _prompt(session_id, "a")})
        await loop.started.wait()
        _send(handler, {"id": 3, "method": "session/prompt", "params": _prompt(session_id, "b")})
        await _settle()

        assert output.response_to(3)["error"]["code"] == JsonRpcErrorCode.PROTOCOL_ERROR
        assert output.response_to(2) is None

        _send(handler, {"method": "session/cancel", "params": {"sessionId": session_id}})
        await _drain(handler)
        assert output.response_to(2)["result"] == {"stopReason": "cancelled"}

    @pytest.mark.asyncio
    async def test_cancel_without_running_turn_is_ignored(self, make_handler, output) -> None:
        handler = make_handler()
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)
        before = len(output.messages())

        _send(handler, {"method": "session/cancel", "params": {"sessionId": session_id}})
        _send(handler, {"method": "session/cancel", "params": {"sessionId": "unknown"}})
        _send(handler, {"method": "session/cancel", "params": {}})

        assert len(output.messages()) == before

    @pytest.mark.asyncio
    async def test_agent_failure_is_agent_error(
        self, make_handler, output, scripted_loop
    ) -> None:
        loop = scripted_loop(result=AgentRunResult(success=False, error="model overloaded"))
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        response = await _request(handler, output, 2, "session/prompt", _prompt(session_id, "x"))

        assert response["error"] == {
            "code": JsonRpcErrorCode.AGENT_ERROR,
            "message": "model overloaded",
        }
        session = handler.sessions[session_id]
        assert session.state is TurnState.FAILED
        assert not session.is_running

    @pytest.mark.asyncio
    async def test_session_usable_after_failure(
        self, make_handler, output, scripted_loop
    ) -> None:
        loop = scripted_loop(raises=RuntimeError("boom"))
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        await _request(handler, output, 2, "session/prompt", _prompt(session_id, "x"))
        loop.raises = None
        response = await _request(handler, output, 3, "session/prompt", _prompt(session_id, "y"))

        assert response["result"] == {"stopReason": "end_turn"}

    @pytest.mark.asyncio
    async def test_manual_mode_passes_permission_requester(
        self, make_handler, output, scripted_loop
    ) -> None:
        loop = scripted_loop()
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        await _request(handler, output, 2, "session/prompt", _prompt(session_id, "auto turn"))
        await _request(
            handler, output, 3, "session/set_mode", {"sessionId": session_id, "modeId": "manual"}
        )
        await _request(handler, output, 4, "session/prompt", _prompt(session_id, "manual turn"))

        auto_options = loop.calls[0][2]
        manual_options = loop.calls[1][2]
        assert auto_options.request_permission is None
        assert manual_options.request_permission is not None
        assert manual_options.mode == "manual"
        assert manual_options.client is handler.sessions[session_id].client

    @pytest.mark.asyncio
    async def test_embedded_resources_reach_agent_as_text(
        self, make_handler, output, scripted_loop
    ) -> None:
        loop = scripted_loop()
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        await _request(
            handler,
            output,
            2,
            "session/prompt",
            {
                "sessionId": session_id,
                "prompt": [
                    {"type": "text", "text": "Explain"},
                    {"type": "resource", "resource": {"uri": "file:///proj/a.py", "text": "x = 1"}},
                ],
            },
        )

        assert loop.calls[0][0] == "Explain\n[Resource: file:///proj/a.py]\n```\nx = 1\n```"

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_turns(
        self, make_handler, output, scripted_loop
    ) -> None:
        loop = scripted_loop(wait_for_cancel=True)
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)
        _send(handler, {"id": 2, "method": "session/prompt", "params": _prompt(session_id, "go")})
        await loop.started.wait()

        await handler.shutdown()

        assert handler._tasks == set()


# =============================================================================
# Slash Command Tests
# =============================================================================


class TestSlashCommands:
    """Prompts starting with a slash command bypass the agent loop."""

    @pytest.mark.asyncio
    async def test_mode_command(self, make_handler, output, scripted_loop) -> None:
        loop = scripted_loop()
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)
        before = len(output.messages())

        response = await _request(
            handler, output, 2, "session/prompt", _prompt(session_id, "/mode manual")
        )

        assert response["result"] == {"stopReason": "end_turn"}
        updates = [m["params"]["update"] for m in output.messages()[before:] if "method" in m]
        assert updates[0]["sessionUpdate"] == "agent_message_chunk"
        assert updates[0]["content"]["text"] == "Switched to **Manual** mode."
        assert updates[1] == {"sessionUpdate": "current_mode_update", "currentModeId": "manual"}
        assert loop.calls == []
        assert handler.sessions[session_id].history == []

    @pytest.mark.asyncio
    async def test_model_command_pushes_config_update(self, make_handler, output) -> None:
        handler = make_handler(config=MODELS_CONFIG)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        await _request(handler, output, 2, "session/prompt", _prompt(session_id, "/model b/two"))

        kinds = [u["sessionUpdate"] for u in output.updates()]
        assert kinds[-2:] == ["agent_message_chunk", "config_option_update"]
        assert handler.sessions[session_id].settings["model"] == "b/two"

    @pytest.mark.asyncio
    async def test_unknown_command(self, make_handler, output, scripted_loop) -> None:
        loop = scripted_loop()
        handler = make_handler(loop)
        await _initialized(handler, output)
        session_id = await _new_session(handler, output)

        response = await _request(
            handler, output, 2, "session/prompt", _prompt(session_id, "/frobnicate")
        )

        assert response["result"] == {"stopReason": "end_turn"}
        assert "Unknown command" in output.updates()[-1]["content"]["text"]
        assert loop.calls == []
