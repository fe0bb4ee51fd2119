"""ACP slash commands.

Commands are advertised to the client with ``available_commands_update``
after a session is created. A prompt that starts with ``/`` is routed here
instead of the agent loop; anything else passes through untouched.

Commands:
- /help            list commands
- /status          session id, workspace, mode, model and turn count
- /mode [id]       list modes, or switch mode
- /model [value]   list models, or switch model
- /clear           forget the session's conversation history
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .types import AvailableCommand, AvailableCommandInput

if TYPE_CHECKING:
    from ..config import BridgeConfig
    from .handler import AcpSession

logger = logging.getLogger(__name__)


AVAILABLE_COMMANDS = [
    AvailableCommand(
        name="help",
        description="Show available slash commands",
    ),
    AvailableCommand(
        name="status",
        description="Show session status (ID, workspace, mode, model)",
    ),
    AvailableCommand(
        name="mode",
        description="List modes or switch mode (e.g., /mode manual)",
        input=AvailableCommandInput(hint="mode id"),
    ),
    AvailableCommand(
        name="model",
        description="List models or switch model",
        input=AvailableCommandInput(hint="model value"),
    ),
    AvailableCommand(
        name="clear",
        description="Clear conversation history",
    ),
]


@dataclass
class SlashCommandResult:
    """Result of executing a slash command.

    Attributes:
        message: Text sent back to the client as an agent message
        success: False when the command was rejected
        mode_changed: The session mode changed; push current_mode_update
        config_changed: A config option changed; push config_option_update
    """

    message: str
    success: bool = True
    mode_changed: bool = False
    config_changed: bool = False


@dataclass
class ParsedCommand:
    """A parsed slash command from user input."""

    name: str
    args: str
    raw: str


def parse_slash_command(text: str) -> ParsedCommand | None:
    """Parse a slash command from user input.

    Examples:
        "/help" -> ParsedCommand(name="help", args="", raw="/help")
        "/mode manual" -> ParsedCommand(name="mode", args="manual", raw="/mode manual")
        "hello" -> None
    """
    text = text.strip()
    if not text.startswith("/"):
        return None

    match = re.match(r"^/([\w-]+)(?:\s+(.*))?$", text, re.DOTALL)
    if not match:
        return None

    return ParsedCommand(
        name=match.group(1).lower(),
        args=(match.group(2) or "").strip(),
        raw=text,
    )


class SlashCommandHandler:
    """Executes slash commands against one session."""

    def __init__(self, session: AcpSession, config: BridgeConfig) -> None:
        self._session = session
        self._config = config

    def execute(self, command: ParsedCommand) -> SlashCommandResult:
        """Route a command to its ``_handle_<name>`` method."""
        handler = getattr(self, f"_handle_{command.name}", None)
        if handler is None:
            return SlashCommandResult(
                success=False,
                message=(
                    f"Unknown command: `/{command.name}`\n\n"
                    "Type `/help` to see available commands."
                ),
            )
        return handler(command)

    def _handle_help(self, command: ParsedCommand) -> SlashCommandResult:
        lines = ["**Available Slash Commands:**", ""]
        for cmd in AVAILABLE_COMMANDS:
            if cmd.input:
                lines.append(f"- `/{cmd.name} <{cmd.input.hint}>` - {cmd.description}")
            else:
                lines.append(f"- `/{cmd.name}` - {cmd.description}")
        return SlashCommandResult(message="\n".join(lines))

    def _handle_status(self, command: ParsedCommand) -> SlashCommandResult:
        session = self._session
        lines = [
            "**Session Status:**",
            "",
            f"- Session ID: `{session.session_id}`",
            f"- Workspace: `{session.cwd}`",
            f"- Mode: `{session.mode}`",
            f"- Model: `{session.settings.get('model') or 'default'}`",
            f"- Turns: {len(session.history) // 2}",
        ]
        return SlashCommandResult(message="\n".join(lines))

    def _handle_mode(self, command: ParsedCommand) -> SlashCommandResult:
        if not command.args:
            lines = ["**Modes:**", ""]
            for mode in self._config.modes:
                marker = " (active)" if mode.id == self._session.mode else ""
                desc = f" - {mode.description}" if mode.description else ""
                lines.append(f"- `{mode.id}`{marker}{desc}")
            lines.extend(["", "Use `/mode <id>` to switch."])
            return SlashCommandResult(message="\n".join(lines))

        mode = self._config.get_mode(command.args)
        if mode is None:
            return SlashCommandResult(
                success=False,
                message=f"Unknown mode: `{command.args}`. Use `/mode` to list modes.",
            )
        if mode.id == self._session.mode:
            return SlashCommandResult(message=f"Already in **{mode.name}** mode.")

        self._session.mode = mode.id
        logger.info(f"Session {self._session.session_id} switched to mode {mode.id}")
        return SlashCommandResult(
            message=f"Switched to **{mode.name}** mode.",
            mode_changed=True,
        )

    def _handle_model(self, command: ParsedCommand) -> SlashCommandResult:
        models = self._config.models
        if not models:
            return SlashCommandResult(message="No models are configured.")

        current = self._session.settings.get("model")
        if not command.args:
            lines = ["**Models:**", ""]
            for model in models:
                marker = " (active)" if model.value == current else ""
                lines.append(f"- `{model.value}`{marker} - {model.name}")
            lines.extend(["", "Use `/model <value>` to switch."])
            return SlashCommandResult(message="\n".join(lines))

        model = next((m for m in models if m.value == command.args), None)
        if model is None:
            return SlashCommandResult(
                success=False,
                message=f"Model `{command.args}` is not available. Use `/model` to list models.",
            )

        self._session.settings["model"] = model.value
        return SlashCommandResult(
            message=f"Model set to `{model.value}`.",
            config_changed=True,
        )

    def _handle_clear(self, command: ParsedCommand) -> SlashCommandResult:
        self._session.history.clear()
        return SlashCommandResult(message="Conversation history cleared.")
