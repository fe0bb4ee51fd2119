"""ACP bridge CLI.

Default mode serves ACP over stdio (for editor integration).

Usage:
    acp-bridge                                # Serve ACP over stdio
    acp-bridge --agent mypkg.agent:MyLoop     # Drive a specific agent loop
    acp-bridge --config bridge.yaml           # Use a config file
    acp-bridge config                         # Show resolved configuration
    acp-bridge config --json                  # ... as JSON
"""

from __future__ import annotations

import asyncio
import json

import click

from . import __version__
from .config import BridgeConfig, ConfigError, find_config_file, load_config
from .isolation import configure_logging, reserve_stdout


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to YAML config file (default: $ACP_BRIDGE_CONFIG or ~/.acp-bridge/config.yaml)",
)
@click.option("--agent", help="Agent loop import path, e.g. mypkg.agent:MyLoop")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level (logs go to stderr)",
)
@click.option(
    "--permission-timeout",
    type=float,
    help="Seconds to wait for a permission answer before denying",
)
@click.version_option(__version__, prog_name="acp-bridge")
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    agent: str | None,
    log_level: str | None,
    permission_timeout: float | None,
) -> None:
    """ACP bridge - drive an agent loop from an editor over the Agent Client Protocol.

    Without a subcommand, serves ACP over stdin/stdout until the editor
    closes the stream.
    """
    try:
        config = load_config(
            config_path,
            agent=agent,
            log_level=log_level,
            permission_timeout=permission_timeout,
        )
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    ctx.obj = config
    ctx.meta["config_path"] = config_path

    # If a subcommand is invoked, let it handle everything
    if ctx.invoked_subcommand is not None:
        return

    _run_stdio_bridge(config)


def _run_stdio_bridge(config: BridgeConfig) -> None:
    """Serve ACP over stdio (default)."""
    from .acp.handler import run_stdio_bridge
    from .agent_loop import EchoAgentLoop, load_agent_loop

    protocol_stdout = reserve_stdout()
    configure_logging(config.log_level)

    if config.agent:
        try:
            agent_loop = load_agent_loop(config.agent)
        except (ImportError, ValueError, TypeError) as e:
            raise click.ClickException(f"Cannot load agent loop {config.agent}: {e}") from e
    else:
        agent_loop = EchoAgentLoop()

    click.echo("Starting ACP bridge in stdio mode", err=True)

    try:
        asyncio.run(run_stdio_bridge(config, agent_loop, output=protocol_stdout))
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


# =============================================================================
# Config Command
# =============================================================================


@main.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show_config(ctx: click.Context, output_json: bool) -> None:
    """Show the resolved configuration.

    Examples:

        acp-bridge config
        acp-bridge --config bridge.yaml config --json
    """
    config: BridgeConfig = ctx.obj
    try:
        source = find_config_file(ctx.meta.get("config_path"))
    except ConfigError:
        source = None

    if output_json:
        data = config.model_dump(mode="json")
        data["config_file"] = str(source) if source else None
        click.echo(json.dumps(data, indent=2))
        return

    click.echo("ACP Bridge Configuration")
    click.echo("-" * 40)
    click.echo(f"Config file:        {source or 'none'}")
    click.echo(f"Agent loop:         {config.agent or 'echo (built-in)'}")
    click.echo(f"Agent name:         {config.agent_name}")
    click.echo(f"Log level:          {config.log_level}")
    timeout = f"{config.permission_timeout}s" if config.permission_timeout else "none"
    click.echo(f"Permission timeout: {timeout}")
    click.echo(f"Session page size:  {config.list_page_size}")
    modes = ", ".join(m.id for m in config.modes)
    click.echo(f"Modes:              {modes} (default: {config.default_mode})")
    models = ", ".join(m.value for m in config.models) or "none"
    click.echo(f"Models:             {models}")
    if config.initial_model:
        click.echo(f"Default model:      {config.initial_model}")


if __name__ == "__main__":
    main()
