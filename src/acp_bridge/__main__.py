"""ACP bridge entry point with proper stdio isolation.

When serving, stdout is reserved for the protocol and logging is sent to
stderr before the rest of the package is imported, so nothing imported later
can write to stdout. Subcommands (e.g. ``config``) print for humans and keep
a normal stdout.

Usage:
    python -m acp_bridge [--config PATH] [--agent module:attr]
    python -m acp_bridge config [--json]
"""

from __future__ import annotations

import sys

from acp_bridge.isolation import configure_logging, reserve_stdout


def _is_serving(argv: list[str]) -> bool:
    """True unless a subcommand or --help was given."""
    return not any(arg in ("config", "--help", "--version") for arg in argv[1:])


# Claim stdout before logging is configured or anything else is imported
if _is_serving(sys.argv):
    reserve_stdout()
configure_logging()

from acp_bridge.cli import main  # noqa: E402

if __name__ == "__main__":
    main(prog_name="acp-bridge")
