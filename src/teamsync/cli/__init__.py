"""teamsync CLI - reconcile a chat server's local snapshot.

Uses tyro for type-driven CLI generation from dataclasses.
"""

from __future__ import annotations

from typing import Annotated

import tyro

from teamsync.cli.commands.entry import Entry
from teamsync.cli.commands.login import Login
from teamsync.cli.commands.status import Status

# Type aliases for subcommand annotations
_Entry = Annotated[Entry, tyro.conf.subcommand("entry")]
_Login = Annotated[Login, tyro.conf.subcommand("login")]
_Status = Annotated[Status, tyro.conf.subcommand("status")]

Command = _Entry | _Login | _Status


def main() -> int:
    """Entry point for the CLI."""
    # configure structlog (respects TEAMSYNC_DEBUG env var)
    from teamsync.logging_config import configure_logging

    configure_logging()

    try:
        cmd = tyro.cli(
            Command,
            prog="teamsync",
            description="Reconcile a chat server's teams and channels locally.",
        )
        return cmd.run()
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 1
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        from teamsync import console

        console.error(str(e))
        return 1
