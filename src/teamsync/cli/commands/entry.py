"""Entry command - reconcile the local snapshot with the server."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from teamsync import console
from teamsync.cli._common import (
    DEFAULT_DRAIN_TIMEOUT,
    build_registry,
    print_result,
    print_snapshot,
    resolve_token,
)
from teamsync.entry import app_entry


@dataclass
class Entry:
    """Refresh teams, channels and preferences for a resumed session."""

    server_url: str = field(metadata={"help": "Server base URL"})
    token: str | None = field(
        default=None,
        metadata={"help": "Session token (defaults to $TEAMSYNC_TOKEN)"},
    )
    wait: float = field(
        default=DEFAULT_DRAIN_TIMEOUT,
        metadata={"help": "Seconds to wait for background fetches"},
    )

    def run(self) -> int:
        """Execute the entry command."""
        token = resolve_token(self.token)
        if not token:
            console.error("no session token given")
            return 1

        async def run_entry():
            registry = build_registry(self.server_url, token)
            try:
                result = await app_entry(self.server_url, registry)
                await registry.tasks_for(self.server_url).drain(self.wait)
                code = print_result("App entry", result)
                print_snapshot(registry.get_store(self.server_url))
                return code
            finally:
                await registry.close()

        return asyncio.run(run_entry())
