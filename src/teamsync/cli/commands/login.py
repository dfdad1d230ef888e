"""Login command - build the local snapshot for a fresh session."""

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
from teamsync.entry import login_entry
from teamsync.errors import ClientError


@dataclass
class Login:
    """Run login entry for an already authenticated session token."""

    server_url: str = field(metadata={"help": "Server base URL"})
    token: str | None = field(
        default=None,
        metadata={"help": "Session token (defaults to $TEAMSYNC_TOKEN)"},
    )
    device_token: str | None = field(
        default=None,
        metadata={"help": "Push device token to attach to the session"},
    )
    wait: float = field(
        default=DEFAULT_DRAIN_TIMEOUT,
        metadata={"help": "Seconds to wait for background fetches"},
    )

    def run(self) -> int:
        """Execute the login command."""
        token = resolve_token(self.token)
        if not token:
            console.error("no session token given")
            return 1

        async def run_login():
            registry = build_registry(self.server_url, token)
            try:
                client = registry.get_client(self.server_url)
                try:
                    user = await client.get_me()
                except ClientError as e:
                    console.error(f"could not load the current user: {e}")
                    return 1

                result = await login_entry(
                    self.server_url, user, self.device_token, registry
                )
                await registry.tasks_for(self.server_url).drain(self.wait)
                code = print_result("Login entry", result)
                print_snapshot(registry.get_store(self.server_url))
                return code
            finally:
                await registry.close()

        return asyncio.run(run_login())
