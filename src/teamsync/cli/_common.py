"""Shared helpers for CLI commands."""

from __future__ import annotations

import os
from pathlib import Path

from teamsync import console
from teamsync.client import Client
from teamsync.config import ClientSettings
from teamsync.entry import EntryResult
from teamsync.paths import get_server_data_dir
from teamsync.registry import ServerRegistry
from teamsync.store import ServerStore

ENV_TOKEN = "TEAMSYNC_TOKEN"

# Seconds to wait for background fetches before exiting
DEFAULT_DRAIN_TIMEOUT = 30.0


def resolve_token(token: str | None) -> str:
    return token or os.environ.get(ENV_TOKEN, "")


def open_store(server_url: str, settings: ClientSettings) -> ServerStore:
    root = Path(settings.data_dir) if settings.data_dir else None
    return ServerStore(
        get_server_data_dir(server_url, root), map_size=settings.map_size
    )


def _report_logout(server_url: str) -> None:
    console.warning(f"session for {server_url} expired, log in again")


def build_registry(
    server_url: str, token: str, settings: ClientSettings | None = None
) -> ServerRegistry:
    """Registry with the server's store and, given a token, its client."""
    settings = settings or ClientSettings()
    registry = ServerRegistry(logout_handler=_report_logout)
    registry.register_store(server_url, open_store(server_url, settings))
    if token:
        registry.register_client(
            server_url,
            Client(server_url, token=token, timeout=settings.http_timeout),
        )
    return registry


def print_result(title: str, result: EntryResult) -> int:
    console.header(title)
    console.key_value("elapsed", f"{result.time} ms")
    if result.has_teams is not None:
        console.key_value("has teams", result.has_teams)
    if result.error is not None:
        console.error(str(result.error))
        return 1
    console.success("done")
    return 0


def print_snapshot(store: ServerStore) -> None:
    values = store.get_common_system_values()
    me = store.get_current_user()
    team = store.get_team(values.current_team_id)
    channel = store.get_channel(values.current_channel_id)

    console.key_value("user", me.username if me else "-")
    console.key_value("current team", team.display_name if team else "-")
    console.key_value(
        "current channel", channel.display_name if channel else "-"
    )
    console.key_value("teams", len(store.get_my_team_ids()))
    console.key_value("roles", len(store.get_role_names()))
