"""Status command - show the locally cached snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from teamsync import console
from teamsync.cli._common import open_store, print_snapshot
from teamsync.config import ClientSettings
from teamsync.paths import get_server_data_dir


@dataclass
class Status:
    """Show the current team, channel and cache sizes for a server."""

    server_url: str = field(metadata={"help": "Server base URL"})

    def run(self) -> int:
        """Execute the status command."""
        settings = ClientSettings()
        root = Path(settings.data_dir) if settings.data_dir else None
        data_dir = get_server_data_dir(self.server_url, root)
        if not data_dir.exists():
            console.error(f"no local data for {self.server_url}")
            return 1

        store = open_store(self.server_url, settings)
        try:
            console.header(f"Local snapshot for {self.server_url}")
            console.key_value("path", store.db_path)
            print_snapshot(store)
            history = store.get_team_channel_history(
                store.get_current_team_id()
            )
            console.key_value("recent channels", len(history))
        finally:
            store.close()
        return 0
