from teamsync.entry.app import app_entry
from teamsync.entry.common import EntryResult
from teamsync.entry.login import login_entry

__all__ = ["EntryResult", "app_entry", "login_entry"]
