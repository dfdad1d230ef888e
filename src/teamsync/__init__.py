from teamsync.entry import EntryResult, app_entry, login_entry
from teamsync.errors import (
    ClientError,
    ClientNotFoundError,
    ErrorKind,
    ServerNotFoundError,
    TeamsyncError,
)
from teamsync.registry import ServerContext, ServerRegistry, get_registry
from teamsync.store import ServerStore

__all__ = [
    "ClientError",
    "ClientNotFoundError",
    "EntryResult",
    "ErrorKind",
    "ServerContext",
    "ServerNotFoundError",
    "ServerRegistry",
    "ServerStore",
    "TeamsyncError",
    "app_entry",
    "get_registry",
    "login_entry",
]
