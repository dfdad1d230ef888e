"""Per-server lookup of local stores and network clients.

The entry procedures resolve a ServerContext once per call and pass it to
every component explicitly, so nothing below the entry point touches the
registry.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from teamsync.client import Client
from teamsync.errors import ClientNotFoundError, ServerNotFoundError
from teamsync.notifications import LoggingScheduler, NotificationScheduler
from teamsync.store import ServerStore
from teamsync.tasks import BackgroundTasks

logger = structlog.get_logger(__name__)

LogoutHandler = Callable[[str], None]


def _normalize(server_url: str) -> str:
    return server_url.strip().rstrip("/")


@dataclass
class ServerContext:
    """Everything an entry pass needs for one server."""

    server_url: str
    store: ServerStore
    tasks: BackgroundTasks
    notifications: NotificationScheduler
    logout_handler: LogoutHandler | None = None
    client: Client | None = field(default=None, repr=False)

    def get_client(self) -> Client:
        if self.client is None:
            raise ClientNotFoundError(self.server_url)
        return self.client


class ServerRegistry:
    def __init__(
        self,
        notifications: NotificationScheduler | None = None,
        logout_handler: LogoutHandler | None = None,
    ) -> None:
        self._stores: dict[str, ServerStore] = {}
        self._clients: dict[str, Client] = {}
        self._tasks: dict[str, BackgroundTasks] = {}
        self.notifications: NotificationScheduler = (
            notifications or LoggingScheduler()
        )
        self.logout_handler = logout_handler

    def register_store(self, server_url: str, store: ServerStore) -> None:
        self._stores[_normalize(server_url)] = store

    def register_client(self, server_url: str, client: Client) -> None:
        self._clients[_normalize(server_url)] = client

    def get_store(self, server_url: str) -> ServerStore:
        store = self._stores.get(_normalize(server_url))
        if store is None:
            raise ServerNotFoundError(server_url)
        return store

    def get_client(self, server_url: str) -> Client:
        client = self._clients.get(_normalize(server_url))
        if client is None:
            raise ClientNotFoundError(server_url)
        return client

    def tasks_for(self, server_url: str) -> BackgroundTasks:
        key = _normalize(server_url)
        if key not in self._tasks:
            self._tasks[key] = BackgroundTasks()
        return self._tasks[key]

    def resolve(self, server_url: str) -> ServerContext:
        """Build the context for one entry pass.

        Raises:
            ServerNotFoundError: No store registered for the server. A missing
                client is not an error here; it surfaces per fetch.
        """
        key = _normalize(server_url)
        return ServerContext(
            server_url=key,
            store=self.get_store(key),
            tasks=self.tasks_for(key),
            notifications=self.notifications,
            logout_handler=self.logout_handler,
            client=self._clients.get(key),
        )

    async def remove(self, server_url: str) -> None:
        """Forget a server, cancelling its background work."""
        key = _normalize(server_url)
        tasks = self._tasks.pop(key, None)
        if tasks is not None:
            await tasks.cancel_all()
        client = self._clients.pop(key, None)
        if client is not None:
            await client.close()
        store = self._stores.pop(key, None)
        if store is not None:
            store.close()
        logger.debug("server removed from registry", server_url=key)

    async def close(self) -> None:
        for key in list(self._stores.keys() | self._clients.keys()):
            await self.remove(key)


_registry: ServerRegistry | None = None


def get_registry() -> ServerRegistry:
    """Get the process-wide registry, creating it on first use."""
    global _registry
    if _registry is None:
        _registry = ServerRegistry()
    return _registry
