"""Session expiry notifications.

The actual OS notification is delivered by whatever scheduler the host
application registers; the default one only logs.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import structlog

from teamsync.models import ClientConfig

if TYPE_CHECKING:
    from teamsync.registry import ServerContext

logger = structlog.get_logger(__name__)

DAY_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class ExpiryNotification:
    server_url: str
    user_id: str
    locale: str
    fire_at: int  # epoch millis
    site_name: str = ""


class NotificationScheduler(Protocol):
    def schedule(self, notification: ExpiryNotification) -> None: ...

    def cancel(self, server_url: str) -> None: ...


class LoggingScheduler:
    """Scheduler that records what would have been scheduled."""

    def __init__(self) -> None:
        self.scheduled: dict[str, ExpiryNotification] = {}

    def schedule(self, notification: ExpiryNotification) -> None:
        self.scheduled[notification.server_url] = notification
        logger.info(
            "session expiry notification scheduled",
            server_url=notification.server_url,
            fire_at=notification.fire_at,
        )

    def cancel(self, server_url: str) -> None:
        self.scheduled.pop(server_url, None)


def session_expires_at(
    config: ClientConfig, now_ms: int | None = None
) -> int | None:
    """Epoch millis when a fresh mobile session expires, or None if never."""
    if config.extend_session_length_with_activity.lower() == "true":
        return None
    try:
        days = float(config.session_length_mobile_in_days)
    except ValueError:
        return None
    if days <= 0:
        return None
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return now_ms + int(days * DAY_MS)


def schedule_expired_notification(
    ctx: ServerContext, config: ClientConfig, user_id: str, locale: str
) -> ExpiryNotification | None:
    scheduler = ctx.notifications
    scheduler.cancel(ctx.server_url)

    fire_at = session_expires_at(config)
    if fire_at is None:
        return None

    notification = ExpiryNotification(
        server_url=ctx.server_url,
        user_id=user_id,
        locale=locale,
        fire_at=fire_at,
        site_name=config.site_name,
    )
    scheduler.schedule(notification)
    return notification
