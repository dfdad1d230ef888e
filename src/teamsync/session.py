"""Forced logout when the server rejects our session."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from teamsync.errors import ClientError, ErrorKind

if TYPE_CHECKING:
    from teamsync.registry import ServerContext

logger = structlog.get_logger(__name__)


def force_logout_if_necessary(
    ctx: ServerContext, error: BaseException | None
) -> bool:
    """Invoke the registered logout handler for an unauthorized error.

    Returns True when a logout was triggered.
    """
    if not isinstance(error, ClientError):
        return False
    if error.kind is not ErrorKind.UNAUTHORIZED:
        return False

    handler = ctx.logout_handler
    if handler is None:
        logger.warning(
            "session rejected, no logout handler",
            server_url=ctx.server_url,
        )
        return False

    logger.info("session rejected, forcing logout", server_url=ctx.server_url)
    try:
        handler(ctx.server_url)
    except Exception as e:
        logger.exception("logout handler failed", error=str(e))
        return False
    return True
