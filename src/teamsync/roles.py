"""Fetch role definitions the local store does not know yet."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from teamsync.errors import ClientError, ClientNotFoundError
from teamsync.models import Role
from teamsync.registry import ServerContext
from teamsync.session import force_logout_if_necessary

logger = structlog.get_logger(__name__)


@dataclass
class RolesRequest:
    roles: list[Role] = field(default_factory=list)
    error: Exception | None = None


async def fetch_roles_if_needed(
    ctx: ServerContext,
    role_names: Iterable[str],
    fetch_only: bool = False,
) -> RolesRequest:
    """Fetch and persist only the role names missing locally.

    Issues at most one request, and none when every name is already
    stored or the set is empty.
    """
    wanted = {name for name in role_names if name}
    if not wanted:
        return RolesRequest()

    try:
        client = ctx.get_client()
    except ClientNotFoundError as e:
        return RolesRequest(error=e)

    missing = wanted - ctx.store.get_role_names()
    if not missing:
        return RolesRequest()

    logger.debug("fetching roles", count=len(missing))
    try:
        roles = await client.get_roles_by_names(sorted(missing))
    except ClientError as e:
        force_logout_if_necessary(ctx, e)
        logger.warning("role fetch failed", error=str(e))
        return RolesRequest(error=e)

    if not fetch_only:
        await ctx.store.batch_records(ctx.store.prepare_roles(roles))
    return RolesRequest(roles=roles)
