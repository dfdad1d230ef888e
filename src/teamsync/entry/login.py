"""Login entry: build the local snapshot right after authentication."""

from __future__ import annotations

import time

import lmdb

from teamsync.client import Client
from teamsync.config import CATEGORY_TEAMS_ORDER
from teamsync.entry.common import (
    EntryResult,
    collect_role_names,
    commit_models,
    elapsed_ms,
    first_error,
    prepare_models,
)
from teamsync.entry.deferred import deferred_login_actions
from teamsync.errors import (
    ClientError,
    ClientNotFoundError,
    ServerNotFoundError,
)
from teamsync.logging_config import get_logger
from teamsync.models import (
    Channel,
    ClientConfig,
    ClientLicense,
    Role,
    Team,
    User,
)
from teamsync.notifications import schedule_expired_notification
from teamsync.registry import ServerContext, ServerRegistry, get_registry
from teamsync.remote import (
    ChannelsRequest,
    UserRequest,
    fetch_config_and_license,
    fetch_my_channels_for_team,
    fetch_my_preferences,
    fetch_my_teams,
    gather_or_raise,
)
from teamsync.roles import fetch_roles_if_needed
from teamsync.selection import (
    get_preference_value,
    select_default_channel_for_team,
    select_default_team,
)

logger = get_logger("entry.login")


async def _attach_device(
    ctx: ServerContext, client: Client, device_token: str
) -> None:
    try:
        await client.attach_device(device_token)
    except ClientError as e:
        logger.debug(
            "device token not attached",
            server_url=ctx.server_url,
            error=str(e),
        )


async def _resolve_roles(ctx: ServerContext, names: set[str]) -> list[Role]:
    """Roles for ``names``, from the store plus whatever was just fetched."""
    request = await fetch_roles_if_needed(ctx, names)
    if request.error is not None:
        logger.warning("roles unavailable", error=str(request.error))

    roles = {r.name: r for r in ctx.store.get_roles() if r.name in names}
    roles.update((r.name, r) for r in request.roles)
    return list(roles.values())


async def login_entry(
    server_url: str,
    user: User,
    device_token: str | None = None,
    registry: ServerRegistry | None = None,
) -> EntryResult:
    """Fetch config, preferences and teams, then pick the initial team/channel.

    A missing store or client is returned as the error straight away. Any
    unexpected exception resets config, license and the current team and
    channel to empty values before being returned.
    """
    started = time.monotonic()
    registry = registry or get_registry()
    try:
        ctx = registry.resolve(server_url)
        client = ctx.get_client()
    except (ServerNotFoundError, ClientNotFoundError) as e:
        logger.error("login entry aborted", server_url=server_url, error=str(e))
        return EntryResult(error=e, time=elapsed_ms(started))

    if device_token:
        ctx.tasks.spawn(
            _attach_device(ctx, client, device_token), name="attach-device"
        )

    try:
        return await _login(ctx, user, started)
    except Exception as e:
        logger.exception("login entry failed", server_url=ctx.server_url)
        await ctx.store.batch_records(
            ctx.store.prepare_common_system_values(
                config=ClientConfig(),
                license=ClientLicense(),
                current_team_id="",
                current_channel_id="",
            )
        )
        return EntryResult(error=e, time=elapsed_ms(started))


async def _login(ctx: ServerContext, user: User, started: float) -> EntryResult:
    cl_data, pref_data, team_data = await gather_or_raise(
        fetch_config_and_license(ctx, fetch_only=True),
        fetch_my_preferences(ctx, fetch_only=True),
        fetch_my_teams(ctx, fetch_only=True),
    )

    if cl_data.config is not None:
        schedule_expired_notification(ctx, cl_data.config, user.id, user.locale)

    my_teams: list[Team] = []
    initial_team: Team | None = None
    initial_channel: Channel | None = None
    ch_data: ChannelsRequest | None = None

    if not (cl_data.error or pref_data.error or team_data.error):
        order = get_preference_value(
            pref_data.preferences or [], CATEGORY_TEAMS_ORDER, ""
        )
        member_team_ids = {m.team_id for m in team_data.memberships or []}
        my_teams = [t for t in team_data.teams or [] if t.id in member_team_ids]
        config = cl_data.config or ClientConfig()
        initial_team = select_default_team(
            my_teams, user.locale, order, config.experimental_primary_team
        )

        if initial_team is not None:
            ch_data = await fetch_my_channels_for_team(
                ctx, initial_team.id, False, 0, True
            )
            roles = await _resolve_roles(
                ctx, collect_role_names(team_data, ch_data, user)
            )
            if ch_data.channels:
                initial_channel = select_default_channel_for_team(
                    ch_data.channels,
                    ch_data.memberships or [],
                    initial_team.id,
                    roles,
                    user.locale,
                )

    initial_team_id = initial_team.id if initial_team else ""
    initial_channel_id = initial_channel.id if initial_channel else ""

    batches = await prepare_models(
        ctx,
        initial_team_id,
        None,
        team_data,
        ch_data,
        pref_data,
        UserRequest(user=user),
    )
    batches.append(
        ctx.store.prepare_common_system_values(
            config=cl_data.config or ClientConfig(),
            license=cl_data.license or ClientLicense(),
            current_team_id=initial_team_id,
            current_channel_id=initial_channel_id,
            current_user_id=user.id,
        )
    )
    if initial_team_id and initial_channel_id:
        try:
            batches.append(
                ctx.store.prepare_add_channel_to_team_history(
                    initial_team_id, initial_channel_id
                )
            )
        except (ValueError, lmdb.Error) as e:
            logger.debug("channel history not recorded", error=str(e))

    await commit_models(ctx, batches)

    deferred_login_actions(
        ctx,
        user,
        pref_data,
        cl_data,
        team_data,
        ch_data,
        initial_team_id or None,
        initial_channel,
    )

    error = first_error(
        cl_data.error,
        pref_data.error,
        team_data.error,
        ch_data.error if ch_data else None,
    )
    has_teams = bool(my_teams) and team_data.error is None
    logger.info(
        "login entry finished",
        server_url=ctx.server_url,
        team_id=initial_team_id,
        channel_id=initial_channel_id,
        has_teams=has_teams,
    )
    return EntryResult(
        error=error, time=elapsed_ms(started), has_teams=has_teams
    )
