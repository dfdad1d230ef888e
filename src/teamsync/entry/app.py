"""App entry: reconcile the local snapshot when a session resumes."""

from __future__ import annotations

import time
from dataclasses import replace

from teamsync.entry.common import (
    EntryBundle,
    EntryResult,
    collect_role_names,
    commit_models,
    elapsed_ms,
    fetch_app_entry_data,
    first_error,
    prepare_models,
)
from teamsync.entry.deferred import deferred_app_entry_actions
from teamsync.errors import ServerNotFoundError
from teamsync.logging_config import get_logger
from teamsync.registry import ServerContext, ServerRegistry, get_registry
from teamsync.roles import fetch_roles_if_needed
from teamsync.selection import select_default_channel_for_team

logger = get_logger("entry.app")


async def _set_current_pointers(
    ctx: ServerContext, bundle: EntryBundle
) -> None:
    """Point the UI at the resolved team before the main batch lands."""
    channel_id = ""
    ch_data = bundle.ch_data
    if bundle.initial_team_id and ch_data is not None and ch_data.channels:
        locale = bundle.me_data.user.locale if bundle.me_data.user else None
        channel = select_default_channel_for_team(
            ch_data.channels,
            ch_data.memberships or [],
            bundle.initial_team_id,
            [],
            locale,
        )
        channel_id = channel.id if channel else ""

    await ctx.store.set_current_team_and_channel_id(
        bundle.initial_team_id, channel_id
    )
    logger.info(
        "current team changed",
        team_id=bundle.initial_team_id,
        channel_id=channel_id,
    )


async def app_entry(
    server_url: str, registry: ServerRegistry | None = None
) -> EntryResult:
    """Refresh teams, channels, preferences and the current user.

    Returns the first error among the team, channel, preference and user
    fetches, if any, and the elapsed time in milliseconds. Posts, profiles
    and other teams are fetched in the background afterwards.
    """
    started = time.monotonic()
    registry = registry or get_registry()
    try:
        ctx = registry.resolve(server_url)
    except ServerNotFoundError as e:
        logger.error("app entry aborted", server_url=server_url, error=str(e))
        return EntryResult(error=e, time=elapsed_ms(started))

    current_team_id = ctx.store.get_current_team_id()
    bundle = await fetch_app_entry_data(ctx, current_team_id)

    if bundle.initial_team_id != current_team_id:
        await _set_current_pointers(ctx, bundle)

    batches = await prepare_models(
        ctx,
        bundle.initial_team_id,
        bundle.remove_team_ids,
        bundle.team_data,
        bundle.ch_data,
        bundle.pref_data,
        bundle.me_data,
    )
    count = await commit_models(ctx, batches)
    logger.debug(
        "app entry committed",
        ops=count,
        removed=bundle.remove_team_ids,
    )

    role_names = collect_role_names(
        bundle.team_data, bundle.ch_data, bundle.me_data.user
    )
    ctx.tasks.spawn(fetch_roles_if_needed(ctx, role_names), name="roles")

    # removed teams must not be refetched by the background work
    team_data = bundle.team_data
    removed = set(bundle.remove_team_ids)
    if removed and team_data.teams:
        team_data = replace(
            team_data,
            teams=[t for t in team_data.teams if t.id not in removed],
        )

    me = bundle.me_data.user or ctx.store.get_current_user()
    system = ctx.store.get_common_system_values()
    deferred_app_entry_actions(
        ctx,
        me.id if me else system.current_user_id,
        me.locale if me else None,
        bundle.pref_data.preferences,
        system.config,
        system.license,
        team_data,
        bundle.ch_data,
        bundle.initial_team_id,
    )

    error = first_error(
        bundle.team_data.error,
        bundle.ch_data.error if bundle.ch_data else None,
        bundle.pref_data.error,
        bundle.me_data.error,
    )
    result = EntryResult(error=error, time=elapsed_ms(started))
    logger.info(
        "app entry finished",
        server_url=ctx.server_url,
        team_id=bundle.initial_team_id,
        elapsed_ms=result.time,
        error=str(error) if error else None,
    )
    return result
