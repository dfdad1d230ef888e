"""Reconciliation shared by app entry and login entry.

The pipeline for one entry pass:

    fetch_app_entry_data()   teams/channels/preferences/me, concurrently
        -> switch_teams()    only when the prior team is gone or forbidden
    prepare_models()         deletions + upserts as WriteOp batches
    commit_models()          one LMDB write transaction

Nothing here raises for a failed request; errors ride along in the
request objects and are aggregated by the caller.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from teamsync.config import CATEGORY_TEAMS_ORDER, DEFAULT_LOCALE
from teamsync.errors import is_forbidden
from teamsync.logging_config import get_logger
from teamsync.models import Preference, Team, User
from teamsync.registry import ServerContext
from teamsync.remote import (
    ChannelsRequest,
    PreferencesRequest,
    TeamsRequest,
    UserRequest,
    fetch_me,
    fetch_my_channels_for_team,
    fetch_my_preferences,
    fetch_my_teams,
    gather_or_raise,
)
from teamsync.selection import get_preference_value, select_default_team
from teamsync.store import WriteOp

logger = get_logger("entry")


@dataclass
class EntryResult:
    """What an entry procedure reports back to the UI layer."""

    error: Exception | None
    time: int  # elapsed millis
    has_teams: bool | None = None


@dataclass
class EntryBundle:
    """Everything fetched during one app entry pass. Never persisted."""

    initial_team_id: str
    team_data: TeamsRequest
    ch_data: ChannelsRequest | None
    pref_data: PreferencesRequest
    me_data: UserRequest
    remove_team_ids: list[str] = field(default_factory=list)


@dataclass
class TeamSwitchResult:
    initial_team_id: str
    ch_data: ChannelsRequest | None
    remove_team_ids: list[str]


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def first_error(*errors: Exception | None) -> Exception | None:
    return next((e for e in errors if e is not None), None)


# -----------------------------------------------------------------------------
# Team selection
# -----------------------------------------------------------------------------


def get_available_team_ids(
    ctx: ServerContext,
    exclude_team_id: str,
    teams: list[Team] | None = None,
    preferences: list[Preference] | None = None,
    locale: str | None = None,
) -> list[str]:
    """Candidate team ids to switch to, best first.

    With a fresh team list the single default team is returned; without one
    every locally cached team is a candidate. ``exclude_team_id`` is never
    returned.
    """
    if teams is not None:
        if preferences is not None:
            order = get_preference_value(preferences, CATEGORY_TEAMS_ORDER, "")
        else:
            stored = ctx.store.get_preferences(CATEGORY_TEAMS_ORDER, "")
            order = stored[0].value if stored else ""

        if not locale:
            me = ctx.store.get_current_user()
            locale = me.locale if me else DEFAULT_LOCALE

        config = ctx.store.get_common_system_values().config
        default_team = select_default_team(
            [t for t in teams if t.id != exclude_team_id],
            locale,
            order,
            config.experimental_primary_team,
        )
        team_ids = [default_team.id] if default_team else []
    else:
        team_ids = ctx.store.get_my_team_ids()

    return [tid for tid in team_ids if tid != exclude_team_id]


async def switch_teams(
    ctx: ServerContext,
    candidate_ids: Iterable[str],
    remove_team_ids: Iterable[str],
    include_deleted: bool = True,
    since: int = 0,
    fetch_only: bool = False,
) -> TeamSwitchResult:
    """Try candidates in order until one's channels are not forbidden.

    Forbidden candidates are added to the removal list. The first other
    result wins, even if it carries a different error.
    """
    removed = list(remove_team_ids)
    for team_id in candidate_ids:
        ch_data = await fetch_my_channels_for_team(
            ctx, team_id, include_deleted, since, fetch_only
        )
        if is_forbidden(ch_data.error):
            logger.info("team no longer accessible", team_id=team_id)
            removed.append(team_id)
            continue
        logger.debug("switched team", team_id=team_id)
        return TeamSwitchResult(team_id, ch_data, removed)

    return TeamSwitchResult("", None, removed)


# -----------------------------------------------------------------------------
# Fetch
# -----------------------------------------------------------------------------


async def fetch_app_entry_data(
    ctx: ServerContext, initial_team_id: str
) -> EntryBundle:
    last_disconnected = ctx.store.get_websocket_last_disconnected()
    include_deleted = True
    fetch_only = True

    async def _channels() -> ChannelsRequest:
        if not initial_team_id:
            return ChannelsRequest()
        return await fetch_my_channels_for_team(
            ctx, initial_team_id, include_deleted, last_disconnected, fetch_only
        )

    team_data, ch_data, pref_data, me_data = await gather_or_raise(
        fetch_my_teams(ctx, fetch_only),
        _channels(),
        fetch_my_preferences(ctx, fetch_only),
        fetch_me(ctx, fetch_only),
    )

    if team_data.teams is not None and not team_data.teams:
        # member of no team at all anymore
        removed = ctx.store.get_my_team_ids()
        logger.info("user has no teams", removed=len(removed))
        # channels of the prior team are not kept for enrichment either
        return EntryBundle("", team_data, None, pref_data, me_data, removed)

    fetched_ids = {t.id for t in team_data.teams or []}
    gone = team_data.teams is not None and initial_team_id not in fetched_ids
    if gone or is_forbidden(ch_data.error):
        removed = [initial_team_id] if initial_team_id else []
        candidates = get_available_team_ids(
            ctx,
            initial_team_id,
            team_data.teams,
            pref_data.preferences,
            me_data.user.locale if me_data.user else None,
        )
        logger.info(
            "current team invalid, switching",
            team_id=initial_team_id,
            candidates=candidates,
        )
        switched = await switch_teams(
            ctx,
            candidates,
            removed,
            include_deleted,
            last_disconnected,
            fetch_only,
        )
        return EntryBundle(
            switched.initial_team_id,
            team_data,
            switched.ch_data,
            pref_data,
            me_data,
            switched.remove_team_ids,
        )

    return EntryBundle(initial_team_id, team_data, ch_data, pref_data, me_data)


def collect_role_names(
    team_data: TeamsRequest | None,
    ch_data: ChannelsRequest | None,
    user: User | None,
) -> set[str]:
    """Union of role names referenced by the user and the fresh memberships."""
    names: set[str] = set(user.roles) if user else set()

    if team_data is not None and team_data.error is None:
        team_ids = {t.id for t in team_data.teams or []}
        for member in team_data.memberships or []:
            if member.team_id in team_ids:
                names |= member.roles

    if ch_data is not None and ch_data.channels and ch_data.memberships:
        channel_ids = {c.id for c in ch_data.channels}
        for member in ch_data.memberships:
            if member.channel_id in channel_ids:
                names |= member.roles

    names.discard("")
    return names


# -----------------------------------------------------------------------------
# Model preparation and commit
# -----------------------------------------------------------------------------


async def prepare_models(
    ctx: ServerContext,
    initial_team_id: str | None,
    remove_team_ids: Iterable[str] | None,
    team_data: TeamsRequest | None,
    ch_data: ChannelsRequest | None,
    pref_data: PreferencesRequest | None,
    me_data: UserRequest | None,
) -> list[list[WriteOp]]:
    """Build the write batches for one entry pass, deletions first.

    A team marked for removal is never upserted in the same pass.
    """
    store = ctx.store
    batches: list[list[WriteOp]] = []

    removed = set(remove_team_ids or ())
    batches.extend(await store.prepare_delete_teams(sorted(removed)))

    if team_data is not None and team_data.teams is not None:
        teams = [t for t in team_data.teams if t.id not in removed]
        memberships = [
            m for m in team_data.memberships or [] if m.team_id not in removed
        ]
        unreads = team_data.unreads or []
        ops = store.prepare_my_teams(teams, memberships, unreads)
        if ops:
            batches.append(ops)

    if (
        initial_team_id
        and initial_team_id not in removed
        and ch_data is not None
        and ch_data.channels
    ):
        batches.append(
            store.prepare_my_channels_for_team(
                initial_team_id, ch_data.channels, ch_data.memberships or []
            )
        )

    if pref_data is not None and pref_data.preferences is not None:
        ops = store.prepare_my_preferences(pref_data.preferences)
        if ops:
            batches.append(ops)

    if me_data is not None and me_data.user is not None:
        me = me_data.user
        batches.append(
            store.prepare_users([me])
            + store.prepare_common_system_values(current_user_id=me.id)
        )

    return batches


async def commit_models(
    ctx: ServerContext, batches: Iterable[list[WriteOp]]
) -> int:
    """Flatten ``batches`` into a single transaction. Returns the op count."""
    ops = [op for batch in batches for op in batch]
    await ctx.store.batch_records(ops)
    return len(ops)
