"""Fetch functions returning result-or-error shapes.

None of these raise for a failed request: ClientError (and a missing
client) are returned in the ``error`` field after passing through the
forced-logout hook. With ``fetch_only=False`` a successful result is also
written to the local store in one transaction.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from teamsync.config import DM_CHANNEL, GM_CHANNEL
from teamsync.errors import ClientError, ClientNotFoundError
from teamsync.models import (
    Channel,
    ChannelMembership,
    ClientConfig,
    ClientLicense,
    Post,
    Preference,
    Team,
    TeamMembership,
    TeamUnread,
    User,
)
from teamsync.registry import ServerContext
from teamsync.selection import display_username, group_channel_display_name
from teamsync.session import force_logout_if_necessary

logger = structlog.get_logger(__name__)

# Errors a fetch converts into data instead of raising
FETCH_ERRORS = (ClientError, ClientNotFoundError)


@dataclass
class TeamsRequest:
    teams: list[Team] | None = None
    memberships: list[TeamMembership] | None = None
    unreads: list[TeamUnread] | None = None
    error: Exception | None = None


@dataclass
class ChannelsRequest:
    channels: list[Channel] | None = None
    memberships: list[ChannelMembership] | None = None
    error: Exception | None = None


@dataclass
class PreferencesRequest:
    preferences: list[Preference] | None = None
    error: Exception | None = None


@dataclass
class UserRequest:
    user: User | None = None
    error: Exception | None = None


@dataclass
class ConfigAndLicenseRequest:
    config: ClientConfig | None = None
    license: ClientLicense | None = None
    error: Exception | None = None


@dataclass
class PostsRequest:
    channel_id: str
    posts: list[Post] = field(default_factory=list)
    error: Exception | None = None


@dataclass
class ProfilesRequest:
    users: list[User] = field(default_factory=list)
    channels: list[Channel] = field(default_factory=list)
    error: Exception | None = None


def _failed(ctx: ServerContext, what: str, error: Exception) -> None:
    force_logout_if_necessary(ctx, error)
    logger.warning(
        "fetch failed",
        what=what,
        server_url=ctx.server_url,
        error=str(error),
    )


async def gather_or_raise(*aws: Awaitable[Any]) -> list[Any]:
    """Await ``aws`` together, then raise the first failure in argument order.

    Every awaitable runs to completion before anything is raised, so no
    sibling request is left running.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)


# -----------------------------------------------------------------------------
# Entry fetches
# -----------------------------------------------------------------------------


async def fetch_my_teams(
    ctx: ServerContext, fetch_only: bool = False
) -> TeamsRequest:
    """Teams, team memberships and team unread counts for the current user."""
    try:
        client = ctx.get_client()
        teams, memberships, unreads = await gather_or_raise(
            client.get_my_teams(),
            client.get_my_team_members(),
            client.get_my_teams_unread(),
        )
    except FETCH_ERRORS as e:
        _failed(ctx, "teams", e)
        return TeamsRequest(error=e)

    if not fetch_only:
        await ctx.store.batch_records(
            ctx.store.prepare_my_teams(teams, memberships, unreads)
        )
    return TeamsRequest(teams=teams, memberships=memberships, unreads=unreads)


async def fetch_my_channels_for_team(
    ctx: ServerContext,
    team_id: str,
    include_deleted: bool = True,
    since: int = 0,
    fetch_only: bool = False,
) -> ChannelsRequest:
    """Channels and channel memberships of the current user in a team.

    ``since`` limits deleted channels to those archived after that time.
    """
    try:
        client = ctx.get_client()
        channels, memberships = await gather_or_raise(
            client.get_my_channels(team_id, include_deleted, since),
            client.get_my_channel_members(team_id),
        )
    except FETCH_ERRORS as e:
        _failed(ctx, f"channels:{team_id}", e)
        return ChannelsRequest(error=e)

    if not fetch_only:
        ops = ctx.store.prepare_my_channels_for_team(
            team_id, channels, memberships
        )
        await ctx.store.batch_records(ops)
    return ChannelsRequest(channels=channels, memberships=memberships)


async def fetch_my_preferences(
    ctx: ServerContext, fetch_only: bool = False
) -> PreferencesRequest:
    try:
        preferences = await ctx.get_client().get_my_preferences()
    except FETCH_ERRORS as e:
        _failed(ctx, "preferences", e)
        return PreferencesRequest(error=e)

    if not fetch_only:
        ops = ctx.store.prepare_my_preferences(preferences)
        await ctx.store.batch_records(ops)
    return PreferencesRequest(preferences=preferences)


async def fetch_me(ctx: ServerContext, fetch_only: bool = False) -> UserRequest:
    try:
        user = await ctx.get_client().get_me()
    except FETCH_ERRORS as e:
        _failed(ctx, "me", e)
        return UserRequest(error=e)

    if not fetch_only:
        await ctx.store.batch_records(ctx.store.prepare_users([user]))
    return UserRequest(user=user)


async def fetch_config_and_license(
    ctx: ServerContext, fetch_only: bool = False
) -> ConfigAndLicenseRequest:
    try:
        client = ctx.get_client()
        config, license = await gather_or_raise(
            client.get_client_config(),
            client.get_client_license(),
        )
    except FETCH_ERRORS as e:
        _failed(ctx, "config", e)
        return ConfigAndLicenseRequest(error=e)

    if not fetch_only:
        ops = ctx.store.prepare_common_system_values(
            config=config, license=license
        )
        await ctx.store.batch_records(ops)
    return ConfigAndLicenseRequest(config=config, license=license)


# -----------------------------------------------------------------------------
# Deferred fetches
# -----------------------------------------------------------------------------


async def fetch_posts_for_channel(
    ctx: ServerContext, channel_id: str, fetch_only: bool = False
) -> PostsRequest:
    """Newest page of posts, or only what changed since the last stored post."""
    since = await ctx.store.latest_post_time(channel_id)
    try:
        client = ctx.get_client()
        if since:
            posts = await client.get_posts_since(channel_id, since)
        else:
            posts = await client.get_posts(channel_id)
    except FETCH_ERRORS as e:
        _failed(ctx, f"posts:{channel_id}", e)
        return PostsRequest(channel_id=channel_id, error=e)

    if not fetch_only:
        await ctx.store.batch_records(ctx.store.prepare_posts(posts))
    return PostsRequest(channel_id=channel_id, posts=posts)


def is_unread_channel(channel: Channel, member: ChannelMembership) -> bool:
    if channel.delete_at:
        return False
    return (
        member.mention_count > 0
        or channel.total_msg_count - member.msg_count > 0
    )


async def fetch_posts_for_unread_channels(
    ctx: ServerContext,
    channels: Iterable[Channel],
    memberships: Iterable[ChannelMembership],
    exclude_channel_id: str | None = None,
) -> list[PostsRequest]:
    members = {m.channel_id: m for m in memberships}
    unread = [
        c
        for c in channels
        if c.id != exclude_channel_id
        and c.id in members
        and is_unread_channel(c, members[c.id])
    ]
    if not unread:
        return []

    logger.debug("fetching posts for unread channels", count=len(unread))
    return await gather_or_raise(
        *(fetch_posts_for_channel(ctx, c.id) for c in unread)
    )


def _dm_teammate_id(channel: Channel, current_user_id: str) -> str:
    """DM channel names are "<user_id>__<user_id>"."""
    ids = [part for part in channel.name.split("__") if part]
    others = [uid for uid in ids if uid != current_user_id]
    return others[0] if others else current_user_id


async def fetch_missing_sidebar_info(
    ctx: ServerContext,
    direct_channels: Iterable[Channel],
    locale: str | None,
    teammate_display_name_setting: str,
    current_user_id: str,
    fetch_only: bool = False,
) -> ProfilesRequest:
    """Fetch profiles behind DM/GM channels and derive their display names."""
    direct_channels = list(direct_channels)
    dms = [c for c in direct_channels if c.type == DM_CHANNEL]
    gms = [c for c in direct_channels if c.type == GM_CHANNEL]
    dm_user_ids = sorted({_dm_teammate_id(c, current_user_id) for c in dms})

    async def _dm_profiles() -> list[User]:
        if not dm_user_ids:
            return []
        return await client.get_profiles_by_ids(dm_user_ids)

    async def _gm_profiles() -> dict[str, list[User]]:
        if not gms:
            return {}
        return await client.get_profiles_in_group_channels([c.id for c in gms])

    try:
        client = ctx.get_client()
        dm_users, gm_members = await gather_or_raise(
            _dm_profiles(), _gm_profiles()
        )
    except FETCH_ERRORS as e:
        _failed(ctx, "sidebar profiles", e)
        return ProfilesRequest(error=e)

    users_by_id = {u.id: u for u in dm_users}
    for members in gm_members.values():
        for member in members:
            users_by_id.setdefault(member.id, member)

    updated: list[Channel] = []
    for channel in dms:
        teammate = users_by_id.get(_dm_teammate_id(channel, current_user_id))
        if teammate is None:
            continue
        name = display_username(teammate, teammate_display_name_setting)
        updated.append(channel.model_copy(update={"display_name": name}))
    for channel in gms:
        members = gm_members.get(channel.id)
        if not members:
            continue
        name = group_channel_display_name(
            members, current_user_id, teammate_display_name_setting, locale
        )
        updated.append(channel.model_copy(update={"display_name": name}))

    users = list(users_by_id.values())
    if not fetch_only:
        await ctx.store.batch_records(
            ctx.store.prepare_users(users) + ctx.store.prepare_channels(updated)
        )
    return ProfilesRequest(users=users, channels=updated)


async def fetch_teams_channels_and_unread_posts(
    ctx: ServerContext,
    teams: Iterable[Team],
    memberships: Iterable[TeamMembership],
    exclude_team_id: str | None = None,
) -> list[ChannelsRequest]:
    """Channels for every other team the user belongs to, then their unreads."""
    member_team_ids = {m.team_id for m in memberships}
    other_teams = [
        t for t in teams if t.id in member_team_ids and t.id != exclude_team_id
    ]
    if not other_teams:
        return []

    results = await gather_or_raise(
        *(
            fetch_my_channels_for_team(ctx, t.id, True, 0, True)
            for t in other_teams
        )
    )

    ops = []
    channels: list[Channel] = []
    channel_members: list[ChannelMembership] = []
    for team, result in zip(other_teams, results):
        if result.error is not None or result.channels is None:
            continue
        members = result.memberships or []
        ops.extend(
            ctx.store.prepare_my_channels_for_team(
                team.id, result.channels, members
            )
        )
        channels.extend(result.channels)
        channel_members.extend(members)

    await ctx.store.batch_records(ops)
    await fetch_posts_for_unread_channels(ctx, channels, channel_members)
    return results
