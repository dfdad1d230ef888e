"""Background enrichment dispatched after an entry pass has committed.

Each fetch runs as its own task on the server's BackgroundTasks, so the
entry procedure returns without waiting and a failure in one fetch never
affects the others or the entry result.
"""

from __future__ import annotations

from teamsync.config import DIRECT_CHANNEL_TYPES
from teamsync.logging_config import get_logger
from teamsync.models import (
    Channel,
    ClientConfig,
    ClientLicense,
    Preference,
    User,
)
from teamsync.registry import ServerContext
from teamsync.remote import (
    ChannelsRequest,
    ConfigAndLicenseRequest,
    PreferencesRequest,
    TeamsRequest,
    fetch_missing_sidebar_info,
    fetch_posts_for_channel,
    fetch_posts_for_unread_channels,
    fetch_teams_channels_and_unread_posts,
)
from teamsync.selection import get_teammate_name_display_setting

logger = get_logger("entry.deferred")


def _dispatch_channel_enrichment(
    ctx: ServerContext,
    ch_data: ChannelsRequest | None,
    preferences: list[Preference] | None,
    config: ClientConfig | None,
    license: ClientLicense | None,
    locale: str | None,
    current_user_id: str,
    exclude_channel_id: str | None = None,
) -> None:
    if ch_data is None or not ch_data.channels or not ch_data.memberships:
        return

    direct_channels = [
        c for c in ch_data.channels if c.type in DIRECT_CHANNEL_TYPES
    ]
    if direct_channels:
        setting = get_teammate_name_display_setting(
            preferences or [], config, license
        )
        ctx.tasks.spawn(
            fetch_missing_sidebar_info(
                ctx, direct_channels, locale, setting, current_user_id
            ),
            name="sidebar-profiles",
        )

    ctx.tasks.spawn(
        fetch_posts_for_unread_channels(
            ctx, ch_data.channels, ch_data.memberships, exclude_channel_id
        ),
        name="unread-posts",
    )


def _dispatch_other_teams(
    ctx: ServerContext, team_data: TeamsRequest, active_team_id: str | None
) -> None:
    if not team_data.teams or not team_data.memberships:
        return
    ctx.tasks.spawn(
        fetch_teams_channels_and_unread_posts(
            ctx, team_data.teams, team_data.memberships, active_team_id
        ),
        name="other-teams",
    )


def deferred_app_entry_actions(
    ctx: ServerContext,
    current_user_id: str,
    locale: str | None,
    preferences: list[Preference] | None,
    config: ClientConfig | None,
    license: ClientLicense | None,
    team_data: TeamsRequest,
    ch_data: ChannelsRequest | None,
    initial_team_id: str,
) -> None:
    logger.debug("dispatching app entry enrichment", server_url=ctx.server_url)
    _dispatch_channel_enrichment(
        ctx, ch_data, preferences, config, license, locale, current_user_id
    )
    _dispatch_other_teams(ctx, team_data, initial_team_id)


def deferred_login_actions(
    ctx: ServerContext,
    user: User,
    pref_data: PreferencesRequest,
    cl_data: ConfigAndLicenseRequest,
    team_data: TeamsRequest,
    ch_data: ChannelsRequest | None = None,
    initial_team_id: str | None = None,
    initial_channel: Channel | None = None,
) -> None:
    """Like the app entry variant, but the selected channel's posts go first."""
    logger.debug("dispatching login enrichment", server_url=ctx.server_url)
    if initial_channel is not None:
        ctx.tasks.spawn(
            fetch_posts_for_channel(ctx, initial_channel.id),
            name="initial-channel-posts",
        )

    _dispatch_channel_enrichment(
        ctx,
        ch_data,
        pref_data.preferences,
        cl_data.config,
        cl_data.license,
        user.locale,
        user.id,
        exclude_channel_id=initial_channel.id if initial_channel else None,
    )
    _dispatch_other_teams(ctx, team_data, initial_team_id)
