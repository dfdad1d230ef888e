"""Pure selection helpers: default team, default channel, display names.

None of these touch the network or the store.
"""

from __future__ import annotations

import unicodedata
from collections.abc import Iterable

from teamsync.config import (
    CATEGORY_DISPLAY_SETTINGS,
    DEFAULT_CHANNEL,
    DEFAULT_LOCALE,
    DISPLAY_PREFER_FULL_NAME,
    DISPLAY_PREFER_NICKNAME,
    DISPLAY_PREFER_USERNAME,
    NAME_NAME_FORMAT,
    OPEN_CHANNEL,
    PERMISSION_JOIN_PUBLIC_CHANNELS,
)
from teamsync.models import (
    Channel,
    ChannelMembership,
    ClientConfig,
    ClientLicense,
    Preference,
    Role,
    Team,
    User,
)

# Languages whose dotted/dotless i do not casefold the default way
_TURKIC = frozenset({"tr", "az"})


def _language(locale: str | None) -> str:
    return (locale or DEFAULT_LOCALE).replace("_", "-").split("-")[0].lower()


def collation_key(text: str, locale: str | None = None) -> tuple[str, str]:
    """Sort key that ignores case and accents, honoring Turkic casing."""
    if _language(locale) in _TURKIC:
        text_for_fold = text.replace("I", "ı").replace("İ", "i")
    else:
        text_for_fold = text
    decomposed = unicodedata.normalize("NFKD", text_for_fold)
    base = "".join(c for c in decomposed if not unicodedata.combining(c))
    return base.casefold(), text


def get_preference_value(
    preferences: Iterable[Preference],
    category: str,
    name: str,
    default: str = "",
) -> str:
    for pref in preferences:
        if pref.category == category and pref.name == name:
            return pref.value
    return default


# -----------------------------------------------------------------------------
# Teams
# -----------------------------------------------------------------------------


def sort_teams_by_user_preference(
    teams: Iterable[Team],
    locale: str | None,
    team_order_preference: str = "",
) -> list[Team]:
    """Teams in the user's saved order, the rest by display name.

    The order preference is a comma separated list of team ids.
    """
    active = [t for t in teams if not t.delete_at]
    by_name = sorted(
        active, key=lambda t: collation_key(t.display_name or t.name, locale)
    )
    if not team_order_preference:
        return by_name

    by_id = {t.id: t for t in active}
    ordered_ids = dict.fromkeys(
        tid.strip() for tid in team_order_preference.split(",") if tid.strip()
    )
    ordered = [by_id[tid] for tid in ordered_ids if tid in by_id]
    placed = {t.id for t in ordered}
    return ordered + [t for t in by_name if t.id not in placed]


def select_default_team(
    teams: Iterable[Team],
    locale: str | None,
    team_order_preference: str = "",
    primary_team: str = "",
) -> Team | None:
    """Pick the team to open when no valid current team exists.

    A configured primary team (matched by name) wins; otherwise the first
    team in the user's preferred order.
    """
    teams = list(teams)
    if primary_team:
        wanted = primary_team.lower()
        for team in teams:
            if team.name.lower() == wanted and not team.delete_at:
                return team

    ordered = sort_teams_by_user_preference(
        teams, locale, team_order_preference
    )
    return ordered[0] if ordered else None


# -----------------------------------------------------------------------------
# Channels
# -----------------------------------------------------------------------------


def has_permission(roles: Iterable[Role], permission: str) -> bool:
    return any(permission in role.permissions for role in roles)


def select_default_channel_for_team(
    channels: Iterable[Channel],
    memberships: Iterable[ChannelMembership],
    team_id: str,
    roles: Iterable[Role] | None = None,
    locale: str | None = None,
) -> Channel | None:
    """Pick the channel to open inside ``team_id``.

    The team's default channel is chosen when the user is a member of it or
    may join public channels; otherwise the first open channel the user
    belongs to, by display name, falling back to the default channel.
    Only channels of ``team_id`` are considered.
    """
    channels = [c for c in channels if c.team_id == team_id and not c.delete_at]
    member_ids = {m.channel_id for m in memberships}
    can_join_public = roles is not None and has_permission(
        roles, PERMISSION_JOIN_PUBLIC_CHANNELS
    )

    default_channel = next(
        (c for c in channels if c.name == DEFAULT_CHANNEL), None
    )
    if default_channel and (
        default_channel.id in member_ids or can_join_public
    ):
        return default_channel

    my_open_channels = sorted(
        (c for c in channels if c.type == OPEN_CHANNEL and c.id in member_ids),
        key=lambda c: collation_key(c.display_name or c.name, locale),
    )
    if my_open_channels:
        return my_open_channels[0]
    return default_channel


# -----------------------------------------------------------------------------
# Display names
# -----------------------------------------------------------------------------


def get_teammate_name_display_setting(
    preferences: Iterable[Preference],
    config: ClientConfig | None,
    license: ClientLicense | None,
) -> str:
    """Resolve how teammates' names are shown.

    An admin lock (config and license both set) overrides the user's own
    display preference.
    """
    config = config or ClientConfig()
    license = license or ClientLicense()

    locked = (
        config.lock_teammate_name_display.lower() == "true"
        and license.lock_teammate_name_display.lower() == "true"
    )
    if locked and config.teammate_name_display:
        return config.teammate_name_display

    preferred = get_preference_value(
        preferences, CATEGORY_DISPLAY_SETTINGS, NAME_NAME_FORMAT
    )
    if preferred:
        return preferred
    return config.teammate_name_display or DISPLAY_PREFER_USERNAME


def display_username(user: User, setting: str) -> str:
    if setting == DISPLAY_PREFER_NICKNAME:
        name = user.nickname or user.full_name
    elif setting == DISPLAY_PREFER_FULL_NAME:
        name = user.full_name
    else:
        name = user.username
    return name or user.username


def group_channel_display_name(
    members: Iterable[User],
    current_user_id: str,
    setting: str,
    locale: str | None = None,
) -> str:
    names = [
        display_username(u, setting) for u in members if u.id != current_user_id
    ]
    return ", ".join(sorted(names, key=lambda n: collation_key(n, locale)))
