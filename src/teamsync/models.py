"""Pydantic models for server payloads.

Role fields arrive as space-separated strings ("system_user system_admin").
They are parsed into frozensets here so nothing downstream splits strings.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from teamsync.config import DEFAULT_LOCALE


def _parse_roles(value: Any) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset(value.split())
    return frozenset(str(v) for v in value if v)


RoleSet = Annotated[frozenset[str], BeforeValidator(_parse_roles)]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class Team(_Payload):
    id: str
    name: str = ""
    display_name: str = ""
    type: str = "O"
    delete_at: int = 0
    update_at: int = 0


class TeamMembership(_Payload):
    team_id: str
    user_id: str = ""
    roles: RoleSet = Field(default_factory=frozenset)
    delete_at: int = 0


class TeamUnread(_Payload):
    team_id: str
    msg_count: int = 0
    mention_count: int = 0


class Channel(_Payload):
    id: str
    team_id: str = ""
    type: str = "O"
    name: str = ""
    display_name: str = ""
    delete_at: int = 0
    last_post_at: int = 0
    total_msg_count: int = 0


class ChannelMembership(_Payload):
    channel_id: str
    user_id: str = ""
    roles: RoleSet = Field(default_factory=frozenset)
    msg_count: int = 0
    mention_count: int = 0
    last_viewed_at: int = 0


class Preference(_Payload):
    user_id: str = ""
    category: str
    name: str
    value: str = ""


class User(_Payload):
    id: str
    username: str = ""
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    nickname: str = ""
    locale: str = DEFAULT_LOCALE
    roles: RoleSet = Field(default_factory=frozenset)
    delete_at: int = 0
    update_at: int = 0

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)


class Role(_Payload):
    id: str = ""
    name: str
    display_name: str = ""
    permissions: list[str] = Field(default_factory=list)


class Post(_Payload):
    id: str
    channel_id: str
    user_id: str = ""
    message: str = ""
    create_at: int = 0
    update_at: int = 0
    delete_at: int = 0


class ClientConfig(_Payload):
    """Subset of the server's client config (old format, string values)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    experimental_primary_team: str = Field(
        default="", alias="ExperimentalPrimaryTeam"
    )
    teammate_name_display: str = Field(default="", alias="TeammateNameDisplay")
    lock_teammate_name_display: str = Field(
        default="false", alias="LockTeammateNameDisplay"
    )
    extend_session_length_with_activity: str = Field(
        default="false", alias="ExtendSessionLengthWithActivity"
    )
    session_length_mobile_in_days: str = Field(
        default="", alias="SessionLengthMobileInDays"
    )
    site_name: str = Field(default="", alias="SiteName")


class ClientLicense(_Payload):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    is_licensed: str = Field(default="false", alias="IsLicensed")
    lock_teammate_name_display: str = Field(
        default="false", alias="LockTeammateNameDisplay"
    )
