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
from teamsync.selection import (
    collation_key,
    display_username,
    get_preference_value,
    get_teammate_name_display_setting,
    group_channel_display_name,
    select_default_channel_for_team,
    select_default_team,
    sort_teams_by_user_preference,
)

TEAMS = [
    Team(id="t1", name="zulu", display_name="Zulu"),
    Team(id="t2", name="alpha", display_name="alpha"),
    Team(id="t3", name="echo", display_name="Écho"),
]


class TestCollation:
    def test_ignores_case_and_accents(self):
        assert collation_key("Écho")[0] == collation_key("echo")[0]

    def test_turkic_dotless_i(self):
        assert collation_key("IRMAK", "tr")[0] == "ırmak"


class TestTeamSelection:
    def test_sorted_by_display_name(self):
        ordered = sort_teams_by_user_preference(TEAMS, "en")
        assert [t.id for t in ordered] == ["t2", "t3", "t1"]

    def test_preferred_order_first(self):
        ordered = sort_teams_by_user_preference(TEAMS, "en", "t1, t9 ,t1")
        assert [t.id for t in ordered] == ["t1", "t2", "t3"]

    def test_deleted_teams_skipped(self):
        teams = [*TEAMS, Team(id="t0", name="aaa", delete_at=5)]
        assert select_default_team(teams, "en").id == "t2"

    def test_primary_team_wins(self):
        team = select_default_team(TEAMS, "en", "t1", primary_team="ECHO")
        assert team.id == "t3"

    def test_unknown_primary_team_falls_back(self):
        team = select_default_team(TEAMS, "en", "t1", primary_team="nope")
        assert team.id == "t1"

    def test_no_teams(self):
        assert select_default_team([], "en") is None


class TestChannelSelection:
    CHANNELS = [
        Channel(id="ts", team_id="t1", name="town-square"),
        Channel(id="b", team_id="t1", name="beta", display_name="Beta"),
        Channel(id="a", team_id="t1", name="alpha", display_name="Alpha"),
        Channel(id="p", team_id="t1", type="P", name="priv", display_name="0"),
        Channel(id="x", team_id="t2", name="town-square"),
    ]

    def test_default_channel_when_member(self):
        members = [ChannelMembership(channel_id="ts")]
        channel = select_default_channel_for_team(self.CHANNELS, members, "t1")
        assert channel.id == "ts"

    def test_default_channel_when_allowed_to_join(self):
        roles = [Role(name="team_user", permissions=["join_public_channels"])]
        channel = select_default_channel_for_team(
            self.CHANNELS, [], "t1", roles
        )
        assert channel.id == "ts"

    def test_first_open_member_channel_otherwise(self):
        members = [
            ChannelMembership(channel_id="b"),
            ChannelMembership(channel_id="a"),
            ChannelMembership(channel_id="p"),
        ]
        channel = select_default_channel_for_team(
            self.CHANNELS, members, "t1", []
        )
        assert channel.id == "a"

    def test_only_channels_of_the_team(self):
        channels = [c for c in self.CHANNELS if c.id != "ts"]
        members = [ChannelMembership(channel_id="x")]
        assert (
            select_default_channel_for_team(channels, members, "t1") is None
        )


class TestDisplayNames:
    USER = User(
        id="u1",
        username="bob",
        first_name="Bob",
        last_name="Builder",
        nickname="bobby",
    )

    def test_display_username(self):
        assert display_username(self.USER, "username") == "bob"
        assert display_username(self.USER, "full_name") == "Bob Builder"
        assert display_username(self.USER, "nickname_full_name") == "bobby"
        assert display_username(User(id="x", username="x"), "full_name") == "x"

    def test_group_channel_name_excludes_me(self):
        members = [
            User(id="me", username="me"),
            User(id="u2", username="carol"),
            User(id="u3", username="Alice"),
        ]
        name = group_channel_display_name(members, "me", "username")
        assert name == "Alice, carol"

    def test_preference_setting(self):
        prefs = [
            Preference(
                category="display_settings",
                name="name_format",
                value="full_name",
            )
        ]
        assert get_teammate_name_display_setting(prefs, None, None) == (
            "full_name"
        )
        assert get_preference_value(prefs, "display_settings", "x", "d") == "d"

    def test_locked_setting_overrides_preference(self):
        prefs = [
            Preference(
                category="display_settings",
                name="name_format",
                value="full_name",
            )
        ]
        config = ClientConfig.model_validate(
            {
                "TeammateNameDisplay": "nickname_full_name",
                "LockTeammateNameDisplay": "true",
            }
        )
        license = ClientLicense.model_validate(
            {"LockTeammateNameDisplay": "true"}
        )
        setting = get_teammate_name_display_setting(prefs, config, license)
        assert setting == "nickname_full_name"

    def test_server_default(self):
        config = ClientConfig.model_validate({"TeammateNameDisplay": ""})
        assert get_teammate_name_display_setting([], config, None) == (
            "username"
        )
