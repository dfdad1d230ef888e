import pytest

from teamsync.entry.common import (
    collect_role_names,
    commit_models,
    fetch_app_entry_data,
    get_available_team_ids,
    prepare_models,
    switch_teams,
)
from teamsync.errors import ClientError, ErrorKind
from teamsync.models import (
    Channel,
    ChannelMembership,
    ClientConfig,
    Preference,
    Team,
    TeamMembership,
    User,
)
from teamsync.remote import (
    ChannelsRequest,
    PreferencesRequest,
    TeamsRequest,
    UserRequest,
)


def _cache_teams(store, *team_ids):
    store.apply(
        store.prepare_my_teams(
            [Team(id=tid, name=tid) for tid in team_ids],
            [TeamMembership(team_id=tid) for tid in team_ids],
            [],
        )
    )


class TestAvailableTeamIds:
    TEAMS = [
        Team(id="t1", name="alpha", display_name="Alpha"),
        Team(id="t2", name="beta", display_name="Beta"),
        Team(id="t3", name="gamma", display_name="Gamma"),
    ]

    def test_default_team_from_fresh_list(self, ctx):
        prefs = [Preference(category="teams_order", name="", value="t3,t1")]
        assert get_available_team_ids(ctx, "", self.TEAMS, prefs, "en") == [
            "t3"
        ]

    def test_excluded_team_is_never_returned(self, ctx):
        prefs = [Preference(category="teams_order", name="", value="t3,t1")]
        ids = get_available_team_ids(ctx, "t3", self.TEAMS, prefs, "en")
        assert ids == ["t1"]

    def test_order_preference_read_from_store(self, ctx, store):
        store.apply(
            store.prepare_my_preferences(
                [Preference(category="teams_order", name="", value="t2")]
            )
        )
        assert get_available_team_ids(ctx, "", self.TEAMS) == ["t2"]

    def test_primary_team_from_stored_config(self, ctx, store):
        config = ClientConfig.model_validate(
            {"ExperimentalPrimaryTeam": "gamma"}
        )
        store.apply(store.prepare_common_system_values(config=config))
        assert get_available_team_ids(ctx, "", self.TEAMS, []) == ["t3"]

    def test_cached_teams_without_fresh_list(self, ctx, store):
        _cache_teams(store, "t1", "t2", "t3")
        ids = get_available_team_ids(ctx, "t2")
        assert sorted(ids) == ["t1", "t3"]

    def test_no_teams_at_all(self, ctx):
        assert get_available_team_ids(ctx, "", [], []) == []


@pytest.mark.asyncio
class TestSwitchTeams:
    async def test_skips_forbidden_until_first_success(
        self, ctx, fake_client, forbidden
    ):
        fake_client.errors[("get_my_channels", "A")] = forbidden()
        fake_client.errors[("get_my_channels", "B")] = forbidden()
        fake_client.channels["C"] = [Channel(id="c", team_id="C")]
        seed = ["X"]

        result = await switch_teams(ctx, ["A", "B", "C", "D"], seed)

        assert result.initial_team_id == "C"
        assert result.remove_team_ids == ["X", "A", "B"]
        assert [c.id for c in result.ch_data.channels] == ["c"]
        tried = [c[0] for c in fake_client.calls_to("get_my_channels")]
        assert tried == ["A", "B", "C"]
        assert seed == ["X"]

    async def test_nothing_succeeds(self, ctx, fake_client, forbidden):
        fake_client.errors["get_my_channels"] = forbidden()
        result = await switch_teams(ctx, ["A", "B"], [])
        assert result.initial_team_id == ""
        assert result.ch_data is None
        assert result.remove_team_ids == ["A", "B"]

    async def test_other_errors_still_win(self, ctx, fake_client):
        fake_client.errors[("get_my_channels", "A")] = ClientError(
            ErrorKind.TRANSIENT, "timeout"
        )
        result = await switch_teams(ctx, ["A", "B"], [])
        assert result.initial_team_id == "A"
        assert result.ch_data.error.kind is ErrorKind.TRANSIENT
        assert result.remove_team_ids == []

    async def test_passes_fetch_options(self, ctx, fake_client):
        await switch_teams(ctx, ["A"], [], include_deleted=False, since=7)
        assert fake_client.calls_to("get_my_channels") == [("A", False, 7)]


@pytest.mark.asyncio
class TestFetchAppEntryData:
    async def test_default_case(self, ctx, store, seeded_client):
        store.apply(store.prepare_websocket_last_disconnected(555))
        bundle = await fetch_app_entry_data(ctx, "t1")
        assert bundle.initial_team_id == "t1"
        assert bundle.remove_team_ids == []
        assert len(bundle.ch_data.channels) == 3
        assert bundle.me_data.user.id == "me"
        assert seeded_client.calls_to("get_my_channels") == [
            ("t1", True, 555)
        ]
        # nothing is written while fetching
        assert store.get_my_team_ids() == []

    async def test_zero_teams_removes_every_cached_team(
        self, ctx, store, fake_client
    ):
        _cache_teams(store, "t1", "t2")
        bundle = await fetch_app_entry_data(ctx, "t1")
        assert bundle.initial_team_id == ""
        assert sorted(bundle.remove_team_ids) == ["t1", "t2"]
        # no switch attempted
        assert [c[0] for c in fake_client.calls_to("get_my_channels")] == [
            "t1"
        ]

    async def test_prior_team_gone(self, ctx, seeded_client):
        seeded_client.teams = seeded_client.teams[1:]
        seeded_client.team_members = seeded_client.team_members[1:]

        bundle = await fetch_app_entry_data(ctx, "t1")

        assert bundle.initial_team_id == "t2"
        assert bundle.remove_team_ids == ["t1"]
        assert [c.id for c in bundle.ch_data.channels] == ["c3"]

    async def test_prior_team_forbidden(self, ctx, seeded_client, forbidden):
        seeded_client.errors[("get_my_channels", "t1")] = forbidden()
        bundle = await fetch_app_entry_data(ctx, "t1")
        assert bundle.initial_team_id == "t2"
        assert bundle.remove_team_ids == ["t1"]
        assert bundle.ch_data.error is None

    async def test_no_prior_team(self, ctx, seeded_client):
        bundle = await fetch_app_entry_data(ctx, "")
        assert bundle.initial_team_id == "t1"
        assert bundle.remove_team_ids == []
        assert [c[0] for c in seeded_client.calls_to("get_my_channels")] == [
            "t1"
        ]

    async def test_team_fetch_failure_keeps_prior_team(
        self, ctx, seeded_client
    ):
        seeded_client.errors["get_my_teams"] = ClientError(
            ErrorKind.SERVER, "oops"
        )
        bundle = await fetch_app_entry_data(ctx, "t1")
        assert bundle.initial_team_id == "t1"
        assert bundle.remove_team_ids == []
        assert bundle.team_data.error is not None

    async def test_forbidden_without_team_list_uses_cache(
        self, ctx, store, seeded_client, forbidden
    ):
        _cache_teams(store, "t1", "t2")
        seeded_client.errors["get_my_teams"] = ClientError(
            ErrorKind.TRANSIENT, "down"
        )
        seeded_client.errors[("get_my_channels", "t1")] = forbidden()

        bundle = await fetch_app_entry_data(ctx, "t1")

        assert bundle.initial_team_id == "t2"
        assert bundle.remove_team_ids == ["t1"]


class TestCollectRoleNames:
    def test_union_restricted_to_fetched_channels(self):
        team_data = TeamsRequest(
            teams=[Team(id="t1")],
            memberships=[
                TeamMembership(team_id="t1", roles="team_user team_admin"),
                TeamMembership(team_id="t9", roles="team_guest"),
            ],
            unreads=[],
        )
        ch_data = ChannelsRequest(
            channels=[Channel(id="c1", team_id="t1")],
            memberships=[
                ChannelMembership(channel_id="c1", roles="channel_user"),
                ChannelMembership(channel_id="c2", roles="channel_admin"),
            ],
        )
        user = User(id="me", roles="system_user")

        names = collect_role_names(team_data, ch_data, user)

        assert names == {
            "system_user",
            "team_user",
            "team_admin",
            "channel_user",
        }

    def test_team_roles_skipped_on_error(self):
        team_data = TeamsRequest(
            memberships=[TeamMembership(team_id="t1", roles="team_user")],
            error=ClientError(ErrorKind.SERVER, "x"),
        )
        assert collect_role_names(team_data, None, None) == set()


@pytest.mark.asyncio
class TestPrepareAndCommit:
    async def test_removal_only_is_one_deletion_batch(self, ctx, store):
        _cache_teams(store, "t1")
        failed = ClientError(ErrorKind.TRANSIENT, "down")

        batches = await prepare_models(
            ctx,
            "",
            ["t1"],
            TeamsRequest(error=failed),
            None,
            PreferencesRequest(error=failed),
            UserRequest(error=failed),
        )

        assert len(batches) == 1
        assert all(op.is_delete for op in batches[0])

        await commit_models(ctx, batches)
        assert store.get_team("t1") is None

    async def test_removed_team_is_not_upserted(self, ctx, store):
        _cache_teams(store, "t1")
        team_data = TeamsRequest(
            teams=[Team(id="t1"), Team(id="t2")],
            memberships=[
                TeamMembership(team_id="t1"),
                TeamMembership(team_id="t2"),
            ],
            unreads=[],
        )

        batches = await prepare_models(
            ctx, "t2", ["t1"], team_data, None, None, None
        )
        await commit_models(ctx, batches)

        assert store.get_team("t1") is None
        assert store.get_my_team("t1") is None
        assert store.get_my_team_ids() == ["t2"]

    async def test_unknown_removals_are_ignored(self, ctx):
        batches = await prepare_models(
            ctx, "", ["nope", ""], None, None, None, None
        )
        assert batches == []

    async def test_channels_need_an_initial_team(self, ctx):
        ch_data = ChannelsRequest(
            channels=[Channel(id="c1", team_id="t1")], memberships=[]
        )
        batches = await prepare_models(ctx, "", [], None, ch_data, None, None)
        assert batches == []
        batches = await prepare_models(ctx, "t1", [], None, ch_data, None, None)
        assert len(batches) == 1

    async def test_me_record_sets_current_user(self, ctx, store):
        me = UserRequest(user=User(id="me", username="alice"))
        await commit_models(
            ctx, await prepare_models(ctx, "", [], None, None, None, me)
        )
        assert store.get_current_user().username == "alice"

    async def test_zero_batches_issue_no_write(self, ctx, store, monkeypatch):
        writes = []
        monkeypatch.setattr(store, "apply", writes.append)
        assert await commit_models(ctx, []) == 0
        assert writes == []
