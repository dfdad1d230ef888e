import pytest
import structlog

from teamsync.errors import ClientError, ErrorKind
from teamsync.models import (
    Channel,
    ChannelMembership,
    ClientConfig,
    ClientLicense,
    Post,
    Role,
    Team,
    TeamMembership,
    TeamUnread,
    User,
)
from teamsync.notifications import LoggingScheduler
from teamsync.registry import ServerRegistry
from teamsync.store import ServerStore

SERVER_URL = "https://chat.example.com"


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo logging configuration bound to a test's captured stderr."""
    yield
    structlog.reset_defaults()


def _forbidden(path: str = "") -> ClientError:
    return ClientError.from_status(403, f"{SERVER_URL}/api/v4{path}")


class FakeClient:
    """In-memory stand-in for teamsync.client.Client.

    ``errors`` maps a method name, or ``(method, first_arg)``, to the
    exception that call should raise. Every call is recorded in ``calls``.
    """

    def __init__(self):
        self.me = User(id="me", username="alice", roles="system_user")
        self.teams: list[Team] = []
        self.team_members: list[TeamMembership] = []
        self.team_unreads: list[TeamUnread] = []
        self.channels: dict[str, list[Channel]] = {}
        self.channel_members: dict[str, list[ChannelMembership]] = {}
        self.preferences = []
        self.roles: dict[str, Role] = {}
        self.config = ClientConfig()
        self.license = ClientLicense()
        self.posts: dict[str, list[Post]] = {}
        self.profiles: dict[str, User] = {}
        self.group_members: dict[str, list[User]] = {}
        self.errors: dict = {}
        self.calls: list[tuple] = []
        self.closed = False

    def _call(self, name, *args):
        self.calls.append((name, *args))
        error = None
        if args and isinstance(args[0], str):
            error = self.errors.get((name, args[0]))
        error = error or self.errors.get(name)
        if error is not None:
            raise error

    def calls_to(self, name):
        return [c[1:] for c in self.calls if c[0] == name]

    async def close(self):
        self.closed = True

    async def get_me(self):
        self._call("get_me")
        return self.me

    async def get_profiles_by_ids(self, user_ids):
        self._call("get_profiles_by_ids", list(user_ids))
        return [self.profiles[u] for u in user_ids if u in self.profiles]

    async def get_profiles_in_group_channels(self, channel_ids):
        self._call("get_profiles_in_group_channels", list(channel_ids))
        return {
            cid: self.group_members[cid]
            for cid in channel_ids
            if cid in self.group_members
        }

    async def attach_device(self, device_id):
        self._call("attach_device", device_id)

    async def get_my_teams(self):
        self._call("get_my_teams")
        return list(self.teams)

    async def get_my_team_members(self):
        self._call("get_my_team_members")
        return list(self.team_members)

    async def get_my_teams_unread(self):
        self._call("get_my_teams_unread")
        return list(self.team_unreads)

    async def get_my_channels(self, team_id, include_deleted=False, since=0):
        self._call("get_my_channels", team_id, include_deleted, since)
        return list(self.channels.get(team_id, []))

    async def get_my_channel_members(self, team_id):
        self._call("get_my_channel_members", team_id)
        return list(self.channel_members.get(team_id, []))

    async def get_my_preferences(self):
        self._call("get_my_preferences")
        return list(self.preferences)

    async def get_roles_by_names(self, names):
        self._call("get_roles_by_names", list(names))
        return [self.roles[n] for n in names if n in self.roles]

    async def get_client_config(self):
        self._call("get_client_config")
        return self.config

    async def get_client_license(self):
        self._call("get_client_license")
        return self.license

    async def get_posts(self, channel_id, page=0, per_page=60):
        self._call("get_posts", channel_id)
        return list(self.posts.get(channel_id, []))

    async def get_posts_since(self, channel_id, since):
        self._call("get_posts_since", channel_id, since)
        return [
            p
            for p in self.posts.get(channel_id, [])
            if max(p.create_at, p.update_at) > since
        ]


def seed_two_teams(client: FakeClient) -> FakeClient:
    """Alpha (t1) and Beta (t2), with a DM to bob visible from Alpha."""
    client.teams = [
        Team(id="t1", name="alpha", display_name="Alpha"),
        Team(id="t2", name="beta", display_name="Beta"),
    ]
    client.team_members = [
        TeamMembership(team_id="t1", user_id="me", roles="team_user"),
        TeamMembership(
            team_id="t2", user_id="me", roles="team_user team_admin"
        ),
    ]
    client.team_unreads = [
        TeamUnread(team_id="t1", msg_count=2, mention_count=1),
    ]
    client.channels = {
        "t1": [
            Channel(
                id="c1",
                team_id="t1",
                name="town-square",
                display_name="Town Square",
                total_msg_count=10,
            ),
            Channel(
                id="c2",
                team_id="t1",
                name="dev",
                display_name="Dev",
                total_msg_count=5,
            ),
            Channel(id="dm1", type="D", name="bob__me"),
        ],
        "t2": [
            Channel(
                id="c3",
                team_id="t2",
                name="town-square",
                display_name="Town Square",
            ),
        ],
    }
    client.channel_members = {
        "t1": [
            ChannelMembership(
                channel_id="c1", roles="channel_user", msg_count=10
            ),
            ChannelMembership(
                channel_id="c2",
                roles="channel_user channel_admin",
                msg_count=3,
            ),
            ChannelMembership(channel_id="dm1", roles="channel_user"),
        ],
        "t2": [ChannelMembership(channel_id="c3", roles="channel_user")],
    }
    client.profiles = {
        "bob": User(
            id="bob", username="bob", first_name="Bob", last_name="Builder"
        ),
    }
    client.roles = {
        name: Role(id=f"r-{name}", name=name, permissions=perms)
        for name, perms in {
            "system_user": ["create_team"],
            "team_user": ["join_public_channels"],
            "team_admin": ["manage_team"],
            "channel_user": ["create_post"],
            "channel_admin": ["manage_channel_roles"],
        }.items()
    }
    client.posts = {
        "c2": [
            Post(id="p1", channel_id="c2", message="hi", create_at=100),
            Post(id="p2", channel_id="c2", message="there", create_at=200),
        ],
    }
    return client


@pytest.fixture
def server_url():
    return SERVER_URL


@pytest.fixture
def store(tmp_path):
    s = ServerStore(tmp_path / "server")
    yield s
    s.close()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def seeded_client(fake_client):
    return seed_two_teams(fake_client)


@pytest.fixture
def logouts():
    return []


@pytest.fixture
def registry(server_url, store, fake_client, logouts):
    reg = ServerRegistry(
        notifications=LoggingScheduler(), logout_handler=logouts.append
    )
    reg.register_store(server_url, store)
    reg.register_client(server_url, fake_client)
    return reg


@pytest.fixture
def ctx(server_url, registry):
    return registry.resolve(server_url)


@pytest.fixture
def forbidden():
    return _forbidden


@pytest.fixture
def unauthorized():
    return ClientError(ErrorKind.UNAUTHORIZED, "token expired", status_code=401)
