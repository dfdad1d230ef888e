"""LMDB-backed local store for one chat server.

Every entity lives in a named sub-database with msgpack-encoded values.
Writes are expressed as lists of WriteOp built by the ``prepare_*``
methods, then applied by ``batch_records`` inside a single write
transaction, so a batch is either fully visible to readers or not at all.
"""

from __future__ import annotations

import asyncio
import struct
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import lmdb
import msgpack
import structlog
from pydantic import BaseModel

from teamsync.config import DEFAULT_MAP_SIZE, MAX_TEAM_CHANNEL_HISTORY
from teamsync.models import (
    Channel,
    ChannelMembership,
    ClientConfig,
    ClientLicense,
    Post,
    Preference,
    Role,
    Team,
    TeamMembership,
    TeamUnread,
    User,
)

logger = structlog.get_logger(__name__)

# System value keys
SYSTEM_CONFIG = "config"
SYSTEM_LICENSE = "license"
SYSTEM_CURRENT_TEAM_ID = "currentTeamId"
SYSTEM_CURRENT_CHANNEL_ID = "currentChannelId"
SYSTEM_CURRENT_USER_ID = "currentUserId"
SYSTEM_WEBSOCKET = "websocket"


# =============================================================================
# Key Encoding Utilities
# =============================================================================


def _pack_u64(val: int) -> bytes:
    """Pack u64 as big-endian for lexicographic ordering."""
    return struct.pack(">Q", max(val, 0))


def _composite_key(*parts: str | int | bytes) -> bytes:
    """Create composite key with null-separated parts."""
    encoded = []
    for p in parts:
        if isinstance(p, int):
            encoded.append(_pack_u64(p))
        elif isinstance(p, bytes):
            encoded.append(p)
        else:
            encoded.append(p.encode("utf-8"))
    return b"\x00".join(encoded)


def _pack(value: Any) -> bytes:
    return msgpack.packb(value, use_bin_type=True)


def _unpack(data: bytes) -> Any:
    return msgpack.unpackb(data, raw=False)


def _record(model: BaseModel) -> bytes:
    return _pack(model.model_dump(mode="json"))


# =============================================================================
# Write operations and records
# =============================================================================


@dataclass(frozen=True)
class WriteOp:
    """A single put (``value`` set) or delete (``value`` is None)."""

    table: bytes
    key: bytes
    value: bytes | None = None

    @property
    def is_delete(self) -> bool:
        return self.value is None


@dataclass
class MyTeam:
    """The current user's membership in a team, with unread counts."""

    id: str
    roles: frozenset[str]
    msg_count: int = 0
    mention_count: int = 0


@dataclass
class CommonSystemValues:
    config: ClientConfig
    license: ClientLicense
    current_team_id: str
    current_channel_id: str
    current_user_id: str


# =============================================================================
# Store
# =============================================================================


class ServerStore:
    """Local snapshot of one server's teams, channels, users and settings."""

    _DBS = [
        b"teams",  # team_id -> Team
        b"my_teams",  # team_id -> MyTeam
        b"channels",  # channel_id -> Channel
        b"my_channels",  # channel_id -> ChannelMembership
        b"channels_by_team",  # team_id|channel_id -> ""
        b"preferences",  # category|name -> Preference
        b"users",  # user_id -> User
        b"roles",  # role name -> Role
        b"system",  # key -> value
        b"team_channel_history",  # team_id -> [channel_id, ...]
        b"posts",  # post_id -> Post
        b"posts_by_channel",  # channel_id|create_at(u64)|post_id -> ""
    ]

    def __init__(self, db_path: Path, map_size: int = DEFAULT_MAP_SIZE):
        self.db_path = db_path
        self.db_path.mkdir(parents=True, exist_ok=True)

        self.env = lmdb.open(
            str(db_path),
            map_size=map_size,
            max_dbs=len(self._DBS) + 4,
        )

        self._dbs: dict[bytes, Any] = {}
        with self.env.begin(write=True) as txn:
            for name in self._DBS:
                self._dbs[name] = self.env.open_db(name, txn=txn)

    def _db(self, name: bytes) -> Any:
        return self._dbs[name]

    def close(self) -> None:
        self.env.close()

    # =========================================================================
    # Commit
    # =========================================================================

    def apply(self, ops: Iterable[WriteOp]) -> int:
        """Apply operations in one write transaction. Returns the op count."""
        count = 0
        with self.env.begin(write=True) as txn:
            for op in ops:
                db = self._db(op.table)
                if op.value is None:
                    txn.delete(op.key, db=db)
                else:
                    txn.put(op.key, op.value, db=db)
                count += 1
        return count

    async def batch_records(self, ops: list[WriteOp]) -> None:
        """Commit ``ops`` atomically without blocking the event loop.

        An empty list issues no write at all.
        """
        if not ops:
            return
        count = await asyncio.to_thread(self.apply, ops)
        logger.debug("batch committed", ops=count, path=str(self.db_path))

    async def set_current_team_and_channel_id(
        self, team_id: str, channel_id: str
    ) -> None:
        await self.batch_records(
            self.prepare_common_system_values(
                current_team_id=team_id,
                current_channel_id=channel_id,
            )
        )

    # =========================================================================
    # System values
    # =========================================================================

    def get_system_value(self, key: str, default: Any = None) -> Any:
        with self.env.begin(db=self._db(b"system")) as txn:
            data = txn.get(key.encode("utf-8"))
            return _unpack(data) if data is not None else default

    def get_current_team_id(self) -> str:
        return self.get_system_value(SYSTEM_CURRENT_TEAM_ID, "")

    def get_current_channel_id(self) -> str:
        return self.get_system_value(SYSTEM_CURRENT_CHANNEL_ID, "")

    def get_current_user_id(self) -> str:
        return self.get_system_value(SYSTEM_CURRENT_USER_ID, "")

    def get_websocket_last_disconnected(self) -> int:
        websocket = self.get_system_value(SYSTEM_WEBSOCKET) or {}
        return int(websocket.get("lastDisconnected", 0))

    def get_common_system_values(self) -> CommonSystemValues:
        system_db = self._db(b"system")
        values: dict[str, Any] = {}
        with self.env.begin(db=system_db) as txn:
            for key in (
                SYSTEM_CONFIG,
                SYSTEM_LICENSE,
                SYSTEM_CURRENT_TEAM_ID,
                SYSTEM_CURRENT_CHANNEL_ID,
                SYSTEM_CURRENT_USER_ID,
            ):
                data = txn.get(key.encode("utf-8"))
                values[key] = _unpack(data) if data is not None else None

        return CommonSystemValues(
            config=ClientConfig.model_validate(values[SYSTEM_CONFIG] or {}),
            license=ClientLicense.model_validate(values[SYSTEM_LICENSE] or {}),
            current_team_id=values[SYSTEM_CURRENT_TEAM_ID] or "",
            current_channel_id=values[SYSTEM_CURRENT_CHANNEL_ID] or "",
            current_user_id=values[SYSTEM_CURRENT_USER_ID] or "",
        )

    def _system_op(self, key: str, value: Any) -> WriteOp:
        return WriteOp(b"system", key.encode("utf-8"), _pack(value))

    def prepare_common_system_values(
        self,
        config: ClientConfig | None = None,
        license: ClientLicense | None = None,
        current_team_id: str | None = None,
        current_channel_id: str | None = None,
        current_user_id: str | None = None,
    ) -> list[WriteOp]:
        """Build ops for the given system values; None leaves a value alone."""
        ops: list[WriteOp] = []
        if config is not None:
            ops.append(
                self._system_op(
                    SYSTEM_CONFIG, config.model_dump(mode="json", by_alias=True)
                )
            )
        if license is not None:
            ops.append(
                self._system_op(
                    SYSTEM_LICENSE,
                    license.model_dump(mode="json", by_alias=True),
                )
            )
        if current_team_id is not None:
            ops.append(self._system_op(SYSTEM_CURRENT_TEAM_ID, current_team_id))
        if current_channel_id is not None:
            ops.append(
                self._system_op(SYSTEM_CURRENT_CHANNEL_ID, current_channel_id)
            )
        if current_user_id is not None:
            ops.append(self._system_op(SYSTEM_CURRENT_USER_ID, current_user_id))
        return ops

    def prepare_websocket_last_disconnected(
        self, timestamp: int
    ) -> list[WriteOp]:
        value = {"lastDisconnected": timestamp}
        return [self._system_op(SYSTEM_WEBSOCKET, value)]

    # =========================================================================
    # Teams
    # =========================================================================

    def get_team(self, team_id: str) -> Team | None:
        if not team_id:
            return None
        with self.env.begin(db=self._db(b"teams")) as txn:
            data = txn.get(team_id.encode("utf-8"))
            return Team.model_validate(_unpack(data)) if data else None

    def get_my_team(self, team_id: str) -> MyTeam | None:
        if not team_id:
            return None
        with self.env.begin(db=self._db(b"my_teams")) as txn:
            data = txn.get(team_id.encode("utf-8"))
            return self._unpack_my_team(data) if data else None

    def _unpack_my_team(self, data: bytes) -> MyTeam:
        r = _unpack(data)
        return MyTeam(
            id=r["id"],
            roles=frozenset(r.get("roles", [])),
            msg_count=r.get("msg_count", 0),
            mention_count=r.get("mention_count", 0),
        )

    def iter_my_teams(self) -> Iterator[MyTeam]:
        with self.env.begin(db=self._db(b"my_teams")) as txn:
            for _, value in txn.cursor():
                yield self._unpack_my_team(value)

    def get_my_team_ids(self) -> list[str]:
        return [my_team.id for my_team in self.iter_my_teams()]

    def get_my_teams_as_teams(self) -> list[Team]:
        """Cached teams the current user is a member of."""
        teams = []
        with self.env.begin() as txn:
            cursor = txn.cursor(db=self._db(b"my_teams"))
            for key, _ in cursor:
                data = txn.get(key, db=self._db(b"teams"))
                if data:
                    teams.append(Team.model_validate(_unpack(data)))
        return teams

    def get_existing_team_ids(self, team_ids: Iterable[str]) -> list[str]:
        """Filter ``team_ids`` down to those with a local team or membership."""
        existing = []
        with self.env.begin() as txn:
            for team_id in team_ids:
                if not team_id:
                    continue
                key = team_id.encode("utf-8")
                if (
                    txn.get(key, db=self._db(b"teams")) is not None
                    or txn.get(key, db=self._db(b"my_teams")) is not None
                ):
                    existing.append(team_id)
        return existing

    def prepare_my_teams(
        self,
        teams: list[Team],
        memberships: list[TeamMembership],
        unreads: list[TeamUnread],
    ) -> list[WriteOp]:
        ops = [
            WriteOp(b"teams", t.id.encode("utf-8"), _record(t))
            for t in teams
        ]

        team_ids = {t.id for t in teams}
        unread_by_team = {u.team_id: u for u in unreads}
        for member in memberships:
            if member.team_id not in team_ids or member.delete_at:
                continue
            unread = unread_by_team.get(member.team_id)
            record = {
                "id": member.team_id,
                "roles": sorted(member.roles),
                "msg_count": unread.msg_count if unread else 0,
                "mention_count": unread.mention_count if unread else 0,
            }
            key = member.team_id.encode("utf-8")
            ops.append(WriteOp(b"my_teams", key, _pack(record)))
        return ops

    def prepare_delete_team(self, team_id: str) -> list[WriteOp]:
        """Delete a team and everything scoped under it.

        Cascades explicitly to the team's channels, channel memberships,
        posts and channel history; LMDB has no foreign keys to do it for us.
        """
        team_key = team_id.encode("utf-8")
        ops = [
            WriteOp(b"teams", team_key),
            WriteOp(b"my_teams", team_key),
            WriteOp(b"team_channel_history", team_key),
        ]

        prefix = team_key + b"\x00"
        with self.env.begin() as txn:
            cursor = txn.cursor(db=self._db(b"channels_by_team"))
            if cursor.set_range(prefix):
                for key, _ in cursor:
                    if not key.startswith(prefix):
                        break
                    channel_key = key[len(prefix):]
                    ops.append(WriteOp(b"channels_by_team", key))
                    ops.append(WriteOp(b"channels", channel_key))
                    ops.append(WriteOp(b"my_channels", channel_key))
                    ops.extend(self._prepare_delete_posts(txn, channel_key))
        return ops

    async def prepare_delete_teams(
        self, team_ids: Iterable[str]
    ) -> list[list[WriteOp]]:
        """One deletion batch per locally known team in ``team_ids``.

        The cursor scans run in a worker thread.
        """
        team_ids = list(team_ids)

        def scan() -> list[list[WriteOp]]:
            return [
                self.prepare_delete_team(team_id)
                for team_id in self.get_existing_team_ids(team_ids)
            ]

        return await asyncio.to_thread(scan)

    # =========================================================================
    # Channels
    # =========================================================================

    def get_channel(self, channel_id: str) -> Channel | None:
        if not channel_id:
            return None
        with self.env.begin(db=self._db(b"channels")) as txn:
            data = txn.get(channel_id.encode("utf-8"))
            return Channel.model_validate(_unpack(data)) if data else None

    def get_my_channel(self, channel_id: str) -> ChannelMembership | None:
        if not channel_id:
            return None
        with self.env.begin(db=self._db(b"my_channels")) as txn:
            data = txn.get(channel_id.encode("utf-8"))
            if not data:
                return None
            return ChannelMembership.model_validate(_unpack(data))

    def get_channels_for_team(self, team_id: str) -> list[Channel]:
        prefix = team_id.encode("utf-8") + b"\x00"
        channels = []
        with self.env.begin() as txn:
            cursor = txn.cursor(db=self._db(b"channels_by_team"))
            if not cursor.set_range(prefix):
                return channels
            for key, _ in cursor:
                if not key.startswith(prefix):
                    break
                data = txn.get(key[len(prefix):], db=self._db(b"channels"))
                if data:
                    channels.append(Channel.model_validate(_unpack(data)))
        return channels

    def prepare_my_channels_for_team(
        self,
        team_id: str,
        channels: list[Channel],
        memberships: list[ChannelMembership],
    ) -> list[WriteOp]:
        """Upsert channels and the user's memberships for a team.

        Direct and group channels carry no team id and are indexed under
        the empty team so deleting a team never removes them.
        """
        ops: list[WriteOp] = []
        channel_ids = set()
        for channel in channels:
            channel_ids.add(channel.id)
            channel_key = channel.id.encode("utf-8")
            if channel.team_id and channel.team_id != team_id:
                logger.debug(
                    "channel belongs to another team",
                    channel_id=channel.id,
                    team_id=channel.team_id,
                    expected=team_id,
                )
            ops.append(WriteOp(b"channels", channel_key, _record(channel)))
            index_key = _composite_key(channel.team_id, channel_key)
            ops.append(WriteOp(b"channels_by_team", index_key, b""))

        for member in memberships:
            if member.channel_id not in channel_ids:
                continue
            ops.append(
                WriteOp(
                    b"my_channels",
                    member.channel_id.encode("utf-8"),
                    _record(member),
                )
            )
        return ops

    def prepare_channels(self, channels: list[Channel]) -> list[WriteOp]:
        """Overwrite channel records without touching indexes."""
        return [
            WriteOp(b"channels", c.id.encode("utf-8"), _record(c))
            for c in channels
        ]

    # =========================================================================
    # Channel history
    # =========================================================================

    def get_team_channel_history(self, team_id: str) -> list[str]:
        if not team_id:
            return []
        with self.env.begin(db=self._db(b"team_channel_history")) as txn:
            data = txn.get(team_id.encode("utf-8"))
            return list(_unpack(data)) if data else []

    def prepare_add_channel_to_team_history(
        self, team_id: str, channel_id: str
    ) -> list[WriteOp]:
        if not team_id or not channel_id:
            raise ValueError("team_id and channel_id are required")
        history = [
            c for c in self.get_team_channel_history(team_id) if c != channel_id
        ]
        history.insert(0, channel_id)
        return [
            WriteOp(
                b"team_channel_history",
                team_id.encode("utf-8"),
                _pack(history[:MAX_TEAM_CHANNEL_HISTORY]),
            )
        ]

    # =========================================================================
    # Preferences, users, roles
    # =========================================================================

    def get_preferences(
        self, category: str, name: str | None = None
    ) -> list[Preference]:
        prefs_db = self._db(b"preferences")
        with self.env.begin(db=prefs_db) as txn:
            if name is not None:
                data = txn.get(_composite_key(category, name))
                if not data:
                    return []
                return [Preference.model_validate(_unpack(data))]

            prefix = category.encode("utf-8") + b"\x00"
            cursor = txn.cursor()
            prefs = []
            if cursor.set_range(prefix):
                for key, value in cursor:
                    if not key.startswith(prefix):
                        break
                    prefs.append(Preference.model_validate(_unpack(value)))
            return prefs

    def prepare_my_preferences(
        self, preferences: list[Preference]
    ) -> list[WriteOp]:
        return [
            WriteOp(
                b"preferences",
                _composite_key(p.category, p.name),
                _record(p),
            )
            for p in preferences
        ]

    def get_user(self, user_id: str) -> User | None:
        if not user_id:
            return None
        with self.env.begin(db=self._db(b"users")) as txn:
            data = txn.get(user_id.encode("utf-8"))
            return User.model_validate(_unpack(data)) if data else None

    def get_current_user(self) -> User | None:
        user_id = self.get_current_user_id()
        return self.get_user(user_id) if user_id else None

    def get_users_by_id(self, user_ids: Iterable[str]) -> dict[str, User]:
        users: dict[str, User] = {}
        with self.env.begin(db=self._db(b"users")) as txn:
            for user_id in filter(None, user_ids):
                data = txn.get(user_id.encode("utf-8"))
                if data:
                    users[user_id] = User.model_validate(_unpack(data))
        return users

    def prepare_users(self, users: list[User]) -> list[WriteOp]:
        return [
            WriteOp(b"users", u.id.encode("utf-8"), _record(u))
            for u in users
        ]

    def get_roles(self) -> list[Role]:
        with self.env.begin(db=self._db(b"roles")) as txn:
            return [
                Role.model_validate(_unpack(value)) for _, value in txn.cursor()
            ]

    def get_role_names(self) -> set[str]:
        with self.env.begin(db=self._db(b"roles")) as txn:
            return {key.decode("utf-8") for key, _ in txn.cursor()}

    def prepare_roles(self, roles: list[Role]) -> list[WriteOp]:
        return [
            WriteOp(b"roles", r.name.encode("utf-8"), _record(r))
            for r in roles
        ]

    # =========================================================================
    # Posts
    # =========================================================================

    def get_posts_for_channel(self, channel_id: str) -> list[Post]:
        """Posts in a channel, newest first."""
        prefix = channel_id.encode("utf-8") + b"\x00"
        posts = []
        with self.env.begin() as txn:
            cursor = txn.cursor(db=self._db(b"posts_by_channel"))
            if not cursor.set_range(prefix):
                return posts
            for key, _ in cursor:
                if not key.startswith(prefix):
                    break
                post_id = key[len(prefix) + 9:]
                data = txn.get(post_id, db=self._db(b"posts"))
                if data:
                    posts.append(Post.model_validate(_unpack(data)))
        posts.reverse()
        return posts

    def get_latest_post_time(self, channel_id: str) -> int:
        posts = self.get_posts_for_channel(channel_id)
        return max((p.update_at or p.create_at for p in posts), default=0)

    async def latest_post_time(self, channel_id: str) -> int:
        return await asyncio.to_thread(self.get_latest_post_time, channel_id)

    def prepare_posts(self, posts: list[Post]) -> list[WriteOp]:
        ops = []
        for post in posts:
            post_key = post.id.encode("utf-8")
            ops.append(WriteOp(b"posts", post_key, _record(post)))
            ops.append(
                WriteOp(
                    b"posts_by_channel",
                    _composite_key(post.channel_id, post.create_at, post_key),
                    b"",
                )
            )
        return ops

    def _prepare_delete_posts(
        self, txn: Any, channel_key: bytes
    ) -> list[WriteOp]:
        prefix = channel_key + b"\x00"
        ops = []
        cursor = txn.cursor(db=self._db(b"posts_by_channel"))
        if cursor.set_range(prefix):
            for key, _ in cursor:
                if not key.startswith(prefix):
                    break
                ops.append(WriteOp(b"posts_by_channel", key))
                ops.append(WriteOp(b"posts", key[len(prefix) + 9:]))
        return ops
