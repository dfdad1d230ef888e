"""Constants and environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

# Environment variable names
ENV_DATA_DIR = "TEAMSYNC_DATA_DIR"
ENV_HTTP_TIMEOUT = "TEAMSYNC_HTTP_TIMEOUT"
ENV_MAP_SIZE = "TEAMSYNC_MAP_SIZE"

DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_MAP_SIZE = 512 * 1024**2  # 512MB
DEFAULT_LOCALE = "en"

# Channel types as reported by the server
OPEN_CHANNEL = "O"
PRIVATE_CHANNEL = "P"
DM_CHANNEL = "D"
GM_CHANNEL = "G"
DIRECT_CHANNEL_TYPES = frozenset({DM_CHANNEL, GM_CHANNEL})

# Name of the channel every team member joins on creation
DEFAULT_CHANNEL = "town-square"

# Preference categories and names
CATEGORY_TEAMS_ORDER = "teams_order"
CATEGORY_DISPLAY_SETTINGS = "display_settings"
NAME_NAME_FORMAT = "name_format"

# Teammate display name settings
DISPLAY_PREFER_USERNAME = "username"
DISPLAY_PREFER_NICKNAME = "nickname_full_name"
DISPLAY_PREFER_FULL_NAME = "full_name"

# Permission consulted when picking the default channel
PERMISSION_JOIN_PUBLIC_CHANNELS = "join_public_channels"

# Channels remembered per team in the channel history
MAX_TEAM_CHANNEL_HISTORY = 5

# Posts requested per channel on a cold fetch
POSTS_PER_PAGE = 60


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class ClientSettings:
    """Settings shared by the HTTP client and the local store.

    Environment variables:
        TEAMSYNC_DATA_DIR: Root directory for per-server stores
        TEAMSYNC_HTTP_TIMEOUT: Total request timeout in seconds
        TEAMSYNC_MAP_SIZE: LMDB map size in bytes
    """

    data_dir: str | None = field(
        default_factory=lambda: os.environ.get(ENV_DATA_DIR) or None
    )
    http_timeout: float = field(
        default_factory=lambda: _env_float(
            ENV_HTTP_TIMEOUT, DEFAULT_HTTP_TIMEOUT
        )
    )
    map_size: int = field(
        default_factory=lambda: _env_int(ENV_MAP_SIZE, DEFAULT_MAP_SIZE)
    )
