"""Path utilities for per-server local stores.

Each server gets its own LMDB environment under the data root:

    $TEAMSYNC_DATA_DIR/<server-slug>/
    $XDG_DATA_HOME/teamsync/<server-slug>/   (default)

The slug is derived from the server URL so that two servers never share a
store, and the same server always maps to the same directory.
"""

from __future__ import annotations

import hashlib
import os
import re
from pathlib import Path
from urllib.parse import urlsplit

from teamsync.config import ENV_DATA_DIR


def get_xdg_data_home() -> Path:
    """Get XDG data home directory.

    Returns $XDG_DATA_HOME if set, otherwise ~/.local/share
    """
    xdg_data = os.environ.get("XDG_DATA_HOME")
    if xdg_data:
        return Path(xdg_data)
    return Path.home() / ".local" / "share"


def get_data_root() -> Path:
    env_dir = os.environ.get(ENV_DATA_DIR)
    if env_dir:
        return Path(env_dir)
    return get_xdg_data_home() / "teamsync"


def server_slug(server_url: str) -> str:
    """Derive a filesystem-safe, stable directory name for a server URL.

    Examples:
        https://chat.example.com -> chat.example.com-1a2b3c4d
        http://localhost:8065/ -> localhost-8065-5e6f7a8b
    """
    normalized = server_url.strip().rstrip("/").lower()
    parts = urlsplit(normalized)
    readable = (parts.netloc + parts.path) or "server"
    readable = re.sub(r"[^a-z0-9.]+", "-", readable).strip("-")
    digest = hashlib.sha256(normalized.encode()).hexdigest()[:8]
    return f"{readable}-{digest}"


def get_server_data_dir(server_url: str, root: Path | None = None) -> Path:
    return (root or get_data_root()) / server_slug(server_url)
