"""Async REST client for the chat server (API v4).

Usage:
    client = Client("https://chat.example.com", token="...")
    teams = await client.get_my_teams()
    await client.close()

Every failed request raises ClientError with an ErrorKind derived from the
HTTP status, TRANSIENT for transport failures and timeouts, or
INVALID_RESPONSE when the body is not JSON or does not match the model.
"""

from __future__ import annotations

import asyncio
from typing import Any, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from teamsync.config import DEFAULT_HTTP_TIMEOUT, POSTS_PER_PAGE
from teamsync.errors import ClientError, ErrorKind
from teamsync.logging_config import get_logger
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

logger = get_logger("client")

API_PREFIX = "/api/v4"

M = TypeVar("M", bound=BaseModel)


class Client:
    def __init__(
        self,
        base_url: str,
        token: str = "",
        session: aiohttp.ClientSession | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def api_url(self) -> str:
        return f"{self.base_url}{API_PREFIX}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        url = f"{self.api_url}{path}"
        headers = {"X-Requested-With": "XMLHttpRequest"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with self._get_session().request(
                method, url, params=params, json=json, headers=headers
            ) as resp:
                if resp.status >= 400:
                    raise await self._error_from_response(resp, url)
                if resp.status == 204:
                    return None
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise ClientError(
                        ErrorKind.INVALID_RESPONSE,
                        f"invalid JSON from {path}: {e}",
                        url=url,
                        status_code=resp.status,
                    ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("request failed", method=method, url=url, error=str(e))
            raise ClientError(
                ErrorKind.TRANSIENT, str(e) or type(e).__name__, url=url
            ) from e

    async def _error_from_response(
        self, resp: aiohttp.ClientResponse, url: str
    ) -> ClientError:
        message = ""
        server_error_id = None
        try:
            body = await resp.json(content_type=None)
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = str(body.get("message", ""))
            server_error_id = body.get("id")
        logger.debug(
            "server returned error",
            status=resp.status,
            url=url,
            error_id=server_error_id,
        )
        return ClientError.from_status(
            resp.status, url, message, server_error_id
        )

    def _invalid(self, path: str, message: str) -> ClientError:
        logger.debug("invalid response", path=path, error=message)
        return ClientError(
            ErrorKind.INVALID_RESPONSE,
            f"invalid response from {path}: {message}",
            url=f"{self.api_url}{path}",
        )

    def _parse(self, model: type[M], data: Any, path: str) -> M:
        """Validate one JSON object against ``model``."""
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise self._invalid(
                path, f"expected an object, got {type(data).__name__}"
            )
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise self._invalid(path, str(e)) from e

    def _parse_list(self, model: type[M], data: Any, path: str) -> list[M]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise self._invalid(
                path, f"expected a list, got {type(data).__name__}"
            )
        return [self._parse(model, item, path) for item in data]

    async def _get_list(
        self,
        model: type[M],
        path: str,
        params: dict[str, Any] | None = None,
    ) -> list[M]:
        data = await self._request("GET", path, params=params)
        return self._parse_list(model, data, path)

    # -------------------------------------------------------------------------
    # Users and session
    # -------------------------------------------------------------------------

    async def get_me(self) -> User:
        path = "/users/me"
        return self._parse(User, await self._request("GET", path), path)

    async def get_profiles_by_ids(self, user_ids: list[str]) -> list[User]:
        path = "/users/ids"
        data = await self._request("POST", path, json=user_ids)
        return self._parse_list(User, data, path)

    async def get_profiles_in_group_channels(
        self, channel_ids: list[str]
    ) -> dict[str, list[User]]:
        path = "/users/group_channels"
        data = await self._request("POST", path, json=channel_ids)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise self._invalid(
                path, f"expected an object, got {type(data).__name__}"
            )
        return {
            channel_id: self._parse_list(User, users, path)
            for channel_id, users in data.items()
        }

    async def attach_device(self, device_id: str) -> None:
        await self._request(
            "PUT", "/users/sessions/device", json={"device_id": device_id}
        )

    # -------------------------------------------------------------------------
    # Teams
    # -------------------------------------------------------------------------

    async def get_my_teams(self) -> list[Team]:
        return await self._get_list(Team, "/users/me/teams")

    async def get_my_team_members(self) -> list[TeamMembership]:
        return await self._get_list(TeamMembership, "/users/me/teams/members")

    async def get_my_teams_unread(self) -> list[TeamUnread]:
        return await self._get_list(TeamUnread, "/users/me/teams/unread")

    # -------------------------------------------------------------------------
    # Channels
    # -------------------------------------------------------------------------

    async def get_my_channels(
        self, team_id: str, include_deleted: bool = False, since: int = 0
    ) -> list[Channel]:
        params: dict[str, Any] = {
            "include_deleted": "true" if include_deleted else "false"
        }
        if since:
            params["last_delete_at"] = since
        return await self._get_list(
            Channel, f"/users/me/teams/{team_id}/channels", params=params
        )

    async def get_my_channel_members(
        self, team_id: str
    ) -> list[ChannelMembership]:
        return await self._get_list(
            ChannelMembership, f"/users/me/teams/{team_id}/channels/members"
        )

    # -------------------------------------------------------------------------
    # Preferences, roles, config
    # -------------------------------------------------------------------------

    async def get_my_preferences(self) -> list[Preference]:
        return await self._get_list(Preference, "/users/me/preferences")

    async def get_roles_by_names(self, names: list[str]) -> list[Role]:
        path = "/roles/names"
        data = await self._request("POST", path, json=names)
        return self._parse_list(Role, data, path)

    async def get_client_config(self) -> ClientConfig:
        path = "/config/client"
        data = await self._request("GET", path, params={"format": "old"})
        return self._parse(ClientConfig, data, path)

    async def get_client_license(self) -> ClientLicense:
        path = "/license/client"
        data = await self._request("GET", path, params={"format": "old"})
        return self._parse(ClientLicense, data, path)

    # -------------------------------------------------------------------------
    # Posts
    # -------------------------------------------------------------------------

    async def get_posts(
        self, channel_id: str, page: int = 0, per_page: int = POSTS_PER_PAGE
    ) -> list[Post]:
        path = f"/channels/{channel_id}/posts"
        data = await self._request(
            "GET", path, params={"page": page, "per_page": per_page}
        )
        return self._posts_from_list_response(data, path)

    async def get_posts_since(self, channel_id: str, since: int) -> list[Post]:
        path = f"/channels/{channel_id}/posts"
        data = await self._request("GET", path, params={"since": since})
        return self._posts_from_list_response(data, path)

    def _posts_from_list_response(self, data: Any, path: str) -> list[Post]:
        """Flatten a PostList ({"order": [...], "posts": {id: post}})."""
        if not data:
            return []
        if not isinstance(data, dict):
            raise self._invalid(
                path, f"expected a post list, got {type(data).__name__}"
            )
        posts = data.get("posts") or {}
        order = data.get("order") or list(posts)
        if not isinstance(posts, dict) or not isinstance(order, list):
            raise self._invalid(path, "malformed post list")
        return [
            self._parse(Post, posts[pid], path) for pid in order if pid in posts
        ]
