"""Error types shared by the client, fetch layer and entry procedures."""

from __future__ import annotations

from enum import Enum


class TeamsyncError(Exception):
    """Base class for teamsync errors."""


class ServerNotFoundError(TeamsyncError):
    """No local store is registered for the server."""

    def __init__(self, server_url: str) -> None:
        super().__init__(f"{server_url} database not found")
        self.server_url = server_url


class ClientNotFoundError(TeamsyncError):
    """No network client is registered for the server."""

    def __init__(self, server_url: str) -> None:
        super().__init__(f"{server_url} client not found")
        self.server_url = server_url


class ErrorKind(str, Enum):
    FORBIDDEN = "forbidden"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    SERVER = "server"
    INVALID_RESPONSE = "invalid_response"


def kind_for_status(status: int) -> ErrorKind:
    if status == 401:
        return ErrorKind.UNAUTHORIZED
    if status == 403:
        return ErrorKind.FORBIDDEN
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status in (408, 429) or status >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.SERVER


class ClientError(TeamsyncError):
    """A failed request to the chat server.

    Branching code inspects ``kind`` rather than the raw status code.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        url: str = "",
        status_code: int | None = None,
        server_error_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.url = url
        self.status_code = status_code
        self.server_error_id = server_error_id

    @classmethod
    def from_status(
        cls,
        status: int,
        url: str,
        message: str = "",
        server_error_id: str | None = None,
    ) -> ClientError:
        return cls(
            kind=kind_for_status(status),
            message=message or f"request failed with status {status}",
            url=url,
            status_code=status,
            server_error_id=server_error_id,
        )

    @property
    def is_forbidden(self) -> bool:
        return self.kind is ErrorKind.FORBIDDEN

    def __repr__(self) -> str:
        return (
            f"ClientError(kind={self.kind.value!r}, "
            f"status_code={self.status_code!r}, url={self.url!r})"
        )


def is_forbidden(error: BaseException | None) -> bool:
    """True when ``error`` says the caller lost access to the resource."""
    return isinstance(error, ClientError) and error.is_forbidden
