"""Websocket messages and authentication of the tokens used on the socket."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

from wingsd.tokens import TokenError, WebsocketPayload, parse_token

AUTHENTICATION_SUCCESS_EVENT = "auth success"
TOKEN_EXPIRING_EVENT = "token expiring"
TOKEN_EXPIRED_EVENT = "token expired"
AUTHENTICATION_EVENT = "auth"
SET_STATE_EVENT = "set state"
SEND_SERVER_LOGS_EVENT = "send logs"
SEND_COMMAND_EVENT = "send command"
SEND_STATS_EVENT = "send stats"
ERROR_EVENT = "daemon error"
JWT_ERROR_EVENT = "jwt error"

PERMISSION_CONNECT = "websocket.connect"
PERMISSION_SEND_COMMAND = "control.console"
PERMISSION_SEND_POWER_START = "control.start"
PERMISSION_SEND_POWER_STOP = "control.stop"
PERMISSION_SEND_POWER_RESTART = "control.restart"
PERMISSION_RECEIVE_ERRORS = "admin.websocket.errors"
PERMISSION_RECEIVE_INSTALL = "admin.websocket.install"
PERMISSION_RECEIVE_TRANSFER = "admin.websocket.transfer"
PERMISSION_RECEIVE_BACKUPS = "backup.read"


@dataclass
class Message:
    """An event sent over the websocket, with optional string arguments."""

    event: str
    args: list[str] = field(default_factory=list)

    def to_json(self) -> str:
        payload: dict[str, Any] = {"event": self.event}
        if self.args:
            payload["args"] = list(self.args)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Message":
        try:
            data = json.loads(raw)
        except ValueError as err:
            raise ValueError(f"websocket: invalid message: {err}") from err
        if not isinstance(data, dict):
            raise ValueError("websocket: message must be an object")
        event = data.get("event")
        if event is None:
            event = ""
        if not isinstance(event, str):
            raise ValueError("websocket: message event must be a string")
        args = data.get("args")
        if args is None:
            args = []
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise ValueError("websocket: message args must be a list of strings")
        return cls(event=event, args=list(args))


class JwtError(Exception):
    """Base class for problems with the token presented on a websocket."""

    default_message = "jwt: invalid token"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class JwtNotPresentError(JwtError):
    default_message = "jwt: no jwt present"


class JwtNoConnectPermError(JwtError):
    default_message = "jwt: missing connect permission"


class JwtUuidMismatchError(JwtError):
    default_message = "jwt: server uuid mismatch"


class JwtOnDenylistError(JwtError):
    default_message = "jwt: created too far in past (denylist)"


def _chain(err: BaseException | None) -> Iterator[BaseException]:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__ or err.__context__


def is_jwt_error(err: BaseException | None) -> bool:
    """Report whether ``err`` is, or was caused by, a token validation failure."""
    for item in _chain(err):
        if isinstance(item, JwtError):
            return True
        if isinstance(item, TokenError) and item.expired:
            return True
    return False


def new_token_payload(token: str | bytes, secret: str | bytes) -> WebsocketPayload:
    """Verify ``token`` and return its payload if it may connect to a websocket."""
    payload = parse_token(token, WebsocketPayload, secret)
    if payload.denylisted():
        raise JwtOnDenylistError()
    if not payload.has_permission(PERMISSION_CONNECT):
        raise JwtNoConnectPermError()
    return payload


def token_valid(payload: WebsocketPayload | None, server_uuid: str) -> None:
    """Raise if ``payload`` is missing, expired, denied or for another server."""
    if payload is None:
        raise JwtNotPresentError()
    exp = payload.expiration_time
    if exp is None or datetime.now(timezone.utc) > exp:
        raise TokenError("jwt: exp claim is invalid", expired=True)
    if payload.denylisted():
        raise JwtOnDenylistError()
    if not payload.has_permission(PERMISSION_CONNECT):
        raise JwtNoConnectPermError()
    if server_uuid != payload.server_uuid:
        raise JwtUuidMismatchError()


def get_error_message(msg: str) -> tuple[str, uuid.UUID]:
    """Wrap ``msg`` with a fresh identifier that can be found in the logs."""
    identifier = uuid.uuid4()
    return f"Error Event [{identifier}]: {msg}", identifier