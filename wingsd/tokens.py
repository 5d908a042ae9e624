"""Signed JWT payloads and one-time token tracking."""

from __future__ import annotations

import logging
import sys
import threading
import time
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, TypeVar

import jwt
from cachetools import TTLCache

log = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
TOKEN_TTL_SECONDS = 60 * 60

# Tokens issued before this moment are never accepted on the websocket.
BOOT_TIME = datetime.now(timezone.utc)

_denylist: dict[str, datetime] = {}
_denylist_lock = threading.Lock()


class TokenError(Exception):
    """Raised when a token cannot be verified or decoded."""

    def __init__(self, message: str, expired: bool = False) -> None:
        super().__init__(message)
        self.expired = expired


class TokenStore:
    """Remembers seen token identifiers so each can be used only once."""

    def __init__(self, ttl: float = TOKEN_TTL_SECONDS,
                 timer: Callable[[], float] = time.monotonic) -> None:
        self._lock = threading.Lock()
        self._cache: TTLCache = TTLCache(maxsize=sys.maxsize, ttl=ttl, timer=timer)

    def is_valid_token(self, token: str) -> bool:
        """Return True the first time ``token`` is seen within the TTL."""
        with self._lock:
            if token in self._cache:
                return False
            self._cache[token] = ""
            return True


_store: TokenStore | None = None
_store_lock = threading.Lock()


def get_token_store() -> TokenStore:
    """Return the process-wide one-time token store."""
    global _store
    with _store_lock:
        if _store is None:
            _store = TokenStore()
        return _store


def _claim(name: str, kind: str = "str", default: Any = "") -> Any:
    if kind in ("list", "aud"):
        return field(default_factory=list, metadata={"claim": name, "kind": kind})
    return field(default=default, metadata={"claim": name, "kind": kind})


def _convert(name: str, kind: str, value: Any) -> Any:
    if kind == "time":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TokenError(f"jwt: claim '{name}' must be a number")
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if kind == "aud":
        if isinstance(value, str):
            return [value]
        if isinstance(value, list) and all(isinstance(v, str) for v in value):
            return list(value)
        raise TokenError("jwt: claim 'aud' must be a string or list of strings")
    if kind == "list":
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise TokenError(f"jwt: claim '{name}' must be a list of strings")
        return list(value)
    if not isinstance(value, str):
        raise TokenError(f"jwt: claim '{name}' must be a string")
    return value


P = TypeVar("P", bound="TokenPayload")


@dataclass
class TokenPayload:
    """The registered JWT claims shared by every payload."""

    issuer: str = _claim("iss")
    subject: str = _claim("sub")
    audience: list[str] = _claim("aud", "aud")
    expiration_time: datetime | None = _claim("exp", "time", None)
    not_before: datetime | None = _claim("nbf", "time", None)
    issued_at: datetime | None = _claim("iat", "time", None)
    jwt_id: str = _claim("jti")

    @classmethod
    def from_claims(cls: type[P], claims: Mapping[str, Any]) -> P:
        if not isinstance(claims, Mapping):
            raise TokenError("jwt: claims must be an object")
        values = {}
        for f in fields(cls):
            name = f.metadata.get("claim")
            if name is None or claims.get(name) is None:
                continue
            values[f.name] = _convert(name, f.metadata["kind"], claims[name])
        return cls(**values)


@dataclass
class BackupPayload(TokenPayload):
    """Grants a one-time download of a backup."""

    server_uuid: str = _claim("server_uuid")
    backup_uuid: str = _claim("backup_uuid")
    unique_id: str = _claim("unique_id")

    def is_unique_request(self) -> bool:
        return get_token_store().is_valid_token(self.unique_id)


@dataclass
class FilePayload(TokenPayload):
    """Grants a one-time download of a server file."""

    file_path: str = _claim("file_path")
    server_uuid: str = _claim("server_uuid")
    unique_id: str = _claim("unique_id")

    def is_unique_request(self) -> bool:
        return get_token_store().is_valid_token(self.unique_id)


@dataclass
class UploadPayload(TokenPayload):
    """Grants a one-time file upload to a server."""

    server_uuid: str = _claim("server_uuid")
    user_uuid: str = _claim("user_uuid")
    unique_id: str = _claim("unique_id")

    def is_unique_request(self) -> bool:
        return get_token_store().is_valid_token(self.unique_id)


@dataclass
class TransferPayload(TokenPayload):
    """Authorises an incoming server transfer."""


@dataclass
class WebsocketPayload(TokenPayload):
    """Authorises a websocket connection to a server."""

    user_uuid: str = _claim("user_uuid")
    server_uuid: str = _claim("server_uuid")
    permissions: list[str] = _claim("permissions", "list")

    def denylisted(self) -> bool:
        """Report whether the token was issued before boot or before a JTI denial."""
        if self.issued_at is None:
            return True
        if self.issued_at < BOOT_TIME:
            return True
        with _denylist_lock:
            denied_at = _denylist.get(self.jwt_id)
        return denied_at is not None and self.issued_at < denied_at

    def has_permission(self, permission: str) -> bool:
        """Report whether the token grants ``permission`` and is not denylisted."""
        for granted in self.permissions:
            if granted == permission or (not permission.startswith("admin") and granted == "*"):
                return not self.denylisted()
        return False


def deny_jti(jti: str) -> None:
    """Reject every token with this JTI issued before now."""
    log.debug('adding "%s" to JTI denylist', jti)
    with _denylist_lock:
        _denylist[jti] = datetime.now(timezone.utc)


def parse_token(token: str | bytes, payload_cls: type[P], secret: str | bytes) -> P:
    """Verify the signature and expiry of ``token`` and decode it into ``payload_cls``."""
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={
                "require": ["exp"],
                "verify_aud": False,
                "verify_iat": False,
                "verify_nbf": False,
            },
        )
    except (jwt.ExpiredSignatureError, jwt.MissingRequiredClaimError) as err:
        raise TokenError("jwt: exp claim is invalid", expired=True) from err
    except jwt.PyJWTError as err:
        raise TokenError(f"jwt: {err}") from err
    return payload_cls.from_claims(claims)