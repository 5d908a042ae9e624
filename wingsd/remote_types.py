"""Data exchanged with the Panel API."""

from __future__ import annotations

import base64
import enum
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from wingsd.config_file import ConfigurationFile

log = logging.getLogger(__name__)


def _mapping(data: Any, what: str) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{what} must be an object")
    return data


@dataclass
class Pagination:
    """Pagination metadata for a paged listing."""

    current_page: int = 0
    from_: int = 0
    last_page: int = 0
    per_page: int = 0
    to: int = 0
    total: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "Pagination":
        data = _mapping(data, "pagination")
        return cls(
            current_page=int(data.get("current_page") or 0),
            from_=int(data.get("from") or 0),
            last_page=int(data.get("last_page") or 0),
            per_page=int(data.get("per_page") or 0),
            to=int(data.get("to") or 0),
            total=int(data.get("total") or 0),
        )


@dataclass
class InstallationScript:
    """Installation script details for a server."""

    container_image: str = ""
    entrypoint: str = ""
    script: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "InstallationScript":
        data = _mapping(data, "installation script")
        return cls(
            container_image=data.get("container_image") or "",
            entrypoint=data.get("entrypoint") or "",
            script=data.get("script") or "",
        )


@dataclass
class RawServerData:
    """A server as listed by the Panel, with its settings left undecoded."""

    uuid: str = ""
    settings: Any = None
    process_configuration: Any = None

    @classmethod
    def from_dict(cls, data: dict) -> "RawServerData":
        data = _mapping(data, "server data")
        return cls(
            uuid=data.get("uuid") or "",
            settings=data.get("settings"),
            process_configuration=data.get("process_configuration"),
        )


class SftpAuthRequestType(str, enum.Enum):
    """How an SFTP user is attempting to authenticate."""

    PASSWORD = "password"
    PUBLIC_KEY = "public_key"


def _b64(value: bytes | None) -> str | None:
    return None if value is None else base64.b64encode(value).decode("ascii")


@dataclass
class SftpAuthRequest:
    """Credentials sent to the Panel for SFTP validation."""

    type: SftpAuthRequestType
    user: str = ""
    password: str = ""
    ip: str = ""
    session_id: bytes | None = None
    client_version: bytes | None = None

    def to_dict(self) -> dict:
        return {
            "type": SftpAuthRequestType(self.type).value,
            "username": self.user,
            "password": self.password,
            "ip": self.ip,
            "session_id": _b64(self.session_id),
            "client_version": _b64(self.client_version),
        }


@dataclass
class SftpAuthResponse:
    """The server and permissions matched by valid SFTP credentials."""

    server: str = ""
    user: str = ""
    permissions: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "SftpAuthResponse":
        data = _mapping(data, "sftp auth response")
        return cls(
            server=data.get("server") or "",
            user=data.get("user") or "",
            permissions=list(data.get("permissions") or []),
        )


class OutputLineMatcher:
    """Matches console output against a plain string or a ``regex:`` pattern."""

    def __init__(self, raw: str, regex: re.Pattern[str] | None = None) -> None:
        self.raw = raw
        self.regex = regex

    @classmethod
    def from_json(cls, raw: str | bytes) -> "OutputLineMatcher":
        value = json.loads(raw)
        if not isinstance(value, str):
            raise ValueError("output line matcher must be a JSON string")
        return cls._from_string(value)

    @classmethod
    def _from_string(cls, value: str) -> "OutputLineMatcher":
        regex = None
        if value.startswith("regex:") and len(value.encode("utf-8")) > 6:
            try:
                regex = re.compile(value[len("regex:"):])
            except re.error as err:
                log.warning(
                    "failed to compile output line marked as being regex (raw=%s, error=%s)",
                    value, err,
                )
        return cls(value, regex)

    def matches(self, line: str | bytes) -> bool:
        if self.regex is None:
            if isinstance(line, bytes):
                return self.raw.encode("utf-8") in line
            return self.raw in line
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="surrogateescape")
        return self.regex.search(line) is not None

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"OutputLineMatcher({self.raw!r})"


@dataclass
class ProcessStopConfiguration:
    """How a server instance is stopped."""

    type: str = ""
    value: str = ""


@dataclass
class StartupConfiguration:
    """What marks a server as having finished starting."""

    done: list[OutputLineMatcher] = field(default_factory=list)
    user_interaction: list[str] = field(default_factory=list)
    strip_ansi: bool = False


@dataclass
class ProcessConfiguration:
    """Startup, stop and configuration-file settings for a server process."""

    startup: StartupConfiguration = field(default_factory=StartupConfiguration)
    stop: ProcessStopConfiguration = field(default_factory=ProcessStopConfiguration)
    configuration_files: list[ConfigurationFile] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessConfiguration":
        data = _mapping(data, "process configuration")
        startup = _mapping(data.get("startup"), "startup")
        stop = _mapping(data.get("stop"), "stop")
        done = []
        for line in startup.get("done") or []:
            if not isinstance(line, str):
                raise ValueError("startup done entries must be strings")
            done.append(OutputLineMatcher._from_string(line))
        return cls(
            startup=StartupConfiguration(
                done=done,
                user_interaction=list(startup.get("user_interaction") or []),
                strip_ansi=bool(startup.get("strip_ansi", False)),
            ),
            stop=ProcessStopConfiguration(
                type=stop.get("type") or "",
                value=stop.get("value") or "",
            ),
            configuration_files=[
                ConfigurationFile.from_dict(c) for c in data.get("configs") or []
            ],
        )


@dataclass
class ServerConfigurationResponse:
    """A server's settings and process configuration as served by the Panel."""

    settings: Any = None
    process_configuration: ProcessConfiguration | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfigurationResponse":
        data = _mapping(data, "server configuration")
        raw = data.get("process_configuration")
        return cls(
            settings=data.get("settings"),
            process_configuration=None if raw is None else ProcessConfiguration.from_dict(raw),
        )


@dataclass
class BackupRemoteUploadResponse:
    """Pre-signed upload URLs for a multipart remote backup."""

    parts: list[str] = field(default_factory=list)
    part_size: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "BackupRemoteUploadResponse":
        data = _mapping(data, "backup upload response")
        return cls(parts=list(data.get("parts") or []), part_size=int(data.get("part_size") or 0))


@dataclass
class BackupPart:
    """One uploaded part of a multipart backup."""

    etag: str = ""
    part_number: int = 0


@dataclass
class BackupRequest:
    """The result of a backup, reported to the Panel."""

    checksum: str = ""
    checksum_type: str = ""
    size: int = 0
    successful: bool = False
    parts: list[BackupPart] | None = None

    def to_dict(self) -> dict:
        return {
            "checksum": self.checksum,
            "checksum_type": self.checksum_type,
            "size": self.size,
            "successful": self.successful,
            "parts": None if self.parts is None else [
                {"etag": p.etag, "part_number": p.part_number} for p in self.parts
            ],
        }


@dataclass
class InstallStatusRequest:
    """The outcome of an installation, reported to the Panel."""

    successful: bool = False
    reinstall: bool = False

    def to_dict(self) -> dict:
        return {"successful": self.successful, "reinstall": self.reinstall}