"""HTTP client for the Panel's remote API."""

from __future__ import annotations

import dataclasses
import json
import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Iterator, Mapping

import requests

from wingsd.remote_errors import RequestError, SftpInvalidCredentialsError, as_request_error
from wingsd.remote_types import (
    BackupRemoteUploadResponse,
    BackupRequest,
    InstallationScript,
    InstallStatusRequest,
    Pagination,
    RawServerData,
    ServerConfigurationResponse,
    SftpAuthRequest,
    SftpAuthResponse,
)

log = logging.getLogger(__name__)

PROCESS_STOP_COMMAND = "command"
PROCESS_STOP_SIGNAL = "signal"
PROCESS_STOP_NATIVE_STOP = "stop"

ACCEPT_HEADER = "application/vnd.pterodactyl.v1+json"
DEFAULT_TIMEOUT = 15.0

_INITIAL_INTERVAL = 0.5
_RANDOMIZATION_FACTOR = 0.5
_MULTIPLIER = 1.5
_MAX_INTERVAL = 12.0
_MAX_ELAPSED = 30.0


def _encode(obj: Any) -> Any:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return dataclasses.asdict(obj)
    raise TypeError(f"object of type {type(obj).__name__} is not JSON serializable")


class Response:
    """A Panel API response with helpers for error handling and decoding."""

    def __init__(self, response: requests.Response | None) -> None:
        self.response = response

    @property
    def status_code(self) -> int:
        return self.response.status_code if self.response is not None else 0

    def has_error(self) -> bool:
        """Report whether the response status is outside the 2xx range."""
        if self.response is None:
            return False
        return self.response.status_code >= 300 or self.response.status_code < 200

    def read(self) -> bytes:
        """Return the raw response body."""
        if self.response is None:
            raise ValueError("remote: attempting to read missing response")
        return self.response.content or b""

    def json(self) -> Any:
        """Decode the response body as JSON."""
        body = self.read()
        try:
            return json.loads(body)
        except ValueError as err:
            raise ValueError(f"remote: could not unmarshal response: {err}") from err

    def error(self) -> RequestError | None:
        """Return the first error reported by the Panel, or None on success."""
        if not self.has_error():
            return None
        errors: list = []
        try:
            decoded = self.json()
            if isinstance(decoded, dict) and isinstance(decoded.get("errors"), list):
                errors = decoded["errors"]
        except ValueError:
            pass

        if errors and isinstance(errors[0], dict):
            first = errors[0]
            err = RequestError(
                code=str(first.get("code") or ""),
                status=str(first.get("status") or ""),
                detail=str(first.get("detail") or ""),
            )
        else:
            err = RequestError(
                code="_MissingResponseCode",
                status=str(self.status_code),
                detail="No error response returned from API endpoint.",
            )
        err.response = self.response
        return err


class Client:
    """Makes authenticated requests to the Panel this daemon runs under."""

    def __init__(
        self,
        base: str,
        token_id: str = "",
        token: str = "",
        *,
        session: requests.Session | None = None,
        max_attempts: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
        version: str = "develop",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_url = base.removesuffix("/") + "/api/remote"
        self.token_id = token_id
        self.token = token
        self.session = session if session is not None else requests.Session()
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.version = version
        self._sleep = sleep
        self._clock = clock

    def get(self, path: str, query: Mapping[str, str] | None = None) -> Response:
        """Execute a GET request."""
        return self.request("GET", path, None, query)

    def post(self, path: str, data: Any = None) -> Response:
        """Execute a POST request with ``data`` encoded as JSON."""
        body = json.dumps(data, default=_encode).encode("utf-8")
        return self.request("POST", path, body)

    def request_once(
        self,
        method: str,
        path: str,
        body: bytes | None = None,
        query: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a single authenticated request without retrying."""
        headers = {
            "User-Agent": f"Wings/v{self.version} (id:{self.token_id})",
            "Accept": ACCEPT_HEADER,
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.token_id}.{self.token}",
        }
        method = method or "GET"
        url = self.base_url + path
        _debug_log_request(method, url, headers)
        res = self.session.request(
            method,
            url,
            data=body if body else None,
            params=dict(query) if query else None,
            headers=headers,
            timeout=self.timeout,
        )
        return Response(res)

    def request(
        self,
        method: str,
        path: str,
        body: bytes | None = None,
        query: Mapping[str, str] | None = None,
    ) -> Response:
        """Send a request, retrying server errors with exponential backoff.

        Client errors (4xx) are raised immediately as RequestError.
        """
        delays = self._backoff()
        while True:
            try:
                res = self.request_once(method, path, body, query)
            except requests.RequestException as err:
                last: Exception = ConnectionError(f"http: request creation failed: {err}")
                last.__cause__ = err
            else:
                if not res.has_error():
                    return res
                last = res.error()
                if 400 <= res.status_code < 500:
                    raise last
            delay = next(delays, None)
            if delay is None:
                raise last
            self._sleep(delay)

    def _backoff(self) -> Iterator[float]:
        start = self._clock()

        def delays() -> Iterator[float]:
            interval = _INITIAL_INTERVAL
            retries = 0
            while True:
                if self.max_attempts > 0 and retries >= self.max_attempts:
                    return
                elapsed = self._clock() - start
                delta = _RANDOMIZATION_FACTOR * interval
                wait = interval - delta + random.random() * (2 * delta)
                interval = min(interval * _MULTIPLIER, _MAX_INTERVAL)
                if elapsed + wait > _MAX_ELAPSED:
                    return
                retries += 1
                yield wait

        return delays()

    def get_servers(self, per_page: int) -> list[RawServerData]:
        """Return every server on the Panel, fetching extra pages in parallel."""
        servers, meta = self._get_servers_paged(0, per_page)
        if meta.last_page > 1:
            pages = range(meta.current_page + 1, meta.last_page + 1)
            with ThreadPoolExecutor() as pool:
                for page_servers, _ in pool.map(
                    lambda page: self._get_servers_paged(page, per_page), pages
                ):
                    servers.extend(page_servers)
        return servers

    def _get_servers_paged(self, page: int, limit: int) -> tuple[list[RawServerData], Pagination]:
        res = self.get("/servers", {"page": str(page), "per_page": str(limit)})
        decoded = res.json() or {}
        if not isinstance(decoded, dict):
            raise ValueError("remote: could not unmarshal response: expected an object")
        data = [RawServerData.from_dict(item) for item in decoded.get("data") or []]
        return data, Pagination.from_dict(decoded.get("meta"))

    def reset_servers_state(self) -> None:
        """Mark servers stuck installing or restoring as installed on the Panel."""
        try:
            self.post("/servers/reset", None)
        except Exception as err:
            raise RuntimeError(f"remote: failed to reset server state on Panel: {err}") from err

    def get_server_configuration(self, uuid: str) -> ServerConfigurationResponse:
        res = self.get(f"/servers/{uuid}")
        return ServerConfigurationResponse.from_dict(res.json())

    def get_installation_script(self, uuid: str) -> InstallationScript:
        res = self.get(f"/servers/{uuid}/install")
        return InstallationScript.from_dict(res.json())

    def set_installation_status(self, uuid: str, data: InstallStatusRequest) -> None:
        self.post(f"/servers/{uuid}/install", data)

    def set_archive_status(self, uuid: str, successful: bool) -> None:
        self.post(f"/servers/{uuid}/archive", {"successful": successful})

    def set_transfer_status(self, uuid: str, successful: bool) -> None:
        state = "success" if successful else "failure"
        self.post(f"/servers/{uuid}/transfer/{state}", None)

    def validate_sftp_credentials(self, request: SftpAuthRequest) -> SftpAuthResponse:
        """Ask the Panel whether SFTP credentials belong to a server on this node."""
        try:
            res = self.post("/sftp/auth", request)
        except Exception as err:
            rerr = as_request_error(err)
            if rerr is not None and rerr.response is not None \
                    and 400 <= rerr.response.status_code < 500:
                log.warning("%s (subsystem=sftp, username=%s, ip=%s)",
                            rerr, request.user, request.ip)
                raise SftpInvalidCredentialsError() from err
            raise
        return SftpAuthResponse.from_dict(res.json())

    def get_backup_remote_upload_urls(self, backup: str, size: int) -> BackupRemoteUploadResponse:
        res = self.get(f"/backups/{backup}", {"size": str(int(size))})
        return BackupRemoteUploadResponse.from_dict(res.json())

    def set_backup_status(self, backup: str, data: BackupRequest) -> None:
        self.post(f"/backups/{backup}", data)

    def send_restoration_status(self, backup: str, successful: bool) -> None:
        """Tell the Panel that a backup restoration has finished."""
        self.post(f"/backups/{backup}/restore", {"successful": successful})

    def send_activity_logs(self, activity: Iterable[Any]) -> None:
        """Send activity log entries to the Panel."""
        self.post("/activity", {"data": list(activity)})


def _debug_log_request(method: str, url: str, headers: Mapping[str, str]) -> None:
    if not log.isEnabledFor(logging.DEBUG):
        return
    shown = {
        k: ("(redacted)" if k == "Authorization" and v else v) for k, v in headers.items()
    }
    log.debug("making request to external HTTP endpoint (method=%s, endpoint=%s, headers=%s)",
              method, url, shown)