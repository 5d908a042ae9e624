"""Errors returned by the Panel API client."""

from __future__ import annotations

from typing import Any, Iterator


class RequestError(Exception):
    """An error response returned by the Panel API."""

    def __init__(
        self,
        code: str = "",
        status: str = "",
        detail: str = "",
        response: Any = None,
    ) -> None:
        super().__init__(code, detail)
        self.code = code
        self.status = status
        self.detail = detail
        self.response = response

    def __str__(self) -> str:
        status_code = self.response.status_code if self.response is not None else 0
        return f"Error response from Panel: {self.code}: {self.detail} (HTTP/{status_code})"


class SftpInvalidCredentialsError(Exception):
    """Raised when the Panel rejects a set of SFTP credentials."""

    def __str__(self) -> str:
        return "the credentials provided were invalid"


def _chain(err: BaseException | None) -> Iterator[BaseException]:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__ or err.__context__


def as_request_error(err: BaseException | None) -> RequestError | None:
    """Return the RequestError in the exception chain of ``err``, if any."""
    for item in _chain(err):
        if isinstance(item, RequestError):
            return item
    return None


def is_request_error(err: BaseException | None) -> bool:
    """Report whether ``err`` is, or was caused by, a RequestError."""
    return as_request_error(err) is not None