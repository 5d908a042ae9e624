from types import SimpleNamespace

import pytest

from wingsd.remote_errors import (
    RequestError,
    SftpInvalidCredentialsError,
    as_request_error,
    is_request_error,
)


def test_str_without_response_reports_zero_status():
    err = RequestError(code="HttpNotFoundException", detail="missing")
    assert str(err) == "Error response from Panel: HttpNotFoundException: missing (HTTP/0)"


def test_str_with_response_uses_its_status_code():
    err = RequestError(code="Code", detail="Detail", response=SimpleNamespace(status_code=404))
    assert str(err).endswith("(HTTP/404)")
    assert str(err).startswith("Error response from Panel: Code: Detail")


def test_none_is_not_a_request_error():
    assert is_request_error(None) is False
    assert as_request_error(None) is None


def test_plain_error_is_not_a_request_error():
    assert is_request_error(ValueError("boom")) is False
    assert as_request_error(ValueError("boom")) is None


def test_wrapped_request_error_is_found():
    inner = RequestError(code="c", status="500", detail="d")
    with pytest.raises(RuntimeError) as info:
        try:
            raise inner
        except RequestError as err:
            raise RuntimeError("wrapped") from err
    assert is_request_error(info.value) is True
    assert as_request_error(info.value) is inner


def test_request_error_fields_are_kept():
    err = RequestError(code="c", status="422", detail="d")
    assert (err.code, err.status, err.detail, err.response) == ("c", "422", "d", None)


def test_sftp_invalid_credentials_message():
    assert str(SftpInvalidCredentialsError()) == "the credentials provided were invalid"