from __future__ import annotations

import json

import gspread
import pytest

from pos_offline.core.errors import RemoteConfigError, TransportError, is_retryable
from pos_offline.infrastructure.sheets_errors import (
    SheetsApiDisabledError,
    SheetsConfigError,
    SheetsCredentialsError,
    SheetsNotFoundError,
    SheetsPermissionError,
    SheetsRateLimitError,
    map_gspread_exception,
)


class _FakeResponse:
    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text


def _api_error(status_code: int, text: str) -> gspread.exceptions.APIError:
    return gspread.exceptions.APIError(_FakeResponse(status_code, text))


@pytest.mark.parametrize(
    ("status_code", "text", "expected"),
    [
        (429, "RESOURCE_EXHAUSTED: Quota exceeded for read requests", SheetsRateLimitError),
        (400, "RATE_LIMIT_EXCEEDED", SheetsRateLimitError),
        (503, "backend unavailable", SheetsRateLimitError),
        (403, "Google Sheets API has not been used in project 123 before or it is disabled", SheetsApiDisabledError),
        (403, "PERMISSION_DENIED", SheetsPermissionError),
        (404, "Requested entity was not found.", SheetsNotFoundError),
        (400, "bad range", SheetsConfigError),
    ],
)
def test_map_gspread_api_errors(status_code: int, text: str, expected: type[Exception]) -> None:
    mapped = map_gspread_exception(_api_error(status_code, text))

    assert type(mapped) is expected


def test_rate_limit_is_retryable_and_config_errors_are_remote_config() -> None:
    assert isinstance(map_gspread_exception(_api_error(429, "quota")), TransportError)
    assert isinstance(map_gspread_exception(_api_error(403, "PERMISSION_DENIED")), RemoteConfigError)
    assert is_retryable(map_gspread_exception(_api_error(429, "quota")))


def test_credential_problems_are_reported_as_credentials_errors() -> None:
    missing = FileNotFoundError(2, "No such file", "/secrets/credentials.json")

    assert isinstance(map_gspread_exception(missing), SheetsCredentialsError)
    assert "/secrets/credentials.json" in str(map_gspread_exception(missing))
    assert isinstance(map_gspread_exception(json.JSONDecodeError("bad", "{", 0)), SheetsCredentialsError)


def test_network_failures_become_transport_errors() -> None:
    assert type(map_gspread_exception(ConnectionResetError("reset"))) is TransportError
    assert type(map_gspread_exception(TimeoutError("slow"))) is TransportError


def test_already_mapped_errors_pass_through() -> None:
    original = SheetsPermissionError("denied")

    assert map_gspread_exception(original) is original
