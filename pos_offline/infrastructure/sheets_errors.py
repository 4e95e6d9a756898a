from __future__ import annotations

import json

import gspread
from google.auth.exceptions import DefaultCredentialsError, TransportError as GoogleAuthTransportError

from pos_offline.core.errors import RemoteConfigError, TransportError


class SheetsConfigError(RemoteConfigError):
    pass


class SheetsApiDisabledError(SheetsConfigError):
    pass


class SheetsPermissionError(SheetsConfigError):
    pass


class SheetsNotFoundError(SheetsConfigError):
    pass


class SheetsCredentialsError(SheetsConfigError):
    pass


class SheetsRateLimitError(TransportError):
    pass


def extract_response_status_code(ex: Exception) -> int | None:
    response = getattr(ex, "response", None)
    return getattr(response, "status_code", None)


def _extract_api_error_text(ex: gspread.exceptions.APIError) -> str:
    response = getattr(ex, "response", None)
    if response is not None:
        text = getattr(response, "text", "")
        if text:
            return text
    return str(ex)


def _is_rate_limited_api_error(text_lower: str, status_code: int | None) -> bool:
    if status_code in {429, 500, 503}:
        return True
    return any(
        token in text_lower
        for token in (
            "[429]",
            "resource_exhausted",
            "rate_limit_exceeded",
            "quota exceeded",
            "read requests per minute per user",
        )
    )


def classify_api_error(text_lower: str, status_code: int | None) -> Exception:
    if _is_rate_limited_api_error(text_lower, status_code):
        return SheetsRateLimitError("Google Sheets rate limit reached; retry in a minute")
    if "google sheets api has not been used" in text_lower or "it is disabled" in text_lower:
        return SheetsApiDisabledError("The Google Sheets API is not enabled for this Cloud project")
    if status_code == 404 or "[404]" in text_lower or "requested entity was not found" in text_lower:
        return SheetsNotFoundError("Spreadsheet id is invalid or the sheet does not exist")
    if status_code == 403 or "[403]" in text_lower or "permission_denied" in text_lower:
        return SheetsPermissionError("The spreadsheet is not shared with the service account")
    return SheetsConfigError(text_lower)


def map_gspread_exception(ex: Exception) -> Exception:
    """Translate gspread, google-auth and socket failures into the sync error taxonomy."""
    if isinstance(ex, (SheetsConfigError, TransportError)):
        return ex
    if isinstance(ex, gspread.exceptions.APIError):
        text = _extract_api_error_text(ex)
        return classify_api_error(text.strip().lower(), extract_response_status_code(ex))
    if isinstance(ex, FileNotFoundError):
        path = getattr(ex, "filename", None)
        return SheetsCredentialsError(f"credentials.json not found at {path}" if path else "credentials.json not found")
    if isinstance(ex, (json.JSONDecodeError, DefaultCredentialsError)):
        return SheetsCredentialsError("credentials.json is not valid")
    if isinstance(ex, (GoogleAuthTransportError, TimeoutError, ConnectionError, OSError)):
        return TransportError(f"Google Sheets unreachable: {ex}")
    return SheetsConfigError(str(ex))
