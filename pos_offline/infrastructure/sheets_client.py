from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, TypeVar

import gspread
from google.auth.exceptions import DefaultCredentialsError, GoogleAuthError

from pos_offline.bootstrap.logging import log_operational_error
from pos_offline.core.errors import TransportError
from pos_offline.core.observability import get_correlation_id
from pos_offline.infrastructure.sheets_client_rules import (
    HEADER,
    read_backoff_seconds,
    should_retry_rate_limit,
    write_backoff_seconds,
)
from pos_offline.infrastructure.sheets_errors import (
    SheetsPermissionError,
    SheetsRateLimitError,
    map_gspread_exception,
)

logger = logging.getLogger(__name__)

_MAX_RETRIES = 5
_BASE_BACKOFF_SECONDS = 1
_WRITE_MAX_RETRIES = 5

T = TypeVar("T")

_LIBRARY_ERRORS = (
    gspread.exceptions.GSpreadException,
    GoogleAuthError,
    json.JSONDecodeError,
    OSError,
)


class SheetsClient:
    """Blocking gspread wrapper: opens the spreadsheet, retries rate limits, maps errors."""

    def __init__(
        self,
        credentials_path: Path | None = None,
        spreadsheet_id: str | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._credentials_path = credentials_path
        self._spreadsheet_id = spreadsheet_id
        self._sleep = sleep
        self._spreadsheet: gspread.Spreadsheet | None = None
        self._worksheet_cache: dict[str, gspread.Worksheet] = {}
        self._read_calls_count = 0
        self._write_calls_count = 0

    @property
    def spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            if self._credentials_path is None or not self._spreadsheet_id:
                raise RuntimeError("Spreadsheet not opened; call open_spreadsheet first")
            return self.open_spreadsheet(self._credentials_path, self._spreadsheet_id)
        return self._spreadsheet

    def open_spreadsheet(self, credentials_path: Path, spreadsheet_id: str) -> gspread.Spreadsheet:
        logger.info("Connecting to Google Sheets with service account credentials")
        try:
            client = gspread.service_account(filename=str(credentials_path))
        except (FileNotFoundError, json.JSONDecodeError, DefaultCredentialsError, ValueError, OSError) as exc:
            raise map_gspread_exception(exc) from exc
        spreadsheet = self._with_rate_limit_retry(
            "open_spreadsheet",
            lambda: client.open_by_key(spreadsheet_id),
            spreadsheet_id=spreadsheet_id,
        )
        self._spreadsheet = spreadsheet
        self._worksheet_cache = {}
        return spreadsheet

    def attach(self, spreadsheet: gspread.Spreadsheet) -> None:
        self._spreadsheet = spreadsheet
        self._worksheet_cache = {}

    def worksheet(self, title: str) -> gspread.Worksheet:
        if title in self._worksheet_cache:
            return self._worksheet_cache[title]
        spreadsheet = self.spreadsheet
        try:
            worksheet = self._with_rate_limit_retry(
                f"spreadsheet.worksheet({title})", lambda: spreadsheet.worksheet(title)
            )
        except gspread.exceptions.WorksheetNotFound:
            worksheet = self._with_write_retry(
                f"spreadsheet.add_worksheet({title})",
                lambda: spreadsheet.add_worksheet(title=title, rows=1000, cols=len(HEADER)),
            )
            self._with_write_retry(
                f"worksheet.update({title})",
                lambda: worksheet.update(range_name="A1:C1", values=[HEADER]),
            )
            logger.info("Created worksheet %s", title)
        self._worksheet_cache[title] = worksheet
        return worksheet

    def read_all_values(self, title: str) -> list[list[str]]:
        worksheet = self.worksheet(title)
        values = self._with_rate_limit_retry(f"worksheet.get_all_values({title})", worksheet.get_all_values)
        self._read_calls_count += 1
        return values

    def append_row(self, title: str, row: list[str]) -> None:
        worksheet = self.worksheet(title)
        self._with_write_retry(
            f"worksheet.append_row({title})",
            lambda: worksheet.append_row(row, value_input_option="RAW"),
        )
        self._write_calls_count += 1

    def update_row(self, title: str, row_number: int, row: list[str]) -> None:
        worksheet = self.worksheet(title)
        self._with_write_retry(
            f"worksheet.update({title})",
            lambda: worksheet.update(range_name=f"A{row_number}:C{row_number}", values=[row], raw=True),
        )
        self._write_calls_count += 1

    def delete_row(self, title: str, row_number: int) -> None:
        worksheet = self.worksheet(title)
        self._with_write_retry(f"worksheet.delete_rows({title})", lambda: worksheet.delete_rows(row_number))
        self._write_calls_count += 1

    def batch_update(self, requests: list[dict[str, Any]]) -> None:
        """Single spreadsheets.batchUpdate call; the API applies all requests or none."""
        if not requests:
            return
        spreadsheet = self.spreadsheet
        self._with_write_retry(
            "spreadsheet.batch_update",
            lambda: spreadsheet.batch_update({"requests": requests}),
        )
        self._write_calls_count += 1

    def get_read_calls_count(self) -> int:
        return self._read_calls_count

    def get_write_calls_count(self) -> int:
        return self._write_calls_count

    def _with_rate_limit_retry(
        self, operation_name: str, operation: Callable[[], T], *, spreadsheet_id: str | None = None
    ) -> T:
        for attempt in range(1, _MAX_RETRIES + 1):
            try:
                return operation()
            except gspread.exceptions.WorksheetNotFound:
                raise
            except _LIBRARY_ERRORS as exc:
                mapped_error = map_gspread_exception(exc)
                if not isinstance(mapped_error, SheetsRateLimitError):
                    self._handle_permission_error(mapped_error, operation_name, spreadsheet_id)
                    raise mapped_error from exc
                if attempt >= _MAX_RETRIES:
                    logger.error("Google Sheets rate limit persisted on %s after %s attempts", operation_name, attempt)
                    raise mapped_error from exc
                backoff_seconds = read_backoff_seconds(attempt, _BASE_BACKOFF_SECONDS)
                logger.warning(
                    "Google Sheets rate limit (%s). attempt=%s/%s backoff=%.3fs",
                    operation_name,
                    attempt,
                    _MAX_RETRIES,
                    backoff_seconds,
                )
                self._sleep(backoff_seconds)
        raise TransportError(f"Google Sheets operation {operation_name} did not complete")

    def _with_write_retry(
        self, operation_name: str, operation: Callable[[], T], *, spreadsheet_id: str | None = None
    ) -> T:
        for attempt in range(1, _WRITE_MAX_RETRIES + 1):
            try:
                return operation()
            except _LIBRARY_ERRORS as exc:
                mapped_error = map_gspread_exception(exc)
                if not isinstance(mapped_error, SheetsRateLimitError):
                    self._handle_permission_error(mapped_error, operation_name, spreadsheet_id)
                    raise mapped_error from exc
                if not should_retry_rate_limit(attempt, _WRITE_MAX_RETRIES):
                    logger.error("Google Sheets write rate limit persisted on %s after %s attempts", operation_name, attempt)
                    raise mapped_error from exc
                backoff_seconds = write_backoff_seconds(attempt)
                logger.warning(
                    "Google Sheets write rate limit (%s). attempt=%s/%s backoff=%ss",
                    operation_name,
                    attempt,
                    _WRITE_MAX_RETRIES,
                    backoff_seconds,
                )
                self._sleep(backoff_seconds)
        raise TransportError(f"Google Sheets write {operation_name} did not complete")

    def _handle_permission_error(self, mapped_error: Exception, operation_name: str, spreadsheet_id: str | None) -> None:
        if not isinstance(mapped_error, SheetsPermissionError):
            return
        log_operational_error(
            logger,
            "Sync failed: insufficient permissions on Google Sheets",
            exc=mapped_error,
            extra={
                "correlation_id": get_correlation_id(),
                "operation": operation_name,
                "spreadsheet_id": spreadsheet_id or getattr(self._spreadsheet, "id", None),
            },
        )
