from __future__ import annotations

import pytest

from pos_offline.core.errors import ValidationError
from pos_offline.infrastructure.sheets_client_rules import (
    append_rows_request,
    decode_row,
    decode_rows,
    delete_row_request,
    encode_row,
    read_backoff_seconds,
    should_retry_rate_limit,
    update_row_request,
    worksheet_title,
    write_backoff_seconds,
)


def test_backoff_doubles_per_attempt() -> None:
    assert [read_backoff_seconds(attempt) for attempt in (1, 2, 3)] == [1, 2, 4]
    assert [write_backoff_seconds(attempt) for attempt in (1, 2, 3)] == [1, 2, 4]
    assert should_retry_rate_limit(4, 5)
    assert not should_retry_rate_limit(5, 5)


def test_encode_row_drops_id_from_body() -> None:
    row = encode_row("doc-1", {"id": "ignored", "total": 5, "shop": "A"}, "2025-03-14T12:00:00Z")

    assert row == ["doc-1", '{"shop": "A", "total": 5}', "2025-03-14T12:00:00Z"]
    assert decode_row(row) == {"shop": "A", "total": 5, "id": "doc-1"}


def test_decode_rows_skips_header_blank_and_broken_rows() -> None:
    values = [
        ["id", "data", "updated_at"],
        ["a", '{"total": 1}', "t"],
        ["", "", ""],
        ["b", "{not json", "t"],
        ["c", "[1, 2]", "t"],
        ["d"],
    ]

    assert decode_rows(values) == [(2, {"total": 1, "id": "a"}), (6, {"id": "d"})]


@pytest.mark.parametrize("name", ["", "sales/2025", "a:b", "x[1]"])
def test_worksheet_title_rejects_reserved_characters(name: str) -> None:
    with pytest.raises(ValidationError):
        worksheet_title(name)


def test_batch_requests_use_zero_based_indices() -> None:
    update = update_row_request(7, 3, ["doc", "{}", "t"])
    delete = delete_row_request(7, 3)
    append = append_rows_request(7, [["doc", "{}", "t"]])

    assert update["updateCells"]["range"]["startRowIndex"] == 2
    assert update["updateCells"]["range"]["endColumnIndex"] == 3
    assert delete["deleteDimension"]["range"] == {"sheetId": 7, "dimension": "ROWS", "startIndex": 2, "endIndex": 3}
    assert append["appendCells"]["rows"][0]["values"][0] == {"userEnteredValue": {"stringValue": "doc"}}
