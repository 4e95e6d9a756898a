from __future__ import annotations

import json
from typing import Any

from pos_offline.core.errors import ValidationError

HEADER = ["id", "data", "updated_at"]


def read_backoff_seconds(attempt: int, base_seconds: float = 1) -> float:
    return base_seconds * (2 ** (attempt - 1))


def write_backoff_seconds(attempt: int) -> int:
    return 2 ** (attempt - 1)


def should_retry_rate_limit(attempt: int, max_retries: int) -> bool:
    return attempt < max_retries


def worksheet_title(collection: str) -> str:
    if not collection or any(char in collection for char in "[]*?/\\:"):
        raise ValidationError(f"Collection name {collection!r} cannot be used as a worksheet title")
    return collection


def encode_row(doc_id: str, data: dict[str, Any], updated_at: str) -> list[str]:
    payload = {key: value for key, value in data.items() if key != "id"}
    return [doc_id, json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str), updated_at]


def decode_row(row: list[Any]) -> dict[str, Any] | None:
    """Document stored in a worksheet row, or None for blank or unreadable rows."""
    cells = ["" if cell is None else str(cell) for cell in row] + ["", ""]
    doc_id = cells[0].strip()
    if not doc_id:
        return None
    try:
        payload = json.loads(cells[1]) if cells[1].strip() else {}
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    return {**payload, "id": doc_id}


def decode_rows(values: list[list[Any]]) -> list[tuple[int, dict[str, Any]]]:
    """(1-based sheet row, document) for every data row below the header."""
    documents: list[tuple[int, dict[str, Any]]] = []
    for offset, row in enumerate(values[1:], start=2):
        document = decode_row(row)
        if document is not None:
            documents.append((offset, document))
    return documents


def string_cells(values: list[str]) -> dict[str, Any]:
    return {"values": [{"userEnteredValue": {"stringValue": value}} for value in values]}


def update_row_request(sheet_id: int, row_number: int, values: list[str]) -> dict[str, Any]:
    return {
        "updateCells": {
            "range": {
                "sheetId": sheet_id,
                "startRowIndex": row_number - 1,
                "endRowIndex": row_number,
                "startColumnIndex": 0,
                "endColumnIndex": len(values),
            },
            "rows": [string_cells(values)],
            "fields": "userEnteredValue",
        }
    }


def append_rows_request(sheet_id: int, rows: list[list[str]]) -> dict[str, Any]:
    return {
        "appendCells": {
            "sheetId": sheet_id,
            "rows": [string_cells(row) for row in rows],
            "fields": "userEnteredValue",
        }
    }


def delete_row_request(sheet_id: int, row_number: int) -> dict[str, Any]:
    return {
        "deleteDimension": {
            "range": {
                "sheetId": sheet_id,
                "dimension": "ROWS",
                "startIndex": row_number - 1,
                "endIndex": row_number,
            }
        }
    }
