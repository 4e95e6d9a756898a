from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from collections.abc import Sequence
from typing import Any, Callable, TypeVar

from pos_offline.core.errors import AppError, NotFoundError, ValidationError
from pos_offline.domain.models import BatchWrite
from pos_offline.domain.ports import ChangeCallback, ErrorCallback, Filters, Unsubscribe
from pos_offline.domain.time_utils import Clock, to_iso, utc_now
from pos_offline.infrastructure.memory_stores import matches_filters
from pos_offline.infrastructure.sheets_client import SheetsClient
from pos_offline.infrastructure.sheets_client_rules import (
    append_rows_request,
    decode_rows,
    delete_row_request,
    encode_row,
    update_row_request,
    worksheet_title,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SheetsDocumentStore:
    """Document store over a Google spreadsheet: one worksheet per collection.

    Each row holds a document id, its JSON body and the last write time.
    gspread is blocking, so every call runs in a worker thread. Subscriptions
    poll the worksheet and push only when the result set changed.
    """

    def __init__(
        self,
        client: SheetsClient,
        *,
        poll_seconds: float = 10.0,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex[:20],
    ) -> None:
        self._client = client
        self._poll_seconds = poll_seconds
        self._clock = clock
        self._id_factory = id_factory

    async def add_document(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = self._id_factory()
        row = encode_row(doc_id, data, to_iso(self._clock()))
        await self._run(self._client.append_row, worksheet_title(collection), row)
        return doc_id

    async def update_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        row_number, current = await self._locate(collection, doc_id)
        if row_number is None or current is None:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        merged = {**current, **data}
        await self._run(
            self._client.update_row, worksheet_title(collection), row_number, encode_row(doc_id, merged, to_iso(self._clock()))
        )

    async def delete_document(self, collection: str, doc_id: str) -> None:
        row_number, _ = await self._locate(collection, doc_id)
        if row_number is None:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        await self._run(self._client.delete_row, worksheet_title(collection), row_number)

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        _, document = await self._locate(collection, doc_id)
        return document

    async def set_document(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        row_number, current = await self._locate(collection, doc_id)
        title = worksheet_title(collection)
        if row_number is None:
            await self._run(self._client.append_row, title, encode_row(doc_id, data, to_iso(self._clock())))
            return
        body = {**(current or {}), **data} if merge else data
        await self._run(self._client.update_row, title, row_number, encode_row(doc_id, body, to_iso(self._clock())))

    async def query_documents(self, collection: str, filters: Filters = ()) -> list[dict[str, Any]]:
        documents = await self._read(collection)
        return [document for _, document in documents if matches_filters(document, filters)]

    def subscribe(
        self,
        collection: str,
        filters: Filters,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Unsubscribe:
        task = asyncio.get_running_loop().create_task(self._poll(collection, tuple(filters), on_change, on_error))

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def commit_batch(self, writes: Sequence[BatchWrite]) -> None:
        if not writes:
            return
        collections = list(dict.fromkeys(write.collection for write in writes))
        snapshots = {collection: await self._read(collection) for collection in collections}
        sheet_ids = {collection: await self._sheet_id(collection) for collection in collections}
        await self._run(self._client.batch_update, self._build_batch_requests(writes, snapshots, sheet_ids))

    def _build_batch_requests(
        self,
        writes: Sequence[BatchWrite],
        snapshots: dict[str, list[tuple[int, dict[str, Any]]]],
        sheet_ids: dict[str, int],
    ) -> list[dict[str, Any]]:
        now = to_iso(self._clock())
        rows_by_id = {
            collection: {document["id"]: (row_number, document) for row_number, document in documents}
            for collection, documents in snapshots.items()
        }
        updates: list[dict[str, Any]] = []
        appends: dict[str, list[list[str]]] = defaultdict(list)
        deletes: dict[str, set[int]] = defaultdict(set)
        for write in writes:
            rows = rows_by_id[write.collection]
            if write.action == "add":
                appends[write.collection].append(encode_row(write.doc_id or self._id_factory(), write.data or {}, now))
            elif write.action in ("update", "set"):
                located = rows.get(str(write.doc_id))
                if located is None:
                    if write.action == "update":
                        raise NotFoundError(f"{write.collection}/{write.doc_id} does not exist")
                    appends[write.collection].append(encode_row(str(write.doc_id), write.data or {}, now))
                    continue
                row_number, current = located
                body = {**current, **(write.data or {})} if write.action == "update" else (write.data or {})
                rows[str(write.doc_id)] = (row_number, {**body, "id": write.doc_id})
                updates.append(update_row_request(sheet_ids[write.collection], row_number, encode_row(str(write.doc_id), body, now)))
            elif write.action == "delete":
                located = rows.get(str(write.doc_id))
                if located is not None:
                    deletes[write.collection].add(located[0])
            else:
                raise ValidationError(f"Unknown batch action {write.action!r}")

        requests = list(updates)
        requests.extend(append_rows_request(sheet_ids[collection], rows) for collection, rows in appends.items())
        for collection, row_numbers in deletes.items():
            requests.extend(delete_row_request(sheet_ids[collection], row) for row in sorted(row_numbers, reverse=True))
        return requests

    async def _poll(
        self,
        collection: str,
        filters: Filters,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        last: list[dict[str, Any]] | None = None
        while True:
            try:
                current = await self.query_documents(collection, filters)
            except AppError as exc:
                logger.warning("Polling %s failed: %s", collection, exc)
                if on_error is not None:
                    on_error(exc)
            except Exception:  # noqa: BLE001
                logger.exception("Polling %s failed unexpectedly", collection)
            else:
                if current != last:
                    last = current
                    try:
                        on_change(current)
                    except Exception:  # noqa: BLE001
                        logger.exception("Subscriber of %s failed", collection)
            await asyncio.sleep(self._poll_seconds)

    async def _sheet_id(self, collection: str) -> int:
        worksheet = await self._run(self._client.worksheet, worksheet_title(collection))
        return int(worksheet.id)

    async def _read(self, collection: str) -> list[tuple[int, dict[str, Any]]]:
        values = await self._run(self._client.read_all_values, worksheet_title(collection))
        return decode_rows(values)

    async def _locate(self, collection: str, doc_id: str) -> tuple[int | None, dict[str, Any] | None]:
        for row_number, document in await self._read(collection):
            if document["id"] == doc_id:
                return row_number, document
        return None, None

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(func, *args)
