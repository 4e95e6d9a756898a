from __future__ import annotations

import logging
from typing import Any

from pos_offline.application.local_mirror import LocalMirror
from pos_offline.application.offline_writer import OfflineWriter
from pos_offline.application.operation_executor import call_remote
from pos_offline.application.queue_store import DurableQueueStore
from pos_offline.application.reconciler import Reconciler
from pos_offline.core.errors import InfraError, TransportError
from pos_offline.core.metrics import timed
from pos_offline.domain.invoices import RETURN_EXPENSE_REASON
from pos_offline.domain.models import (
    CLOSE_DAY_HISTORY_COLLECTION,
    DAILY_PROFIT_COLLECTION,
    EXPENSES_COLLECTION,
    REPORTS_COLLECTION,
    SALES_COLLECTION,
    BatchWrite,
    OperationAction,
    ServiceResult,
    WriteOutcome,
    as_float,
)
from pos_offline.domain.ports import RemoteDocumentStorePort
from pos_offline.domain.time_utils import Clock, to_iso, today_iso, utc_now

logger = logging.getLogger(__name__)


class CloseDayService:
    """End of day: moves the shop's sales to reports and books the day's totals.

    Sales still waiting in the queue are closed too. Their queued ``dailySales``
    add is replaced by a ``reports`` add so a closed sale never shows up again
    in the live list once connectivity returns.
    """

    def __init__(
        self,
        remote: RemoteDocumentStorePort,
        writer: OfflineWriter,
        queue: DurableQueueStore,
        mirror: LocalMirror,
        reconciler: Reconciler,
        *,
        clock: Clock = utc_now,
        timeout_seconds: float | None = None,
    ) -> None:
        self._remote = remote
        self._writer = writer
        self._queue = queue
        self._mirror = mirror
        self._reconciler = reconciler
        self._clock = clock
        self._timeout_seconds = timeout_seconds

    async def add_expense(
        self,
        shop: str,
        amount: float,
        reason: str,
        *,
        profit: float = 0.0,
        notes: str = "",
    ) -> WriteOutcome:
        expense = {
            "shop": shop,
            "amount": float(amount),
            "reason": reason,
            "profit": float(profit),
            "notes": notes,
            "date": today_iso(self._clock),
        }
        return await self._writer.add(EXPENSES_COLLECTION, expense)

    @timed("close_day")
    async def close_day(self, shop: str, closed_by: str) -> ServiceResult:
        today = today_iso(self._clock)
        remote_sales = await self._query(SALES_COLLECTION, shop)
        sales = self._reconciler.merge(remote_sales, self._mirror.list_for(shop))
        if not sales:
            return ServiceResult(False, "No sales to close for today")

        local_ids = {record.local_id for record in self._mirror.list_for(shop)}
        expenses = await self._query(EXPENSES_COLLECTION, shop)
        known_ids = {expense.get("id") for expense in expenses}
        for operation in self._queue.pending_for_collection(EXPENSES_COLLECTION):
            payload = operation.payload or {}
            if (
                operation.action == OperationAction.ADD
                and payload.get("shop") == shop
                and payload.get("date") == today
                and operation.id not in known_ids
            ):
                expenses.append({"id": operation.id, **payload, "queued": True})

        totals = summarize_day(sales, expenses, today)
        summary = {
            "shop": shop,
            "date": today,
            "closedBy": closed_by,
            "createdAt": to_iso(self._clock()),
            **totals,
        }
        history = {
            "shop": shop,
            "closedBy": closed_by,
            "closedAt": today,
            "closedAtTimestamp": to_iso(self._clock()),
            "sales": sales,
            "expenses": expenses,
            **totals,
        }

        remote_closed = [sale for sale in sales if sale["id"] not in local_ids]
        local_closed = [sale for sale in sales if sale["id"] in local_ids]
        closed_expenses = [
            expense for expense in expenses if expense.get("date") == today and not expense.get("queued")
        ]

        if self._writer.is_online():
            writes = self._build_batch(remote_closed, local_closed, closed_expenses, summary, history, closed_by)
            try:
                await call_remote(
                    self._remote.commit_batch(writes),
                    description="close day batch",
                    timeout_seconds=self._timeout_seconds,
                )
            except (InfraError, OSError) as exc:
                logger.warning("Close day batch failed for %s, queueing instead: %s", shop, exc)
            else:
                self._forget_local_sales(local_closed)
                logger.info("Day closed for %s: %s sale(s)", shop, len(sales))
                return ServiceResult(True, "Day closed", data=totals)

        self._queue_close(remote_closed, local_closed, closed_expenses, summary, history, closed_by)
        logger.info("Day closed offline for %s: %s sale(s) queued", shop, len(sales))
        return ServiceResult(True, "Day closed; changes will sync when back online", offline=True, data=totals)

    async def _query(self, collection: str, shop: str) -> list[dict[str, Any]]:
        if not self._writer.is_online():
            return []
        try:
            return await call_remote(
                self._remote.query_documents(collection, [("shop", "==", shop)]),
                description=f"query {collection}",
                timeout_seconds=self._timeout_seconds,
            )
        except TransportError as exc:
            logger.warning("Could not read %s for %s, using local data only: %s", collection, shop, exc)
            return []

    def _build_batch(
        self,
        remote_closed: list[dict[str, Any]],
        local_closed: list[dict[str, Any]],
        closed_expenses: list[dict[str, Any]],
        summary: dict[str, Any],
        history: dict[str, Any],
        closed_by: str,
    ) -> list[BatchWrite]:
        writes: list[BatchWrite] = []
        for sale in remote_closed:
            writes.append(BatchWrite("add", REPORTS_COLLECTION, data=_report_of(sale, closed_by)))
            writes.append(BatchWrite("delete", SALES_COLLECTION, doc_id=str(sale["id"])))
        for sale in local_closed:
            writes.append(BatchWrite("add", REPORTS_COLLECTION, data=_report_of(sale, closed_by)))
        writes.append(BatchWrite("add", DAILY_PROFIT_COLLECTION, data=summary))
        for expense in closed_expenses:
            writes.append(BatchWrite("delete", EXPENSES_COLLECTION, doc_id=str(expense["id"])))
        writes.append(BatchWrite("add", CLOSE_DAY_HISTORY_COLLECTION, data=history))
        return writes

    def _queue_close(
        self,
        remote_closed: list[dict[str, Any]],
        local_closed: list[dict[str, Any]],
        closed_expenses: list[dict[str, Any]],
        summary: dict[str, Any],
        history: dict[str, Any],
        closed_by: str,
    ) -> None:
        for sale in remote_closed:
            self._queue.enqueue(REPORTS_COLLECTION, OperationAction.ADD, payload=_report_of(sale, closed_by))
            self._queue.enqueue(SALES_COLLECTION, OperationAction.DELETE, target_id=str(sale["id"]))
        for sale in local_closed:
            self._queue.enqueue(REPORTS_COLLECTION, OperationAction.ADD, payload=_report_of(sale, closed_by))
        self._queue.enqueue(DAILY_PROFIT_COLLECTION, OperationAction.ADD, payload=summary)
        for expense in closed_expenses:
            self._queue.enqueue(EXPENSES_COLLECTION, OperationAction.DELETE, target_id=str(expense["id"]))
        self._queue.enqueue(CLOSE_DAY_HISTORY_COLLECTION, OperationAction.ADD, payload=history)
        self._forget_local_sales(local_closed)

    def _forget_local_sales(self, local_closed: list[dict[str, Any]]) -> None:
        for sale in local_closed:
            queue_ref = sale.get("queueId")
            if queue_ref:
                self._queue.dequeue(str(queue_ref))
        self._mirror.remove_many(str(sale["id"]) for sale in local_closed)


def summarize_day(sales: list[dict[str, Any]], expenses: list[dict[str, Any]], today: str) -> dict[str, float]:
    total_sales = sum(as_float(sale.get("total")) for sale in sales)
    total_expenses = 0.0
    returned_profit = 0.0
    for expense in expenses:
        if expense.get("date") != today:
            continue
        if expense.get("reason") == RETURN_EXPENSE_REASON:
            returned_profit += as_float(expense.get("profit"))
        else:
            total_expenses += as_float(expense.get("amount"))
    return {
        "totalSales": round(total_sales, 2),
        "totalExpenses": round(total_expenses, 2),
        "returnedProfit": round(returned_profit, 2),
    }


def _report_of(sale: dict[str, Any], closed_by: str) -> dict[str, Any]:
    report = {key: value for key, value in sale.items() if key not in ("id", "queueId")}
    report["closedBy"] = closed_by
    return report
