from __future__ import annotations

import asyncio

from pos_offline.domain.invoices import RETURN_EXPENSE_REASON
from pos_offline.domain.models import MirrorRecord
from pos_offline.domain.time_utils import today_iso


def _queued_sale(harness, number: int, total: float, shop: str = "A") -> str:
    sale = {"invoiceNumber": number, "total": total, "shop": shop}
    op_id = harness.queue.enqueue("dailySales", "add", payload=sale)
    harness.mirror.put(MirrorRecord(op_id, sale, queue_ref=op_id))
    return op_id


def _seed_sales(harness) -> None:
    harness.remote.seed("dailySales", "r1", {"invoiceNumber": 1, "total": 100, "shop": "A"})
    harness.remote.seed("dailySales", "r2", {"invoiceNumber": 2, "total": 50, "shop": "A"})
    harness.remote.seed("dailySales", "other", {"invoiceNumber": 3, "total": 70, "shop": "B"})


def test_online_close_moves_sales_to_reports_in_one_batch(harness) -> None:
    _seed_sales(harness)
    _queued_sale(harness, 4, 30)
    asyncio.run(harness.close_day.add_expense("A", 10, "rent"))
    asyncio.run(harness.close_day.add_expense("A", 0, RETURN_EXPENSE_REASON, profit=5))

    result = asyncio.run(harness.close_day.close_day("A", "boss"))

    assert result.success and not result.offline
    assert result.data == {"totalSales": 180.0, "totalExpenses": 10.0, "returnedProfit": 5.0}
    assert [doc["id"] for doc in harness.remote.documents("dailySales")] == ["other"]
    reports = harness.remote.documents("reports")
    assert sorted(report["invoiceNumber"] for report in reports) == [1, 2, 4]
    assert all(report["closedBy"] == "boss" for report in reports)
    assert all("queueId" not in report for report in reports)
    assert harness.remote.documents("expenses") == []
    profit = harness.remote.documents("dailyProfit")
    assert len(profit) == 1
    assert profit[0]["date"] == today_iso(harness.clock)
    assert len(harness.remote.documents("closeDayHistory")) == 1
    assert harness.queue.pending() == []
    assert len(harness.mirror) == 0


def test_offline_close_is_queued_and_replays_later(harness) -> None:
    harness.go_offline()
    _queued_sale(harness, 4, 30)
    asyncio.run(harness.close_day.add_expense("A", 12, "lunch"))

    result = asyncio.run(harness.close_day.close_day("A", "boss"))

    assert result.success and result.offline
    assert result.data["totalExpenses"] == 12.0
    assert [op.collection for op in harness.queue.pending()] == ["expenses", "reports", "dailyProfit", "closeDayHistory"]
    assert len(harness.mirror) == 0

    harness.go_online()
    summary = asyncio.run(harness.coordinator.sync())

    assert summary.succeeded == 4
    assert harness.remote.documents("dailySales") == []
    assert len(harness.remote.documents("reports")) == 1


def test_rejected_batch_falls_back_to_queue(harness) -> None:
    _seed_sales(harness)
    harness.remote.reject_batches = True

    result = asyncio.run(harness.close_day.close_day("A", "boss"))

    assert result.success and result.offline
    actions = [(op.collection, op.action) for op in harness.queue.pending()]
    assert ("dailySales", "delete") in actions
    assert actions[-1] == ("closeDayHistory", "add")


def test_close_without_sales_fails(harness) -> None:
    result = asyncio.run(harness.close_day.close_day("A", "boss"))

    assert not result.success
    assert harness.queue.pending() == []
