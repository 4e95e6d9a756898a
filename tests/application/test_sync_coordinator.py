from __future__ import annotations

import asyncio

from pos_offline.application.sync_coordinator import SKIPPED_IN_PROGRESS, SKIPPED_OFFLINE
from pos_offline.core.errors import TransportError
from pos_offline.core.events import SyncEvent
from pos_offline.domain.models import MirrorRecord


def _queue_offline_sale(harness, number: int = 42) -> str:
    sale = {"invoiceNumber": number, "total": 100, "shop": "A", "date": "2025-03-14T12:30:00Z"}
    op_id = harness.queue.enqueue("dailySales", "add", payload=sale)
    harness.mirror.put(MirrorRecord(local_id=op_id, payload=sale, queue_ref=op_id))
    return op_id


def _quantity(harness, product_id: str) -> int:
    documents = {document["id"]: document for document in harness.remote.documents("lacosteProducts")}
    return documents[product_id]["quantity"]


def test_reconnect_syncs_queued_sale_and_clears_mirror(harness) -> None:
    harness.go_offline()
    _queue_offline_sale(harness)
    assert asyncio.run(harness.coordinator.sync()).skipped_reason == SKIPPED_OFFLINE

    harness.go_online()
    summary = asyncio.run(harness.coordinator.sync())

    assert summary.succeeded == 1
    assert summary.failed == 0
    assert len(harness.mirror) == 0
    assert harness.queue.all() == []
    merged = harness.reconciler.merge(harness.remote.documents("dailySales"))
    assert [record["invoiceNumber"] for record in merged] == [42]


def test_invalid_operation_is_dropped_on_first_attempt(harness) -> None:
    op_id = harness.queue.enqueue("dailySales", "add")

    summary = asyncio.run(harness.coordinator.sync())

    assert summary.dropped == (op_id,)
    assert summary.errors[0].error_type == "ValidationError"
    assert summary.errors[0].retryable is False
    assert harness.queue.all() == []
    assert harness.remote.calls == []


def test_transient_failures_are_retried_until_ceiling(harness) -> None:
    op_id = harness.queue.enqueue("dailySales", "add", payload={"invoiceNumber": 1})

    async def failing_add(collection, data):  # noqa: ANN001
        raise TransportError("socket reset")

    harness.remote.add_document = failing_add
    for attempt in range(1, 5):
        summary = asyncio.run(harness.coordinator.sync())
        assert summary.failed == 1
        assert harness.queue.get(op_id).retries == attempt

    final = asyncio.run(harness.coordinator.sync())

    assert final.abandoned == (op_id,)
    assert harness.queue.all() == []
    assert harness.metrics.counter("operations_abandoned") == 1


def test_replay_is_fifo(harness) -> None:
    harness.remote.seed("lacosteProducts", "p1", {"quantity": 5})
    harness.queue.enqueue("lacosteProducts", "update", target_id="p1", payload={"quantity": 4})
    harness.queue.enqueue("lacosteProducts", "update", target_id="p1", payload={"quantity": 3})
    harness.queue.enqueue("lacosteProducts", "delete", target_id="p1")

    summary = asyncio.run(harness.coordinator.sync())

    assert summary.succeeded == 3
    assert [call[0] for call in harness.remote.calls] == ["update", "update", "delete"]
    assert harness.remote.documents("lacosteProducts") == []


def test_failed_write_holds_back_later_writes_to_same_document(harness) -> None:
    harness.remote.seed("lacosteProducts", "p1", {"quantity": 5})
    harness.remote.seed("lacosteProducts", "p2", {"quantity": 9})
    first = harness.queue.enqueue("lacosteProducts", "update", target_id="p1", payload={"quantity": 4})
    second = harness.queue.enqueue("lacosteProducts", "update", target_id="p1", payload={"quantity": 3})
    harness.queue.enqueue("lacosteProducts", "update", target_id="p2", payload={"quantity": 8})
    original_update = harness.remote.update_document
    failures = [TransportError("timeout")]

    async def flaky_update(collection, doc_id, data):  # noqa: ANN001
        if failures:
            raise failures.pop()
        await original_update(collection, doc_id, data)

    harness.remote.update_document = flaky_update

    interrupted = asyncio.run(harness.coordinator.sync())

    assert interrupted.failed == 1
    assert interrupted.succeeded == 1
    assert interrupted.deferred == (second,)
    assert harness.queue.get(first).retries == 1
    assert harness.queue.get(second).retries == 0
    assert _quantity(harness, "p1") == 5
    assert _quantity(harness, "p2") == 8

    resumed = asyncio.run(harness.coordinator.sync())

    assert resumed.succeeded == 2
    assert _quantity(harness, "p1") == 3
    assert harness.queue.all() == []


def test_update_of_missing_document_is_dropped_on_first_attempt(harness) -> None:
    op_id = harness.queue.enqueue("lacosteProducts", "update", target_id="gone", payload={"quantity": 1})

    summary = asyncio.run(harness.coordinator.sync())

    assert summary.dropped == (op_id,)
    assert summary.errors[0].error_type == "NotFoundError"
    assert summary.errors[0].retryable is False
    assert harness.queue.all() == []


def test_writes_queued_against_local_id_follow_the_remote_id(harness) -> None:
    assignments = []
    harness.events.connect(SyncEvent.ID_ASSIGNED, assignments.append)
    add_id = harness.queue.enqueue("lacosteProducts", "add", payload={"code": "C1", "quantity": 1})
    harness.queue.enqueue("lacosteProducts", "update", target_id=add_id, payload={"quantity": 2})

    summary = asyncio.run(harness.coordinator.sync())

    assert summary.succeeded == 2
    [document] = harness.remote.documents("lacosteProducts")
    assert document["quantity"] == 2
    assert assignments[0].local_id == add_id
    assert assignments[0].remote_id == document["id"]


def test_second_sync_while_running_is_skipped(harness) -> None:
    harness.queue.enqueue("dailySales", "add", payload={"invoiceNumber": 1})
    release = asyncio.Event()
    original_add = harness.remote.add_document

    async def slow_add(collection, data):  # noqa: ANN001
        await release.wait()
        return await original_add(collection, data)

    harness.remote.add_document = slow_add

    async def scenario():
        first = asyncio.create_task(harness.coordinator.sync())
        await asyncio.sleep(0)
        second = await harness.coordinator.sync()
        release.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert second.skipped_reason == SKIPPED_IN_PROGRESS
    assert first.succeeded == 1
    assert len(harness.remote.documents("dailySales")) == 1


def test_sync_emits_completion_and_drain_events(harness) -> None:
    received: list[str] = []
    harness.events.connect(SyncEvent.SYNC_COMPLETED, lambda _summary: received.append("completed"))
    harness.events.connect(SyncEvent.QUEUE_DRAINED, lambda _summary: received.append("drained"))
    harness.queue.enqueue("dailySales", "add", payload={"invoiceNumber": 1})

    asyncio.run(harness.coordinator.sync())

    assert received == ["completed", "drained"]


def test_sync_twice_does_not_duplicate_remote_writes(harness) -> None:
    harness.queue.enqueue("dailySales", "add", payload={"invoiceNumber": 1})

    asyncio.run(harness.coordinator.sync())
    second = asyncio.run(harness.coordinator.sync())

    assert second.succeeded == 0
    assert len(harness.remote.documents("dailySales")) == 1


def test_sync_records_metrics(harness) -> None:
    harness.queue.enqueue("dailySales", "add", payload={"invoiceNumber": 1})

    asyncio.run(harness.coordinator.sync())

    assert harness.metrics.counter("sync_runs") == 1
    assert harness.metrics.counter("operations_synced") == 1
