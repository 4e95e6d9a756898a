from __future__ import annotations

from pos_offline.domain.models import BusinessKey, CartItem, MirrorRecord, QueueOperation, SyncSummary


def test_queue_operation_record_uses_wire_keys() -> None:
    operation = QueueOperation(
        id="offline-1",
        collection="dailySales",
        action="add",
        payload={"invoiceNumber": 1},
        created_at="2025-03-14T12:00:00Z",
    )

    record = operation.to_record()

    assert record == {
        "id": "offline-1",
        "collectionName": "dailySales",
        "action": "add",
        "timestamp": "2025-03-14T12:00:00Z",
        "synced": False,
        "retries": 0,
        "data": {"invoiceNumber": 1},
    }
    assert QueueOperation.from_record(record) == operation


def test_missing_fields_by_action() -> None:
    assert QueueOperation(id="1", collection="x", action="add").missing_fields() == ["data"]
    assert QueueOperation(id="2", collection="x", action="update", payload={}).missing_fields() == ["docId"]
    assert QueueOperation(id="3", collection="", action="delete", target_id="d").missing_fields() == ["collectionName"]
    assert QueueOperation(id="4", collection="x", action="add", payload={}).missing_fields() == []


def test_business_key_normalizes_numbers() -> None:
    assert BusinessKey.from_record({"invoiceNumber": "42", "total": 100, "shop": "A"}) == BusinessKey(42.0, 100.0, "A")
    assert not BusinessKey.from_record({"total": 5}).is_complete


def test_mirror_record_round_trips_through_its_record() -> None:
    record = MirrorRecord(local_id="offline-1", payload={"invoiceNumber": 3, "shop": "A"}, queue_ref="offline-1")

    stored = record.to_record()

    assert stored["id"] == "offline-1"
    assert stored["queueId"] == "offline-1"
    assert MirrorRecord.from_record(stored) == record


def test_cart_item_reads_camel_case_lines() -> None:
    item = CartItem.from_mapping(
        {"originalProductId": "p1", "quantity": "2", "sellPrice": "10.5", "color": "", "finalPrice": None}
    )

    assert item.original_product_id == "p1"
    assert item.quantity == 2
    assert item.sell_price == 10.5
    assert item.color is None
    assert item.final_price is None
    assert not item.has_variant


def test_sync_summary_skipped_flag() -> None:
    assert SyncSummary(skipped_reason="offline").skipped
    assert not SyncSummary(succeeded=1).skipped
