from __future__ import annotations

import random

import pytest

from pos_offline.domain.models import BusinessKey, MirrorRecord, QueueOperation
from pos_offline.domain.reconciliation_rules import (
    confirmed_by_operations,
    find_mirror_match,
    merge_records,
    same_business_day,
)


def _mirror(local_id: str, number: int, total: float = 100.0, shop: str = "A", **extra) -> MirrorRecord:
    payload = {"invoiceNumber": number, "total": total, "shop": shop, **extra}
    return MirrorRecord(local_id=local_id, payload=payload, queue_ref=local_id)


def test_merge_hides_mirror_records_already_on_the_server() -> None:
    remote = [{"id": "r-42", "invoiceNumber": 42, "total": 100, "shop": "A"}]

    result = merge_records(remote, [_mirror("offline-1", 42)])

    assert [record["id"] for record in result.records] == ["r-42"]
    assert result.confirmed == ("offline-1",)


def test_merge_matches_by_remote_id_even_when_key_differs() -> None:
    remote = [{"id": "offline-7", "invoiceNumber": 7, "total": 10, "shop": "A"}]

    result = merge_records(remote, [_mirror("offline-7", 8, total=99)])

    assert len(result.records) == 1
    assert result.confirmed == ("offline-7",)


def test_merge_keeps_unsynced_records_sorted_newest_first() -> None:
    remote = [{"id": "r-1", "invoiceNumber": 1, "total": 5, "shop": "A"}]

    result = merge_records(remote, [_mirror("offline-3", 3), _mirror("offline-2", 2)])

    assert [record["invoiceNumber"] for record in result.records] == [3, 2, 1]
    assert result.records[0]["queueId"] == "offline-3"
    assert result.confirmed == ()


def test_merge_never_shows_two_records_with_the_same_key() -> None:
    result = merge_records([], [_mirror("offline-1", 5), _mirror("offline-2", 5)])

    assert len(result.records) == 1


def test_key_uses_shop_and_total() -> None:
    remote = [{"id": "r-5", "invoiceNumber": 5, "total": 100, "shop": "B"}]

    result = merge_records(remote, [_mirror("offline-5", 5, shop="A")])

    assert len(result.records) == 2
    assert result.confirmed == ()


def test_find_mirror_match_prefers_queue_reference() -> None:
    operation = QueueOperation(id="offline-1", collection="dailySales", action="add", payload={"invoiceNumber": 9})

    match = find_mirror_match([_mirror("offline-1", 42)], operation)

    assert match is not None
    assert match.local_id == "offline-1"


def test_find_mirror_match_falls_back_to_key_on_same_day() -> None:
    mirror = _mirror("legacy-1", 42, date="2025-03-14T09:00:00Z")
    same_day = QueueOperation(
        id="offline-9",
        collection="dailySales",
        action="add",
        payload={"invoiceNumber": 42, "total": 100, "shop": "A", "date": "14/03/2025"},
    )
    other_day = QueueOperation(
        id="offline-10",
        collection="dailySales",
        action="add",
        payload={"invoiceNumber": 42, "total": 100, "shop": "A", "date": "2025-03-15"},
    )

    assert find_mirror_match([mirror], same_day) is mirror
    assert find_mirror_match([mirror], other_day) is None


def test_confirmed_by_operations_only_counts_synced_adds() -> None:
    mirrors = [_mirror("offline-1", 1), _mirror("offline-2", 2)]
    operations = [
        QueueOperation(id="offline-1", collection="dailySales", action="add", payload={}, synced=True),
        QueueOperation(id="offline-2", collection="dailySales", action="add", payload={}, synced=False),
    ]

    assert confirmed_by_operations(mirrors, operations) == ["offline-1"]


def test_same_business_day_accepts_mixed_formats() -> None:
    assert same_business_day("2025-03-14T22:00:00Z", "14/03/2025")
    assert same_business_day({"seconds": 1741910400}, "2025-03-14")
    assert not same_business_day("2025-03-14", None)


@pytest.mark.parametrize("seed", range(8))
def test_merge_keeps_every_remote_record_and_one_record_per_key(seed: int) -> None:
    rng = random.Random(seed)
    numbers = rng.sample(range(1, 30), 8)
    remote = [
        {"id": f"r-{number}", "invoiceNumber": number, "total": rng.choice([10, 20]), "shop": rng.choice("AB")}
        for number in numbers
    ]
    mirrors = [
        _mirror(f"offline-{index}", rng.randint(1, 30), total=rng.choice([10.0, 20.0]), shop=rng.choice("AB"))
        for index in range(12)
    ]

    result = merge_records(remote, mirrors)

    ids = [record["id"] for record in result.records]
    assert {record["id"] for record in remote} <= set(ids)
    keys = [BusinessKey.from_record(record) for record in result.records]
    assert len(keys) == len(set(keys))
    for mirror in mirrors:
        if mirror.local_id in result.confirmed:
            assert mirror.local_id not in ids
        else:
            assert mirror.business_key in keys
