from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pos_offline.domain.models import BusinessKey, MirrorRecord, OperationAction, QueueOperation
from pos_offline.domain.time_utils import business_day


@dataclass(frozen=True)
class MergeResult:
    records: list[dict[str, Any]]
    confirmed: tuple[str, ...]


def invoice_sort_value(record: Mapping[str, Any]) -> float:
    key = BusinessKey.from_record(record)
    return key.invoice_number if key.invoice_number is not None else 0.0


def merge_records(remote_records: Iterable[Mapping[str, Any]], mirror_records: Iterable[MirrorRecord]) -> MergeResult:
    """Union of server records and still-local records without double counting.

    A mirror record is hidden when the server already holds it, either under
    the same id or under the same business key. Hidden records are reported in
    ``confirmed`` so the caller can drop them from the mirror.
    """
    merged = [dict(record) for record in remote_records]
    remote_ids = {str(record["id"]) for record in merged if record.get("id") is not None}
    remote_keys = {key for key in (BusinessKey.from_record(record) for record in merged) if key.is_complete}

    seen_keys = set(remote_keys)
    confirmed: list[str] = []
    for mirror in mirror_records:
        key = mirror.business_key
        if _confirmed_remotely(mirror, key, remote_ids, remote_keys):
            confirmed.append(mirror.local_id)
            continue
        if key.is_complete:
            if key in seen_keys:
                continue
            seen_keys.add(key)
        merged.append(mirror.to_record())

    merged.sort(key=invoice_sort_value, reverse=True)
    return MergeResult(records=merged, confirmed=tuple(confirmed))


def _confirmed_remotely(
    mirror: MirrorRecord,
    key: BusinessKey,
    remote_ids: set[str],
    remote_keys: set[BusinessKey],
) -> bool:
    if mirror.local_id in remote_ids:
        return True
    if mirror.queue_ref is not None and mirror.queue_ref in remote_ids:
        return True
    return key.is_complete and key in remote_keys


def confirmed_by_remote(mirror_records: Iterable[MirrorRecord], remote_records: Iterable[Mapping[str, Any]]) -> list[str]:
    return list(merge_records(remote_records, mirror_records).confirmed)


def same_business_day(left: Any, right: Any) -> bool:
    left_day = business_day(left)
    right_day = business_day(right)
    if left_day is None and right_day is None:
        return True
    return left_day == right_day


def find_mirror_match(mirror_records: Iterable[MirrorRecord], operation: QueueOperation) -> MirrorRecord | None:
    """Mirror record produced by ``operation``: by queue reference first, then by business key and day."""
    candidates = list(mirror_records)
    for mirror in candidates:
        if mirror.queue_ref == operation.id or mirror.local_id == operation.id:
            return mirror
    if operation.action != OperationAction.ADD or operation.payload is None:
        return None
    key = BusinessKey.from_record(operation.payload)
    if not key.is_complete:
        return None
    for mirror in candidates:
        if mirror.business_key == key and same_business_day(mirror.payload.get("date"), operation.payload.get("date")):
            return mirror
    return None


def confirmed_by_operations(mirror_records: Iterable[MirrorRecord], operations: Iterable[QueueOperation]) -> list[str]:
    """Mirror ids matching any synced ``add`` operation, by queue reference or business key."""
    synced_adds = [op for op in operations if op.synced and op.action == OperationAction.ADD]
    op_ids = {op.id for op in synced_adds}
    op_keys = {
        key
        for key in (BusinessKey.from_record(op.payload) for op in synced_adds if op.payload is not None)
        if key.is_complete
    }
    return [
        mirror.local_id
        for mirror in mirror_records
        if (mirror.queue_ref in op_ids or mirror.local_id in op_ids)
        or (mirror.business_key.is_complete and mirror.business_key in op_keys)
    ]
