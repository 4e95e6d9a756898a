from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pos_offline.application.local_mirror import LocalMirror
from pos_offline.core.events import EventChannel, SyncEvent
from pos_offline.domain.models import SALES_COLLECTION, MirrorRecord, OperationAction, QueueOperation
from pos_offline.domain.reconciliation_rules import (
    confirmed_by_operations,
    confirmed_by_remote,
    find_mirror_match,
    merge_records,
)

logger = logging.getLogger(__name__)


class Reconciler:
    def __init__(
        self,
        mirror: LocalMirror,
        *,
        events: EventChannel | None = None,
        collection: str = SALES_COLLECTION,
    ) -> None:
        self._mirror = mirror
        self._events = events
        self._collection = collection

    @property
    def collection(self) -> str:
        return self._collection

    def merge(
        self,
        remote_records: Iterable[Mapping[str, Any]],
        mirror_records: Iterable[MirrorRecord] | None = None,
    ) -> list[dict[str, Any]]:
        """Remote records plus unconfirmed mirror records, newest invoice first.

        Mirror records found on the server are removed from the mirror.
        """
        candidates = self._mirror.list_all() if mirror_records is None else list(mirror_records)
        result = merge_records(remote_records, candidates)
        self._drop(result.confirmed, reason="remote_match")
        return result.records

    def reconcile_operation(self, operation: QueueOperation) -> str | None:
        if operation.collection != self._collection or operation.action != OperationAction.ADD:
            return None
        match = find_mirror_match(self._mirror.list_all(), operation)
        if match is None:
            return None
        self._drop([match.local_id], reason="operation_synced")
        return match.local_id

    def cleanup_synced(self, operations: Iterable[QueueOperation]) -> list[str]:
        relevant = [operation for operation in operations if operation.collection == self._collection]
        return self._drop(confirmed_by_operations(self._mirror.list_all(), relevant), reason="cleanup")

    def sweep(self, remote_records: Iterable[Mapping[str, Any]]) -> list[str]:
        """Drop every mirror record, whatever its shop, that the server already holds."""
        return self._drop(confirmed_by_remote(self._mirror.list_all(), remote_records), reason="sweep")

    def _drop(self, local_ids: Iterable[str], *, reason: str) -> list[str]:
        removed = self._mirror.remove_many(local_ids)
        if removed:
            logger.info("Reconciled %s mirror record(s) (%s)", len(removed), reason)
            if self._events is not None:
                self._events.emit(SyncEvent.RECORD_RECONCILED, {"local_ids": removed, "reason": reason})
        return removed
