from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable

from pos_offline.domain.models import OperationAction, QueueOperation
from pos_offline.domain.ports import KeyValueStorePort
from pos_offline.domain.time_utils import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)

QUEUE_KEY = "offlineQueue"
MAX_RETRIES = 5


def new_operation_id() -> str:
    return f"offline-{uuid.uuid4().hex}"


@dataclass(frozen=True)
class PurgeResult:
    synced: tuple[str, ...]
    abandoned: tuple[QueueOperation, ...]


class DurableQueueStore:
    """Ordered log of writes the remote store has not confirmed yet.

    The whole log is loaded from the key-value store at construction and
    written back after every mutation, so a crash never loses an enqueued
    operation. Readers get copies; mutation goes through the store methods.
    """

    def __init__(
        self,
        store: KeyValueStorePort,
        *,
        key: str = QUEUE_KEY,
        clock: Clock = utc_now,
        id_factory: Callable[[], str] = new_operation_id,
    ) -> None:
        self._store = store
        self._key = key
        self._clock = clock
        self._id_factory = id_factory
        self._operations = self._load()

    def _load(self) -> list[QueueOperation]:
        raw = self._store.get(self._key)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring malformed queue under %s", self._key)
            return []
        operations: list[QueueOperation] = []
        for record in raw:
            try:
                operations.append(QueueOperation.from_record(record))
            except (KeyError, TypeError, ValueError):
                logger.warning("Discarding unreadable queue entry: %r", record)
        return operations

    def _persist(self) -> None:
        self._store.set(self._key, [operation.to_record() for operation in self._operations])

    def enqueue(
        self,
        collection: str,
        action: OperationAction | str,
        target_id: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> str:
        action_value = action.value if isinstance(action, OperationAction) else str(action)
        operation = QueueOperation(
            id=self._id_factory(),
            collection=collection,
            action=action_value,
            target_id=target_id,
            payload=copy.deepcopy(payload) if payload is not None else None,
            created_at=to_iso(self._clock()),
        )
        self._operations.append(operation)
        try:
            self._persist()
        except Exception:
            self._operations.remove(operation)
            raise
        logger.info("Queued %s on %s as %s", action_value, collection, operation.id)
        return operation.id

    def dequeue(self, op_id: str) -> bool:
        before = len(self._operations)
        self._operations = [operation for operation in self._operations if operation.id != op_id]
        if len(self._operations) == before:
            return False
        self._persist()
        return True

    def get(self, op_id: str) -> QueueOperation | None:
        for operation in self._operations:
            if operation.id == op_id:
                return replace(operation)
        return None

    def all(self) -> list[QueueOperation]:
        return [replace(operation) for operation in self._operations]

    def pending(self) -> list[QueueOperation]:
        return [replace(operation) for operation in self._operations if not operation.synced]

    def persisted_size(self) -> int:
        raw = self._store.get(self._key)
        return len(raw) if isinstance(raw, list) else 0

    def has_pending_for(self, collection: str, target_id: str) -> bool:
        return any(not operation.synced and operation.targets(collection, target_id) for operation in self._operations)

    def pending_for_collection(self, collection: str) -> list[QueueOperation]:
        return [op for op in self.pending() if op.collection == collection]

    def mark_synced(self, op_id: str, synced_at: str | None = None) -> QueueOperation | None:
        operation = self._find(op_id)
        if operation is None:
            return None
        operation.synced = True
        operation.synced_at = synced_at or to_iso(self._clock())
        self._persist()
        return replace(operation)

    def record_failure(self, op_id: str) -> int:
        operation = self._find(op_id)
        if operation is None:
            return 0
        operation.retries += 1
        self._persist()
        return operation.retries

    def retarget(self, collection: str, old_id: str, new_id: str) -> int:
        """Point unsynced operations on ``old_id`` at ``new_id``; returns how many moved."""
        moved = 0
        for operation in self._operations:
            if not operation.synced and operation.targets(collection, old_id):
                operation.target_id = new_id
                moved += 1
        if moved:
            self._persist()
        return moved

    def purge_completed(self, max_retries: int = MAX_RETRIES) -> PurgeResult:
        synced = tuple(operation.id for operation in self._operations if operation.synced)
        abandoned = tuple(
            replace(operation)
            for operation in self._operations
            if not operation.synced and operation.retries >= max_retries
        )
        if not synced and not abandoned:
            return PurgeResult(synced=(), abandoned=())
        removed = set(synced) | {operation.id for operation in abandoned}
        self._operations = [operation for operation in self._operations if operation.id not in removed]
        self._persist()
        return PurgeResult(synced=synced, abandoned=abandoned)

    def _find(self, op_id: str) -> QueueOperation | None:
        for operation in self._operations:
            if operation.id == op_id:
                return operation
        return None
