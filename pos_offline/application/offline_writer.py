from __future__ import annotations

import logging
from typing import Any

from pos_offline.application.operation_executor import call_remote
from pos_offline.application.queue_store import DurableQueueStore
from pos_offline.core.errors import TransportError
from pos_offline.domain.models import OperationAction, WriteOutcome
from pos_offline.domain.ports import ConnectivityPort, RemoteDocumentStorePort

logger = logging.getLogger(__name__)


class OfflineWriter:
    """Write path for domain actions: remote first, queue when that cannot be confirmed.

    A write to a document that still has queued operations is queued behind
    them so the remote store sees that document's changes in order.
    """

    def __init__(
        self,
        remote: RemoteDocumentStorePort,
        queue: DurableQueueStore,
        connectivity: ConnectivityPort,
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        self._remote = remote
        self._queue = queue
        self._connectivity = connectivity
        self._timeout_seconds = timeout_seconds

    def is_online(self) -> bool:
        return self._connectivity.is_online()

    async def add(self, collection: str, data: dict[str, Any]) -> WriteOutcome:
        if not self.is_online():
            return self._enqueue(collection, OperationAction.ADD, None, data)
        try:
            remote_id = await call_remote(
                self._remote.add_document(collection, dict(data)),
                description=f"add on {collection}",
                timeout_seconds=self._timeout_seconds,
            )
        except TransportError as exc:
            logger.warning("Remote add on %s failed, queueing: %s", collection, exc)
            return self._enqueue(collection, OperationAction.ADD, None, data)
        return WriteOutcome(offline=False, remote_id=remote_id)

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> WriteOutcome:
        if self._must_queue(collection, doc_id):
            return self._enqueue(collection, OperationAction.UPDATE, doc_id, data)
        try:
            await call_remote(
                self._remote.update_document(collection, doc_id, dict(data)),
                description=f"update on {collection}/{doc_id}",
                timeout_seconds=self._timeout_seconds,
            )
        except TransportError as exc:
            logger.warning("Remote update on %s/%s failed, queueing: %s", collection, doc_id, exc)
            return self._enqueue(collection, OperationAction.UPDATE, doc_id, data)
        return WriteOutcome(offline=False, remote_id=doc_id)

    async def delete(self, collection: str, doc_id: str) -> WriteOutcome:
        if self._must_queue(collection, doc_id):
            return self._enqueue(collection, OperationAction.DELETE, doc_id, None)
        try:
            await call_remote(
                self._remote.delete_document(collection, doc_id),
                description=f"delete on {collection}/{doc_id}",
                timeout_seconds=self._timeout_seconds,
            )
        except TransportError as exc:
            logger.warning("Remote delete on %s/%s failed, queueing: %s", collection, doc_id, exc)
            return self._enqueue(collection, OperationAction.DELETE, doc_id, None)
        return WriteOutcome(offline=False, remote_id=doc_id)

    def _must_queue(self, collection: str, doc_id: str) -> bool:
        return not self.is_online() or self._queue.has_pending_for(collection, doc_id)

    def _enqueue(
        self,
        collection: str,
        action: OperationAction,
        doc_id: str | None,
        data: dict[str, Any] | None,
    ) -> WriteOutcome:
        queue_id = self._queue.enqueue(collection, action, target_id=doc_id, payload=data)
        return WriteOutcome(offline=True, remote_id=None, queue_id=queue_id)
