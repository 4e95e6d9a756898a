from __future__ import annotations

import copy
import json
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from pos_offline.core.errors import NotFoundError, PersistenceError, TransportError, ValidationError
from pos_offline.domain.models import BatchWrite
from pos_offline.domain.ports import ChangeCallback, ErrorCallback, Filters, Unsubscribe

logger = logging.getLogger(__name__)


class InMemoryKeyValueStore:
    """Key-value store kept in a dict; values go through JSON like the durable store."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        try:
            self._data[key] = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Value for {key!r} is not JSON serializable") from exc

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


def matches_filters(document: dict[str, Any], filters: Filters) -> bool:
    for field_name, operator, expected in filters:
        if operator != "==":
            raise ValidationError(f"Unsupported filter operator {operator!r}")
        if document.get(field_name) != expected:
            return False
    return True


@dataclass
class _Subscription:
    collection: str
    filters: Filters
    on_change: ChangeCallback
    on_error: ErrorCallback | None
    active: bool = True


class InMemoryRemoteStore:
    """Remote document store held in memory, with a switch to simulate outages.

    Subscribers get the current result set on subscribe and again after every
    write to their collection, the way a push-based document database behaves.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._subscriptions: list[_Subscription] = []
        self.online = True
        self.reject_batches = False
        self.calls: list[tuple[str, str]] = []

    def go_offline(self) -> None:
        self.online = False

    def go_online(self) -> None:
        self.online = True

    def seed(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)

    def documents(self, collection: str) -> list[dict[str, Any]]:
        return [{**copy.deepcopy(data), "id": doc_id} for doc_id, data in self._collections.get(collection, {}).items()]

    async def add_document(self, collection: str, data: dict[str, Any]) -> str:
        self._ensure_online("add", collection)
        doc_id = uuid.uuid4().hex[:20]
        self.seed(collection, doc_id, data)
        self._notify({collection})
        return doc_id

    async def update_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self._ensure_online("update", collection)
        documents = self._collections.get(collection, {})
        if doc_id not in documents:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        documents[doc_id].update(copy.deepcopy(data))
        self._notify({collection})

    async def delete_document(self, collection: str, doc_id: str) -> None:
        self._ensure_online("delete", collection)
        documents = self._collections.get(collection, {})
        if doc_id not in documents:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        del documents[doc_id]
        self._notify({collection})

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        self._ensure_online("get", collection)
        data = self._collections.get(collection, {}).get(doc_id)
        return {**copy.deepcopy(data), "id": doc_id} if data is not None else None

    async def set_document(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None:
        self._ensure_online("set", collection)
        documents = self._collections.setdefault(collection, {})
        if merge and doc_id in documents:
            documents[doc_id].update(copy.deepcopy(data))
        else:
            documents[doc_id] = copy.deepcopy(data)
        self._notify({collection})

    async def query_documents(self, collection: str, filters: Filters = ()) -> list[dict[str, Any]]:
        self._ensure_online("query", collection)
        return self._query(collection, filters)

    def subscribe(
        self,
        collection: str,
        filters: Filters,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Unsubscribe:
        subscription = _Subscription(collection, tuple(filters), on_change, on_error)
        self._subscriptions.append(subscription)
        self._deliver(subscription)

        def unsubscribe() -> None:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    def push(self, collection: str) -> None:
        """Redeliver the current result set to every subscriber of ``collection``."""
        self._notify({collection})

    async def commit_batch(self, writes: Sequence[BatchWrite]) -> None:
        self._ensure_online("batch", ",".join(sorted({write.collection for write in writes})))
        if self.reject_batches:
            raise TransportError("Batch commit rejected")
        staged = copy.deepcopy(self._collections)
        for write in writes:
            documents = staged.setdefault(write.collection, {})
            if write.action == "add":
                documents[write.doc_id or uuid.uuid4().hex[:20]] = copy.deepcopy(write.data or {})
            elif write.action == "set":
                documents[str(write.doc_id)] = copy.deepcopy(write.data or {})
            elif write.action == "update":
                if write.doc_id not in documents:
                    raise NotFoundError(f"{write.collection}/{write.doc_id} does not exist")
                documents[str(write.doc_id)].update(copy.deepcopy(write.data or {}))
            elif write.action == "delete":
                documents.pop(str(write.doc_id), None)
            else:
                raise ValidationError(f"Unknown batch action {write.action!r}")
        self._collections = staged
        self._notify({write.collection for write in writes})

    def _ensure_online(self, action: str, collection: str) -> None:
        self.calls.append((action, collection))
        if not self.online:
            raise TransportError(f"Remote store unreachable ({action} on {collection})")

    def _query(self, collection: str, filters: Filters) -> list[dict[str, Any]]:
        return [document for document in self.documents(collection) if matches_filters(document, filters)]

    def _notify(self, collections: set[str]) -> None:
        for subscription in list(self._subscriptions):
            if subscription.collection in collections:
                self._deliver(subscription)

    def _deliver(self, subscription: _Subscription) -> None:
        if not subscription.active:
            return
        if not self.online:
            if subscription.on_error is not None:
                subscription.on_error(TransportError(f"Subscription to {subscription.collection} lost"))
            return
        try:
            subscription.on_change(self._query(subscription.collection, subscription.filters))
        except Exception:  # noqa: BLE001
            logger.exception("Subscriber of %s failed", subscription.collection)
