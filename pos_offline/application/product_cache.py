from __future__ import annotations

import copy
from typing import Any

from pos_offline.domain.models import PRODUCTS_COLLECTION, IdAssignment
from pos_offline.domain.ports import KeyValueStorePort

PRODUCT_CACHE_KEY = "productCache"


class ProductCache:
    """Last known version of each product document, including queued local edits."""

    def __init__(
        self,
        store: KeyValueStorePort,
        *,
        key: str = PRODUCT_CACHE_KEY,
        collection: str = PRODUCTS_COLLECTION,
    ) -> None:
        self._store = store
        self._key = key
        self._collection = collection
        raw = store.get(key)
        self._documents: dict[str, dict[str, Any]] = dict(raw) if isinstance(raw, dict) else {}

    def _persist(self) -> None:
        self._store.set(self._key, self._documents)

    def get(self, product_id: str) -> dict[str, Any] | None:
        document = self._documents.get(product_id)
        return copy.deepcopy(document) if document is not None else None

    def put(self, product_id: str, document: dict[str, Any]) -> None:
        stored = copy.deepcopy(document)
        stored.pop("id", None)
        self._documents[product_id] = stored
        self._persist()

    def apply_patch(self, product_id: str, patch: dict[str, Any]) -> None:
        merged = {**self._documents.get(product_id, {}), **copy.deepcopy(patch)}
        self.put(product_id, merged)

    def remove(self, product_id: str) -> None:
        if self._documents.pop(product_id, None) is not None:
            self._persist()

    def adopt_remote_id(self, assignment: IdAssignment) -> None:
        """Re-key a product created offline under its queue id once the remote store named it."""
        if assignment.collection != self._collection or assignment.local_id not in self._documents:
            return
        self._documents[assignment.remote_id] = self._documents.pop(assignment.local_id)
        self._persist()

    def find_by_code(self, code: str, shop: str) -> tuple[str, dict[str, Any]] | None:
        for product_id, document in self._documents.items():
            if document.get("code") == code and document.get("shop") == shop:
                return product_id, copy.deepcopy(document)
        return None

    def __len__(self) -> int:
        return len(self._documents)
