from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pos_offline.application.keyed_serializer import PerKeySerializer
from pos_offline.application.offline_writer import OfflineWriter
from pos_offline.application.operation_executor import call_remote
from pos_offline.application.product_cache import ProductCache
from pos_offline.application.queue_store import DurableQueueStore
from pos_offline.core.errors import AtomicityFallbackError, InfraError, StockError, TransportError
from pos_offline.core.metrics import MetricsRegistry, metrics_registry
from pos_offline.domain.models import PRODUCTS_COLLECTION, BatchWrite, CartItem
from pos_offline.domain.ports import RemoteDocumentStorePort
from pos_offline.domain.stock import (
    ProductStock,
    StockChange,
    StockChangeKind,
    apply_return,
    apply_sale,
    plan_sale,
)

logger = logging.getLogger(__name__)

MODE_BATCH = "batch"
MODE_PER_ITEM = "per_item"
MODE_FALLBACK = "fallback"


@dataclass(frozen=True)
class StockReport:
    mode: str
    changes: tuple[StockChange, ...] = ()
    skipped: tuple[str, ...] = ()


class StockReconciliationEngine:
    """Applies sale and return deltas to product stock.

    Online sales are committed as one atomic batch computed from a single
    snapshot. Offline (or after a failed batch) each line is a separate
    read-modify-write, serialized per product and read through the local
    product cache so queued edits of the same product build on each other.
    """

    def __init__(
        self,
        remote: RemoteDocumentStorePort,
        writer: OfflineWriter,
        queue: DurableQueueStore,
        cache: ProductCache,
        *,
        serializer: PerKeySerializer | None = None,
        default_shop: str | None = None,
        collection: str = PRODUCTS_COLLECTION,
        timeout_seconds: float | None = None,
        metrics: MetricsRegistry = metrics_registry,
    ) -> None:
        self._remote = remote
        self._writer = writer
        self._queue = queue
        self._cache = cache
        self._serializer = serializer or PerKeySerializer()
        self._default_shop = default_shop
        self._collection = collection
        self._timeout_seconds = timeout_seconds
        self._metrics = metrics

    async def apply_sale_delta(self, cart_items: Iterable[CartItem | Mapping[str, Any]]) -> StockReport:
        items = [_as_cart_item(item) for item in cart_items]
        tracked = [item for item in items if item.original_product_id]
        skipped = tuple(item.code or item.name or "" for item in items if not item.original_product_id)
        if not tracked:
            return StockReport(MODE_BATCH if self._writer.is_online() else MODE_PER_ITEM, skipped=skipped)

        if self._writer.is_online() and not self._has_queued_edits(tracked):
            try:
                changes = await self._apply_sale_batch(tracked)
                return StockReport(MODE_BATCH, tuple(changes), skipped)
            except (InfraError, OSError) as exc:
                fallback = AtomicityFallbackError(f"Stock batch commit failed, applying per item: {exc}")
                logger.warning("%s: %s", type(fallback).__name__, fallback)
                self._metrics.increment("stock_batch_fallbacks")
                mode = MODE_FALLBACK
        else:
            mode = MODE_PER_ITEM

        changes: list[StockChange] = []
        for item in tracked:
            change = await self._apply_sale_item(item)
            if change is None:
                skipped += (str(item.original_product_id),)
            else:
                changes.append(change)
        return StockReport(mode, tuple(changes), skipped)

    async def apply_return_delta(self, item: CartItem | Mapping[str, Any]) -> StockChange:
        returned = _as_cart_item(item)
        shop = returned.shop or self._default_shop
        if not shop:
            raise StockError(f"Cannot restore stock for {returned.code or returned.name!r}: no shop given")

        product_id = returned.original_product_id
        if product_id is None:
            located = await self._find_by_code(returned.code, shop)
            if located is None:
                return await self._write_change(None, apply_return(None, returned, shop))
            product_id = located

        async with self._serializer.hold(product_id):
            product = await self._read_product(product_id)
            change = apply_return(product, returned, shop)
            return await self._write_change(product_id, change)

    def _has_queued_edits(self, items: list[CartItem]) -> bool:
        return any(self._queue.has_pending_for(self._collection, str(item.original_product_id)) for item in items)

    async def _apply_sale_batch(self, items: list[CartItem]) -> list[StockChange]:
        product_ids = list(dict.fromkeys(str(item.original_product_id) for item in items))
        documents = await asyncio.gather(*(self._fetch_remote(product_id) for product_id in product_ids))
        snapshot = {
            product_id: ProductStock.from_document(document, product_id)
            for product_id, document in zip(product_ids, documents)
            if document is not None
        }
        for product_id in product_ids:
            if product_id not in snapshot:
                logger.warning("Product %s not found, stock not adjusted", product_id)

        planned = plan_sale(snapshot, items)
        writes = [self._to_batch_write(product_id, change) for product_id, change in planned.items()]
        if writes:
            await call_remote(
                self._remote.commit_batch(writes),
                description="stock batch commit",
                timeout_seconds=self._timeout_seconds,
            )
        for product_id, change in planned.items():
            self._remember(product_id, change)
        return list(planned.values())

    async def _apply_sale_item(self, item: CartItem) -> StockChange | None:
        product_id = str(item.original_product_id)
        async with self._serializer.hold(product_id):
            product = await self._read_product(product_id)
            if product is None:
                logger.warning("Product %s unknown locally, sale of %s not applied to stock", product_id, item.code)
                return None
            return await self._write_change(product_id, apply_sale(product, item))

    async def _read_product(self, product_id: str) -> ProductStock | None:
        if self._writer.is_online() and not self._queue.has_pending_for(self._collection, product_id):
            try:
                document = await self._fetch_remote(product_id)
            except TransportError as exc:
                logger.info("Reading %s from cache after transport failure: %s", product_id, exc)
            else:
                if document is None:
                    self._cache.remove(product_id)
                    return None
                self._cache.put(product_id, document)
                return ProductStock.from_document(document, product_id)
        cached = self._cache.get(product_id)
        return ProductStock.from_document(cached, product_id) if cached is not None else None

    async def _fetch_remote(self, product_id: str) -> dict[str, Any] | None:
        return await call_remote(
            self._remote.get_document(self._collection, product_id),
            description=f"read {self._collection}/{product_id}",
            timeout_seconds=self._timeout_seconds,
        )

    async def _find_by_code(self, code: str | None, shop: str) -> str | None:
        if not code:
            return None
        if self._writer.is_online():
            try:
                matches = await call_remote(
                    self._remote.query_documents(self._collection, [("code", "==", code), ("shop", "==", shop)]),
                    description=f"query {self._collection} by code",
                    timeout_seconds=self._timeout_seconds,
                )
            except TransportError as exc:
                logger.info("Product lookup by code fell back to cache: %s", exc)
            else:
                return str(matches[0]["id"]) if matches else None
        cached = self._cache.find_by_code(code, shop)
        return cached[0] if cached is not None else None

    async def _write_change(self, product_id: str | None, change: StockChange) -> StockChange:
        if change.kind == StockChangeKind.CREATE:
            outcome = await self._writer.add(self._collection, dict(change.document or {}))
            created_id = outcome.document_id
            if created_id is not None:
                self._cache.put(created_id, change.document or {})
            return StockChange(change.kind, created_id, change.document, change.result)
        if product_id is None:
            raise StockError("Stock update without a product id")
        if change.kind == StockChangeKind.DELETE:
            await self._writer.delete(self._collection, product_id)
        else:
            await self._writer.update(self._collection, product_id, dict(change.document or {}))
        self._remember(product_id, change)
        return change

    def _remember(self, product_id: str, change: StockChange) -> None:
        if change.kind == StockChangeKind.DELETE:
            self._cache.remove(product_id)
        elif change.result is not None:
            self._cache.put(product_id, change.result.to_document())

    def _to_batch_write(self, product_id: str, change: StockChange) -> BatchWrite:
        if change.kind == StockChangeKind.DELETE:
            return BatchWrite(action="delete", collection=self._collection, doc_id=product_id)
        return BatchWrite(action="update", collection=self._collection, doc_id=product_id, data=change.document)


def _as_cart_item(item: CartItem | Mapping[str, Any]) -> CartItem:
    return item if isinstance(item, CartItem) else CartItem.from_mapping(item)
