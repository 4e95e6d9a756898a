from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from pos_offline.application.invoice_counter import InvoiceCounter
from pos_offline.application.local_mirror import LocalMirror
from pos_offline.application.offline_writer import OfflineWriter
from pos_offline.application.operation_executor import call_remote
from pos_offline.application.stock_engine import StockReconciliationEngine
from pos_offline.bootstrap.logging import log_operational_error
from pos_offline.core.errors import AppError, TransportError
from pos_offline.core.metrics import timed
from pos_offline.domain.invoices import (
    DEFAULT_EMPLOYEE,
    compute_profit,
    compute_total,
    find_cart_line,
    shrink_cart,
)
from pos_offline.domain.models import (
    SALES_COLLECTION,
    CartItem,
    InvoiceResult,
    MirrorRecord,
    ServiceResult,
    as_float,
)
from pos_offline.domain.ports import RemoteDocumentStorePort
from pos_offline.domain.time_utils import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)


class InvoiceService:
    def __init__(
        self,
        writer: OfflineWriter,
        counter: InvoiceCounter,
        mirror: LocalMirror,
        stock: StockReconciliationEngine,
        remote: RemoteDocumentStorePort,
        *,
        clock: Clock = utc_now,
        collection: str = SALES_COLLECTION,
        timeout_seconds: float | None = None,
    ) -> None:
        self._writer = writer
        self._counter = counter
        self._mirror = mirror
        self._stock = stock
        self._remote = remote
        self._clock = clock
        self._collection = collection
        self._timeout_seconds = timeout_seconds

    @timed("invoice.create")
    async def create_invoice(
        self,
        cart: Sequence[Mapping[str, Any]],
        client: Mapping[str, Any],
        shop: str,
        employee: str | None = None,
    ) -> InvoiceResult:
        if not cart:
            return InvoiceResult(success=False, message="Cart is empty")
        items = [CartItem.from_mapping(line) for line in cart]
        discount = as_float(client.get("discount"))
        sale = {
            "invoiceNumber": self._counter.next_number(),
            "cart": [dict(line) for line in cart],
            "clientName": client.get("clientName") or "",
            "phone": client.get("phone") or "",
            "date": to_iso(self._clock()),
            "shop": shop,
            "total": compute_total(items, discount),
            "profit": compute_profit(items, discount),
            "employee": employee or DEFAULT_EMPLOYEE,
            "discount": discount,
            "discountNotes": client.get("discountNotes") or "",
        }

        try:
            outcome = await self._writer.add(self._collection, sale)
        except AppError as exc:
            log_operational_error(logger, "Invoice could not be saved", exc=exc, extra={"shop": shop})
            return InvoiceResult(success=False, message=str(exc))

        if outcome.offline:
            self._mirror.put(MirrorRecord(local_id=str(outcome.queue_id), payload=sale, queue_ref=outcome.queue_id))
        invoice = {"id": outcome.document_id, **sale}

        stock_error = None
        try:
            await self._stock.apply_sale_delta(items)
        except AppError as exc:
            log_operational_error(
                logger,
                "Stock not adjusted for invoice",
                exc=exc,
                extra={"invoice_number": sale["invoiceNumber"], "shop": shop},
            )
            stock_error = str(exc)

        logger.info(
            "Invoice %s created for %s (%s)",
            sale["invoiceNumber"],
            shop,
            "queued" if outcome.offline else "saved",
        )
        return InvoiceResult(
            success=True,
            invoice=invoice,
            offline=outcome.offline,
            queue_id=outcome.queue_id,
            stock_error=stock_error,
        )

    async def get_invoice_by_number(self, invoice_number: int | str) -> dict[str, Any] | None:
        number = int(invoice_number)
        if self._writer.is_online():
            try:
                matches = await call_remote(
                    self._remote.query_documents(self._collection, [("invoiceNumber", "==", number)]),
                    description="invoice lookup",
                    timeout_seconds=self._timeout_seconds,
                )
            except TransportError as exc:
                logger.info("Invoice lookup falling back to local copies: %s", exc)
            else:
                if matches:
                    return matches[0]
        for record in self._mirror.list_all():
            if record.business_key.invoice_number == number:
                return record.to_record()
        return None

    async def return_product(self, item: CartItem | Mapping[str, Any], invoice_id: str) -> ServiceResult:
        returned = item if isinstance(item, CartItem) else CartItem.from_mapping(item)
        if self._mirror.get(invoice_id) is not None:
            return ServiceResult(False, "Invoice is not synced yet; returns are accepted once it is")
        if returned.quantity <= 0:
            return ServiceResult(False, "Return quantity must be positive")

        try:
            invoice = await call_remote(
                self._remote.get_document(self._collection, invoice_id),
                description="invoice read",
                timeout_seconds=self._timeout_seconds,
            )
        except TransportError as exc:
            return ServiceResult(False, f"Invoice unavailable: {exc}")
        if invoice is None:
            return ServiceResult(False, "Invoice not found")

        cart = invoice.get("cart")
        if not isinstance(cart, list) or not cart:
            return ServiceResult(False, "Invoice is empty")
        index = find_cart_line(cart, returned)
        if index is None:
            return ServiceResult(False, "Product is not on this invoice")
        line = CartItem.from_mapping(cart[index])
        if line.quantity < returned.quantity:
            return ServiceResult(
                False,
                f"Requested quantity ({returned.quantity}) exceeds invoiced quantity ({line.quantity})",
            )

        updated_cart = shrink_cart(cart, index, returned.quantity)
        if updated_cart:
            items = [CartItem.from_mapping(entry) for entry in updated_cart]
            discount = as_float(invoice.get("discount"))
            outcome = await self._writer.update(
                self._collection,
                invoice_id,
                {
                    "cart": updated_cart,
                    "total": compute_total(items, discount),
                    "profit": compute_profit(items, discount),
                },
            )
            message = "Product returned"
        else:
            outcome = await self._writer.delete(self._collection, invoice_id)
            message = "Product returned and invoice deleted"

        restock = {**cart[index], "quantity": returned.quantity}
        if not restock.get("shop"):
            restock["shop"] = invoice.get("shop")
        data: dict[str, Any] = {"invoice_deleted": not updated_cart}
        try:
            await self._stock.apply_return_delta(restock)
        except AppError as exc:
            log_operational_error(logger, "Stock not restored for return", exc=exc, extra={"invoice_id": invoice_id})
            data["stock_error"] = str(exc)
        return ServiceResult(True, message, offline=outcome.offline, data=data)
