from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

SALES_COLLECTION = "dailySales"
PRODUCTS_COLLECTION = "lacosteProducts"
EXPENSES_COLLECTION = "expenses"
REPORTS_COLLECTION = "reports"
DAILY_PROFIT_COLLECTION = "dailyProfit"
CLOSE_DAY_HISTORY_COLLECTION = "closeDayHistory"
COUNTERS_COLLECTION = "counters"


class OperationAction(str, Enum):
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class QueueOperation:
    id: str
    collection: str
    action: str
    target_id: str | None = None
    payload: dict[str, Any] | None = None
    created_at: str = ""
    synced: bool = False
    retries: int = 0
    synced_at: str | None = None

    def missing_fields(self) -> list[str]:
        missing: list[str] = []
        if not self.collection:
            missing.append("collectionName")
        if self.action in (OperationAction.ADD, OperationAction.UPDATE) and self.payload is None:
            missing.append("data")
        if self.action in (OperationAction.UPDATE, OperationAction.DELETE) and not self.target_id:
            missing.append("docId")
        return missing

    def targets(self, collection: str, target_id: str) -> bool:
        return self.collection == collection and self.target_id == target_id

    def entity_key(self) -> tuple[str, str]:
        """Document this operation writes; an ``add`` is known by its own id until it syncs."""
        if self.action == OperationAction.ADD:
            return self.collection, self.id
        return self.collection, str(self.target_id)

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = {
            "id": self.id,
            "collectionName": self.collection,
            "action": str(self.action.value if isinstance(self.action, OperationAction) else self.action),
            "timestamp": self.created_at,
            "synced": self.synced,
            "retries": self.retries,
        }
        if self.target_id is not None:
            record["docId"] = self.target_id
        if self.payload is not None:
            record["data"] = self.payload
        if self.synced_at is not None:
            record["syncedAt"] = self.synced_at
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "QueueOperation":
        return cls(
            id=str(record["id"]),
            collection=str(record.get("collectionName") or ""),
            action=str(record.get("action") or ""),
            target_id=record.get("docId"),
            payload=record.get("data"),
            created_at=str(record.get("timestamp") or ""),
            synced=bool(record.get("synced", False)),
            retries=int(record.get("retries") or 0),
            synced_at=record.get("syncedAt"),
        )


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class BusinessKey:
    """Identity of a sale shared by the local copy and its remote counterpart."""

    invoice_number: float | None
    total: float | None
    shop: str

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "BusinessKey":
        return cls(
            invoice_number=_as_number(record.get("invoiceNumber")),
            total=_as_number(record.get("total")),
            shop=str(record.get("shop") or ""),
        )

    @property
    def is_complete(self) -> bool:
        return self.invoice_number is not None


@dataclass(frozen=True)
class MirrorRecord:
    local_id: str
    payload: dict[str, Any]
    queue_ref: str | None = None

    @property
    def business_key(self) -> BusinessKey:
        return BusinessKey.from_record(self.payload)

    @property
    def shop(self) -> str:
        return str(self.payload.get("shop") or "")

    def to_record(self) -> dict[str, Any]:
        record = dict(self.payload)
        record["id"] = self.local_id
        if self.queue_ref is not None:
            record["queueId"] = self.queue_ref
        return record

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "MirrorRecord":
        payload = {key: value for key, value in record.items() if key not in ("id", "queueId")}
        queue_ref = record.get("queueId")
        local_id = record.get("id") or queue_ref
        return cls(local_id=str(local_id), payload=payload, queue_ref=str(queue_ref) if queue_ref else None)


@dataclass(frozen=True)
class IdAssignment:
    """A queued ``add`` reached the remote store and got its permanent id."""

    collection: str
    local_id: str
    remote_id: str


@dataclass(frozen=True)
class OperationFailure:
    operation_id: str
    error_type: str
    message: str
    retryable: bool


@dataclass(frozen=True)
class SyncSummary:
    succeeded: int = 0
    failed: int = 0
    errors: tuple[OperationFailure, ...] = ()
    abandoned: tuple[str, ...] = ()
    dropped: tuple[str, ...] = ()
    deferred: tuple[str, ...] = ()
    skipped_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class WriteOutcome:
    offline: bool
    remote_id: str | None = None
    queue_id: str | None = None

    @property
    def document_id(self) -> str | None:
        return self.remote_id or self.queue_id


@dataclass(frozen=True)
class BatchWrite:
    action: str
    collection: str
    doc_id: str | None = None
    data: dict[str, Any] | None = None


def as_int(value: Any) -> int:
    if value in (None, "") or isinstance(value, bool):
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def as_float(value: Any) -> float:
    if value in (None, "") or isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True)
class CartItem:
    quantity: int
    original_product_id: str | None = None
    code: str | None = None
    name: str | None = None
    color: str | None = None
    size: str | None = None
    sell_price: float = 0.0
    buy_price: float = 0.0
    final_price: float | None = None
    section: str | None = None
    merchant_name: str | None = None
    shop: str | None = None
    type: str | None = None

    @property
    def has_variant(self) -> bool:
        return bool(self.color or self.size)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CartItem":
        final_price = data.get("finalPrice")
        return cls(
            quantity=as_int(data.get("quantity")),
            original_product_id=data.get("originalProductId") or None,
            code=data.get("code"),
            name=data.get("name"),
            color=data.get("color") or None,
            size=data.get("size") or None,
            sell_price=as_float(data.get("sellPrice")),
            buy_price=as_float(data.get("buyPrice")),
            final_price=as_float(final_price) if final_price not in (None, "") else None,
            section=data.get("section"),
            merchant_name=data.get("merchantName"),
            shop=data.get("shop"),
            type=data.get("type"),
        )

    def to_mapping(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "quantity": self.quantity,
            "sellPrice": self.sell_price,
            "buyPrice": self.buy_price,
        }
        optional = {
            "originalProductId": self.original_product_id,
            "code": self.code,
            "name": self.name,
            "color": self.color,
            "size": self.size,
            "finalPrice": self.final_price,
            "section": self.section,
            "merchantName": self.merchant_name,
            "shop": self.shop,
            "type": self.type,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


@dataclass(frozen=True)
class InvoiceResult:
    success: bool
    invoice: dict[str, Any] | None = None
    offline: bool = False
    queue_id: str | None = None
    message: str = ""
    stock_error: str | None = None


@dataclass(frozen=True)
class ServiceResult:
    success: bool
    message: str = ""
    offline: bool = False
    data: dict[str, Any] = field(default_factory=dict)
