"""Pure stock rules for the product variant tree.

A product carries either a flat ``quantity`` or a hierarchy of colors, each
color with its own quantity or a list of sizes, plus optional product-level
sizes. After every mutation the product ``quantity`` is recomputed from the
hierarchy and empty leaves are pruned.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from pos_offline.domain.models import CartItem, as_float, as_int

_VARIANT_KEYS = ("quantity", "colors", "sizes", "id")


@dataclass(frozen=True)
class SizeStock:
    size: str
    qty: int

    def to_mapping(self) -> dict[str, Any]:
        return {"size": self.size, "qty": self.qty}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SizeStock":
        return cls(size=str(data.get("size") or ""), qty=as_int(data.get("qty")))


@dataclass(frozen=True)
class ColorStock:
    color: str
    quantity: int | None = None
    sizes: tuple[SizeStock, ...] | None = None

    @property
    def total(self) -> int:
        if self.sizes is not None:
            return sum(max(0, size.qty) for size in self.sizes)
        return max(0, self.quantity or 0)

    def is_empty(self) -> bool:
        if self.sizes is not None:
            return len(self.sizes) == 0
        return (self.quantity or 0) <= 0

    def to_mapping(self) -> dict[str, Any]:
        data: dict[str, Any] = {"color": self.color}
        if self.sizes:
            data["sizes"] = [size.to_mapping() for size in self.sizes]
        if self.quantity is not None:
            data["quantity"] = self.quantity
        return data

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ColorStock":
        raw_sizes = data.get("sizes")
        quantity = data.get("quantity")
        return cls(
            color=str(data.get("color") or ""),
            quantity=as_int(quantity) if quantity is not None else None,
            sizes=tuple(SizeStock.from_mapping(item) for item in raw_sizes) if isinstance(raw_sizes, list) else None,
        )


@dataclass(frozen=True)
class ProductStock:
    id: str | None
    quantity: int = 0
    colors: tuple[ColorStock, ...] | None = None
    sizes: tuple[SizeStock, ...] | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def has_variants(self) -> bool:
        return bool(self.colors) or bool(self.sizes)

    def to_document(self) -> dict[str, Any]:
        document = dict(self.attributes)
        document["quantity"] = self.quantity
        if self.colors is not None:
            document["colors"] = [color.to_mapping() for color in self.colors]
        if self.sizes is not None:
            document["sizes"] = [size.to_mapping() for size in self.sizes]
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any], product_id: str | None = None) -> "ProductStock":
        colors = document.get("colors")
        sizes = document.get("sizes")
        return cls(
            id=product_id if product_id is not None else document.get("id"),
            quantity=as_int(document.get("quantity")),
            colors=tuple(ColorStock.from_mapping(item) for item in colors) if isinstance(colors, list) else None,
            sizes=tuple(SizeStock.from_mapping(item) for item in sizes) if isinstance(sizes, list) else None,
            attributes={key: value for key, value in document.items() if key not in _VARIANT_KEYS},
        )


class StockChangeKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class StockChange:
    kind: StockChangeKind
    product_id: str | None
    document: dict[str, Any] | None = None
    result: ProductStock | None = None


def compute_total_quantity(
    colors: tuple[ColorStock, ...] | None,
    sizes: tuple[SizeStock, ...] | None,
    fallback: int = 0,
) -> int:
    if colors or sizes:
        return sum(color.total for color in colors or ()) + sum(max(0, size.qty) for size in sizes or ())
    return max(0, fallback)


def _take_from_sizes(sizes: tuple[SizeStock, ...], size_name: str | None, amount: int) -> tuple[SizeStock, ...]:
    updated = (
        SizeStock(size.size, max(0, size.qty - amount)) if size.size == size_name else size for size in sizes
    )
    return tuple(size for size in updated if size.qty > 0)


def _add_to_sizes(sizes: tuple[SizeStock, ...] | None, size_name: str, amount: int) -> tuple[SizeStock, ...]:
    current = list(sizes or ())
    for index, size in enumerate(current):
        if size.size == size_name:
            current[index] = SizeStock(size.size, size.qty + amount)
            return tuple(current)
    current.append(SizeStock(size_name, amount))
    return tuple(current)


def apply_sale(product: ProductStock, item: CartItem) -> StockChange:
    """Subtract a sold line from ``product``; the result never goes below zero."""
    sold = max(0, item.quantity)
    if not item.has_variant:
        remaining = product.quantity - sold
        if remaining <= 0:
            return StockChange(StockChangeKind.DELETE, product.id)
        result = replace(product, quantity=remaining)
        return StockChange(StockChangeKind.UPDATE, product.id, {"quantity": remaining}, result)

    colors = product.colors
    if colors is not None:
        touched: list[ColorStock] = []
        for color in colors:
            if color.color == item.color:
                if item.size and color.sizes is not None:
                    color = replace(color, sizes=_take_from_sizes(color.sizes, item.size, sold))
                else:
                    color = replace(color, quantity=max(0, (color.quantity or 0) - sold))
            touched.append(color)
        colors = tuple(color for color in touched if not color.is_empty())

    sizes = product.sizes
    if sizes is not None:
        sizes = _take_from_sizes(sizes, item.size, sold)

    total = compute_total_quantity(colors, sizes)
    if total <= 0 or (not colors and not sizes):
        return StockChange(StockChangeKind.DELETE, product.id)

    result = replace(product, quantity=total, colors=colors, sizes=sizes)
    patch: dict[str, Any] = {"quantity": total}
    if colors is not None:
        patch["colors"] = [color.to_mapping() for color in colors]
    if sizes is not None:
        patch["sizes"] = [size.to_mapping() for size in sizes]
    return StockChange(StockChangeKind.UPDATE, product.id, patch, result)


def apply_return(product: ProductStock | None, item: CartItem, shop: str) -> StockChange:
    """Put a returned line back on the shelf, recreating pruned variants or the product itself."""
    returned = max(0, item.quantity)
    if product is None:
        document = new_product_document(item, shop)
        created = ProductStock.from_document(document)
        return StockChange(StockChangeKind.CREATE, None, document, created)

    attributes = dict(product.attributes)
    _fill_missing(attributes, "finalPrice", item.final_price)
    _fill_missing(attributes, "section", item.section)
    _fill_missing(attributes, "merchantName", item.merchant_name)

    colors = product.colors
    sizes = product.sizes
    flat_quantity = product.quantity
    if item.color:
        updated: list[ColorStock] = []
        found = False
        for color in colors or ():
            if color.color == item.color:
                found = True
                if item.size and color.sizes is not None:
                    color = replace(color, sizes=_add_to_sizes(color.sizes, item.size, returned))
                else:
                    color = replace(color, quantity=(color.quantity or 0) + returned)
            updated.append(color)
        if not found:
            if item.size:
                updated.append(ColorStock(item.color, sizes=(SizeStock(item.size, returned),)))
            else:
                updated.append(ColorStock(item.color, quantity=returned))
        colors = tuple(updated)
    elif item.size:
        sizes = _add_to_sizes(sizes, item.size, returned)
    else:
        flat_quantity += returned

    total = compute_total_quantity(colors, sizes, flat_quantity)
    result = ProductStock(product.id, total, colors, sizes, attributes)
    return StockChange(StockChangeKind.UPDATE, product.id, result.to_document(), result)


def _fill_missing(attributes: dict[str, Any], key: str, value: Any) -> None:
    if value not in (None, "") and attributes.get(key) in (None, ""):
        attributes[key] = value


def new_product_document(item: CartItem, shop: str) -> dict[str, Any]:
    returned = max(0, item.quantity)
    sell_price = as_float(item.sell_price)
    document: dict[str, Any] = {
        "name": item.name or "",
        "code": item.code or "",
        "quantity": returned,
        "buyPrice": as_float(item.buy_price),
        "sellPrice": sell_price,
        "finalPrice": item.final_price if item.final_price is not None else sell_price,
        "section": item.section or "",
        "merchantName": item.merchant_name or "",
        "shop": shop,
        "type": item.type or "product",
    }
    if item.color:
        if item.size:
            document["colors"] = [{"color": item.color, "sizes": [{"size": item.size, "qty": returned}]}]
        else:
            document["colors"] = [{"color": item.color, "quantity": returned}]
    elif item.size:
        document["sizes"] = [{"size": item.size, "qty": returned}]
    return document


def plan_sale(snapshot: Mapping[str, ProductStock], items: list[CartItem]) -> dict[str, StockChange]:
    """Final change per product after applying every cart line in order.

    Lines for the same product compose: each one is applied to the result of
    the previous one. Lines whose product is absent from ``snapshot`` (or was
    already deleted by an earlier line) are skipped.
    """
    working = dict(snapshot)
    planned: dict[str, StockChange] = {}
    for item in items:
        product_id = item.original_product_id
        if not product_id or product_id not in working:
            continue
        change = apply_sale(working[product_id], item)
        planned[product_id] = change
        if change.kind == StockChangeKind.DELETE:
            del working[product_id]
        else:
            working[product_id] = change.result  # type: ignore[assignment]
    return planned
