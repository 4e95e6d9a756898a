from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pos_offline.domain.models import CartItem

RETURN_EXPENSE_REASON = "return_invoice"
DEFAULT_EMPLOYEE = "unassigned"


def compute_total(items: Iterable[CartItem], discount: float = 0.0) -> float:
    return round(sum(item.sell_price * item.quantity for item in items) - discount, 2)


def compute_profit(items: Iterable[CartItem], discount: float = 0.0) -> float:
    return round(sum((item.sell_price - item.buy_price) * item.quantity for item in items) - discount, 2)


def find_cart_line(cart: Sequence[Mapping[str, Any]], item: CartItem) -> int | None:
    """Index of the first line sold with the same code, color and size."""
    for index, line in enumerate(cart):
        if (
            line.get("code") == item.code
            and (line.get("color") or "") == (item.color or "")
            and (line.get("size") or "") == (item.size or "")
        ):
            return index
    return None


def shrink_cart(cart: Sequence[Mapping[str, Any]], index: int, quantity: int) -> list[dict[str, Any]]:
    updated = [dict(line) for line in cart]
    remaining = CartItem.from_mapping(updated[index]).quantity - quantity
    if remaining <= 0:
        del updated[index]
    else:
        updated[index]["quantity"] = remaining
    return updated


def format_invoice_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return "" if value is None else str(value)
