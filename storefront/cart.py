"""Client-held cart: a product -> quantity mapping with explicit operations.

The cart never stores prices. Totals are recomputed from whatever catalog
prices the caller supplies, and checkout only ever sends ids and quantities.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Mapping

from .errors import InvalidCart

# Stripe rejects a line item whose quantity exceeds this
MAX_LINE_QUANTITY = 999_999


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or not 1 <= quantity <= MAX_LINE_QUANTITY:
        raise InvalidCart(
            f"quantity must be an integer between 1 and {MAX_LINE_QUANTITY}",
            [{"field": "quantity", "value": quantity}],
        )
    return quantity


class Cart:
    def __init__(self):
        self._items: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, product_id) -> bool:
        return product_id in self._items

    def add(self, product_id: int, quantity: int = 1) -> None:
        _check_quantity(quantity)
        self._items[product_id] = _check_quantity(self._items.get(product_id, 0) + quantity)

    def remove(self, product_id: int) -> None:
        self._items.pop(product_id, None)

    def update(self, product_id: int, quantity: int) -> None:
        if product_id not in self._items:
            raise KeyError(product_id)
        self._items[product_id] = _check_quantity(quantity)

    def clear(self) -> None:
        self._items.clear()

    def quantity_of(self, product_id: int) -> int:
        return self._items.get(product_id, 0)

    def lines(self) -> List[CartLine]:
        return [CartLine(product_id=pid, quantity=qty) for pid, qty in self._items.items()]

    def total(self, prices: Mapping[int, Decimal]) -> Decimal:
        """Sum of price x quantity using the supplied (live) catalog prices."""
        return sum(
            (Decimal(prices[pid]) * qty for pid, qty in self._items.items()),
            Decimal("0"),
        )

    def to_payload(self) -> dict:
        return {"items": [{"id": line.product_id, "quantity": line.quantity} for line in self.lines()]}
