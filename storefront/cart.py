from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .notifications import Notifier
from .schemas import Product


@dataclass
class CartLine:
    product: Product
    quantity: int = 1

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def subtotal(self) -> float:
        return self.product.price * self.quantity

    def as_dict(self) -> dict:
        return {
            "product": self.product.model_dump(mode="json"),
            "quantity": self.quantity,
            "subtotal": self.subtotal,
        }


class Cart:
    """
    Visitor-held cart: one line per product id, display order = insertion order.

    The product stored on a line is a copy taken when it was first added, so a
    later catalog price change does not reach lines already in the cart.
    """

    def __init__(self, notifier: Optional[Notifier] = None):
        self._lines: List[CartLine] = []
        self.notifier = notifier or Notifier()

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(tuple(self._lines))

    @property
    def lines(self) -> Tuple[CartLine, ...]:
        return tuple(self._lines)

    def _find(self, product_id: str) -> Optional[CartLine]:
        for line in self._lines:
            if line.product_id == product_id:
                return line
        return None

    def add(self, product: Product) -> "Cart":
        line = self._find(product.id)
        if line:
            line.quantity += 1
        else:
            self._lines.append(CartLine(product.model_copy(deep=True), 1))
        self.notifier.success(f"{product.name} added to cart!")
        return self

    def remove(self, product_id: str) -> "Cart":
        line = self._find(product_id)
        if line:
            self._lines.remove(line)
            self.notifier.success("Product removed from cart!")
        return self

    def set_quantity(self, product_id: str, quantity: int) -> "Cart":
        line = self._find(product_id)
        if line is None:
            return self
        if quantity <= 0:
            return self.remove(product_id)
        line.quantity = quantity
        return self

    def total(self) -> float:
        return sum(line.subtotal for line in self._lines)

    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines)

    def clear(self) -> None:
        self._lines.clear()

    def as_dict(self) -> dict:
        return {
            "lines": [line.as_dict() for line in self._lines],
            "total": self.total(),
            "total_display": format_taka(self.total()),
            "count": len(self._lines),
        }


def format_taka(amount: float) -> str:
    return f"৳{amount:,.0f}" if float(amount).is_integer() else f"৳{amount:,.2f}"
