# Overview: Caller-owned shopping cart with advisory stock validation.
"""
Cart staging before checkout.

A Cart belongs to whoever creates it (a terminal session, a test, a CLI
run); there is no process-wide cart. Its stock checks run against the
last-known stock of each product and only give early feedback. The
checkout engine re-validates everything against live stock and never
trusts the cart.

Line invariant: 1 <= quantity <= last-known stock. Quantities are clamped
down, never silently increased.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping


class CartError(ValueError):
    """Caller misuse of the cart (bad quantity, unknown line)."""


@dataclass(frozen=True)
class ProductSnapshot:
    """What the cart knows about a product when it was last listed."""
    product_id: int
    name: str
    unit_price_cents: int
    stock: int

    @classmethod
    def from_dict(cls, data: Mapping) -> "ProductSnapshot":
        """Build from a Product.to_dict() / product listing row."""
        return cls(
            product_id=int(data.get("id", data.get("product_id"))),
            name=str(data.get("name") or ""),
            unit_price_cents=int(data.get("price_cents") or 0),
            stock=int(data.get("stock") or 0),
        )


@dataclass
class CartLine:
    product_id: int
    name: str
    unit_price_cents: int
    known_stock: int
    quantity: int

    @property
    def subtotal_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "unit_price_cents": self.unit_price_cents,
            "known_stock": self.known_stock,
            "quantity": self.quantity,
            "subtotal_cents": self.subtotal_cents,
        }


class Cart:
    def __init__(self) -> None:
        self._lines: dict[int, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(list(self._lines.values()))

    def __contains__(self, product_id: int) -> bool:
        return product_id in self._lines

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get(self, product_id: int) -> CartLine | None:
        return self._lines.get(product_id)

    def add_item(self, product: ProductSnapshot, requested_qty: int = 1) -> CartLine | None:
        """
        Add requested_qty of product, merging with an existing line.

        Returns the line, or None when the addition is rejected because the
        product is out of stock or the result would exceed last-known stock.
        A rejected addition leaves the cart unchanged.
        """
        if isinstance(requested_qty, bool) or not isinstance(requested_qty, int):
            raise CartError("quantity must be an integer")
        if requested_qty < 1:
            raise CartError("quantity must be at least 1")

        if product.stock <= 0:
            return None

        line = self._lines.get(product.product_id)
        current = line.quantity if line else 0
        if current + requested_qty > product.stock:
            return None

        if line is None:
            line = CartLine(
                product_id=product.product_id,
                name=product.name,
                unit_price_cents=product.unit_price_cents,
                known_stock=product.stock,
                quantity=requested_qty,
            )
            self._lines[product.product_id] = line
        else:
            line.known_stock = product.stock
            line.unit_price_cents = product.unit_price_cents
            line.quantity = current + requested_qty
        return line

    def set_quantity(self, product_id: int, qty: int) -> int:
        """Set a line's quantity, clamped to [1, last-known stock]. Returns the applied value."""
        if isinstance(qty, bool) or not isinstance(qty, int):
            raise CartError("quantity must be an integer")
        if qty < 1:
            raise CartError("quantity must be at least 1; remove the item instead")

        line = self._lines.get(product_id)
        if line is None:
            raise CartError(f"product {product_id} is not in the cart")

        line.quantity = min(qty, line.known_stock)
        return line.quantity

    def remove_item(self, product_id: int) -> None:
        self._lines.pop(product_id, None)

    def compute_total(self) -> int:
        return sum(line.subtotal_cents for line in self._lines.values())

    def clear(self) -> None:
        self._lines.clear()

    def checkout_lines(self) -> list[tuple[int, int]]:
        return [(line.product_id, line.quantity) for line in self._lines.values()]

    def refresh_stock(self, snapshots: Iterable[ProductSnapshot]) -> list[int]:
        """
        Apply fresher stock figures, e.g. after a checkout was refused.

        Lines are clamped down to the new stock; lines whose product is out
        of stock are dropped. Returns the ids of lines that changed.
        """
        changed = []
        for snap in snapshots:
            line = self._lines.get(snap.product_id)
            if line is None:
                continue
            line.known_stock = snap.stock
            line.unit_price_cents = snap.unit_price_cents
            if snap.stock <= 0:
                del self._lines[snap.product_id]
                changed.append(snap.product_id)
            elif line.quantity > snap.stock:
                line.quantity = snap.stock
                changed.append(snap.product_id)
        return changed

    def to_dict(self) -> dict:
        return {
            "lines": [line.to_dict() for line in self._lines.values()],
            "total_cents": self.compute_total(),
        }
