"""Transport fee tiers and order arithmetic.

Amounts are whole currency units (UGX has no minor unit in practice).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

# (max confirmed orders today, fee). The last tier has no upper bound.
FEE_TIERS: tuple[tuple[int, int], ...] = ((3, 1000), (6, 2000))
TOP_TIER_FEE = 3000

MAX_LINE_QUANTITY = 10_000
# Largest value a BIGINT column holds.
MAX_AMOUNT = 2**63 - 1


class PricingError(ValueError):
    """Raised when a quantity or amount falls outside what an order can carry."""


@dataclass(frozen=True, slots=True)
class PricedLine:
    """A requested product resolved against the catalog, price frozen at lookup time."""

    catalog_item_id: str
    name: str
    quantity: int
    unit_price: int

    @property
    def subtotal(self) -> int:
        return line_subtotal(self.quantity, self.unit_price)


def transport_fee(confirmed_order_count_today: int) -> int:
    """Fee for the n-th confirmed order of the day (n includes the order being priced)."""

    for upper, fee in FEE_TIERS:
        if confirmed_order_count_today <= upper:
            return fee
    return TOP_TIER_FEE


def line_subtotal(quantity: int, unit_price: int) -> int:
    if quantity < 1:
        raise PricingError(f"Quantity must be at least 1, got {quantity}")
    if quantity > MAX_LINE_QUANTITY:
        raise PricingError(f"Quantity {quantity} exceeds the per-line limit of {MAX_LINE_QUANTITY}")
    if unit_price < 0:
        raise PricingError(f"Unit price cannot be negative, got {unit_price}")

    subtotal = quantity * unit_price
    if subtotal > MAX_AMOUNT:
        raise PricingError("Line subtotal is too large")
    return subtotal


def order_subtotal(lines: Iterable[tuple[int, int]]) -> int:
    """Sum of (quantity, unit_price) pairs."""

    total = 0
    for quantity, unit_price in lines:
        total += line_subtotal(quantity, unit_price)
        if total > MAX_AMOUNT:
            raise PricingError("Order subtotal is too large")
    return total


def order_total(lines: Iterable[tuple[int, int]], fee: int) -> int:
    total = order_subtotal(lines) + fee
    if total > MAX_AMOUNT:
        raise PricingError("Order total is too large")
    return total
