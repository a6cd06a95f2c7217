"""
Order totals.

``compute_total`` is a pure function of the cart items, the active promo
and the quoted delivery fee. The promo discount applies to the books
only, never to delivery. Orders whose discounted subtotal reaches the
free-delivery threshold ship for free when the quoted fee is positive.
A fee of ``None`` means no delivery area has been resolved yet: the total
then covers the books alone and the summary shows "Not selected".
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from pydantic import BaseModel, Field

FREE_DELIVERY_THRESHOLD = 300_000


class Promo(BaseModel):
    code: str
    discount: float = Field(ge=0, lt=1)

    @property
    def label(self) -> str:
        percent = int(round_half_up(self.discount * 100))
        return f"{self.code} ({percent}% off) Applied!"


class OrderTotals(BaseModel):
    subtotal: int
    discount: int
    discounted_subtotal: int
    delivery_fee: Optional[int]
    effective_delivery_fee: int
    free_delivery: bool
    total: int

    @property
    def delivery_selected(self) -> bool:
        return self.delivery_fee is not None


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_total(
    items: Iterable,
    promo: Optional[Promo],
    delivery_fee: Optional[int],
    free_delivery_threshold: int = FREE_DELIVERY_THRESHOLD,
) -> OrderTotals:
    """Price an order. ``items`` is anything with an integer ``price``."""
    subtotal = sum(item.price or 0 for item in items)
    discount = 0
    if promo is not None and promo.discount > 0:
        discount = round_half_up(Decimal(subtotal) * Decimal(str(promo.discount)))
    discounted = subtotal - discount

    effective_fee = 0
    free_delivery = False
    if delivery_fee is not None:
        effective_fee = delivery_fee
        if discounted >= free_delivery_threshold and delivery_fee > 0:
            effective_fee = 0
            free_delivery = True

    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        discounted_subtotal=discounted,
        delivery_fee=delivery_fee,
        effective_delivery_fee=effective_fee,
        free_delivery=free_delivery,
        total=discounted + effective_fee,
    )


def format_ugx(amount: int) -> str:
    return f"UGX {amount:,}"


class SummaryLines(BaseModel):
    subtotal: str
    discount: Optional[str] = None
    delivery: str
    total: str


def summary_lines(totals: OrderTotals) -> SummaryLines:
    """Display strings for the checkout order summary."""
    if totals.delivery_fee is None:
        delivery = "Not selected"
    elif totals.free_delivery:
        delivery = f"<del>{format_ugx(totals.delivery_fee)}</del> FREE!"
    elif totals.delivery_fee == 0:
        delivery = "FREE"
    else:
        delivery = format_ugx(totals.delivery_fee)
    return SummaryLines(
        subtotal=format_ugx(totals.subtotal),
        discount=f"- {format_ugx(totals.discount)}" if totals.discount else None,
        delivery=delivery,
        total=format_ugx(totals.total),
    )
