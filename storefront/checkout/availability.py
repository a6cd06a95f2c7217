"""Cross-check cart contents against live backend availability."""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel

from ..catalog.backend_service import BackendGateway
from ..catalog.schemas import AvailabilityMap, BookStatus
from .cart import CartManager


logger = logging.getLogger(__name__)


class UnavailableBook(BaseModel):
    code: str
    status: BookStatus


class Reconciliation(BaseModel):
    # False when the backend could not be asked; the cart is then untouched
    checked: bool
    removed: List[UnavailableBook] = []
    error: Optional[str] = None

    @property
    def notice(self) -> Optional[str]:
        """Status bar text, e.g. ``"B (SOLD), C (UNAVAILABLE)"``."""
        if not self.removed:
            return None
        return ", ".join(f"{b.code} ({b.status.value.upper()})" for b in self.removed)


def find_unavailable(codes: List[str], availability: AvailabilityMap) -> List[UnavailableBook]:
    """Codes the backend reports unavailable, or does not report at all."""
    unavailable = []
    for code in codes:
        entry = availability.get(code)
        if entry is None:
            unavailable.append(UnavailableBook(code=code, status=BookStatus.UNAVAILABLE))
        elif not entry.available:
            status = entry.status
            if status is BookStatus.AVAILABLE:
                status = BookStatus.UNAVAILABLE
            unavailable.append(UnavailableBook(code=code, status=status))
    return unavailable


def check_codes(codes: List[str], gateway: BackendGateway) -> Reconciliation:
    """Ask the backend about ``codes``; does not touch any cart."""
    if not codes:
        return Reconciliation(checked=True)
    logger.info("Validating cart books: %s", codes)
    result = gateway.check_availability(codes)
    if not result.ok:
        logger.error("Availability check failed: %s", result.error)
        return Reconciliation(checked=False, error=result.error)
    return Reconciliation(checked=True, removed=find_unavailable(codes, result.data))


def prune(cart: CartManager, reconciliation: Reconciliation) -> None:
    """Remove from ``cart`` the books ``reconciliation`` found unavailable."""
    if reconciliation.removed:
        cart.discard(b.code for b in reconciliation.removed)
        logger.info(
            "Removed unavailable books from cart: %s",
            [b.code for b in reconciliation.removed],
        )
