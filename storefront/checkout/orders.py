"""
Order submission.

One call to ``submit_order`` is one press of "Place Order":

1. validate the form (nothing is sent if any field is wrong),
2. re-check availability, since another buyer may have claimed a book
   since checkout opened,
3. send the order to the backend once,
4. on success clear the cart and promo and reload the catalogue.

A second submission for the same session while one is in flight is
refused. Nothing is retried automatically.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List

from pydantic import BaseModel

from ..catalog.backend_service import BackendGateway
from ..catalog.store import CatalogStore
from ..errors import CheckoutError, ValidationFailed
from .availability import Reconciliation, check_codes
from .session import EMPTY_CART, ShopSession


logger = logging.getLogger(__name__)

PHONE_PREFIX = "+256"
PHONE_PATTERN = re.compile(r"\+256[0-9]{9}")

FORM_INVALID = "Please fill in all required fields and select a valid delivery area."
BOOKS_REMOVED = "Some books in your cart are no longer available and have been removed."
AVAILABILITY_FAILED = "Error checking book availability. Please try again."
SUBMIT_FAILED = "Error submitting order. Please try again."
ALREADY_SUBMITTING = "Your order is already being processed."


def is_valid_phone(phone: str) -> bool:
    return PHONE_PATTERN.fullmatch(phone or "") is not None


def normalize_phone(raw: str) -> str:
    """Format phone input as it is typed: ``+256`` then up to 9 digits."""
    raw = raw or ""
    if not raw.startswith(PHONE_PREFIX):
        raw = PHONE_PREFIX
    digits = re.sub(r"[^0-9]", "", raw[len(PHONE_PREFIX):])
    return (PHONE_PREFIX + digits)[:13]


class OrderForm(BaseModel):
    customer_name: str = ""
    customer_phone: str = ""
    delivery_area: str = ""
    delivery_notes: str = ""


class OrderConfirmation(BaseModel):
    order_id: str
    lines: List[str]
    close_after_seconds: int


class BooksUnavailable(CheckoutError):
    status_code = 409

    def __init__(self, reconciliation: Reconciliation):
        super().__init__(BOOKS_REMOVED)
        self.reconciliation = reconciliation


def validate_form(form: OrderForm, session: ShopSession) -> None:
    fields: Dict[str, str] = {}
    if not form.customer_name.strip():
        fields["customer_name"] = "Full name is required."
    if not is_valid_phone(form.customer_phone.strip()):
        fields["customer_phone"] = "Enter a Ugandan number: +256 followed by 9 digits."
    if not form.delivery_area.strip() or not session.delivery_matches(form.delivery_area):
        fields["delivery_area"] = "Select a delivery area we deliver to."
    if fields:
        raise ValidationFailed(FORM_INVALID, fields)
    if not session.cart.items:
        raise CheckoutError(EMPTY_CART)


def build_order(form: OrderForm, session: ShopSession) -> dict:
    """The JSON payload the backend's order endpoint expects."""
    with session.lock:
        return {
            "customerName": form.customer_name.strip(),
            "customerPhone": form.customer_phone.strip(),
            "deliveryArea": form.delivery_area.strip(),
            "deliveryNotes": form.delivery_notes,
            "books": [item.to_wire() for item in session.cart.items],
            "promoCode": session.promo.code if session.promo else "",
        }


def submit_order(
    session: ShopSession,
    form: OrderForm,
    gateway: BackendGateway,
    catalog: CatalogStore,
) -> OrderConfirmation:
    validate_form(form, session)

    if not session.begin_submission():
        raise CheckoutError(ALREADY_SUBMITTING, status_code=409)
    try:
        logger.info("Final availability check before order submission for %s", session.cart.codes)
        reconciliation = check_codes(session.cart.codes, gateway)
        if not reconciliation.checked:
            raise CheckoutError(AVAILABILITY_FAILED, status_code=502)
        if reconciliation.removed:
            session.apply_reconciliation(reconciliation)
            raise BooksUnavailable(reconciliation)
        session.dismiss_notice()

        order = build_order(form, session)
        logger.info(
            "Submitting order for %d books (delivery fee %s, promo %r)",
            len(order["books"]), session.delivery_fee, order["promoCode"] or None,
        )
        result = gateway.process_order(order)
        if result.outcome == "transport_error":
            raise CheckoutError(SUBMIT_FAILED, status_code=502)
        if not result.ok:
            raise CheckoutError(f"Failed to submit order: {result.error}")

        order_id = result.data
        logger.info("Order %s submitted", order_id)
        session.complete_order()
    finally:
        session.end_submission()

    # Show buyers what is still for sale
    reload = catalog.load()
    if not reload.ok:
        logger.warning("Catalogue reload after order %s failed: %s", order_id, reload.error)

    return OrderConfirmation(
        order_id=order_id,
        lines=[
            "Order Submitted Successfully!",
            f"Order ID: {order_id}",
            "Check your SMS for payment details.",
            "Your books are reserved for 24 hours.",
        ],
        close_after_seconds=session.settings.order_auto_close_seconds,
    )
