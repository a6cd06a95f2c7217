"""
Per-visitor checkout state.

A ``ShopSession`` owns everything one visitor changes: the cart, the
active promo, the resolved delivery quote, whether checkout is open and
the dismissible status notice. All mutation goes through its methods and
happens under the session lock. Backend calls are made with the lock
released, so a slow backend never stalls other requests of the session.

Delivery lookups can overlap (the visitor keeps typing). Each lookup is
stamped with a sequence number when it starts and its answer is applied
only if no later lookup has started since.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..catalog.backend_service import BackendGateway, normalize_area
from ..catalog.schemas import DeliveryPrice
from ..catalog.store import CatalogStore
from ..config import Settings
from ..errors import CheckoutError
from ..storage import CartStorage
from .availability import Reconciliation, check_codes, prune
from .cart import CartItem, CartManager
from .pricing import OrderTotals, Promo, SummaryLines, compute_total, format_ugx, summary_lines


logger = logging.getLogger(__name__)

EMPTY_CART = "Your cart is empty! Add some books first."
NOT_DELIVERABLE = "Sorry, we don't deliver to this area."
DELIVERY_LOOKUP_FAILED = "Error checking delivery area. Please try again."
PROMO_MISSING = "Please enter a promo code."
PROMO_INVALID = "Invalid or expired promo code."
PROMO_BACKEND_ERROR = "Error validating promo code."
PROMO_LOOKUP_FAILED = "Error validating code. Please try again."


class DeliveryUpdate(BaseModel):
    applied: bool
    area: str = ""
    fee: Optional[int] = None
    message: str = ""
    error: str = ""


class PromoUpdate(BaseModel):
    promo: Optional[Promo] = None
    message: str = ""
    error: str = ""


class SessionView(BaseModel):
    """What the shop page needs to redraw the cart and checkout."""

    items: List[CartItem]
    count: int
    checkout_open: bool
    submitting: bool
    promo: Optional[Promo]
    promo_label: Optional[str]
    delivery_area: str
    delivery_fee: Optional[int]
    totals: OrderTotals
    summary: SummaryLines
    notice: Optional[str]


class ShopSession:
    def __init__(self, session_id: str, storage: CartStorage, settings: Settings):
        self.id = session_id
        self.settings = settings
        self.lock = threading.RLock()
        self.cart = CartManager(storage, session_id)
        self.cart.restore()
        self.promo: Optional[Promo] = None
        self.delivery_area = ""
        self.delivery_fee: Optional[int] = None
        self.checkout_open = False
        self.submitting = False
        self.notice: Optional[str] = None
        self._delivery_seq = 0
        self.last_seen = time.monotonic()

    # -- cart ---------------------------------------------------------------

    def add_to_cart(self, catalog: CatalogStore, code: str) -> CartItem:
        book = catalog.find(code)
        with self.lock:
            return self.cart.add(book)

    def remove_from_cart(self, index: int) -> CartItem:
        with self.lock:
            item = self.cart.remove(index)
            if not self.cart.items:
                self.close_checkout()
            return item

    def clear_cart(self) -> None:
        with self.lock:
            self.cart.clear()
            self.close_checkout()

    # -- checkout -----------------------------------------------------------

    def _reset_form(self) -> None:
        self.promo = None
        # A resolved area survives a reset; a half-typed one does not
        if not (self.delivery_area and self.delivery_fee is not None):
            self.delivery_area = ""
            self.delivery_fee = None

    def open_checkout(self, gateway: BackendGateway) -> Reconciliation:
        with self.lock:
            if not self.cart.items:
                raise CheckoutError(EMPTY_CART)
            self._reset_form()
            self.checkout_open = True
            codes = self.cart.codes
        reconciliation = check_codes(codes, gateway)
        self.apply_reconciliation(reconciliation)
        return reconciliation

    def apply_reconciliation(self, reconciliation: Reconciliation) -> None:
        with self.lock:
            if reconciliation.removed:
                prune(self.cart, reconciliation)
                if not self.cart.items:
                    self.close_checkout()
                # Set after closing, which clears the notice
                self.notice = reconciliation.notice
            elif reconciliation.checked:
                self.notice = None

    def close_checkout(self) -> None:
        with self.lock:
            self.checkout_open = False
            self.notice = None

    def dismiss_notice(self) -> None:
        with self.lock:
            self.notice = None

    # -- delivery -----------------------------------------------------------

    def begin_delivery_lookup(self, seq: Optional[int] = None) -> Optional[int]:
        """Stamp a new lookup; ``None`` if the client's ``seq`` is stale."""
        with self.lock:
            if seq is None:
                self._delivery_seq += 1
            elif seq <= self._delivery_seq:
                return None
            else:
                self._delivery_seq = seq
            return self._delivery_seq

    def _is_current(self, ticket: int) -> bool:
        return ticket == self._delivery_seq

    def set_delivery_area(
        self, gateway: BackendGateway, area: str, seq: Optional[int] = None
    ) -> DeliveryUpdate:
        area = (area or "").strip()
        ticket = self.begin_delivery_lookup(seq)
        if ticket is None:
            return DeliveryUpdate(applied=False, area=area)
        if not area:
            with self.lock:
                if self._is_current(ticket):
                    self.delivery_area = ""
                    self.delivery_fee = None
                    return DeliveryUpdate(applied=True)
            return DeliveryUpdate(applied=False)

        logger.info("Checking delivery price for area: %s", area)
        result = gateway.delivery_price(area)
        with self.lock:
            if not self._is_current(ticket):
                logger.info("Discarding superseded delivery quote for %r", area)
                return DeliveryUpdate(applied=False, area=area)
            self.delivery_area = area
            if result.ok and result.data.found:
                quote: DeliveryPrice = result.data
                self.delivery_fee = quote.price
                matched = quote.matched or area
                return DeliveryUpdate(
                    applied=True,
                    area=area,
                    fee=quote.price,
                    message=f"Delivery to {matched}: {format_ugx(quote.price)}",
                )
            self.delivery_fee = None
            if result.outcome == "transport_error":
                return DeliveryUpdate(applied=True, area=area, error=DELIVERY_LOOKUP_FAILED)
            return DeliveryUpdate(applied=True, area=area, error=NOT_DELIVERABLE)

    def delivery_matches(self, area: str) -> bool:
        with self.lock:
            return (
                self.delivery_fee is not None
                and normalize_area(area) == normalize_area(self.delivery_area)
            )

    # -- promo --------------------------------------------------------------

    def apply_promo(self, gateway: BackendGateway, code: str) -> PromoUpdate:
        code = (code or "").strip().upper()
        if not code:
            return PromoUpdate(promo=self.promo, error=PROMO_MISSING)
        logger.info("Validating promo code: %s", code)
        result = gateway.validate_promo(code)
        with self.lock:
            if result.outcome == "transport_error":
                return PromoUpdate(promo=self.promo, error=PROMO_LOOKUP_FAILED)
            if result.outcome == "backend_error":
                self.promo = None
                return PromoUpdate(error=PROMO_BACKEND_ERROR)
            check = result.data
            if not check.valid or not 0 <= check.discount < 1:
                self.promo = None
                return PromoUpdate(error=PROMO_INVALID)
            self.promo = Promo(code=check.code or code, discount=check.discount)
            logger.info("Promo code applied: %s", self.promo.code)
            return PromoUpdate(promo=self.promo, message=self.promo.label)

    def remove_promo(self) -> None:
        with self.lock:
            self.promo = None

    # -- submission ---------------------------------------------------------

    def begin_submission(self) -> bool:
        with self.lock:
            if self.submitting:
                return False
            self.submitting = True
            return True

    def end_submission(self) -> None:
        with self.lock:
            self.submitting = False

    def complete_order(self) -> None:
        """Forget the cart and promo once the backend accepted the order."""
        with self.lock:
            self.cart.clear()
            self.promo = None
            self.notice = None
            self.checkout_open = False

    # -- views --------------------------------------------------------------

    def totals(self) -> OrderTotals:
        with self.lock:
            return compute_total(
                self.cart.items,
                self.promo,
                self.delivery_fee,
                self.settings.free_delivery_threshold,
            )

    def view(self) -> SessionView:
        with self.lock:
            totals = self.totals()
            return SessionView(
                items=list(self.cart.items),
                count=len(self.cart),
                checkout_open=self.checkout_open,
                submitting=self.submitting,
                promo=self.promo,
                promo_label=self.promo.label if self.promo else None,
                delivery_area=self.delivery_area,
                delivery_fee=self.delivery_fee,
                totals=totals,
                summary=summary_lines(totals),
                notice=self.notice,
            )


class SessionRegistry:
    """Live sessions by id. Carts come back from storage on first use.

    The map is bounded: sessions idle longer than ``session_idle_seconds``
    are dropped, and beyond ``max_sessions`` the least recently used go
    first. A dropped session only loses its in-memory checkout state; its
    cart is read back from storage when the visitor returns.
    """

    def __init__(self, settings: Settings, storage: Optional[CartStorage] = None):
        self.settings = settings
        self.storage = storage or CartStorage(settings.cart_file)
        self._sessions: Dict[str, ShopSession] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _evict(self, now: float) -> None:
        """Drop idle sessions and make room for one more."""
        idle = self.settings.session_idle_seconds
        for sid in list(self._sessions):
            session = self._sessions[sid]
            if session.last_seen + idle > now:
                break  # oldest first, the rest are fresher
            if not session.submitting:
                del self._sessions[sid]
        overflow = len(self._sessions) + 1 - self.settings.max_sessions
        for sid in list(self._sessions):
            if overflow <= 0:
                break
            if not self._sessions[sid].submitting:
                del self._sessions[sid]
                overflow -= 1

    def get(self, session_id: Optional[str]) -> ShopSession:
        if not session_id:
            session_id = self.new_id()
        now = time.monotonic()
        with self._lock:
            session = self._sessions.pop(session_id, None)
            self._evict(now)
            if session is None:
                session = ShopSession(session_id, self.storage, self.settings)
            session.last_seen = now
            # Most recently used at the end
            self._sessions[session_id] = session
            return session
