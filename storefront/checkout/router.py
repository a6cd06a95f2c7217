"""
Route definitions for the cart and checkout.

Endpoints under /api:
- GET    /cart                 : cart contents, totals and summary lines
- POST   /cart/items           : add a book by code
- DELETE /cart/items/{index}   : remove the item at a position
- DELETE /cart                 : empty the cart
- POST   /checkout/open        : open checkout (re-checks availability)
- POST   /checkout/close       : close checkout
- DELETE /checkout/notice      : dismiss the unavailable-books notice
- POST   /checkout/delivery    : resolve a delivery area to a fee
- POST   /checkout/promo       : apply a promo code
- DELETE /checkout/promo       : drop the promo code
- POST   /checkout/phone       : format phone input as typed
- GET    /checkout/summary     : order totals
- POST   /checkout/submit      : place the order
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel

from ..catalog.backend_service import BackendGateway
from ..catalog.store import CatalogStore
from ..dependencies import get_catalog, get_gateway, get_session, load_catalog, to_http
from ..errors import StorefrontError, ValidationFailed
from .availability import UnavailableBook
from .cart import CartItem
from .orders import BooksUnavailable, OrderConfirmation, OrderForm, is_valid_phone, normalize_phone, submit_order
from .pricing import OrderTotals
from .session import DeliveryUpdate, PromoUpdate, SessionView, ShopSession

router = APIRouter(prefix="/api", tags=["checkout"])


class CartChange(BaseModel):
    item: CartItem
    count: int
    # Client flashes the cart counter
    highlight: bool = True


class CheckoutOpened(BaseModel):
    session: SessionView
    removed: List[UnavailableBook] = []
    availability_checked: bool = True


class DeliveryRequest(BaseModel):
    area: str = ""
    seq: Optional[int] = None
    clear_cache: bool = False


class PhoneFormat(BaseModel):
    value: str
    valid: bool


@router.get("/cart", response_model=SessionView)
def get_cart(session: ShopSession = Depends(get_session)) -> SessionView:
    return session.view()


@router.post("/cart/items", response_model=CartChange)
def add_to_cart(
    code: str = Body(..., embed=True),
    session: ShopSession = Depends(get_session),
    catalog: CatalogStore = Depends(get_catalog),
) -> CartChange:
    load_catalog(catalog)
    try:
        item = session.add_to_cart(catalog, code)
    except StorefrontError as e:
        raise to_http(e)
    return CartChange(item=item, count=len(session.cart))


@router.delete("/cart/items/{index}", response_model=SessionView)
def remove_from_cart(index: int, session: ShopSession = Depends(get_session)) -> SessionView:
    try:
        session.remove_from_cart(index)
    except StorefrontError as e:
        raise to_http(e)
    return session.view()


@router.delete("/cart", response_model=SessionView)
def clear_cart(session: ShopSession = Depends(get_session)) -> SessionView:
    session.clear_cart()
    return session.view()


@router.post("/checkout/open", response_model=CheckoutOpened)
def open_checkout(
    session: ShopSession = Depends(get_session),
    gateway: BackendGateway = Depends(get_gateway),
) -> CheckoutOpened:
    try:
        reconciliation = session.open_checkout(gateway)
    except StorefrontError as e:
        raise to_http(e)
    return CheckoutOpened(
        session=session.view(),
        removed=reconciliation.removed,
        availability_checked=reconciliation.checked,
    )


@router.post("/checkout/close", response_model=SessionView)
def close_checkout(session: ShopSession = Depends(get_session)) -> SessionView:
    session.close_checkout()
    return session.view()


@router.delete("/checkout/notice", response_model=SessionView)
def dismiss_notice(session: ShopSession = Depends(get_session)) -> SessionView:
    session.dismiss_notice()
    return session.view()


@router.post("/checkout/delivery", response_model=DeliveryUpdate)
def set_delivery_area(
    req: DeliveryRequest,
    session: ShopSession = Depends(get_session),
    gateway: BackendGateway = Depends(get_gateway),
) -> DeliveryUpdate:
    if req.clear_cache:
        gateway.clear_cache()
    return session.set_delivery_area(gateway, req.area, req.seq)


@router.post("/checkout/promo", response_model=PromoUpdate)
def apply_promo(
    code: str = Body("", embed=True),
    session: ShopSession = Depends(get_session),
    gateway: BackendGateway = Depends(get_gateway),
) -> PromoUpdate:
    return session.apply_promo(gateway, code)


@router.delete("/checkout/promo", response_model=SessionView)
def remove_promo(session: ShopSession = Depends(get_session)) -> SessionView:
    session.remove_promo()
    return session.view()


@router.post("/checkout/phone", response_model=PhoneFormat)
def format_phone(value: str = Body("", embed=True)) -> PhoneFormat:
    formatted = normalize_phone(value)
    return PhoneFormat(value=formatted, valid=is_valid_phone(formatted))


@router.get("/checkout/summary", response_model=OrderTotals)
def order_summary(session: ShopSession = Depends(get_session)) -> OrderTotals:
    return session.totals()


@router.post("/checkout/submit", response_model=OrderConfirmation)
def submit(
    form: OrderForm,
    session: ShopSession = Depends(get_session),
    gateway: BackendGateway = Depends(get_gateway),
    catalog: CatalogStore = Depends(get_catalog),
) -> OrderConfirmation:
    try:
        return submit_order(session, form, gateway, catalog)
    except ValidationFailed as e:
        raise HTTPException(status_code=e.status_code, detail={"message": e.message, "fields": e.fields})
    except BooksUnavailable as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={
                "message": e.message,
                "notice": e.reconciliation.notice,
                "removed": [b.model_dump(mode="json") for b in e.reconciliation.removed],
            },
        )
    except StorefrontError as e:
        raise to_http(e)
