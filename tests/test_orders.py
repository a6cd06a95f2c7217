import pytest

from storefront.checkout.orders import (
    ALREADY_SUBMITTING,
    AVAILABILITY_FAILED,
    BOOKS_REMOVED,
    SUBMIT_FAILED,
    BooksUnavailable,
    OrderForm,
    is_valid_phone,
    normalize_phone,
    submit_order,
)
from storefront.errors import CheckoutError, ValidationFailed


@pytest.fixture
def ready(session, catalog, gateway):
    """A session with two books, Kira delivery and the SAVE10 promo."""
    session.add_to_cart(catalog, "BK001")
    session.add_to_cart(catalog, "BK003")
    session.open_checkout(gateway)
    session.set_delivery_area(gateway, "Kira")
    session.apply_promo(gateway, "SAVE10")
    return session


def form(**overrides):
    data = dict(
        customer_name="Amina Nakato",
        customer_phone="+256712345678",
        delivery_area="Kira",
        delivery_notes="Blue gate near the church",
    )
    data.update(overrides)
    return OrderForm(**data)


@pytest.mark.parametrize(
    "phone, valid",
    [
        ("+256712345678", True),
        ("+25671234567", False),
        ("0712345678", False),
        ("+2567123456789", False),
        ("+256 71234567", False),
        ("", False),
    ],
)
def test_phone_validation(phone, valid):
    assert is_valid_phone(phone) is valid


def test_normalize_phone():
    assert normalize_phone("+256 712-345-678") == "+256712345678"
    assert normalize_phone("+2567123456789999") == "+256712345678"
    assert normalize_phone("0712345678") == "+256"
    assert normalize_phone("") == "+256"


def test_successful_submission(ready, gateway, catalog, backend):
    confirmation = submit_order(ready, form(), gateway, catalog)

    assert confirmation.order_id == "LR-1001"
    assert "Order ID: LR-1001" in confirmation.lines
    assert confirmation.close_after_seconds == 7
    sent = backend.orders[-1]
    assert sent["apiKey"] == "secret-key"
    assert sent["order"]["customerName"] == "Amina Nakato"
    assert sent["order"]["promoCode"] == "SAVE10"
    assert [b["code"] for b in sent["order"]["books"]] == ["BK001", "BK003"]
    assert ready.cart.items == []
    assert ready.promo is None
    assert not ready.submitting
    assert not ready.checkout_open
    # Catalogue reloaded after the order
    assert backend.count("getBooks") == 2


def test_validation_reports_every_bad_field_and_sends_nothing(ready, gateway, catalog, backend):
    with pytest.raises(ValidationFailed) as exc:
        submit_order(
            ready,
            form(customer_name=" ", customer_phone="0712345678", delivery_area="Gulu"),
            gateway,
            catalog,
        )
    assert set(exc.value.fields) == {"customer_name", "customer_phone", "delivery_area"}
    assert backend.count("processOrder") == 0
    assert backend.count("checkAvailability") == 1  # only the one from opening checkout


def test_unresolved_delivery_fee_blocks_submission(session, catalog, gateway, backend):
    session.add_to_cart(catalog, "BK001")
    session.set_delivery_area(gateway, "Gulu")
    with pytest.raises(ValidationFailed) as exc:
        submit_order(session, form(delivery_area="Gulu"), gateway, catalog)
    assert list(exc.value.fields) == ["delivery_area"]
    assert backend.count("processOrder") == 0


def test_empty_cart_is_rejected(session, gateway, catalog):
    session.set_delivery_area(gateway, "Kira")
    with pytest.raises(CheckoutError):
        submit_order(session, form(), gateway, catalog)


def test_book_claimed_before_submit_aborts(ready, gateway, catalog, backend):
    backend.availability["BK003"] = {"available": False, "status": "reserved"}

    with pytest.raises(BooksUnavailable) as exc:
        submit_order(ready, form(), gateway, catalog)

    assert exc.value.message == BOOKS_REMOVED
    assert exc.value.reconciliation.notice == "BK003 (RESERVED)"
    assert ready.cart.codes == ["BK001"]
    assert ready.checkout_open
    assert ready.promo is not None
    assert not ready.submitting
    assert backend.count("processOrder") == 0


def test_failed_availability_check_aborts(ready, gateway, catalog, backend):
    backend.failing.add("checkAvailability")
    with pytest.raises(CheckoutError) as exc:
        submit_order(ready, form(), gateway, catalog)
    assert exc.value.message == AVAILABILITY_FAILED
    assert ready.cart.codes == ["BK001", "BK003"]
    assert not ready.submitting


def test_backend_rejection_keeps_cart_for_retry(ready, gateway, catalog, backend):
    backend.order_response = {"success": False, "error": "Phone number blocked"}
    with pytest.raises(CheckoutError) as exc:
        submit_order(ready, form(), gateway, catalog)
    assert exc.value.message == "Failed to submit order: Phone number blocked"
    assert exc.value.status_code == 400
    assert ready.cart.codes == ["BK001", "BK003"]
    assert ready.promo.code == "SAVE10"
    assert not ready.submitting

    backend.order_response = {"success": True, "orderId": "LR-1002"}
    assert submit_order(ready, form(), gateway, catalog).order_id == "LR-1002"


def test_transport_failure_is_generic(ready, gateway, catalog, backend):
    backend.statuses["processOrder"] = 503
    with pytest.raises(CheckoutError) as exc:
        submit_order(ready, form(), gateway, catalog)
    assert exc.value.message == SUBMIT_FAILED
    assert exc.value.status_code == 502
    assert len(ready.cart) == 2
    assert backend.count("processOrder") == 1


def test_concurrent_submission_is_refused(ready, gateway, catalog, backend):
    assert ready.begin_submission()
    with pytest.raises(CheckoutError) as exc:
        submit_order(ready, form(), gateway, catalog)
    assert exc.value.message == ALREADY_SUBMITTING
    assert exc.value.status_code == 409
    assert backend.count("processOrder") == 0


def test_order_lists_complete_books(ready, gateway, catalog, backend):
    submit_order(ready, form(), gateway, catalog)
    books = backend.orders[-1]["order"]["books"]
    assert set(books[0]) == {
        "code", "title", "author", "category", "ageGroup",
        "price", "image", "available", "status",
    }
    assert books[1]["ageGroup"] == "10-15 years"
    assert books[1]["category"] == "Chapter Books"
    assert books[1]["status"] == "available"


def test_recheck_that_empties_cart_closes_checkout_with_notice(ready, gateway, catalog, backend):
    backend.availability["BK001"] = {"available": False, "status": "sold"}
    backend.availability["BK003"] = {"available": False, "status": "reserved"}

    with pytest.raises(BooksUnavailable):
        submit_order(ready, form(), gateway, catalog)

    assert ready.cart.items == []
    assert not ready.checkout_open
    assert ready.notice == "BK001 (SOLD), BK003 (RESERVED)"
    assert not ready.submitting
    assert backend.count("processOrder") == 0
