"""
Book-service backend integration for the storefront.

The shop's books, delivery areas, promo codes and orders live in an
external Google Apps Script web app. This module is the only place that
talks to it. It exposes one method per backend action:

* ``list_books()`` fetches the whole catalogue.
* ``check_availability()`` asks for the live status of some book codes.
* ``delivery_areas()`` and ``delivery_price()`` resolve delivery fees.
* ``validate_promo()`` checks a promo code.
* ``process_order()`` creates an order; it is the only call that carries
  the shared API key.

Every method returns a ``GatewayResult`` tagged ``ok``,
``backend_error`` (the backend answered and said no) or
``transport_error`` (network failure, bad status, body that is not
JSON). Callers branch on the tag and never look at raw responses.

Delivery areas and promo checks change rarely, so successful answers are
cached in memory with a TTL. Delivery prices are only cached when
``cache_delivery_price`` is switched on. HTTP is done with the standard
library; the transport is a plain callable so it can be swapped out.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ValidationError

from ..config import Settings
from .schemas import Availability, AvailabilityMap, Book, DeliveryPrice, PromoCheck


logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


Outcome = Literal["ok", "backend_error", "transport_error"]


class GatewayResult(BaseModel):
    outcome: Outcome
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == "ok"

    @classmethod
    def success(cls, data: Any) -> "GatewayResult":
        return cls(outcome="ok", data=data)

    @classmethod
    def rejected(cls, error: str) -> "GatewayResult":
        return cls(outcome="backend_error", error=error)

    @classmethod
    def failed(cls, error: str) -> "GatewayResult":
        return cls(outcome="transport_error", error=error)


class TransportError(Exception):
    """Raised by a transport when no usable response was received."""


# (status, body) for a request; raises TransportError on network failure
Transport = Callable[[str, str, Optional[bytes], float], Tuple[int, str]]


def _http_request(method: str, url: str, body: Optional[bytes], timeout: float) -> Tuple[int, str]:
    """Perform an HTTP request and return ``(status, body text)``.

    Apps Script answers POSTs with a redirect that urllib follows. A
    non-2xx answer is returned, not raised, so the caller can report the
    status code.
    """
    headers = {'Accept': 'application/json'}
    if body is not None:
        headers['Content-Type'] = 'application/json'
    request = urllib.request.Request(url, data=body, headers=headers, method=method)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            return response.status, response.read().decode('utf-8', errors='ignore')
    except urllib.error.HTTPError as exc:
        return exc.code, exc.read().decode('utf-8', errors='ignore')
    except (urllib.error.URLError, OSError) as exc:
        reason = getattr(exc, 'reason', None) or exc
        raise TransportError(str(reason)) from exc


class _TTLCache:
    """Tiny keyed cache with a per-entry expiry, safe across threads."""

    def __init__(self, ttl: float):
        self.ttl = ttl
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (time.monotonic() + self.ttl, value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def normalize_area(area: str) -> str:
    return " ".join((area or "").split()).lower()


class BackendGateway:
    """Forwards storefront actions to the book-service backend."""

    def __init__(self, settings: Settings, transport: Optional[Transport] = None):
        self.settings = settings
        self.transport = transport or _http_request
        self._areas_cache = _TTLCache(settings.delivery_areas_ttl)
        self._promo_cache = _TTLCache(settings.promo_ttl)
        self._price_cache = _TTLCache(settings.delivery_price_ttl)

    # -- plumbing ---------------------------------------------------------

    def _url(self, params: Dict[str, str]) -> str:
        base = self.settings.backend_url.strip()
        separator = '&' if '?' in base else '?'
        return f"{base}{separator}{urllib.parse.urlencode(params)}"

    def _call(
        self,
        what: str,
        params: Dict[str, str],
        payload: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> GatewayResult:
        """Run one backend request and decode the JSON body.

        ``what`` names the operation in error messages ("fetch books").
        The returned result carries the decoded JSON as ``data`` when the
        exchange itself worked; interpreting it is up to the caller.
        """
        if not self.settings.backend_configured:
            logger.error("Backend URL not configured; cannot %s", what)
            return GatewayResult.failed("Backend URL not configured")
        url = self._url(params)
        # Never log the API key
        safe_url = self._url({k: v for k, v in params.items() if k != 'apiKey'})
        body = json.dumps(payload).encode('utf-8') if payload is not None else None
        method = 'POST' if body is not None else 'GET'
        try:
            status, text = self.transport(method, url, body, timeout or self.settings.request_timeout)
        except TransportError as exc:
            logger.error("Failed to %s (%s): %s", what, safe_url, exc)
            return GatewayResult.failed(f"Failed to {what}: {exc}")
        if status != 200:
            logger.warning("Backend request to %s returned status %s", safe_url, status)
            return GatewayResult.failed(f"Backend returned status {status}")
        try:
            data = json.loads(text)
        except ValueError:
            logger.error("Invalid JSON response when trying to %s: %.200s", what, text)
            return GatewayResult.failed("Invalid response from backend")
        return GatewayResult.success(data)

    def clear_cache(self) -> None:
        """Drop every cached lookup (delivery areas, prices, promo checks)."""
        self._areas_cache.clear()
        self._price_cache.clear()
        self._promo_cache.clear()
        logger.info("Cleared backend lookup caches")

    # -- operations -------------------------------------------------------

    def list_books(self) -> GatewayResult:
        result = self._call("fetch books", {'action': 'getBooks'})
        if not result.ok:
            return result
        data = result.data
        if isinstance(data, dict) and data.get('success') and isinstance(data.get('books'), list):
            books = []
            for entry in data['books']:
                # Bad rows are skipped, the rest still load
                try:
                    books.append(Book.model_validate(entry))
                except ValidationError as exc:
                    logger.warning("Skipping malformed book row %r: %s", entry, exc)
            return GatewayResult.success(books)

        error_msg = 'Failed to load books from backend'
        if not isinstance(data, dict):
            error_msg += ': Unexpected response shape'
        elif data.get('error'):
            error_msg += f": {data['error']}"
        elif 'success' not in data:
            error_msg += ': No success field in response'
        elif not data['success']:
            error_msg += ': Backend returned success=false'
        else:
            error_msg += ': No books field in response'
        logger.error(error_msg)
        return GatewayResult.rejected(error_msg)

    def check_availability(self, codes: List[str]) -> GatewayResult:
        """Return ``{code: Availability}`` for the codes the backend knows."""
        result = self._call(
            "check availability",
            {'action': 'checkAvailability', 'codes': ",".join(codes)},
        )
        if not result.ok:
            return result
        data = result.data
        if not isinstance(data, dict):
            return GatewayResult.failed("Invalid response from backend")
        if data.get('success') is False and 'error' in data:
            return GatewayResult.rejected(str(data['error']))
        availability: AvailabilityMap = {}
        for code, entry in data.items():
            if isinstance(entry, dict):
                availability[str(code)] = Availability.model_validate(entry)
        return GatewayResult.success(availability)

    def delivery_areas(self) -> GatewayResult:
        cached = self._areas_cache.get('areas')
        if cached is not None:
            return GatewayResult.success(cached)
        result = self._call("get delivery areas", {'action': 'deliveryAreas'})
        if not result.ok:
            return result
        if not isinstance(result.data, list):
            return GatewayResult.failed("Invalid response from backend")
        areas = [str(area) for area in result.data if area]
        self._areas_cache.set('areas', areas)
        return GatewayResult.success(areas)

    def delivery_price(self, area: str, clear_cache: bool = False) -> GatewayResult:
        area = (area or '').strip()
        key = normalize_area(area)
        if clear_cache:
            self._areas_cache.clear()
            self._price_cache.clear()
            logger.info("Cleared delivery caches")
        if self.settings.cache_delivery_price:
            cached = self._price_cache.get(key)
            if cached is not None:
                return GatewayResult.success(cached)
        result = self._call("get delivery price", {'action': 'deliveryPrice', 'area': area})
        if not result.ok:
            return result
        try:
            quote = DeliveryPrice.model_validate(result.data)
        except ValidationError:
            return GatewayResult.failed("Invalid response from backend")
        logger.info("Delivery price for area %r: found=%s price=%s", area, quote.found, quote.price)
        if self.settings.cache_delivery_price:
            self._price_cache.set(key, quote)
        return GatewayResult.success(quote)

    def validate_promo(self, code: str) -> GatewayResult:
        code = (code or '').strip().upper()
        cached = self._promo_cache.get(code)
        if cached is not None:
            return GatewayResult.success(cached)
        result = self._call("validate promo code", {'action': 'validatePromo', 'code': code})
        if not result.ok:
            return result
        if isinstance(result.data, dict) and result.data.get('success') is False:
            return GatewayResult.rejected(str(result.data.get('error') or 'Promo check failed'))
        try:
            check = PromoCheck.model_validate(result.data)
        except ValidationError:
            return GatewayResult.failed("Invalid response from backend")
        self._promo_cache.set(code, check)
        return GatewayResult.success(check)

    def process_order(self, order: dict) -> GatewayResult:
        """Create an order. ``data`` is the backend order id on success."""
        result = self._call(
            "process order",
            {'apiKey': self.settings.api_key},
            payload=order,
            timeout=self.settings.order_timeout,
        )
        if not result.ok:
            return result
        data = result.data
        logger.info("Order processing response: %s", data)
        if isinstance(data, dict) and data.get('success'):
            return GatewayResult.success(str(data.get('orderId') or ''))
        error = data.get('error') if isinstance(data, dict) else None
        return GatewayResult.rejected(str(error or 'Unknown error'))
