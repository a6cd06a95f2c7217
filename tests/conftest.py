import json
from typing import Dict, List
from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from storefront.catalog.backend_service import BackendGateway, TransportError
from storefront.catalog.store import CatalogStore
from storefront.checkout.session import SessionRegistry
from storefront.config import Settings
from storefront.main import create_app
from storefront.storage import CartStorage


BOOKS = [
    {"code": "BK001", "title": "The Very Hungry Caterpillar", "author": "Eric Carle",
     "category": "Picture Books", "ageGroup": "0-3 years", "price": 15000,
     "image": "https://img.test/bk001.jpg", "available": True, "status": "available"},
    {"code": "BK002", "title": "Matilda", "author": "Roald Dahl",
     "category": "Chapter Books", "ageGroup": "7-9 years", "price": 25000,
     "image": "https://img.test/bk002.jpg", "available": True, "status": "available"},
    {"code": "BK003", "title": "Diary of a Wimpy Kid", "author": "Jeff Kinney",
     "category": "Chapter Books", "ageGroup": "10-15 years", "price": 20000,
     "image": "https://img.test/bk003.jpg", "available": True, "status": "available"},
    {"code": "BK004", "title": "Where the Wild Things Are", "author": "Maurice Sendak",
     "category": "Picture Books", "ageGroup": "4-6 years", "price": 8000,
     "image": "https://img.test/bk004.jpg", "available": False, "status": "sold"},
    {"code": "BK005", "title": "Charlotte's Web", "author": "E. B. White",
     "category": "Chapter Books", "ageGroup": "7-9 years", "price": 10000,
     "image": "https://img.test/bk005.jpg", "available": False, "status": "reserved"},
    {"code": "BK006", "title": "Children's World Atlas Collection", "author": "DK",
     "category": "Educational Books", "ageGroup": "10-15 years", "price": 300000,
     "image": "https://img.test/bk006.jpg", "available": True, "status": "available"},
]


class FakeBackend:
    """Stands in for the Apps Script web app at the transport level."""

    def __init__(self):
        self.books: List[dict] = [dict(b) for b in BOOKS]
        self.availability: Dict[str, dict] = {}
        self.areas = {"kira": ("Kira", 5000), "ntinda": ("Ntinda", 7000), "kampala cbd": ("Kampala CBD", 0)}
        self.promos = {"SAVE10": 0.1, "HALF": 0.5}
        self.order_response = {"success": True, "orderId": "LR-1001"}
        # action -> raw JSON answer, replacing the normal one
        self.overrides: Dict[str, object] = {}
        self.failing = set()
        self.statuses: Dict[str, int] = {}
        self.calls: List[dict] = []
        self.orders: List[dict] = []

    def count(self, action: str) -> int:
        return sum(1 for c in self.calls if c["action"] == action)

    def __call__(self, method, url, body, timeout):
        params = {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}
        action = params.get("action") or ("processOrder" if method == "POST" else "")
        self.calls.append({"method": method, "action": action, "params": params, "timeout": timeout})
        if action in self.failing:
            raise TransportError("connection refused")
        if action in self.statuses:
            return self.statuses[action], "<html>error</html>"
        return 200, json.dumps(self.respond(action, params, body))

    def respond(self, action, params, body):
        if action in self.overrides:
            return self.overrides[action]
        if action == "getBooks":
            return {"success": True, "books": self.books}
        if action == "checkAvailability":
            known = {b["code"]: {"available": b["available"], "status": b["status"]} for b in self.books}
            known.update(self.availability)
            return {c: known[c] for c in params.get("codes", "").split(",") if c in known}
        if action == "deliveryAreas":
            return [name for name, _ in self.areas.values()]
        if action == "deliveryPrice":
            hit = self.areas.get(params.get("area", "").strip().lower())
            if hit is None:
                return {"found": False}
            return {"found": True, "matched": hit[0], "price": hit[1]}
        if action == "validatePromo":
            code = params.get("code", "")
            if code in self.promos:
                return {"valid": True, "code": code, "discount": self.promos[code]}
            return {"valid": False}
        if action == "processOrder":
            self.orders.append({"apiKey": params.get("apiKey"), "order": json.loads(body)})
            return self.order_response
        return {"success": False, "error": "Unknown action"}


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        backend_url="https://backend.test/macros/s/abc/exec",
        api_key="secret-key",
        cart_file=tmp_path / "carts.json",
    )


@pytest.fixture
def gateway(settings, backend):
    return BackendGateway(settings, transport=backend)


@pytest.fixture
def catalog(gateway):
    store = CatalogStore(gateway)
    assert store.load().ok
    return store


@pytest.fixture
def storage(settings):
    return CartStorage(settings.cart_file)


@pytest.fixture
def registry(settings, storage):
    return SessionRegistry(settings, storage)


@pytest.fixture
def session(registry):
    return registry.get("visitor-1")


@pytest.fixture
def client(settings, backend):
    with TestClient(create_app(settings, transport=backend)) as c:
        yield c
