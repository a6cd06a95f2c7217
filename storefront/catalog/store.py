"""
In-memory catalogue for the storefront.

``CatalogStore`` holds the list of books last fetched from the backend.
It never edits a book; when availability may have changed (for example
after an order went through) the whole list is fetched again.

Filtering is a pure predicate over that list. ``CatalogFilter`` combines
category, age group, price range and a free-text search with logical
AND, and an unset filter matches everything.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .backend_service import BackendGateway, GatewayResult
from .schemas import Book, FilterOptions


logger = logging.getLogger(__name__)

# Option lists offered by the shop page filters
CATEGORIES = [
    "Picture Books",
    "Early Readers",
    "Chapter Books",
    "Activity Books",
    "Educational Books",
    "Young Adult Fiction",
]
AGE_GROUPS = ["0-3 years", "4-6 years", "7-9 years", "10-15 years", "16+ years"]


class PriceRange(str, Enum):
    UNDER_10K = "0-10000"
    FROM_10K_TO_20K = "10000-20000"
    ABOVE_20K = "20000+"

    def contains(self, price: int) -> bool:
        if self is PriceRange.UNDER_10K:
            return price < 10000
        if self is PriceRange.FROM_10K_TO_20K:
            return 10000 <= price <= 20000
        return price > 20000


def _norm(s: Optional[str]) -> str:
    """Normalize a string for case-insensitive comparison."""
    return (s or "").strip().lower()


class CatalogFilter(BaseModel):
    category: Optional[str] = None
    age_group: Optional[str] = None
    price_range: Optional[PriceRange] = None
    q: Optional[str] = None

    def matches(self, book: Book) -> bool:
        if self.category and book.category != self.category:
            return False
        if self.age_group and book.age_group != self.age_group:
            return False
        if self.price_range and not self.price_range.contains(book.price):
            return False
        term = _norm(self.q)
        if term and term not in book.title.lower() and term not in book.author.lower():
            return False
        return True

    def apply(self, books: List[Book]) -> List[Book]:
        return [b for b in books if self.matches(b)]


def filter_options() -> FilterOptions:
    return FilterOptions(
        categories=list(CATEGORIES),
        age_groups=list(AGE_GROUPS),
        price_ranges=[r.value for r in PriceRange],
    )


class CatalogStore:
    """The books currently listed by the backend."""

    def __init__(self, gateway: BackendGateway):
        self.gateway = gateway
        self._books: List[Book] = []
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def books(self) -> List[Book]:
        with self._lock:
            return list(self._books)

    def load(self) -> GatewayResult:
        """Fetch the catalogue again, replacing the held list on success.

        On failure the previous list is kept and the failing result is
        returned so the caller can show the reason.
        """
        logger.info("Loading books from backend...")
        result = self.gateway.list_books()
        if result.ok:
            with self._lock:
                self._books = list(result.data)
                self._loaded = True
            logger.info("Loaded %d books", len(result.data))
        return result

    def ensure_loaded(self) -> Optional[GatewayResult]:
        if self._loaded:
            return None
        return self.load()

    def find(self, code: str) -> Optional[Book]:
        code = (code or "").strip()
        with self._lock:
            return next((b for b in self._books if b.code == code), None)

    def search(self, criteria: Optional[CatalogFilter] = None) -> List[Book]:
        books = self.books
        if criteria is None:
            return books
        return criteria.apply(books)
