"""
Shopping cart for one visitor.

The cart is an ordered list of ``CartItem`` snapshots, one per book code,
kept in insertion order. Every change is written through to
``CartStorage`` so the cart survives restarts. Restoring never fails:
anything that cannot be decoded gives an empty cart.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..catalog.schemas import Book, BookStatus
from ..errors import CartError
from ..storage import CartStorage


logger = logging.getLogger(__name__)

BOOK_UNAVAILABLE = "Sorry, this book is no longer available!"
ALREADY_IN_CART = "This book is already in your cart!"


class CartItem(BaseModel):
    """A book as it was when it went into the cart.

    Carries every field of the backend's book row, so the order sent back
    to the backend lists complete books.
    """

    model_config = ConfigDict(populate_by_name=True)

    code: str
    title: str = ""
    author: str = ""
    category: str = ""
    age_group: str = Field(default="", alias="ageGroup")
    price: int = 0
    image: str = ""
    available: bool = True
    status: BookStatus = BookStatus.AVAILABLE

    @classmethod
    def from_book(cls, book: Book) -> "CartItem":
        return cls(
            code=book.code,
            title=book.title,
            author=book.author,
            category=book.category,
            age_group=book.age_group,
            price=book.price,
            image=book.image,
            available=book.available,
            status=book.status,
        )

    def to_wire(self) -> dict:
        """camelCase JSON, the shape the backend uses for books."""
        return self.model_dump(by_alias=True, mode="json")


class CartManager:
    def __init__(self, storage: CartStorage, session_id: str):
        self.storage = storage
        self.session_id = session_id
        self.items: List[CartItem] = []

    def __len__(self) -> int:
        return len(self.items)

    @property
    def codes(self) -> List[str]:
        return [item.code for item in self.items]

    def contains(self, code: str) -> bool:
        return any(item.code == code for item in self.items)

    def add(self, book: Optional[Book]) -> CartItem:
        """Append ``book``; raise ``CartError`` if it cannot be bought."""
        if book is None or not book.available:
            raise CartError(BOOK_UNAVAILABLE)
        if self.contains(book.code):
            raise CartError(ALREADY_IN_CART)
        item = CartItem.from_book(book)
        self.items.append(item)
        self.persist()
        return item

    def remove(self, index: int) -> CartItem:
        if index < 0 or index >= len(self.items):
            raise CartError("No such item in your cart.", status_code=404)
        item = self.items.pop(index)
        self.persist()
        return item

    def discard(self, codes: Iterable[str]) -> List[CartItem]:
        """Drop every item whose code is in ``codes``; return what went."""
        drop = set(codes)
        removed = [item for item in self.items if item.code in drop]
        if removed:
            self.items = [item for item in self.items if item.code not in drop]
            self.persist()
        return removed

    def clear(self) -> None:
        self.items = []
        self.persist()

    def subtotal(self) -> int:
        return sum(item.price for item in self.items)

    def persist(self) -> None:
        self.storage.save(self.session_id, [item.to_wire() for item in self.items])

    def restore(self) -> None:
        raw = self.storage.load(self.session_id)
        try:
            items = [CartItem.model_validate(entry) for entry in raw]
        except ValidationError as exc:
            logger.warning("Discarding unreadable cart for session %s: %s", self.session_id, exc)
            items = []
        seen = set()
        self.items = []
        for item in items:
            if item.code not in seen:
                seen.add(item.code)
                self.items.append(item)
