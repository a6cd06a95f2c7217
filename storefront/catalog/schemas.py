"""
Pydantic schema definitions for the catalog module.

``Book`` mirrors a row of the backend's book sheet. Field names follow
the backend's camelCase JSON on the wire (``ageGroup``) and snake_case in
Python, so a book fetched from the backend can be handed straight back to
the front-end. The remaining models describe the lookups the backend
answers: availability, delivery prices and promo codes.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


class BookStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"
    # Not a backend status: used for codes the backend no longer knows
    UNAVAILABLE = "unavailable"


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _coerce_status(value, available: bool) -> BookStatus:
    if isinstance(value, BookStatus):
        return value
    try:
        return BookStatus(str(value or "").strip().lower())
    except ValueError:
        return BookStatus.AVAILABLE if available else BookStatus.UNAVAILABLE


class Book(BaseModel):
    """A single second-hand book as listed by the backend.

    Books are read-only here; only the backend changes availability, and
    the storefront notices by fetching again. ``price`` is whole Uganda
    shillings. A missing price is treated as 0, as the shop page did.
    """

    model_config = ConfigDict(populate_by_name=True)

    code: str
    title: str = ""
    author: str = ""
    category: str = ""
    age_group: str = Field(default="", alias="ageGroup")
    price: int = 0
    image: str = ""
    available: bool = False
    status: BookStatus = BookStatus.UNAVAILABLE

    @field_validator("code", mode="before")
    @classmethod
    def _code_as_text(cls, value):
        return str(value).strip() if value is not None else value

    @field_validator("title", "author", "category", "age_group", "image", mode="before")
    @classmethod
    def _text_or_empty(cls, value):
        if value is None:
            return ""
        return str(value)

    @field_validator("price", mode="before")
    @classmethod
    def _price_or_zero(cls, value):
        if value in (None, ""):
            return 0
        if isinstance(value, (float, str)):
            # Sheets hand back 12500.0 or "12500"; whole shillings only
            try:
                return int(Decimal(str(value).strip()).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
            except (InvalidOperation, ValueError):
                raise ValueError(f"price is not a number: {value!r}")
        return value

    @model_validator(mode="before")
    @classmethod
    def _derive_status(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            available = _truthy(data.get("available"))
            data["status"] = _coerce_status(data.get("status"), available)
        return data

    @computed_field
    @property
    def badge(self) -> Optional[str]:
        """Label shown over the cover of a book that cannot be bought."""
        if self.available:
            return None
        if self.status in (BookStatus.RESERVED, BookStatus.SOLD):
            return self.status.value.upper()
        return "UNAVAILABLE"


class Availability(BaseModel):
    available: bool = False
    status: BookStatus = BookStatus.UNAVAILABLE

    @model_validator(mode="before")
    @classmethod
    def _derive_status(cls, data):
        if isinstance(data, dict):
            data = dict(data)
            available = _truthy(data.get("available"))
            data["status"] = _coerce_status(data.get("status"), available)
        return data


AvailabilityMap = Dict[str, Availability]


class DeliveryPrice(BaseModel):
    found: bool = False
    matched: str = ""
    price: int = 0

    @field_validator("price", "matched", mode="before")
    @classmethod
    def _none_to_default(cls, value, info):
        if value is None:
            return 0 if info.field_name == "price" else ""
        return value


class PromoCheck(BaseModel):
    valid: bool = False
    code: str = ""
    discount: float = 0.0


class FilterOptions(BaseModel):
    categories: List[str]
    age_groups: List[str]
    price_ranges: List[str]
