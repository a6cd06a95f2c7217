"""
Route definitions for the catalogue API.

Endpoints under /api/catalog:
- GET /books                : list books, filtered by category, age group, price range, search
- GET /books/{code}         : one book by code
- GET /filters              : option lists for the filter controls
- GET /delivery-areas       : areas the shop delivers to (cached by the gateway)
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..dependencies import get_catalog, get_gateway, load_catalog
from .backend_service import BackendGateway
from .schemas import Book, FilterOptions
from .store import CatalogFilter, CatalogStore, PriceRange, filter_options

router = APIRouter(prefix="/api/catalog", tags=["catalog"])


@router.get("/books", response_model=List[Book])
def list_books(
    category: Optional[str] = Query(default=None, description="Exact category"),
    age_group: Optional[str] = Query(default=None, description="Exact age group"),
    price_range: Optional[PriceRange] = Query(default=None, description="Price bucket"),
    q: Optional[str] = Query(default=None, description="Search title or author"),
    refresh: bool = Query(default=False, description="Fetch the catalogue again"),
    catalog: CatalogStore = Depends(get_catalog),
) -> List[Book]:
    """
    Returns the books matching every given filter.

    Empty filters match everything, so the reset button simply calls this
    endpoint without parameters.
    """
    load_catalog(catalog, refresh)
    criteria = CatalogFilter(
        category=category or None,
        age_group=age_group or None,
        price_range=price_range,
        q=q or None,
    )
    return catalog.search(criteria)


@router.get("/books/{code}", response_model=Book)
def get_book(code: str, catalog: CatalogStore = Depends(get_catalog)) -> Book:
    load_catalog(catalog)
    book = catalog.find(code)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    return book


@router.get("/filters", response_model=FilterOptions)
def get_filters() -> FilterOptions:
    return filter_options()


@router.get("/delivery-areas", response_model=List[str])
def delivery_areas(gateway: BackendGateway = Depends(get_gateway)) -> List[str]:
    result = gateway.delivery_areas()
    if not result.ok:
        raise HTTPException(status_code=502, detail=result.error)
    return result.data
