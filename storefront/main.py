# storefront/main.py
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .catalog.backend_service import BackendGateway, Transport
from .catalog.router import router as catalog_router
from .catalog.store import CatalogStore
from .checkout.router import router as checkout_router
from .checkout.session import SessionRegistry
from .config import Settings, get_settings


def create_app(settings: Optional[Settings] = None, transport: Optional[Transport] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        # Cached lookups must not outlive the process configuration
        app.state.gateway.clear_cache()

    app = FastAPI(
        title="Little Readers UG Storefront",
        description=(
            "Catalogue, cart and checkout for Little Readers UG. Books, "
            "delivery areas, promo codes and orders are served by the "
            "book-service backend; this service keeps carts and computes totals."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    gateway = BackendGateway(settings, transport=transport)
    app.state.settings = settings
    app.state.gateway = gateway
    app.state.catalog = CatalogStore(gateway)
    app.state.sessions = SessionRegistry(settings)

    @app.get("/")
    def health_check():
        return {
            "status": "ok",
            "backend_configured": settings.backend_configured,
            "books_loaded": app.state.catalog.loaded,
        }

    app.include_router(catalog_router)
    app.include_router(checkout_router)
    return app


app = create_app()
