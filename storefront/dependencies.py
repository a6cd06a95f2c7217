from fastapi import HTTPException, Request, Response

from .catalog.backend_service import BackendGateway
from .catalog.store import CatalogStore
from .checkout.session import SessionRegistry, ShopSession
from .config import Settings
from .errors import StorefrontError


def get_gateway(request: Request) -> BackendGateway:
    return request.app.state.gateway


def get_catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


def get_session(request: Request, response: Response) -> ShopSession:
    """The visitor's session, keyed by cookie. Issues a cookie if needed."""
    settings: Settings = request.app.state.settings
    registry: SessionRegistry = request.app.state.sessions
    session_id = request.cookies.get(settings.session_cookie)
    session = registry.get(session_id)
    if session.id != session_id:
        response.set_cookie(settings.session_cookie, session.id, httponly=True, samesite="lax")
    return session


def load_catalog(catalog: CatalogStore, refresh: bool = False) -> None:
    """Make sure books are held; 502 if the backend failed and none are."""
    result = catalog.load() if refresh else catalog.ensure_loaded()
    # A failed refresh still serves the last good list
    if result is not None and not result.ok and not catalog.loaded:
        raise HTTPException(status_code=502, detail=result.error)


def to_http(exc: StorefrontError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.message)
