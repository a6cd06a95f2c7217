from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


DEFAULT_CART_FILE = Path(__file__).resolve().parents[1] / "data" / "carts.json"


class Settings(BaseSettings):
    # Google Apps Script web app that owns books, delivery areas and orders
    backend_url: str = ""
    api_key: str = ""

    request_timeout: float = 30
    order_timeout: float = 45

    # Lookup caches, in seconds
    delivery_areas_ttl: int = 3 * 60 * 60
    promo_ttl: int = 60 * 60
    # Area text is free-form, so this one is keyed on the normalised area
    cache_delivery_price: bool = False
    delivery_price_ttl: int = 60 * 60

    free_delivery_threshold: int = 300_000
    order_auto_close_seconds: int = 7

    cart_file: Path = DEFAULT_CART_FILE
    session_cookie: str = "lrp_session"
    # Live sessions held in memory; carts outlive eviction in cart_file
    max_sessions: int = 10_000
    session_idle_seconds: int = 2 * 60 * 60

    @property
    def backend_configured(self) -> bool:
        return bool(self.backend_url.strip())

    class Config:
        env_prefix = "STOREFRONT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
