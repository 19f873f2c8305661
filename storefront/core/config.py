"""Storefront Configuration"""

from typing import Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment"""

    # Application
    app_name: str = "Storefront"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS - comma-separated origins
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # Storefront API Configuration
    store_domain: str = "example.myshopify.com"
    public_storefront_token: Optional[str] = None
    private_storefront_token: Optional[str] = None
    api_version: str = "2025-01"
    language: str = "EN"
    country: str = "US"
    request_timeout: float = 30.0

    # Session Identity
    cart_cookie_name: str = "shopify_cart_id"
    customer_token_cookie_name: str = "shopify_customer_token"
    session_max_age: int = 60 * 60 * 24 * 14  # 14 days
    cookie_secure: bool = True

    # Browser-side persisted storage (None keeps it in memory)
    local_storage_path: Optional[str] = None

    # Wishlist
    wishlist_storage_key: str = "shopify_wishlist"
    wishlist_metafield_namespace: str = "wishlist"
    wishlist_metafield_key: str = "items"

    # Feedback
    notification_duration: float = 3.0

    # Queue cart mutations per cart id instead of last-response-wins
    serialize_cart_mutations: bool = False

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def storefront_url(self) -> str:
        """GraphQL endpoint for the configured store"""
        domain = self.store_domain.rstrip("/")
        if "://" not in domain:
            domain = f"https://{domain}"
        return f"{domain}/api/{self.api_version}/graphql.json"

    def get_allowed_origins(self) -> list[str]:
        """Parse allowed_origins into a list"""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
