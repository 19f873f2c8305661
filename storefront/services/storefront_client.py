"""
Storefront API Client

GraphQL client for the remote commerce service. Every call is a single POST;
retries and backoff are left to the caller.
"""

import json
import logging
import time
from enum import Enum
from typing import Any, Optional

import httpx

from ..core.config import Settings

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """Base exception for storefront errors"""
    pass


class StorefrontAPIError(StorefrontError):
    """Transport or service fault: HTTP failure or top-level GraphQL errors"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CacheMode(str, Enum):
    """Client-side response caching; never affects mutation correctness"""
    NO_STORE = "no-store"
    SHORT = "short-lived"
    LONG = "long-lived"


CACHE_TTL = {
    CacheMode.NO_STORE: 0,
    CacheMode.SHORT: 60,
    CacheMode.LONG: 60 * 60 * 24,
}


def cache_control_header(mode: CacheMode) -> str:
    """Cache-Control header value for a cache mode"""
    if mode == CacheMode.NO_STORE:
        return "no-store, no-cache, must-revalidate"
    ttl = CACHE_TTL[mode]
    return f"public, max-age={ttl}, s-maxage={ttl}"


class StorefrontClient:
    """
    Client for the Storefront GraphQL API.

    The server-executed client authenticates with the private token; the
    browser-executed one uses the public token and keeps an in-process cache
    of query responses.

    Usage:
        client = StorefrontClient.from_settings(settings)
        data = await client.query(GET_CART_QUERY, variables={"cartId": cart_id})
        await client.close()
    """

    def __init__(
        self,
        endpoint: str,
        access_token: Optional[str],
        language: str = "EN",
        country: str = "US",
        timeout: float = 30.0,
        cache_responses: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize storefront client.

        Args:
            endpoint: Full GraphQL endpoint URL
            access_token: Storefront access token sent with every request
            language: Default language injected into query variables
            country: Default country injected into query variables
            timeout: Request timeout in seconds
            cache_responses: Cache non-mutation responses in process
            http_client: Pre-built httpx client (tests, shared pools)
        """
        self.endpoint = endpoint
        self.i18n = {"language": language, "country": country}
        self.cache_responses = cache_responses
        self._access_token = access_token
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._cache: dict[str, tuple[float, dict[str, Any]]] = {}

        if not access_token:
            logger.warning("No storefront access token configured - requests will be anonymous")

    @classmethod
    def from_settings(cls, settings: Settings, browser: bool = False) -> "StorefrontClient":
        """Build the server (private token) or browser (public token) client"""
        if browser:
            token = settings.public_storefront_token
        else:
            token = settings.private_storefront_token or settings.public_storefront_token

        return cls(
            endpoint=settings.storefront_url,
            access_token=token,
            language=settings.language,
            country=settings.country,
            timeout=settings.request_timeout,
            cache_responses=browser,
        )

    async def close(self) -> None:
        """Close HTTP client"""
        await self._http_client.aclose()

    def set_i18n(self, language: str, country: str) -> "StorefrontClient":
        """Set internationalization context"""
        self.i18n = {"language": language, "country": country}
        return self

    def clear_cache(self) -> None:
        self._cache.clear()

    def _headers(self, cache: CacheMode) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Cache-Control": cache_control_header(cache),
        }
        if self._access_token:
            headers["X-Shopify-Storefront-Access-Token"] = self._access_token
        return headers

    def _cache_key(self, document: str, variables: dict[str, Any]) -> str:
        return document + json.dumps(variables, sort_keys=True, default=str)

    def _prune_cache(self) -> None:
        now = time.monotonic()
        for key in [key for key, (expires, _) in self._cache.items() if expires <= now]:
            del self._cache[key]

    async def query(
        self,
        document: str,
        variables: Optional[dict[str, Any]] = None,
        cache: CacheMode = CacheMode.LONG,
    ) -> dict[str, Any]:
        """
        Execute a query or mutation and return its ``data`` payload.

        Raises:
            StorefrontAPIError: on HTTP failure or GraphQL ``errors``
        """
        variables = {**(variables or {}), **self.i18n}

        cache_key = None
        if self.cache_responses and cache != CacheMode.NO_STORE:
            self._prune_cache()
            cache_key = self._cache_key(document, variables)
            cached = self._cache.get(cache_key)
            if cached:
                return cached[1]

        try:
            response = await self._http_client.post(
                self.endpoint,
                headers=self._headers(cache),
                json={"query": document, "variables": variables},
            )
        except httpx.HTTPError as e:
            logger.error(f"Storefront request failed: {e}")
            raise StorefrontAPIError(f"Storefront API unreachable: {e}") from e

        if response.status_code >= 400:
            logger.error(f"Storefront API error: {response.status_code} - {response.text}")
            raise StorefrontAPIError(
                f"Storefront API error: {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise StorefrontAPIError("Storefront API returned invalid JSON") from e

        if payload.get("errors"):
            messages = ", ".join(e.get("message", "unknown") for e in payload["errors"])
            raise StorefrontAPIError(f"Storefront GraphQL error: {messages}")

        data = payload.get("data") or {}
        logger.debug(f"Storefront query ok ({len(document)} bytes, cache={cache.value})")

        if cache_key:
            self._cache[cache_key] = (time.monotonic() + CACHE_TTL[cache], data)

        return data
