"""
Session Identity Store

Holds the two opaque session tokens (cart id, customer access token) outside
process memory. The server keeps them in HTTP cookies, the browser-executed
side in persisted local storage. Both implementations share one contract and
are chosen once, when the context is constructed.
"""

import json
import logging
import time
from typing import Optional, Protocol
from urllib.parse import quote, unquote

from fastapi import Request, Response

from .storage import LocalStorage

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = 60 * 60 * 24 * 14  # 14 days


def encode_token(value: str) -> str:
    """URL-safe encoding for opaque identifiers (cart ids contain '/' and '?')"""
    return quote(value, safe="")


def decode_token(raw: Optional[str]) -> Optional[str]:
    """Inverse of encode_token; malformed values read as missing"""
    if not raw:
        return None
    try:
        value = unquote(raw, errors="strict")
    except UnicodeDecodeError:
        logger.warning("Discarding undecodable session value")
        return None
    return value or None


class SessionStore(Protocol):
    """Contract shared by the server and browser session stores"""

    def get_cart_id(self) -> Optional[str]: ...

    def set_cart_id(self, cart_id: str) -> None: ...

    def get_customer_token(self) -> Optional[str]: ...

    def set_customer_token(self, token: str) -> None: ...

    def remove_customer_token(self) -> None: ...


class CookieSessionStore:
    """
    Server-side session store.

    Reads tokens from the incoming request's cookies and writes them to the
    outgoing response. Writes are also remembered locally so that later reads
    within the same request observe them.
    """

    def __init__(
        self,
        request: Request,
        response: Response,
        cart_cookie: str = "shopify_cart_id",
        customer_cookie: str = "shopify_customer_token",
        max_age: int = DEFAULT_MAX_AGE,
        secure: bool = True,
    ):
        self.request = request
        self.response = response
        self.cart_cookie = cart_cookie
        self.customer_cookie = customer_cookie
        self.max_age = max_age
        self.secure = secure
        self._written: dict[str, Optional[str]] = {}

    def _read(self, name: str) -> Optional[str]:
        if name in self._written:
            return self._written[name]
        return decode_token(self.request.cookies.get(name))

    def _write(self, name: str, value: str) -> None:
        self._written[name] = value
        self.response.set_cookie(
            name,
            encode_token(value),
            max_age=self.max_age,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )

    def get_cart_id(self) -> Optional[str]:
        return self._read(self.cart_cookie)

    def set_cart_id(self, cart_id: str) -> None:
        self._write(self.cart_cookie, cart_id)

    def get_customer_token(self) -> Optional[str]:
        return self._read(self.customer_cookie)

    def set_customer_token(self, token: str) -> None:
        self._write(self.customer_cookie, token)

    def remove_customer_token(self) -> None:
        self._written[self.customer_cookie] = None
        self.response.delete_cookie(self.customer_cookie, path="/")


class LocalSessionStore:
    """
    Browser-equivalent session store.

    Entries are kept in local storage together with their expiry so they lapse
    after the same lifetime as the server cookies.
    """

    def __init__(
        self,
        storage: LocalStorage,
        cart_key: str = "shopify_cart_id",
        customer_key: str = "shopify_customer_token",
        max_age: int = DEFAULT_MAX_AGE,
    ):
        self.storage = storage
        self.cart_key = cart_key
        self.customer_key = customer_key
        self.max_age = max_age

    def _read(self, key: str) -> Optional[str]:
        raw = self.storage.get_item(key)
        if raw is None:
            return None

        try:
            entry = json.loads(raw)
            value, expires = entry["value"], float(entry["expires"])
            if not isinstance(value, str):
                raise TypeError(f"session value must be a string, got {type(value).__name__}")
        except (ValueError, TypeError, KeyError):
            logger.warning(f"Discarding corrupt session entry '{key}'")
            self.storage.remove_item(key)
            return None

        if expires <= time.time():
            self.storage.remove_item(key)
            return None

        return decode_token(value)

    def _write(self, key: str, value: str) -> None:
        entry = {"value": encode_token(value), "expires": time.time() + self.max_age}
        self.storage.set_item(key, json.dumps(entry))

    def get_cart_id(self) -> Optional[str]:
        return self._read(self.cart_key)

    def set_cart_id(self, cart_id: str) -> None:
        self._write(self.cart_key, cart_id)

    def get_customer_token(self) -> Optional[str]:
        return self._read(self.customer_key)

    def set_customer_token(self, token: str) -> None:
        self._write(self.customer_key, token)

    def remove_customer_token(self) -> None:
        self.storage.remove_item(self.customer_key)
