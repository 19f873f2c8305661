"""
Pytest fixtures and configuration for storefront tests

Services are exercised against an in-memory stand-in for the Storefront API
that answers by GraphQL operation name and records every call.
"""
import re
from decimal import Decimal

import pytest

from storefront.core.config import Settings
from storefront.core.session import LocalSessionStore
from storefront.core.storage import LocalStorage
from storefront.services.storefront_client import CacheMode

CART_ID = "gid://shopify/Cart/c1?key=abc123"
CUSTOMER_ID = "gid://shopify/Customer/7"

_OPERATION = re.compile(r"\b(?:query|mutation)\s+(\w+)")


class FakeStorefront:
    """
    Scripted Storefront API.

    Responses are queued per operation name. The last queued response keeps
    answering once the others are used up; an exception instance is raised
    instead of returned.
    """

    def __init__(self):
        self.responses: dict[str, list] = {}
        self.calls: list[tuple[str, dict]] = []

    def on(self, operation: str, *responses) -> "FakeStorefront":
        self.responses.setdefault(operation, []).extend(responses)
        return self

    async def query(self, document: str, variables=None, cache=CacheMode.LONG):
        operation = _OPERATION.search(document).group(1)
        self.calls.append((operation, variables or {}))

        queue = self.responses.get(operation)
        if not queue:
            raise AssertionError(f"Unexpected operation: {operation}")

        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def variables(self, operation: str) -> dict:
        """Variables of the most recent call to ``operation``"""
        return [variables for name, variables in self.calls if name == operation][-1]

    async def close(self):
        pass


def money(amount, currency: str = "USD") -> dict:
    return {"amount": str(amount), "currencyCode": currency}


def build_line(line_id: str, variant_id: str, quantity: int = 1, price: str = "10.00") -> dict:
    total = Decimal(price) * quantity
    return {
        "id": line_id,
        "quantity": quantity,
        "attributes": [],
        "cost": {
            "totalAmount": money(total),
            "subtotalAmount": money(total),
            "amountPerQuantity": money(price),
        },
        "merchandise": {
            "id": variant_id,
            "title": "Medium",
            "selectedOptions": [{"name": "Size", "value": "M"}],
            "product": {
                "id": "gid://shopify/Product/1",
                "title": "Linen Shirt",
                "handle": "linen-shirt",
                "vendor": "Acme",
            },
            "image": {"url": "https://cdn.example.com/shirt.jpg", "altText": "Shirt"},
            "price": money(price),
            "compareAtPrice": None,
        },
    }


def build_cart(lines=(), discount_codes=(), cart_id: str = CART_ID) -> dict:
    lines = list(lines)
    subtotal = sum((Decimal(line["cost"]["subtotalAmount"]["amount"]) for line in lines), Decimal("0.00"))
    return {
        "id": cart_id,
        "checkoutUrl": "https://test-store.myshopify.com/cart/c/c1",
        "totalQuantity": sum(line["quantity"] for line in lines),
        "buyerIdentity": None,
        "lines": {"edges": [{"node": line} for line in lines]},
        "cost": {
            "subtotalAmount": money(subtotal),
            "totalAmount": money(subtotal),
            "totalTaxAmount": money("0.00"),
        },
        "attributes": [],
        "discountCodes": list(discount_codes),
    }


def build_address(address_id: str, city: str = "Portland") -> dict:
    return {
        "id": address_id,
        "formatted": ["1 Main St", f"{city} OR 97201", "United States"],
        "firstName": "Ada",
        "lastName": "Lovelace",
        "address1": "1 Main St",
        "city": city,
        "province": "Oregon",
        "country": "United States",
        "zip": "97201",
    }


def build_customer(addresses=(), default_address=None, customer_id: str = CUSTOMER_ID) -> dict:
    return {
        "id": customer_id,
        "firstName": "Ada",
        "lastName": "Lovelace",
        "displayName": "Ada Lovelace",
        "email": "ada@example.com",
        "phone": None,
        "defaultAddress": default_address,
        "addresses": {"edges": [{"node": address} for address in addresses]},
    }


@pytest.fixture
def settings():
    """Settings for a test store; nothing is read from the environment file"""
    return Settings(
        _env_file=None,
        store_domain="test-store.myshopify.com",
        public_storefront_token="public-token",
        private_storefront_token="private-token",
        notification_duration=0.05,
    )


@pytest.fixture
def storage():
    """In-memory local storage"""
    return LocalStorage()


@pytest.fixture
def session(storage):
    return LocalSessionStore(storage)


@pytest.fixture
def storefront():
    return FakeStorefront()


@pytest.fixture
def line_payload():
    return build_line


@pytest.fixture
def cart_payload():
    return build_cart


@pytest.fixture
def customer_payload():
    return build_customer


@pytest.fixture
def address_payload():
    return build_address
