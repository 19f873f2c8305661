"""Customer state and address projections"""

from typing import Any, Optional

from ..core.observable import Derived, MessageChannel, Writable
from ..models.common import OperationResult
from ..models.customer import Address, Customer


def customer_name(customer: Optional[Customer]) -> str:
    if not customer:
        return ""
    parts = [p for p in (customer.first_name, customer.last_name) if p]
    return " ".join(parts)


def customer_email(customer: Optional[Customer]) -> str:
    return (customer.email or "") if customer else ""


def customer_addresses(customer: Optional[Customer]) -> list[Address]:
    return list(customer.addresses) if customer else []


def default_address(customer: Optional[Customer]) -> Optional[Address]:
    if not customer or not customer.default_address:
        return None
    default_id = customer.default_address_id
    match = next((a for a in customer.addresses if a.id == default_id), None)
    return match or customer.default_address


def format_address(address: Optional[Address]) -> Optional[dict[str, Any]]:
    """Display form of an address with empty strings for missing fields"""
    if address is None:
        return None

    return {
        "id": address.id,
        "first_name": address.first_name or "",
        "last_name": address.last_name or "",
        "company": address.company or "",
        "address1": address.address1 or "",
        "address2": address.address2 or "",
        "city": address.city or "",
        "province": address.province or "",
        "zip": address.zip or "",
        "country": address.country or "",
        "phone": address.phone or "",
        "formatted": list(address.formatted),
        "is_default": False,
    }


def format_addresses(addresses: Optional[list[Address]], default_address_id: Optional[str]) -> list[dict[str, Any]]:
    """Format addresses, flagging the one matching the default address id"""
    if not addresses:
        return []

    formatted = []
    for address in addresses:
        item = format_address(address)
        item["is_default"] = address.id is not None and address.id == default_address_id
        formatted.append(item)
    return formatted


class CustomerState:
    """Shared customer observables for one execution context"""

    def __init__(self, notification_duration: float = 3.0):
        self._customer: Writable[Optional[Customer]] = Writable(None)
        self._authenticated: Writable[bool] = Writable(False)
        self._result: MessageChannel[OperationResult] = MessageChannel(notification_duration)

        self.customer = self._customer.readonly()
        # Token presence, not customer presence: a fresh login is
        # logged in before its customer has been fetched.
        self.is_logged_in = self._authenticated.readonly()
        self.customer_operation_result = self._result

        self.customer_name = Derived(self._customer, customer_name)
        self.customer_email = Derived(self._customer, customer_email)
        self.customer_addresses = Derived(self._customer, customer_addresses)
        self.default_address = Derived(self._customer, default_address)

    def publish_customer(self, customer: Optional[Customer]) -> None:
        self._customer.set(customer)

    def set_authenticated(self, authenticated: bool) -> None:
        if self._authenticated.get_current() != authenticated:
            self._authenticated.set(authenticated)

    def publish_result(self, result: OperationResult) -> None:
        self._result.publish(result)
