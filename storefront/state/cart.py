"""
Cart state

Observables the UI subscribes to. Only the cart service writes the cart,
error and result channels; the drawer flag is plain UI state.
"""

from typing import Any, Optional

from ..core.observable import Derived, MessageChannel, Writable
from ..models.cart import Cart, CartLine, DiscountCode
from ..models.common import Money, OperationResult


def cart_lines(cart: Optional[Cart]) -> list[CartLine]:
    return list(cart.lines) if cart else []


def cart_quantity(cart: Optional[Cart]) -> int:
    if not cart:
        return 0
    return cart.total_quantity or sum(line.quantity for line in cart.lines)


def cart_subtotal(cart: Optional[Cart]) -> Optional[Money]:
    return cart.cost.subtotal_amount if cart and cart.cost else None


def cart_total(cart: Optional[Cart]) -> Optional[Money]:
    return cart.cost.total_amount if cart and cart.cost else None


def cart_tax(cart: Optional[Cart]) -> Optional[Money]:
    return cart.cost.total_tax_amount if cart and cart.cost else None


def cart_discounts(cart: Optional[Cart]) -> list[DiscountCode]:
    """Applicable discount codes only"""
    if not cart:
        return []
    return [d for d in cart.discount_codes if d.applicable]


def format_cart_line(line: Optional[CartLine]) -> Optional[dict[str, Any]]:
    """Flatten a cart line for display"""
    if line is None:
        return None

    merchandise = line.merchandise
    product = merchandise.product
    cost = line.cost

    return {
        "id": line.id,
        "quantity": line.quantity,
        "product": {
            "id": product.id if product else None,
            "title": product.title if product else None,
            "handle": product.handle if product else None,
            "vendor": product.vendor if product else None,
        },
        "variant": {
            "id": merchandise.id,
            "title": merchandise.title,
            "image": merchandise.image,
            "price": merchandise.price,
            "compare_at_price": merchandise.compare_at_price,
            "selected_options": list(merchandise.selected_options),
        },
        "attributes": {attr.key: attr.value for attr in line.attributes},
        "cost": {
            "total": cost.total_amount if cost else None,
            "subtotal": cost.subtotal_amount if cost else None,
            "per_item": cost.amount_per_quantity if cost else None,
        },
    }


class CartState:
    """Shared cart observables for one execution context"""

    def __init__(self, notification_duration: float = 3.0):
        self._cart: Writable[Optional[Cart]] = Writable(None)
        self._is_open: Writable[bool] = Writable(False)
        self._error: Writable[Optional[str]] = Writable(None)
        self._result: MessageChannel[OperationResult] = MessageChannel(notification_duration)

        self.cart = self._cart.readonly()
        self.is_cart_open = self._is_open.readonly()
        self.cart_error = self._error.readonly()
        self.cart_operation_result = self._result

        self.cart_lines = Derived(self._cart, cart_lines)
        self.cart_quantity = Derived(self._cart, cart_quantity)
        self.cart_subtotal = Derived(self._cart, cart_subtotal)
        self.cart_total = Derived(self._cart, cart_total)
        self.cart_tax = Derived(self._cart, cart_tax)
        self.cart_discounts = Derived(self._cart, cart_discounts)
        self.is_cart_empty = Derived(self._cart, lambda cart: cart_quantity(cart) == 0)

    # Service-side writes

    def publish_cart(self, cart: Optional[Cart]) -> None:
        self._cart.set(cart)

    def publish_result(self, result: OperationResult) -> None:
        self._error.set(None if result.success else result.message)
        self._result.publish(result)

    # Drawer

    def open_cart(self) -> None:
        self._is_open.set(True)

    def close_cart(self) -> None:
        self._is_open.set(False)

    def toggle_cart(self) -> None:
        self._is_open.update(lambda value: not value)
