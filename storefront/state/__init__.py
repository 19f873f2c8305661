# Reactive state

from .cart import CartState, format_cart_line
from .customer import CustomerState, format_address, format_addresses
from .wishlist import WishlistState

__all__ = [
    "CartState",
    "CustomerState",
    "WishlistState",
    "format_cart_line",
    "format_address",
    "format_addresses",
]
