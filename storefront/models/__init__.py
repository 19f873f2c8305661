# Storefront Models

from .common import Money, UserError, PageInfo, Severity, OperationResult
from .cart import (
    Attribute,
    Cart,
    CartLine,
    CartCost,
    DiscountCode,
    BuyerIdentity,
    Merchandise,
    CartLineInput,
    CartLineUpdateInput,
    BuyerIdentityInput,
    CartOutcome,
    CartMutationResult,
)
from .customer import (
    Address,
    AddressInput,
    Customer,
    CustomerCreateInput,
    CustomerUpdateInput,
    CustomerResult,
    Order,
    OrdersPage,
    Metafield,
    MetafieldResult,
)
from .wishlist import WishlistItem

__all__ = [
    "Money",
    "UserError",
    "PageInfo",
    "Severity",
    "OperationResult",
    "Attribute",
    "Cart",
    "CartLine",
    "CartCost",
    "DiscountCode",
    "BuyerIdentity",
    "Merchandise",
    "CartLineInput",
    "CartLineUpdateInput",
    "BuyerIdentityInput",
    "CartOutcome",
    "CartMutationResult",
    "Address",
    "AddressInput",
    "Customer",
    "CustomerCreateInput",
    "CustomerUpdateInput",
    "CustomerResult",
    "Order",
    "OrdersPage",
    "Metafield",
    "MetafieldResult",
    "WishlistItem",
]
