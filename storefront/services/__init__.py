# Services

from .storefront_client import StorefrontClient, StorefrontError, StorefrontAPIError, CacheMode
from .cart_service import CartService, CartError, MissingCartError, CartCreateError
from .customer_service import CustomerService
from .metafields import CustomerMetafields
from .wishlist_service import WishlistService, WishlistStorageError, merge_wishlists

__all__ = [
    "StorefrontClient",
    "StorefrontError",
    "StorefrontAPIError",
    "CacheMode",
    "CartService",
    "CartError",
    "MissingCartError",
    "CartCreateError",
    "CustomerService",
    "CustomerMetafields",
    "WishlistService",
    "WishlistStorageError",
    "merge_wishlists",
]
