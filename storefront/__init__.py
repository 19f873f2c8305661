"""Shopify storefront cart, customer and wishlist state synchronization"""

__version__ = "1.0.0"
