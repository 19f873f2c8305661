"""Wishlist models"""

from datetime import datetime
from typing import Optional

from .common import Money, StorefrontModel


class WishlistItem(StorefrontModel):
    """Saved variant with the display fields needed to render it offline"""
    variant_id: str
    product_id: Optional[str] = None
    handle: Optional[str] = None
    title: Optional[str] = None
    variant_title: Optional[str] = None
    image_url: Optional[str] = None
    price: Optional[Money] = None
    added_at: Optional[datetime] = None
