# Storefront API Routes

from .cart import router as cart_router
from .account import router as account_router

__all__ = ["cart_router", "account_router"]
