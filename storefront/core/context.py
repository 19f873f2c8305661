"""
Composition root.

Builds the state containers and services for one execution context. The
server context lives for a single request and keeps its tokens in cookies;
the browser context lives for the client session and keeps them in local
storage. Both have the same shape and never share state.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request, Response

from .config import Settings
from .observable import Readable
from .session import CookieSessionStore, LocalSessionStore, SessionStore
from .storage import LocalStorage
from ..services.cart_service import CartService
from ..services.customer_service import CustomerService
from ..services.metafields import CustomerMetafields
from ..services.storefront_client import StorefrontClient
from ..services.wishlist_service import LocalWishlistStore, RemoteWishlistStore, WishlistService
from ..state.cart import CartState
from ..state.customer import CustomerState
from ..state.wishlist import WishlistState


@dataclass
class StorefrontContext:
    """Everything the UI of one context reads from and calls into"""
    settings: Settings
    client: StorefrontClient
    session: SessionStore
    storage: LocalStorage
    cart_state: CartState
    customer_state: CustomerState
    wishlist_state: WishlistState
    cart: CartService
    customer: CustomerService
    metafields: CustomerMetafields
    wishlist: WishlistService

    def observables(self) -> dict[str, Readable]:
        """The named observables published to the UI"""
        cart, customer, wishlist = self.cart_state, self.customer_state, self.wishlist_state
        return {
            "cart": cart.cart,
            "cartLines": cart.cart_lines,
            "cartQuantity": cart.cart_quantity,
            "cartSubtotal": cart.cart_subtotal,
            "cartTotal": cart.cart_total,
            "cartTax": cart.cart_tax,
            "cartDiscounts": cart.cart_discounts,
            "isCartEmpty": cart.is_cart_empty,
            "isCartOpen": cart.is_cart_open,
            "cartError": cart.cart_error,
            "cartOperationResult": cart.cart_operation_result,
            "customer": customer.customer,
            "isLoggedIn": customer.is_logged_in,
            "customerName": customer.customer_name,
            "customerEmail": customer.customer_email,
            "customerAddresses": customer.customer_addresses,
            "defaultAddress": customer.default_address,
            "wishlistItems": wishlist.wishlist_items,
            "wishlistCount": wishlist.wishlist_count,
            "wishlistMessage": wishlist.wishlist_message,
        }


def _assemble(
    settings: Settings,
    client: StorefrontClient,
    session: SessionStore,
    storage: LocalStorage,
) -> StorefrontContext:
    duration = settings.notification_duration

    cart_state = CartState(notification_duration=duration)
    customer_state = CustomerState(notification_duration=duration)
    wishlist_state = WishlistState(notification_duration=duration)

    cart = CartService(
        client,
        session,
        cart_state,
        serialize_mutations=settings.serialize_cart_mutations,
    )
    customer = CustomerService(client, session, customer_state)
    metafields = CustomerMetafields(client, customer)
    wishlist = WishlistService(
        wishlist_state,
        LocalWishlistStore(storage, settings.wishlist_storage_key),
        RemoteWishlistStore(
            metafields,
            settings.wishlist_metafield_namespace,
            settings.wishlist_metafield_key,
        ),
    )

    return StorefrontContext(
        settings=settings,
        client=client,
        session=session,
        storage=storage,
        cart_state=cart_state,
        customer_state=customer_state,
        wishlist_state=wishlist_state,
        cart=cart,
        customer=customer,
        metafields=metafields,
        wishlist=wishlist,
    )


def create_browser_context(
    settings: Settings,
    client: Optional[StorefrontClient] = None,
    storage: Optional[LocalStorage] = None,
) -> StorefrontContext:
    """
    Context for a browser-executed session.

    The wishlist follows the published customer, so logging in merges the
    guest wishlist into the account.
    """
    if storage is None:
        storage = LocalStorage(settings.local_storage_path)
    session = LocalSessionStore(
        storage,
        cart_key=settings.cart_cookie_name,
        customer_key=settings.customer_token_cookie_name,
        max_age=settings.session_max_age,
    )
    client = client or StorefrontClient.from_settings(settings, browser=True)

    context = _assemble(settings, client, session, storage)
    context.wishlist.bind(context.customer_state.customer)
    return context


def create_server_context(
    settings: Settings,
    client: StorefrontClient,
    request: Request,
    response: Response,
) -> StorefrontContext:
    """Context for one server request; tokens travel as cookies"""
    session = CookieSessionStore(
        request,
        response,
        cart_cookie=settings.cart_cookie_name,
        customer_cookie=settings.customer_token_cookie_name,
        max_age=settings.session_max_age,
        secure=settings.cookie_secure,
    )
    return _assemble(settings, client, session, LocalStorage())
