"""
Cart Service

Runs cart mutations against the Storefront API and reconciles the returned
cart into the shared cart state. Each mutation result is compared against the
request and classified as full success, partial success (warning) or failure
(error, followed by a quiet refresh from the server).
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from pydantic import ValidationError

from ..core.session import SessionStore
from ..models.cart import (
    Attribute,
    BuyerIdentityInput,
    Cart,
    CartLineInput,
    CartLineUpdateInput,
    CartMutationResult,
    CartOutcome,
)
from ..models.common import OperationResult, UserError
from ..state.cart import CartState
from .storefront_client import CacheMode, StorefrontAPIError, StorefrontClient, StorefrontError

logger = logging.getLogger(__name__)


CART_FRAGMENT = """
  fragment CartFragment on Cart {
    id
    checkoutUrl
    totalQuantity
    buyerIdentity {
      countryCode
      customer { id email firstName lastName displayName }
      email
      phone
    }
    lines(first: 100) {
      edges {
        node {
          id
          quantity
          attributes { key value }
          cost {
            totalAmount { amount currencyCode }
            subtotalAmount { amount currencyCode }
            amountPerQuantity { amount currencyCode }
          }
          merchandise {
            ... on ProductVariant {
              id
              title
              selectedOptions { name value }
              product { id title handle vendor }
              image { id url altText width height }
              price { amount currencyCode }
              compareAtPrice { amount currencyCode }
            }
          }
        }
      }
    }
    cost {
      subtotalAmount { amount currencyCode }
      totalAmount { amount currencyCode }
      totalDutyAmount { amount currencyCode }
      totalTaxAmount { amount currencyCode }
    }
    attributes { key value }
    discountCodes { code applicable }
  }
"""

GET_CART_QUERY = """
  query getCart($cartId: ID!) {
    cart(id: $cartId) { ...CartFragment }
  }
""" + CART_FRAGMENT

CREATE_CART_MUTATION = """
  mutation cartCreate($input: CartInput!) {
    cartCreate(input: $input) {
      cart { ...CartFragment }
      userErrors { field message }
    }
  }
""" + CART_FRAGMENT

ADD_LINES_MUTATION = """
  mutation cartLinesAdd($cartId: ID!, $lines: [CartLineInput!]!) {
    cartLinesAdd(cartId: $cartId, lines: $lines) {
      cart { ...CartFragment }
      userErrors { field message }
    }
  }
""" + CART_FRAGMENT

UPDATE_LINES_MUTATION = """
  mutation cartLinesUpdate($cartId: ID!, $lines: [CartLineUpdateInput!]!) {
    cartLinesUpdate(cartId: $cartId, lines: $lines) {
      cart { ...CartFragment }
      userErrors { field message }
    }
  }
""" + CART_FRAGMENT

REMOVE_LINES_MUTATION = """
  mutation cartLinesRemove($cartId: ID!, $lineIds: [ID!]!) {
    cartLinesRemove(cartId: $cartId, lineIds: $lineIds) {
      cart { ...CartFragment }
      userErrors { field message }
    }
  }
""" + CART_FRAGMENT

UPDATE_DISCOUNT_MUTATION = """
  mutation cartDiscountCodesUpdate($cartId: ID!, $discountCodes: [String!]!) {
    cartDiscountCodesUpdate(cartId: $cartId, discountCodes: $discountCodes) {
      cart { ...CartFragment }
      userErrors { field message }
    }
  }
""" + CART_FRAGMENT

UPDATE_BUYER_IDENTITY_MUTATION = """
  mutation cartBuyerIdentityUpdate($cartId: ID!, $buyerIdentity: CartBuyerIdentityInput!) {
    cartBuyerIdentityUpdate(cartId: $cartId, buyerIdentity: $buyerIdentity) {
      cart { ...CartFragment }
      userErrors { field message }
    }
  }
""" + CART_FRAGMENT


class CartError(StorefrontError):
    """Cart-related errors"""
    pass


class MissingCartError(CartError):
    """Operation needs a cart but the session holds no cart id"""
    pass


class CartCreateError(CartError):
    """The service did not return a cart for cartCreate"""
    pass


# (outcome, optional detail for a partial outcome)
Classification = tuple[CartOutcome, Optional[str]]


def _same_cart(previous: Optional[Cart], cart: Cart) -> Optional[Cart]:
    return previous if previous and previous.id == cart.id else None


def classify_added_lines(previous: Optional[Cart], cart: Cart, lines: list[CartLineInput]) -> Classification:
    """Compare units requested per merchandise with units that actually landed"""
    previous = _same_cart(previous, cart)

    requested: dict[str, int] = {}
    for line in lines:
        requested[line.merchandise_id] = requested.get(line.merchandise_id, 0) + line.quantity

    if not requested:
        return CartOutcome.SUCCESS, None

    total_requested = sum(requested.values())
    total_applied = 0
    for merchandise_id, quantity in requested.items():
        before = previous.quantity_of(merchandise_id) if previous else 0
        applied = max(0, cart.quantity_of(merchandise_id) - before)
        total_applied += min(applied, quantity)

    if total_applied >= total_requested:
        return CartOutcome.SUCCESS, None
    if total_applied > 0:
        return CartOutcome.PARTIAL, f"Only {total_applied} of {total_requested} items could be added"
    return CartOutcome.FAILURE, None


def classify_updated_lines(previous: Optional[Cart], cart: Cart, lines: list[CartLineUpdateInput]) -> Classification:
    previous = _same_cart(previous, cart)

    matched = changed = 0
    for update in lines:
        line = cart.get_line(update.id)
        if line is None:
            continue
        if line.quantity == update.quantity:
            matched += 1
            continue
        before = previous.get_line(update.id) if previous else None
        if before is None or before.quantity != line.quantity:
            changed += 1

    if matched == len(lines):
        return CartOutcome.SUCCESS, None
    if matched or changed:
        return CartOutcome.PARTIAL, "Some quantities could not be updated as requested"
    return CartOutcome.FAILURE, None


def classify_removed_lines(cart: Cart, line_ids: list[str]) -> Classification:
    remaining = [line_id for line_id in line_ids if cart.get_line(line_id)]

    if not remaining:
        return CartOutcome.SUCCESS, None
    if len(remaining) < len(line_ids):
        return CartOutcome.PARTIAL, f"{len(remaining)} items could not be removed"
    return CartOutcome.FAILURE, None


def classify_discount_codes(cart: Cart, codes: list[str]) -> Classification:
    requested = {code.lower() for code in codes}
    actual = {d.code.lower(): d for d in cart.discount_codes}

    if set(actual) - requested:
        return CartOutcome.FAILURE, None
    if not requested:
        return CartOutcome.SUCCESS, None

    present = requested & set(actual)
    if not present:
        return CartOutcome.FAILURE, None
    if present == requested and all(actual[code].applicable for code in present):
        return CartOutcome.SUCCESS, None
    return CartOutcome.PARTIAL, "Some discount codes are not applicable to this cart"


def classify_buyer_identity(cart: Cart, identity: BuyerIdentityInput) -> Classification:
    actual = cart.buyer_identity
    wanted = {
        name: value
        for name, value in (
            ("email", identity.email),
            ("phone", identity.phone),
            ("country_code", identity.country_code),
        )
        if value is not None
    }

    if identity.customer_access_token:
        wanted["customer"] = True

    if not wanted:
        return CartOutcome.SUCCESS, None
    if actual is None:
        return CartOutcome.FAILURE, None

    matches = 0
    for name, value in wanted.items():
        if name == "customer":
            matches += actual.customer is not None
        elif getattr(actual, name) == value:
            matches += 1

    if matches == len(wanted):
        return CartOutcome.SUCCESS, None
    if matches:
        return CartOutcome.PARTIAL, "Some buyer details could not be applied"
    return CartOutcome.FAILURE, None


def _coerce(model: type, items: Iterable[Any]) -> list:
    return [item if isinstance(item, model) else model.model_validate(item) for item in items]


def _error_message(errors: list[UserError], default: str) -> str:
    if errors:
        return "; ".join(error.message for error in errors)
    return default


class CartService:
    """
    Cart synchronization engine.

    Reads the cart id from the session store, sends one remote call per
    operation and publishes the outcome to ``CartState``. Mutations are not
    queued per cart unless ``serialize_mutations`` is set, so overlapping calls
    resolve as last-response-wins.
    """

    def __init__(
        self,
        client: StorefrontClient,
        session: SessionStore,
        state: CartState,
        serialize_mutations: bool = False,
    ):
        self.client = client
        self.session = session
        self.state = state
        self.serialize_mutations = serialize_mutations
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _guard(self, cart_id: str):
        """Per-cart mutual exclusion; the lock is dropped once nobody holds or awaits it"""
        if not self.serialize_mutations:
            yield
            return

        lock = self._locks.setdefault(cart_id, asyncio.Lock())
        self._lock_users[cart_id] = self._lock_users.get(cart_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[cart_id] -= 1
            if not self._lock_users[cart_id]:
                del self._lock_users[cart_id]
                del self._locks[cart_id]

    def _require_cart_id(self, action: str) -> str:
        cart_id = self.session.get_cart_id()
        if not cart_id:
            logger.warning(f"Cannot {action}: no cart id in session")
            self.state.publish_result(OperationResult.error("Your cart could not be found"))
            raise MissingCartError("No cart ID available")
        return cart_id

    # ==================== Reads ====================

    async def _fetch(self, cart_id: str) -> Optional[Cart]:
        data = await self.client.query(
            GET_CART_QUERY,
            variables={"cartId": cart_id},
            cache=CacheMode.NO_STORE,
        )
        raw = data.get("cart")
        return Cart.model_validate(raw) if raw else None

    async def _snapshot(self) -> tuple[bool, Optional[Cart]]:
        """
        Fetch and publish the session's cart.

        Returns ``(readable, cart)``; ``readable`` is False only when the fetch
        itself failed, so callers can tell "no cart" from "unknown cart".
        """
        cart_id = self.session.get_cart_id()
        if not cart_id:
            return True, None

        try:
            cart = await self._fetch(cart_id)
        except (StorefrontAPIError, ValidationError) as e:
            logger.error(f"Error fetching cart: {e}", exc_info=True)
            self.state.publish_result(OperationResult.error("We couldn't load your cart"))
            return False, None

        self.state.publish_cart(cart)
        return True, cart

    async def get(self) -> Optional[Cart]:
        """Current cart, or None when there is none or it could not be fetched"""
        _, cart = await self._snapshot()
        return cart

    async def _refresh(self, cart_id: str) -> None:
        """Best-effort resync after a failed mutation; publishes no result"""
        try:
            cart = await self._fetch(cart_id)
        except (StorefrontAPIError, ValidationError) as e:
            logger.warning(f"Cart refresh after failure also failed: {e}")
            return
        self.state.publish_cart(cart)

    # ==================== Mutations ====================

    async def create(
        self,
        lines: Optional[Iterable[Union[CartLineInput, dict]]] = None,
        discount_codes: Optional[list[str]] = None,
        buyer_identity: Optional[Union[BuyerIdentityInput, dict]] = None,
    ) -> CartMutationResult:
        """
        Create a cart and make it the session's cart.

        Raises:
            StorefrontAPIError: the create call itself failed
            CartCreateError: the service answered without a cart
        """
        lines = _coerce(CartLineInput, lines or [])
        if isinstance(buyer_identity, dict):
            buyer_identity = BuyerIdentityInput.model_validate(buyer_identity)

        cart_input = {
            "lines": [line.to_variables() for line in lines],
            "discountCodes": list(discount_codes or []),
            "buyerIdentity": buyer_identity.to_variables() if buyer_identity else {},
        }

        try:
            data = await self.client.query(
                CREATE_CART_MUTATION,
                variables={"input": cart_input},
                cache=CacheMode.NO_STORE,
            )
        except StorefrontAPIError as e:
            logger.error(f"Error creating cart: {e}", exc_info=True)
            self.state.publish_result(OperationResult.error("We couldn't create your cart"))
            raise

        payload = data.get("cartCreate") or {}
        try:
            errors = _coerce(UserError, payload.get("userErrors") or [])
            cart = Cart.model_validate(payload["cart"]) if payload.get("cart") else None
        except ValidationError as e:
            logger.error(f"Malformed cartCreate response: {e}")
            errors, cart = [], None

        if cart is None:
            message = _error_message(errors, "Failed to create cart")
            self.state.publish_result(OperationResult.error(message))
            raise CartCreateError(message)

        self.session.set_cart_id(cart.id)
        logger.info(f"Created cart {cart.id}")

        outcome, detail = classify_added_lines(None, cart, lines)
        result = self._settle(cart, errors, outcome, detail, "Added to cart", "Could not add items to cart")
        if result.outcome == CartOutcome.FAILURE:
            # a created cart is published even when none of its lines landed
            self.state.publish_cart(cart)
        return result

    async def add_lines(self, lines: Iterable[Union[CartLineInput, dict]]) -> CartMutationResult:
        """Add lines, creating the cart first when the session has none"""
        lines = _coerce(CartLineInput, lines)

        cart_id = self.session.get_cart_id()
        if not cart_id:
            return await self.create(lines=lines)

        return await self._mutate(
            cart_id,
            "cartLinesAdd",
            ADD_LINES_MUTATION,
            {"cartId": cart_id, "lines": [line.to_variables() for line in lines]},
            lambda previous, cart: classify_added_lines(previous, cart, lines),
            "Added to cart",
            "Could not add items to cart",
        )

    async def update_lines(self, lines: Iterable[Union[CartLineUpdateInput, dict]]) -> CartMutationResult:
        """Update line quantities; quantities below 1 are sent as removals"""
        lines = _coerce(CartLineUpdateInput, lines)
        cart_id = self._require_cart_id("update lines")

        removals = [line.id for line in lines if line.quantity < 1]
        updates = [line for line in lines if line.quantity >= 1]

        if removals:
            result = await self.remove_lines(removals)
            if not updates or not result.success:
                return result

        return await self._mutate(
            cart_id,
            "cartLinesUpdate",
            UPDATE_LINES_MUTATION,
            {"cartId": cart_id, "lines": [line.to_variables() for line in updates]},
            lambda previous, cart: classify_updated_lines(previous, cart, updates),
            "Cart updated",
            "Could not update your cart",
        )

    async def remove_lines(self, line_ids: Iterable[str]) -> CartMutationResult:
        line_ids = list(line_ids)
        cart_id = self._require_cart_id("remove lines")

        return await self._mutate(
            cart_id,
            "cartLinesRemove",
            REMOVE_LINES_MUTATION,
            {"cartId": cart_id, "lineIds": line_ids},
            lambda previous, cart: classify_removed_lines(cart, line_ids),
            "Item removed from cart",
            "Could not remove items from cart",
        )

    async def update_discount_codes(self, codes: Iterable[str]) -> CartMutationResult:
        """Replace the cart's discount codes with ``codes``"""
        codes = list(codes)
        cart_id = self._require_cart_id("update discount codes")

        return await self._mutate(
            cart_id,
            "cartDiscountCodesUpdate",
            UPDATE_DISCOUNT_MUTATION,
            {"cartId": cart_id, "discountCodes": codes},
            lambda previous, cart: classify_discount_codes(cart, codes),
            "Discount codes updated",
            "Discount code could not be applied",
        )

    async def update_buyer_identity(self, identity: Union[BuyerIdentityInput, dict]) -> CartMutationResult:
        if isinstance(identity, dict):
            identity = BuyerIdentityInput.model_validate(identity)
        cart_id = self._require_cart_id("update buyer identity")

        return await self._mutate(
            cart_id,
            "cartBuyerIdentityUpdate",
            UPDATE_BUYER_IDENTITY_MUTATION,
            {"cartId": cart_id, "buyerIdentity": identity.to_variables()},
            lambda previous, cart: classify_buyer_identity(cart, identity),
            "Buyer details updated",
            "Could not update buyer details",
        )

    async def _mutate(
        self,
        cart_id: str,
        field: str,
        document: str,
        variables: dict[str, Any],
        classify: Callable[[Optional[Cart], Cart], Classification],
        success_message: str,
        failure_message: str,
    ) -> CartMutationResult:
        async with self._guard(cart_id):
            previous = self.state.cart.get_current()

            try:
                data = await self.client.query(document, variables=variables, cache=CacheMode.NO_STORE)
            except StorefrontAPIError as e:
                logger.error(f"{field} failed: {e}", exc_info=True)
                self.state.publish_result(OperationResult.error(failure_message))
                await self._refresh(cart_id)
                return CartMutationResult(
                    cart=None,
                    errors=[UserError(message=str(e))],
                    outcome=CartOutcome.FAILURE,
                )

            payload = data.get(field) or {}
            try:
                errors = _coerce(UserError, payload.get("userErrors") or [])
                cart = Cart.model_validate(payload["cart"]) if payload.get("cart") else None
            except ValidationError as e:
                logger.error(f"Malformed {field} response: {e}")
                errors, cart = [], None

            if cart is None:
                logger.error(f"{field} returned no cart")
                self.state.publish_result(OperationResult.error(_error_message(errors, failure_message)))
                await self._refresh(cart_id)
                return CartMutationResult(cart=None, errors=errors, outcome=CartOutcome.FAILURE)

            outcome, detail = classify(previous, cart)
            result = self._settle(cart, errors, outcome, detail, success_message, failure_message)

            if result.outcome == CartOutcome.FAILURE:
                await self._refresh(cart_id)

            return result

    def _settle(
        self,
        cart: Cart,
        errors: list[UserError],
        outcome: CartOutcome,
        detail: Optional[str],
        success_message: str,
        failure_message: str,
    ) -> CartMutationResult:
        """Fold user errors into the outcome and publish cart and result"""
        if errors and outcome == CartOutcome.SUCCESS:
            outcome = CartOutcome.PARTIAL

        if outcome == CartOutcome.SUCCESS:
            self.state.publish_cart(cart)
            self.state.publish_result(OperationResult.ok(success_message))
        elif outcome == CartOutcome.PARTIAL:
            message = _error_message(errors, detail or success_message)
            logger.warning(f"Partial cart update on {cart.id}: {message}")
            self.state.publish_cart(cart)
            self.state.publish_result(OperationResult.warning(message))
        else:
            message = _error_message(errors, failure_message)
            logger.warning(f"Cart update on {cart.id} had no effect: {message}")
            self.state.publish_result(OperationResult.error(message))

        return CartMutationResult(cart=cart, errors=errors, outcome=outcome)

    # ==================== Component helpers ====================

    async def add_to_cart(
        self,
        merchandise_id: str,
        quantity: int = 1,
        attributes: Optional[Union[Mapping[str, str], list]] = None,
    ) -> bool:
        """Add one merchandise and open the cart drawer on success"""
        if isinstance(attributes, Mapping):
            attributes = [Attribute(key=key, value=value) for key, value in attributes.items()]

        try:
            result = await self.add_lines([
                CartLineInput(
                    merchandise_id=merchandise_id,
                    quantity=quantity,
                    attributes=_coerce(Attribute, attributes or []),
                )
            ])
        except (StorefrontError, ValidationError) as e:
            logger.error(f"Error adding to cart: {e}")
            return False

        if result.success:
            self.state.open_cart()
        return result.success

    async def update_line_quantity(self, line_id: str, quantity: int) -> bool:
        if quantity < 1:
            return await self.remove_line(line_id)

        try:
            result = await self.update_lines([CartLineUpdateInput(id=line_id, quantity=quantity)])
        except StorefrontError as e:
            logger.error(f"Error updating cart line: {e}")
            return False
        return result.success

    async def remove_line(self, line_id: str) -> bool:
        try:
            result = await self.remove_lines([line_id])
        except StorefrontError as e:
            logger.error(f"Error removing cart line: {e}")
            return False
        return result.success

    async def apply_discount(self, code: str) -> bool:
        """Append a discount code unless the cart already carries it"""
        code = code.strip()
        if not code:
            return False

        codes = await self._current_discount_codes("apply a discount")
        if codes is None:
            return False

        if code.lower() in (c.lower() for c in codes):
            self.state.publish_result(OperationResult.info(f"Discount code {code} is already applied"))
            return True

        try:
            result = await self.update_discount_codes([*codes, code])
        except StorefrontError as e:
            logger.error(f"Error applying discount: {e}")
            return False
        return result.success

    async def remove_discount(self, code: str) -> bool:
        codes = await self._current_discount_codes("remove a discount")
        if codes is None:
            return False

        try:
            result = await self.update_discount_codes([c for c in codes if c != code])
        except StorefrontError as e:
            logger.error(f"Error removing discount: {e}")
            return False
        return result.success

    async def _current_discount_codes(self, action: str) -> Optional[list[str]]:
        """Codes on the server cart, or None when the full list is not known"""
        try:
            self._require_cart_id(action)
        except MissingCartError:
            return None

        readable, current = await self._snapshot()
        if not readable:
            return None
        if current is None:
            logger.warning(f"Cannot {action}: cart no longer exists")
            self.state.publish_result(OperationResult.error("Your cart could not be found"))
            return None
        return current.discount_code_values

    async def clear_cart(self) -> bool:
        """Remove every line in a single call"""
        readable, current = await self._snapshot()
        if not readable:
            return False
        if not current or not current.lines:
            return True

        try:
            result = await self.remove_lines([line.id for line in current.lines])
        except StorefrontError as e:
            logger.error(f"Error clearing cart: {e}")
            return False
        return result.success
