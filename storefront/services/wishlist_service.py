"""
Wishlist Service

Guests keep their wishlist in local storage, logged-in customers in a
customer metafield. On login the guest list is merged into the account list
once, without duplicates, and local storage is cleared.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Union

from pydantic import ValidationError

from ..core.observable import Readable, Unsubscribe
from ..core.storage import LocalStorage
from ..models.common import OperationResult
from ..models.customer import Customer
from ..models.wishlist import WishlistItem
from ..state.wishlist import WishlistState
from .metafields import CustomerMetafields
from .storefront_client import StorefrontAPIError, StorefrontError

logger = logging.getLogger(__name__)


class WishlistStorageError(StorefrontError):
    """A wishlist backend could not be read or written"""
    pass


class WishlistMode(str, Enum):
    GUEST = "guest"
    AUTHENTICATED = "authenticated"


def serialize_items(items: Iterable[WishlistItem]) -> str:
    return json.dumps([item.model_dump(by_alias=True, exclude_none=True, mode="json") for item in items])


def parse_items(raw: Optional[str]) -> list[WishlistItem]:
    """Decode a stored wishlist; unreadable entries are dropped"""
    if not raw:
        return []

    try:
        data = json.loads(raw)
    except ValueError:
        logger.error("Discarding unreadable wishlist payload")
        return []

    if not isinstance(data, list):
        return []

    items = []
    for entry in data:
        try:
            items.append(WishlistItem.model_validate(entry))
        except ValidationError:
            logger.warning(f"Skipping malformed wishlist entry: {entry!r}")
    return items


def merge_wishlists(
    account_items: list[WishlistItem],
    guest_items: list[WishlistItem],
) -> tuple[list[WishlistItem], int]:
    """Append guest items whose variant is not already saved; returns (merged, added)"""
    merged = list(account_items)
    seen = {item.variant_id for item in merged}
    added = 0

    for item in guest_items:
        if item.variant_id in seen:
            continue
        merged.append(item)
        seen.add(item.variant_id)
        added += 1

    return merged, added


class LocalWishlistStore:
    """Guest wishlist in local storage"""

    def __init__(self, storage: LocalStorage, key: str = "shopify_wishlist"):
        self.storage = storage
        self.key = key

    def load(self) -> list[WishlistItem]:
        return parse_items(self.storage.get_item(self.key))

    def save(self, items: list[WishlistItem]) -> None:
        try:
            self.storage.set_item(self.key, serialize_items(items))
        except OSError as e:
            raise WishlistStorageError(f"Could not save wishlist locally: {e}") from e

    def clear(self) -> None:
        try:
            self.storage.remove_item(self.key)
        except OSError as e:
            raise WishlistStorageError(f"Could not clear local wishlist: {e}") from e


class RemoteWishlistStore:
    """Account wishlist in a customer metafield (JSON string)"""

    def __init__(self, metafields: CustomerMetafields, namespace: str = "wishlist", key: str = "items"):
        self.metafields = metafields
        self.namespace = namespace
        self.key = key

    async def load(self) -> list[WishlistItem]:
        try:
            found = await self.metafields.get_customer_metafields([(self.namespace, self.key)])
        except StorefrontAPIError as e:
            raise WishlistStorageError(f"Could not load wishlist: {e}") from e

        match = next(
            (mf for mf in found if mf.namespace == self.namespace and mf.key == self.key),
            None,
        )
        return parse_items(match.value) if match else []

    async def save(self, items: list[WishlistItem]) -> None:
        result = await self.metafields.update_customer_metafield(
            namespace=self.namespace,
            key=self.key,
            value=serialize_items(items),
            type="json_string",
        )
        if not result.success:
            message = "; ".join(e.message for e in result.errors) or "unknown error"
            raise WishlistStorageError(f"Could not save wishlist: {message}")


class WishlistService:
    """
    Wishlist merge engine.

    Follows the published customer: a customer appearing (or changing) moves
    the wishlist to the account and merges the guest list; the customer
    disappearing points it back at local storage. Refetches of the same
    customer do nothing.

    Mutations update the visible list first and then persist. A failed write
    is reported but not rolled back.
    """

    def __init__(
        self,
        state: WishlistState,
        local: LocalWishlistStore,
        remote: RemoteWishlistStore,
    ):
        self.state = state
        self.local = local
        self.remote = remote
        self.mode = WishlistMode.GUEST
        self._customer_id: Optional[str] = None
        self._tasks: set[asyncio.Task] = set()
        self._loaded = False
        self._remote_loaded = False

    # ==================== Session transitions ====================

    def bind(self, customer: Readable[Optional[Customer]]) -> Unsubscribe:
        """Follow login/logout through the published customer"""
        return customer.subscribe(self._on_customer)

    def _on_customer(self, customer: Optional[Customer]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if customer is None:
                self._use_guest()
            else:
                logger.warning("Customer published outside an event loop; wishlist merge deferred")
            return

        task = loop.create_task(self.handle_customer_change(customer))
        self._tasks.add(task)
        task.add_done_callback(self._transition_done)

    def _transition_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Wishlist transition failed", exc_info=task.exception())

    async def settle(self) -> None:
        """Wait for every transition scheduled by the customer subscription"""
        while self._tasks:
            await asyncio.wait(list(self._tasks))

    async def handle_customer_change(self, customer: Optional[Customer]) -> None:
        if customer is None:
            if self.mode == WishlistMode.AUTHENTICATED or not self._loaded:
                logger.info("Customer logged out, switching to local wishlist")
                self._use_guest()
            return

        if self.mode == WishlistMode.AUTHENTICATED and self._customer_id == customer.id:
            return

        logger.info("Customer logged in, loading account wishlist")
        self.mode = WishlistMode.AUTHENTICATED
        self._customer_id = customer.id
        self._remote_loaded = False
        await self.merge_guest_wishlist()

    def _use_guest(self) -> None:
        self.mode = WishlistMode.GUEST
        self._loaded = True
        self._remote_loaded = False
        self._customer_id = None
        self.state.set_error(None)
        self.state.publish_items(self.local.load())

    async def merge_guest_wishlist(self) -> int:
        """
        Merge the guest list into the account list.

        The merged list is written back once, and local storage is cleared only
        after that write succeeded. When the account list cannot be read the
        wishlist falls back to guest mode, so the next customer event retries.
        Returns how many guest items were added.
        """
        self.state.set_loading(True)
        self.state.set_error(None)
        try:
            try:
                account_items = await self.remote.load()
            except WishlistStorageError as e:
                logger.error(f"Wishlist merge aborted: {e}")
                self._use_guest()
                self.state.set_error("Failed to load your wishlist. Please refresh the page.")
                return 0

            self._remote_loaded = True

            guest_items = self.local.load()
            merged, added = merge_wishlists(account_items, guest_items)
            self.state.publish_items(merged)

            if not added:
                if guest_items:
                    self._discard_guest_list()
                return 0

            try:
                await self.remote.save(merged)
            except WishlistStorageError as e:
                logger.error(f"Could not save merged wishlist: {e}")
                self.state.set_error("Failed to save your wishlist. Changes will be lost when you log out.")
                self.state.show_message(OperationResult.error("We couldn't move your guest wishlist to your account"))
                return 0

            self._discard_guest_list()
            logger.info(f"Merged {added} guest wishlist items into account")
            self.state.show_message(
                OperationResult.ok(f"{added} items from your guest wishlist were added to your account")
            )
            return added
        finally:
            self.state.set_loading(False)

    def _discard_guest_list(self) -> None:
        try:
            self.local.clear()
        except WishlistStorageError as e:
            logger.warning(f"Guest wishlist was merged but could not be cleared: {e}")

    async def initialize(self) -> None:
        """Load the wishlist from whichever backend is active"""
        if self.mode == WishlistMode.GUEST:
            self._use_guest()
            return

        self.state.set_loading(True)
        try:
            self.state.publish_items(await self.remote.load())
            self._remote_loaded = True
        except WishlistStorageError as e:
            logger.error(f"Error initializing wishlist: {e}")
            self._remote_loaded = False
            self.state.set_error("Failed to initialize wishlist")
        finally:
            self.state.set_loading(False)

    # ==================== Mutations ====================

    async def _persist(self, items: list[WishlistItem]) -> bool:
        try:
            if self.mode == WishlistMode.AUTHENTICATED:
                if not self._remote_loaded:
                    raise WishlistStorageError("Account wishlist has not been loaded")
                self.state.set_loading(True)
                try:
                    await self.remote.save(items)
                finally:
                    self.state.set_loading(False)
            elif items:
                self.local.save(items)
            else:
                self.local.clear()
        except WishlistStorageError as e:
            logger.error(f"Error saving wishlist: {e}")
            self.state.set_error("Failed to save your wishlist. Changes will be lost when you log out.")
            self.state.show_message(OperationResult.error("Your wishlist could not be saved"))
            return False

        self.state.set_error(None)
        return True

    def is_in_wishlist(self, variant_id: Optional[str]) -> bool:
        if not variant_id:
            return False
        return any(item.variant_id == variant_id for item in self.state.wishlist_items.get_current())

    async def add_to_wishlist(self, item: Union[WishlistItem, dict]) -> bool:
        """Add a variant; a variant already saved is left alone"""
        if isinstance(item, dict):
            item = WishlistItem.model_validate(item)
        if not item.variant_id:
            return False

        if self.is_in_wishlist(item.variant_id):
            self.state.show_message(OperationResult.info("This item is already in your wishlist"))
            return False

        item = item.model_copy(update={"added_at": datetime.now(timezone.utc)})
        items = [*self.state.wishlist_items.get_current(), item]
        self.state.publish_items(items)

        if await self._persist(items):
            self.state.show_message(OperationResult.ok("Item added to your wishlist"))
        return True

    async def remove_from_wishlist(self, variant_id: str) -> bool:
        if not variant_id:
            return False

        items = [i for i in self.state.wishlist_items.get_current() if i.variant_id != variant_id]
        self.state.publish_items(items)

        if await self._persist(items):
            self.state.show_message(OperationResult.ok("Item removed from your wishlist"))
        return True

    async def clear_wishlist(self) -> None:
        self.state.publish_items([])

        if await self._persist([]):
            self.state.show_message(OperationResult.ok("Your wishlist has been cleared"))
