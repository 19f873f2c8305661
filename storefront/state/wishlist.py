"""Wishlist state"""

from typing import Optional

from ..core.observable import Derived, MessageChannel, Writable
from ..models.common import OperationResult
from ..models.wishlist import WishlistItem


class WishlistState:
    """Shared wishlist observables for one execution context"""

    def __init__(self, notification_duration: float = 3.0):
        self._items: Writable[list[WishlistItem]] = Writable([])
        self._loading: Writable[bool] = Writable(False)
        self._error: Writable[Optional[str]] = Writable(None)
        self._message: MessageChannel[OperationResult] = MessageChannel(notification_duration)

        self.wishlist_items = self._items.readonly()
        self.wishlist_loading = self._loading.readonly()
        self.wishlist_error = self._error.readonly()
        self.wishlist_message = self._message
        self.wishlist_count = Derived(self._items, len)

    def publish_items(self, items: list[WishlistItem]) -> None:
        self._items.set(list(items))

    def set_loading(self, loading: bool) -> None:
        self._loading.set(loading)

    def set_error(self, error: Optional[str]) -> None:
        self._error.set(error)

    def show_message(self, result: OperationResult) -> None:
        self._message.publish(result)
