"""
Reactive store primitives.

A ``Writable`` is a subject holding one value. Subscribers are called
immediately with the current value and again on every change. ``Derived``
projections hold no state of their own: the projection function runs against
the source value on every read and every notification.
"""

import asyncio
import logging
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")

Listener = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class Readable(Generic[T]):
    """Read side of an observable value"""

    def get_current(self) -> T:
        raise NotImplementedError

    def subscribe(self, listener: Callable[[T], None]) -> Unsubscribe:
        raise NotImplementedError

    def derive(self, fn: Callable[[T], U]) -> "Derived[U]":
        return Derived(self, fn)


class Writable(Readable[T]):
    """Observable value; only its owner should call set/update"""

    def __init__(self, value: T):
        self._value = value
        self._listeners: list[Callable[[T], None]] = []

    def get_current(self) -> T:
        return self._value

    def subscribe(self, listener: Callable[[T], None]) -> Unsubscribe:
        self._listeners.append(listener)
        listener(self._value)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, value: T) -> None:
        self._value = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.error("Store listener failed", exc_info=True)

    def update(self, fn: Callable[[T], T]) -> None:
        self.set(fn(self._value))

    def readonly(self) -> "ReadOnly[T]":
        return ReadOnly(self)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)


class ReadOnly(Readable[T]):
    """View of a Writable without set/update"""

    def __init__(self, source: Writable[T]):
        self._source = source

    def get_current(self) -> T:
        return self._source.get_current()

    def subscribe(self, listener: Callable[[T], None]) -> Unsubscribe:
        return self._source.subscribe(listener)


class Derived(Readable[U]):
    """Pure projection of another observable"""

    def __init__(self, source: Readable[Any], fn: Callable[[Any], U]):
        self._source = source
        self._fn = fn

    def get_current(self) -> U:
        return self._fn(self._source.get_current())

    def subscribe(self, listener: Callable[[U], None]) -> Unsubscribe:
        return self._source.subscribe(lambda value: listener(self._fn(value)))


class MessageChannel(Readable[Optional[T]]):
    """
    Transient notification slot.

    A published message is cleared again after ``duration`` seconds, unless a
    newer message replaced it first. Expiry needs a running event loop; outside
    one the message simply stays until replaced or cleared.
    """

    def __init__(self, duration: float = 3.0):
        self.duration = duration
        self._store: Writable[Optional[T]] = Writable(None)
        self._timer: Optional[asyncio.TimerHandle] = None

    def get_current(self) -> Optional[T]:
        return self._store.get_current()

    def subscribe(self, listener: Callable[[Optional[T]], None]) -> Unsubscribe:
        return self._store.subscribe(listener)

    def publish(self, message: T) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None

        self._store.set(message)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer = loop.call_later(self.duration, self._expire, message)

    def _expire(self, message: T) -> None:
        self._timer = None
        if self._store.get_current() is message:
            self._store.set(None)

    def clear(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None
        self._store.set(None)
