"""Publish/subscribe primitives for live data.

- EventChannel: fan-out of values to current subscribers, no replay.
- StateChannel: holds a current value; new subscribers receive it
  immediately, then every later update. Optionally drops consecutive
  duplicates.
- Subscription: cancellable handle returned by every subscribe call.

Callbacks run synchronously on the publishing thread. A callback that
raises is logged and does not stop delivery to the other subscribers.
"""

import logging
import threading
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NO_INITIAL = object()


class Subscription:
    """Handle for a live subscription.

    Cancelling stops delivery and runs the optional teardown callback once.
    Usable as a context manager.
    """

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        with self._lock:
            if not self._active:
                return
            self._active = False
            on_cancel, self._on_cancel = self._on_cancel, None
        if on_cancel is not None:
            on_cancel()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    @classmethod
    def inert(cls) -> "Subscription":
        """A subscription that will never deliver anything."""
        return cls()


class EventChannel(Generic[T]):
    """Fan-out channel without replay."""

    def __init__(self, name: str = "events"):
        self._name = name
        self._subscribers: List[Callable[[T], None]] = []
        self._lock = threading.RLock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, callback: Callable[[T], None], initial=_NO_INITIAL) -> Subscription:
        """Add a subscriber, optionally handing it ``initial`` before any later publish."""
        with self._lock:
            self._subscribers.append(callback)
            if initial is not _NO_INITIAL:
                self._deliver(callback, initial)
        logger.debug(f"Added subscriber to {self._name}")
        return Subscription(lambda: self._unsubscribe(callback))

    def _unsubscribe(self, callback: Callable[[T], None]) -> None:
        with self._lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                return
        logger.debug(f"Removed subscriber from {self._name}")

    def publish(self, value: T) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self._deliver(callback, value)

    def _deliver(self, callback: Callable[[T], None], value: T) -> None:
        try:
            callback(value)
        except Exception as e:
            logger.error(f"Subscriber to {self._name} raised: {e}", exc_info=True)


class StateChannel(EventChannel[T]):
    """Channel holding a current value (replay-of-latest)."""

    def __init__(self, initial: T, name: str = "state", distinct: bool = False):
        super().__init__(name)
        self._value = initial
        self._distinct = distinct

    @property
    def value(self) -> T:
        with self._lock:
            return self._value

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        # Register and read the current value under one lock so no update
        # published in between is missed or delivered out of order.
        with self._lock:
            return super().subscribe(callback, initial=self._value)

    def publish(self, value: T) -> None:
        with self._lock:
            if self._distinct and value == self._value:
                return
            self._value = value
            subscribers = list(self._subscribers)
            for callback in subscribers:
                self._deliver(callback, value)
