"""Process-local remote data source.

Stands in for the shared backend during development and in tests. Pins live
in a dict; edits made "by another device" through the ``remote_*`` helpers
are published on the change feed, while writes that arrive through the
regular CRUD calls are not echoed back.

Failures can be injected per operation name ("get_all", "get_by_id",
"insert", "update", "delete", "get_in_bounding_box").
"""

import logging
import threading
from collections import Counter
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from carryzone.errors import RemoteError, RemoteNotFoundError
from carryzone.observable import EventChannel, Subscription
from carryzone.types import Pin, PinChangeEvent, now_ms

from .base import RemotePinDataSource

logger = logging.getLogger(__name__)

OPERATIONS = ("get_all", "get_by_id", "insert", "update", "delete", "get_in_bounding_box")


class InMemoryPinDataSource(RemotePinDataSource):
    """Dict-backed remote with a live change feed and failure injection."""

    def __init__(self, pins: Optional[Iterable[Pin]] = None):
        self._pins: Dict[str, Pin] = {pin.id: pin for pin in (pins or [])}
        self._lock = threading.RLock()
        self._changes: EventChannel[PinChangeEvent] = EventChannel("remote_changes")
        self._failures: Dict[str, List[Exception]] = {}
        self._always_fail: Dict[str, Exception] = {}
        self.calls: Counter = Counter()

    # === Failure injection ===

    def fail_next(self, operation: str, times: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next ``times`` calls of ``operation`` raise ``error``."""
        self._check_operation(operation)
        error = error or RemoteError(f"Injected {operation} failure")
        with self._lock:
            self._failures.setdefault(operation, []).extend([error] * times)

    def fail_always(self, operation: str, error: Optional[Exception] = None) -> None:
        """Make every call of ``operation`` raise until ``recover`` is called."""
        self._check_operation(operation)
        with self._lock:
            self._always_fail[operation] = error or RemoteError(f"Injected {operation} failure")

    def recover(self) -> None:
        """Drop all injected failures."""
        with self._lock:
            self._failures.clear()
            self._always_fail.clear()

    def _check_operation(self, operation: str) -> None:
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation}")

    def _enter(self, operation: str) -> None:
        with self._lock:
            self.calls[operation] += 1
            if operation in self._always_fail:
                raise self._always_fail[operation]
            pending = self._failures.get(operation)
            if pending:
                raise pending.pop(0)

    @property
    def write_calls(self) -> int:
        return self.calls["insert"] + self.calls["update"] + self.calls["delete"]

    # === RemotePinDataSource ===

    def get_all(self) -> List[Pin]:
        self._enter("get_all")
        with self._lock:
            return list(self._pins.values())

    def get_by_id(self, pin_id: str) -> Optional[Pin]:
        self._enter("get_by_id")
        with self._lock:
            return self._pins.get(pin_id)

    def insert(self, pin: Pin) -> Pin:
        self._enter("insert")
        with self._lock:
            self._pins[pin.id] = pin
        logger.debug(f"Remote insert {pin.id}")
        return pin

    def update(self, pin: Pin) -> Pin:
        self._enter("update")
        with self._lock:
            if pin.id not in self._pins:
                raise RemoteNotFoundError(pin.id)
            self._pins[pin.id] = pin
        logger.debug(f"Remote update {pin.id}")
        return pin

    def delete(self, pin_id: str) -> None:
        self._enter("delete")
        with self._lock:
            self._pins.pop(pin_id, None)
        logger.debug(f"Remote delete {pin_id}")

    def get_in_bounding_box(
        self, min_lat: float, max_lat: float, min_lng: float, max_lng: float
    ) -> List[Pin]:
        self._enter("get_in_bounding_box")
        with self._lock:
            return [
                pin
                for pin in self._pins.values()
                if min_lat <= pin.location.latitude <= max_lat
                and min_lng <= pin.location.longitude <= max_lng
            ]

    def subscribe_to_changes(self, callback: Callable[[PinChangeEvent], None]) -> Subscription:
        return self._changes.subscribe(callback)

    # === Edits from other devices ===

    def remote_insert(self, pin: Pin) -> None:
        with self._lock:
            self._pins[pin.id] = pin
        self._changes.publish(PinChangeEvent.insert(pin))

    def remote_update(self, pin: Pin, bump: bool = False) -> Pin:
        """Store an edit made elsewhere. With ``bump``, stamp it as newest."""
        if bump:
            pin = replace(
                pin,
                metadata=replace(pin.metadata, last_modified=max(now_ms(), pin.last_modified + 1)),
            )
        with self._lock:
            self._pins[pin.id] = pin
        self._changes.publish(PinChangeEvent.update(pin))
        return pin

    def remote_delete(self, pin_id: str) -> None:
        with self._lock:
            self._pins.pop(pin_id, None)
        self._changes.publish(PinChangeEvent.delete(pin_id))

    # === Inspection ===

    def snapshot(self) -> Dict[str, Pin]:
        with self._lock:
            return dict(self._pins)

    def __contains__(self, pin_id: str) -> bool:
        with self._lock:
            return pin_id in self._pins

    def __len__(self) -> int:
        with self._lock:
            return len(self._pins)
