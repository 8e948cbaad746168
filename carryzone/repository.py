"""Pin repository: the write path used by applications.

Every write lands in the local store first and is then queued for upload,
so it survives being offline. Reads come from the local store only; remote
data arrives through the sync engine.
"""

import logging
from typing import Callable, List, Optional

from carryzone.observable import Subscription
from carryzone.storage.sqlite import SQLitePinStore
from carryzone.sync.engine import SyncEngine
from carryzone.types import Pin

logger = logging.getLogger(__name__)


class PinRepository:
    """Offline-first pin operations.

    Local store failures (LocalStoreError) propagate to the caller. Sync
    failures never do: they are logged and left to the next pass.

    Args:
        store: Local pin store.
        engine: Sync engine that owns the operation queue.
        sync_immediately: Run a best-effort sync pass after ``add``.
    """

    def __init__(self, store: SQLitePinStore, engine: SyncEngine, sync_immediately: bool = False):
        self._store = store
        self._engine = engine
        self.sync_immediately = sync_immediately

    # === Reads ===

    def get_all(self) -> List[Pin]:
        return self._store.get_all()

    def get_by_id(self, pin_id: str) -> Optional[Pin]:
        return self._store.get_by_id(pin_id)

    def count(self) -> int:
        return self._store.count()

    def observe_all(self, callback: Callable[[List[Pin]], None]) -> Subscription:
        return self._store.observe_all(callback)

    # === Writes ===

    def add(self, pin: Pin) -> Pin:
        self._store.insert(pin)
        self._engine.enqueue_create(pin)
        logger.debug(f"Added pin {pin.id}")
        if self.sync_immediately:
            self._try_sync()
        return pin

    def update(self, pin: Pin) -> Pin:
        self._store.update(pin)
        self._engine.enqueue_update(pin)
        logger.debug(f"Updated pin {pin.id}")
        return pin

    def delete(self, pin: Pin) -> None:
        self._store.delete(pin)
        self._engine.enqueue_delete(pin.id)
        logger.debug(f"Deleted pin {pin.id}")

    def cycle_status(self, pin_id: str) -> bool:
        """Advance a pin to its next status. Returns False if the pin is unknown."""
        pin = self._store.get_by_id(pin_id)
        if pin is None:
            logger.warning(f"Cannot cycle status, pin {pin_id} not found")
            return False
        self.update(pin.with_next_status())
        return True

    def delete_all(self) -> int:
        """Remove every local pin. Not propagated to the remote."""
        count = self._store.delete_all()
        logger.info(f"Deleted {count} local pin(s)")
        return count

    def _try_sync(self) -> None:
        result = self._engine.trigger_sync()
        if not result.success:
            logger.info(f"Immediate sync did not complete, will retry later: {result.error}")
