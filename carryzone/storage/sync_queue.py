"""Durable queue of pin mutations waiting to be pushed to the remote store.

At most one pending entry exists per pin id: enqueuing an update or a
delete first removes whatever was queued for that pin. Entries are
listed oldest first.
"""

import logging
import sqlite3
import threading
from typing import Callable, List, Optional

from carryzone.observable import EventChannel, Subscription
from carryzone.types import Pin, QueuedOperation, SyncOperation, now_ms

from .sqlite import Database

logger = logging.getLogger(__name__)

# Truncation limit for stored error messages
MAX_ERROR_LENGTH = 500

_QUEUE_COLUMNS = "id, pin_id, operation_type, timestamp, retry_count, last_error"


def _row_to_operation(row: sqlite3.Row) -> QueuedOperation:
    return QueuedOperation(
        id=row["id"],
        pin_id=row["pin_id"],
        operation=SyncOperation(row["operation_type"]),
        timestamp=row["timestamp"],
        retry_count=row["retry_count"] or 0,
        last_error=row["last_error"],
    )


class SyncQueue:
    """Operation queue backed by the sync_queue table.

    Args:
        db: The Database shared with the pin store.
        clock: Source of epoch-millisecond timestamps for new entries.
    """

    def __init__(self, db: Database, clock: Callable[[], int] = now_ms):
        self._db = db
        self._clock = clock
        self._changes: EventChannel[List[QueuedOperation]] = EventChannel("sync_queue")
        self._write_lock = threading.RLock()

    # === Enqueue ===

    def enqueue_create(self, pin: Pin) -> int:
        """Queue a CREATE for a new pin. Existing entries are left alone."""
        logger.debug(f"Queueing pin for upload: {pin.id}")
        return self._insert(pin.id, SyncOperation.CREATE, replace=False)

    def enqueue_update(self, pin: Pin) -> int:
        """Replace any queued entries for the pin with a single UPDATE."""
        logger.debug(f"Queueing pin for update: {pin.id}")
        return self._insert(pin.id, SyncOperation.UPDATE, replace=True)

    def enqueue_delete(self, pin_id: str) -> int:
        """Replace any queued entries for the pin with a single DELETE."""
        logger.debug(f"Queueing pin for deletion: {pin_id}")
        return self._insert(pin_id, SyncOperation.DELETE, replace=True)

    def _insert(self, pin_id: str, operation: SyncOperation, replace: bool) -> int:
        with self._write_lock:
            with self._db.connect() as conn:
                if replace:
                    conn.execute("DELETE FROM sync_queue WHERE pin_id = ?", (pin_id,))
                cursor = conn.execute(
                    """INSERT INTO sync_queue (pin_id, operation_type, timestamp, retry_count)
                       VALUES (?, ?, ?, 0)""",
                    (pin_id, operation.value, self._clock()),
                )
                entry_id = cursor.lastrowid
            self._committed()
        return entry_id

    # === Reads ===

    def list_pending(self) -> List[QueuedOperation]:
        """All queued entries, oldest first."""
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT {_QUEUE_COLUMNS} FROM sync_queue ORDER BY timestamp ASC, id ASC"
            ).fetchall()
        return [_row_to_operation(row) for row in rows]

    def get(self, entry_id: int) -> Optional[QueuedOperation]:
        with self._db.connect() as conn:
            row = conn.execute(
                f"SELECT {_QUEUE_COLUMNS} FROM sync_queue WHERE id = ?", (entry_id,)
            ).fetchone()
        return _row_to_operation(row) if row else None

    def get_operations_for_pin(self, pin_id: str) -> List[QueuedOperation]:
        with self._db.connect() as conn:
            rows = conn.execute(
                f"""SELECT {_QUEUE_COLUMNS} FROM sync_queue
                    WHERE pin_id = ? ORDER BY timestamp ASC, id ASC""",
                (pin_id,),
            ).fetchall()
        return [_row_to_operation(row) for row in rows]

    def get_failed_operations(self, threshold: int = 3) -> List[QueuedOperation]:
        """Entries whose retry count has reached ``threshold``."""
        with self._db.connect() as conn:
            rows = conn.execute(
                f"""SELECT {_QUEUE_COLUMNS} FROM sync_queue
                    WHERE retry_count >= ? ORDER BY timestamp ASC, id ASC""",
                (threshold,),
            ).fetchall()
        return [_row_to_operation(row) for row in rows]

    def count(self) -> int:
        with self._db.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()[0]

    # === Mutations ===

    def remove(self, entry_id: int) -> bool:
        """Delete one entry after it has been processed."""
        with self._write_lock:
            with self._db.connect() as conn:
                cursor = conn.execute("DELETE FROM sync_queue WHERE id = ?", (entry_id,))
                removed = cursor.rowcount > 0
            if removed:
                self._committed()
        return removed

    def update_retry(self, entry: QueuedOperation) -> None:
        """Persist the entry's retry count and last error after a failed attempt."""
        error = entry.last_error[:MAX_ERROR_LENGTH] if entry.last_error else None
        with self._write_lock:
            with self._db.connect() as conn:
                conn.execute(
                    "UPDATE sync_queue SET retry_count = ?, last_error = ? WHERE id = ?",
                    (entry.retry_count, error, entry.id),
                )
            self._committed()

    def clear(self) -> int:
        """Remove every entry. Administrative/test operation."""
        logger.debug("Clearing sync queue")
        with self._write_lock:
            with self._db.connect() as conn:
                count = conn.execute("DELETE FROM sync_queue").rowcount
            self._committed()
        return count

    # === Observation ===

    def observe(self, callback: Callable[[List[QueuedOperation]], None]) -> Subscription:
        """Subscribe to the queue contents (current snapshot first)."""
        with self._write_lock:
            return self._changes.subscribe(callback, initial=self.list_pending())

    def _committed(self) -> None:
        if self._changes.subscriber_count:
            self._changes.publish(self.list_pending())
