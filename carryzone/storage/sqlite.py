"""SQLite storage backend for carryzone.

Local-first storage with:
- SQLite for pins and the sync queue (one database file)
- Live snapshot subscriptions that re-emit every pin after each write
"""

import contextlib
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from carryzone.errors import LocalStoreError
from carryzone.observable import EventChannel, Subscription
from carryzone.types import Location, Pin, PinMetadata, PinStatus, RestrictionTag

from .schema import init_db

logger = logging.getLogger(__name__)


class Database:
    """Connection factory for the carryzone SQLite file.

    Connections are created per operation. Every sqlite3 error is re-raised
    as LocalStoreError after rolling back.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            init_db(conn)

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that handles transactions AND closes connection.

        - Transaction commit on success
        - Transaction rollback on exception
        - Connection close in all cases
        """
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise LocalStoreError(f"Cannot open database {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise LocalStoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def connect(self):
        return self._connect()


def row_to_pin(row: sqlite3.Row) -> Pin:
    """Convert a pins row to a Pin."""
    return Pin(
        id=row["id"],
        name=row["name"] or "",
        location=Location(latitude=row["latitude"], longitude=row["longitude"]),
        status=PinStatus.from_code(row["status"]),
        metadata=PinMetadata(
            photo_uri=row["photo_uri"],
            notes=row["notes"],
            votes=row["votes"] or 0,
            created_by=row["created_by"],
            created_at=row["created_at"],
            last_modified=row["last_modified"],
            restriction_tag=RestrictionTag.from_string(row["restriction_tag"]),
            has_security_screening=bool(row["has_security_screening"]),
            has_posted_signage=bool(row["has_posted_signage"]),
        ),
    )


def pin_to_row(pin: Pin) -> Dict[str, Any]:
    """Convert a Pin to named parameters for the pins table."""
    meta = pin.metadata
    return {
        "id": pin.id,
        "name": pin.name,
        "longitude": pin.location.longitude,
        "latitude": pin.location.latitude,
        "status": pin.status.code,
        "photo_uri": meta.photo_uri,
        "notes": meta.notes,
        "votes": meta.votes,
        "created_by": meta.created_by,
        "created_at": meta.created_at,
        "last_modified": meta.last_modified,
        "restriction_tag": meta.restriction_tag.value if meta.restriction_tag else None,
        "has_security_screening": 1 if meta.has_security_screening else 0,
        "has_posted_signage": 1 if meta.has_posted_signage else 0,
    }


_PIN_COLUMNS = (
    "id, name, longitude, latitude, status, photo_uri, notes, votes, created_by, "
    "created_at, last_modified, restriction_tag, has_security_screening, has_posted_signage"
)
_PIN_PARAMS = ", ".join(f":{col.strip()}" for col in _PIN_COLUMNS.split(","))
_PIN_ASSIGNMENTS = ", ".join(
    f"{col.strip()} = :{col.strip()}" for col in _PIN_COLUMNS.split(",") if col.strip() != "id"
)


class SQLitePinStore:
    """SQLite-based local pin store.

    Writes are serialized in-process; after each committed write every
    observer receives the full current list of pins (newest first).
    """

    def __init__(self, db: Database):
        self._db = db
        self._changes: EventChannel[List[Pin]] = EventChannel("pins")
        self._write_lock = threading.RLock()
        self._version = 0

    @classmethod
    def open(cls, db_path: Path) -> "SQLitePinStore":
        return cls(Database(db_path))

    @property
    def database(self) -> Database:
        return self._db

    @property
    def version(self) -> int:
        """Number of committed writes since this store was opened."""
        return self._version

    # === Reads ===

    def get_by_id(self, pin_id: str) -> Optional[Pin]:
        with self._db.connect() as conn:
            row = conn.execute(
                f"SELECT {_PIN_COLUMNS} FROM pins WHERE id = ?", (pin_id,)
            ).fetchone()
        return row_to_pin(row) if row else None

    def get_all(self) -> List[Pin]:
        with self._db.connect() as conn:
            rows = conn.execute(
                f"SELECT {_PIN_COLUMNS} FROM pins ORDER BY created_at DESC"
            ).fetchall()
        return [row_to_pin(row) for row in rows]

    def count(self) -> int:
        with self._db.connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM pins").fetchone()[0]

    # === Writes ===

    def insert(self, pin: Pin) -> None:
        """Insert a pin, replacing any existing pin with the same id."""
        with self._write_lock:
            with self._db.connect() as conn:
                conn.execute(
                    f"INSERT OR REPLACE INTO pins ({_PIN_COLUMNS}) VALUES ({_PIN_PARAMS})",
                    pin_to_row(pin),
                )
            self._committed()

    def update(self, pin: Pin) -> bool:
        """Update an existing pin. Returns False if no pin has that id."""
        with self._write_lock:
            with self._db.connect() as conn:
                cursor = conn.execute(
                    f"UPDATE pins SET {_PIN_ASSIGNMENTS} WHERE id = :id", pin_to_row(pin)
                )
                changed = cursor.rowcount > 0
            if changed:
                self._committed()
            return changed

    def delete(self, pin: Pin) -> bool:
        """Delete a pin. Returns False if it was not stored."""
        return self.delete_by_id(pin.id)

    def delete_by_id(self, pin_id: str) -> bool:
        with self._write_lock:
            with self._db.connect() as conn:
                cursor = conn.execute("DELETE FROM pins WHERE id = ?", (pin_id,))
                changed = cursor.rowcount > 0
            if changed:
                self._committed()
            return changed

    def delete_all(self) -> int:
        with self._write_lock:
            with self._db.connect() as conn:
                cursor = conn.execute("DELETE FROM pins")
                count = cursor.rowcount
            self._committed()
            return count

    # === Observation ===

    def observe_all(self, callback: Callable[[List[Pin]], None]) -> Subscription:
        """Subscribe to the full pin list.

        The callback receives the current snapshot immediately, then a new
        snapshot after every committed write, until the subscription is
        cancelled.
        """
        with self._write_lock:
            return self._changes.subscribe(callback, initial=self.get_all())

    def _committed(self) -> None:
        self._version += 1
        if self._changes.subscriber_count:
            self._changes.publish(self.get_all())
