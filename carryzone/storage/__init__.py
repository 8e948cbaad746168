"""carryzone storage backends.

Local-first storage using SQLite: the pin store and the sync queue share
one database file.
"""

from pathlib import Path
from typing import Tuple

from .schema import SCHEMA_VERSION
from .sqlite import Database, SQLitePinStore, pin_to_row, row_to_pin
from .sync_queue import SyncQueue


def open_local_storage(db_path: Path) -> Tuple[SQLitePinStore, SyncQueue]:
    """Open (creating if needed) the pin store and sync queue at ``db_path``."""
    db = Database(db_path)
    return SQLitePinStore(db), SyncQueue(db)


__all__ = [
    "SCHEMA_VERSION",
    "Database",
    "SQLitePinStore",
    "SyncQueue",
    "open_local_storage",
    "pin_to_row",
    "row_to_pin",
]
