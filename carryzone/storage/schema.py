"""Database schema and migration logic for carryzone SQLite storage.

Contains:
- Schema DDL (SCHEMA)
- Schema version tracking (SCHEMA_VERSION)
- Database initialization (init_db)
- Schema migration (migrate_schema)
"""

import logging
import sqlite3

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 3  # restriction tag and enforcement detail columns on pins

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Pins (local copy of every known pin)
CREATE TABLE IF NOT EXISTS pins (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL DEFAULT '',
    longitude REAL NOT NULL,
    latitude REAL NOT NULL,
    status INTEGER NOT NULL,  -- 0 = ALLOWED, 1 = UNCERTAIN, 2 = NO_GUN
    photo_uri TEXT,
    notes TEXT,
    votes INTEGER DEFAULT 0,
    created_by TEXT,
    created_at INTEGER NOT NULL,  -- epoch ms
    last_modified INTEGER NOT NULL,  -- epoch ms
    restriction_tag TEXT,
    has_security_screening INTEGER NOT NULL DEFAULT 0,
    has_posted_signage INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_pins_created_at ON pins(created_at);

-- Operations waiting to be pushed to the remote store (at most one per pin)
CREATE TABLE IF NOT EXISTS sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pin_id TEXT NOT NULL,
    operation_type TEXT NOT NULL CHECK (operation_type IN ('CREATE', 'UPDATE', 'DELETE')),
    timestamp INTEGER NOT NULL,  -- epoch ms when queued
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_error TEXT
);
CREATE INDEX IF NOT EXISTS idx_sync_queue_pin_id ON sync_queue(pin_id);
CREATE INDEX IF NOT EXISTS idx_sync_queue_timestamp ON sync_queue(timestamp);
"""

# Columns added to pins after the first release: (name, DDL type/default)
_PIN_COLUMN_MIGRATIONS = [
    ("name", "TEXT NOT NULL DEFAULT ''"),
    ("restriction_tag", "TEXT"),
    ("has_security_screening", "INTEGER NOT NULL DEFAULT 0"),
    ("has_posted_signage", "INTEGER NOT NULL DEFAULT 0"),
]


def init_db(conn: sqlite3.Connection) -> None:
    """Initialize the database schema.

    Runs migrations first so older databases gain new columns before the
    full schema (and its indexes) is applied.
    """
    migrate_schema(conn)

    # CREATE TABLE IF NOT EXISTS is safe to run on every start
    conn.executescript(SCHEMA)

    row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))

    conn.commit()


def migrate_schema(conn: sqlite3.Connection) -> None:
    """Apply additive migrations to an existing database."""
    table_names = {
        row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    }
    if "pins" not in table_names:
        return

    pin_cols = {row[1] for row in conn.execute("PRAGMA table_info(pins)")}
    migrations = [
        f"ALTER TABLE pins ADD COLUMN {name} {ddl}"
        for name, ddl in _PIN_COLUMN_MIGRATIONS
        if name not in pin_cols
    ]

    for migration in migrations:
        logger.info(f"Running migration: {migration}")
        conn.execute(migration)

    if migrations:
        conn.commit()
