"""SQLite connection helpers."""

from __future__ import annotations

import sqlite3
from pathlib import Path

_SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


def get_db(db_path: str) -> sqlite3.Connection:
    """Return a configured SQLite connection.

    Enables WAL mode, foreign keys, and sqlite3.Row factory.
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def _migrate_product_sync_columns(conn: sqlite3.Connection) -> None:
    """Add bookkeeping columns introduced after the first schema release."""
    existing = {
        row[1] for row in conn.execute("PRAGMA table_info(products)").fetchall()
    }
    for col in ("last_synced_at", "external_updated_at"):
        if col not in existing:
            conn.execute(f"ALTER TABLE products ADD COLUMN {col} TEXT")
    if "available_at_location" not in existing:
        conn.execute(
            "ALTER TABLE products ADD COLUMN available_at_location INTEGER NOT NULL DEFAULT 1"
        )
    conn.commit()


def _migrate_sync_state_location(conn: sqlite3.Connection) -> None:
    """Add location_id to sync_state if it doesn't exist."""
    existing = {
        row[1] for row in conn.execute("PRAGMA table_info(sync_state)").fetchall()
    }
    if "location_id" not in existing:
        conn.execute("ALTER TABLE sync_state ADD COLUMN location_id TEXT")
    conn.commit()


def apply_schema(conn: sqlite3.Connection) -> None:
    """Execute schema.sql and the additive migrations on *conn*."""
    conn.executescript(_SCHEMA_PATH.read_text())
    _migrate_product_sync_columns(conn)
    _migrate_sync_state_location(conn)


def init_database(db_path: str) -> None:
    """Create all tables by executing schema.sql.

    Safe to call repeatedly — uses CREATE TABLE IF NOT EXISTS.
    Also runs lightweight migrations for schema additions.
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_db(db_path)
    try:
        apply_schema(conn)
    finally:
        conn.close()
