"""Schema smoke tests."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from database import apply_schema, get_db, init_database

EXPECTED_TABLES = [
    "products",
    "preorders",
    "sync_state",
]


def test_all_tables_exist(db: sqlite3.Connection) -> None:
    rows = db.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name").fetchall()
    table_names = {row["name"] for row in rows}
    for table in EXPECTED_TABLES:
        assert table in table_names, f"Missing table: {table}"


def test_sync_state_initialised(db: sqlite3.Connection) -> None:
    row = db.execute("SELECT * FROM sync_state WHERE id = 1").fetchone()
    assert row is not None
    assert row["last_sync"] is None
    assert row["last_sync_count"] == 0


def test_sync_state_single_row(db: sqlite3.Connection) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        db.execute("INSERT INTO sync_state (id) VALUES (2)")


def test_slug_unique(db: sqlite3.Connection) -> None:
    db.execute("INSERT INTO products (slug, title) VALUES ('a', 'A')")
    with pytest.raises(sqlite3.IntegrityError):
        db.execute("INSERT INTO products (slug, title) VALUES ('a', 'Another A')")


def test_external_id_unique_when_present(db: sqlite3.Connection) -> None:
    db.execute("INSERT INTO products (slug, title, external_variation_id) VALUES ('a', 'A', 'V1')")
    with pytest.raises(sqlite3.IntegrityError):
        db.execute(
            "INSERT INTO products (slug, title, external_variation_id) VALUES ('b', 'B', 'V1')"
        )


def test_multiple_unlinked_products_allowed(db: sqlite3.Connection) -> None:
    db.execute("INSERT INTO products (slug, title) VALUES ('a', 'A')")
    db.execute("INSERT INTO products (slug, title) VALUES ('b', 'B')")
    count = db.execute("SELECT COUNT(*) FROM products WHERE external_variation_id IS NULL")
    assert count.fetchone()[0] == 2


def test_stock_status_check_constraint(db: sqlite3.Connection) -> None:
    """Only in_stock/low_stock/out_of_stock should be allowed."""
    with pytest.raises(sqlite3.IntegrityError):
        db.execute(
            "INSERT INTO products (slug, title, stock_status) VALUES (?, ?, ?)",
            ("a", "A", "plenty"),
        )


def test_product_type_check_constraint(db: sqlite3.Connection) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        db.execute(
            "INSERT INTO products (slug, title, product_type) VALUES (?, ?, ?)",
            ("a", "A", "bicycle"),
        )


def test_apply_schema_is_idempotent(db: sqlite3.Connection) -> None:
    apply_schema(db)
    apply_schema(db)
    assert db.execute("SELECT COUNT(*) FROM sync_state").fetchone()[0] == 1


def test_migrates_older_schema() -> None:
    """Columns added after the first release are back-filled."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.executescript(
        """
        CREATE TABLE products (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            external_variation_id TEXT,
            slug TEXT NOT NULL UNIQUE,
            title TEXT NOT NULL,
            is_visible INTEGER NOT NULL DEFAULT 1
        );
        CREATE TABLE sync_state (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            last_sync TEXT,
            last_sync_count INTEGER NOT NULL DEFAULT 0
        );
        """
    )
    apply_schema(conn)
    product_cols = {r[1] for r in conn.execute("PRAGMA table_info(products)").fetchall()}
    state_cols = {r[1] for r in conn.execute("PRAGMA table_info(sync_state)").fetchall()}
    assert {"last_synced_at", "external_updated_at", "available_at_location"} <= product_cols
    assert "location_id" in state_cols
    conn.close()


def test_init_database_creates_file(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "catalog.db"
    init_database(str(db_path))
    assert db_path.is_file()
    conn = get_db(str(db_path))
    try:
        assert conn.execute("SELECT id FROM sync_state").fetchone()["id"] == 1
    finally:
        conn.close()
