"""Database CRUD operations.

Implements the data-access functions for products, preorder linkage,
and the persisted last-sync summary.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from typing import Any

# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _row_to_dict(row: sqlite3.Row | None) -> dict[str, Any] | None:
    """Convert a sqlite3.Row to a plain dict, or return None."""
    if row is None:
        return None
    return dict(row)


def _rows_to_list(rows: list[sqlite3.Row]) -> list[dict[str, Any]]:
    """Convert a list of sqlite3.Row to a list of dicts."""
    return [dict(r) for r in rows]


def _product_from_row(row: sqlite3.Row | None) -> dict[str, Any] | None:
    """Convert a products row to a dict with ``images`` decoded from JSON."""
    product = _row_to_dict(row)
    if product is not None:
        product["images"] = json.loads(product.get("images") or "[]")
    return product


def now_timestamp() -> str:
    """Return the current UTC timestamp as an ISO-8601 string."""
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S.%f")


def _build_update(
    table: str,
    row_id: int,
    fields: dict[str, Any],
    allowed: set[str],
) -> tuple[str, list[Any]]:
    """Build a dynamic UPDATE statement from validated field names.

    Only columns in *allowed* are accepted — this whitelist check prevents
    SQL injection even though column names are interpolated into the query.

    Returns (sql, params) ready for ``conn.execute()``.
    """
    to_set: dict[str, Any] = {}
    for key, value in fields.items():
        if key in allowed:
            to_set[key] = value
    if not to_set:
        msg = "No valid fields to update"
        raise ValueError(msg)

    clauses = [f"{col} = ?" for col in to_set]
    params = list(to_set.values())
    params.append(row_id)
    sql = f"UPDATE {table} SET {', '.join(clauses)} WHERE id = ?"  # noqa: S608
    return sql, params


def _encode_product_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Serialise the JSON-backed product columns."""
    encoded = dict(fields)
    if "images" in encoded and not isinstance(encoded["images"], str):
        encoded["images"] = json.dumps(encoded["images"])
    return encoded


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

_PRODUCT_COLUMNS = {
    "external_variation_id",
    "slug",
    "title",
    "price",
    "description",
    "image",
    "images",
    "product_type",
    "is_variable_pricing",
    "min_price",
    "max_price",
    "artist",
    "genre",
    "mood",
    "merch_category",
    "size",
    "color",
    "is_visible",
    "stock_quantity",
    "stock_status",
    "available_at_location",
    "in_stock",
    "is_preorder",
    "preorder_release_date",
    "preorder_quantity",
    "preorder_max_quantity",
    "is_from_catalog",
    "last_synced_at",
    "external_updated_at",
}

# Slug is fixed at creation.
_PRODUCT_UPDATE_ALLOWED = (_PRODUCT_COLUMNS - {"slug"}) | {"updated_at"}


def create_product(
    conn: sqlite3.Connection,
    commit: bool = True,
    **fields: Any,
) -> dict[str, Any]:
    """Insert a new product and return it.

    Raises sqlite3.IntegrityError on a duplicate slug or external variation id
    so callers can tell the two apart and retry.
    """
    to_insert = {k: v for k, v in _encode_product_fields(fields).items() if k in _PRODUCT_COLUMNS}
    for required in ("slug", "title"):
        if not to_insert.get(required):
            msg = f"Missing required product field: {required}"
            raise ValueError(msg)

    now = now_timestamp()
    to_insert.setdefault("created_at", now)
    to_insert.setdefault("updated_at", now)
    columns = ", ".join(to_insert)
    placeholders = ", ".join("?" for _ in to_insert)
    cur = conn.execute(
        f"INSERT INTO products ({columns}) VALUES ({placeholders})",  # noqa: S608
        list(to_insert.values()),
    )
    if commit:
        conn.commit()
    row = conn.execute("SELECT * FROM products WHERE id = ?", (cur.lastrowid,)).fetchone()
    return _product_from_row(row)  # type: ignore[return-value]


def get_product(conn: sqlite3.Connection, product_id: int) -> dict[str, Any] | None:
    """Return a single product by ID."""
    return _product_from_row(
        conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
    )


def get_product_by_slug(conn: sqlite3.Connection, slug: str) -> dict[str, Any] | None:
    """Return a single product by slug."""
    return _product_from_row(
        conn.execute("SELECT * FROM products WHERE slug = ?", (slug,)).fetchone()
    )


def get_product_by_external_id(
    conn: sqlite3.Connection,
    external_variation_id: str,
) -> dict[str, Any] | None:
    """Return the product linked to a catalog variation id."""
    return _product_from_row(
        conn.execute(
            "SELECT * FROM products WHERE external_variation_id = ?",
            (external_variation_id,),
        ).fetchone()
    )


def find_catalog_products_by_title(
    conn: sqlite3.Connection,
    title: str,
) -> list[dict[str, Any]]:
    """Return catalog-sourced products with this exact title.

    Products not yet linked to a variation come first, then oldest first.
    """
    rows = conn.execute(
        """
        SELECT * FROM products
        WHERE title = ? AND is_from_catalog = 1
        ORDER BY external_variation_id IS NOT NULL, id
        """,
        (title,),
    ).fetchall()
    return [_product_from_row(r) for r in rows]  # type: ignore[misc]


def slug_exists(conn: sqlite3.Connection, slug: str) -> bool:
    """Check if a slug is already taken."""
    row = conn.execute("SELECT 1 FROM products WHERE slug = ?", (slug,)).fetchone()
    return row is not None


def list_products(
    conn: sqlite3.Connection,
    visible_only: bool = False,
) -> list[dict[str, Any]]:
    """Return products ordered by title, optionally only the visible ones."""
    sql = "SELECT * FROM products"
    if visible_only:
        sql += " WHERE is_visible = 1"
    sql += " ORDER BY title, id"
    return [_product_from_row(r) for r in conn.execute(sql).fetchall()]  # type: ignore[misc]


def update_product(
    conn: sqlite3.Connection,
    product_id: int,
    commit: bool = True,
    **fields: Any,
) -> dict[str, Any] | None:
    """Update a product's fields and return the updated row."""
    fields = _encode_product_fields(fields)
    fields["updated_at"] = now_timestamp()
    sql, params = _build_update("products", product_id, fields, _PRODUCT_UPDATE_ALLOWED)
    conn.execute(sql, params)
    if commit:
        conn.commit()
    return get_product(conn, product_id)


def hide_products_not_in(
    conn: sqlite3.Connection,
    external_ids: set[str],
    commit: bool = True,
) -> int:
    """Set is_visible = 0 on linked products whose external id is not in the set.

    Runs as a single UPDATE; the id set is passed as one JSON parameter so
    the statement is not bound by SQLite's host-parameter limit.
    Returns the number of products hidden.
    """
    cur = conn.execute(
        """
        UPDATE products
        SET is_visible = 0, updated_at = ?
        WHERE external_variation_id IS NOT NULL
          AND is_visible = 1
          AND external_variation_id NOT IN (SELECT value FROM json_each(?))
        """,
        (now_timestamp(), json.dumps(sorted(external_ids))),
    )
    if commit:
        conn.commit()
    return cur.rowcount


# ---------------------------------------------------------------------------
# Preorders
# ---------------------------------------------------------------------------


def get_preorder(
    conn: sqlite3.Connection,
    external_variation_id: str,
) -> dict[str, Any] | None:
    """Return the preorder record for a catalog variation, if any."""
    return _row_to_dict(
        conn.execute(
            "SELECT * FROM preorders WHERE external_variation_id = ?",
            (external_variation_id,),
        ).fetchone()
    )


# ---------------------------------------------------------------------------
# Sync state
# ---------------------------------------------------------------------------

_SYNC_STATE_ALLOWED = {
    "last_sync",
    "last_sync_count",
    "direction",
    "synced_count",
    "skipped_count",
    "error_count",
    "hidden_count",
    "is_complete",
    "location_id",
}


def get_sync_state(conn: sqlite3.Connection) -> dict[str, Any]:
    """Return the persisted summary of the last sync run."""
    row = conn.execute("SELECT * FROM sync_state WHERE id = 1").fetchone()
    if row is None:
        msg = "sync_state table is not initialised"
        raise RuntimeError(msg)
    return dict(row)


def record_sync_state(conn: sqlite3.Connection, **fields: Any) -> dict[str, Any]:
    """Overwrite the last-run summary and return it."""
    sql, params = _build_update("sync_state", 1, fields, _SYNC_STATE_ALLOWED)
    conn.execute(sql, params)
    conn.commit()
    return get_sync_state(conn)


# ---------------------------------------------------------------------------
# Reporting Queries
# ---------------------------------------------------------------------------


def get_catalog_stats(conn: sqlite3.Connection) -> dict[str, Any]:
    """Product counts for the admin sync status view."""
    row = conn.execute(
        """
        SELECT
            COUNT(*)                                            AS total_products,
            COALESCE(SUM(CASE WHEN is_visible = 1 THEN 1 ELSE 0 END), 0)
                                                                AS visible_products,
            COALESCE(SUM(CASE WHEN is_from_catalog = 1 THEN 1 ELSE 0 END), 0)
                                                                AS catalog_products,
            MAX(last_synced_at)                                 AS last_sync_time
        FROM products
        """
    ).fetchone()
    stats = dict(row)
    stats["product_types"] = _rows_to_list(
        conn.execute(
            """
            SELECT product_type, COUNT(*) AS count
            FROM products
            WHERE is_visible = 1
            GROUP BY product_type
            ORDER BY product_type
            """
        ).fetchall()
    )
    return stats
