"""Tests for database.models CRUD helpers."""

from __future__ import annotations

import sqlite3
from typing import Any

import pytest

from database.models import (
    create_product,
    find_catalog_products_by_title,
    get_catalog_stats,
    get_preorder,
    get_product,
    get_product_by_external_id,
    get_product_by_slug,
    get_sync_state,
    hide_products_not_in,
    list_products,
    record_sync_state,
    slug_exists,
    update_product,
)


class TestProducts:
    def test_create_and_fetch(self, db: sqlite3.Connection, sample_product: dict[str, Any]) -> None:
        assert sample_product["id"] is not None
        assert sample_product["slug"] == "blue-train"
        assert sample_product["images"] == []
        assert sample_product["is_visible"] == 1
        assert get_product_by_slug(db, "blue-train")["id"] == sample_product["id"]
        assert get_product_by_external_id(db, "VAR-ITEM1")["id"] == sample_product["id"]

    def test_create_requires_slug_and_title(self, db: sqlite3.Connection) -> None:
        with pytest.raises(ValueError, match="slug"):
            create_product(db, title="No slug")
        with pytest.raises(ValueError, match="title"):
            create_product(db, slug="no-title")

    def test_duplicate_slug_raises(
        self, db: sqlite3.Connection, sample_product: dict[str, Any]
    ) -> None:
        with pytest.raises(sqlite3.IntegrityError, match="products.slug"):
            create_product(db, slug="blue-train", title="Blue Train")

    def test_images_round_trip_as_json(self, db: sqlite3.Connection) -> None:
        images = [{"id": "IMG1", "url": "https://img.test/1.jpg"}]
        product = create_product(db, slug="x", title="X", images=images)
        assert product["images"] == images

    def test_unknown_fields_ignored_on_create(self, db: sqlite3.Connection) -> None:
        product = create_product(db, slug="x", title="X", not_a_column="nope")
        assert "not_a_column" not in product

    def test_update(self, db: sqlite3.Connection, sample_product: dict[str, Any]) -> None:
        updated = update_product(db, sample_product["id"], genre="Jazz", price=30.0)
        assert updated["genre"] == "Jazz"
        assert updated["price"] == 30.0

    def test_update_cannot_change_slug(
        self, db: sqlite3.Connection, sample_product: dict[str, Any]
    ) -> None:
        update_product(db, sample_product["id"], slug="other", title="Renamed")
        product = get_product(db, sample_product["id"])
        assert product["slug"] == "blue-train"
        assert product["title"] == "Renamed"

    def test_update_missing_returns_none(self, db: sqlite3.Connection) -> None:
        assert update_product(db, 999, genre="Jazz") is None

    def test_commit_false_can_roll_back(
        self, db: sqlite3.Connection, sample_product: dict[str, Any]
    ) -> None:
        update_product(db, sample_product["id"], commit=False, title="Uncommitted")
        db.rollback()
        assert get_product(db, sample_product["id"])["title"] == "Blue Train"

    def test_slug_exists(self, db: sqlite3.Connection, sample_product: dict[str, Any]) -> None:
        assert slug_exists(db, "blue-train") is True
        assert slug_exists(db, "red-train") is False

    def test_list_products_visible_only(self, db: sqlite3.Connection) -> None:
        create_product(db, slug="b", title="B")
        create_product(db, slug="a", title="A", is_visible=0)
        assert [p["title"] for p in list_products(db)] == ["A", "B"]
        assert [p["title"] for p in list_products(db, visible_only=True)] == ["B"]


class TestFindCatalogProductsByTitle:
    def test_unlinked_first(self, db: sqlite3.Connection) -> None:
        create_product(db, slug="x-1", title="X", external_variation_id="OLD", is_from_catalog=1)
        create_product(db, slug="x-2", title="X", is_from_catalog=1)
        found = find_catalog_products_by_title(db, "X")
        assert [p["slug"] for p in found] == ["x-2", "x-1"]

    def test_ignores_manual_products(self, db: sqlite3.Connection) -> None:
        create_product(db, slug="x", title="X", is_from_catalog=0)
        assert find_catalog_products_by_title(db, "X") == []


class TestHideProductsNotIn:
    def test_hides_only_missing_linked(self, db: sqlite3.Connection) -> None:
        create_product(db, slug="a", title="A", external_variation_id="A")
        create_product(db, slug="b", title="B", external_variation_id="B")
        create_product(db, slug="manual", title="Manual")
        assert hide_products_not_in(db, {"A"}) == 1
        visible = {p["slug"] for p in list_products(db, visible_only=True)}
        assert visible == {"a", "manual"}

    def test_already_hidden_not_counted(self, db: sqlite3.Connection) -> None:
        create_product(db, slug="b", title="B", external_variation_id="B", is_visible=0)
        assert hide_products_not_in(db, {"A"}) == 0


class TestPreorders:
    def test_missing(self, db: sqlite3.Connection) -> None:
        assert get_preorder(db, "VAR1") is None

    def test_found(self, db: sqlite3.Connection, seed_preorder) -> None:
        seed_preorder("VAR1", preorder_release_date="2024-09-01", preorder_quantity=2)
        record = get_preorder(db, "VAR1")
        assert record["preorder_release_date"] == "2024-09-01"
        assert record["preorder_quantity"] == 2
        assert record["is_preorder"] == 1


class TestSyncState:
    def test_record_and_read(self, db: sqlite3.Connection) -> None:
        record_sync_state(db, last_sync="2024-05-01 10:00:00", last_sync_count=4, location_id="L")
        state = get_sync_state(db)
        assert state["last_sync_count"] == 4
        assert state["location_id"] == "L"

    def test_unknown_field_rejected(self, db: sqlite3.Connection) -> None:
        with pytest.raises(ValueError, match="No valid fields"):
            record_sync_state(db, bogus=1)


class TestCatalogStats:
    def test_counts(self, db: sqlite3.Connection) -> None:
        create_product(db, slug="a", title="A", is_from_catalog=1, product_type="record")
        create_product(db, slug="b", title="B", is_from_catalog=1, product_type="merch")
        create_product(db, slug="c", title="C", is_visible=0, product_type="merch")
        stats = get_catalog_stats(db)
        assert stats["total_products"] == 3
        assert stats["visible_products"] == 2
        assert stats["catalog_products"] == 2
        assert {r["product_type"]: r["count"] for r in stats["product_types"]} == {
            "merch": 1,
            "record": 1,
        }
