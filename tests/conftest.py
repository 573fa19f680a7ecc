"""Shared test fixtures."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Generator
from typing import Any

import pytest

from config import settings
from database.connection import apply_schema
from database.models import create_product, now_timestamp
from services.catalog_fetcher import CatalogItem, LocationOverride, Variation
from services.product_cache import InMemoryCacheStore, ProductCache, load_storefront_products
from services.sync_coordinator import RunLock, SyncCoordinator

TEST_LOCATION_ID = "LOC1"
SQUARE_BASE_URL = "https://connect.squareupsandbox.com"


class _NoCloseConnection:
    """Wrapper around a sqlite3.Connection that ignores .close() calls.

    Prevents per-request teardown from destroying the shared in-memory fixture.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        object.__setattr__(self, "_conn", conn)

    def close(self) -> None:  # noqa: D102
        pass

    def __getattr__(self, name: str) -> object:
        return getattr(self._conn, name)

    def __setattr__(self, name: str, value: object) -> None:
        setattr(self._conn, name, value)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Point every module at sandbox credentials and the test location."""
    monkeypatch.setattr(settings, "square_access_token", "test-token")
    monkeypatch.setattr(settings, "square_environment", "sandbox")
    monkeypatch.setattr(settings, "square_location_id", TEST_LOCATION_ID)
    monkeypatch.setattr(settings, "square_location_fallback", True)
    monkeypatch.setattr(settings, "square_page_limit", 100)
    monkeypatch.setattr(settings, "square_max_retries", 2)
    monkeypatch.setattr(settings, "cache_ttl_seconds", 300)
    monkeypatch.setattr(settings, "low_stock_threshold", 3)
    monkeypatch.setattr(settings, "untracked_stock_quantity", 999)
    monkeypatch.setattr(settings, "sync_lock_timeout_seconds", 1800)
    monkeypatch.setattr(settings, "database_path", ":memory:")


@pytest.fixture
def db() -> Generator[sqlite3.Connection, None, None]:
    """In-memory SQLite database with the full schema applied."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_item() -> Callable[..., CatalogItem]:
    """Factory for catalog items with a single priced variation."""

    def _make(
        item_id: str = "ITEM1",
        name: str = "Blue Train",
        variation_id: str | None = None,
        price_cents: int | None = 2500,
        description: str = "",
        image_ids: list[str] | None = None,
        track_inventory: bool | None = True,
        overrides: list[LocationOverride] | None = None,
        extra_variations: list[Variation] | None = None,
    ) -> CatalogItem:
        variation = Variation(
            id=variation_id or f"VAR-{item_id}",
            name="Regular",
            price_cents=price_cents,
            currency="GBP",
            track_inventory=track_inventory,
            location_overrides=overrides or [],
        )
        return CatalogItem(
            id=item_id,
            name=name,
            description=description,
            image_ids=image_ids or [],
            variations=[variation, *(extra_variations or [])],
            updated_at="2024-05-01T10:00:00Z",
        )

    return _make


@pytest.fixture
def square_item() -> Callable[..., dict[str, Any]]:
    """Factory for raw Square ITEM catalog objects."""

    def _make(
        item_id: str = "ITEM1",
        name: str = "Blue Train",
        variation_id: str | None = None,
        amount: int | None = 2500,
        description: str = "",
        image_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        variation_data: dict[str, Any] = {
            "item_id": item_id,
            "name": "Regular",
            "track_inventory": True,
        }
        if amount is not None:
            variation_data["price_money"] = {"amount": amount, "currency": "GBP"}
        item_data: dict[str, Any] = {
            "name": name,
            "description": description,
            "variations": [
                {
                    "type": "ITEM_VARIATION",
                    "id": variation_id or f"VAR-{item_id}",
                    "item_variation_data": variation_data,
                }
            ],
        }
        if image_ids:
            item_data["image_ids"] = image_ids
        return {
            "type": "ITEM",
            "id": item_id,
            "updated_at": "2024-05-01T10:00:00Z",
            "is_deleted": False,
            "item_data": item_data,
        }

    return _make


@pytest.fixture
def sample_product(db: sqlite3.Connection) -> dict[str, Any]:
    """Insert and return a catalog-linked record."""
    return create_product(
        db,
        slug="blue-train",
        title="Blue Train",
        price=25.0,
        external_variation_id="VAR-ITEM1",
        is_from_catalog=1,
        stock_quantity=5,
        stock_status="in_stock",
        in_stock=1,
    )


@pytest.fixture
def seed_preorder(db: sqlite3.Connection) -> Callable[..., None]:
    """Insert preorder rows the way the admin tooling would."""

    def _seed(
        external_variation_id: str,
        preorder_release_date: str = "",
        preorder_quantity: int = 0,
        preorder_max_quantity: int = 0,
    ) -> None:
        db.execute(
            "INSERT INTO preorders (external_variation_id, is_preorder, preorder_release_date,"
            " preorder_quantity, preorder_max_quantity, updated_at)"
            " VALUES (?, 1, ?, ?, ?, ?)",
            (
                external_variation_id,
                preorder_release_date,
                preorder_quantity,
                preorder_max_quantity,
                now_timestamp(),
            ),
        )
        db.commit()

    return _seed


@pytest.fixture
def product_cache(db: sqlite3.Connection, clock: FakeClock) -> ProductCache:
    return ProductCache(
        InMemoryCacheStore(clock=clock),
        loader=lambda: load_storefront_products(db),
        ttl_seconds=300,
    )


@pytest.fixture
def coordinator(product_cache: ProductCache, clock: FakeClock) -> SyncCoordinator:
    return SyncCoordinator(
        cache=product_cache,
        location_id=TEST_LOCATION_ID,
        lock=RunLock(clock=clock),
    )


@pytest.fixture
def client(
    db: sqlite3.Connection,
    product_cache: ProductCache,
    coordinator: SyncCoordinator,
    monkeypatch: pytest.MonkeyPatch,
):
    """Flask test client sharing the in-memory DB, cache and coordinator."""
    from api.app import create_app

    wrapper = _NoCloseConnection(db)
    monkeypatch.setattr("api.routes.get_db", lambda _path: wrapper)
    app = create_app(cache=product_cache, coordinator=coordinator)
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
