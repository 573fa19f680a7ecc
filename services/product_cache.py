"""TTL cache in front of the storefront product listing.

The cache is an injected ``CacheStore`` so the HTTP handlers never touch
module-level state; the entry point builds one ``ProductCache`` and hands
it to the app factory.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import database.models as models

logger = logging.getLogger(__name__)

PRODUCTS_KEY = "storefront-products"


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    cached_at: float
    ttl: float


class CacheStore(ABC):
    """Key/value store with per-entry expiry.

    ``generation`` moves on every invalidation.  A writer that read it before
    loading passes it to ``put`` so a value computed before an invalidation
    is never stored after it.
    """

    @property
    @abstractmethod
    def generation(self) -> int: ...

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the cached value, or None if absent or expired."""

    @abstractmethod
    def put(self, key: str, value: Any, ttl: float, generation: int | None = None) -> bool:
        """Store *value*; return False if *generation* is out of date."""

    @abstractmethod
    def invalidate(self, key: str | None = None) -> None:
        """Drop *key*, or every entry when *key* is None."""


class InMemoryCacheStore(CacheStore):
    """Process-local store; entries are swapped whole under a lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.cached_at >= entry.ttl:
            return None
        return entry.value

    def put(self, key: str, value: Any, ttl: float, generation: int | None = None) -> bool:
        entry = CacheEntry(value=value, cached_at=self._clock(), ttl=ttl)
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries[key] = entry
            return True

    def invalidate(self, key: str | None = None) -> None:
        with self._lock:
            self._generation += 1
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)


def format_storefront_product(product: dict[str, Any]) -> dict[str, Any]:
    """Shape a products row for the storefront JSON response."""
    return {
        "id": product["id"],
        "slug": product["slug"],
        "title": product["title"],
        "artist": product["artist"] or "",
        "price": product["price"],
        "description": product["description"] or "",
        "image": product["image"],
        "images": product["images"],
        "productType": product["product_type"],
        "genre": product["genre"] or "",
        "mood": product["mood"] or "",
        "merchCategory": product["merch_category"] or "",
        "size": product["size"] or "",
        "color": product["color"] or "",
        "inStock": bool(product["in_stock"]),
        "stockQuantity": product["stock_quantity"],
        "stockStatus": product["stock_status"],
        "isVisible": bool(product["is_visible"]),
        "isVariablePricing": bool(product["is_variable_pricing"]),
        "minPrice": product["min_price"],
        "maxPrice": product["max_price"],
        "isPreorder": bool(product["is_preorder"]),
        "preorderReleaseDate": product["preorder_release_date"] or "",
        "externalVariationId": product["external_variation_id"],
    }


def load_storefront_products(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    """Read visible products from the store in storefront shape."""
    return [format_storefront_product(p) for p in models.list_products(conn, visible_only=True)]


class ProductCache:
    """Serve the product listing from a ``CacheStore`` with TTL expiry.

    *loader* is called with no arguments to recompute the listing from the
    store when the cached entry is missing or expired.
    """

    def __init__(
        self,
        store: CacheStore,
        loader: Callable[[], list[dict[str, Any]]],
        ttl_seconds: float,
    ) -> None:
        self.store = store
        self.loader = loader
        self.ttl_seconds = ttl_seconds

    def get(self) -> tuple[list[dict[str, Any]], bool]:
        """Return ``(products, from_cache)``."""
        cached = self.store.get(PRODUCTS_KEY)
        if cached is not None:
            return cached, True
        return self.refresh(), False

    def refresh(self) -> list[dict[str, Any]]:
        generation = self.store.generation
        products = self.loader()
        if self.store.put(PRODUCTS_KEY, products, self.ttl_seconds, generation=generation):
            logger.info("Product cache refreshed with %d product(s)", len(products))
        else:
            logger.debug("Product cache invalidated during refresh; result not stored")
        return products

    def invalidate(self) -> None:
        self.store.invalidate(PRODUCTS_KEY)
        logger.debug("Product cache invalidated")
