"""Paginated reader over the Square catalog.

Yields parsed ``CatalogItem`` models one page at a time.  Iteration is
restartable only from the beginning; a failed page aborts the whole
listing with ``CatalogFetchError`` because a partial catalog must never be
mistaken for a complete one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel

from api.exceptions import CatalogFetchError, SquareAPIError
from config import settings
from services.square_client import _api_request
from services.square_endpoints import CATALOG_OBJECT_PATH, SEARCH_CATALOG_ITEMS_PATH

logger = logging.getLogger(__name__)


class LocationOverride(BaseModel):
    location_id: str = ""
    track_inventory: bool | None = None


class Variation(BaseModel):
    """A sellable SKU of a catalog item."""

    id: str
    name: str = ""
    price_cents: int | None = None
    currency: str = ""
    track_inventory: bool | None = None
    location_overrides: list[LocationOverride] = []

    @property
    def price(self) -> float | None:
        if self.price_cents is None:
            return None
        return self.price_cents / 100

    def tracking_disabled_at(self, location_id: str) -> bool:
        """True when inventory is explicitly untracked at *location_id*."""
        if self.track_inventory is False:
            return True
        return any(
            o.location_id == location_id and o.track_inventory is False
            for o in self.location_overrides
        )


class CatalogItem(BaseModel):
    """A catalog item with its variations, as returned by Square."""

    id: str
    name: str = ""
    description: str = ""
    image_ids: list[str] = []
    variations: list[Variation] = []
    updated_at: str | None = None

    @property
    def primary_variation(self) -> Variation | None:
        return self.variations[0] if self.variations else None

    @property
    def is_voucher(self) -> bool:
        return "voucher" in self.name.lower() or "voucher" in self.description.lower()


def _parse_variation(obj: dict[str, Any]) -> Variation | None:
    if obj.get("type") != "ITEM_VARIATION" or not obj.get("id"):
        return None
    data = obj.get("item_variation_data") or {}
    price_money = data.get("price_money") or {}
    amount = price_money.get("amount")
    return Variation(
        id=obj["id"],
        name=data.get("name") or "",
        price_cents=int(amount) if amount is not None else None,
        currency=price_money.get("currency") or "",
        track_inventory=data.get("track_inventory"),
        location_overrides=[
            LocationOverride(
                location_id=o.get("location_id") or "",
                track_inventory=o.get("track_inventory"),
            )
            for o in data.get("location_overrides") or []
        ],
    )


def parse_catalog_item(obj: dict[str, Any]) -> CatalogItem | None:
    """Build a CatalogItem from a Square catalog object, or None if not an item."""
    if obj.get("type") != "ITEM" or obj.get("is_deleted"):
        return None
    data = obj.get("item_data") or {}
    variations = [
        v for v in (_parse_variation(raw) for raw in data.get("variations") or []) if v
    ]
    return CatalogItem(
        id=obj["id"],
        name=data.get("name") or "",
        description=data.get("description") or "",
        image_ids=list(data.get("image_ids") or []),
        variations=variations,
        updated_at=obj.get("updated_at"),
    )


def fetch_all(location_id: str | None = None) -> Iterator[CatalogItem]:
    """Yield every catalog item, following Square's cursor pagination.

    When *location_id* is given only items enabled at that location are
    requested.  Raises CatalogFetchError if any page fails.
    """
    cursor: str | None = None
    page = 0
    total = 0

    while True:
        page += 1
        body: dict[str, Any] = {"limit": settings.square_page_limit}
        if location_id:
            body["enabled_location_ids"] = [location_id]
        if cursor:
            body["cursor"] = cursor

        try:
            data = _api_request("POST", SEARCH_CATALOG_ITEMS_PATH, body)
        except SquareAPIError as exc:
            msg = f"Catalog page {page} fetch failed: {exc}"
            raise CatalogFetchError(msg) from exc

        for obj in data.get("items") or []:
            item = parse_catalog_item(obj)
            if item is not None:
                total += 1
                yield item

        cursor = data.get("cursor")
        if not cursor:
            break

    logger.info("Fetched %d catalog items across %d page(s)", total, page)


def fetch_object(object_id: str) -> dict[str, Any] | None:
    """Fetch a single catalog object by id."""
    data = _api_request("GET", CATALOG_OBJECT_PATH.format(object_id=quote(object_id, safe="")))
    return data.get("object")


def fetch_image_url(image_id: str) -> str | None:
    """Return the URL of a catalog image object, or None if it has none."""
    obj = fetch_object(image_id)
    if not obj or obj.get("type") != "IMAGE":
        return None
    return (obj.get("image_data") or {}).get("url") or None


def resolve_images(image_ids: list[str]) -> tuple[list[dict[str, str]], list[str]]:
    """Resolve image ids to ``{"id", "url"}`` dicts in catalog order.

    Images that fail to load are left out and reported in the returned
    warnings list instead of raising.
    """
    images: list[dict[str, str]] = []
    warnings: list[str] = []
    for image_id in image_ids:
        try:
            url = fetch_image_url(image_id)
        except SquareAPIError as exc:
            logger.warning("Image fetch failed for %s: %s", image_id, exc)
            warnings.append(f"Image {image_id} could not be fetched: {exc}")
            continue
        if url:
            images.append({"id": image_id, "url": url})
    return images, warnings
