"""Per-location inventory lookups and stock classification."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from api.exceptions import SquareAPIError
from config import settings
from services.catalog_fetcher import Variation
from services.square_client import _api_request
from services.square_endpoints import BATCH_RETRIEVE_INVENTORY_COUNTS_PATH

logger = logging.getLogger(__name__)

IN_STOCK = "in_stock"
LOW_STOCK = "low_stock"
OUT_OF_STOCK = "out_of_stock"

# Square caps catalog_object_ids per batch-retrieve request.
MAX_IDS_PER_REQUEST = 1000


class StockInfo(BaseModel):
    quantity: int
    stock_status: str
    available_at_location: bool
    warning: str | None = None

    @property
    def in_stock(self) -> bool:
        return self.stock_status != OUT_OF_STOCK


def classify_stock(quantity: int) -> str:
    """Map a quantity to in_stock / low_stock / out_of_stock."""
    if quantity <= 0:
        return OUT_OF_STOCK
    if quantity < settings.low_stock_threshold:
        return LOW_STOCK
    return IN_STOCK


def _parse_quantity(raw: Any) -> int:
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return 0


def get_counts(location_id: str, variation_ids: set[str]) -> dict[str, int]:
    """Return in-stock quantities at *location_id* keyed by variation id.

    Variations without an inventory record at the location are absent from
    the result, which is not the same as a quantity of 0.
    Raises SquareAPIError if a lookup fails.
    """
    counts: dict[str, int] = {}
    ids = sorted(variation_ids)

    for start in range(0, len(ids), MAX_IDS_PER_REQUEST):
        batch = ids[start : start + MAX_IDS_PER_REQUEST]
        cursor: str | None = None
        while True:
            body: dict[str, Any] = {
                "catalog_object_ids": batch,
                "location_ids": [location_id],
                "states": ["IN_STOCK"],
            }
            if cursor:
                body["cursor"] = cursor
            data = _api_request("POST", BATCH_RETRIEVE_INVENTORY_COUNTS_PATH, body)

            for count in data.get("counts") or []:
                if count.get("location_id", location_id) != location_id:
                    continue
                object_id = count.get("catalog_object_id")
                if object_id:
                    counts[object_id] = counts.get(object_id, 0) + _parse_quantity(
                        count.get("quantity")
                    )

            cursor = data.get("cursor")
            if not cursor:
                break

    return counts


def check_stock(
    variation: Variation,
    location_id: str | None,
    is_voucher: bool = False,
) -> StockInfo:
    """Work out the stock fields for one variation.

    Vouchers and variations with tracking disabled at the location are
    always in stock.  With no location configured every item is included
    (fail-open).  A failed lookup degrades to out of stock and carries a
    warning for the run report rather than raising.
    """
    if is_voucher or (location_id and variation.tracking_disabled_at(location_id)):
        return StockInfo(
            quantity=settings.untracked_stock_quantity,
            stock_status=IN_STOCK,
            available_at_location=True,
        )

    if not location_id:
        logger.debug("No location configured; including %s without a stock check", variation.id)
        return StockInfo(quantity=0, stock_status=IN_STOCK, available_at_location=True)

    try:
        counts = get_counts(location_id, {variation.id})
    except SquareAPIError as exc:
        logger.warning("Inventory lookup failed for %s: %s", variation.id, exc)
        return StockInfo(
            quantity=0,
            stock_status=OUT_OF_STOCK,
            available_at_location=True,
            warning=f"Inventory lookup failed for {variation.id}: {exc}",
        )

    if variation.id not in counts:
        logger.debug("No inventory record for %s at %s", variation.id, location_id)
        return StockInfo(quantity=0, stock_status=OUT_OF_STOCK, available_at_location=False)

    quantity = max(counts[variation.id], 0)
    return StockInfo(
        quantity=quantity,
        stock_status=classify_stock(quantity),
        available_at_location=True,
    )
