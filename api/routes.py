"""API endpoints for catalog sync, the storefront product cache and admin edits."""

from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request

import database.models as models
from api.errors import error_response, handle_errors
from api.exceptions import NotFoundError, ValidationError
from config import settings
from database.connection import get_db
from services.product_cache import ProductCache
from services.sync_coordinator import SyncCoordinator
from utils.slug import is_valid_slug

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__, url_prefix="/api")

PRODUCT_TYPES = ("record", "merch", "accessory", "voucher")

_ADMIN_TEXT_FIELDS = ("artist", "genre", "mood", "merch_category", "size", "color")


# ---------------------------------------------------------------------------
# DB lifecycle
# ---------------------------------------------------------------------------


@api_bp.before_request
def _open_db() -> None:
    """Open a database connection and store it on flask.g."""
    g.db = get_db(settings.database_path)


@api_bp.teardown_request
def _close_db(exc: BaseException | None = None) -> None:
    """Close the per-request database connection."""
    db = g.pop("db", None)
    if db is not None:
        db.close()


def _cache() -> ProductCache:
    return current_app.extensions["product_cache"]


def _coordinator() -> SyncCoordinator:
    return current_app.extensions["sync_coordinator"]


def _int_field(data: dict[str, Any], key: str, default: int | None) -> int | None:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        msg = f"{key} must be an integer"
        raise ValidationError(msg)
    try:
        return int(value)
    except (TypeError, ValueError):
        msg = f"{key} must be an integer"
        raise ValidationError(msg) from None


# ===========================================================================
# Sync endpoints
# ===========================================================================


@api_bp.route("/sync", methods=["POST"])
@handle_errors
def run_sync() -> tuple:
    """Run one sync, or one chunk of a sync, against the catalog."""
    data = request.get_json(silent=True) or {}
    direction = data.get("direction", "pull")
    chunk_size = _int_field(data, "chunkSize", None)
    start_index = _int_field(data, "startIndex", 0)

    report = _coordinator().run(
        g.db,
        direction=direction,
        chunk_size=chunk_size,
        start_index=start_index,
    )
    status = 200 if report.success else 502
    return jsonify(report.to_dict()), status


@api_bp.route("/sync", methods=["GET"])
@handle_errors
def last_sync() -> tuple:
    """Summary of the last successful run."""
    state = models.get_sync_state(g.db)
    return jsonify(
        {
            "success": True,
            "lastSync": state["last_sync"],
            "lastSyncCount": state["last_sync_count"],
            "locationId": state["location_id"] or settings.square_location_id or None,
            "inProgress": _coordinator().is_running,
        }
    ), 200


@api_bp.route("/sync/status", methods=["GET"])
@handle_errors
def sync_status() -> tuple:
    """Last-run counts plus local store statistics."""
    state = models.get_sync_state(g.db)
    stats = models.get_catalog_stats(g.db)
    return jsonify(
        {
            "success": True,
            "sync": {
                "lastSync": state["last_sync"],
                "direction": state["direction"],
                "syncedCount": state["synced_count"],
                "skippedCount": state["skipped_count"],
                "errorCount": state["error_count"],
                "hiddenCount": state["hidden_count"],
                "isComplete": bool(state["is_complete"]),
                "locationId": state["location_id"],
                "inProgress": _coordinator().is_running,
            },
            "store": {
                "totalProducts": stats["total_products"],
                "visibleProducts": stats["visible_products"],
                "catalogProducts": stats["catalog_products"],
                "lastSyncedAt": stats["last_sync_time"],
                "productTypes": {
                    row["product_type"]: row["count"] for row in stats["product_types"]
                },
            },
        }
    ), 200


# ===========================================================================
# Storefront product endpoints
# ===========================================================================


@api_bp.route("/products", methods=["GET"])
@handle_errors
def list_products() -> tuple:
    """Visible products, served from the cache while it is fresh."""
    products, from_cache = _cache().get()
    return jsonify({"success": True, "products": products, "fromCache": from_cache}), 200


@api_bp.route("/products/refresh", methods=["POST"])
@handle_errors
def refresh_products() -> tuple:
    """Drop the cached listing and recompute it from the store."""
    cache = _cache()
    cache.invalidate()
    products = cache.refresh()
    return jsonify({"success": True, "products": products, "fromCache": False}), 200


@api_bp.route("/products/<slug>", methods=["GET"])
@handle_errors
def get_product(slug: str) -> tuple:
    """Look up one visible product by slug in the current cache snapshot."""
    if not is_valid_slug(slug):
        raise NotFoundError("Product not found")
    products, from_cache = _cache().get()
    for product in products:
        if product["slug"] == slug:
            return jsonify({"success": True, "product": product, "fromCache": from_cache}), 200
    raise NotFoundError("Product not found")


# ===========================================================================
# Admin endpoints
# ===========================================================================


@api_bp.route("/products/<int:product_id>", methods=["PUT"])
@handle_errors
def update_product(product_id: int) -> tuple:
    """Edit admin-curated fields, visibility or price of a product."""
    data = request.get_json(silent=True)
    if not data:
        return error_response("Request body must be JSON", 400)

    if models.get_product(g.db, product_id) is None:
        return error_response("Product not found", 404)

    update_fields: dict[str, Any] = {}
    for key in _ADMIN_TEXT_FIELDS:
        if key in data:
            update_fields[key] = str(data[key] or "").strip()

    if "product_type" in data:
        if data["product_type"] not in PRODUCT_TYPES:
            return error_response(
                f"product_type must be one of: {', '.join(PRODUCT_TYPES)}", 400
            )
        update_fields["product_type"] = data["product_type"]

    if "is_visible" in data:
        if not isinstance(data["is_visible"], bool):
            return error_response("is_visible must be a boolean", 400)
        update_fields["is_visible"] = int(data["is_visible"])

    if "price" in data:
        try:
            price = float(data["price"])
        except (TypeError, ValueError):
            return error_response("price must be a number", 400)
        if price < 0:
            return error_response("price must not be negative", 400)
        update_fields["price"] = price

    if not update_fields:
        return error_response("No valid fields to update", 400)

    updated = models.update_product(g.db, product_id, **update_fields)
    _cache().invalidate()
    logger.info("Admin updated product %d: %s", product_id, ", ".join(sorted(update_fields)))
    return jsonify({"success": True, "product": updated}), 200


@api_bp.route("/cache/invalidate", methods=["POST"])
@handle_errors
def invalidate_cache() -> tuple:
    """Force the next product listing to be recomputed."""
    _cache().invalidate()
    return jsonify({"success": True, "message": "Product cache invalidated"}), 200
