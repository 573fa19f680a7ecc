"""Merge engine: fold one catalog item into the local products table.

Matching is an ordered list of strategies, first hit wins.  Field updates
follow the declared ``FIELD_POLICIES`` table so the rules for which local
edits survive a sync live in one place.  ``reconcile`` never raises for
item-level problems; it returns an ``ItemOutcome`` instead.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import database.models as models
from api.exceptions import ProductIntegrityError
from services.catalog_fetcher import CatalogItem, Variation
from services.inventory import StockInfo
from utils.slug import generate_slug, iter_slug_candidates

logger = logging.getLogger(__name__)

MAX_SLUG_ATTEMPTS = 5

PLACEHOLDER_IMAGE = "/store.webp"
VOUCHER_IMAGE = "/voucher-image.svg"
VOUCHER_MIN_PRICE = 10.0
VOUCHER_MAX_PRICE = 500.0

_DESCRIPTION_MARKERS = ("[HIDDEN FROM STORE]", "[PREORDER]")


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class OutcomeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemOutcome:
    """Result of reconciling one catalog item."""

    kind: OutcomeKind
    title: str
    local_id: int | None = None
    reason: str | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def created(cls, title: str, local_id: int) -> ItemOutcome:
        return cls(OutcomeKind.CREATED, title, local_id=local_id)

    @classmethod
    def updated(cls, title: str, local_id: int) -> ItemOutcome:
        return cls(OutcomeKind.UPDATED, title, local_id=local_id)

    @classmethod
    def skipped(cls, title: str, reason: str) -> ItemOutcome:
        return cls(OutcomeKind.SKIPPED, title, reason=reason)

    @classmethod
    def failed(cls, title: str, error: str) -> ItemOutcome:
        return cls(OutcomeKind.FAILED, title, reason=error)


# ---------------------------------------------------------------------------
# Merge policy
# ---------------------------------------------------------------------------


class MergePolicy(Enum):
    ALWAYS_OVERWRITE = "always_overwrite"
    PRESERVE_IF_NON_EMPTY = "preserve_if_non_empty"
    NEVER_TOUCH = "never_touch"


@dataclass(frozen=True)
class FieldPolicy:
    policy: MergePolicy
    default: Any = None

    def is_empty(self, value: Any) -> bool:
        return value is None or value == "" or value == self.default


_OVERWRITE = FieldPolicy(MergePolicy.ALWAYS_OVERWRITE)

FIELD_POLICIES: dict[str, FieldPolicy] = {
    # identity / bookkeeping
    "external_variation_id": _OVERWRITE,
    "is_from_catalog": _OVERWRITE,
    "last_synced_at": _OVERWRITE,
    "external_updated_at": _OVERWRITE,
    # catalog-derived
    "title": _OVERWRITE,
    "price": _OVERWRITE,
    "description": _OVERWRITE,
    "image": _OVERWRITE,
    "images": _OVERWRITE,
    "is_variable_pricing": _OVERWRITE,
    "min_price": _OVERWRITE,
    "max_price": _OVERWRITE,
    # inventory-derived
    "stock_quantity": _OVERWRITE,
    "stock_status": _OVERWRITE,
    "available_at_location": _OVERWRITE,
    "in_stock": _OVERWRITE,
    # preorder linkage, only present in incoming data when a preorder record exists
    "is_preorder": _OVERWRITE,
    "preorder_release_date": _OVERWRITE,
    "preorder_quantity": _OVERWRITE,
    "preorder_max_quantity": _OVERWRITE,
    # admin-curated
    "product_type": FieldPolicy(MergePolicy.PRESERVE_IF_NON_EMPTY, "record"),
    "artist": FieldPolicy(MergePolicy.PRESERVE_IF_NON_EMPTY, ""),
    "genre": FieldPolicy(MergePolicy.PRESERVE_IF_NON_EMPTY, ""),
    "mood": FieldPolicy(MergePolicy.PRESERVE_IF_NON_EMPTY, ""),
    "merch_category": FieldPolicy(MergePolicy.PRESERVE_IF_NON_EMPTY, ""),
    "size": FieldPolicy(MergePolicy.PRESERVE_IF_NON_EMPTY, ""),
    "color": FieldPolicy(MergePolicy.PRESERVE_IF_NON_EMPTY, ""),
    "is_visible": FieldPolicy(MergePolicy.NEVER_TOUCH, 1),
}


def merge_fields(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Return the column changes to apply to *existing* per FIELD_POLICIES.

    Raises KeyError for an incoming field with no declared policy.
    """
    changes: dict[str, Any] = {}
    for name, value in incoming.items():
        policy = FIELD_POLICIES[name]
        current = existing.get(name)
        if policy.policy is MergePolicy.NEVER_TOUCH:
            continue
        if policy.policy is MergePolicy.PRESERVE_IF_NON_EMPTY:
            if not policy.is_empty(current) or policy.is_empty(value):
                continue
        if current != value:
            changes[name] = value
    return changes


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MatchRequest:
    external_variation_id: str
    title: str
    # Variation ids present in the current catalog listing.
    live_external_ids: frozenset[str] = frozenset()


MatchStrategy = Callable[[sqlite3.Connection, MatchRequest], "dict[str, Any] | None"]


def match_by_external_id(
    conn: sqlite3.Connection, request: MatchRequest
) -> dict[str, Any] | None:
    return models.get_product_by_external_id(conn, request.external_variation_id)


def match_by_catalog_title(
    conn: sqlite3.Connection, request: MatchRequest
) -> dict[str, Any] | None:
    """Match a catalog-sourced product by exact title.

    Only products that are unlinked, or linked to a variation id no longer in
    the catalog, are eligible, so two live items sharing a name never
    collapse into one record.
    """
    for candidate in models.find_catalog_products_by_title(conn, request.title):
        linked = candidate["external_variation_id"]
        if linked is None or linked not in request.live_external_ids:
            return candidate
    return None


MATCH_STRATEGIES: tuple[MatchStrategy, ...] = (match_by_external_id, match_by_catalog_title)


def find_match(
    conn: sqlite3.Connection,
    request: MatchRequest,
    strategies: tuple[MatchStrategy, ...] = MATCH_STRATEGIES,
) -> dict[str, Any] | None:
    for strategy in strategies:
        product = strategy(conn, request)
        if product is not None:
            logger.debug("Matched %r via %s", request.title, strategy.__name__)
            return product
    return None


# ---------------------------------------------------------------------------
# Incoming field construction
# ---------------------------------------------------------------------------


def detect_product_type(item: CatalogItem) -> str:
    if item.is_voucher:
        return "voucher"
    if "merch" in item.description.lower():
        return "merch"
    return "record"


def clean_description(description: str) -> str:
    for marker in _DESCRIPTION_MARKERS:
        description = description.replace(marker, "")
    return description.strip()


def build_incoming(
    item: CatalogItem,
    variation: Variation,
    stock: StockInfo,
    images: list[dict[str, str]],
    preorder: dict[str, Any] | None,
    synced_at: str,
) -> dict[str, Any]:
    """Build the catalog-, inventory- and preorder-derived column values."""
    is_voucher = item.is_voucher
    if images:
        primary_image = images[0]["url"]
    else:
        primary_image = VOUCHER_IMAGE if is_voucher else PLACEHOLDER_IMAGE

    fields: dict[str, Any] = {
        "external_variation_id": variation.id,
        "is_from_catalog": 1,
        "last_synced_at": synced_at,
        "external_updated_at": item.updated_at or synced_at,
        "title": item.name or "No title",
        "price": 0.0 if is_voucher else (variation.price or 0.0),
        "description": clean_description(item.description),
        "image": primary_image,
        "images": images,
        "product_type": detect_product_type(item),
        "is_variable_pricing": int(is_voucher),
        "min_price": VOUCHER_MIN_PRICE if is_voucher else None,
        "max_price": VOUCHER_MAX_PRICE if is_voucher else None,
        "stock_quantity": stock.quantity,
        "stock_status": stock.stock_status,
        "available_at_location": int(stock.available_at_location),
        "in_stock": int(stock.in_stock),
    }
    if preorder is not None:
        fields["is_preorder"] = int(bool(preorder["is_preorder"]))
        fields["preorder_release_date"] = preorder["preorder_release_date"] or ""
        fields["preorder_quantity"] = preorder["preorder_quantity"] or 0
        fields["preorder_max_quantity"] = preorder["preorder_max_quantity"] or 0
    return fields


# ---------------------------------------------------------------------------
# Upsert
# ---------------------------------------------------------------------------


def _is_slug_violation(exc: sqlite3.IntegrityError) -> bool:
    return "products.slug" in str(exc)


def _create_with_unique_slug(
    conn: sqlite3.Connection, incoming: dict[str, Any]
) -> dict[str, Any]:
    """Insert a new product, moving to the next slug suffix on collision."""
    base = generate_slug(incoming["title"], incoming.get("artist"))
    candidates = iter_slug_candidates(base)
    for _ in range(MAX_SLUG_ATTEMPTS):
        slug = next((c for c in candidates if not models.slug_exists(conn, c)), None)
        if slug is None:
            break
        try:
            return models.create_product(conn, commit=False, slug=slug, is_visible=1, **incoming)
        except sqlite3.IntegrityError as exc:
            if not _is_slug_violation(exc):
                raise
            logger.warning("Slug %r taken concurrently, trying next suffix", slug)
    msg = f"Could not allocate a unique slug for {incoming['title']!r}"
    raise ProductIntegrityError(msg)


def reconcile(
    conn: sqlite3.Connection,
    item: CatalogItem,
    stock: StockInfo,
    images: list[dict[str, str]] | None = None,
    live_external_ids: frozenset[str] = frozenset(),
    synced_at: str | None = None,
) -> ItemOutcome:
    """Upsert one catalog item as a single transaction.

    Only the item's primary variation is stored.  Returns created/updated
    on success, skipped for items that cannot be stored, and failed for
    database errors.
    """
    title = item.name or item.id
    variation = item.primary_variation
    if variation is None:
        return ItemOutcome.skipped(title, "no-variations")
    if variation.price_cents is None and not item.is_voucher:
        return ItemOutcome.skipped(title, "no-price")

    synced_at = synced_at or models.now_timestamp()
    try:
        preorder = models.get_preorder(conn, variation.id)
        incoming = build_incoming(item, variation, stock, images or [], preorder, synced_at)
        existing = find_match(
            conn,
            MatchRequest(variation.id, incoming["title"], live_external_ids),
        )

        if existing is None:
            product = _create_with_unique_slug(conn, incoming)
            conn.commit()
            logger.info("Created %s (slug %s)", product["title"], product["slug"])
            return ItemOutcome.created(title, product["id"])

        changes = merge_fields(existing, incoming)
        models.update_product(conn, existing["id"], commit=False, **changes)
        conn.commit()
        logger.debug("Updated %s (%d field(s) changed)", existing["title"], len(changes))
        return ItemOutcome.updated(title, existing["id"])

    except ProductIntegrityError as exc:
        conn.rollback()
        logger.warning("Skipping %s: %s", title, exc)
        return ItemOutcome.skipped(title, str(exc))
    except sqlite3.IntegrityError as exc:
        conn.rollback()
        logger.warning("Skipping %s: integrity error: %s", title, exc)
        return ItemOutcome.skipped(title, f"integrity-error: {exc}")
    except (sqlite3.Error, ValueError) as exc:
        conn.rollback()
        logger.warning("Failed to reconcile %s: %s", title, exc, exc_info=True)
        return ItemOutcome.failed(title, str(exc))
