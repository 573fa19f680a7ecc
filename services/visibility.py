"""Hide products whose catalog item has disappeared."""

from __future__ import annotations

import logging
import sqlite3

import database.models as models

logger = logging.getLogger(__name__)


def hide_stale_products(conn: sqlite3.Connection, synced_external_ids: set[str]) -> int:
    """Hide every linked product whose variation id is not in *synced_external_ids*.

    Must only be called after a complete, successful listing of the catalog.
    An empty set is treated as "nothing fetched" and hides nothing.  Products
    without an external id are never touched.  Hidden products are not
    restored automatically if the item reappears.
    """
    if not synced_external_ids:
        logger.warning("No synced ids supplied; skipping stale product hide")
        return 0
    hidden = models.hide_products_not_in(conn, synced_external_ids)
    if hidden:
        logger.info("Hid %d product(s) no longer in the catalog", hidden)
    return hidden
