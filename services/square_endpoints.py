"""Centralised Square REST API paths.

All endpoint paths used by the Square integration live here so that
``catalog_fetcher`` and ``inventory`` import from a single source of truth.
"""

SEARCH_CATALOG_ITEMS_PATH = "/v2/catalog/search-catalog-items"

CATALOG_OBJECT_PATH = "/v2/catalog/object/{object_id}"

BATCH_RETRIEVE_INVENTORY_COUNTS_PATH = "/v2/inventory/counts/batch-retrieve"

LOCATIONS_PATH = "/v2/locations"
