"""Sync run orchestration: fetch, check stock, reconcile, hide, report.

One run (or one chunk of a run) executes synchronously per request.  A
process-wide ``RunLock`` rejects overlapping runs, and only a run that
covered the whole catalog in one go is allowed to hide stale products.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import database.models as models
from api.exceptions import CatalogFetchError, SyncInProgressError, ValidationError
from config import settings
from services import catalog_fetcher, inventory, reconciler
from services.catalog_fetcher import CatalogItem
from services.product_cache import ProductCache
from services.reconciler import ItemOutcome, OutcomeKind
from services.visibility import hide_stale_products

logger = logging.getLogger(__name__)

SUPPORTED_DIRECTIONS = ("pull",)


class RunLock:
    """Single-flight guard: a "running since" timestamp behind a mutex.

    A holder older than *timeout_seconds* is treated as crashed and its
    lock is taken over.  ``acquire`` hands back an owner token, and only
    the current owner's token releases the lock.
    """

    def __init__(
        self,
        timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._mutex = threading.Lock()
        self._started_at: float | None = None
        self._owner: str | None = None

    @property
    def timeout(self) -> float:
        if self.timeout_seconds is not None:
            return self.timeout_seconds
        return settings.sync_lock_timeout_seconds

    @property
    def is_held(self) -> bool:
        with self._mutex:
            return self._is_live()

    def _is_live(self) -> bool:
        if self._started_at is None:
            return False
        return self._clock() - self._started_at < self.timeout

    def acquire(self) -> str:
        with self._mutex:
            if self._owner is not None:
                if self._is_live():
                    msg = "Sync already in progress. Please wait for it to complete."
                    raise SyncInProgressError(msg)
                logger.warning("Releasing stale sync lock")
            self._started_at = self._clock()
            self._owner = uuid.uuid4().hex
            return self._owner

    def release(self, token: str) -> None:
        with self._mutex:
            if token != self._owner:
                logger.warning("Ignoring release from a sync run whose lock was taken over")
                return
            self._started_at = None
            self._owner = None


@dataclass
class SyncRunReport:
    """Counts and log lines for one run or chunk."""

    direction: str = "pull"
    start_index: int = 0
    chunk_size: int | None = None
    synced_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    total_processed: int = 0
    total_products: int = 0
    hidden_count: int = 0
    is_complete: bool = False
    success: bool = True
    message: str = ""
    error: str | None = None
    log: list[str] = field(default_factory=list)

    def record(self, outcome: ItemOutcome) -> None:
        if outcome.kind in (OutcomeKind.CREATED, OutcomeKind.UPDATED):
            self.synced_count += 1
            self.log.append(f"{outcome.kind.value.capitalize()}: {outcome.title}")
        elif outcome.kind is OutcomeKind.SKIPPED:
            self.skipped_count += 1
            self.log.append(f"Skipped {outcome.title}: {outcome.reason}")
        else:
            self.error_count += 1
            self.log.append(f"Error syncing {outcome.title}: {outcome.reason}")
        # Degraded lookups still sync the item but count as errors.
        for warning in outcome.warnings:
            self.error_count += 1
            self.log.append(f"Warning for {outcome.title}: {warning}")

    def fail(self, error: Exception) -> SyncRunReport:
        self.success = False
        self.error = str(error)
        self.message = f"Sync failed: {error}"
        self.log.append(self.message)
        return self

    @property
    def next_chunk(self) -> dict[str, int] | None:
        if not self.success or self.is_complete or self.chunk_size is None:
            return None
        return {"startIndex": self.total_processed, "chunkSize": self.chunk_size}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": self.success,
            "direction": self.direction,
            "syncedCount": self.synced_count,
            "skippedCount": self.skipped_count,
            "errorCount": self.error_count,
            "totalProcessed": self.total_processed,
            "totalProducts": self.total_products,
            "isComplete": self.is_complete,
            "nextChunk": self.next_chunk,
            "hiddenCount": self.hidden_count,
            "message": self.message,
            "log": self.log,
        }
        if self.error is not None:
            body["error"] = self.error
        return body


class SyncCoordinator:
    """Run catalog syncs against one location.

    *location_id* defaults to ``settings.square_location_id`` at run time.
    *cache* is invalidated after every successful run or chunk.
    """

    def __init__(
        self,
        cache: ProductCache | None = None,
        location_id: str | None = None,
        lock: RunLock | None = None,
    ) -> None:
        self.cache = cache
        self.location_id = location_id
        self.lock = lock or RunLock()

    @property
    def is_running(self) -> bool:
        return self.lock.is_held

    def _resolve_location(self) -> str:
        if self.location_id is not None:
            return self.location_id
        return settings.square_location_id

    def _fetch_catalog(self, location_id: str) -> list[CatalogItem]:
        items = list(catalog_fetcher.fetch_all(location_id or None))
        if not items and location_id and settings.square_location_fallback:
            logger.warning(
                "No items enabled at location %s; falling back to the unfiltered catalog",
                location_id,
            )
            items = list(catalog_fetcher.fetch_all(None))
        return items

    def _process_item(
        self,
        conn: sqlite3.Connection,
        item: CatalogItem,
        location_id: str,
        live_ids: frozenset[str],
        synced_at: str,
    ) -> ItemOutcome:
        variation = item.primary_variation
        if variation is None:
            return ItemOutcome.skipped(item.name or item.id, "no-variations")
        try:
            stock = inventory.check_stock(variation, location_id or None, item.is_voucher)
            images, image_warnings = catalog_fetcher.resolve_images(item.image_ids)
            outcome = reconciler.reconcile(
                conn, item, stock, images, live_external_ids=live_ids, synced_at=synced_at
            )
        except Exception as exc:
            logger.exception("Unexpected error syncing %s", item.name or item.id)
            conn.rollback()
            return ItemOutcome.failed(item.name or item.id, str(exc))

        if stock.warning:
            outcome.warnings.append(stock.warning)
        outcome.warnings.extend(image_warnings)
        return outcome

    def run(
        self,
        conn: sqlite3.Connection,
        direction: str = "pull",
        chunk_size: int | None = None,
        start_index: int = 0,
    ) -> SyncRunReport:
        """Sync ``[start_index, start_index + chunk_size)`` of the catalog.

        Without *chunk_size* the rest of the catalog is processed.  Raises
        ValidationError for bad arguments and SyncInProgressError while
        another run holds the lock.  A failed catalog fetch is returned as a
        report with ``success=False``.
        """
        if direction not in SUPPORTED_DIRECTIONS:
            msg = f"Unsupported sync direction: {direction!r}"
            raise ValidationError(msg)
        if chunk_size is not None and chunk_size < 1:
            msg = "chunkSize must be a positive integer"
            raise ValidationError(msg)
        if start_index < 0:
            msg = "startIndex must not be negative"
            raise ValidationError(msg)

        token = self.lock.acquire()
        try:
            return self._run_locked(conn, direction, chunk_size, start_index)
        finally:
            self.lock.release(token)

    def _run_locked(
        self,
        conn: sqlite3.Connection,
        direction: str,
        chunk_size: int | None,
        start_index: int,
    ) -> SyncRunReport:
        report = SyncRunReport(direction=direction, start_index=start_index, chunk_size=chunk_size)
        location_id = self._resolve_location()
        report.log.append(
            f"Starting {direction} sync at index {start_index}"
            + (f" (chunk size {chunk_size})" if chunk_size else "")
        )

        try:
            items = self._fetch_catalog(location_id)
        except CatalogFetchError as exc:
            logger.error("Catalog fetch failed; aborting sync: %s", exc)
            return report.fail(exc)

        report.total_products = len(items)
        report.log.append(f"Found {len(items)} products in the catalog")
        live_ids = frozenset(
            item.primary_variation.id for item in items if item.primary_variation is not None
        )

        end = len(items) if chunk_size is None else start_index + chunk_size
        chunk = items[start_index:end]
        synced_at = models.now_timestamp()
        for item in chunk:
            report.record(self._process_item(conn, item, location_id, live_ids, synced_at))

        report.total_processed = max(min(end, len(items)), start_index)
        report.is_complete = report.total_processed >= report.total_products

        if start_index == 0 and report.is_complete:
            report.hidden_count = hide_stale_products(conn, set(live_ids))
            if report.hidden_count:
                report.log.append(f"Hid {report.hidden_count} products no longer in the catalog")

        models.record_sync_state(
            conn,
            last_sync=synced_at,
            last_sync_count=report.synced_count,
            direction=direction,
            synced_count=report.synced_count,
            skipped_count=report.skipped_count,
            error_count=report.error_count,
            hidden_count=report.hidden_count,
            is_complete=int(report.is_complete),
            location_id=location_id,
        )
        if self.cache is not None:
            self.cache.invalidate()

        report.message = (
            f"Synced {report.synced_count} products, skipped {report.skipped_count}, "
            f"{report.error_count} errors ({report.total_processed}/{report.total_products} processed)"
        )
        report.log.append(report.message)
        logger.info(report.message)
        return report
