"""CLI entry point for the catalog sync engine."""

from __future__ import annotations

import logging
import sys

import click

from config import settings
from database import init_database


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Catalog sync and storefront cache service."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
def init_db() -> None:
    """Initialise the SQLite database (creates tables if missing)."""
    init_database(settings.database_path)
    print(f"Database initialised at {settings.database_path}")


@cli.command()
def web() -> None:
    """Start the Flask API server."""
    from api.app import create_app

    app = create_app()
    app.run(
        host=settings.flask_host,
        port=settings.flask_port,
        debug=settings.flask_debug,
    )


def _print_report(report) -> None:
    for line in report.log:
        print(f"  {line}")
    print(
        f"\nSynced: {report.synced_count}  Skipped: {report.skipped_count}  "
        f"Errors: {report.error_count}  Hidden: {report.hidden_count}"
    )
    print(f"Processed {report.total_processed}/{report.total_products}")


@cli.command()
@click.option("--chunk-size", type=int, default=None, help="Process only this many items.")
@click.option("--start-index", type=int, default=0, show_default=True, help="First item to process.")
def sync(chunk_size: int | None, start_index: int) -> None:
    """Pull the catalog into the local store (one run or one chunk)."""
    from database.connection import get_db
    from services.sync_coordinator import SyncCoordinator

    conn = get_db(settings.database_path)
    try:
        report = SyncCoordinator().run(conn, chunk_size=chunk_size, start_index=start_index)
    finally:
        conn.close()

    _print_report(report)
    if not report.success:
        print(f"Sync failed: {report.error}")
        sys.exit(1)
    if report.next_chunk:
        print(f"Next chunk starts at {report.next_chunk['startIndex']}")


@cli.command()
@click.option("--chunk-size", type=int, default=5, show_default=True, help="Items per chunk.")
@click.option("--start-index", type=int, default=0, show_default=True, help="Resume from this index.")
@click.option("--delay", type=float, default=1.0, show_default=True, help="Seconds between chunks.")
def chunked_sync(chunk_size: int, start_index: int, delay: float) -> None:
    """Pull the catalog in chunks until every item has been processed.

    Chunked runs never hide stale products; run a plain ``sync`` for that.
    """
    import time

    from database.connection import get_db
    from services.sync_coordinator import SyncCoordinator

    coordinator = SyncCoordinator()
    totals = {"synced": 0, "skipped": 0, "errors": 0}
    next_index = start_index

    conn = get_db(settings.database_path)
    try:
        while True:
            print(f"Processing chunk starting at {next_index} (size {chunk_size}) ...")
            report = coordinator.run(conn, chunk_size=chunk_size, start_index=next_index)
            if not report.success:
                print(f"Chunk failed: {report.error}")
                print(f"Resume with: chunked-sync --start-index {next_index}")
                sys.exit(1)

            totals["synced"] += report.synced_count
            totals["skipped"] += report.skipped_count
            totals["errors"] += report.error_count
            print(f"  {report.message}")

            if report.is_complete or report.next_chunk is None:
                break
            next_index = report.next_chunk["startIndex"]
            time.sleep(delay)
    finally:
        conn.close()

    print(
        f"\nChunked sync complete. Synced: {totals['synced']}  "
        f"Skipped: {totals['skipped']}  Errors: {totals['errors']}"
    )


@cli.command()
def show_locations() -> None:
    """List the merchant's locations and flag the configured one."""
    from services.square_client import list_locations

    locations = list_locations()
    if not locations:
        print("No locations found.")
        return

    print(f"{'ID':<20} {'Name':<30} {'Status':<10}")
    print("-" * 62)
    for loc in locations:
        marker = " *" if loc["id"] == settings.square_location_id else ""
        print(f"{loc['id']:<20} {loc['name']:<30} {loc['status']:<10}{marker}")
    if settings.square_location_id:
        print("\n* configured SQUARE_LOCATION_ID")


if __name__ == "__main__":
    cli()
