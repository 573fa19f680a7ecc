"""Application configuration loaded from environment variables."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, model_validator

load_dotenv()

_PROJECT_ROOT = Path(__file__).resolve().parent

logger = logging.getLogger(__name__)

_SQUARE_BASE_URLS = {
    "production": "https://connect.squareup.com",
    "sandbox": "https://connect.squareupsandbox.com",
}


class Config(BaseModel):
    """Centralised app configuration backed by env vars."""

    # Square
    square_access_token: str = ""
    square_environment: str = "production"
    square_api_version: str = "2025-01-23"
    square_location_id: str = ""
    square_location_fallback: bool = True
    square_page_limit: int = 100
    square_max_retries: int = 3

    # Sync / cache
    database_path: str = str(_PROJECT_ROOT / "data" / "catalog.db")
    cache_ttl_seconds: int = 300
    sync_lock_timeout_seconds: int = 1800
    low_stock_threshold: int = 3
    untracked_stock_quantity: int = 999

    # Flask
    flask_host: str = "127.0.0.1"
    flask_port: int = 5000
    flask_debug: bool = True
    flask_secret_key: str = "change-me-in-production"  # noqa: S105
    cors_origins: list[str] = ["http://localhost:3000"]

    @model_validator(mode="after")
    def _warn_empty_critical_fields(self) -> Config:
        """Log warnings when critical integration fields are empty."""
        if not self.square_access_token:
            logger.warning("SQUARE_ACCESS_TOKEN is not set, catalog sync will fail")
        if not self.square_location_id:
            logger.warning(
                "SQUARE_LOCATION_ID is not set, inventory checks will include every item"
            )
        if self.square_environment not in _SQUARE_BASE_URLS:
            msg = f"Unknown SQUARE_ENVIRONMENT: {self.square_environment!r}"
            raise ValueError(msg)
        return self

    @property
    def square_base_url(self) -> str:
        return _SQUARE_BASE_URLS[self.square_environment]

    @classmethod
    def from_env(cls) -> Config:
        """Build config from environment variables."""
        cors_raw = os.getenv("CORS_ORIGINS", "http://localhost:3000")
        cors_origins = [o.strip() for o in cors_raw.split(",") if o.strip()]

        return cls(
            square_access_token=os.getenv("SQUARE_ACCESS_TOKEN", ""),
            square_environment=os.getenv("SQUARE_ENVIRONMENT", "production").lower(),
            square_api_version=os.getenv("SQUARE_API_VERSION", "2025-01-23"),
            square_location_id=os.getenv("SQUARE_LOCATION_ID", ""),
            square_location_fallback=os.getenv("SQUARE_LOCATION_FALLBACK", "true").lower()
            in ("1", "true", "yes"),
            square_page_limit=int(os.getenv("SQUARE_PAGE_LIMIT", "100")),
            square_max_retries=int(os.getenv("SQUARE_MAX_RETRIES", "3")),
            database_path=os.getenv(
                "DATABASE_PATH", str(_PROJECT_ROOT / "data" / "catalog.db")
            ),
            cache_ttl_seconds=int(os.getenv("CACHE_TTL_SECONDS", "300")),
            sync_lock_timeout_seconds=int(os.getenv("SYNC_LOCK_TIMEOUT_SECONDS", "1800")),
            low_stock_threshold=int(os.getenv("LOW_STOCK_THRESHOLD", "3")),
            untracked_stock_quantity=int(os.getenv("UNTRACKED_STOCK_QUANTITY", "999")),
            flask_host=os.getenv("FLASK_HOST", "127.0.0.1"),
            flask_port=int(os.getenv("FLASK_PORT", "5000")),
            flask_debug=os.getenv("FLASK_DEBUG", "true").lower() in ("1", "true", "yes"),
            flask_secret_key=os.getenv("FLASK_SECRET_KEY", "change-me-in-production"),
            cors_origins=cors_origins,
        )


settings = Config.from_env()
