"""Flask application factory."""

from __future__ import annotations

from typing import Any

from flask import Flask, jsonify, request
from flask_cors import CORS

from api.routes import api_bp
from config import settings
from database.connection import get_db
from services.product_cache import InMemoryCacheStore, ProductCache, load_storefront_products
from services.sync_coordinator import SyncCoordinator


def _load_products_from_store() -> list[dict[str, Any]]:
    conn = get_db(settings.database_path)
    try:
        return load_storefront_products(conn)
    finally:
        conn.close()


def build_product_cache() -> ProductCache:
    """Product cache backed by the configured database."""
    return ProductCache(
        InMemoryCacheStore(),
        loader=_load_products_from_store,
        ttl_seconds=settings.cache_ttl_seconds,
    )


def create_app(
    cache: ProductCache | None = None,
    coordinator: SyncCoordinator | None = None,
) -> Flask:
    """Create and configure the Flask application.

    The product cache and sync coordinator are shared by every request;
    pass them in to control their lifetime (tests inject their own).
    """
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.flask_secret_key
    app.config["MAX_CONTENT_LENGTH"] = 1 * 1024 * 1024  # 1 MB

    CORS(app, origins=settings.cors_origins)

    cache = cache or build_product_cache()
    app.extensions["product_cache"] = cache
    app.extensions["sync_coordinator"] = coordinator or SyncCoordinator(cache=cache)

    app.register_blueprint(api_bp)

    # Health check
    @app.route("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # --- Error handlers ---

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({"success": False, "error": "Request body too large"}), 413

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"success": False, "error": "Not found", "path": request.path}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"success": False, "error": "Method not allowed"}), 405

    return app
