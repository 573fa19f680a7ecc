"""Square REST API client helpers.

A single request helper handles authentication headers, Square-level
error payloads, and back-off for rate limiting (HTTP 429) and transient
server errors.  Every Square call in the project goes through
``_api_request`` so failures always surface as ``SquareAPIError``.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from api.exceptions import SquareAPIError
from config import settings
from services.square_endpoints import LOCATIONS_PATH

logger = logging.getLogger(__name__)

# Back-off for 429 / 5xx responses
RETRY_BASE_DELAY = 1.0
RETRY_MAX_DELAY = 10.0
REQUEST_TIMEOUT = 30

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _headers() -> dict[str, str]:
    if not settings.square_access_token:
        msg = "Square credentials not configured. Set SQUARE_ACCESS_TOKEN."
        raise SquareAPIError(msg)
    return {
        "Authorization": f"Bearer {settings.square_access_token}",
        "Square-Version": settings.square_api_version,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }


def _retry_delay(attempt: int, response: requests.Response | None = None) -> float:
    """Seconds to wait before retry *attempt* (0-based)."""
    if response is not None:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(float(retry_after), RETRY_MAX_DELAY)
            except ValueError:
                pass
    return min(RETRY_BASE_DELAY * (2**attempt), RETRY_MAX_DELAY)


def _error_detail(payload: Any) -> str:
    """Flatten a Square ``errors`` array into one readable string."""
    if not isinstance(payload, dict):
        return ""
    errors = payload.get("errors") or []
    parts = []
    for err in errors:
        code = err.get("code", "UNKNOWN")
        detail = err.get("detail", "")
        parts.append(f"{code}: {detail}" if detail else code)
    return "; ".join(parts)


def _api_request(method: str, path: str, body: dict | None = None) -> dict:
    """Execute a request against the Square API and return the JSON body.

    Retries rate-limited and 5xx responses (and connection errors) up to
    ``settings.square_max_retries`` times.  Raises SquareAPIError on any
    final failure, including Square ``errors`` payloads on a 2xx response.
    """
    headers = _headers()
    url = f"{settings.square_base_url}{path}"
    max_retries = settings.square_max_retries

    for attempt in range(max_retries + 1):
        try:
            response = requests.request(
                method, url, json=body, headers=headers, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as exc:
            if attempt < max_retries:
                wait = _retry_delay(attempt)
                logger.warning(
                    "Square %s %s failed (%s), retrying in %.1fs", method, path, exc, wait
                )
                time.sleep(wait)
                continue
            msg = f"Square request {method} {path} failed: {exc}"
            raise SquareAPIError(msg) from exc

        if response.status_code in _RETRYABLE_STATUS and attempt < max_retries:
            wait = _retry_delay(attempt, response)
            logger.warning(
                "Square %s %s returned %s, retrying in %.1fs",
                method, path, response.status_code, wait,
            )
            time.sleep(wait)
            continue

        try:
            payload = response.json()
        except ValueError as exc:
            msg = f"Square returned a non-JSON response for {method} {path} ({response.status_code})"
            raise SquareAPIError(msg) from exc

        if not response.ok:
            msg = f"Square API error {response.status_code} on {path}: {_error_detail(payload)}"
            raise SquareAPIError(msg)

        if isinstance(payload, dict) and payload.get("errors"):
            msg = f"Square API errors on {path}: {_error_detail(payload)}"
            raise SquareAPIError(msg)

        return payload

    # Loop always returns or raises; kept for type checkers.
    msg = f"Square request {method} {path} exhausted retries"
    raise SquareAPIError(msg)


def list_locations() -> list[dict[str, Any]]:
    """Return the merchant's locations as ``{id, name, status}`` dicts."""
    data = _api_request("GET", LOCATIONS_PATH)
    return [
        {
            "id": loc.get("id", ""),
            "name": loc.get("name", ""),
            "status": loc.get("status", ""),
        }
        for loc in data.get("locations") or []
    ]
