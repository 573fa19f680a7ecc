"""URL slug generation utility."""

from __future__ import annotations

import re
from collections.abc import Iterator

MAX_SLUG_LENGTH = 60
DEFAULT_ARTIST = "Unknown Artist"
FALLBACK_SLUG = "product"


def generate_slug(title: str, artist: str | None = None) -> str:
    """Generate a lowercase, hyphenated slug from title and artist.

    The placeholder artist is ignored.  Result is at most 60 characters.
    """
    text = title or ""
    if artist and artist != DEFAULT_ARTIST:
        text = f"{text} {artist}"
    slug = re.sub(r"[^a-z0-9\s-]", "", text.lower().strip())
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug).strip("-")
    slug = slug[:MAX_SLUG_LENGTH].strip("-")
    return slug or FALLBACK_SLUG


def _with_suffix(base: str, n: int) -> str:
    suffix = f"-{n}"
    return base[: MAX_SLUG_LENGTH - len(suffix)].rstrip("-") + suffix


def iter_slug_candidates(base: str, limit: int = 1000) -> Iterator[str]:
    """Yield *base*, then base-1, base-2, ... (at most *limit* candidates)."""
    yield base
    for n in range(1, limit):
        yield _with_suffix(base, n)


def is_valid_slug(slug: str) -> bool:
    """Check that a slug is non-empty, lowercase-hyphenated, and short enough."""
    return bool(re.fullmatch(r"[a-z0-9-]+", slug or "")) and len(slug) <= MAX_SLUG_LENGTH
