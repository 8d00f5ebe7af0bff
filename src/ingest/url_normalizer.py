"""Listing URL canonicalization helpers."""

from typing import Optional
from urllib.parse import quote

from src.config import settings


def canonicalize(url: Optional[str]) -> Optional[str]:
    """
    Strip the query string and fragment from a listing URL.

    Everything from the first '?' or '#' (whichever comes first) is removed.
    Empty or None input is returned unchanged. Applying it twice gives the
    same result as applying it once.

    Args:
        url: Raw URL as found on the page

    Returns:
        Canonical URL
    """
    if not url:
        return url

    cut = len(url)
    for marker in ("?", "#"):
        idx = url.find(marker)
        if idx != -1 and idx < cut:
            cut = idx
    return url[:cut]


def is_item_url(url: Optional[str], pattern: Optional[str] = None) -> bool:
    """Check whether a URL points at a listing detail page."""
    if not url:
        return False
    return (pattern or settings.item_path_pattern) in url


def item_marker(url: Optional[str], pattern: Optional[str] = None) -> Optional[str]:
    """
    Item path plus listing id, e.g. '/marketplace/item/12345'.

    Used to tell a specific listing page apart from any other listing page.
    Falls back to the bare item path when the URL has no id after it.
    """
    pattern = pattern or settings.item_path_pattern
    canonical = canonicalize(url)
    if not canonical or pattern not in canonical:
        return None
    item_id = canonical.split(pattern, 1)[1].split("/", 1)[0]
    return f"{pattern}{item_id}" if item_id else pattern


def build_search_url(term: str, base_url: Optional[str] = None) -> str:
    """Build the newest-first results view URL for a search term."""
    base = (base_url or settings.marketplace_base_url).rstrip("/")
    return f"{base}/search/?query={quote(term)}&sortBy=creation_time_descend&exact=false"
