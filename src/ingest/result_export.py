"""JSON export of the listings processed for a search term."""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from src.ingest.base import ListingRecordGroup, utcnow

logger = logging.getLogger(__name__)


def export_filename(search_term: str, when: Optional[datetime] = None) -> str:
    """'Pokemon ETB' -> 'Pokemon_ETB_20240101_120000.json'."""
    safe = re.sub(r"[^A-Za-z0-9]+", "_", search_term).strip("_") or "search"
    stamp = (when or utcnow()).strftime("%Y%m%d_%H%M%S")
    return f"{safe}_{stamp}.json"


def export_groups(
    export_dir: str | Path,
    search_term: str,
    groups: List[ListingRecordGroup],
    when: Optional[datetime] = None,
) -> Optional[Path]:
    """
    Write a term's extracted groups to a timestamped JSON file.

    Returns:
        Path written, or None when there was nothing to export
    """
    if not groups:
        return None

    directory = Path(export_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / export_filename(search_term, when)

    document = {
        "search_term": search_term,
        "exported_at": (when or utcnow()).isoformat(),
        "listing_count": len(groups),
        "listings": [group.to_dict() for group in groups],
    }
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    logger.info(f"Exported {len(groups)} listings for '{search_term}' to {path}")
    return path
