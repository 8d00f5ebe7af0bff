"""Exception types raised by the crawl pipeline."""

from typing import Optional


class CrawlError(Exception):
    """Base class for crawl pipeline errors."""

    def __init__(self, url: Optional[str], reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"{reason} ({url})" if url else reason)


class PersistenceFailure(CrawlError):
    """Writing rows for a listing to the store failed."""
