"""Replace-all-rows-for-URL persistence of extracted listings."""

import logging

from src.db.listing_store import ListingStore
from src.ingest.base import ListingRecordGroup
from src.ingest.errors import PersistenceFailure
from src import metrics

logger = logging.getLogger(__name__)


class ListingUpsertEngine:
    """
    Writes a ListingRecordGroup so the store holds exactly its rows for
    the group's URL.

    The store offers no transaction across calls: rows are found, deleted
    and appended in three steps. If the process dies after the delete the
    URL simply has no rows and is reprocessed on the next run.
    """

    def __init__(self, store: ListingStore):
        self.store = store

    async def upsert(self, group: ListingRecordGroup) -> int:
        """
        Replace all stored rows for ``group.url`` with the group's rows.

        Args:
            group: Extracted listing (may be empty or failed)

        Returns:
            Number of rows written

        Raises:
            PersistenceFailure: If any store call fails
        """
        rows = group.rows()
        try:
            existing = await self.store.find_rows_by_key(group.url)
            if existing:
                deleted = await self.store.delete_rows(existing)
                logger.debug(f"Deleted {deleted} previous rows for {group.url}")
            written = await self.store.append_rows(rows)
        except Exception as e:
            metrics.record_persist(0, success=False)
            logger.error(f"Failed to persist {group.url}: {e}")
            raise PersistenceFailure(group.url, f"store error: {e}") from e

        metrics.record_persist(written, success=True)
        logger.info(
            f"Saved {written} rows for {group.url} "
            f"(replaced {len(existing)}, status={group.status.value})"
        )
        return written
