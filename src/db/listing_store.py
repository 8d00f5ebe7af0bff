"""Row-oriented listing store.

The crawl only needs four operations from its store: find rows for a URL,
delete rows by id, append rows, and read everything for the freshness
cache. No transaction spanning several calls is assumed.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.db.models import ListingRow

logger = logging.getLogger(__name__)


class ListingStore(ABC):
    """Abstract tabular store for listing rows."""

    @abstractmethod
    async def find_rows_by_key(self, url: str) -> List[int]:
        """
        Find the ids of all rows stored for a listing URL.

        Args:
            url: Canonical listing URL

        Returns:
            Row ids, in ascending order
        """

    @abstractmethod
    async def delete_rows(self, row_ids: List[int]) -> int:
        """Delete rows by id. Returns the number deleted."""

    @abstractmethod
    async def append_rows(self, rows: List[Dict[str, Any]]) -> int:
        """Append rows. Returns the number written."""

    @abstractmethod
    async def bulk_read(self) -> List[Dict[str, Any]]:
        """Read every stored row as a column dict."""


class SqlListingStore(ListingStore):
    """ListingStore on top of SQLAlchemy's async session."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from src.db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def find_rows_by_key(self, url: str) -> List[int]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(ListingRow.id).where(ListingRow.url == url).order_by(ListingRow.id)
            )
            return [row[0] for row in result.all()]

    async def delete_rows(self, row_ids: List[int]) -> int:
        if not row_ids:
            return 0
        async with self._session_factory() as db:
            result = await db.execute(delete(ListingRow).where(ListingRow.id.in_(row_ids)))
            await db.commit()
            return result.rowcount or 0

    async def append_rows(self, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        async with self._session_factory() as db:
            db.add_all([ListingRow(**row) for row in rows])
            await db.commit()
        return len(rows)

    async def bulk_read(self) -> List[Dict[str, Any]]:
        async with self._session_factory() as db:
            result = await db.execute(select(ListingRow).order_by(ListingRow.id))
            return [row.to_dict() for row in result.scalars().all()]


class InMemoryListingStore(ListingStore):
    """Dict-backed store for dry runs and tests."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self._rows: Dict[int, Dict[str, Any]] = {}
        self._next_id = 1
        for row in rows or []:
            self._insert(row)

    def _insert(self, row: Dict[str, Any]) -> None:
        self._rows[self._next_id] = {**row, "id": self._next_id}
        self._next_id += 1

    async def find_rows_by_key(self, url: str) -> List[int]:
        return [row_id for row_id, row in self._rows.items() if row.get("url") == url]

    async def delete_rows(self, row_ids: List[int]) -> int:
        deleted = 0
        for row_id in row_ids:
            if self._rows.pop(row_id, None) is not None:
                deleted += 1
        return deleted

    async def append_rows(self, rows: List[Dict[str, Any]]) -> int:
        for row in rows:
            self._insert(row)
        return len(rows)

    async def bulk_read(self) -> List[Dict[str, Any]]:
        return [dict(row) for row in self._rows.values()]
