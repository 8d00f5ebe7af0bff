"""Tests for listing persistence."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.db.listing_store import InMemoryListingStore, SqlListingStore
from src.db.models import Base
from src.ingest.base import ExtractedItem, ExtractionStatus, ListingRecordGroup, ProductType
from src.ingest.errors import PersistenceFailure
from src.ingest.upsert import ListingUpsertEngine
from tests.fakes import item_url

URL = item_url(5)
OTHER = item_url(6)


def make_group(url=URL, names=("Evolving Skies ETB",), status=ExtractionStatus.OK):
    return ListingRecordGroup(
        url=url,
        search_term="Pokemon ETB",
        items=[ExtractedItem(name=name, category=ProductType.ETB, price=Decimal("55.00")) for name in names],
        status=status,
    )


class TestListingUpsertEngine:
    """Test replace-all-rows-for-URL semantics."""

    def setup_method(self):
        self.store = InMemoryListingStore([{"url": OTHER, "item_name": "Unrelated"}])
        self.engine = ListingUpsertEngine(self.store)

    async def test_first_write_appends(self):
        written = await self.engine.upsert(make_group(names=("A", "B")))

        assert written == 2
        assert len(await self.store.find_rows_by_key(URL)) == 2

    async def test_rewrite_replaces_previous_rows(self):
        await self.engine.upsert(make_group(names=("A", "B", "C")))
        await self.engine.upsert(make_group(names=("D",)))

        rows = [row for row in await self.store.bulk_read() if row["url"] == URL]
        assert [row["item_name"] for row in rows] == ["D"]

    async def test_other_urls_untouched(self):
        await self.engine.upsert(make_group())

        rows = await self.store.bulk_read()
        assert any(row["url"] == OTHER for row in rows)

    async def test_failed_group_writes_placeholder(self):
        written = await self.engine.upsert(make_group(names=(), status=ExtractionStatus.FAILED))

        assert written == 1
        rows = [row for row in await self.store.bulk_read() if row["url"] == URL]
        assert rows[0]["extraction_status"] == "failed"

    async def test_store_error_raises_persistence_failure(self):
        self.store.append_rows = AsyncMock(side_effect=RuntimeError("quota exceeded"))

        with pytest.raises(PersistenceFailure) as exc_info:
            await self.engine.upsert(make_group())

        assert exc_info.value.url == URL
        assert "quota exceeded" in exc_info.value.reason


@pytest.fixture
async def sql_store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'listings.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        yield SqlListingStore(session_factory)
    finally:
        await engine.dispose()


class TestSqlListingStore:
    """Test the SQLAlchemy store against SQLite."""

    async def test_upsert_round_trip(self, sql_store):
        engine = ListingUpsertEngine(sql_store)

        await engine.upsert(make_group(names=("A", "B")))
        await engine.upsert(make_group(url=OTHER, names=("X",)))
        await engine.upsert(make_group(names=("C",)))

        assert len(await sql_store.find_rows_by_key(URL)) == 1
        rows = await sql_store.bulk_read()
        by_url = {row["url"]: row for row in rows}
        assert set(by_url) == {URL, OTHER}
        assert by_url[URL]["item_name"] == "C"
        assert by_url[URL]["price"] == Decimal("55.00")
        assert by_url[URL]["date_found"] is not None

    async def test_delete_nothing(self, sql_store):
        assert await sql_store.delete_rows([]) == 0
        assert await sql_store.find_rows_by_key(URL) == []
