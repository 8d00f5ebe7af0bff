"""SQLAlchemy database models."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.ingest.base import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class ListingRow(Base):
    """One extracted item of a marketplace listing.

    A listing with several items has several rows sharing the same url.
    Rows for a url are always replaced as a set.
    """

    __tablename__ = "marketplace_listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date_found: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    item_name: Mapped[str] = mapped_column(Text, nullable=False, default="Unknown Item")
    set_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    product_type: Mapped[str] = mapped_column(String(32), nullable=False, default="OTHER")
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    price_unit: Mapped[str] = mapped_column(String(8), nullable=False, default="each")
    language: Mapped[str] = mapped_column(String(32), nullable=False, default="English")
    main_listing_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    has_multiple_items: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    search_term: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    extraction_status: Mapped[str] = mapped_column(String(16), nullable=False, default="ok")

    __table_args__ = (
        Index("ix_marketplace_listings_url", "url"),
        Index("ix_marketplace_listings_date_found", "date_found"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date_found": self.date_found,
            "item_name": self.item_name,
            "set_name": self.set_name,
            "product_type": self.product_type,
            "price": self.price,
            "quantity": self.quantity,
            "price_unit": self.price_unit,
            "language": self.language,
            "main_listing_price": self.main_listing_price,
            "location": self.location,
            "has_multiple_items": self.has_multiple_items,
            "url": self.url,
            "notes": self.notes,
            "search_term": self.search_term,
            "extraction_status": self.extraction_status,
        }
