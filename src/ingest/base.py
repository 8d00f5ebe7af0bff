"""Core data types shared by the crawl pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, the format stored in the listing table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ProductType(str, Enum):
    """Closed set of product categories the classifier may assign."""
    SINGLE = "Single"
    BOOSTER_PACK = "Booster Pack"
    BOOSTER_BOX = "Booster Box"
    ETB = "ETB"
    COLLECTION_BOX = "Collection Box"
    BUNDLE = "Bundle"
    TIN = "Tin"
    OTHER = "OTHER"


class PriceUnit(str, Enum):
    EACH = "each"
    LOT = "lot"
    OBO = "obo"


class ExtractionStatus(str, Enum):
    """Outcome of classifying one listing."""
    OK = "ok"
    EMPTY = "empty"  # classifier answered but found no items
    FAILED = "failed"  # classifier error, timeout or unparseable answer


@dataclass(frozen=True)
class CandidateURL:
    """A discovered listing link and its canonical form."""

    raw: str
    canonical: str
    search_term: str = ""


@dataclass
class ListingSnapshot:
    """Visual capture of a listing page, consumed once by extraction."""

    url: str
    image: bytes
    search_term: str
    discovered_at: datetime = None
    title: Optional[str] = None
    price_text: Optional[str] = None

    def __post_init__(self):
        if self.discovered_at is None:
            self.discovered_at = utcnow()


@dataclass
class ExtractedItem:
    """One product found in a listing. Every field has a usable default."""

    name: str = "Unknown Item"
    category: ProductType = ProductType.OTHER
    set_name: str = ""
    price: Decimal = Decimal("0.00")
    quantity: int = 1
    price_unit: PriceUnit = PriceUnit.EACH
    notes: str = ""
    language: str = "English"


@dataclass
class ListingRecordGroup:
    """All items extracted from one listing plus the listing-level fields."""

    url: str
    search_term: str = ""
    items: list[ExtractedItem] = field(default_factory=list)
    main_listing_price: Decimal = Decimal("0.00")
    location: str = ""
    description: str = ""
    has_multiple_items: bool = False
    status: ExtractionStatus = ExtractionStatus.OK
    extracted_at: datetime = None

    def __post_init__(self):
        if self.extracted_at is None:
            self.extracted_at = utcnow()

    def _placeholder_item(self) -> ExtractedItem:
        if self.status == ExtractionStatus.FAILED:
            return ExtractedItem(name="Analysis failed", notes="Screenshot analysis failed")
        return ExtractedItem(notes="No items detected")

    def rows(self) -> list[dict[str, Any]]:
        """
        Flatten the group into store rows.

        Every row carries the group's canonical URL. A group without items
        still yields one placeholder row so the listing counts as processed.

        Returns:
            List of column dicts ready for ListingStore.append_rows
        """
        items = self.items or [self._placeholder_item()]
        return [
            {
                "date_found": self.extracted_at,
                "item_name": item.name,
                "set_name": item.set_name,
                "product_type": item.category.value,
                "price": item.price,
                "quantity": item.quantity,
                "price_unit": item.price_unit.value,
                "language": item.language,
                "main_listing_price": self.main_listing_price,
                "location": self.location,
                "has_multiple_items": self.has_multiple_items,
                "url": self.url,
                "notes": item.notes,
                "search_term": self.search_term,
                "extraction_status": self.status.value,
            }
            for item in items
        ]

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation used by the result export."""
        return {
            "url": self.url,
            "search_term": self.search_term,
            "status": self.status.value,
            "main_listing_price": str(self.main_listing_price),
            "location": self.location,
            "description": self.description,
            "has_multiple_items": self.has_multiple_items,
            "extracted_at": self.extracted_at.isoformat(),
            "items": [
                {
                    "name": item.name,
                    "category": item.category.value,
                    "set": item.set_name,
                    "price": str(item.price),
                    "quantity": item.quantity,
                    "price_unit": item.price_unit.value,
                    "language": item.language,
                    "notes": item.notes,
                }
                for item in self.items
            ],
        }
