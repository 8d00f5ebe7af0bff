"""Turn a listing page into a normalized ListingRecordGroup.

Steps: expand collapsed text, capture a full-page screenshot, ask the vision
classifier for a JSON description, then map that JSON onto ExtractedItem
values with a default for every missing or malformed field.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Optional

from src.ai.json_payload import extract_json_payload
from src.ai.llm_service import LLMService, llm_service
from src.ai.prompts import LISTING_EXTRACTION_INSTRUCTION, ListingExtractionPrompt
from src.config import settings
from src.ingest.base import (
    CandidateURL,
    ExtractedItem,
    ExtractionStatus,
    ListingRecordGroup,
    ListingSnapshot,
    PriceUnit,
    ProductType,
)
from src.ingest.selector_chain import PRICE_SELECTORS, TITLE_SELECTORS, first_text
from src import metrics

logger = logging.getLogger(__name__)


# Clicks every visible, not-yet-clicked "See more" control once and tags it
_EXPAND_SCRIPT = """
() => {
    let clicked = 0;
    const nodes = document.querySelectorAll("div[role='button'], span[role='button'], span");
    for (const el of nodes) {
        if (el.dataset.crawlerExpanded) {
            continue;
        }
        const text = (el.innerText || '').trim().toLowerCase();
        if (text !== 'see more') {
            continue;
        }
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) {
            continue;
        }
        el.dataset.crawlerExpanded = '1';
        el.click();
        clicked++;
    }
    return clicked;
}
"""

_TEXT_LENGTH_SCRIPT = "() => document.body ? document.body.innerText.length : 0"

_PRICE_RE = re.compile(r"\d+(?:\.\d+)?")

_CENTS = Decimal("0.01")

CATEGORY_ALIASES: Dict[str, ProductType] = {
    "single": ProductType.SINGLE,
    "single card": ProductType.SINGLE,
    "card": ProductType.SINGLE,
    "booster pack": ProductType.BOOSTER_PACK,
    "booster": ProductType.BOOSTER_PACK,
    "pack": ProductType.BOOSTER_PACK,
    "booster box": ProductType.BOOSTER_BOX,
    "etb": ProductType.ETB,
    "elite trainer box": ProductType.ETB,
    "collection box": ProductType.COLLECTION_BOX,
    "collection": ProductType.COLLECTION_BOX,
    "bundle": ProductType.BUNDLE,
    "booster bundle": ProductType.BUNDLE,
    "tin": ProductType.TIN,
    "other": ProductType.OTHER,
}


# ---------------------------------------------------------------------------
# Field normalization
# ---------------------------------------------------------------------------

def normalize_text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = value.strip() if isinstance(value, str) else str(value).strip()
    return text or default


def normalize_price(value: Any) -> Decimal:
    """Parse '$1,234.5', 45, '45 obo' and friends into a 2-place Decimal; 0.00 otherwise."""
    if value is None or isinstance(value, bool):
        return Decimal("0.00")
    if isinstance(value, (int, float, Decimal)):
        try:
            price = Decimal(str(value))
        except InvalidOperation:
            return Decimal("0.00")
        if not price.is_finite() or price < 0:
            return Decimal("0.00")
        return price.quantize(_CENTS)

    match = _PRICE_RE.search(str(value).replace(",", ""))
    if not match:
        return Decimal("0.00")
    return Decimal(match.group(0)).quantize(_CENTS)


def normalize_quantity(value: Any) -> int:
    """Whole number of at least 1. Fractional, negative or unreadable values give 1."""
    if value is None or isinstance(value, bool):
        return 1
    if isinstance(value, int):
        return value if value >= 1 else 1
    if isinstance(value, float):
        return int(value) if value.is_integer() and value >= 1 else 1
    text = str(value).strip()
    if text.isdigit() and int(text) >= 1:
        return int(text)
    return 1


def normalize_category(value: Any) -> ProductType:
    key = normalize_text(value).lower()
    if not key:
        return ProductType.OTHER
    for product_type in ProductType:
        if product_type.value.lower() == key:
            return product_type
    return CATEGORY_ALIASES.get(key, ProductType.OTHER)


def normalize_price_unit(value: Any) -> PriceUnit:
    key = normalize_text(value).lower()
    for unit in PriceUnit:
        if unit.value == key:
            return unit
    return PriceUnit.EACH


def normalize_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return default


def build_item(data: Dict[str, Any]) -> ExtractedItem:
    """Map one classifier item object onto an ExtractedItem."""
    return ExtractedItem(
        name=normalize_text(data.get("itemName") or data.get("name"), "Unknown Item"),
        category=normalize_category(data.get("productType") or data.get("category")),
        set_name=normalize_text(data.get("set") or data.get("setName")),
        price=normalize_price(data.get("price")),
        quantity=normalize_quantity(data.get("quantity")),
        price_unit=normalize_price_unit(data.get("priceUnit")),
        notes=normalize_text(data.get("notes")),
        language=normalize_text(data.get("language"), "English"),
    )


def build_group(
    payload: Any,
    url: str,
    search_term: str = "",
    price_hint: Optional[str] = None,
) -> ListingRecordGroup:
    """
    Build a record group from a parsed classifier payload.

    Accepts ``{"items": [...], ...shared fields}``, a bare list of items, or
    a single item object. Non-object items are dropped.

    Args:
        payload: Parsed JSON, or None if parsing failed
        url: Canonical listing URL, copied onto every row
        search_term: Term that discovered the listing
        price_hint: Price text read from the page, used when the payload has none

    Returns:
        ListingRecordGroup with status OK, EMPTY or FAILED
    """
    if payload is None:
        return ListingRecordGroup(url=url, search_term=search_term, status=ExtractionStatus.FAILED)

    shared: Dict[str, Any] = {}
    if isinstance(payload, list):
        raw_items = payload
    elif isinstance(payload, dict):
        shared = payload
        raw_items = payload.get("items")
        if raw_items is None and ("itemName" in payload or "productType" in payload):
            raw_items = [payload]
    else:
        raw_items = []

    if not isinstance(raw_items, list):
        raw_items = []
    items = [build_item(entry) for entry in raw_items if isinstance(entry, dict)]

    if len(items) > settings.classifier_item_warning_threshold:
        logger.warning(f"Classifier returned {len(items)} items for {url}; check for hallucination")

    main_price = normalize_price(shared.get("mainListingPrice"))
    if main_price == 0 and price_hint:
        main_price = normalize_price(price_hint)

    return ListingRecordGroup(
        url=url,
        search_term=search_term,
        items=items,
        main_listing_price=main_price,
        location=normalize_text(shared.get("location")),
        description=normalize_text(shared.get("extractedDescription")),
        has_multiple_items=normalize_bool(shared.get("hasMultipleItems"), len(items) > 1),
        status=ExtractionStatus.OK if items else ExtractionStatus.EMPTY,
    )


@dataclass
class ExtractionResult:
    """Outcome of extracting one listing."""
    group: ListingRecordGroup
    duration: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.group.status != ExtractionStatus.FAILED


class ListingExtractor:
    """Extraction adapter between the browser and the vision classifier."""

    def __init__(
        self,
        classifier: Optional[LLMService] = None,
        expand_max_rounds: Optional[int] = None,
        classifier_timeout: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.classifier = classifier or llm_service
        self.expand_max_rounds = expand_max_rounds or settings.expand_max_rounds
        self.classifier_timeout = classifier_timeout or settings.llm_timeout_seconds
        self._sleep = sleep or asyncio.sleep

    async def _wait_for_stable_text(self, session, previous: int) -> int:
        """Poll body text length until two reads agree or the wait runs out."""
        polls = max(1, int(settings.element_wait_seconds / 0.25))
        length = previous
        for _ in range(polls):
            await self._sleep(0.25)
            current = await session.execute_script(_TEXT_LENGTH_SCRIPT)
            if current == length:
                return current
            length = current
        return length

    async def expand_content(self, session) -> int:
        """
        Click "See more" controls until nothing new expands.

        Runs at most expand_max_rounds rounds. A round ends the loop early
        when it clicks nothing or the page text does not change.

        Returns:
            Total number of controls clicked
        """
        total = 0
        length = await session.execute_script(_TEXT_LENGTH_SCRIPT)
        for _ in range(self.expand_max_rounds):
            clicked = await session.execute_script(_EXPAND_SCRIPT)
            if not clicked:
                break
            total += clicked
            new_length = await self._wait_for_stable_text(session, length)
            if new_length == length:
                break
            length = new_length
        if total:
            logger.debug(f"Expanded {total} collapsed sections")
        return total

    async def capture(
        self,
        session,
        candidate: CandidateURL,
    ) -> ListingSnapshot:
        """Screenshot the listing and read title and price hints off the page."""
        await session.scroll_to_top()
        image = await session.screenshot(full_page=True)
        title = await first_text(session, TITLE_SELECTORS)
        price_text = await first_text(session, PRICE_SELECTORS, contains="$")
        return ListingSnapshot(
            url=candidate.canonical,
            image=image,
            search_term=candidate.search_term,
            title=title,
            price_text=price_text,
        )

    async def analyze(self, snapshot: ListingSnapshot) -> ExtractionResult:
        """
        Classify a snapshot. Never raises: failures give a FAILED group.
        """
        prompt = ListingExtractionPrompt(
            url=snapshot.url,
            search_term=snapshot.search_term,
            title_hint=snapshot.title,
            price_hint=snapshot.price_text,
        )

        started = time.monotonic()
        error = None
        payload = None
        try:
            raw = await asyncio.wait_for(
                self.classifier.classify(
                    snapshot.image,
                    LISTING_EXTRACTION_INSTRUCTION,
                    prompt.to_prompt(),
                ),
                timeout=self.classifier_timeout,
            )
            payload = extract_json_payload(raw)
            if payload is None:
                error = "unparseable classifier response"
        except asyncio.TimeoutError:
            error = f"classifier timed out after {self.classifier_timeout}s"
        except Exception as e:
            error = f"classifier error: {e}"
        duration = time.monotonic() - started

        group = build_group(
            payload,
            url=snapshot.url,
            search_term=snapshot.search_term,
            price_hint=snapshot.price_text,
        )
        if error:
            logger.warning(f"Extraction failed for {snapshot.url}: {error}")
        else:
            logger.info(f"Extracted {len(group.items)} items from {snapshot.url} in {duration:.1f}s")
        metrics.record_extraction(group.status.value, duration)
        return ExtractionResult(group=group, duration=duration, error=error)

    async def extract(self, session, candidate: CandidateURL) -> ExtractionResult:
        """
        Expand, capture and classify the listing open in the active tab.

        Args:
            session: Browser session already on the listing page
            candidate: The listing being processed

        Returns:
            ExtractionResult whose group always carries candidate.canonical
        """
        try:
            await self.expand_content(session)
        except Exception as e:
            logger.debug(f"Expanding sections failed on {candidate.canonical}: {e}")

        try:
            snapshot = await self.capture(session, candidate)
        except Exception as e:
            logger.warning(f"Screenshot failed for {candidate.canonical}: {e}")
            metrics.record_extraction(ExtractionStatus.FAILED.value)
            group = ListingRecordGroup(
                url=candidate.canonical,
                search_term=candidate.search_term,
                status=ExtractionStatus.FAILED,
            )
            return ExtractionResult(group=group, error=f"capture failed: {e}")

        return await self.analyze(snapshot)


listing_extractor = ListingExtractor()
