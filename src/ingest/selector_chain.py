"""Ordered selector fallbacks for reading elements off marketplace pages.

Each chain is a list of strategies tried in order; the first one that
yields a result wins. Chains are plain data so strategies can be reordered
or tested individually.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SelectorStrategy:
    """One CSS selector with a human-readable name for logs."""
    name: str
    selector: str


ITEM_LINK_SELECTORS: List[SelectorStrategy] = [
    SelectorStrategy("item_card", "[data-testid='marketplace-item']"),
    SelectorStrategy("main_feed_link", "div[role='main'] a[href*='/marketplace/item/']"),
    SelectorStrategy("feed_link", "div[data-testid='marketplace_feed'] a"),
    SelectorStrategy("any_item_link", "a[href*='/marketplace/item/']"),
]

# Matches any result element; used to wait for new results after a scroll
RESULT_ELEMENT_SELECTOR = "a[href*='/marketplace/item/'], div[data-testid='marketplace-item']"

TITLE_SELECTORS: List[SelectorStrategy] = [
    SelectorStrategy("heading_span", "h1 span"),
    SelectorStrategy("heading", "h1"),
    SelectorStrategy("title_testid", "[data-testid='marketplace-pdp-title']"),
]

PRICE_SELECTORS: List[SelectorStrategy] = [
    SelectorStrategy("price_testid", "[data-testid='marketplace-pdp-price']"),
    SelectorStrategy("heading_sibling", "h1 + div span"),
    SelectorStrategy("dollar_span", "div[role='main'] span[dir='auto']"),
]


async def collect(session, strategy: SelectorStrategy) -> list[dict]:
    """Run one strategy against the session's active tab."""
    return await session.find_elements(strategy.selector)


async def first_match(
    session,
    chain: List[SelectorStrategy],
    require_href: bool = False,
) -> tuple[Optional[SelectorStrategy], list[dict]]:
    """
    Return the first strategy in ``chain`` that matches anything.

    Args:
        session: Browser session
        chain: Ordered strategies
        require_href: Ignore matches that carry no link

    Returns:
        (strategy, elements), or (None, []) when nothing matched
    """
    for strategy in chain:
        elements = await collect(session, strategy)
        if require_href:
            elements = [el for el in elements if el.get("href")]
        if elements:
            logger.debug(f"Selector {strategy.name} matched {len(elements)} elements")
            return strategy, elements
    return None, []


async def first_text(session, chain: List[SelectorStrategy], contains: str = "") -> Optional[str]:
    """First non-empty text from a chain, optionally requiring a substring."""
    for strategy in chain:
        for element in await collect(session, strategy):
            text = (element.get("text") or "").strip()
            if text and contains in text:
                return text
    return None
