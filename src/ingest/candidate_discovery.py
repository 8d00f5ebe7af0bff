"""Candidate listing discovery on an infinite-scroll results view."""

import logging
from typing import List, Optional

from src.config import settings
from src.ingest.base import CandidateURL
from src.ingest.human_behavior import HumanPacer, human_pacer
from src.ingest.selector_chain import (
    ITEM_LINK_SELECTORS,
    RESULT_ELEMENT_SELECTOR,
    first_match,
)
from src.ingest.url_normalizer import canonicalize, is_item_url

logger = logging.getLogger(__name__)


class CandidateDiscovery:
    """
    Collects unique listing URLs from the results view in the active tab.

    Each round scrolls like a person, waits for the result count to grow,
    and harvests item links through the selector chain. Links are
    canonicalized and kept in first-seen order.
    """

    def __init__(
        self,
        pacer: Optional[HumanPacer] = None,
        target_count: Optional[int] = None,
        max_scroll_attempts: Optional[int] = None,
        scroll_wait_seconds: Optional[float] = None,
    ):
        self.pacer = pacer or human_pacer
        self.target_count = target_count or settings.target_items_per_search
        self.max_scroll_attempts = (
            settings.max_scroll_attempts if max_scroll_attempts is None else max_scroll_attempts
        )
        self.scroll_wait_seconds = scroll_wait_seconds or settings.scroll_wait_seconds

    async def _harvest(
        self,
        session,
        search_term: str,
        seen: set[str],
        found: List[CandidateURL],
    ) -> int:
        """Add unseen item links currently on the page. Returns how many were new."""
        strategy, elements = await first_match(session, ITEM_LINK_SELECTORS, require_href=True)
        if strategy is None:
            return 0

        added = 0
        for element in elements:
            raw = element["href"]
            if not is_item_url(raw):
                continue
            canonical = canonicalize(raw)
            if canonical in seen:
                continue
            seen.add(canonical)
            found.append(CandidateURL(raw=raw, canonical=canonical, search_term=search_term))
            added += 1
        return added

    async def discover(self, session, search_term: str = "") -> List[CandidateURL]:
        """
        Scroll the results view and collect candidate listing URLs.

        Stops once the target count is reached or the scroll budget is
        spent; the feed may run dry before either.

        Args:
            session: Browser session positioned on a results view
            search_term: Term that produced the results view

        Returns:
            Unique candidates in first-seen order, at most target_count long
        """
        seen: set[str] = set()
        found: List[CandidateURL] = []

        await self._harvest(session, search_term, seen, found)
        attempts = 0
        stale_rounds = 0

        while len(found) < self.target_count and attempts < self.max_scroll_attempts:
            attempts += 1
            before = len(await session.find_elements(RESULT_ELEMENT_SELECTOR))
            await self.pacer.human_scroll(session)
            await session.wait_for_element_count(
                RESULT_ELEMENT_SELECTOR,
                greater_than=before,
                timeout=self.scroll_wait_seconds,
            )

            added = await self._harvest(session, search_term, seen, found)
            if added == 0:
                stale_rounds += 1
                logger.debug(
                    f"Scroll {attempts}/{self.max_scroll_attempts} for '{search_term}' "
                    f"found nothing new ({stale_rounds} in a row)"
                )
            else:
                stale_rounds = 0
                logger.debug(
                    f"Scroll {attempts}/{self.max_scroll_attempts} for '{search_term}': "
                    f"+{added}, total {len(found)}"
                )

        if len(found) < self.target_count:
            logger.info(
                f"Discovered {len(found)}/{self.target_count} listings for '{search_term}' "
                f"after {attempts} scrolls"
            )
        else:
            logger.info(f"Discovered {self.target_count} listings for '{search_term}'")

        return found[: self.target_count]
