"""Human-like pacing and scrolling."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

from src.config import settings

logger = logging.getLogger(__name__)


class HumanPacer:
    """
    Randomized delays and scroll gestures that keep request cadence
    looking like a person browsing.

    The sleep function and random source are injectable so tests run
    without waiting.
    """

    def __init__(
        self,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    async def pause(self, min_seconds: float, max_seconds: float) -> float:
        delay = self._rng.uniform(min_seconds, max(min_seconds, max_seconds))
        await self._sleep(delay)
        return delay

    async def listing_delay(self) -> float:
        """Delay between two listings of the same search term."""
        return await self.pause(
            settings.min_listing_delay_seconds, settings.max_listing_delay_seconds
        )

    async def search_delay(self) -> float:
        """Delay between two search terms."""
        delay = await self.pause(
            settings.min_search_delay_seconds, settings.max_search_delay_seconds
        )
        logger.debug(f"Waited {delay:.1f}s before next search")
        return delay

    async def human_scroll(self, session, chunks: int = 3) -> int:
        """
        Scroll down in a few uneven chunks with short pauses.

        Args:
            session: Browser session to scroll
            chunks: Number of scroll gestures

        Returns:
            Total pixels scrolled
        """
        total = 0
        for _ in range(chunks):
            pixels = self._rng.randint(300, 800)
            await session.scroll(pixels)
            total += pixels
            await self.pause(
                settings.min_scroll_pause_seconds, settings.max_scroll_pause_seconds
            )
        return total


human_pacer = HumanPacer()
