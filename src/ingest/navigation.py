"""Listing navigation with ordered fallback strategies.

Strategies are tried in order until the listing page is reached:
1. DIRECT - load the URL in the active tab
2. SCRIPT - assign window.location from page script
3. CLICK - return to the results view and click the matching link

Every strategy shares one success predicate (the tab ends up on the
listing's item path within the strategy timeout). The timeout covers
the attempt and the wait for the URL together, so one listing takes at
most the sum of the strategy timeouts plus page checks. A login wall or
block page after any attempt ends navigation immediately.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from src.config import settings
from src.ingest.base import CandidateURL
from src.ingest.page_state import PageState, check_page
from src.ingest.selector_chain import RESULT_ELEMENT_SELECTOR
from src.ingest.url_normalizer import item_marker
from src import metrics

logger = logging.getLogger(__name__)


class NavigationOutcome(Enum):
    SUCCESS = "success"
    LOGIN_REQUIRED = "login_required"
    BLOCKED = "blocked"
    FAILED = "failed"


@dataclass
class NavigationResult:
    """Result of navigating to one listing."""
    outcome: NavigationOutcome
    strategy: Optional[str] = None
    final_url: Optional[str] = None
    attempts: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == NavigationOutcome.SUCCESS

    @property
    def is_terminal(self) -> bool:
        return self.outcome in (NavigationOutcome.LOGIN_REQUIRED, NavigationOutcome.BLOCKED)


_CLICK_MATCHING_LINK = """
([target, pattern]) => {
    const strip = h => h.split(/[?#]/)[0];
    const links = Array.from(document.querySelectorAll(`a[href*='${pattern}']`));
    const link = links.find(a => strip(a.href) === target);
    if (!link) {
        return false;
    }
    link.scrollIntoView({block: 'center'});
    link.click();
    return true;
}
"""


class NavigationStrategy(ABC):
    """One way of getting the active tab onto a listing page."""

    name: str = ""

    def __init__(self, timeout: float):
        self.timeout = timeout

    @abstractmethod
    async def attempt(self, session, candidate: CandidateURL, results_url: Optional[str]) -> None:
        """Trigger the navigation. Success is judged by the engine."""


class DirectNavigation(NavigationStrategy):
    name = "direct"

    async def attempt(self, session, candidate, results_url):
        await session.navigate(candidate.canonical, timeout=self.timeout)


class ScriptNavigation(NavigationStrategy):
    name = "script"

    async def attempt(self, session, candidate, results_url):
        await session.execute_script("url => { window.location.href = url; }", candidate.canonical)


class ClickNavigation(NavigationStrategy):
    name = "click"

    async def attempt(self, session, candidate, results_url):
        if results_url and await session.current_url() != results_url:
            await session.navigate(results_url, timeout=self.timeout)
            await session.wait_for_selector(RESULT_ELEMENT_SELECTOR, timeout=self.timeout)

        clicked = await session.execute_script(
            _CLICK_MATCHING_LINK, [candidate.canonical, settings.item_path_pattern]
        )
        if not clicked:
            logger.debug(f"No link for {candidate.canonical} on results view")


def default_strategies() -> List[NavigationStrategy]:
    return [
        DirectNavigation(settings.direct_nav_timeout_seconds),
        ScriptNavigation(settings.script_nav_timeout_seconds),
        ClickNavigation(settings.click_nav_timeout_seconds),
    ]


class NavigationEngine:
    """Runs navigation strategies in order for a candidate listing."""

    def __init__(self, strategies: Optional[List[NavigationStrategy]] = None):
        self.strategies = strategies if strategies is not None else default_strategies()

    async def navigate(
        self,
        session,
        candidate: CandidateURL,
        results_url: Optional[str] = None,
    ) -> NavigationResult:
        """
        Get the active tab onto the candidate's listing page.

        Args:
            session: Browser session
            candidate: Listing to open
            results_url: Results view the candidate came from (used by CLICK)

        Returns:
            NavigationResult; SUCCESS, LOGIN_REQUIRED, BLOCKED, or FAILED
            once every strategy has been tried
        """
        marker = item_marker(candidate.canonical) or settings.item_path_pattern
        attempts: List[str] = []

        loop = asyncio.get_running_loop()

        for strategy in self.strategies:
            attempts.append(strategy.name)
            deadline = loop.time() + strategy.timeout
            try:
                await asyncio.wait_for(
                    strategy.attempt(session, candidate, results_url),
                    timeout=strategy.timeout,
                )
            except asyncio.TimeoutError:
                logger.debug(f"{strategy.name} navigation to {candidate.canonical} timed out")
            except Exception as e:
                logger.debug(f"{strategy.name} navigation to {candidate.canonical} failed: {e}")

            remaining = max(0.0, deadline - loop.time())
            reached = await session.wait_for_url(marker, timeout=remaining)

            page = await check_page(session)
            if page.state == PageState.LOGIN_REQUIRED:
                metrics.record_navigation(strategy.name, NavigationOutcome.LOGIN_REQUIRED.value)
                return NavigationResult(
                    NavigationOutcome.LOGIN_REQUIRED,
                    strategy=strategy.name,
                    final_url=await session.current_url(),
                    attempts=attempts,
                    reason=page.reason,
                )
            if page.state == PageState.BLOCKED:
                metrics.record_navigation(strategy.name, NavigationOutcome.BLOCKED.value)
                return NavigationResult(
                    NavigationOutcome.BLOCKED,
                    strategy=strategy.name,
                    final_url=await session.current_url(),
                    attempts=attempts,
                    reason=page.reason,
                )

            if reached:
                metrics.record_navigation(strategy.name, NavigationOutcome.SUCCESS.value)
                logger.debug(f"Reached {candidate.canonical} via {strategy.name}")
                return NavigationResult(
                    NavigationOutcome.SUCCESS,
                    strategy=strategy.name,
                    final_url=await session.current_url(),
                    attempts=attempts,
                )

            metrics.record_navigation(strategy.name, NavigationOutcome.FAILED.value)
            logger.info(f"{strategy.name} navigation did not reach {candidate.canonical}")

        return NavigationResult(
            NavigationOutcome.FAILED,
            final_url=await session.current_url(),
            attempts=attempts,
            reason="all strategies failed",
        )


navigation_engine = NavigationEngine()
