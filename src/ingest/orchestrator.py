"""Crawl orchestrator: search terms in, persisted listing groups out.

For each search term the orchestrator opens the results view, discovers
candidate listings, drops the ones processed recently, and runs every
remaining candidate through navigation, extraction and upsert.

Each term's work is an async generator that yields after every step. In
sequential mode the generators run one after another in the active tab.
In tabbed mode up to ``max_tabs`` terms get their own tab and their
generators are advanced round-robin, switching tabs before each step.
Tabs already open in the browser are reused before new ones are opened;
a term that cannot get a tab runs in the original tab once its chunk is
done. Only one coroutine ever touches the browser session.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import AsyncIterator, List, Optional

from src.ai.listing_extractor import ListingExtractor, listing_extractor
from src.config import settings
from src.db.listing_store import ListingStore
from src.ingest.base import CandidateURL, ListingRecordGroup, utcnow
from src.ingest.candidate_discovery import CandidateDiscovery
from src.ingest.errors import PersistenceFailure
from src.ingest.freshness_cache import FreshnessCache
from src.ingest.human_behavior import HumanPacer, human_pacer
from src.ingest.navigation import NavigationEngine, NavigationOutcome, navigation_engine
from src.ingest.page_state import PageState, check_page
from src.ingest.result_export import export_groups
from src.ingest.selector_chain import RESULT_ELEMENT_SELECTOR
from src.ingest.session_mode import ProcessingMode, select_mode
from src.ingest.upsert import ListingUpsertEngine
from src.ingest.url_normalizer import build_search_url
from src.logging_config import get_logger
from src import metrics

logger = logging.getLogger(__name__)


class TermStatus(Enum):
    COMPLETED = "completed"
    LOGIN_REQUIRED = "login_required"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class SearchTermReport:
    """What happened while processing one search term."""
    search_term: str
    status: TermStatus = TermStatus.COMPLETED
    detail: Optional[str] = None
    discovered: int = 0
    skipped_fresh: int = 0
    skipped_visited: int = 0
    processed: int = 0
    rows_written: int = 0
    navigation_failures: int = 0
    extraction_failures: int = 0
    persistence_failures: int = 0
    errors: int = 0
    groups: List[ListingRecordGroup] = field(default_factory=list, repr=False)


@dataclass
class BatchReport:
    """Aggregate result of one orchestrator run."""
    mode: ProcessingMode
    started_at: datetime
    finished_at: Optional[datetime] = None
    terms: List[SearchTermReport] = field(default_factory=list)
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return sum(term.processed for term in self.terms)

    @property
    def rows_written(self) -> int:
        return sum(term.rows_written for term in self.terms)

    def summary(self) -> str:
        parts = [f"{term.search_term}={term.status.value}({term.processed})" for term in self.terms]
        return (
            f"{self.processed} listings, {self.rows_written} rows, mode={self.mode.value}: "
            + ", ".join(parts)
        )


_TERMINAL_STATUS = {
    NavigationOutcome.LOGIN_REQUIRED: TermStatus.LOGIN_REQUIRED,
    NavigationOutcome.BLOCKED: TermStatus.BLOCKED,
}


class CrawlOrchestrator:
    """Drives one batch of search terms through the crawl pipeline."""

    def __init__(
        self,
        store: ListingStore,
        freshness_cache: Optional[FreshnessCache] = None,
        discovery: Optional[CandidateDiscovery] = None,
        navigator: Optional[NavigationEngine] = None,
        extractor: Optional[ListingExtractor] = None,
        pacer: Optional[HumanPacer] = None,
        export_dir: Optional[str] = None,
    ):
        self.store = store
        self.cache = freshness_cache if freshness_cache is not None else FreshnessCache(store)
        self.pacer = pacer or human_pacer
        self.discovery = discovery or CandidateDiscovery(pacer=self.pacer)
        self.navigator = navigator or navigation_engine
        self.extractor = extractor or listing_extractor
        self.upserter = ListingUpsertEngine(store)
        self.export_dir = settings.export_dir if export_dir is None else export_dir

    async def run(
        self,
        session,
        search_terms: Optional[List[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """
        Process a batch of search terms.

        Args:
            session: Started browser session, owned by this run
            search_terms: Terms to process (defaults to settings.search_terms)
            cancel_event: Set to stop the batch between steps

        Returns:
            BatchReport with one SearchTermReport per term, in input order
        """
        terms = list(search_terms if search_terms is not None else settings.search_terms)
        cancel_event = cancel_event or asyncio.Event()

        await self.cache.refresh()
        mode = await select_mode(session, len(terms))
        report = BatchReport(mode=mode, started_at=utcnow())
        report.terms = [SearchTermReport(search_term=term) for term in terms]
        visited: set[str] = set()

        logger.info(f"Starting crawl of {len(terms)} search terms in {mode.value} mode")
        if mode == ProcessingMode.TABBED:
            await self._run_tabbed(session, report.terms, visited, cancel_event)
        else:
            await self._run_sequential(session, report.terms, visited, cancel_event)

        report.cancelled = cancel_event.is_set()
        report.finished_at = utcnow()
        for term_report in report.terms:
            metrics.record_search_term(term_report.status.value)
        logger.info(f"Crawl finished: {report.summary()}")
        return report

    # ------------------------------------------------------------------
    # Scheduling of term batches
    # ------------------------------------------------------------------

    async def _run_sequential(self, session, reports, visited, cancel_event) -> None:
        for index, term_report in enumerate(reports):
            if cancel_event.is_set():
                term_report.status = TermStatus.CANCELLED
                continue
            if index > 0:
                await self.pacer.search_delay()
            await self._run_term(session, term_report, visited, cancel_event)

    async def _run_term(self, session, term_report, visited, cancel_event) -> None:
        try:
            async for _ in self._term_steps(session, term_report, visited, cancel_event):
                pass
        except Exception as e:
            term_report.status = TermStatus.FAILED
            term_report.detail = str(e)
            logger.error(f"'{term_report.search_term}' failed: {e}", exc_info=True)
        self._finish_term(term_report)

    async def _assign_tabs(self, session, chunk, original_tab):
        """
        Pick a tab for every term in a chunk.

        Tabs already open in the browser are reused first, then new ones are
        opened. A term whose tab cannot be opened is assigned None.

        Returns:
            (assignments, opened) where opened lists the tabs created here
        """
        try:
            available = await session.list_tabs()
        except Exception as e:
            logger.warning(f"Could not list browser tabs: {e}")
            available = [original_tab]

        assignments = []
        opened = []
        for term_report in chunk:
            if available:
                assignments.append(available.pop(0))
                continue
            try:
                tab = await session.open_tab()
            except Exception as e:
                logger.warning(f"Could not open a tab for '{term_report.search_term}': {e}")
                assignments.append(None)
                continue
            opened.append(tab)
            assignments.append(tab)
        return assignments, opened

    async def _run_tabbed(self, session, reports, visited, cancel_event) -> None:
        try:
            original_tab = await session.active_tab()
        except Exception as e:
            logger.warning(f"Could not read the active tab, running sequentially: {e}")
            await self._run_sequential(session, reports, visited, cancel_event)
            return
        width = max(1, settings.max_tabs)

        for start in range(0, len(reports), width):
            chunk = reports[start:start + width]
            if cancel_event.is_set():
                for term_report in chunk:
                    term_report.status = TermStatus.CANCELLED
                continue
            if start > 0:
                await self.pacer.search_delay()

            lanes = []
            opened = []
            without_tab = []
            try:
                assignments, opened = await self._assign_tabs(session, chunk, original_tab)
                for tab, term_report in zip(assignments, chunk):
                    if tab is None:
                        without_tab.append(term_report)
                        continue
                    steps = self._term_steps(session, term_report, visited, cancel_event)
                    lanes.append((tab, term_report, steps))

                active = list(lanes)
                while active:
                    for lane in list(active):
                        tab, term_report, steps = lane
                        try:
                            await session.switch_tab(tab)
                            await steps.__anext__()
                        except StopAsyncIteration:
                            active.remove(lane)
                            self._finish_term(term_report)
                        except Exception as e:
                            active.remove(lane)
                            await steps.aclose()
                            term_report.status = TermStatus.FAILED
                            term_report.detail = str(e)
                            logger.error(f"'{term_report.search_term}' failed in tab {tab}: {e}")
                            self._finish_term(term_report)
            finally:
                for _, _, steps in lanes:
                    await steps.aclose()
                for tab in opened:
                    try:
                        await session.close_tab(tab)
                    except Exception as e:
                        logger.warning(f"Failed to close tab {tab}: {e}")
                try:
                    await session.switch_tab(original_tab)
                except Exception as e:
                    logger.warning(f"Could not return to tab {original_tab}: {e}")

            # Terms that got no tab of their own run in the original tab
            if without_tab:
                await self._run_sequential(session, without_tab, visited, cancel_event)

    def _finish_term(self, term_report: SearchTermReport) -> None:
        logger.info(
            f"'{term_report.search_term}' {term_report.status.value}: "
            f"{term_report.discovered} discovered, {term_report.skipped_fresh} fresh, "
            f"{term_report.processed} processed"
        )
        if self.export_dir and term_report.groups:
            try:
                export_groups(self.export_dir, term_report.search_term, term_report.groups)
            except OSError as e:
                logger.error(f"Export for '{term_report.search_term}' failed: {e}")

    # ------------------------------------------------------------------
    # One search term
    # ------------------------------------------------------------------

    async def _term_steps(
        self,
        session,
        report: SearchTermReport,
        visited: set[str],
        cancel_event: asyncio.Event,
    ) -> AsyncIterator[None]:
        """Process one search term, yielding after each step."""
        term = report.search_term
        log = get_logger(__name__, search_term=term)
        results_url = build_search_url(term)

        try:
            await session.navigate(results_url, timeout=settings.page_load_timeout_seconds)
            page = await check_page(session)
            if page.state == PageState.LOGIN_REQUIRED:
                report.status = TermStatus.LOGIN_REQUIRED
                report.detail = page.reason
                log.error(f"Login required on results view for '{term}'")
                return
            if page.state == PageState.BLOCKED:
                report.status = TermStatus.BLOCKED
                report.detail = page.reason
                log.error(f"Blocked on results view for '{term}': {page.reason}")
                return

            await session.wait_for_selector(
                RESULT_ELEMENT_SELECTOR, timeout=settings.page_load_timeout_seconds
            )
            candidates = await self.discovery.discover(session, term)
        except Exception as e:
            report.status = TermStatus.FAILED
            report.detail = str(e)
            log.error(f"Discovery failed for '{term}': {e}")
            return

        pending: List[CandidateURL] = []
        for candidate in candidates:
            if candidate.canonical in visited:
                report.skipped_visited += 1
            elif not self.cache.should_process(candidate.canonical):
                report.skipped_fresh += 1
            else:
                pending.append(candidate)
        report.discovered = len(candidates)
        metrics.record_candidates(term, report.discovered, report.skipped_fresh)
        log.info(
            f"'{term}': {len(pending)} of {len(candidates)} listings need processing "
            f"({report.skipped_fresh} fresh)"
        )
        yield

        for index, candidate in enumerate(pending):
            if cancel_event.is_set():
                report.status = TermStatus.CANCELLED
                log.info(f"Cancelled '{term}' after {report.processed} listings")
                return
            if candidate.canonical in visited:
                report.skipped_visited += 1
                continue
            visited.add(candidate.canonical)

            if index > 0:
                await self.pacer.listing_delay()

            outcome = await self._process_candidate(session, candidate, results_url, report, log)
            if outcome in _TERMINAL_STATUS:
                report.status = _TERMINAL_STATUS[outcome]
                log.error(f"Stopping '{term}': {outcome.value} while opening {candidate.canonical}")
                return
            yield

    async def _process_candidate(
        self,
        session,
        candidate: CandidateURL,
        results_url: str,
        report: SearchTermReport,
        log,
    ) -> Optional[NavigationOutcome]:
        """
        Navigate, extract and persist one listing.

        No exception escapes: failures are counted on the report. Freshness
        is only advanced after the rows are stored.

        Returns:
            The navigation outcome, or None if an unexpected error occurred
        """
        try:
            nav = await self.navigator.navigate(session, candidate, results_url)
            if nav.is_terminal:
                return nav.outcome
            if not nav.ok:
                report.navigation_failures += 1
                log.warning(f"Could not open {candidate.canonical} via {', '.join(nav.attempts)}")
                return nav.outcome

            result = await self.extractor.extract(session, candidate)
            if not result.ok:
                report.extraction_failures += 1

            try:
                written = await self.upserter.upsert(result.group)
            except PersistenceFailure as e:
                report.persistence_failures += 1
                log.error(f"Not marking {candidate.canonical} fresh: {e.reason}")
                return nav.outcome

            self.cache.mark_processed(candidate.canonical)
            report.processed += 1
            report.rows_written += written
            report.groups.append(result.group)
            return nav.outcome
        except Exception as e:
            report.errors += 1
            log.error(f"Unexpected error processing {candidate.canonical}: {e}", exc_info=True)
            return None
