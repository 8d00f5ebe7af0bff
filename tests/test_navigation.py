"""Tests for the listing navigation engine."""

import asyncio

import pytest

from src.ingest.base import CandidateURL
from src.ingest.navigation import (
    ClickNavigation,
    DirectNavigation,
    NavigationEngine,
    NavigationOutcome,
    NavigationStrategy,
    ScriptNavigation,
)
from tests.fakes import FakeBrowserSession, item_url

RESULTS_URL = "https://www.facebook.com/marketplace/search/?query=Pokemon%20ETB"
LOGIN_HTML = "<html><body><h2>Log in to Facebook</h2></body></html>"
BLOCK_HTML = "<html><body><p>You're temporarily blocked from using this feature</p></body></html>"


class RecordingStrategy(NavigationStrategy):
    """Strategy that optionally lands on the listing and records that it ran."""

    def __init__(self, name, lands=False, html=None, calls=None):
        super().__init__(timeout=0.1)
        self.name = name
        self.lands = lands
        self.html = html
        self.calls = calls if calls is not None else []

    async def attempt(self, session, candidate, results_url):
        self.calls.append(self.name)
        if self.html is not None:
            session.html = self.html
        if self.lands:
            session.url = candidate.raw


def make_candidate(listing_id=42):
    url = item_url(listing_id)
    return CandidateURL(raw=url + "?ref=search", canonical=url, search_term="Pokemon ETB")


class TestNavigationEngine:
    """Test NavigationEngine.navigate()."""

    def setup_method(self):
        self.session = FakeBrowserSession(url=RESULTS_URL)
        self.calls = []

    async def test_direct_success_stops_immediately(self):
        engine = NavigationEngine([
            RecordingStrategy("direct", lands=True, calls=self.calls),
            RecordingStrategy("script", lands=True, calls=self.calls),
        ])

        result = await engine.navigate(self.session, make_candidate(), RESULTS_URL)

        assert result.ok
        assert result.strategy == "direct"
        assert self.calls == ["direct"]

    async def test_script_success_never_tries_click(self):
        engine = NavigationEngine([
            RecordingStrategy("direct", lands=False, calls=self.calls),
            RecordingStrategy("script", lands=True, calls=self.calls),
            RecordingStrategy("click", lands=True, calls=self.calls),
        ])

        result = await engine.navigate(self.session, make_candidate(), RESULTS_URL)

        assert result.outcome == NavigationOutcome.SUCCESS
        assert result.strategy == "script"
        assert result.attempts == ["direct", "script"]
        assert "click" not in self.calls

    async def test_all_strategies_fail(self):
        engine = NavigationEngine([
            RecordingStrategy("direct", calls=self.calls),
            RecordingStrategy("script", calls=self.calls),
            RecordingStrategy("click", calls=self.calls),
        ])

        result = await engine.navigate(self.session, make_candidate(), RESULTS_URL)

        assert result.outcome == NavigationOutcome.FAILED
        assert result.attempts == ["direct", "script", "click"]

    async def test_login_wall_short_circuits(self):
        engine = NavigationEngine([
            RecordingStrategy("direct", html=LOGIN_HTML, calls=self.calls),
            RecordingStrategy("script", lands=True, calls=self.calls),
        ])

        result = await engine.navigate(self.session, make_candidate(), RESULTS_URL)

        assert result.outcome == NavigationOutcome.LOGIN_REQUIRED
        assert result.is_terminal
        assert self.calls == ["direct"]

    async def test_block_page_short_circuits(self):
        engine = NavigationEngine([
            RecordingStrategy("direct", calls=self.calls),
            RecordingStrategy("script", html=BLOCK_HTML, calls=self.calls),
            RecordingStrategy("click", lands=True, calls=self.calls),
        ])

        result = await engine.navigate(self.session, make_candidate(), RESULTS_URL)

        assert result.outcome == NavigationOutcome.BLOCKED
        assert self.calls == ["direct", "script"]

    async def test_other_listing_page_does_not_count_as_success(self):
        self.session.url = item_url(7)
        engine = NavigationEngine([RecordingStrategy("direct", calls=self.calls)])

        result = await engine.navigate(self.session, make_candidate(42), RESULTS_URL)

        assert result.outcome == NavigationOutcome.FAILED

    async def test_strategy_exception_falls_through(self):
        class Broken(RecordingStrategy):
            async def attempt(self, session, candidate, results_url):
                raise RuntimeError("target closed")

        engine = NavigationEngine([
            Broken("direct"),
            RecordingStrategy("script", lands=True, calls=self.calls),
        ])

        result = await engine.navigate(self.session, make_candidate(), RESULTS_URL)

        assert result.strategy == "script"

    async def test_url_wait_gets_only_the_remaining_time(self):
        class Slow(RecordingStrategy):
            async def attempt(self, session, candidate, results_url):
                await asyncio.sleep(1)

        waits = []
        original_wait = self.session.wait_for_url

        async def recording_wait(pattern, timeout):
            waits.append(timeout)
            return await original_wait(pattern, timeout)

        self.session.wait_for_url = recording_wait
        slow = Slow("direct")
        slow.timeout = 0.05
        quick = RecordingStrategy("script", lands=True)
        engine = NavigationEngine([slow, quick])

        result = await engine.navigate(self.session, make_candidate(), RESULTS_URL)

        assert result.strategy == "script"
        assert waits[0] == 0.0
        assert 0.0 < waits[1] <= quick.timeout


class TestConcreteStrategies:
    """Test the built-in strategies against the fake session."""

    async def test_direct_fails_then_script_succeeds(self):
        session = FakeBrowserSession(url=RESULTS_URL)
        candidate = make_candidate()
        # Direct load bounces back to the results view
        session.redirects[candidate.canonical] = RESULTS_URL

        def handle_script(script, arg):
            if "window.location.href" in script:
                session.url = arg
            return None

        session.script_handler = handle_script
        engine = NavigationEngine([
            DirectNavigation(0.1),
            ScriptNavigation(0.1),
            ClickNavigation(0.1),
        ])

        result = await engine.navigate(session, candidate, RESULTS_URL)

        assert result.strategy == "script"
        assert result.attempts == ["direct", "script"]
        assert session.navigations == [candidate.canonical]

    async def test_click_returns_to_results_view(self):
        session = FakeBrowserSession(url=item_url(7))
        candidate = make_candidate()

        def handle_script(script, arg):
            if isinstance(arg, list) and arg[0] == candidate.canonical:
                session.url = candidate.canonical
                return True
            return None

        session.script_handler = handle_script
        engine = NavigationEngine([ClickNavigation(0.1)])

        result = await engine.navigate(session, candidate, RESULTS_URL)

        assert result.ok
        assert session.navigations == [RESULTS_URL]
