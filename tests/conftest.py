"""Shared fixtures for crawl tests."""

import pytest

from tests.fakes import FakeBrowserSession, no_sleep
from src.ingest.human_behavior import HumanPacer


@pytest.fixture
def fake_session():
    return FakeBrowserSession()


@pytest.fixture
def pacer():
    return HumanPacer(sleep=no_sleep)
