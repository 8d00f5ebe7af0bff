"""Tests for URL canonicalization."""

import pytest

from src.ingest.url_normalizer import build_search_url, canonicalize, is_item_url, item_marker


class TestCanonicalize:
    """Test canonicalize()."""

    def test_strips_query_and_fragment(self):
        assert canonicalize("https://x/item/1/?ref=abc#frag") == "https://x/item/1/"

    def test_fragment_before_query(self):
        assert canonicalize("https://x/item/1/#frag?ref=abc") == "https://x/item/1/"

    def test_no_marker_unchanged(self):
        assert canonicalize("https://x/item/1/") == "https://x/item/1/"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_input_unchanged(self, value):
        assert canonicalize(value) == value

    @pytest.mark.parametrize(
        "url",
        [
            "https://x/item/1/?ref=abc#frag",
            "https://x/item/2/#a#b",
            "https://x/item/3/",
            "?only-query",
        ],
    )
    def test_idempotent(self, url):
        once = canonicalize(url)
        assert canonicalize(once) == once


class TestItemHelpers:
    """Test item URL helpers."""

    def test_is_item_url(self):
        assert is_item_url("https://www.facebook.com/marketplace/item/123/")
        assert not is_item_url("https://www.facebook.com/marketplace/search/?query=x")
        assert not is_item_url(None)

    def test_item_marker_includes_listing_id(self):
        marker = item_marker("https://www.facebook.com/marketplace/item/123/?ref=feed")
        assert marker == "/marketplace/item/123"

    def test_item_marker_for_non_item_url(self):
        assert item_marker("https://www.facebook.com/marketplace/") is None

    def test_build_search_url(self):
        url = build_search_url("Pokemon ETB", base_url="https://www.facebook.com/marketplace")
        assert url == (
            "https://www.facebook.com/marketplace/search/"
            "?query=Pokemon%20ETB&sortBy=creation_time_descend&exact=false"
        )
