"""
Tests for shelf discovery.
"""

import pytest

from shelfsync.api.retry import ExhaustedRetriesError
from shelfsync.errors import NoShelvesFoundError
from shelfsync.scraper.shelves import ShelfEnumerator, discover_shelves

from conftest import FakeGoodreads, shelf_index


class TestDiscoverShelves:
    """Tests for discover_shelves()."""

    def test_sidebar_data_attributes(self):
        assert discover_shelves(shelf_index(["read", "currently-reading", "to-read"])) == [
            "read",
            "currently-reading",
            "to-read",
        ]

    def test_dropdown_options(self):
        html = """
        <select id="paginatedShelfList">
          <option value="all">all</option>
          <option value="read">read</option>
          <option value="favorites">favorites</option>
        </select>
        """
        assert discover_shelves(html) == ["read", "favorites"]

    def test_strategies_are_unioned_without_duplicates(self):
        html = """
        <select id="paginatedShelfList"><option value="read">read</option></select>
        <div id="shelves">
          <a class="userShelf" href="/review/list/1?shelf=read">read (10)</a>
          <a class="userShelf" href="/review/list/1?shelf=sci-fi&per_page=20">sci-fi (4)</a>
        </div>
        <span class="selectedShelf" data-shelf="to-read">to-read</span>
        """
        assert discover_shelves(html) == ["read", "sci-fi", "to-read"]

    def test_all_shelf_is_excluded(self):
        assert discover_shelves(shelf_index(["all", "read"])) == ["read"]

    def test_current_shelf_fallback(self):
        html = '<h1><span class="selectedShelf">Read (12)</span></h1>'
        assert discover_shelves(html) == ["read"]

    def test_nothing_found(self):
        assert discover_shelves("<html><body>private</body></html>") == []
        assert discover_shelves("") == []


class TestShelfEnumerator:
    """Tests for ShelfEnumerator.list_shelves()."""

    def test_lists_shelves_from_index_page(self):
        client = FakeGoodreads(index_html=shelf_index(["read", "to-read"]))

        assert ShelfEnumerator(client).list_shelves("42") == ["read", "to-read"]
        assert client.requests == [("index", "42")]

    def test_no_shelves_raises(self):
        client = FakeGoodreads(index_html="<html><body>Sign in</body></html>")

        with pytest.raises(NoShelvesFoundError) as exc_info:
            ShelfEnumerator(client).list_shelves("42")

        assert "may not be public" in str(exc_info.value)

    def test_fetch_failure_propagates(self):
        client = FakeGoodreads(index_html=ExhaustedRetriesError(message="Failed after 3 attempts"))

        with pytest.raises(ExhaustedRetriesError):
            ShelfEnumerator(client).list_shelves("42")
