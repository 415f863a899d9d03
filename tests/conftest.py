"""
Shared fixtures: an in-memory datastore, HTML builders and fakes for the
network layer. Nothing here touches the network.
"""

from typing import Dict, List, Optional, Union

import pytest

from shelfsync.api.base import FetchResponse
from shelfsync.db.database import close_db, init_db
from shelfsync.db.datastore import SqlAlchemyDatastore


@pytest.fixture
def datastore():
    """SQLAlchemy datastore over a fresh in-memory SQLite database."""
    init_db("sqlite://")
    yield SqlAlchemyDatastore()
    close_db()


@pytest.fixture
def sleeps():
    """Records backoff delays instead of sleeping."""
    return []


def book_row(
    review_id: str,
    title: str,
    author: str,
    shelves: Optional[List[str]] = None,
    rating: int = 0,
    isbn: str = "",
    pages: str = "",
    date_read: str = "",
    review: str = "",
    book_id: str = "1",
) -> str:
    """A review row in the table layout."""
    shelf_links = "".join(
        f'<a class="shelfLink" href="/review/list/1?shelf={s}">{s}</a>' for s in (shelves or [])
    )
    return f"""
    <tr id="review_{review_id}" class="bookalike review">
      <td class="field cover"><div class="value">
        <a href="/book/show/{book_id}"><img src="https://images.gr-assets.com/books/{book_id}._SY75_.jpg"></a>
      </div></td>
      <td class="field title"><label>title</label><div class="value">
        <a href="/book/show/{book_id}.Slug" title="{title}">{title}</a>
      </div></td>
      <td class="field author"><label>author</label><div class="value">
        <a href="/author/show/99">{author}</a>
      </div></td>
      <td class="field isbn13"><label>isbn13</label><div class="value">{isbn}</div></td>
      <td class="field num_pages"><label>num pages</label><div class="value"><nobr>{pages}<span class="greyText">pp</span></nobr></div></td>
      <td class="field rating"><label>my rating</label><div class="value">
        <div class="stars" data-rating="{rating}"></div>
      </div></td>
      <td class="field shelves"><label>shelves</label><div class="value">{shelf_links}</div></td>
      <td class="field review"><label>review</label><div class="value"><span class="readable">{review}</span></div></td>
      <td class="field date_read"><label>date read</label><div class="value">
        <span class="date_read_value">{date_read}</span>
      </div></td>
      <td class="field format"><label>format</label><div class="value">Paperback</div></td>
    </tr>
    """


def shelf_page(rows: List[str], has_next: bool = False, total: Optional[int] = None, shelf: str = "read") -> str:
    """A review-list page with optional pagination and shelf count."""
    header = f'<span class="selectedShelf">{shelf} ({total})</span>' if total is not None else ""
    if has_next:
        pagination = '<a class="next_page" rel="next" href="?page=2">next &raquo;</a>'
    else:
        pagination = '<span class="next_page disabled">next &raquo;</span>'
    return f"""
    <html><body>
      {header}
      <table id="books"><tbody id="booksBody">{''.join(rows)}</tbody></table>
      <div id="reviewPagination">{pagination}</div>
    </body></html>
    """


def shelf_index(shelves: List[str]) -> str:
    """The shelf=all page with a sidebar listing ``shelves``."""
    links = "".join(
        f'<a class="userShelf" data-shelf="{s}" href="/review/list/1?shelf={s}">{s} (3)</a>' for s in shelves
    )
    return f'<html><body><div id="shelvesSection">{links}</div></body></html>'


class FakeFetcher:
    """Replays canned responses (or raises canned errors) in order."""

    def __init__(self, responses: List[Union[FetchResponse, Exception]], repeat_last: bool = True):
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.calls: List[str] = []
        self.closed = False

    def fetch(self, url, headers=None, timeout=None):
        self.calls.append(url)
        if len(self.responses) > 1 or not self.repeat_last:
            outcome = self.responses.pop(0)
        else:
            outcome = self.responses[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


Page = Union[str, Exception]


class FakeGoodreads:
    """
    Stands in for GoodreadsClient.

    ``pages`` maps a shelf to its pages in order; an Exception entry is
    raised when that page is requested.
    """

    def __init__(
        self,
        index_html: Union[str, Exception] = "",
        pages: Optional[Dict[str, List[Page]]] = None,
        totals: Optional[Dict[str, int]] = None,
    ):
        self.index_html = index_html
        self.pages = pages or {}
        self.totals = totals or {}
        self.requests: List[tuple] = []
        self.closed = False

    def fetch_shelf_index(self, profile_id):
        self.requests.append(("index", profile_id))
        if isinstance(self.index_html, Exception):
            raise self.index_html
        return self.index_html

    def fetch_shelf_probe(self, profile_id, shelf):
        self.requests.append(("probe", shelf))
        total = self.totals.get(shelf)
        return shelf_page([], total=total, shelf=shelf) if total is not None else "<html></html>"

    def fetch_shelf_page(self, profile_id, shelf, page, per_page):
        self.requests.append(("page", shelf, page))
        shelf_pages = self.pages.get(shelf, [])
        if page > len(shelf_pages):
            return shelf_page([])
        outcome = shelf_pages[page - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True
