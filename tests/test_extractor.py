"""
Tests for the review-list extractor.
"""

from datetime import date

from bs4 import BeautifulSoup

from shelfsync.scraper.extractor import (
    extract,
    has_next_page,
    parse_date,
    parse_page,
    parse_rating,
    shelf_total,
    strip_cover_size,
)
from shelfsync.sync.merger import merge

from conftest import book_row, shelf_page


class TestExtract:
    """Tests for extract()."""

    def test_page_without_rows_yields_nothing(self):
        assert extract("<html><body><p>This profile is private.</p></body></html>") == []

    def test_empty_and_garbage_input(self):
        assert extract("") == []
        assert extract("<<<not html at all") == []

    def test_table_row_fields(self):
        html = shelf_page([book_row(
            "555",
            "Pride and Prejudice",
            "Jane Austen",
            shelves=["Read", "classics"],
            rating=4,
            isbn="9780141439518",
            pages="352",
            date_read="Jan 05, 2023",
            review="Witty.",
            book_id="1885",
        )])

        [book] = extract(html)

        assert book.title == "Pride and Prejudice"
        assert book.author == "Jane Austen"
        assert book.source_id == "555"
        assert book.isbn == "9780141439518"
        assert book.rating == 4
        assert book.page_count == 352
        assert book.date_read == date(2023, 1, 5)
        assert book.review == "Witty."
        assert book.shelves == ["read", "classics"]
        assert book.format == "Paperback"
        assert book.cover_url == "https://images.gr-assets.com/books/1885.jpg"

    def test_missing_optional_fields_default(self):
        [book] = extract(shelf_page([book_row("1", "Dune", "Frank Herbert")]))

        assert book.rating == 0
        assert book.page_count == 0
        assert book.isbn is None
        assert book.date_read is None
        assert book.review is None
        assert book.shelves == []

    def test_card_layout_fallbacks(self):
        html = """
        <div class="review--show" id="review_77">
          <span class="bookTitle">The Hobbit</span>
          <span class="authorName">J.R.R. Tolkien</span>
          <span class="staticStars">
            <span class="staticStar p10"></span><span class="staticStar p10"></span>
            <span class="staticStar p10"></span><span class="staticStar p0"></span>
          </span>
          <span class="readDate" title="March 3, 2021">Mar 2021</span>
          <img class="bookCover" src="https://images.gr-assets.com/books/5._SX98_.jpg">
          <span class="shelfStatus">Favorites</span>
        </div>
        """

        [book] = extract(html)

        assert book.title == "The Hobbit"
        assert book.author == "J.R.R. Tolkien"
        assert book.source_id == "77"
        assert book.rating == 3
        assert book.date_read == date(2021, 3, 3)
        assert book.cover_url == "https://images.gr-assets.com/books/5.jpg"
        assert book.shelves == ["favorites"]

    def test_row_without_author_is_skipped(self):
        rows = [
            '<tr class="bookalike"><td class="title"><a href="/book/show/9">No Author</a></td></tr>',
            book_row("2", "Emma", "Jane Austen"),
        ]

        books = extract(shelf_page(rows))

        assert [b.title for b in books] == ["Emma"]

    def test_unparseable_values_fall_back_to_defaults(self):
        row = book_row("3", "Odd Book", "Some One", pages="unknown", date_read="not set")

        [book] = extract(shelf_page([row]))

        assert book.page_count == 0
        assert book.date_read is None


class TestFieldParsers:
    """Tests for the value converters."""

    def test_parse_rating_range(self):
        assert parse_rating("4") == 4
        assert parse_rating("5 of 5 stars") == 5
        assert parse_rating("0") is None
        assert parse_rating("9") is None
        assert parse_rating("it was amazing") is None

    def test_parse_date_formats(self):
        assert parse_date("Dec 24, 2020") == date(2020, 12, 24)
        assert parse_date("December 24, 2020") == date(2020, 12, 24)
        assert parse_date("Jun 2019") == date(2019, 6, 1)
        assert parse_date("2018-02-03") == date(2018, 2, 3)
        assert parse_date("not set") is None
        assert parse_date("") is None

    def test_strip_cover_size(self):
        assert strip_cover_size("https://i.gr-assets.com/images/S/123._SY75_.jpg") == \
            "https://i.gr-assets.com/images/S/123.jpg"
        assert strip_cover_size("https://example.com/plain.jpg") == "https://example.com/plain.jpg"


class TestPagination:
    """Tests for next-page and shelf-total detection."""

    def test_next_link_enabled(self):
        assert has_next_page(BeautifulSoup(shelf_page([], has_next=True), "html.parser"))

    def test_next_link_disabled(self):
        assert not has_next_page(BeautifulSoup(shelf_page([], has_next=False), "html.parser"))

    def test_no_pagination_at_all(self):
        assert not has_next_page(BeautifulSoup("<html></html>", "html.parser"))

    def test_shelf_total(self):
        soup = BeautifulSoup('<span class="selectedShelf">Read (1,234)</span>', "html.parser")
        assert shelf_total(soup) == 1234
        assert shelf_total(BeautifulSoup("<html></html>", "html.parser")) is None

    def test_parse_page_combines_signals(self):
        parsed = parse_page(shelf_page([book_row("1", "Dune", "Frank Herbert")], has_next=True, total=12))

        assert len(parsed.books) == 1
        assert parsed.has_next
        assert parsed.total == 12


class TestSameBookOnTwoShelves:
    """A book listed on two shelves ends up as one merged record."""

    def test_rows_merge_into_one_book(self):
        read_page = shelf_page([book_row("900", "Circe", "Madeline Miller", shelves=["read"])])
        favorites_page = shelf_page([book_row("900", "Circe", "Madeline Miller", shelves=["favorites"], rating=5)])

        records = extract(read_page) + extract(favorites_page)
        [book] = merge(records)

        assert set(book.shelves) == {"read", "favorites"}
        assert book.rating == 5
        assert book.canonical_key == "id:900"
