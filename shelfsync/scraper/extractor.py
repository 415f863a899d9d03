"""
Parses Goodreads review-list HTML into BookRecords.

Goodreads has served several layouts over the years (the old table, the
review cards), so every field is read through an ordered list of small
extractor functions. The first one that yields a usable value wins, and a
row that still lacks a title or author is skipped instead of failing the
page.
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable, List, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

from shelfsync.sync.models import BookRecord
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)

ROW_SELECTOR = "tr.bookalike, tr.review, .review--show"

FieldExtractor = Callable[[Tag], Optional[str]]

ISBN_PATTERN = re.compile(r"(\d{13}|\d{9}[\dXx])")
INT_PATTERN = re.compile(r"\d+")
BOOK_ID_PATTERN = re.compile(r"/show/(\d+)")
COVER_SIZE_PATTERN = re.compile(r"\._[^./]*_\.")
SHELF_TOTAL_PATTERN = re.compile(r"\(([\d,]+)")

DATE_FORMATS = (
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %Y",
    "%B %Y",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%Y",
)


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    text = " ".join(text.split())
    return text or None


def text_of(selector: str) -> FieldExtractor:
    """Text of the first element matching ``selector``."""
    def extract(row: Tag) -> Optional[str]:
        element = row.select_one(selector)
        return _clean(element.get_text(" ", strip=True)) if element else None
    return extract


def attr_of(selector: str, attribute: str) -> FieldExtractor:
    """An attribute of the first element matching ``selector`` that has it."""
    def extract(row: Tag) -> Optional[str]:
        for element in row.select(selector):
            value = element.get(attribute)
            if isinstance(value, list):
                value = " ".join(value)
            if value:
                return _clean(str(value))
        return None
    return extract


def own_attr(attribute: str) -> FieldExtractor:
    """An attribute of the row element itself."""
    def extract(row: Tag) -> Optional[str]:
        value = row.get(attribute)
        return _clean(str(value)) if value else None
    return extract


def pattern_in(extractor: FieldExtractor, pattern: re.Pattern, group: int = 1) -> FieldExtractor:
    """Narrow another extractor's result to a regex match."""
    def extract(row: Tag) -> Optional[str]:
        value = extractor(row)
        if not value:
            return None
        match = pattern.search(value)
        return match.group(group) if match else None
    return extract


def count_of(selector: str) -> FieldExtractor:
    """Number of elements matching ``selector``, or None when there are none."""
    def extract(row: Tag) -> Optional[str]:
        count = len(row.select(selector))
        return str(count) if count else None
    return extract


def first_match(
    row: Tag,
    extractors: Iterable[FieldExtractor],
    convert: Optional[Callable[[str], object]] = None,
):
    """Run extractors in order and return the first non-empty (converted) value."""
    for extractor in extractors:
        value = extractor(row)
        if value and convert is not None:
            value = convert(value)
        if value:
            return value
    return None


def parse_int(text: str) -> int:
    """First integer in ``text``; 0 when there is none."""
    match = INT_PATTERN.search(text.replace(",", ""))
    if not match:
        return 0
    try:
        return int(match.group(0))
    except ValueError:
        return 0


def parse_rating(text: str) -> Optional[int]:
    rating = parse_int(text)
    return rating if 0 < rating <= 5 else None


def parse_date(text: str) -> Optional[date]:
    """Parse a Goodreads date string; None for 'not set' and the like."""
    text = _clean(text)
    if not text:
        return None
    for date_format in DATE_FORMATS:
        try:
            return datetime.strptime(text, date_format).date()
        except ValueError:
            continue
    return None


def strip_cover_size(url: str) -> str:
    """Drop the thumbnail size suffix (``._SY75_``) to get the full cover."""
    return COVER_SIZE_PATTERN.sub(".", url)


def _strip_review_prefix(value: str) -> Optional[str]:
    return value.replace("review_", "", 1) or None


# Ordered fallbacks per field, oldest layout first
SOURCE_ID_EXTRACTORS: List[FieldExtractor] = [
    own_attr("id"),
    pattern_in(attr_of(".title a, .field.title a", "href"), BOOK_ID_PATTERN),
    attr_of('input[name="book_id"]', "value"),
]

TITLE_EXTRACTORS: List[FieldExtractor] = [
    text_of(".title a"),
    text_of(".field.title a"),
    text_of(".bookTitle"),
]

AUTHOR_EXTRACTORS: List[FieldExtractor] = [
    text_of(".author a"),
    text_of(".field.author a"),
    text_of(".authorName"),
]

ISBN_EXTRACTORS: List[FieldExtractor] = [
    pattern_in(text_of(".isbn13 .value"), ISBN_PATTERN),
    pattern_in(text_of(".isbn .value"), ISBN_PATTERN),
    pattern_in(text_of(".isbn13"), ISBN_PATTERN),
    pattern_in(text_of(".isbn"), ISBN_PATTERN),
    pattern_in(attr_of('[itemprop="isbn"]', "content"), ISBN_PATTERN),
    pattern_in(text_of(".infoBoxRowItem"), ISBN_PATTERN),
]

RATING_EXTRACTORS: List[FieldExtractor] = [
    text_of(".rating .value"),
    text_of(".field.rating .value"),
    text_of(".staticStars"),
    text_of('[itemprop="ratingValue"]'),
    attr_of('[itemprop="ratingValue"]', "content"),
    attr_of(".rating [data-rating], .stars[data-rating]", "data-rating"),
    count_of(".rating .staticStar.p10"),
    count_of(".staticStar.p10"),
    count_of(".star.on"),
]

DATE_READ_EXTRACTORS: List[FieldExtractor] = [
    attr_of(".date_read span", "title"),
    attr_of(".field.date_read span", "title"),
    attr_of(".readDate", "title"),
    text_of(".date_read_value"),
    text_of(".date_read .value"),
    text_of(".readDate"),
]

REVIEW_EXTRACTORS: List[FieldExtractor] = [
    text_of(".review .readable"),
    text_of(".field.review .readable"),
    text_of(".reviewText"),
]

COVER_EXTRACTORS: List[FieldExtractor] = [
    attr_of(".cover img", "src"),
    attr_of(".field.cover img", "src"),
    attr_of("img.bookCover", "src"),
    attr_of(".bookCover img", "src"),
]

PAGE_COUNT_EXTRACTORS: List[FieldExtractor] = [
    text_of(".num_pages .value"),
    text_of(".num_pages"),
    text_of(".pageNumberFormat"),
]

SHELF_SELECTORS = (
    ".shelf",
    ".field.shelf",
    ".shelfStatus",
    ".shelves a.shelfLink",
)

FORMAT_EXTRACTORS: List[FieldExtractor] = [
    text_of(".format .value"),
    text_of(".format"),
]

PUBLISHER_EXTRACTORS: List[FieldExtractor] = [
    text_of(".publisher .value"),
    text_of(".publisher"),
]

PUBLISHED_EXTRACTORS: List[FieldExtractor] = [
    text_of(".date_pub .value"),
    text_of(".published .value"),
    text_of(".published"),
]


def _extract_shelves(row: Tag) -> List[str]:
    shelves: List[str] = []
    for element in row.select(", ".join(SHELF_SELECTORS)):
        name = _clean(element.get_text(" ", strip=True))
        if name:
            name = name.lower()
            if name not in shelves:
                shelves.append(name)
    return shelves


def extract_row(row: Tag) -> Optional[BookRecord]:
    """
    Build a BookRecord from one row element.

    Returns:
        BookRecord, or None when title or author is missing
    """
    title = first_match(row, TITLE_EXTRACTORS)
    author = first_match(row, AUTHOR_EXTRACTORS)

    if not title or not author:
        logger.debug(
            "Skipped row - missing title or author",
            row_id=row.get("id"),
            title=title,
            author=author,
        )
        return None

    return BookRecord(
        title=title,
        author=author,
        source_id=first_match(row, SOURCE_ID_EXTRACTORS, _strip_review_prefix),
        isbn=first_match(row, ISBN_EXTRACTORS, str.upper),
        rating=first_match(row, RATING_EXTRACTORS, parse_rating) or 0,
        date_read=first_match(row, DATE_READ_EXTRACTORS, parse_date),
        review=first_match(row, REVIEW_EXTRACTORS),
        cover_url=first_match(row, COVER_EXTRACTORS, strip_cover_size),
        page_count=first_match(row, PAGE_COUNT_EXTRACTORS, parse_int) or 0,
        shelves=_extract_shelves(row),
        format=first_match(row, FORMAT_EXTRACTORS),
        publisher=first_match(row, PUBLISHER_EXTRACTORS),
        published_date=first_match(row, PUBLISHED_EXTRACTORS),
    )


def _rows(soup: BeautifulSoup) -> List[Tag]:
    rows = soup.select(ROW_SELECTOR)
    matched = {id(row) for row in rows}
    # A card nested in a matched table row would otherwise be read twice
    return [row for row in rows if not any(id(parent) in matched for parent in row.parents)]


def _extract_from_soup(soup: BeautifulSoup) -> List[BookRecord]:
    books = []

    for index, row in enumerate(_rows(soup)):
        try:
            book = extract_row(row)
        except Exception as e:
            logger.debug("Skipped unparseable row", index=index, error=str(e))
            continue

        if book:
            books.append(book)

    return books


def extract(html: str) -> List[BookRecord]:
    """
    Extract every book on a review-list page.

    Never raises; rows that cannot be parsed are skipped.
    """
    if not html:
        return []
    return _extract_from_soup(BeautifulSoup(html, "html.parser"))


def has_next_page(soup: BeautifulSoup) -> bool:
    """True when the page shows an enabled "next" link."""
    next_link = soup.select_one(".next_page")
    return next_link is not None and "disabled" not in (next_link.get("class") or [])


def shelf_total(soup: BeautifulSoup) -> Optional[int]:
    """The book count shown next to the selected shelf, e.g. ``read (342)``."""
    for element in soup.select(".selectedShelf, .selectedBookShelf"):
        match = SHELF_TOTAL_PATTERN.search(element.get_text(" ", strip=True))
        if match:
            return int(match.group(1).replace(",", ""))
    return None


@dataclass
class ParsedPage:
    """Everything the page walker needs from one page."""
    books: List[BookRecord] = field(default_factory=list)
    has_next: bool = False
    total: Optional[int] = None


def parse_page(html: str) -> ParsedPage:
    """Extract books and pagination signals from one page in a single parse."""
    if not html:
        return ParsedPage()

    soup = BeautifulSoup(html, "html.parser")
    return ParsedPage(
        books=_extract_from_soup(soup),
        has_next=has_next_page(soup),
        total=shelf_total(soup),
    )
