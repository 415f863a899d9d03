"""
Reading statistics over a user's stored collection.
"""

from collections import Counter
from typing import Any, Dict, List

from shelfsync.sync.models import AuthorStats, PublisherStats, ReadingProgress, ReadingStats

Row = Dict[str, Any]

TOP_N = 10


def _shelves(row: Row) -> List[str]:
    return [shelf.strip().lower() for shelf in (row.get("shelves") or []) if shelf and shelf.strip()]


def _iso(value: Any):
    return value.isoformat() if hasattr(value, "isoformat") else value


def _rating(row: Row) -> int:
    return row.get("rating") or 0


def average_rating(rows: List[Row]) -> float:
    rated = [_rating(row) for row in rows if _rating(row) > 0]
    if not rated:
        return 0.0
    return round(sum(rated) / len(rated), 2)


def books_per_shelf(rows: List[Row]) -> Dict[str, int]:
    """Counts per shelf, largest shelf first."""
    counts = Counter(shelf for row in rows for shelf in _shelves(row))
    return dict(counts.most_common())


def reading_progress(rows: List[Row]) -> ReadingProgress:
    def is_read(shelf: str) -> bool:
        return "read" in shelf and "to-read" not in shelf and "currently-reading" not in shelf

    read = sum(1 for row in rows if any(is_read(s) for s in _shelves(row)))
    reading = sum(1 for row in rows if any("currently-reading" in s for s in _shelves(row)))
    to_read = sum(
        1 for row in rows
        if any("to-read" in s or "want-to-read" in s for s in _shelves(row))
    )

    total = len(rows)
    return ReadingProgress(
        total=total,
        read=read,
        reading=reading,
        to_read=to_read,
        reading_rate=round(read / total * 100, 1) if read else 0.0,
    )


def top_authors(rows: List[Row], limit: int = TOP_N) -> List[AuthorStats]:
    """Most-read authors; ties go to the better rated author."""
    grouped: Dict[str, List[Row]] = {}
    for row in rows:
        author = (row.get("author") or "").strip()
        if author:
            grouped.setdefault(author, []).append(row)

    authors = []
    for author, books in grouped.items():
        ratings = [_rating(book) for book in books if _rating(book) > 0]
        authors.append(AuthorStats(
            author=author,
            count=len(books),
            average_rating=round(sum(ratings) / len(ratings), 1) if ratings else 0.0,
            books=[
                {
                    "title": book.get("title"),
                    "rating": _rating(book),
                    "date_read": _iso(book.get("date_read")),
                }
                for book in books
            ],
        ))

    authors.sort(key=lambda a: (-a.count, -a.average_rating))
    return authors[:limit]


def rating_distribution(rows: List[Row]) -> Dict[str, int]:
    distribution = {str(stars): 0 for stars in range(1, 6)}
    for row in rows:
        rating = _rating(row)
        if 0 < rating <= 5:
            distribution[str(rating)] += 1
    return distribution


def format_distribution(rows: List[Row]) -> Dict[str, int]:
    counts = Counter((row.get("format") or "").strip() for row in rows)
    counts.pop("", None)
    return dict(counts)


def publisher_stats(rows: List[Row], limit: int = TOP_N) -> List[PublisherStats]:
    grouped: Dict[str, List[str]] = {}
    for row in rows:
        publisher = (row.get("publisher") or "").strip()
        if publisher:
            grouped.setdefault(publisher, []).append(row.get("title"))

    publishers = [
        PublisherStats(name=name, count=len(titles), books=titles)
        for name, titles in grouped.items()
    ]
    publishers.sort(key=lambda p: -p.count)
    return publishers[:limit]


def compute_stats(rows: List[Row]) -> ReadingStats:
    """Recompute every aggregate from the full row set."""
    return ReadingStats(
        total_books=len(rows),
        total_shelves=len({shelf for row in rows for shelf in _shelves(row)}),
        average_rating=average_rating(rows),
        books_per_shelf=books_per_shelf(rows),
        reading_progress=reading_progress(rows),
        top_authors=top_authors(rows),
        rating_distribution=rating_distribution(rows),
        format_distribution=format_distribution(rows),
        publisher_stats=publisher_stats(rows),
    )
