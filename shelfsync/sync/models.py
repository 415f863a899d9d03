"""
Data models for sync operations.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class BookRecord:
    """One book row extracted from a Goodreads page."""
    title: str
    author: str
    source_id: Optional[str] = None
    isbn: Optional[str] = None
    rating: int = 0  # 0 means unrated
    date_read: Optional[date] = None
    review: Optional[str] = None
    cover_url: Optional[str] = None
    page_count: int = 0  # 0 means unknown
    shelves: List[str] = field(default_factory=list)  # ordered, no duplicates
    format: Optional[str] = None
    publisher: Optional[str] = None
    published_date: Optional[str] = None

    def add_shelf(self, shelf: str) -> None:
        if shelf and shelf not in self.shelves:
            self.shelves.append(shelf)


def canonical_key(record: BookRecord) -> str:
    """
    Identity used to merge duplicates and to upsert rows.

    Source ID first, then ISBN, then normalized title and author.
    """
    if record.source_id and record.source_id.strip():
        return f"id:{record.source_id.strip()}"
    if record.isbn and record.isbn.strip():
        return f"isbn:{record.isbn.strip()}"
    return f"ta:{record.title.strip().lower()}|{record.author.strip().lower()}"


@dataclass
class MergedBook(BookRecord):
    """A reconciled book with the shelves of every occurrence."""
    canonical_key: str = ""

    def to_row(self) -> Dict[str, Any]:
        """Column values for the books table, without the identity columns."""
        return {
            "source_id": self.source_id,
            "title": self.title.strip(),
            "author": self.author.strip(),
            "isbn": self.isbn,
            "rating": self.rating,
            "date_read": self.date_read,
            "review": self.review,
            "cover_url": self.cover_url,
            "page_count": self.page_count,
            "shelves": list(self.shelves),
            "format": self.format,
            "publisher": self.publisher,
            "published_date": self.published_date,
        }


class SyncState(str, Enum):
    """Orchestrator states."""
    IDLE = "idle"
    ENUMERATING_SHELVES = "enumerating_shelves"
    WALKING_SHELVES = "walking_shelves"
    MERGING = "merging"
    PERSISTING = "persisting"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncState.COMPLETE, SyncState.FAILED, SyncState.CANCELLED)


class Stage(str, Enum):
    FETCHING = "fetching"
    SAVING = "saving"
    COMPLETE = "complete"


@dataclass
class ProgressEvent:
    """A progress update; a ``complete`` stage event ends the stream."""
    stage: Stage
    current: int
    total: int
    message: str
    shelf: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.stage == Stage.COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "stage": self.stage.value,
            "current": self.current,
            "total": self.total,
            "message": self.message,
        }
        if self.shelf is not None:
            data["shelf"] = self.shelf
        data.update(self.payload)
        return data


@dataclass
class ErrorEvent:
    """A fatal error; always terminal."""
    error: str

    is_terminal = True

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error}


@dataclass
class ReadingProgress:
    total: int = 0
    read: int = 0
    reading: int = 0
    to_read: int = 0
    reading_rate: float = 0.0


@dataclass
class AuthorStats:
    author: str
    count: int
    average_rating: float
    books: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class PublisherStats:
    name: str
    count: int
    books: List[str] = field(default_factory=list)


@dataclass
class ReadingStats:
    """Aggregates over a user's full stored collection."""
    total_books: int = 0
    total_shelves: int = 0
    average_rating: float = 0.0
    books_per_shelf: Dict[str, int] = field(default_factory=dict)
    reading_progress: ReadingProgress = field(default_factory=ReadingProgress)
    top_authors: List[AuthorStats] = field(default_factory=list)
    rating_distribution: Dict[str, int] = field(default_factory=dict)
    format_distribution: Dict[str, int] = field(default_factory=dict)
    publisher_stats: List[PublisherStats] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PersistResult:
    """Outcome of writing one merged collection."""
    saved_count: int = 0
    saved_rows: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)  # canonical keys


@dataclass
class SyncRunResult:
    """Result of a complete sync run."""
    run_id: str
    user_id: str
    profile_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    state: SyncState = SyncState.IDLE

    # Counts
    shelves: List[str] = field(default_factory=list)
    failed_shelves: List[str] = field(default_factory=list)
    books_merged: int = 0
    books_saved: int = 0
    books_failed: int = 0

    # Final collection
    books: List[Dict[str, Any]] = field(default_factory=list)
    stats: Optional[ReadingStats] = None

    # Status
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state == SyncState.COMPLETE

    @property
    def partial(self) -> bool:
        return bool(self.failed_shelves) or self.books_failed > 0
