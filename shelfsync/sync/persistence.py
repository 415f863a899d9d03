"""
Writes merged collections to the datastore and derives reading stats.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Any

from shelfsync.db.datastore import Datastore
from shelfsync.errors import PersistenceRowError
from shelfsync.sync.models import MergedBook, PersistResult, ReadingStats
from shelfsync.sync.stats import compute_stats
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)

BOOKS_TABLE = "books"

# Called before each row is written with (position, total, book)
OnSaving = Callable[[int, int, MergedBook], None]


class PersistenceSync:
    """
    Upserts merged books keyed by (user_id, canonical key).

    Re-syncing updates rows in place and never duplicates them. Each row is
    its own transaction, so one bad row does not stop the batch.
    """

    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    def _upsert(self, user_id: str, book: MergedBook, profile_id: Optional[str]) -> Dict[str, Any]:
        row = book.to_row()
        row["profile_id"] = profile_id
        row["updated_at"] = datetime.utcnow()

        try:
            return self.datastore.upsert(
                BOOKS_TABLE,
                {"user_id": user_id, "canonical_key": book.canonical_key},
                row,
            )
        except Exception as e:
            raise PersistenceRowError(book.canonical_key, book.title, e) from e

    def persist(
        self,
        user_id: str,
        books: List[MergedBook],
        on_saving: Optional[OnSaving] = None,
        profile_id: Optional[str] = None,
    ) -> PersistResult:
        """
        Upsert every merged book.

        Args:
            user_id: Owner of the rows
            books: Merged collection
            on_saving: Progress callback
            profile_id: Goodreads profile the books came from

        Returns:
            PersistResult with saved rows and the keys that failed
        """
        result = PersistResult()
        total = len(books)

        for position, book in enumerate(books, start=1):
            if on_saving:
                on_saving(position, total, book)

            try:
                saved = self._upsert(user_id, book, profile_id)
            except PersistenceRowError as e:
                logger.error(
                    "Error saving book",
                    title=book.title,
                    canonical_key=book.canonical_key,
                    error=str(e.cause),
                )
                result.failed.append(book.canonical_key)
                continue

            result.saved_rows.append(saved)
            result.saved_count += 1

        logger.info(
            "Finished saving books",
            user_id=user_id,
            saved=result.saved_count,
            failed=len(result.failed),
        )
        return result

    def load_books(self, user_id: str) -> List[Dict[str, Any]]:
        """Every stored row for the user."""
        return self.datastore.query(BOOKS_TABLE, {"user_id": user_id})

    def reading_stats(self, user_id: str) -> ReadingStats:
        """Stats over the full stored collection, not just the last sync."""
        return compute_stats(self.load_books(user_id))

    def clear_user_books(self, user_id: str) -> int:
        """Delete all of a user's books."""
        deleted = self.datastore.delete(BOOKS_TABLE, {"user_id": user_id})
        logger.info("Deleted user books", user_id=user_id, deleted=deleted)
        return deleted
