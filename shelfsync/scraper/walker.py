"""
Pagination over one Goodreads shelf.
"""

import threading
from typing import Callable, List, Optional, Set

from shelfsync.api.goodreads import GoodreadsClient
from shelfsync.errors import ShelfWalkError, SyncCancelledError
from shelfsync.scraper.extractor import parse_page
from shelfsync.sync.models import BookRecord, canonical_key
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)

# Called after every page with (records so far, advisory total; 0 when unknown)
OnPage = Callable[[List[BookRecord], int], None]


class PageWalker:
    """
    Walks the pages of a shelf until the site stops offering a next page.

    The probe count is only used for progress display. Loop control relies
    on the markup: an empty page, a page with nothing new, or a missing
    next link ends the walk, and ``max_pages`` caps it regardless.
    """

    def __init__(
        self,
        client: GoodreadsClient,
        per_page: int = 100,
        max_pages: int = 200,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.client = client
        self.per_page = per_page
        self.max_pages = max_pages
        self.cancel_event = cancel_event

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SyncCancelledError()

    def probe_total(self, profile_id: str, shelf: str) -> int:
        """Book count shown for the shelf, or 0 when it cannot be read."""
        try:
            html = self.client.fetch_shelf_probe(profile_id, shelf)
        except SyncCancelledError:
            raise
        except Exception as e:
            logger.warning("Error getting total book count", shelf=shelf, error=str(e))
            return 0

        total = parse_page(html).total or 0
        if total:
            logger.info("Found total books on shelf", shelf=shelf, total=total)
        return total

    def walk_shelf(
        self,
        profile_id: str,
        shelf: str,
        on_page: Optional[OnPage] = None,
    ) -> List[BookRecord]:
        """
        Fetch every book on a shelf.

        Args:
            profile_id: Goodreads user ID
            shelf: Shelf label
            on_page: Progress callback

        Returns:
            Records tagged with ``shelf``

        Raises:
            ShelfWalkError: If a page failed; carries the records gathered so far
            SyncCancelledError: If the cancel event was set
        """
        self._check_cancelled()
        total = self.probe_total(profile_id, shelf)

        records: List[BookRecord] = []
        seen: Set[str] = set()
        page = 1

        while page <= self.max_pages:
            self._check_cancelled()
            logger.debug("Fetching shelf page", shelf=shelf, page=page)

            try:
                html = self.client.fetch_shelf_page(profile_id, shelf, page, self.per_page)
            except SyncCancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Error fetching shelf page",
                    shelf=shelf,
                    page=page,
                    gathered=len(records),
                    error=str(e),
                )
                raise ShelfWalkError(shelf, records, e)

            parsed = parse_page(html)
            new_books = []
            for book in parsed.books:
                key = canonical_key(book)
                if key in seen:
                    continue
                seen.add(key)
                book.add_shelf(shelf)
                new_books.append(book)

            records.extend(new_books)
            logger.info(
                "Fetched shelf page",
                shelf=shelf,
                page=page,
                found=len(parsed.books),
                new=len(new_books),
            )

            if on_page:
                on_page(records, total)

            if not new_books:
                logger.info("No more books found on this page", shelf=shelf, page=page)
                break

            if not parsed.has_next:
                logger.debug("No next page link found", shelf=shelf, page=page)
                break

            page += 1
        else:
            logger.warning("Stopped at page limit", shelf=shelf, max_pages=self.max_pages)

        logger.info("Finished shelf", shelf=shelf, books=len(records))
        return records
