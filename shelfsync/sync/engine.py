"""
Main sync engine for Shelf Sync.

Orchestrates one sync run: discover shelves, walk each shelf, merge the
records, persist them and report progress to the waiting client.
"""

import threading
import uuid
from datetime import datetime
from typing import List, Optional

from structlog.stdlib import BoundLogger

from shelfsync.api.base import APIError, ResilientFetcher
from shelfsync.api.crawlbase import CrawlbaseClient
from shelfsync.api.goodreads import GoodreadsClient
from shelfsync.api.retry import RetryCoordinator
from shelfsync.config import SyncConfig
from shelfsync.db.datastore import Datastore, SqlAlchemyDatastore
from shelfsync.errors import (
    QuotaExceededError,
    ShelfWalkError,
    SyncCancelledError,
    SyncError,
    SyncInProgressError,
)
from shelfsync.scraper.shelves import ShelfEnumerator
from shelfsync.scraper.walker import PageWalker
from shelfsync.sync.merger import merge
from shelfsync.sync.models import BookRecord, MergedBook, Stage, SyncRunResult, SyncState
from shelfsync.sync.persistence import PersistenceSync
from shelfsync.sync.progress import ProgressChannel
from shelfsync.sync.quota import RAW, QuotaService
from shelfsync.sync.runs import SyncRunRegistry
from shelfsync.sync.stats import compute_stats
from shelfsync.utils.logging import get_logger, get_sync_logger

logger = get_logger(__name__)


class SyncOrchestrator:
    """
    Runs one sync and owns its progress channel.

    States: IDLE -> ENUMERATING_SHELVES -> WALKING_SHELVES -> MERGING ->
    PERSISTING -> COMPLETE, with FAILED (or CANCELLED) reachable from any
    non-terminal state.

    - Quota rejection, a running sync for the same user and enumeration
      failures are fatal and happen before anything is written.
    - A failed shelf keeps the records gathered before the failure and the
      run moves on to the next shelf.
    - A failed row is counted and the batch continues.
    - Exactly one terminal event reaches the channel.
    """

    def __init__(
        self,
        enumerator: ShelfEnumerator,
        walker: PageWalker,
        persistence: PersistenceSync,
        channel: ProgressChannel,
        quota: Optional[QuotaService] = None,
        runs: Optional[SyncRunRegistry] = None,
        api_class: str = RAW,
    ):
        self.enumerator = enumerator
        self.walker = walker
        self.persistence = persistence
        self.channel = channel
        self.quota = quota
        self.runs = runs
        self.api_class = api_class

        self.state = SyncState.IDLE
        self.transitions: List[SyncState] = [SyncState.IDLE]
        self.shelf_index: Optional[int] = None

    def _transition(self, state: SyncState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"Sync already {self.state.value}")
        self.state = state
        self.transitions.append(state)

    def _check_cancelled(self) -> None:
        if self.channel.cancelled:
            raise SyncCancelledError()

    def run(self, user_id: str, profile_id: str, run_id: Optional[str] = None) -> SyncRunResult:
        """
        Run a full sync.

        Args:
            user_id: Owner of the stored collection
            profile_id: Goodreads profile to read
            run_id: Optional run ID (auto-generated if not provided)

        Returns:
            SyncRunResult; the same outcome is also sent as the terminal event
        """
        run_id = run_id or str(uuid.uuid4())[:8]
        sync_logger = get_sync_logger(run_id, user_id)

        result = SyncRunResult(
            run_id=run_id,
            user_id=user_id,
            profile_id=profile_id,
            started_at=datetime.utcnow(),
        )
        marked = False

        sync_logger.info("Starting sync run", profile_id=profile_id)

        try:
            if self.quota and not self.quota.check_limit(user_id, self.api_class):
                raise QuotaExceededError(user_id, self.api_class)

            if self.runs:
                self.runs.start(run_id, user_id, profile_id)
                marked = True

            if self.quota:
                self.quota.increment_usage(user_id, self.api_class)

            self._transition(SyncState.ENUMERATING_SHELVES)
            self.channel.progress(Stage.FETCHING, 0, 0, f"Discovering shelves for profile {profile_id}")
            result.shelves = self.enumerator.list_shelves(profile_id)

            records = self._walk_shelves(profile_id, result, sync_logger)
            self._check_cancelled()

            self._transition(SyncState.MERGING)
            merged = merge(records)
            result.books_merged = len(merged)

            self._transition(SyncState.PERSISTING)
            self._persist(user_id, profile_id, merged, result)

            result.books = self.persistence.load_books(user_id)
            result.stats = compute_stats(result.books)
            stats = result.stats.to_dict()

            self._transition(SyncState.COMPLETE)
            result.state = SyncState.COMPLETE
            self.channel.complete(
                result.books_saved,
                result.books_merged,
                f"Successfully synced {result.books_saved} books",
                run_id=run_id,
                books=result.books,
                stats=stats,
                saved=result.books_saved,
                failed=result.books_failed,
                partial=result.partial,
                failed_shelves=result.failed_shelves,
            )

            sync_logger.info(
                "Sync run completed",
                shelves=len(result.shelves),
                failed_shelves=result.failed_shelves,
                merged=result.books_merged,
                saved=result.books_saved,
                failed=result.books_failed,
            )

        except SyncCancelledError as e:
            sync_logger.warning("Sync run cancelled", state=self.state.value)
            self._end(result, SyncState.CANCELLED, str(e))

        except SyncInProgressError as e:
            # The marker belongs to the other run, leave it alone
            sync_logger.warning("Sync already running", active_run=e.run_id)
            self._end(result, SyncState.FAILED, str(e))

        except (SyncError, APIError) as e:
            sync_logger.error("Sync run failed", state=self.state.value, error=str(e))
            self._end(result, SyncState.FAILED, str(e))

        except Exception as e:
            sync_logger.exception("Sync run failed", state=self.state.value, error=str(e))
            self._end(result, SyncState.FAILED, str(e) or "Internal server error")

        finally:
            result.completed_at = datetime.utcnow()
            if marked:
                self.runs.finish(
                    run_id,
                    "completed" if result.success else self.state.value,
                    shelves_found=len(result.shelves),
                    books_merged=result.books_merged,
                    books_saved=result.books_saved,
                    books_failed=result.books_failed,
                    failed_shelves=result.failed_shelves,
                    error_message=result.error_message,
                )

        return result

    def _end(self, result: SyncRunResult, state: SyncState, message: str) -> None:
        """Move to a failure state and send the error event, once."""
        if not self.state.is_terminal:
            self._transition(state)
        result.state = self.state
        result.error_message = message

        if not self.channel.terminated:
            self.channel.fail(message)

    def _walk_shelves(
        self,
        profile_id: str,
        result: SyncRunResult,
        sync_logger: BoundLogger,
    ) -> List[BookRecord]:
        """Walk every shelf in order; a failed shelf keeps what it gathered."""
        records: List[BookRecord] = []
        shelf_count = len(result.shelves)

        for index, shelf in enumerate(result.shelves):
            self._check_cancelled()

            if self.state != SyncState.WALKING_SHELVES:
                self._transition(SyncState.WALKING_SHELVES)
            self.shelf_index = index

            self.channel.progress(
                Stage.FETCHING,
                index,
                shelf_count,
                f"Fetching shelf {index + 1}/{shelf_count}: {shelf}",
                shelf=shelf,
            )

            pages = 0

            def on_page(shelf_records: List[BookRecord], total_estimate: int) -> None:
                nonlocal pages
                pages += 1
                current = len(shelf_records)
                total = max(total_estimate, current)
                self.channel.progress(
                    Stage.FETCHING,
                    current,
                    total,
                    f"Fetched page {pages} of shelf: {shelf} ({current}/{total} books)",
                    shelf=shelf,
                )

            try:
                shelf_records = self.walker.walk_shelf(profile_id, shelf, on_page)
            except ShelfWalkError as e:
                sync_logger.warning(
                    "Shelf walk failed, keeping partial results",
                    shelf=shelf,
                    kept=len(e.records),
                    error=str(e.cause),
                )
                result.failed_shelves.append(shelf)
                shelf_records = e.records

            records.extend(shelf_records)
            sync_logger.info(
                "Added books from shelf",
                shelf=shelf,
                added=len(shelf_records),
                total=len(records),
            )

        # Nothing to walk still passes through the walking state
        if self.state == SyncState.ENUMERATING_SHELVES:
            self._transition(SyncState.WALKING_SHELVES)

        return records

    def _persist(
        self,
        user_id: str,
        profile_id: str,
        merged: List[MergedBook],
        result: SyncRunResult,
    ) -> None:
        def on_saving(position: int, total: int, book: MergedBook) -> None:
            self.channel.progress(
                Stage.SAVING,
                position,
                total,
                f"Saving book: {book.title} ({position}/{total})",
            )

        persisted = self.persistence.persist(user_id, merged, on_saving, profile_id=profile_id)
        result.books_saved = persisted.saved_count
        result.books_failed = len(persisted.failed)

    def close(self) -> None:
        """Close the HTTP session behind the enumerator and walker."""
        self.walker.client.close()


def create_sync_orchestrator(
    config: SyncConfig,
    channel: Optional[ProgressChannel] = None,
    datastore: Optional[Datastore] = None,
) -> SyncOrchestrator:
    """
    Build an orchestrator with its own HTTP session and channel.

    Nothing is shared between runs except the datastore.
    """
    channel = channel or ProgressChannel()
    datastore = datastore or SqlAlchemyDatastore()

    fetcher = ResilientFetcher(timeout=config.request_timeout)
    retry = RetryCoordinator(
        fetcher,
        max_attempts=config.max_attempts,
        backoff_base_seconds=config.backoff_base_seconds,
        cancel_event=channel.cancel_event,
    )
    proxy = CrawlbaseClient(config.crawlbase_token, retry, proxy_url=config.crawlbase_url)
    client = GoodreadsClient(proxy, base_url=config.goodreads_base_url)

    return SyncOrchestrator(
        enumerator=ShelfEnumerator(client),
        walker=PageWalker(
            client,
            per_page=config.books_per_page,
            max_pages=config.max_pages_per_shelf,
            cancel_event=channel.cancel_event,
        ),
        persistence=PersistenceSync(datastore),
        channel=channel,
        quota=QuotaService(datastore, limit=config.quota_limit),
        runs=SyncRunRegistry(datastore, ttl_minutes=config.sync_lock_ttl_minutes),
    )


def start_sync(
    config: SyncConfig,
    user_id: str,
    profile_id: str,
    datastore: Optional[Datastore] = None,
) -> ProgressChannel:
    """
    Start a sync on a worker thread and return its progress channel.

    The caller reads the channel until the terminal event and calls
    ``channel.cancel()`` if its client disconnects first.
    """
    channel = ProgressChannel()
    orchestrator = create_sync_orchestrator(config, channel, datastore)

    def work() -> None:
        try:
            orchestrator.run(user_id, profile_id)
        finally:
            orchestrator.close()

    thread = threading.Thread(target=work, name=f"sync-{user_id}", daemon=True)
    thread.start()
    logger.info("Started sync worker", user_id=user_id, profile_id=profile_id, thread=thread.name)
    return channel
