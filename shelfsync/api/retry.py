"""
Bounded retries with exponential backoff around ResilientFetcher.

The proxy intermittently answers with empty bodies or 5xx under load, so a
response only counts as a success when it is 2xx AND has a body.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from shelfsync.api.base import APIError, FetchResponse, ResilientFetcher
from shelfsync.errors import SyncCancelledError
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ExhaustedRetriesError(APIError):
    """Every attempt failed; ``last_error`` describes the final failure."""
    attempts: int = 0
    last_error: Optional[str] = None


def backoff_delay(attempt: int, base_seconds: float = 2.0) -> float:
    """Delay after the zero-based ``attempt``: 2s, 4s, 8s, ... with the default base."""
    return (2 ** attempt) * base_seconds


def _is_success(response: FetchResponse) -> bool:
    return response.ok and len(response.body) > 0


class RetryCoordinator:
    """
    Wraps a fetcher with bounded retries.

    Backoff is deterministic (no jitter) and only happens between attempts.
    When a cancel event is given, backoff waits on it so a cancelled sync
    wakes up immediately, and no new attempt starts once it is set.
    """

    def __init__(
        self,
        fetcher: ResilientFetcher,
        max_attempts: int = 3,
        backoff_base_seconds: float = 2.0,
        sleep: Optional[Callable[[float], object]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.fetcher = fetcher
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.cancel_event = cancel_event

        if sleep is not None:
            self.sleep = sleep
        elif cancel_event is not None:
            self.sleep = cancel_event.wait
        else:
            self.sleep = time.sleep

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SyncCancelledError()

    def fetch_with_retry(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        max_attempts: Optional[int] = None,
    ) -> str:
        """
        Fetch a URL, retrying failures.

        Args:
            url: URL to fetch
            headers: Request headers
            max_attempts: Overrides the coordinator default

        Returns:
            Response body

        Raises:
            ExhaustedRetriesError: If every attempt failed
            SyncCancelledError: If the cancel event was set
        """
        attempts = max_attempts or self.max_attempts
        last_error: Optional[str] = None
        last_status: Optional[int] = None
        last_exception: Optional[Exception] = None

        for attempt in range(attempts):
            self._check_cancelled()

            try:
                response = self.fetcher.fetch(url, headers=headers)

                if _is_success(response):
                    return response.body

                last_status = response.status
                last_exception = None
                if response.ok:
                    last_error = "Empty response received"
                else:
                    last_error = response.body[:500] or f"HTTP {response.status}"

                logger.warning(
                    "Fetch attempt failed",
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    status=response.status,
                    error=last_error,
                )

            except APIError as e:
                last_status = e.status_code
                last_error = str(e)
                last_exception = e

                logger.warning(
                    "Fetch attempt raised",
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    error=last_error,
                )

            # Wait before retrying, never after the last attempt
            if attempt < attempts - 1:
                delay = backoff_delay(attempt, self.backoff_base_seconds)
                logger.debug("Waiting before retry", delay_seconds=delay)
                self.sleep(delay)

        error = ExhaustedRetriesError(
            message=f"Failed after {attempts} attempts. Last error: {last_error}",
            status_code=last_status,
            attempts=attempts,
            last_error=last_error,
        )
        if last_exception is not None:
            raise error from last_exception
        raise error
