"""
HTTP fetching for Shelf Sync.

Performs single GET requests with a hard deadline. Retrying is the job of
shelfsync.api.retry.
"""

import socket
import threading
import time
from typing import Optional, Dict, Any
from dataclasses import dataclass
import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import ReadTimeoutError

from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class APIError(Exception):
    """Custom exception for API errors."""
    message: str
    status_code: Optional[int] = None
    response_data: Optional[Dict[str, Any]] = None

    def __str__(self) -> str:
        if self.status_code:
            return f"API Error {self.status_code}: {self.message}"
        return f"API Error: {self.message}"


class FetchTimeoutError(APIError):
    """The request did not finish before its deadline and was aborted."""


class NetworkError(APIError):
    """The transport failed (DNS, refused connection, broken stream)."""


@dataclass
class FetchResponse:
    """Status and decoded body of one completed request."""
    status: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class ResilientFetcher:
    """
    Performs one HTTP GET with a hard timeout.

    The timeout covers connecting and downloading the whole body. The
    response is always closed, so an aborted download never keeps its
    socket open.
    """

    def __init__(self, timeout: float = 90.0, pool_maxsize: int = 4):
        self.timeout = timeout

        # Pooled session, retries are handled one level up
        self.session = requests.Session()

        adapter = HTTPAdapter(max_retries=0, pool_maxsize=pool_maxsize)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def fetch(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> FetchResponse:
        """
        Fetch a URL.

        Args:
            url: Absolute URL to GET
            headers: Extra request headers
            timeout: Seconds before the call is aborted (defaults to self.timeout)

        Returns:
            FetchResponse with status and body

        Raises:
            FetchTimeoutError: If the deadline passed
            NetworkError: If the transport failed
        """
        timeout = timeout or self.timeout
        deadline = time.monotonic() + timeout

        try:
            response = self.session.get(url, headers=headers, timeout=timeout, stream=True)
        except requests.exceptions.Timeout as e:
            raise FetchTimeoutError(f"Request timeout after {timeout}s: {e}")
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Request failed: {e}")

        # Socket reads block for up to `timeout` each, so the deadline is
        # enforced from a timer that cuts the connection
        expired = threading.Event()
        timer = threading.Timer(max(deadline - time.monotonic(), 0), _abort, args=(response, expired))
        timer.daemon = True
        timer.start()

        try:
            chunks = []
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                chunks.append(chunk)
                if time.monotonic() >= deadline:
                    break

            # A cut connection can also end the stream early without an error
            if expired.is_set() or time.monotonic() >= deadline:
                raise FetchTimeoutError(
                    f"Request timeout after {timeout}s while reading body",
                    status_code=response.status_code,
                )

            body = _decode(b"".join(chunks), response)

        except requests.exceptions.RequestException as e:
            if _timed_out(e) or expired.is_set() or time.monotonic() >= deadline:
                raise FetchTimeoutError(
                    f"Request timeout after {timeout}s while reading body: {e}",
                    status_code=response.status_code,
                )
            raise NetworkError(f"Connection error: {e}", status_code=response.status_code)
        except (OSError, ValueError, AttributeError) as e:
            # urllib3 raises these when the socket is shut under a pending read
            if not expired.is_set():
                raise
            raise FetchTimeoutError(
                f"Request timeout after {timeout}s while reading body: {e}",
                status_code=response.status_code,
            )
        finally:
            timer.cancel()
            response.close()

        logger.debug("Fetched URL", status=response.status_code, size=len(body))
        return FetchResponse(status=response.status_code, body=body)

    def close(self) -> None:
        """Close the session."""
        self.session.close()


def _timed_out(error: requests.exceptions.RequestException) -> bool:
    """requests wraps a read timeout during iter_content in ConnectionError."""
    if isinstance(error, requests.exceptions.Timeout):
        return True
    return any(isinstance(arg, ReadTimeoutError) for arg in error.args)


def _abort(response: requests.Response, expired: threading.Event) -> None:
    """Cut the connection under a response whose deadline has passed."""
    expired.set()

    connection = getattr(response.raw, "connection", None) or getattr(response.raw, "_connection", None)
    sock = getattr(connection, "sock", None)
    if sock is None:
        response.close()
        return

    try:
        # Unlike close(), shutdown wakes a recv blocked in another thread
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass


def _decode(raw: bytes, response: requests.Response) -> str:
    """Decode with the declared charset, or UTF-8 when none or an unknown one is given."""
    content_type = response.headers.get("Content-Type", "")
    encoding = response.encoding if "charset=" in content_type.lower() else None

    try:
        return raw.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        logger.warning("Unknown charset, decoding as UTF-8", charset=encoding)
        return raw.decode("utf-8", errors="replace")
