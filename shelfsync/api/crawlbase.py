"""
Crawlbase proxy client for Shelf Sync.

Goodreads pages are fetched through Crawlbase, which renders them and
returns the raw HTML. The token is configuration and never logged.
"""

from typing import Dict, Optional
from urllib.parse import urlencode

from shelfsync.api.retry import RetryCoordinator
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)

CRAWLBASE_URL = "https://api.crawlbase.com/"

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/91.0.4472.124 Safari/537.36",
}


class CrawlbaseClient:
    """
    Fetches target pages through the Crawlbase proxy.
    """

    def __init__(
        self,
        token: str,
        retry: RetryCoordinator,
        proxy_url: str = CRAWLBASE_URL,
        response_format: str = "raw",
    ):
        """
        Initialize Crawlbase client.

        Args:
            token: Crawlbase API token
            retry: Retry coordinator wrapping the HTTP fetcher
            proxy_url: Proxy endpoint
            response_format: Value of the ``format`` parameter
        """
        self.token = token
        self.retry = retry
        self.proxy_url = proxy_url
        self.response_format = response_format

    def build_url(self, target_url: str) -> str:
        """Build the proxy request URL for a target page."""
        query = urlencode({
            "token": self.token,
            "url": target_url,
            "format": self.response_format,
        })
        return f"{self.proxy_url}?{query}"

    def fetch_html(self, target_url: str, headers: Optional[Dict[str, str]] = None) -> str:
        """
        Fetch a page's HTML through the proxy.

        Args:
            target_url: Page to fetch
            headers: Request headers (browser-like headers by default)

        Returns:
            Raw HTML

        Raises:
            ExhaustedRetriesError: If every attempt failed
        """
        logger.debug("Fetching page through proxy", target_url=target_url)
        return self.retry.fetch_with_retry(
            self.build_url(target_url),
            headers=headers or BROWSER_HEADERS,
        )

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.retry.fetcher.close()
