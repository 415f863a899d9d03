"""
Goodreads page access for Shelf Sync.

Goodreads has no usable API any more, so shelves are read from the public
review list pages. This may break if Goodreads changes their site; the
extractor tolerates the layouts seen so far.
"""

from urllib.parse import urlencode

from shelfsync.api.crawlbase import CrawlbaseClient

GOODREADS_BASE_URL = "https://www.goodreads.com"


class GoodreadsClient:
    """
    Builds review-list URLs for a profile and fetches them through the proxy.
    """

    def __init__(self, proxy: CrawlbaseClient, base_url: str = GOODREADS_BASE_URL):
        self.proxy = proxy
        self.base_url = base_url.rstrip("/")

    def review_list_url(
        self,
        profile_id: str,
        shelf: str,
        per_page: int,
        page: int = 1,
        table_view: bool = False,
    ) -> str:
        """URL of one page of a profile's shelf."""
        params = {"shelf": shelf, "per_page": per_page, "page": page}
        if table_view:
            params.update({"view": "table", "sort": "date_read", "order": "d"})
        return f"{self.base_url}/review/list/{profile_id}?{urlencode(params)}"

    def fetch_shelf_index(self, profile_id: str) -> str:
        """The ``all`` shelf with one book per page; its chrome lists every shelf."""
        url = f"{self.base_url}/review/list/{profile_id}?{urlencode({'shelf': 'all', 'per_page': 1})}"
        return self.proxy.fetch_html(url)

    def fetch_shelf_probe(self, profile_id: str, shelf: str) -> str:
        """One-book page of a shelf, used only for its total count."""
        return self.proxy.fetch_html(self.review_list_url(profile_id, shelf, per_page=1, page=1))

    def fetch_shelf_page(self, profile_id: str, shelf: str, page: int, per_page: int) -> str:
        """A full page of a shelf in table view, newest reads first."""
        return self.proxy.fetch_html(
            self.review_list_url(profile_id, shelf, per_page=per_page, page=page, table_view=True)
        )

    def close(self) -> None:
        self.proxy.close()
