"""
Tests for ResilientFetcher and the proxy/site clients built on it.
"""

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from shelfsync.api.base import FetchResponse, FetchTimeoutError, NetworkError, ResilientFetcher
from shelfsync.api.crawlbase import BROWSER_HEADERS, CrawlbaseClient
from shelfsync.api.goodreads import GoodreadsClient
from shelfsync.api.retry import RetryCoordinator

from conftest import FakeFetcher


class FakeResponse:
    def __init__(self, status_code=200, chunks=(b"<html></html>",), headers=None, encoding=None, error=None):
        self.status_code = status_code
        self.chunks = list(chunks)
        self.headers = headers or {"Content-Type": "text/html"}
        self.encoding = encoding
        self.error = error
        self.closed = False

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            yield chunk
        if self.error:
            raise self.error

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, outcome):
        self.outcome = outcome
        self.requests = []
        self.closed = False

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    def close(self):
        self.closed = True


SLOW_BODY_LENGTH = 20


class SlowBodyHandler(BaseHTTPRequestHandler):
    """Sends headers at once, then the body one byte at a time or not at all."""

    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(SLOW_BODY_LENGTH))
        self.end_headers()
        self.wfile.flush()

        delay = self.server.trickle_delay
        try:
            if delay is not None:
                for _ in range(SLOW_BODY_LENGTH):
                    if self.server.release.wait(delay):
                        return
                    self.wfile.write(b"x")
                    self.wfile.flush()
            self.server.release.wait(10)
        except OSError:
            pass

    def log_message(self, format, *args):
        pass


@pytest.fixture
def slow_server():
    servers = []

    def start(trickle_delay):
        server = ThreadingHTTPServer(("127.0.0.1", 0), SlowBodyHandler)
        server.daemon_threads = True
        server.trickle_delay = trickle_delay
        server.release = threading.Event()
        server.url = f"http://127.0.0.1:{server.server_address[1]}/review/list/42"
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.release.set()
        server.shutdown()
        server.server_close()


def make_fetcher(outcome, timeout=90.0):
    fetcher = ResilientFetcher(timeout=timeout)
    fetcher.session = FakeSession(outcome)
    return fetcher


class TestResilientFetcher:
    """Tests for ResilientFetcher.fetch."""

    def test_returns_status_and_body(self):
        response = FakeResponse(chunks=[b"<html>", "café</html>".encode("utf-8")])
        fetcher = make_fetcher(response)

        result = fetcher.fetch("http://example.com/page", headers={"Accept": "text/html"})

        assert result == FetchResponse(status=200, body="<html>café</html>")
        assert response.closed
        url, kwargs = fetcher.session.requests[0]
        assert url == "http://example.com/page"
        assert kwargs["stream"] is True
        assert kwargs["timeout"] == 90.0

    def test_non_2xx_is_returned_not_raised(self):
        fetcher = make_fetcher(FakeResponse(status_code=502, chunks=[b"bad gateway"]))

        result = fetcher.fetch("http://example.com/page")

        assert result.status == 502
        assert not result.ok
        assert result.body == "bad gateway"

    def test_declared_charset_is_used(self):
        response = FakeResponse(
            chunks=["café".encode("latin-1")],
            headers={"Content-Type": "text/html; charset=ISO-8859-1"},
            encoding="ISO-8859-1",
        )

        assert make_fetcher(response).fetch("http://example.com").body == "café"

    def test_connect_timeout_maps_to_timeout_error(self):
        fetcher = make_fetcher(requests.exceptions.ConnectTimeout("slow"))

        with pytest.raises(FetchTimeoutError):
            fetcher.fetch("http://example.com")

    def test_transport_failure_maps_to_network_error(self):
        fetcher = make_fetcher(requests.exceptions.ConnectionError("refused"))

        with pytest.raises(NetworkError) as exc_info:
            fetcher.fetch("http://example.com")

        assert "refused" in str(exc_info.value)

    def test_broken_stream_closes_response(self):
        response = FakeResponse(error=requests.exceptions.ChunkedEncodingError("reset"))

        with pytest.raises(NetworkError):
            make_fetcher(response).fetch("http://example.com")

        assert response.closed

    def test_unknown_charset_falls_back_to_utf8(self):
        response = FakeResponse(
            chunks=["café".encode("utf-8")],
            headers={"Content-Type": "text/html; charset=x-bogus"},
            encoding="x-bogus",
        )

        assert make_fetcher(response).fetch("http://example.com").body == "café"
        assert response.closed

    def test_stalled_body_hits_deadline(self, slow_server):
        server = slow_server(trickle_delay=None)
        started = time.monotonic()

        with pytest.raises(FetchTimeoutError) as exc_info:
            ResilientFetcher(timeout=1.0).fetch(server.url)

        assert "while reading body" in str(exc_info.value)
        assert time.monotonic() - started < 2.0

    def test_trickling_body_hits_deadline(self, slow_server):
        server = slow_server(trickle_delay=0.3)
        started = time.monotonic()

        with pytest.raises(FetchTimeoutError):
            ResilientFetcher(timeout=1.0).fetch(server.url)

        assert time.monotonic() - started < 2.0

    def test_fast_body_from_real_server(self, slow_server):
        server = slow_server(trickle_delay=0.0)

        result = ResilientFetcher(timeout=5.0).fetch(server.url)

        assert result.status == 200
        assert result.body == "x" * SLOW_BODY_LENGTH

    def test_close_closes_session(self):
        fetcher = make_fetcher(FakeResponse())
        fetcher.close()
        assert fetcher.session.closed


class TestCrawlbaseClient:
    """Tests for proxy URL building."""

    def test_build_url_encodes_target(self):
        client = CrawlbaseClient("secret", retry=None)

        url = client.build_url("https://www.goodreads.com/review/list/42?shelf=read&page=2")
        query = parse_qs(urlparse(url).query)

        assert url.startswith("https://api.crawlbase.com/?")
        assert query["token"] == ["secret"]
        assert query["url"] == ["https://www.goodreads.com/review/list/42?shelf=read&page=2"]
        assert query["format"] == ["raw"]

    def test_fetch_html_sends_browser_headers(self):
        fetcher = FakeFetcher([FetchResponse(200, "<html>page</html>")])
        client = CrawlbaseClient("secret", RetryCoordinator(fetcher, sleep=lambda _: None))

        assert client.fetch_html("https://www.goodreads.com/") == "<html>page</html>"
        assert fetcher.calls[0].startswith("https://api.crawlbase.com/?token=secret")

        client.close()
        assert fetcher.closed

    def test_browser_headers_look_like_a_browser(self):
        assert "Mozilla" in BROWSER_HEADERS["User-Agent"]
        assert "text/html" in BROWSER_HEADERS["Accept"]


class RecordingProxy:
    def __init__(self):
        self.urls = []

    def fetch_html(self, target_url, headers=None):
        self.urls.append(target_url)
        return "<html></html>"


class TestGoodreadsClient:
    """Tests for review-list URLs."""

    def test_page_url_uses_table_view(self):
        proxy = RecordingProxy()
        GoodreadsClient(proxy).fetch_shelf_page("42", "read", page=3, per_page=100)

        parsed = urlparse(proxy.urls[0])
        query = parse_qs(parsed.query)
        assert parsed.path == "/review/list/42"
        assert query["shelf"] == ["read"]
        assert query["page"] == ["3"]
        assert query["per_page"] == ["100"]
        assert query["view"] == ["table"]
        assert query["sort"] == ["date_read"]

    def test_index_and_probe_request_one_book(self):
        proxy = RecordingProxy()
        client = GoodreadsClient(proxy, base_url="https://gr.test/")

        client.fetch_shelf_index("42")
        client.fetch_shelf_probe("42", "to-read")

        index, probe = (parse_qs(urlparse(url).query) for url in proxy.urls)
        assert proxy.urls[0].startswith("https://gr.test/review/list/42?")
        assert index["shelf"] == ["all"]
        assert index["per_page"] == ["1"]
        assert probe["shelf"] == ["to-read"]
        assert "view" not in probe
