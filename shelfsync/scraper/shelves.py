"""
Shelf discovery for a Goodreads profile.
"""

import re
from typing import Callable, List
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup

from shelfsync.api.goodreads import GoodreadsClient
from shelfsync.errors import NoShelvesFoundError
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)

ALL_SHELF = "all"
COUNT_SUFFIX = re.compile(r"\s*\(.*?\)\s*$")

ShelfStrategy = Callable[[BeautifulSoup], List[str]]


def dropdown_shelves(soup: BeautifulSoup) -> List[str]:
    """Shelf dropdown of the old layout."""
    return [option.get("value", "") for option in soup.select("#paginatedShelfList option")]


def sidebar_shelves(soup: BeautifulSoup) -> List[str]:
    """Sidebar shelf list, either as data attributes or as shelf links."""
    shelves = [element.get("data-shelf", "") for element in soup.select(".userShelf[data-shelf]")]

    for link in soup.select("a.userShelf[href], .userShelf a[href]"):
        values = parse_qs(urlparse(link["href"]).query).get("shelf")
        if values:
            shelves.append(values[0])

    return shelves


def header_shelves(soup: BeautifulSoup) -> List[str]:
    """Label of the selected shelf in the list header."""
    return [element.get("data-shelf", "") for element in soup.select(".selectedShelf[data-shelf]")]


SHELF_STRATEGIES: List[ShelfStrategy] = [
    dropdown_shelves,
    sidebar_shelves,
    header_shelves,
]


def current_shelf(soup: BeautifulSoup) -> List[str]:
    """Last resort: the visible text of the selected shelf, without its count."""
    element = soup.select_one(".selectedShelf")
    if not element:
        return []
    label = COUNT_SUFFIX.sub("", element.get_text(" ", strip=True)).strip().lower()
    return [label] if label else []


def discover_shelves(html: str) -> List[str]:
    """
    Union the labels found by every strategy, in first-seen order.

    ``all`` overlaps every other shelf, so it is only returned when nothing
    else was found.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    shelves: List[str] = []

    for strategy in SHELF_STRATEGIES:
        for label in strategy(soup):
            label = (label or "").strip()
            if label and label != ALL_SHELF and label not in shelves:
                shelves.append(label)

    if not shelves:
        shelves = current_shelf(soup)
        if shelves:
            logger.info("No shelf list found, using current shelf", shelf=shelves[0])

    return shelves


class ShelfEnumerator:
    """
    Lists the shelves of a Goodreads profile.
    """

    def __init__(self, client: GoodreadsClient):
        self.client = client

    def list_shelves(self, profile_id: str) -> List[str]:
        """
        Discover a profile's shelves.

        Args:
            profile_id: Goodreads user ID

        Returns:
            Shelf labels in page order

        Raises:
            NoShelvesFoundError: If the page shows no shelves
            ExhaustedRetriesError: If the page could not be fetched
        """
        html = self.client.fetch_shelf_index(profile_id)
        shelves = discover_shelves(html)

        if not shelves:
            raise NoShelvesFoundError(profile_id)

        logger.info("Found shelves", profile_id=profile_id, shelves=shelves)
        return shelves
