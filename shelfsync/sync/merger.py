"""
Collection merging for Shelf Sync.

The same book commonly shows up on several shelves (``read`` and
``favorites``) with different per-occurrence detail. Records are grouped
by canonical key and folded into one MergedBook each.
"""

from dataclasses import fields
from typing import Dict, Iterable, List

from shelfsync.sync.models import BookRecord, MergedBook, canonical_key
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)


def _start(record: BookRecord, key: str) -> MergedBook:
    values = {f.name: getattr(record, f.name) for f in fields(BookRecord)}
    values["shelves"] = []
    merged = MergedBook(**values, canonical_key=key)
    for shelf in record.shelves:
        merged.add_shelf(shelf)
    return merged


def _fold(merged: MergedBook, record: BookRecord) -> None:
    """Fold a duplicate into the merged book."""
    for shelf in record.shelves:
        merged.add_shelf(shelf)

    # 0 means unrated and never beats a real rating
    if record.rating > merged.rating:
        merged.rating = record.rating

    if record.date_read and (merged.date_read is None or record.date_read > merged.date_read):
        merged.date_read = record.date_read

    if record.review and len(record.review) > len(merged.review or ""):
        merged.review = record.review


def merge(records: Iterable[BookRecord]) -> List[MergedBook]:
    """
    Deduplicate records by canonical key.

    Shelves are unioned, the highest rating, the latest read date and the
    longest review win; every other field comes from the first record
    seen for the key. Output order is first-seen order.
    """
    merged: Dict[str, MergedBook] = {}
    total = 0

    for record in records:
        total += 1
        key = canonical_key(record)

        if key in merged:
            _fold(merged[key], record)
        else:
            merged[key] = _start(record, key)

    logger.info("Merged books", records=total, unique=len(merged))
    return list(merged.values())
