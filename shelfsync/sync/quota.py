"""
Per-user accounting of proxy usage.
"""

from datetime import datetime

from shelfsync.db.datastore import Datastore
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)

USAGE_TABLE = "api_usage"

# Crawlbase token class used for page fetches
RAW = "raw"


class QuotaService:
    """
    Counts calls per user and API class against a fixed limit.
    """

    def __init__(self, datastore: Datastore, limit: int = 100):
        self.datastore = datastore
        self.limit = limit

    def _calls_made(self, user_id: str, api_class: str) -> int:
        rows = self.datastore.query(USAGE_TABLE, {"user_id": user_id, "api_class": api_class})
        if not rows:
            return 0
        return rows[0]["calls_made"] or 0

    def check_limit(self, user_id: str, api_class: str) -> bool:
        """True while the user is under the limit."""
        return self._calls_made(user_id, api_class) < self.limit

    def increment_usage(self, user_id: str, api_class: str) -> int:
        """Record one more call and return the new count."""
        calls = self._calls_made(user_id, api_class) + 1
        self.datastore.upsert(
            USAGE_TABLE,
            {"user_id": user_id, "api_class": api_class},
            {"calls_made": calls, "last_call": datetime.utcnow()},
        )
        logger.debug("Incremented API usage", user_id=user_id, api_class=api_class, calls=calls)
        return calls
