"""
Sync run records.

A ``running`` row doubles as the per-user "sync in progress" marker, so two
syncs for the same user cannot interleave their writes. Markers older than
the TTL are considered abandoned (e.g. the process died mid-sync).
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from shelfsync.db.datastore import Datastore
from shelfsync.errors import SyncInProgressError
from shelfsync.utils.logging import get_logger

logger = get_logger(__name__)

RUNS_TABLE = "sync_runs"

# Makes check-then-insert atomic within this process
_start_lock = threading.Lock()


class SyncRunRegistry:
    """Creates, finishes and looks up sync run rows."""

    def __init__(self, datastore: Datastore, ttl_minutes: int = 30):
        self.datastore = datastore
        self.ttl = timedelta(minutes=ttl_minutes)

    def active_run(self, user_id: str) -> Optional[Dict[str, Any]]:
        """The user's running, non-stale sync, if any."""
        cutoff = datetime.utcnow() - self.ttl
        for row in self.datastore.query(RUNS_TABLE, {"user_id": user_id, "status": "running"}):
            if row.get("started_at") and row["started_at"] >= cutoff:
                return row
        return None

    def start(self, run_id: str, user_id: str, profile_id: str) -> Dict[str, Any]:
        """
        Mark a sync as running.

        Raises:
            SyncInProgressError: If the user already has a running sync
        """
        with _start_lock:
            active = self.active_run(user_id)
            if active:
                raise SyncInProgressError(user_id, active["run_id"])

            return self.datastore.upsert(
                RUNS_TABLE,
                {"run_id": run_id},
                {
                    "user_id": user_id,
                    "profile_id": profile_id,
                    "started_at": datetime.utcnow(),
                    "status": "running",
                },
            )

    def finish(self, run_id: str, status: str, **fields: Any) -> None:
        """Record the outcome of a run. Never raises; the sync result matters more."""
        try:
            self.datastore.upsert(
                RUNS_TABLE,
                {"run_id": run_id},
                {"status": status, "completed_at": datetime.utcnow(), **fields},
            )
        except Exception as e:
            logger.error("Failed to update sync run", run_id=run_id, error=str(e))
