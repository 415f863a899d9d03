"""
Sync-level errors for Shelf Sync.

Fetch-level errors (timeouts, transport failures, exhausted retries) live in
shelfsync.api.base and shelfsync.api.retry.
"""

from typing import List, Optional


class SyncError(Exception):
    """Base class for errors that end or degrade a sync run."""


class NoShelvesFoundError(SyncError):
    """The profile page yielded no shelf labels (private profile or no data)."""

    def __init__(self, profile_id: str):
        self.profile_id = profile_id
        super().__init__(
            f"No shelves found for profile {profile_id}; "
            "the profile may not be public or has no data"
        )


class QuotaExceededError(SyncError):
    """The user has used up their proxy allowance."""

    def __init__(self, user_id: str, api_class: str):
        self.user_id = user_id
        self.api_class = api_class
        super().__init__(f"API usage limit reached for {api_class} requests")


class SyncInProgressError(SyncError):
    """Another sync for the same user has not finished yet."""

    def __init__(self, user_id: str, run_id: Optional[str] = None):
        self.user_id = user_id
        self.run_id = run_id
        super().__init__("A sync is already in progress for this user")


class SyncCancelledError(SyncError):
    """The client went away; no further network calls are made."""

    def __init__(self, message: str = "Sync cancelled"):
        super().__init__(message)


class ShelfWalkError(SyncError):
    """A shelf walk failed part-way; ``records`` holds what was gathered."""

    def __init__(self, shelf: str, records: List, cause: Exception):
        self.shelf = shelf
        self.records = records
        self.cause = cause
        super().__init__(f"Failed walking shelf {shelf}: {cause}")


class PersistenceRowError(SyncError):
    """A single book could not be written."""

    def __init__(self, canonical_key: str, title: str, cause: Exception):
        self.canonical_key = canonical_key
        self.title = title
        self.cause = cause
        super().__init__(f"Error saving book: {title}")
