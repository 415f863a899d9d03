"""
SQLAlchemy database models for Shelf Sync.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Date, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Book(Base):
    """A reconciled book in a user's collection."""
    __tablename__ = 'books'
    __table_args__ = (
        UniqueConstraint('user_id', 'canonical_key', name='uq_books_user_key'),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(100), index=True, nullable=False)
    canonical_key = Column(String(1000), nullable=False)  # id:, isbn: or ta: prefixed
    profile_id = Column(String(100), nullable=True)  # Goodreads profile synced from
    source_id = Column(String(100), nullable=True)
    title = Column(String(500), nullable=False)
    author = Column(String(500), nullable=False)
    isbn = Column(String(20), nullable=True)
    rating = Column(Integer, default=0)
    date_read = Column(Date, nullable=True)
    review = Column(Text, nullable=True)
    cover_url = Column(String(1000), nullable=True)
    page_count = Column(Integer, default=0)
    shelves = Column(JSON, default=list)
    format = Column(String(100), nullable=True)
    publisher = Column(String(255), nullable=True)
    published_date = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ApiUsage(Base):
    """Per-user call counts against the fetch proxy."""
    __tablename__ = 'api_usage'
    __table_args__ = (
        UniqueConstraint('user_id', 'api_class', name='uq_api_usage_user_class'),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(String(100), index=True, nullable=False)
    api_class = Column(String(50), nullable=False)  # javascript, raw, ...
    calls_made = Column(Integer, default=0)
    last_call = Column(DateTime, nullable=True)


class SyncLog(Base):
    """Detailed logs for sync operations."""
    __tablename__ = 'sync_logs'

    id = Column(Integer, primary_key=True)
    level = Column(String(20), nullable=False)  # DEBUG, INFO, WARNING, ERROR
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    sync_run_id = Column(String(50), index=True, nullable=True)  # Group logs by sync run
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class SyncRun(Base):
    """A single sync run; a running row also marks the user as busy."""
    __tablename__ = 'sync_runs'

    id = Column(Integer, primary_key=True)
    run_id = Column(String(50), unique=True, index=True, nullable=False)
    user_id = Column(String(100), index=True, nullable=False)
    profile_id = Column(String(100), nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    status = Column(String(20), default='running')  # running, completed, failed, cancelled
    shelves_found = Column(Integer, default=0)
    books_merged = Column(Integer, default=0)
    books_saved = Column(Integer, default=0)
    books_failed = Column(Integer, default=0)
    failed_shelves = Column(JSON, default=list)
    error_message = Column(Text, nullable=True)
