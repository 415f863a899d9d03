"""
Row-oriented datastore used by the sync pipeline.

The pipeline only sees three operations (upsert, query, delete) on named
tables with plain dict rows, so it never depends on the ORM directly.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from shelfsync.db.database import get_db_session
from shelfsync.db.models import ApiUsage, Book, SyncLog, SyncRun

Row = Dict[str, Any]

TABLES = {
    Book.__tablename__: Book,
    ApiUsage.__tablename__: ApiUsage,
    SyncRun.__tablename__: SyncRun,
    SyncLog.__tablename__: SyncLog,
}


class Datastore(ABC):
    """Interface of the external row store."""

    @abstractmethod
    def upsert(self, table: str, key: Row, row: Row) -> Row:
        """Update the row matching ``key`` in place, or insert it. Atomic per call."""

    @abstractmethod
    def query(self, table: str, filter: Optional[Row] = None) -> List[Row]:
        """Return every row whose columns equal the values in ``filter``."""

    @abstractmethod
    def delete(self, table: str, filter: Row) -> int:
        """Delete matching rows and return how many were removed."""


def _to_row(obj) -> Row:
    return {column.name: getattr(obj, column.name) for column in obj.__table__.columns}


class SqlAlchemyDatastore(Datastore):
    """
    Datastore backed by the SQLAlchemy models.

    Every call runs in its own session, so each upsert commits or rolls
    back as a unit.
    """

    def __init__(self, session_scope: Callable = get_db_session):
        self._session_scope = session_scope

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table: {table}")

    def upsert(self, table: str, key: Row, row: Row) -> Row:
        model = self._model(table)

        with self._session_scope() as session:
            existing = session.query(model).filter_by(**key).first()

            if existing:
                for column, value in row.items():
                    setattr(existing, column, value)
                obj = existing
            else:
                obj = model(**{**row, **key})
                session.add(obj)

            session.flush()
            return _to_row(obj)

    def query(self, table: str, filter: Optional[Row] = None) -> List[Row]:
        model = self._model(table)

        with self._session_scope() as session:
            query = session.query(model)
            if filter:
                query = query.filter_by(**filter)
            return [_to_row(obj) for obj in query.order_by(model.id.asc()).all()]

    def delete(self, table: str, filter: Row) -> int:
        model = self._model(table)

        with self._session_scope() as session:
            return session.query(model).filter_by(**filter).delete(synchronize_session=False)
