"""
Base repository pattern implementation.

Provides the shared session handling, transaction scope and the
insert-if-absent helper every repository builds on.
"""
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Optional

import structlog
from sqlalchemy import insert, select, tuple_
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = structlog.get_logger(__name__)


class RepositoryError(Exception):
    """Base exception for repository operations"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error


class BaseRepository:
    """
    Common base for repositories.

    Repositories only flush; committing belongs to whoever owns the unit of
    work (a pipeline stage or :func:`transaction`).
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.logger = logger.bind(repository=self.__class__.__name__)

    def _fail(self, action: str, error: Exception, **context: Any) -> RepositoryError:
        """Log a database failure and build the error to raise"""
        self.logger.error(f"Failed to {action}", error=str(error), **context)
        return RepositoryError(f"Failed to {action}: {error}", original_error=error)


@contextmanager
def transaction(session: Session, name: str = "transaction") -> Iterator[Session]:
    """
    Run a block as one atomic unit.

    Commits when the block finishes, rolls back when it raises. Database
    errors are re-raised as :class:`RepositoryError`.
    """
    tx_logger = logger.bind(component="transaction", name=name)
    try:
        yield session
        session.commit()
        tx_logger.debug("Transaction committed successfully")
    except SQLAlchemyError as e:
        session.rollback()
        tx_logger.error("Transaction rolled back due to database error", error=str(e))
        raise RepositoryError(f"Transaction {name} failed: {e}", original_error=e) from e
    except Exception as e:
        session.rollback()
        tx_logger.error(
            "Transaction rolled back due to exception",
            exception_type=type(e).__name__,
            exception_message=str(e),
        )
        raise


def _ignoring_conflicts(session: Session, table: Any):
    """INSERT that skips rows colliding with a unique key, where the dialect can"""
    target = getattr(table, "__table__", table)
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite.insert(target).on_conflict_do_nothing()
    if dialect == "postgresql":
        return postgresql.insert(target).on_conflict_do_nothing()
    if dialect in ("mysql", "mariadb"):
        return insert(target).prefix_with("IGNORE")
    return insert(target)


def insert_missing(
    session: Session,
    table: Any,
    rows: Iterable[dict[str, Any]],
    key_columns: Sequence[str],
) -> int:
    """
    Insert rows whose natural key is not present yet.

    Duplicate keys inside ``rows`` are collapsed (first occurrence wins) and
    keys already stored are skipped. Keys that differ from a stored one only
    under the column's collation (``Honda`` against ``HONDA`` on a
    case-insensitive collation) pass the lookup; the insert ignores them on
    SQLite, PostgreSQL and MySQL/MariaDB instead of raising.

    Returns:
        Number of rows sent to the database, which can exceed the rows
        actually stored when the collation folded a key
    """
    pending: dict[tuple, dict[str, Any]] = {}
    for row in rows:
        key = tuple(row[column] for column in key_columns)
        pending.setdefault(key, row)

    if not pending:
        return 0

    columns = [getattr(table, column) for column in key_columns]
    existing: set[tuple] = set()
    keys = list(pending)
    # Chunked to stay under bind parameter limits
    for start in range(0, len(keys), 500):
        chunk = keys[start : start + 500]
        if len(columns) == 1:
            query = select(columns[0]).where(columns[0].in_([key[0] for key in chunk]))
        else:
            query = select(*columns).where(tuple_(*columns).in_(chunk))
        existing.update(tuple(row) for row in session.execute(query))

    new_rows = [row for key, row in pending.items() if key not in existing]
    if new_rows:
        session.execute(_ignoring_conflicts(session, table), new_rows)
    return len(new_rows)
