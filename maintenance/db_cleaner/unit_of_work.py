"""
Unit of work over a SQLAlchemy session.

Detection code only reads through a UnitOfWork; mutations go through its
write methods, which require an open transaction. ReadOnlyUnitOfWork backs
dry runs and refuses every write, so a dry run and a live run share the
exact same detection path.
"""

import time
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from maintenance.db_cleaner.errors import (
    CleanerError,
    FetchError,
    ReadOnlyViolationError,
    TransactionTimeoutError,
)

# Max bound parameters per IN (...) clause
IN_CLAUSE_CHUNK = 500


def chunked(values: Iterable, size: int = IN_CLAUSE_CHUNK) -> Iterator[list]:
    chunk = []
    for value in values:
        chunk.append(value)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


class UnitOfWork:
    """
    Reads and writes for one cleaner run.

    Usage:
        uow = UnitOfWork(session, batch_size=1000)
        for batch in uow.iter_batches(Company, Company.industry.is_not(None)):
            ...
        with uow.transaction(timeout_seconds=300):
            uow.update_rows(Company, ids, {"headquarters": "France"})
    """

    read_only = False

    def __init__(self, session: Session, batch_size: int = 1000):
        self.session = session
        self.batch_size = batch_size
        self._in_transaction = False
        self._deadline: Optional[float] = None
        self._timeout: Optional[float] = None
        self._started: Optional[float] = None

    # ------------------------------------------------------------------
    # Transaction control
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, timeout_seconds: Optional[float] = None):
        """
        Run the block atomically: commit on success, roll back on any exception.

        With timeout_seconds, every read and write inside the block (and the
        commit itself) checks the deadline and raises TransactionTimeoutError
        once it has passed.
        """
        if self._in_transaction:
            raise CleanerError("transactions do not nest")

        if self.session.in_transaction():
            # End the read snapshot left open by detection queries
            self.session.commit()

        self._in_transaction = True
        self._started = time.monotonic()
        self._timeout = timeout_seconds
        self._deadline = self._started + timeout_seconds if timeout_seconds is not None else None
        try:
            with self.session.begin():
                yield self
                self._check_deadline()
        finally:
            self._in_transaction = False
            self._deadline = None
            self._timeout = None

    def _check_deadline(self) -> None:
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise TransactionTimeoutError(
                self._timeout, elapsed_seconds=time.monotonic() - self._started
            )

    def _ensure_writable(self) -> None:
        if not self._in_transaction:
            raise CleanerError("writes must run inside uow.transaction()")
        self._check_deadline()

    def end_read(self) -> None:
        """Release the snapshot held by preceding reads."""
        if not self._in_transaction and self.session.in_transaction():
            self.session.rollback()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self, stmt):
        self._check_deadline()
        try:
            return self.session.execute(stmt.execution_options(populate_existing=True))
        except (OperationalError, InterfaceError) as e:
            raise FetchError(f"read failed: {e}") from e

    def iter_batches(self, model, *criteria, batch_size: Optional[int] = None) -> Iterator[list]:
        """Yield lists of model rows matching criteria, keyset-paginated by id."""
        size = batch_size or self.batch_size
        last_id = None
        while True:
            stmt = select(model).where(*criteria).order_by(model.id).limit(size)
            if last_id is not None:
                stmt = stmt.where(model.id > last_id)
            batch = list(self._read(stmt).scalars())
            if not batch:
                return
            yield batch
            if len(batch) < size:
                return
            last_id = batch[-1].id

    def iter_distinct_values(self, column, batch_size: Optional[int] = None) -> Iterator[list]:
        """Yield distinct non-null values of column in ascending pages."""
        size = batch_size or self.batch_size
        last = None
        while True:
            stmt = select(column).where(column.is_not(None)).distinct().order_by(column).limit(size)
            if last is not None:
                stmt = stmt.where(column > last)
            values = list(self._read(stmt).scalars())
            if not values:
                return
            yield values
            if len(values) < size:
                return
            last = values[-1]

    def scalars(self, stmt) -> list:
        return list(self._read(stmt).scalars())

    def existing_ids(self, model, ids: Iterable[str]) -> set:
        found = set()
        for chunk in chunked(ids):
            found.update(self._read(select(model.id).where(model.id.in_(chunk))).scalars())
        return found

    def count_by(self, column, ids: Iterable[str]) -> dict:
        """{id: number of rows whose column equals id}, absent ids omitted."""
        counts = {}
        for chunk in chunked(ids):
            stmt = select(column, func.count()).where(column.in_(chunk)).group_by(column)
            counts.update({key: count for key, count in self._read(stmt).all()})
        return counts

    def get(self, model, record_id: str, for_update: bool = False) -> Optional[Any]:
        """Load one live row, bypassing anything cached in the session."""
        self._check_deadline()
        return self.session.get(
            model,
            record_id,
            populate_existing=True,
            with_for_update=True if for_update else None,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_rows(self, model, ids: Iterable[str], values: dict) -> int:
        self._ensure_writable()
        updated = 0
        for chunk in chunked(ids):
            stmt = (
                update(model)
                .where(model.id.in_(chunk))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            updated += self.session.execute(stmt).rowcount
        return updated

    def delete_rows(self, model, ids: Iterable[str]) -> int:
        self._ensure_writable()
        deleted = 0
        for chunk in chunked(ids):
            stmt = (
                delete(model)
                .where(model.id.in_(chunk))
                .execution_options(synchronize_session=False)
            )
            deleted += self.session.execute(stmt).rowcount
        return deleted

    def reparent(self, column, old_parent_id: str, new_parent_id: str) -> int:
        """Point every row whose column equals old_parent_id at new_parent_id."""
        self._ensure_writable()
        model = column.class_
        stmt = (
            update(model)
            .where(column == old_parent_id)
            .values({column.key: new_parent_id})
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount

    def add(self, record) -> None:
        self._ensure_writable()
        self.session.add(record)

    def delete(self, record) -> None:
        self._ensure_writable()
        self.session.delete(record)

    def flush(self) -> None:
        self._ensure_writable()
        self.session.flush()


class ReadOnlyUnitOfWork(UnitOfWork):
    """Unit of work for dry runs: every read works, every write raises."""

    read_only = True

    @contextmanager
    def transaction(self, timeout_seconds: Optional[float] = None):
        raise ReadOnlyViolationError("dry run cannot open a write transaction")
        yield self  # pragma: no cover

    def _ensure_writable(self) -> None:
        raise ReadOnlyViolationError("dry run cannot write")
