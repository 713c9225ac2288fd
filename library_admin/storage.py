"""Relational storage for the library admin service.

All data lives in a single SQLite database with one table per entity
(``students``, ``books``, ``transactions``).  The :class:`Store` exposes the
small request surface the rest of the package relies on: ordered listing,
filtering, create/update/delete by id, and a joined view of the ledger.

Writes that must succeed or fail together run inside :meth:`Store.atomic`,
which opens an immediate (write-locking) transaction and hands back a
:class:`Session`.  The copy counters on ``books`` are only ever changed with
conditional ``UPDATE`` statements so the decision "is a copy left?" is made
by the database, not by a value read earlier.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .config import settings
from .errors import ConflictError, NotFoundError, TransientStoreError, ValidationError
from .models import (
    UNKNOWN_AUTHOR,
    UNKNOWN_BOOK,
    UNKNOWN_STUDENT,
    Book,
    Student,
    Transaction,
    TransactionDetail,
)

logger = logging.getLogger(__name__)

ENTITIES = {
    "students": Student,
    "books": Book,
    "transactions": Transaction,
}

SCHEMA = """
CREATE TABLE IF NOT EXISTS students (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    phone_number TEXT NOT NULL,
    gender TEXT NOT NULL DEFAULT 'Male' CHECK (gender IN ('Male', 'Female', 'Other'))
);

CREATE TABLE IF NOT EXISTS books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    author TEXT NOT NULL,
    isbn TEXT NOT NULL UNIQUE,
    category TEXT NOT NULL,
    total_copies INTEGER NOT NULL CHECK (total_copies >= 1),
    available_copies INTEGER NOT NULL,
    publication_year INTEGER NOT NULL,
    CHECK (available_copies >= 0 AND available_copies <= total_copies)
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL,
    book_id INTEGER NOT NULL,
    issue_date TEXT NOT NULL,
    due_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'issued' CHECK (status IN ('issued', 'returned')),
    return_date TEXT,
    fine_amount REAL
);

CREATE INDEX IF NOT EXISTS idx_transactions_status_due ON transactions (status, due_date);
"""

JOINED_TRANSACTIONS_SQL = """
SELECT t.*,
       s.name AS student_name,
       s.email AS student_email,
       b.title AS book_title,
       b.author AS book_author
FROM transactions AS t
LEFT JOIN students AS s ON s.id = t.student_id
LEFT JOIN books AS b ON b.id = t.book_id
"""

_OPERATORS = {
    "eq": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}


def _model(entity: str):
    try:
        return ENTITIES[entity]
    except KeyError:
        raise ValueError(f"Unknown entity: {entity}") from None


def _check_column(entity: str, column: str) -> None:
    if column not in _model(entity).column_names():
        raise ValidationError(f"Unknown field for {entity}: {column}")


def _where(entity: str, conditions: Dict[str, Any], prefix: str = "") -> Tuple[str, List[Any]]:
    """Translate ``field__op=value`` keyword conditions into a WHERE clause."""
    clauses: List[str] = []
    params: List[Any] = []
    for key, value in conditions.items():
        column, _, op = key.partition("__")
        op = op or "eq"
        _check_column(entity, column)
        if op not in _OPERATORS:
            raise ValidationError(f"Unsupported filter operator: {op}")
        if value is None and op in ("eq", "ne"):
            clauses.append(f"{prefix}{column} IS {'NOT ' if op == 'ne' else ''}NULL")
            continue
        clauses.append(f"{prefix}{column} {_OPERATORS[op]} ?")
        params.append(value)
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def _translate(error: sqlite3.Error) -> Exception:
    """Map a sqlite3 exception onto the package's error types."""
    message = str(error)
    if isinstance(error, sqlite3.IntegrityError):
        if "UNIQUE" in message:
            return ConflictError(message)
        return ValidationError(message)
    return TransientStoreError(message)


class Listing:
    """A lazy, restartable sequence of records.

    Nothing is read until the listing is iterated, and every new iteration
    queries the store again, so a listing always reflects current data.
    """

    def __init__(self, store: "Store", entity: str, sql: str, params: List[Any]) -> None:
        self.store = store
        self.entity = entity
        self.sql = sql
        self.params = params

    def __iter__(self) -> Iterator[Any]:
        return self.store._iter_rows(self.entity, self.sql, self.params)

    def __repr__(self) -> str:
        return f"Listing({self.entity!r}, {self.sql!r})"


class Session:
    """Operations bound to one open store transaction."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def get(self, entity: str, record_id: int) -> Optional[Any]:
        model = _model(entity)
        row = self.conn.execute(f"SELECT * FROM {entity} WHERE id = ?", (record_id,)).fetchone()
        return model.from_row(row) if row is not None else None

    def insert(self, entity: str, record: Dict[str, Any]) -> Any:
        columns = [c for c in record if c != "id"]
        for column in columns:
            _check_column(entity, column)
        sql = (
            f"INSERT INTO {entity} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        cursor = self.conn.execute(sql, [record[c] for c in columns])
        return self.get(entity, cursor.lastrowid)

    def update(self, entity: str, record_id: int, values: Dict[str, Any], **conditions: Any) -> int:
        """Update one row, optionally only when ``conditions`` still hold.

        Returns the number of rows changed (0 or 1).
        """
        columns = [c for c in values if c != "id"]
        if not columns:
            return 1 if self.get(entity, record_id) is not None else 0
        for column in columns:
            _check_column(entity, column)
        assignments = ", ".join(f"{c} = ?" for c in columns)
        where, params = _where(entity, dict(conditions, id=record_id))
        cursor = self.conn.execute(
            f"UPDATE {entity} SET {assignments}{where}",
            [values[c] for c in columns] + params,
        )
        return cursor.rowcount

    def delete(self, entity: str, record_id: int) -> int:
        _model(entity)
        cursor = self.conn.execute(f"DELETE FROM {entity} WHERE id = ?", (record_id,))
        return cursor.rowcount

    def decrement_available(self, book_id: int) -> bool:
        """Take one copy of a book, only if one is left."""
        cursor = self.conn.execute(
            "UPDATE books SET available_copies = available_copies - 1 "
            "WHERE id = ? AND available_copies > 0",
            (book_id,),
        )
        return cursor.rowcount == 1

    def increment_available(self, book_id: int) -> bool:
        """Put one copy of a book back, never above its total."""
        cursor = self.conn.execute(
            "UPDATE books SET available_copies = available_copies + 1 "
            "WHERE id = ? AND available_copies < total_copies",
            (book_id,),
        )
        return cursor.rowcount == 1


class Store:
    """Table store backed by a SQLite database file."""

    def __init__(self, db_path: Optional[Path] = None, busy_timeout: Optional[float] = None) -> None:
        self.db_path = Path(db_path) if db_path is not None else settings.store.db_path
        self.busy_timeout = busy_timeout if busy_timeout is not None else settings.store.busy_timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connection() as conn:
            conn.executescript(SCHEMA)
        logger.debug(f"Store ready at {self.db_path}")

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout, isolation_level=None)
        except sqlite3.Error as e:
            raise TransientStoreError(f"Could not open store: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise _translate(e) from e
        finally:
            conn.close()

    @contextmanager
    def atomic(self) -> Iterator[Session]:
        """Run the enclosed operations as one all-or-nothing unit."""
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield Session(conn)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _iter_rows(self, entity: str, sql: str, params: List[Any]) -> Iterator[Any]:
        model = _model(entity)
        with self._connection() as conn:
            for row in conn.execute(sql, params):
                yield model.from_row(row)

    def _select(self, entity: str, order_by: str, descending: bool, conditions: Dict[str, Any]) -> Listing:
        _model(entity)
        _check_column(entity, order_by)
        where, params = _where(entity, conditions)
        direction = "DESC" if descending else "ASC"
        sql = f"SELECT * FROM {entity}{where} ORDER BY {order_by} {direction}, id {direction}"
        return Listing(self, entity, sql, params)

    # Request surface

    def list(self, entity: str, order_by: str = "id", descending: bool = False) -> Listing:
        return self._select(entity, order_by, descending, {})

    def filter(self, entity: str, order_by: str = "id", descending: bool = False, **conditions: Any) -> Listing:
        return self._select(entity, order_by, descending, conditions)

    def count(self, entity: str, **conditions: Any) -> int:
        _model(entity)
        where, params = _where(entity, conditions)
        with self._connection() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {entity}{where}", params).fetchone()[0]

    def get(self, entity: str, record_id: int) -> Any:
        with self._connection() as conn:
            record = Session(conn).get(entity, record_id)
        if record is None:
            raise NotFoundError(f"{_model(entity).__name__} {record_id} not found")
        return record

    def create(self, entity: str, record: Dict[str, Any]) -> Any:
        with self.atomic() as session:
            return session.insert(entity, record)

    def update(self, entity: str, record_id: int, partial: Dict[str, Any]) -> Any:
        with self.atomic() as session:
            if not session.update(entity, record_id, partial):
                raise NotFoundError(f"{_model(entity).__name__} {record_id} not found")
            return session.get(entity, record_id)

    def delete(self, entity: str, record_id: int) -> None:
        with self.atomic() as session:
            if not session.delete(entity, record_id):
                raise NotFoundError(f"{_model(entity).__name__} {record_id} not found")

    # Ledger views

    def joined_transactions(self, **conditions: Any) -> List[TransactionDetail]:
        """Transactions with student and book fields, newest issue first.

        The join runs in the database; if that query fails the three tables
        are read separately and merged here by id.
        """
        try:
            return self._joined_query(conditions)
        except TransientStoreError as e:
            logger.warning(f"Joined transaction query failed ({e}); merging tables locally")
            return self._merged_transactions(conditions)

    def _joined_query(self, conditions: Dict[str, Any]) -> List[TransactionDetail]:
        where, params = _where("transactions", conditions, prefix="t.")
        sql = JOINED_TRANSACTIONS_SQL + where + " ORDER BY t.issue_date DESC, t.id DESC"
        details = []
        with self._connection() as conn:
            for row in conn.execute(sql, params):
                detail = TransactionDetail.from_row(row)
                # LEFT JOIN leaves NULLs for rows whose student or book is gone
                if detail.student_name is None:
                    detail.student_name = UNKNOWN_STUDENT
                if detail.book_title is None:
                    detail.book_title = UNKNOWN_BOOK
                if detail.book_author is None:
                    detail.book_author = UNKNOWN_AUTHOR
                details.append(detail)
        return details

    def _merged_transactions(self, conditions: Dict[str, Any]) -> List[TransactionDetail]:
        transactions = list(self.filter("transactions", order_by="issue_date", descending=True, **conditions))
        students = {s.id: s for s in self.list("students")}
        books = {b.id: b for b in self.list("books")}
        details = []
        for t in transactions:
            student = students.get(t.student_id)
            book = books.get(t.book_id)
            details.append(
                TransactionDetail(
                    **t.to_dict(),
                    student_name=student.name if student else UNKNOWN_STUDENT,
                    student_email=student.email if student else None,
                    book_title=book.title if book else UNKNOWN_BOOK,
                    book_author=book.author if book else UNKNOWN_AUTHOR,
                )
            )
        return details
