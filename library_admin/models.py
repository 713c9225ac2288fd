"""Data models for the library admin service.

Students, Books and Transactions are plain dataclasses mirroring the rows of
the relational store.  Dates are kept as ISO ``YYYY-MM-DD`` strings, the same
shape the store and the JSON API use; helpers parse them where arithmetic is
needed.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import date, datetime
from typing import Any, Dict, Optional

GENDERS = ("Male", "Female", "Other")

STATUS_ISSUED = "issued"
STATUS_RETURNED = "returned"
STATUSES = (STATUS_ISSUED, STATUS_RETURNED)

UNKNOWN_STUDENT = "Unknown Student"
UNKNOWN_BOOK = "Unknown Book"
UNKNOWN_AUTHOR = "Unknown Author"


def parse_date(value: Any) -> date:
    """Accept a ``date``, ``datetime`` or ISO string and return a ``date``."""
    if isinstance(value, date):
        # datetime is a date subclass
        return value if type(value) is date else value.date()
    text = str(value).strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        # a full timestamp; raises ValueError for anything else
        return datetime.fromisoformat(text).date()


class Record:
    """Shared row conversion for the dataclasses below."""

    @classmethod
    def column_names(cls) -> tuple:
        return tuple(f.name for f in fields(cls))

    @classmethod
    def from_row(cls, row: Any):
        """Build an instance from a mapping (``sqlite3.Row`` or dict)."""
        keys = row.keys()
        return cls(**{name: row[name] for name in cls.column_names() if name in keys})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Student(Record):
    """A library member who can borrow books."""
    id: int
    name: str
    email: str
    phone_number: str
    gender: str = "Male"


@dataclass
class Book(Record):
    """A catalogued title with its copy counters.

    ``available_copies`` is stored on the row and kept in step with the
    ledger; it always lies between 0 and ``total_copies``.
    """
    id: int
    title: str
    author: str
    isbn: str
    category: str
    total_copies: int
    available_copies: int
    publication_year: int

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0


@dataclass
class Transaction(Record):
    """A lending event between a student and a book."""
    id: int
    student_id: int
    book_id: int
    issue_date: str
    due_date: str
    status: str = STATUS_ISSUED
    return_date: Optional[str] = None
    fine_amount: Optional[float] = None

    def is_overdue(self, today: Any = None) -> bool:
        """True while the book is still out and the due date lies strictly before today."""
        if self.status != STATUS_ISSUED:
            return False
        today = parse_date(today) if today is not None else date.today()
        return parse_date(self.due_date) < today

    @property
    def fine_applied(self) -> bool:
        return self.fine_amount is not None


@dataclass
class TransactionDetail(Transaction):
    """A transaction joined with the student and book it references."""
    student_name: str = UNKNOWN_STUDENT
    student_email: Optional[str] = None
    book_title: str = UNKNOWN_BOOK
    book_author: str = UNKNOWN_AUTHOR
