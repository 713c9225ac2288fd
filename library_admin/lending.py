"""Issue/return workflow and fines.

A transaction is created ``issued`` and moves to ``returned`` exactly once.
Every state change and the matching change to the book's
``available_copies`` happen in one store transaction, so the counters can
never drift from the ledger even when two librarians act at once.
"""

from __future__ import annotations

import logging
import math
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from .config import LendingSettings, settings
from .errors import CapacityError, NotFoundError, StateError, ValidationError
from .models import STATUS_ISSUED, STATUS_RETURNED, Transaction, TransactionDetail, parse_date
from .rules import calculate_fine, days_overdue
from .storage import Store

logger = logging.getLogger(__name__)


def _to_id(value: Any, name: str) -> int:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"Missing field: {name}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {name}: {value!r}") from None


def _to_date(value: Any, name: str) -> date:
    try:
        return parse_date(value)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {value!r}") from None


class Ledger:
    """Lending operations over the transactions table."""

    def __init__(self, store: Store, config: Optional[LendingSettings] = None) -> None:
        self.store = store
        self.config = config or settings.lending

    @property
    def fine_rate(self):
        return self.config.fine_rate

    def issue(self, student_id: Any, book_id: Any, due_date: Any = None, today: Any = None) -> Transaction:
        """Lend one copy of a book to a student.

        Raises ValidationError for missing ids or a due date in the past,
        NotFoundError for an unknown student or book, and CapacityError when
        no copy is left.  On any failure nothing is written.
        """
        student_id = _to_id(student_id, "student_id")
        book_id = _to_id(book_id, "book_id")
        today = _to_date(today, "today") if today is not None else date.today()
        if due_date is None or str(due_date).strip() == "":
            due = today + timedelta(days=self.config.default_loan_days)
        else:
            due = _to_date(due_date, "due_date")
        if due < today:
            raise ValidationError("due_date must be today or later")

        with self.store.atomic() as session:
            if session.get("students", student_id) is None:
                raise NotFoundError(f"Student {student_id} not found")
            book = session.get("books", book_id)
            if book is None:
                raise NotFoundError(f"Book {book_id} not found")
            if not session.decrement_available(book_id):
                raise CapacityError(f'No copies of "{book.title}" are available')
            transaction = session.insert(
                "transactions",
                {
                    "student_id": student_id,
                    "book_id": book_id,
                    "issue_date": today.isoformat(),
                    "due_date": due.isoformat(),
                    "status": STATUS_ISSUED,
                },
            )
        logger.info(f"Issued book {book_id} to student {student_id} (transaction {transaction.id}, due {due})")
        return transaction

    def return_book(self, transaction_id: Any, today: Any = None) -> Transaction:
        """Close an issued transaction and put the copy back on the shelf."""
        transaction_id = _to_id(transaction_id, "transaction_id")
        today = _to_date(today, "today") if today is not None else date.today()

        with self.store.atomic() as session:
            transaction = session.get("transactions", transaction_id)
            if transaction is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            changed = session.update(
                "transactions",
                transaction_id,
                {"status": STATUS_RETURNED, "return_date": today.isoformat()},
                status=STATUS_ISSUED,
            )
            if not changed:
                raise StateError(f"Transaction {transaction_id} has already been returned", code="already_returned")
            if not session.increment_available(transaction.book_id):
                logger.warning(
                    f"Book {transaction.book_id} missing or already fully stocked; "
                    f"available copies left unchanged for transaction {transaction_id}"
                )
            transaction = session.get("transactions", transaction_id)
        logger.info(f"Returned transaction {transaction_id} (book {transaction.book_id})")
        return transaction

    def apply_fine(self, transaction_id: Any, amount: Any = None, today: Any = None) -> Transaction:
        """Record the fine on an overdue transaction.

        When ``amount`` is omitted it is computed with the configured rate.
        A fine is assigned at most once; a second attempt raises StateError.
        """
        transaction_id = _to_id(transaction_id, "transaction_id")
        today = _to_date(today, "today") if today is not None else date.today()
        if amount is not None:
            try:
                amount = float(amount)
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid amount: {amount!r}") from None
            if not math.isfinite(amount):
                raise ValidationError(f"Invalid amount: {amount!r}")
            if amount < 0:
                raise ValidationError("Fine amount must not be negative")

        with self.store.atomic() as session:
            transaction = session.get("transactions", transaction_id)
            if transaction is None:
                raise NotFoundError(f"Transaction {transaction_id} not found")
            if transaction.fine_applied:
                raise StateError(f"A fine has already been applied to transaction {transaction_id}", code="fine_applied")
            if transaction.status != STATUS_ISSUED:
                raise StateError(f"Transaction {transaction_id} has already been returned", code="already_returned")
            if not transaction.is_overdue(today):
                raise StateError(f"Transaction {transaction_id} is not overdue", code="not_overdue")
            if amount is None:
                amount = calculate_fine(transaction.due_date, today, self.fine_rate)
            if not session.update("transactions", transaction_id, {"fine_amount": amount}, fine_amount=None):
                raise StateError(f"A fine has already been applied to transaction {transaction_id}", code="fine_applied")
            transaction = session.get("transactions", transaction_id)
        logger.info(f"Applied fine of {amount} to transaction {transaction_id}")
        return transaction

    def transactions(self, status: Optional[str] = None) -> List[TransactionDetail]:
        if status:
            return self.store.joined_transactions(status=status)
        return self.store.joined_transactions()

    def overdue(self, today: Any = None) -> List[TransactionDetail]:
        """Issued transactions whose due date is strictly before today."""
        today = _to_date(today, "today") if today is not None else date.today()
        return self.store.joined_transactions(status=STATUS_ISSUED, due_date__lt=today.isoformat())

    def overdue_report(self, today: Any = None) -> Dict[str, Any]:
        today = _to_date(today, "today") if today is not None else date.today()
        results = []
        total = 0
        for t in self.overdue(today):
            fine = calculate_fine(t.due_date, today, self.fine_rate)
            total += fine
            results.append(t.to_dict() | {"days_overdue": days_overdue(t.due_date, today), "fine": fine})
        return {
            "date": today.isoformat(),
            "rate": self.fine_rate,
            "count": len(results),
            "total_fines": total,
            "results": results,
        }

    def counts(self) -> Dict[str, int]:
        return {
            "issued": self.store.count("transactions", status=STATUS_ISSUED),
            "returned": self.store.count("transactions", status=STATUS_RETURNED),
        }
