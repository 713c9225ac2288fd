import threading
from datetime import date, timedelta

import pytest

from library_admin import storage
from library_admin.errors import CapacityError, NotFoundError, StateError, TransientStoreError, ValidationError
from library_admin.models import STATUS_ISSUED, STATUS_RETURNED


def test_issue_takes_one_copy(ledger, books, student, book):
    transaction = ledger.issue(student.id, book.id, "2099-01-01")
    assert transaction.status == STATUS_ISSUED
    assert transaction.issue_date == date.today().isoformat()
    assert transaction.due_date == "2099-01-01"
    assert transaction.return_date is None
    assert transaction.fine_amount is None
    assert books.get(book.id).available_copies == 2


def test_return_puts_the_copy_back(ledger, books, student, book):
    transaction = ledger.issue(student.id, book.id, "2099-01-01")
    returned = ledger.return_book(transaction.id)
    assert returned.status == STATUS_RETURNED
    assert returned.return_date == date.today().isoformat()
    assert books.get(book.id).available_copies == 3


def test_second_return_fails_without_double_increment(ledger, books, student, book):
    transaction = ledger.issue(student.id, book.id, "2099-01-01")
    ledger.return_book(transaction.id)
    with pytest.raises(StateError) as excinfo:
        ledger.return_book(transaction.id)
    assert excinfo.value.code == "already_returned"
    assert books.get(book.id).available_copies == 3


def test_issue_rejected_when_no_copies_left(ledger, books, store, student):
    book = books.create({"title": "Rare", "author": "A", "isbn": "1", "category": "C", "total_copies": 1})
    ledger.issue(student.id, book.id, "2099-01-01")
    with pytest.raises(CapacityError):
        ledger.issue(student.id, book.id, "2099-01-01")
    assert store.count("transactions") == 1
    assert books.get(book.id).available_copies == 0


def test_issue_validations(ledger, student, book):
    with pytest.raises(ValidationError):
        ledger.issue(None, book.id, "2099-01-01")
    with pytest.raises(ValidationError):
        ledger.issue(student.id, "abc", "2099-01-01")
    with pytest.raises(ValidationError):
        ledger.issue(student.id, book.id, "2024-01-09", today="2024-01-10")
    with pytest.raises(ValidationError):
        ledger.issue(student.id, book.id, "next tuesday")
    with pytest.raises(NotFoundError):
        ledger.issue(999, book.id, "2099-01-01")
    with pytest.raises(NotFoundError):
        ledger.issue(student.id, 999, "2099-01-01")


def test_issue_due_today_is_allowed(ledger, student, book):
    transaction = ledger.issue(student.id, book.id, "2024-01-10", today="2024-01-10")
    assert transaction.due_date == "2024-01-10"


def test_issue_without_due_date_uses_default_loan(ledger, student, book):
    transaction = ledger.issue(student.id, book.id, today="2024-01-01")
    assert transaction.due_date == "2024-01-15"


def test_failed_insert_leaves_copies_untouched(ledger, books, student, book, monkeypatch):
    def broken_insert(self, entity, record):
        raise TransientStoreError("disk I/O error")

    monkeypatch.setattr(storage.Session, "insert", broken_insert)
    with pytest.raises(TransientStoreError):
        ledger.issue(student.id, book.id, "2099-01-01")
    monkeypatch.undo()
    assert books.get(book.id).available_copies == 3


def test_return_never_exceeds_total(ledger, books, store, student, book):
    # a transaction recorded without taking a copy
    stray = store.create(
        "transactions",
        {"student_id": student.id, "book_id": book.id, "issue_date": "2024-01-01", "due_date": "2024-01-10", "status": "issued"},
    )
    returned = ledger.return_book(stray.id)
    assert returned.status == STATUS_RETURNED
    assert books.get(book.id).available_copies == 3


def test_return_unknown_transaction(ledger):
    with pytest.raises(NotFoundError):
        ledger.return_book(42)


def test_concurrent_issue_of_last_copy(ledger, books, store, student):
    book = books.create({"title": "Last One", "author": "A", "isbn": "1", "category": "C", "total_copies": 1})
    barrier = threading.Barrier(2)
    outcomes = []

    def attempt():
        barrier.wait()
        try:
            outcomes.append(ledger.issue(student.id, book.id, "2099-01-01"))
        except CapacityError as e:
            outcomes.append(e)

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    errors = [o for o in outcomes if isinstance(o, CapacityError)]
    assert len(outcomes) == 2
    assert len(errors) == 1
    assert store.count("transactions") == 1
    assert books.get(book.id).available_copies == 0


@pytest.fixture
def late(ledger, student, book):
    return ledger.issue(student.id, book.id, "2024-01-10", today="2024-01-01")


def test_apply_fine_computes_amount(ledger, late):
    fined = ledger.apply_fine(late.id, today="2024-01-15")
    assert fined.fine_amount == 10


def test_apply_fine_only_once(ledger, late):
    ledger.apply_fine(late.id, today="2024-01-15")
    with pytest.raises(StateError) as excinfo:
        ledger.apply_fine(late.id, amount=50, today="2024-01-20")
    assert excinfo.value.code == "fine_applied"
    assert ledger.store.get("transactions", late.id).fine_amount == 10


def test_apply_fine_requires_overdue(ledger, late):
    with pytest.raises(StateError) as excinfo:
        ledger.apply_fine(late.id, today="2024-01-10")
    assert excinfo.value.code == "not_overdue"


def test_apply_fine_after_return_is_rejected(ledger, late):
    ledger.return_book(late.id, today="2024-01-12")
    with pytest.raises(StateError):
        ledger.apply_fine(late.id, today="2024-01-15")


def test_apply_fine_explicit_amount(ledger, late):
    with pytest.raises(ValidationError):
        ledger.apply_fine(late.id, amount=-1, today="2024-01-15")
    fined = ledger.apply_fine(late.id, amount="7.5", today="2024-01-15")
    assert fined.fine_amount == 7.5


@pytest.mark.parametrize("amount", ["nan", "inf", "-inf", float("nan"), float("inf")])
def test_apply_fine_rejects_non_finite_amount(ledger, late, amount):
    with pytest.raises(ValidationError):
        ledger.apply_fine(late.id, amount=amount, today="2024-01-15")
    assert ledger.store.get("transactions", late.id).fine_amount is None

    ledger.apply_fine(late.id, today="2024-01-15")
    with pytest.raises(StateError):
        ledger.apply_fine(late.id, today="2024-01-15")
    assert ledger.store.get("transactions", late.id).fine_amount == 10


def test_issue_rejects_due_date_with_trailing_text(ledger, books, student, book):
    with pytest.raises(ValidationError):
        ledger.issue(student.id, book.id, "2024-01-10garbage", today="2024-01-01")
    assert books.get(book.id).available_copies == 3
    transaction = ledger.issue(student.id, book.id, "2024-01-10T09:30:00", today="2024-01-01")
    assert transaction.due_date == "2024-01-10"


def test_overdue_report(ledger, books, student, late):
    other = books.create({"title": "Dune", "author": "Herbert", "isbn": "2", "category": "SF"})
    ledger.issue(student.id, other.id, "2024-01-20", today="2024-01-01")

    report = ledger.overdue_report(today="2024-01-15")
    assert report["count"] == 1
    assert report["rate"] == 2
    assert report["total_fines"] == 10
    entry = report["results"][0]
    assert entry["id"] == late.id
    assert entry["days_overdue"] == 5
    assert entry["fine"] == 10
    assert entry["student_name"] == "Asha Rao"
    assert entry["book_title"] == "The Pragmatic Programmer"


def test_overdue_is_strictly_after_due_date(ledger, late):
    assert ledger.overdue(today="2024-01-10") == []
    assert [t.id for t in ledger.overdue(today="2024-01-11")] == [late.id]
    assert late.is_overdue(date(2024, 1, 11))
    assert not late.is_overdue(date(2024, 1, 10))


def test_counts_and_transaction_listing(ledger, student, book):
    first = ledger.issue(student.id, book.id, "2099-01-01")
    ledger.issue(student.id, book.id, (date.today() + timedelta(days=3)).isoformat())
    ledger.return_book(first.id)
    assert ledger.counts() == {"issued": 1, "returned": 1}
    assert [t.id for t in ledger.transactions(status=STATUS_RETURNED)] == [first.id]
    assert len(ledger.transactions()) == 2
