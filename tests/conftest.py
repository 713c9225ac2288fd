import pytest

from library_admin.catalog import BookCatalog, StudentCatalog
from library_admin.config import LendingSettings
from library_admin.lending import Ledger
from library_admin.storage import Store


@pytest.fixture
def store(tmp_path):
    """A fresh store on a throwaway database file"""
    return Store(tmp_path / "library.sqlite3")


@pytest.fixture
def students(store):
    return StudentCatalog(store)


@pytest.fixture
def books(store):
    return BookCatalog(store)


@pytest.fixture
def ledger(store):
    return Ledger(store, LendingSettings(fine_rate=2, default_loan_days=14))


@pytest.fixture
def student(students):
    return students.create(
        {"name": "Asha Rao", "email": "asha@example.com", "phone_number": "9876543210", "gender": "Female"}
    )


@pytest.fixture
def book(books):
    return books.create(
        {
            "title": "The Pragmatic Programmer",
            "author": "Hunt & Thomas",
            "isbn": "978-0201616224",
            "category": "Programming",
            "total_copies": 3,
            "publication_year": 1999,
        }
    )
