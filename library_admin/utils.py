"""Query parameter parsing and client-side projections over listings.

Search and filtering never touch the store: each function takes an iterable
of records (usually a freshly iterated ``Listing``) and returns a new list.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import parse_qs

from .errors import ValidationError
from .models import STATUSES, Book, Student, Transaction


def parse_query_params(query_string: str) -> Dict[str, str]:
    """Parse the query string into a simple key->value dict (only first value considered)."""
    params = parse_qs(query_string, keep_blank_values=True)
    return {k: v[0] for k, v in params.items() if v}


def int_param(params: Dict[str, str], name: str, default: int) -> int:
    raw = params.get(name, "")
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name}: {raw!r}") from None


def is_truthy(value: Optional[str]) -> bool:
    return (value or "").lower() in {"1", "true", "yes"}


def paginate(items: List[Any], page: int, page_size: int) -> Tuple[List[Any], Dict[str, int]]:
    """Return a slice of items for the given page and page_size, along with pagination info."""
    total = len(items)
    page = max(page, 1)
    page_size = max(page_size, 1)
    start = (page - 1) * page_size
    end = start + page_size
    paged = items[start:end]
    return paged, {
        "count": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size) if total else 1,
    }


def parse_ordering(ordering: str, default: str) -> Tuple[str, bool]:
    """Split ``-field`` style ordering into (field, descending)."""
    if not ordering:
        return default, False
    if ordering.startswith("-"):
        return ordering[1:], True
    return ordering, False


def apply_student_search(students: Iterable[Student], search: str) -> List[Student]:
    term = (search or "").strip().lower()
    if not term:
        return list(students)
    return [s for s in students if term in s.name.lower() or term in s.email.lower()]


def apply_book_search(books: Iterable[Book], search: str) -> List[Book]:
    term = (search or "").strip().lower()
    if not term:
        return list(books)
    return [
        b for b in books
        if term in b.title.lower() or term in b.author.lower() or term in b.isbn.lower()
    ]


def apply_book_category(books: Iterable[Book], category: str) -> List[Book]:
    if not category:
        return list(books)
    return [b for b in books if b.category == category]


def apply_publication_year(books: Iterable[Book], params: Dict[str, str]) -> List[Book]:
    if not params.get("publication_year"):
        return list(books)
    year = int_param(params, "publication_year", 0)
    return [b for b in books if b.publication_year == year]


def book_categories(books: Iterable[Book]) -> List[str]:
    return sorted({b.category for b in books if b.category})


def apply_transaction_filters(transactions: Iterable[Transaction], params: Dict[str, str], today=None) -> List[Transaction]:
    filtered = list(transactions)
    status = params.get("status", "").lower()
    if status:
        if status not in STATUSES:
            raise ValidationError(f"Status must be one of {', '.join(STATUSES)}")
        filtered = [t for t in filtered if t.status == status]
    if "student_id" in params:
        student_id = int_param(params, "student_id", 0)
        filtered = [t for t in filtered if t.student_id == student_id]
    if is_truthy(params.get("overdue")):
        filtered = [t for t in filtered if t.is_overdue(today)]
    return filtered
