"""Catalog facades: create, update, delete and list Students and Books.

Field cleaning happens here so that every caller (the HTTP API, scripts,
tests) gets the same required-field and range checks before anything reaches
the store.  Searching is not a store operation; see ``utils`` for the
projections applied to a listing.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from . import utils
from .errors import NotFoundError, ValidationError
from .models import GENDERS, Book, Student
from .storage import Listing, Store

logger = logging.getLogger(__name__)


def _require_text(fields: Dict[str, Any], name: str) -> str:
    value = fields.get(name)
    if value is None or str(value).strip() == "":
        raise ValidationError(f"Missing field: {name}")
    return str(value).strip()


def _to_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid value for {name}: {value!r}") from None


class Catalog:
    """Shared CRUD plumbing for one catalog table."""

    entity = ""
    default_order = "id"

    def __init__(self, store: Store) -> None:
        self.store = store

    def clean(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def get(self, record_id: int):
        return self.store.get(self.entity, record_id)

    def list(self, order_key: Optional[str] = None, descending: bool = False) -> Listing:
        return self.store.list(self.entity, order_by=order_key or self.default_order, descending=descending)

    def create(self, fields: Dict[str, Any]):
        record = self.store.create(self.entity, self.clean(fields))
        logger.info(f"Created {self.entity[:-1]} {record.id}")
        return record

    def update(self, record_id: int, fields: Dict[str, Any]):
        record = self.store.update(self.entity, record_id, self.clean_partial(fields))
        logger.info(f"Updated {self.entity[:-1]} {record_id}")
        return record

    def clean_partial(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def delete(self, record_id: int) -> None:
        self.store.delete(self.entity, record_id)
        logger.info(f"Deleted {self.entity[:-1]} {record_id}")


class StudentCatalog(Catalog):
    entity = "students"
    default_order = "name"

    required_fields = ("name", "email", "phone_number")

    def clean(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {name: _require_text(fields, name) for name in self.required_fields}
        cleaned["gender"] = self._gender(fields.get("gender") or "Male")
        return cleaned

    def clean_partial(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {name: _require_text(fields, name) for name in self.required_fields if name in fields}
        if "gender" in fields:
            cleaned["gender"] = self._gender(fields["gender"])
        return cleaned

    @staticmethod
    def _gender(value: Any) -> str:
        value = str(value).strip().capitalize()
        if value not in GENDERS:
            raise ValidationError(f"Gender must be one of {', '.join(GENDERS)}")
        return value

    def search(self, term: str = "", order_key: Optional[str] = None, descending: bool = False) -> List[Student]:
        return utils.apply_student_search(self.list(order_key, descending), term)


class BookCatalog(Catalog):
    entity = "books"
    default_order = "title"

    required_fields = ("title", "author", "isbn", "category")

    def clean(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {name: _require_text(fields, name) for name in self.required_fields}
        total = _to_int(fields.get("total_copies", 1), "total_copies")
        available = _to_int(fields.get("available_copies", total), "available_copies")
        cleaned["publication_year"] = _to_int(
            fields.get("publication_year") or date.today().year, "publication_year"
        )
        self._check_copies(total, available)
        cleaned["total_copies"] = total
        cleaned["available_copies"] = available
        return cleaned

    def clean_partial(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        cleaned = {name: _require_text(fields, name) for name in self.required_fields if name in fields}
        for name in ("total_copies", "available_copies", "publication_year"):
            if name in fields:
                cleaned[name] = _to_int(fields[name], name)
        return cleaned

    @staticmethod
    def _check_copies(total: int, available: int) -> None:
        if total < 1:
            raise ValidationError("total_copies must be at least 1")
        if available < 0 or available > total:
            raise ValidationError("available_copies must be between 0 and total_copies")

    def update(self, record_id: int, fields: Dict[str, Any]) -> Book:
        """Update a book, keeping its copy counters consistent.

        A new ``total_copies`` moves ``available_copies`` by the same amount
        (clamped to the new range) unless ``available_copies`` is also given.
        The current counters are read inside the same store transaction as
        the write.
        """
        cleaned = self.clean_partial(fields)
        with self.store.atomic() as session:
            current = session.get(self.entity, record_id)
            if current is None:
                raise NotFoundError(f"Book {record_id} not found")
            total = cleaned.get("total_copies", current.total_copies)
            if "available_copies" not in cleaned and total != current.total_copies:
                shifted = current.available_copies + (total - current.total_copies)
                cleaned["available_copies"] = min(max(shifted, 0), max(total, 0))
            available = cleaned.get("available_copies", current.available_copies)
            self._check_copies(total, available)
            session.update(self.entity, record_id, cleaned)
            book = session.get(self.entity, record_id)
        logger.info(f"Updated book {record_id}")
        return book

    def available(self, order_key: Optional[str] = None, descending: bool = False) -> Listing:
        """Books with at least one copy on the shelf, by title unless told otherwise."""
        return self.store.filter(
            self.entity,
            order_by=order_key or self.default_order,
            descending=descending,
            available_copies__gt=0,
        )

    def search(
        self,
        term: str = "",
        category: str = "",
        order_key: Optional[str] = None,
        descending: bool = False,
        available_only: bool = False,
    ) -> List[Book]:
        source = self.available(order_key, descending) if available_only else self.list(order_key, descending)
        books = utils.apply_book_search(source, term)
        return utils.apply_book_category(books, category)

    def categories(self) -> List[str]:
        return utils.book_categories(self.list())
