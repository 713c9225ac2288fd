"""Error types raised by the catalog, ledger and store layers.

Each error carries a short machine readable ``code`` and the HTTP status the
API layer answers with, so handlers can turn any of them into the usual
``{"detail": ..., "code": ...}`` payload.
"""

from __future__ import annotations

from http import HTTPStatus


class LibraryError(Exception):
    """Base class for every error surfaced to a caller."""

    code = "error"
    status = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, detail: str, code: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"detail": self.detail, "code": self.code}


class ValidationError(LibraryError):
    """A required field is missing or a value is out of range."""

    code = "invalid"
    status = HTTPStatus.BAD_REQUEST


class NotFoundError(LibraryError):
    code = "not_found"
    status = HTTPStatus.NOT_FOUND


class ConflictError(LibraryError):
    """The store refused the write, e.g. a duplicate ISBN."""

    code = "conflict"
    status = HTTPStatus.CONFLICT


class StateError(ConflictError):
    """The record is not in a state that allows the requested transition."""

    code = "invalid_state"


class CapacityError(ConflictError):
    """No copies of the book are left to issue."""

    code = "no_copies"


class TransientStoreError(LibraryError):
    """The store could not be reached or is busy."""

    code = "store_unavailable"
    status = HTTPStatus.SERVICE_UNAVAILABLE
