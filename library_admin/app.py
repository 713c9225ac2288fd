"""HTTP API server for the library admin panel.

This module exposes a JSON API over students, books, the lending ledger and
fines.  It is built on the standard library's ``http.server`` and serves one
request per thread.

All requests and responses use JSON.  Errors are returned as
``{"detail": ..., "code": ...}`` with a status code derived from the error
type (see ``library_admin.errors``).
"""

from __future__ import annotations

import json
import logging
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlparse

from . import utils
from .catalog import BookCatalog, StudentCatalog
from .config import settings
from .errors import LibraryError, NotFoundError, ValidationError
from .lending import Ledger
from .logging_utils import setup_logging
from .storage import Store

logger = logging.getLogger(__name__)


class LibraryServer(ThreadingHTTPServer):
    """HTTP server holding the catalog and ledger facades for its handlers."""

    daemon_threads = True

    def __init__(self, address: Tuple[str, int], handler_class, store: Store, ledger: Optional[Ledger] = None) -> None:
        super().__init__(address, handler_class)
        self.store = store
        self.students = StudentCatalog(store)
        self.books = BookCatalog(store)
        self.ledger = ledger or Ledger(store)


class APIServer(BaseHTTPRequestHandler):
    """HTTP request handler for the library admin API."""

    protocol_version = "HTTP/1.1"
    server: LibraryServer

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug(f"{self.address_string()} - {format % args}")

    def _send_json(self, payload: Any, status: int = HTTPStatus.OK) -> None:
        body = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_no_content(self) -> None:
        self.send_response(HTTPStatus.NO_CONTENT)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _read_body(self) -> bytes:
        """Consume the request body so the connection can carry the next request."""
        try:
            length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            self.close_connection = True
            raise ValidationError("Invalid Content-Length header") from None
        if length <= 0:
            return b""
        return self.rfile.read(length)

    def _parse_json_body(self) -> Dict[str, Any]:
        if not self._body:
            return {}
        try:
            body = json.loads(self._body)
        except json.JSONDecodeError:
            raise ValidationError("Request body is not valid JSON") from None
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    def _parse_resource_path(self, path: str, prefix: str) -> Tuple[bool, Optional[int], str]:
        """Return (matched, id, action) for paths like ``prefix``, ``prefix<id>/`` and ``prefix<id>/<action>/``."""
        if not path.endswith("/"):
            path = path + "/"
        if not path.startswith(prefix):
            return False, None, ""
        parts = [p for p in path[len(prefix):].split("/") if p]
        if not parts:
            return True, None, ""
        try:
            res_id = int(parts[0])
        except ValueError:
            return False, None, ""
        if len(parts) > 2:
            return False, None, ""
        return True, res_id, parts[1] if len(parts) == 2 else ""

    def _dispatch(self, handler: Callable[[str, Dict[str, str]], None]) -> None:
        parsed = urlparse(self.path)
        path = parsed.path if parsed.path.endswith("/") else parsed.path + "/"
        params = utils.parse_query_params(parsed.query)
        self._body = b""
        try:
            self._body = self._read_body()
            handler(path, params)
        except LibraryError as e:
            if e.status >= HTTPStatus.INTERNAL_SERVER_ERROR:
                logger.error(f"{self.command} {parsed.path} failed: {e.detail}")
            else:
                logger.info(f"{self.command} {parsed.path} rejected: {e.code}: {e.detail}")
            self._send_json(e.to_dict(), status=e.status)
        except Exception:
            logger.exception(f"Unhandled error for {self.command} {parsed.path}")
            self._send_json({"detail": "Internal server error", "code": "error"}, status=HTTPStatus.INTERNAL_SERVER_ERROR)

    def _paged_response(self, items, params: Dict[str, str], **extra: Any) -> Dict[str, Any]:
        page = utils.int_param(params, "page", 1)
        page_size = utils.int_param(params, "page_size", 10)
        paged, pagination = utils.paginate(items, page, page_size)
        response = {"results": [item.to_dict() for item in paged]}
        response.update(pagination)
        response.update(extra)
        return response

    def do_OPTIONS(self) -> None:
        # Allow CORS preflight from a browser front end
        self.send_response(HTTPStatus.NO_CONTENT)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, PUT, PATCH, DELETE, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self) -> None:
        self._dispatch(self._handle_get)

    def do_POST(self) -> None:
        self._dispatch(self._handle_post)

    def do_PUT(self) -> None:
        self._dispatch(self._handle_put)

    def do_PATCH(self) -> None:
        # Updates only touch the supplied fields, so PATCH and PUT behave alike
        self._dispatch(self._handle_put)

    def do_DELETE(self) -> None:
        self._dispatch(self._handle_delete)

    def _handle_get(self, path: str, params: Dict[str, str]) -> None:
        if path == "/api/books/categories/":
            self._send_json({"results": self.server.books.categories()})
            return

        matched, res_id, action = self._parse_resource_path(path, "/api/students/")
        if matched and not action:
            if res_id is not None:
                self._send_json(self.server.students.get(res_id).to_dict())
                return
            order_key, descending = utils.parse_ordering(params.get("ordering", ""), "name")
            students = self.server.students.search(params.get("search", ""), order_key, descending)
            self._send_json(self._paged_response(students, params))
            return

        matched, res_id, action = self._parse_resource_path(path, "/api/books/")
        if matched and not action:
            if res_id is not None:
                self._send_json(self.server.books.get(res_id).to_dict())
                return
            order_key, descending = utils.parse_ordering(params.get("ordering", ""), "title")
            books = self.server.books.search(
                params.get("search", ""),
                category=params.get("category", ""),
                order_key=order_key,
                descending=descending,
                available_only=utils.is_truthy(params.get("available")),
            )
            books = utils.apply_publication_year(books, params)
            self._send_json(self._paged_response(books, params))
            return

        if path == "/api/transactions/":
            ledger = self.server.ledger
            transactions = utils.apply_transaction_filters(ledger.transactions(), params)
            self._send_json(self._paged_response(transactions, params, counts=ledger.counts()))
            return

        if path == "/api/fines/":
            self._send_json(self.server.ledger.overdue_report(params.get("date") or None))
            return

        raise NotFoundError("Not found")

    def _handle_post(self, path: str, params: Dict[str, str]) -> None:
        if path == "/api/students/":
            student = self.server.students.create(self._parse_json_body())
            self._send_json(student.to_dict(), status=HTTPStatus.CREATED)
            return

        if path == "/api/books/":
            book = self.server.books.create(self._parse_json_body())
            self._send_json(book.to_dict(), status=HTTPStatus.CREATED)
            return

        if path == "/api/transactions/issue/":
            body = self._parse_json_body()
            transaction = self.server.ledger.issue(
                body.get("student_id"),
                body.get("book_id"),
                body.get("due_date"),
            )
            self._send_json(transaction.to_dict(), status=HTTPStatus.CREATED)
            return

        matched, res_id, action = self._parse_resource_path(path, "/api/transactions/")
        if matched and res_id is not None and action == "return":
            self._send_json(self.server.ledger.return_book(res_id).to_dict())
            return
        if matched and res_id is not None and action == "fine":
            body = self._parse_json_body()
            transaction = self.server.ledger.apply_fine(res_id, body.get("amount"))
            self._send_json(transaction.to_dict())
            return

        raise NotFoundError("Not found")

    def _handle_put(self, path: str, params: Dict[str, str]) -> None:
        matched, res_id, action = self._parse_resource_path(path, "/api/students/")
        if matched and res_id is not None and not action:
            student = self.server.students.update(res_id, self._parse_json_body())
            self._send_json(student.to_dict())
            return

        matched, res_id, action = self._parse_resource_path(path, "/api/books/")
        if matched and res_id is not None and not action:
            book = self.server.books.update(res_id, self._parse_json_body())
            self._send_json(book.to_dict())
            return

        raise NotFoundError("Not found")

    def _handle_delete(self, path: str, params: Dict[str, str]) -> None:
        matched, res_id, action = self._parse_resource_path(path, "/api/students/")
        if matched and res_id is not None and not action:
            self.server.students.delete(res_id)
            self._send_no_content()
            return

        matched, res_id, action = self._parse_resource_path(path, "/api/books/")
        if matched and res_id is not None and not action:
            self.server.books.delete(res_id)
            self._send_no_content()
            return

        # Transactions are closed by returning the book, never deleted
        raise NotFoundError("Not found")


def create_server(host: Optional[str] = None, port: Optional[int] = None, store: Optional[Store] = None) -> LibraryServer:
    host = host if host is not None else settings.server.host
    port = port if port is not None else settings.server.port
    return LibraryServer((host, port), APIServer, store or Store())


def run(host: Optional[str] = None, port: Optional[int] = None) -> None:
    setup_logging(settings.logging)
    server = create_server(host, port)
    bound_host, bound_port = server.server_address[:2]
    logger.info(f"Library admin API running on {bound_host}:{bound_port} (store: {server.store.db_path})")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()


if __name__ == "__main__":
    run()
