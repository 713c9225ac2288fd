"""Library admin service: catalog CRUD, issue/return ledger and overdue fines."""

__version__ = "0.1.0"
