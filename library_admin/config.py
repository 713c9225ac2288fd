"""Runtime configuration for the library admin service.

Settings are grouped into small pydantic models and populated from
environment variables (a ``.env`` file in the working directory is loaded
first, if present).  Anything not set falls back to the defaults below.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

# Relative to the directory the service is started from
DATA_DIR = Path("data")


class StoreSettings(BaseModel):
    """Where the relational table store lives."""

    db_path: Path = Field(
        default=DATA_DIR / "library.sqlite3",
        description="Path of the SQLite database file",
    )
    busy_timeout: float = Field(
        default=30.0,
        description="Seconds to wait for a competing writer before failing",
    )


class LendingSettings(BaseModel):
    """Issue/return and fine parameters."""

    fine_rate: float = Field(default=2, description="Fine charged per overdue day")
    default_loan_days: int = Field(
        default=14,
        description="Loan length used when an issue request carries no due date",
    )

    @field_validator("fine_rate")
    @classmethod
    def fine_rate_not_negative(cls, v):
        if v < 0:
            raise ValueError("fine rate must not be negative")
        return v

    @field_validator("default_loan_days")
    @classmethod
    def loan_days_positive(cls, v):
        if v < 0:
            raise ValueError("default loan length must not be negative")
        return v


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Root log level for the service")
    format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    file: Optional[Path] = Field(default=None, description="Optional rotating log file")

    @field_validator("level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate that log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()


class Settings(BaseModel):
    store: StoreSettings = Field(default_factory=StoreSettings)
    lending: LendingSettings = Field(default_factory=LendingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _env(name: str) -> Optional[str]:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def load_settings() -> Settings:
    """Build a Settings object from ``LIBRARY_*`` environment variables."""
    store = {}
    if _env("LIBRARY_DB_PATH"):
        store["db_path"] = _env("LIBRARY_DB_PATH")
    lending = {}
    if _env("LIBRARY_FINE_RATE"):
        lending["fine_rate"] = _env("LIBRARY_FINE_RATE")
    if _env("LIBRARY_DEFAULT_LOAN_DAYS"):
        lending["default_loan_days"] = _env("LIBRARY_DEFAULT_LOAN_DAYS")
    server = {}
    if _env("LIBRARY_HOST"):
        server["host"] = _env("LIBRARY_HOST")
    if _env("LIBRARY_PORT"):
        server["port"] = _env("LIBRARY_PORT")
    log = {}
    if _env("LIBRARY_LOG_LEVEL"):
        log["level"] = _env("LIBRARY_LOG_LEVEL")
    if _env("LIBRARY_LOG_FILE"):
        log["file"] = _env("LIBRARY_LOG_FILE")

    try:
        return Settings(
            store=StoreSettings(**store),
            lending=LendingSettings(**lending),
            server=ServerSettings(**server),
            logging=LoggingSettings(**log),
        )
    except ValueError as e:
        logging.error(f"Invalid configuration: {e}")
        raise


settings = load_settings()
