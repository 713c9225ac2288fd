from pathlib import Path

import pytest

from library_admin.config import load_settings


def test_defaults(monkeypatch):
    for name in ("LIBRARY_DB_PATH", "LIBRARY_FINE_RATE", "LIBRARY_DEFAULT_LOAN_DAYS", "LIBRARY_PORT", "LIBRARY_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    config = load_settings()
    assert config.lending.fine_rate == 2
    assert config.lending.default_loan_days == 14
    assert config.server.port == 8000
    assert config.logging.level == "INFO"
    assert config.store.db_path.name == "library.sqlite3"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("LIBRARY_DB_PATH", str(tmp_path / "other.db"))
    monkeypatch.setenv("LIBRARY_FINE_RATE", "5")
    monkeypatch.setenv("LIBRARY_PORT", "9001")
    monkeypatch.setenv("LIBRARY_LOG_LEVEL", "debug")
    config = load_settings()
    assert config.store.db_path == Path(tmp_path / "other.db")
    assert config.lending.fine_rate == 5
    assert config.server.port == 9001
    assert config.logging.level == "DEBUG"


def test_invalid_values_are_rejected(monkeypatch):
    monkeypatch.setenv("LIBRARY_FINE_RATE", "-1")
    with pytest.raises(ValueError):
        load_settings()
    monkeypatch.setenv("LIBRARY_FINE_RATE", "2")
    monkeypatch.setenv("LIBRARY_LOG_LEVEL", "LOUD")
    with pytest.raises(ValueError):
        load_settings()
