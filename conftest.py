from dataclasses import replace
from datetime import date, datetime

import pytest

from config import Settings
from library import Library
from persistence import DataPersistence

TODAY = date(2026, 10, 18)
NOW = datetime(2026, 10, 18, 10, 30)


@pytest.fixture
def config():
    return Settings(
        loan_days=14,
        renewal_days=7,
        alert_days_before=3,
        alert_interval_seconds=3600,
        max_backups=5,
        auto_backup=True,
    )


@pytest.fixture
def store(tmp_path, config):
    # Each test gets its own data directory
    return DataPersistence.from_settings(replace(config, data_dir=str(tmp_path / "library_data")))


@pytest.fixture
def lib(store, config):
    lib = Library(store, config=config, clock=lambda: TODAY, now=lambda: NOW)
    yield lib
    lib.close()
