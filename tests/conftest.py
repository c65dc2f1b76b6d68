"""Shared pytest fixtures."""

import pytest

from jobmail.logging.context import clear_log_context
from jobmail.persistence import close_database, init_database


@pytest.fixture
def database():
    """Fresh in-memory database for one test."""
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture
def file_database(tmp_path):
    """SQLite file database, for tests where several threads write at once."""
    init_database(f"sqlite:///{tmp_path / 'jobmail.db'}")
    yield tmp_path / "jobmail.db"
    close_database()


@pytest.fixture(autouse=True)
def reset_log_context():
    clear_log_context()
    yield
    clear_log_context()
