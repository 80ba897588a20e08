"""Shared fixtures."""

import tempfile
from pathlib import Path

import pytest

from pathkeeper.database.session import close_db, init_db


@pytest.fixture
def temp_db():
    """Create a temporary database for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        init_db(db_path)
        yield db_path
        close_db()
