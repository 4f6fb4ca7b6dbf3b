from pathlib import Path

import pytest

from config import Settings


@pytest.fixture
def tmp_db(tmp_path) -> Path:
    """Returns path to a temporary SQLite database file."""
    return tmp_path / "test.db"


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings isolated from the environment, with no retry delay."""
    return Settings(
        _env_file=None,
        db_path=tmp_path / "test.db",
        retries=0,
        retry_delay=0,
        preflight_enabled=False,
    )
