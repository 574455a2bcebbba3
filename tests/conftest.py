# tests/conftest.py
import os
import sys
import datetime
import pytest
from unittest.mock import patch

# Set environment before config.py is imported anywhere
os.environ["HABITS_DB_PATH"] = "habits_test.db"
os.environ["DEFAULT_TIMEZONE"] = "America/Los_Angeles"
os.environ["APP_ENV"] = "test"

# Add the root project path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, project_root)

from data_manager import DataManager


@pytest.fixture
def db_manager():
    """Creates a DataManager backed by a temporary SQLite file."""
    import tempfile
    import shutil

    temp_dir = tempfile.mkdtemp()
    temp_db_path = os.path.join(temp_dir, "test_habits.db")

    with patch('data_manager.HABITS_DB_PATH', temp_db_path):
        manager = DataManager()
        yield manager
        manager.close()
        shutil.rmtree(temp_dir)


def utc_noon(year: int, month: int, day: int) -> datetime.datetime:
    """A creation timestamp that lands on the same calendar day in every US timezone."""
    return datetime.datetime(year, month, day, 20, 0, tzinfo=datetime.timezone.utc)


class FakeActivity:
    """Minimal activity store over a set of date keys (and optional magnitudes)."""

    def __init__(self, keys=(), magnitudes=None):
        self.magnitudes = dict(magnitudes or {})
        for k in keys:
            self.magnitudes.setdefault(k, 1)

    def has_activity(self, key):
        return self.magnitudes.get(key, 0) > 0

    def activity_magnitude(self, key):
        return self.magnitudes.get(key, 0)

    def active_date_keys(self):
        return sorted(k for k, v in self.magnitudes.items() if v > 0)
