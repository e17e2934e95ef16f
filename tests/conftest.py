"""Shared fixtures for the StayScout test suite.

Points the Overpass response cache at a temporary SQLite database and
resets process-wide state (cache rows, provider health) between tests.
"""

import atexit
import os
import tempfile

import pytest

# Point the DB at a temp file BEFORE importing models (it reads DB_PATH at import time)
_test_db_fd, _test_db_path = tempfile.mkstemp(suffix=".db")
os.close(_test_db_fd)  # close the fd immediately; sqlite3 opens its own handle
os.environ["STAYSCOUT_DB_PATH"] = _test_db_path
atexit.register(lambda: os.unlink(_test_db_path) if os.path.exists(_test_db_path) else None)

# Routed lookups must never hit the real Directions API from tests.
os.environ.pop("GOOGLE_MAPS_API_KEY", None)
os.environ.pop("SENTRY_DSN", None)

import health_monitor  # noqa: E402
from models import clear_overpass_cache, init_db  # noqa: E402
from ss_trace import clear_trace  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_state():
    """Empty the Overpass cache and health windows before every test."""
    init_db()
    clear_overpass_cache()
    health_monitor._monitor.reset()
    clear_trace()
    yield
