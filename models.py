"""
SQLite persistence for StayScout provider responses.

Holds a single response cache for Overpass amenity queries so that
panning back to a recently viewed area does not spend another request
against the rate-limited public mirrors. No ORM, just raw sqlite3.

Scores and insights are never stored; they are recomputed from the
cached elements on every refresh.
"""

import hashlib
import logging
import os
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import OVERPASS_CACHE_TTL_DAYS

logger = logging.getLogger(__name__)

DB_PATH = os.environ.get("STAYSCOUT_DB_PATH", "stayscout.db")

_initialized_paths = set()


def _get_db():
    """Get a sqlite3 connection with WAL mode for concurrent reads."""
    conn = sqlite3.connect(DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db():
    """Create tables if they don't exist. Safe to call repeatedly."""
    conn = _get_db()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS overpass_cache (
            cache_key     TEXT PRIMARY KEY,
            response_json TEXT NOT NULL,
            created_at    TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()
    _initialized_paths.add(DB_PATH)


def _ensure_db():
    if DB_PATH not in _initialized_paths:
        init_db()


# ---------------------------------------------------------------------------
# Overpass API response cache
# ---------------------------------------------------------------------------

def overpass_cache_key(query_string: str) -> str:
    """Generate a deterministic cache key from an Overpass query string."""
    return hashlib.sha256(query_string.encode()).hexdigest()


def get_overpass_cache(cache_key: str, ttl_days: Optional[int] = None) -> Optional[str]:
    """Look up a cached Overpass response by key.

    Returns the raw JSON string if found and younger than the TTL, else None.
    Cache errors are swallowed so they never break a refresh.
    """
    if ttl_days is None:
        ttl_days = OVERPASS_CACHE_TTL_DAYS
    if ttl_days <= 0:
        return None
    try:
        _ensure_db()
        conn = _get_db()
        row = conn.execute(
            """SELECT response_json, created_at FROM overpass_cache
               WHERE cache_key = ?""",
            (cache_key,),
        ).fetchone()
        conn.close()

        if not row:
            return None

        created_str = row["created_at"]
        if created_str:
            try:
                created = datetime.fromisoformat(created_str)
                # Handle naive timestamps by assuming UTC
                if created.tzinfo is None:
                    created = created.replace(tzinfo=timezone.utc)
                age = datetime.now(timezone.utc) - created
                if age > timedelta(days=ttl_days):
                    return None  # Expired
            except (ValueError, TypeError):
                pass  # Unparseable timestamp: serve the data anyway

        return row["response_json"]
    except Exception:
        logger.warning("Overpass cache lookup failed", exc_info=True)
        return None


def set_overpass_cache(cache_key: str, response_json: str) -> None:
    """Store an Overpass response in the persistent cache.

    Cache errors are swallowed so they never break a refresh.
    """
    try:
        _ensure_db()
        conn = _get_db()
        conn.execute(
            """INSERT OR REPLACE INTO overpass_cache (cache_key, response_json, created_at)
               VALUES (?, ?, ?)""",
            (cache_key, response_json, datetime.now(timezone.utc).isoformat()),
        )
        conn.commit()
        conn.close()
    except Exception:
        logger.warning("Overpass cache write failed", exc_info=True)


def clear_overpass_cache() -> int:
    """Delete every cached Overpass response. Returns the number removed."""
    _ensure_db()
    conn = _get_db()
    cur = conn.execute("DELETE FROM overpass_cache")
    conn.commit()
    conn.close()
    return cur.rowcount
