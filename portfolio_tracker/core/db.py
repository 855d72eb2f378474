"""DuckDB initialization and schema management."""
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import duckdb


DEFAULT_SETTINGS = {
    "market_timezone": "Asia/Shanghai",
    "price_ttl_seconds": "30",
    "refresh_workers": "8",
    "refresh_interval_seconds": "60",
}

_cursor_lock = threading.Lock()


def get_db_path(custom_path: str | None = None) -> Path:
    """Get the database file path."""
    if custom_path:
        return Path(custom_path)
    env_path = os.environ.get("PORTFOLIO_DB_PATH")
    if env_path:
        return Path(env_path)
    return Path(__file__).parent.parent.parent / "data" / "portfolio.duckdb"


def init_db(db_path: str | None = None) -> duckdb.DuckDBPyConnection:
    """Initialize database and create schema if needed."""
    if db_path == ":memory:":
        conn = duckdb.connect(":memory:")
    else:
        path = get_db_path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = duckdb.connect(str(path))
    _create_schema(conn)
    return conn


@contextmanager
def cursor(conn: duckdb.DuckDBPyConnection) -> Iterator[duckdb.DuckDBPyConnection]:
    """
    Open a short-lived cursor on the shared database.

    A DuckDB connection must not be used from several threads at once;
    every store goes through its own cursor so refresh workers and
    background tasks can share one database.
    """
    with _cursor_lock:
        cur = conn.cursor()
    try:
        yield cur
    finally:
        cur.close()


def _create_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Create all tables if they don't exist."""

    # Settings table
    conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key VARCHAR PRIMARY KEY,
            value VARCHAR NOT NULL
        )
    """)

    # Initialize default settings
    for key, value in DEFAULT_SETTINGS.items():
        conn.execute("""
            INSERT INTO settings (key, value)
            VALUES (?, ?)
            ON CONFLICT DO NOTHING
        """, [key, value])

    # Positions table, one row per security code
    conn.execute("""
        CREATE TABLE IF NOT EXISTS positions (
            code VARCHAR PRIMARY KEY,
            id VARCHAR NOT NULL,
            name VARCHAR NOT NULL,
            cost_price DECIMAL(18, 8) NOT NULL,
            shares DECIMAL(18, 8) NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    # Latest known price per code
    conn.execute("""
        CREATE TABLE IF NOT EXISTS price_cache (
            code VARCHAR PRIMARY KEY,
            price DECIMAL(18, 8) NOT NULL,
            updated_at TIMESTAMP NOT NULL
        )
    """)

    # Precomputed portfolio snapshot (JSON), singleton row keyed 'main'
    conn.execute("""
        CREATE TABLE IF NOT EXISTS portfolio_cache (
            key VARCHAR PRIMARY KEY,
            data VARCHAR NOT NULL,
            updated_at TIMESTAMP NOT NULL
        )
    """)

    conn.commit()


def get_setting(conn: duckdb.DuckDBPyConnection, key: str) -> str | None:
    """Get a setting value by key."""
    with cursor(conn) as cur:
        result = cur.execute("SELECT value FROM settings WHERE key = ?", [key]).fetchone()
    return result[0] if result else None


def set_setting(conn: duckdb.DuckDBPyConnection, key: str, value: str) -> None:
    """Set a setting value."""
    with cursor(conn) as cur:
        cur.execute("""
            INSERT INTO settings (key, value) VALUES (?, ?)
            ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value
        """, [key, value])
