"""
Database utilities for the local SQLite credential store.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

SQLITE_PREFIX = "sqlite:///"


def sqlite_path_from_url(url: str) -> Path:
    """Translate ``sqlite:///relative/or/absolute.db`` into a filesystem path."""
    if not url.startswith(SQLITE_PREFIX):
        raise ValueError(f"Not a SQLite URL: {url}")
    return Path(url[len(SQLITE_PREFIX):])


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Return a SQLite connection with Row factory enabled."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: Path) -> None:
    """Create tables when missing."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with get_connection(db_path) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                role TEXT NOT NULL CHECK (role IN ('admin', 'staff', 'client')),
                status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'archived')),
                email TEXT UNIQUE,
                phone TEXT,
                password TEXT,
                password_hash TEXT,
                login_code TEXT,
                login_code_sha TEXT UNIQUE,
                login_code_hash TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_users_role ON users(role)")
        conn.commit()
