"""
SQLite persistence for the vault.

Version rows are append-only; the current version of each key lives in a
separate *_heads table that is only moved inside a BEGIN IMMEDIATE transaction.
"""

import sqlite3
from datetime import datetime
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from . import config
from .errors import ConflictError


def _connect(timeout: float = None) -> sqlite3.Connection:
    Path(config.DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    # isolation_level=None: transactions are opened explicitly
    conn = sqlite3.connect(
        config.DB_PATH,
        timeout=timeout if timeout is not None else config.DB_BUSY_TIMEOUT_SEC,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection for reads."""
    conn = _connect()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(timeout: float = None) -> Generator[sqlite3.Connection, None, None]:
    """Open a write transaction holding the database write lock.

    Commits on success, rolls back on any exception. A busy timeout while
    waiting for the lock is raised as ConflictError so callers can retry.
    timeout overrides DB_BUSY_TIMEOUT_SEC for this transaction.
    """
    conn = _connect(timeout)
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise ConflictError("Timed out waiting for the vault write lock", original_error=e)
            raise
        try:
            yield conn
            conn.execute("COMMIT")
        except sqlite3.OperationalError as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            if "locked" in str(e) or "busy" in str(e):
                raise ConflictError("Vault write lost the write lock", original_error=e)
            raise
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
    finally:
        conn.close()


def init_db():
    """Initialize the database with required tables."""
    with get_db() as conn:
        # WAL lets readers see the last committed state while a writer holds the lock
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript('''
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT,
                is_active BOOLEAN DEFAULT TRUE,
                is_deleted BOOLEAN DEFAULT FALSE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS section_versions (
                project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                section_type TEXT NOT NULL,
                version INTEGER NOT NULL,
                content TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (project_id, section_type, version)
            );

            CREATE TABLE IF NOT EXISTS section_heads (
                project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                section_type TEXT NOT NULL,
                current_version INTEGER NOT NULL,
                PRIMARY KEY (project_id, section_type)
            );

            CREATE TABLE IF NOT EXISTS field_versions (
                project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                section_type TEXT NOT NULL,
                field_id TEXT NOT NULL,
                version INTEGER NOT NULL,
                value TEXT,
                label TEXT,
                field_type TEXT NOT NULL DEFAULT 'text',
                metadata TEXT,
                is_custom BOOLEAN DEFAULT FALSE,
                is_approved BOOLEAN DEFAULT FALSE,
                display_order INTEGER DEFAULT 0,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (project_id, section_type, field_id, version)
            );

            CREATE TABLE IF NOT EXISTS field_heads (
                project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                section_type TEXT NOT NULL,
                field_id TEXT NOT NULL,
                current_version INTEGER NOT NULL,
                PRIMARY KEY (project_id, section_type, field_id)
            );

            CREATE TABLE IF NOT EXISTS vault_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                ts TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                actor TEXT,
                action TEXT,
                payload TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_field_heads_section
                ON field_heads(project_id, section_type);
            CREATE INDEX IF NOT EXISTS idx_vault_events_project_ts
                ON vault_events(project_id, ts DESC);
        ''')


def health_check():
    """Check if the database is accessible and return basic stats."""
    try:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM projects WHERE is_deleted = FALSE")
            project_count = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM section_heads")
            section_count = cursor.fetchone()[0]
            cursor.execute("SELECT COUNT(*) FROM field_heads")
            field_count = cursor.fetchone()[0]
            return {
                "status": "healthy",
                "db_path": config.DB_PATH,
                "projects": project_count,
                "sections": section_count,
                "fields": field_count,
            }
    except sqlite3.Error as e:
        return {"status": "unhealthy", "error": str(e)}


def parse_timestamp(value):
    """Convert a SQLite CURRENT_TIMESTAMP string to datetime."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
