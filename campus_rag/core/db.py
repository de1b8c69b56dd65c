"""
SQLite persistence for knowledge records, conversational memory and
learning failures.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from .config import DB_PATH, ensure_db_directory

REQUIRED_TABLES = ['knowledge', 'memory', 'learning_failures']


@contextmanager
def get_db(db_path: str = DB_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path, timeout=10)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = DB_PATH):
    """Initialize the database with required tables."""
    ensure_db_directory(db_path)

    with get_db(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS knowledge (
                id TEXT PRIMARY KEY,
                text TEXT NOT NULL,
                vector TEXT,          -- JSON float array, NULL for keyword-only records
                metadata TEXT NOT NULL,  -- JSON object
                inserted_seq INTEGER NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS memory (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                message TEXT NOT NULL,
                response TEXT NOT NULL,
                context TEXT,         -- JSON object
                timestamp_ms INTEGER NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS learning_failures (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                query TEXT NOT NULL,
                chunk TEXT,
                status TEXT NOT NULL,  -- job status reached when the failure happened
                error TEXT NOT NULL,
                failed_at INTEGER NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_memory_user_id ON memory(user_id, id)')

        conn.commit()


def health_check(db_path: str = DB_PATH) -> bool:
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [table[0] for table in cursor.fetchall()]
            return all(table in table_names for table in REQUIRED_TABLES)
    except sqlite3.Error:
        return False
