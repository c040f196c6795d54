"""
SQLite persistence for namespaced vector records.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator
from .config import DB_PATH, ensure_db_directory


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    path = db_path or DB_PATH
    if path != ":memory:":
        ensure_db_directory(path)
    conn = sqlite3.connect(path)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = None):
    """Initialize the database with the vectors table."""
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS vectors (
                namespace TEXT NOT NULL,
                id TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                vector TEXT NOT NULL,    -- JSON array of floats
                metadata TEXT,           -- JSON object
                timestamp REAL NOT NULL,
                PRIMARY KEY (namespace, id)
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_vectors_namespace ON vectors(namespace)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_vectors_doc_id ON vectors(doc_id)')

        conn.commit()


def health_check(db_path: str = None) -> bool:
    """Check if the database is accessible."""
    try:
        with get_db(db_path) as conn:
            conn.execute("SELECT 1")
        return True
    except sqlite3.Error:
        return False
