"""Database connection management and initialization."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from sqlite3 import Connection

from beartype import beartype

from src.database.models import INDEXES, SCHEMAS
from src.utils.config import DB_PATH


@beartype
def get_connection(db_path: Path = DB_PATH) -> Connection:
    """Create and return a database connection."""
    conn = sqlite3.connect(str(db_path), timeout=30.0)
    conn.row_factory = sqlite3.Row
    return conn


@beartype
def initialize_database(db_path: Path = DB_PATH) -> None:
    """Initialize the database with required tables and indexes."""
    # Ensure database directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection(db_path)
    try:
        cursor = conn.cursor()

        for schema_sql in SCHEMAS:
            cursor.execute(schema_sql)

        for index_sql in INDEXES:
            cursor.execute(index_sql)

        conn.commit()
    finally:
        conn.close()
