import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from .config import settings

logger = logging.getLogger(__name__)

# Default database file.
# Tests (and callers) may override it by assigning database.DATABASE_FILE before
# calling initialize_database(); every helper reads it at call time.
DATABASE_FILE = settings.database_file


def get_db_connection() -> sqlite3.Connection:
    """Open a connection to the SQLite database with foreign keys enforced."""
    conn = sqlite3.connect(DATABASE_FILE, timeout=settings.database_timeout)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run a block as a single unit of work.

    The transaction is opened with BEGIN IMMEDIATE so SQLite takes the write lock
    up front and concurrent writers are serialized. Any exception rolls back every
    statement issued through the yielded connection and is re-raised.
    """
    conn = get_db_connection()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def create_tables() -> None:
    """Create the tables and indexes if they do not exist yet."""
    conn = get_db_connection()
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                phone TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Money is stored as TEXT so Decimal values round-trip exactly
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                external_id INTEGER PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                price TEXT NOT NULL,
                stock_quantity INTEGER NOT NULL CHECK(stock_quantity >= 0),
                available_quantity INTEGER NOT NULL CHECK(available_quantity >= 0),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reservations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                book_external_id INTEGER NOT NULL,
                rental_days INTEGER NOT NULL,
                start_date TEXT NOT NULL,
                expected_return_date TEXT NOT NULL,
                actual_return_date TEXT,
                daily_rate TEXT NOT NULL,
                total_fee TEXT NOT NULL,
                late_fee TEXT NOT NULL DEFAULT '0',
                status TEXT NOT NULL CHECK(status IN ('ACTIVE', 'RETURNED')),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users(id),
                FOREIGN KEY (book_external_id) REFERENCES books(external_id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_user_id ON reservations(user_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_book ON reservations(book_external_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_status_due ON reservations(status, expected_return_date)")
        conn.commit()
    finally:
        conn.close()


def initialize_database() -> None:
    """Initialize the database, creating tables when needed."""
    create_tables()
    logger.info(f"Database ready at {DATABASE_FILE}")
