import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from libratech.config import settings
from libratech.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

# Default database file. Tests and the CLI may repoint this before building a Library.
DATABASE_FILE = settings.database_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Connections run in autocommit mode; writes are grouped explicitly with
    :func:`transaction`. The busy timeout lets concurrent writers queue for the
    database lock instead of failing immediately.
    """
    path = db_file or DATABASE_FILE
    try:
        conn = sqlite3.connect(
            path,
            timeout=settings.database_busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
    except sqlite3.OperationalError as exc:
        raise StoreUnavailable(f"Cannot open database {path}") from exc
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def read_connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Yield a short-lived connection for reads, translating store failures."""
    conn = get_db_connection(db_file)
    try:
        yield conn
    except sqlite3.OperationalError as exc:
        logger.error("Read failed on %s: %s", db_file or DATABASE_FILE, exc)
        raise StoreUnavailable("Store read failed") from exc
    finally:
        conn.close()


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Run a block inside one write transaction.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so every
    read-check-write sequence inside the block is serialized against other
    writers. The block commits when it exits normally and rolls back on any
    exception, including ones the caller translates into outcomes.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.OperationalError as exc:
        conn.close()
        logger.error("Could not lock %s for writing: %s", db_file or DATABASE_FILE, exc)
        raise StoreUnavailable("Store is busy") from exc

    try:
        yield conn
        conn.commit()
    except sqlite3.OperationalError as exc:
        conn.rollback()
        logger.error("Write failed on %s: %s", db_file or DATABASE_FILE, exc)
        raise StoreUnavailable("Store write failed") from exc
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()


def is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    return "UNIQUE constraint failed" in str(exc)


def is_check_violation(exc: sqlite3.IntegrityError) -> bool:
    return "CHECK constraint failed" in str(exc)


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the tables and indexes if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        # WAL is persistent per file; readers then never block the writer.
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id TEXT PRIMARY KEY,
                name TEXT UNIQUE NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                author TEXT,
                category TEXT,
                quantity INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
                image TEXT,
                rating REAL,
                description TEXT,
                extra TEXT,
                created_at TEXT NOT NULL
            )
        """)
        # No foreign key to books: loans reference books logically and are
        # swept explicitly when a book is deleted.
        conn.execute("""
            CREATE TABLE IF NOT EXISTS borrowed_books (
                id TEXT PRIMARY KEY,
                book_id TEXT NOT NULL,
                email TEXT NOT NULL,
                return_date TEXT,
                extra TEXT,
                created_at TEXT NOT NULL,
                UNIQUE (book_id, email)
            )
        """)

        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_category ON books(category)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_books_quantity ON books(quantity)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_borrowed_books_email ON borrowed_books(email)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_borrowed_books_book_id ON borrowed_books(book_id)")
    except sqlite3.OperationalError as exc:
        raise StoreUnavailable("Could not create schema") from exc
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables if needed."""
    create_tables(db_file)
    logger.debug("Database ready at %s", db_file or DATABASE_FILE)


def ping(db_file: Optional[str] = None) -> bool:
    """Cheap connectivity probe used by the health endpoint."""
    try:
        with read_connection(db_file) as conn:
            conn.execute("SELECT 1 FROM books LIMIT 1")
        return True
    except StoreUnavailable:
        return False
