import logging
import sqlite3
from typing import Any, Dict, List, Optional

from libratech.config import settings
from libratech.database import read_connection, transaction
from libratech.exceptions import NotFound
from libratech.models import Book, Category, dump_extra
from libratech.validators import TextValidator

logger = logging.getLogger(__name__)

BOOK_COLUMNS = "id, title, author, category, quantity, image, rating, description, extra, created_at"

# Fields an edit may change without going through the inventory controller
DESCRIPTIVE_FIELDS = ("title", "author", "category", "image", "rating", "description", "extra")

COMPARISONS = {"lt": "<", "gt": ">"}


class Catalog:
    """Book and category records. Read-mostly; never touches quantity after creation."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Books ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Insert a new book with its initial stock. Returns the stored book."""
        if not TextValidator.validate_title(book.title):
            raise ValueError("Book title cannot be empty.")
        book.description = TextValidator.sanitize_text(book.description) or None

        with transaction(self.db_file) as conn:
            conn.execute(
                f"INSERT INTO books ({BOOK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    book.id, book.title, book.author, book.category, book.quantity,
                    book.image, book.rating, book.description, dump_extra(book.extra),
                    book.created_at,
                ),
            )
        logger.info("Added book %s (%s) with %d copies", book.id, book.title, book.quantity)
        return book

    def get_book(self, book_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Book]:
        """Find a single book by id, optionally on a caller's open connection."""
        query = f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?"
        if conn is not None:
            row = conn.execute(query, (book_id,)).fetchone()
        else:
            with read_connection(self.db_file) as own:
                row = own.execute(query, (book_id,)).fetchone()
        return Book.from_row(row) if row else None

    def list_books(
        self,
        category: Optional[str] = None,
        book_id: Optional[str] = None,
        quantity: Optional[int] = None,
        comparison: Optional[str] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Book]:
        """List books matching the given filters, in insertion order.

        ``quantity`` together with ``comparison`` ("lt" or "gt") restricts the
        available count; one comparison per call. A comparison without a
        quantity, or a quantity without a comparison, is ignored.
        """
        clauses: List[str] = []
        params: List[Any] = []

        if category:
            clauses.append("category = ?")
            params.append(category)
        if book_id:
            clauses.append("id = ?")
            params.append(book_id)
        if quantity is not None and comparison:
            operator = COMPARISONS.get(comparison)
            if operator is None:
                raise ValueError(f"Unknown quantity comparison: {comparison}")
            clauses.append(f"quantity {operator} ?")
            params.append(quantity)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        limit = self._bounded_limit(limit, settings.books_default_limit)
        params.extend([limit, max(0, skip)])

        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                f"SELECT {BOOK_COLUMNS} FROM books {where} ORDER BY created_at, rowid LIMIT ? OFFSET ?",
                params,
            ).fetchall()
        return [Book.from_row(row) for row in rows]

    def count_books(self) -> int:
        with read_connection(self.db_file) as conn:
            return conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]

    def update_book(self, book_id: str, **fields: Any) -> Book:
        """Update descriptive fields of a book. Quantity is not accepted here.

        Raises NotFound when the book does not exist.
        """
        unknown = set(fields) - set(DESCRIPTIVE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot edit field(s): {', '.join(sorted(unknown))}")

        updates: Dict[str, Any] = {}
        for name, value in fields.items():
            if name == "title":
                if not TextValidator.validate_title(value):
                    raise ValueError("Book title cannot be empty.")
                value = value.strip()
            elif name == "description":
                value = TextValidator.sanitize_text(value) or None
            elif name == "extra":
                value = dump_extra(value)
            updates[name] = value

        with transaction(self.db_file) as conn:
            if updates:
                set_clause = ", ".join(f"{name} = ?" for name in updates)
                cursor = conn.execute(
                    f"UPDATE books SET {set_clause} WHERE id = ?",
                    list(updates.values()) + [book_id],
                )
                found = cursor.rowcount > 0
            else:
                found = self.get_book(book_id, conn) is not None
            if not found:
                raise NotFound(f"Book {book_id} not found.")
            book = self.get_book(book_id, conn)
        logger.info("Edited book %s: %s", book_id, ", ".join(sorted(updates)) or "no changes")
        return book

    # ------------------------- Categories ------------------------- #
    def add_category(self, name: str) -> Category:
        if not name or not name.strip():
            raise ValueError("Category name cannot be empty.")
        category = Category(name=name)
        try:
            with transaction(self.db_file) as conn:
                conn.execute(
                    "INSERT INTO categories (id, name, created_at) VALUES (?, ?, ?)",
                    (category.id, category.name, category.created_at),
                )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Category {category.name} already exists.") from e
        return category

    def get_category(self, category_id: str) -> Optional[Category]:
        with read_connection(self.db_file) as conn:
            row = conn.execute(
                "SELECT id, name, created_at FROM categories WHERE id = ?", (category_id,)
            ).fetchone()
        return Category.from_row(row) if row else None

    def list_categories(self, name: Optional[str] = None, limit: Optional[int] = None) -> List[Category]:
        limit = self._bounded_limit(limit, settings.categories_default_limit)
        with read_connection(self.db_file) as conn:
            if name:
                rows = conn.execute(
                    "SELECT id, name, created_at FROM categories WHERE name = ? ORDER BY name LIMIT ?",
                    (name, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT id, name, created_at FROM categories ORDER BY name LIMIT ?", (limit,)
                ).fetchall()
        return [Category.from_row(row) for row in rows]

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _bounded_limit(limit: Optional[int], ceiling: int) -> int:
        if not limit or limit < 1:
            return ceiling
        return min(limit, ceiling)
