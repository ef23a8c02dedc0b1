import logging
import sqlite3
from typing import List, Optional

from libratech.database import read_connection
from libratech.models import LoanRecord, dump_extra

logger = logging.getLogger(__name__)

LOAN_COLUMNS = "id, book_id, email, return_date, extra, created_at"


class LoanLedger:
    """Active loan records, one per (book, borrower) pair.

    Writes take the caller's open transaction; only the inventory controller
    opens those. The ``UNIQUE (book_id, email)`` constraint on the table is
    the real duplicate-loan guard; :meth:`find` is just a fast path.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Reads ------------------------- #
    def find(self, book_id: str, email: str, conn: Optional[sqlite3.Connection] = None) -> Optional[LoanRecord]:
        query = f"SELECT {LOAN_COLUMNS} FROM borrowed_books WHERE book_id = ? AND email = ?"
        if conn is not None:
            row = conn.execute(query, (book_id, email)).fetchone()
        else:
            with read_connection(self.db_file) as own:
                row = own.execute(query, (book_id, email)).fetchone()
        return LoanRecord.from_row(row) if row else None

    def get(self, loan_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[LoanRecord]:
        query = f"SELECT {LOAN_COLUMNS} FROM borrowed_books WHERE id = ?"
        if conn is not None:
            row = conn.execute(query, (loan_id,)).fetchone()
        else:
            with read_connection(self.db_file) as own:
                row = own.execute(query, (loan_id,)).fetchone()
        return LoanRecord.from_row(row) if row else None

    def list_for_borrower(self, email: str) -> List[LoanRecord]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                f"SELECT {LOAN_COLUMNS} FROM borrowed_books WHERE email = ? ORDER BY created_at, rowid",
                (email,),
            ).fetchall()
        return [LoanRecord.from_row(row) for row in rows]

    def list_for_book(self, book_id: str) -> List[LoanRecord]:
        with read_connection(self.db_file) as conn:
            rows = conn.execute(
                f"SELECT {LOAN_COLUMNS} FROM borrowed_books WHERE book_id = ? ORDER BY created_at, rowid",
                (book_id,),
            ).fetchall()
        return [LoanRecord.from_row(row) for row in rows]

    def count(self) -> int:
        with read_connection(self.db_file) as conn:
            return conn.execute("SELECT COUNT(*) FROM borrowed_books").fetchone()[0]

    # ------------------------- Writes (inside a transaction) ------------------------- #
    def insert(self, conn: sqlite3.Connection, loan: LoanRecord) -> LoanRecord:
        """Insert a loan. Raises sqlite3.IntegrityError if the pair already holds one."""
        conn.execute(
            f"INSERT INTO borrowed_books ({LOAN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
            (loan.id, loan.book_id, loan.email, loan.return_date, dump_extra(loan.extra), loan.created_at),
        )
        return loan

    def delete(self, conn: sqlite3.Connection, loan_id: str, email: Optional[str] = None) -> Optional[LoanRecord]:
        """Delete one loan, optionally only if it belongs to ``email``.

        Returns the deleted record, or None when nothing was deleted.
        """
        loan = self.get(loan_id, conn)
        if loan is None or (email is not None and loan.email != email):
            return None
        cursor = conn.execute("DELETE FROM borrowed_books WHERE id = ?", (loan_id,))
        return loan if cursor.rowcount == 1 else None

    def delete_for_book(self, conn: sqlite3.Connection, book_id: str) -> int:
        cursor = conn.execute("DELETE FROM borrowed_books WHERE book_id = ?", (book_id,))
        return cursor.rowcount
