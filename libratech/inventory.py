"""Borrow and return logic over the catalog and the loan ledger.

The controller is the only code that changes a book's available quantity
after creation, and the only code that creates or deletes loans. Each
operation runs inside one write transaction (see ``database.transaction``),
so a borrow either both records the loan and takes a copy, or does neither.

Guards against concurrent callers:

* the quantity decrement is conditional (``quantity > 0``) and checked by
  rowcount, never computed from a value read earlier;
* the ledger's ``UNIQUE (book_id, email)`` constraint rejects a second loan
  for the same pair even if two borrows pass the fast-path lookup;
* a return increments only when its delete removed exactly one row.
"""

import logging
import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from libratech.catalog import Catalog
from libratech.database import is_check_violation, is_unique_violation, transaction
from libratech.exceptions import InvariantViolation, NotFound
from libratech.ledger import LoanLedger
from libratech.models import Book, LoanRecord

logger = logging.getLogger(__name__)


class BorrowStatus(str, Enum):
    BORROWED = "success"
    ALREADY_BORROWED = "already-borrowed"
    OUT_OF_STOCK = "no-quantity"


class ReturnStatus(str, Enum):
    RETURNED = "returned"
    ALREADY_RETURNED = "already-returned"


@dataclass
class BorrowResult:
    status: BorrowStatus
    loan: Optional[LoanRecord] = None

    @property
    def message(self) -> str:
        return self.status.value


@dataclass
class ReturnResult:
    status: ReturnStatus
    loan: Optional[LoanRecord] = None
    # False when the loan's book had been deleted while on loan
    restocked: bool = False


@dataclass
class DeleteResult:
    book_deleted: bool
    loans_deleted: int


class InventoryController:
    def __init__(self, catalog: Catalog, ledger: LoanLedger) -> None:
        self.catalog = catalog
        self.ledger = ledger
        self.db_file = catalog.db_file

    def borrow(self, book_id: str, email: str, return_date: Optional[str] = None,
               extra: Optional[dict] = None) -> BorrowResult:
        """Lend one copy of ``book_id`` to ``email``.

        Raises NotFound when the book does not exist. Business outcomes
        (already borrowed, out of stock) are returned, not raised.
        """
        try:
            with transaction(self.db_file) as conn:
                if self.ledger.find(book_id, email, conn) is not None:
                    return BorrowResult(BorrowStatus.ALREADY_BORROWED)

                cursor = conn.execute(
                    "UPDATE books SET quantity = quantity - 1 WHERE id = ? AND quantity > 0",
                    (book_id,),
                )
                if cursor.rowcount == 0:
                    if self.catalog.get_book(book_id, conn) is None:
                        raise NotFound(f"Book {book_id} not found.")
                    return BorrowResult(BorrowStatus.OUT_OF_STOCK)

                loan = self.ledger.insert(conn, LoanRecord(book_id=book_id, email=email,
                                                           return_date=return_date, extra=extra))
        except sqlite3.IntegrityError as exc:
            # Whole transaction, decrement included, has been rolled back.
            if is_unique_violation(exc):
                logger.warning("Concurrent duplicate borrow of %s by %s rejected", book_id, email)
                return BorrowResult(BorrowStatus.ALREADY_BORROWED)
            raise self._invariant_violation(f"Borrow of {book_id} by {email}", exc) from exc

        logger.info("Loan %s: %s borrowed %s", loan.id, email, book_id)
        return BorrowResult(BorrowStatus.BORROWED, loan)

    def return_book(self, loan_id: str, book_id: Optional[str] = None,
                    email: Optional[str] = None) -> ReturnResult:
        """Close a loan and put its copy back on the shelf.

        Idempotent: an unknown or already-closed ``loan_id`` is a no-op. When
        ``email`` is given only that borrower's loan can be closed. The loan's
        own book id is authoritative; a mismatching ``book_id`` is logged.
        """
        try:
            with transaction(self.db_file) as conn:
                loan = self.ledger.delete(conn, loan_id, email=email)
                if loan is None:
                    return ReturnResult(ReturnStatus.ALREADY_RETURNED)

                if book_id is not None and book_id != loan.book_id:
                    logger.warning("Return of loan %s named book %s but the loan is for %s",
                                   loan_id, book_id, loan.book_id)
                cursor = conn.execute(
                    "UPDATE books SET quantity = quantity + 1 WHERE id = ?", (loan.book_id,)
                )
                restocked = cursor.rowcount == 1
        except sqlite3.IntegrityError as exc:
            raise self._invariant_violation(f"Return of loan {loan_id}", exc) from exc

        if not restocked:
            logger.info("Loan %s returned; book %s no longer exists", loan_id, loan.book_id)
        else:
            logger.info("Loan %s: %s returned %s", loan_id, loan.email, loan.book_id)
        return ReturnResult(ReturnStatus.RETURNED, loan, restocked)

    def delete_book(self, book_id: str) -> DeleteResult:
        """Delete a book and every loan that references it.

        The book row goes first, so an interrupted sweep could only ever leave
        loans without a book, which returns already tolerate.
        """
        with transaction(self.db_file) as conn:
            cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
            book_deleted = cursor.rowcount > 0
            loans_deleted = self.ledger.delete_for_book(conn, book_id)

        if book_deleted or loans_deleted:
            logger.info("Deleted book %s and %d loan(s)", book_id, loans_deleted)
        return DeleteResult(book_deleted, loans_deleted)

    def set_quantity(self, book_id: str, quantity: int) -> Book:
        """Admin override of the available count (restock or write-off)."""
        if quantity < 0:
            raise ValueError("Quantity cannot be negative.")
        try:
            with transaction(self.db_file) as conn:
                cursor = conn.execute("UPDATE books SET quantity = ? WHERE id = ?", (quantity, book_id))
                if cursor.rowcount == 0:
                    raise NotFound(f"Book {book_id} not found.")
                book = self.catalog.get_book(book_id, conn)
        except sqlite3.IntegrityError as exc:
            raise self._invariant_violation(f"Setting quantity of {book_id} to {quantity}", exc) from exc

        logger.info("Quantity of %s set to %d", book_id, quantity)
        return book

    @staticmethod
    def _invariant_violation(action: str, exc: sqlite3.IntegrityError) -> InvariantViolation:
        if is_check_violation(exc):
            logger.critical("%s would have made a quantity negative: %s", action, exc)
        else:
            logger.critical("%s violated a store constraint: %s", action, exc)
        return InvariantViolation(str(exc))
