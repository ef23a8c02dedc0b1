import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor

import pytest

from libratech.inventory import BorrowStatus, ReturnStatus

pytestmark = pytest.mark.stress


def run_together(count, fn):
    """Run ``fn(i)`` on ``count`` threads released at the same instant."""
    barrier = threading.Barrier(count)

    def worker(i):
        barrier.wait()
        return fn(i)

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(worker, range(count)))


def test_fifty_borrowers_ten_copies(lib, make_book):
    book = make_book(quantity=10)

    results = run_together(50, lambda i: lib.inventory.borrow(book.id, f"reader{i}@example.com"))

    statuses = Counter(r.status for r in results)
    assert statuses[BorrowStatus.BORROWED] == 10
    assert statuses[BorrowStatus.OUT_OF_STOCK] == 40
    assert lib.catalog.get_book(book.id).quantity == 0
    assert len(lib.ledger.list_for_book(book.id)) == 10


def test_same_borrower_racing_gets_one_loan(lib, make_book):
    book = make_book(quantity=10)

    results = run_together(20, lambda i: lib.inventory.borrow(book.id, "alice@example.com"))

    statuses = Counter(r.status for r in results)
    assert statuses[BorrowStatus.BORROWED] == 1
    assert statuses[BorrowStatus.ALREADY_BORROWED] == 19
    assert lib.catalog.get_book(book.id).quantity == 9
    assert len(lib.ledger.list_for_borrower("alice@example.com")) == 1


def test_duplicate_returns_racing_increment_once(lib, make_book):
    book = make_book(quantity=1)
    loan = lib.inventory.borrow(book.id, "alice@example.com").loan

    results = run_together(20, lambda i: lib.inventory.return_book(loan.id, book.id))

    statuses = Counter(r.status for r in results)
    assert statuses[ReturnStatus.RETURNED] == 1
    assert statuses[ReturnStatus.ALREADY_RETURNED] == 19
    assert lib.catalog.get_book(book.id).quantity == 1


def test_borrows_and_returns_interleaved_keep_counts_consistent(lib, make_book):
    book = make_book(quantity=5)
    held = [lib.inventory.borrow(book.id, f"holder{i}@example.com").loan for i in range(5)]

    def step(i):
        if i < 5:
            return lib.inventory.return_book(held[i].id, book.id)
        return lib.inventory.borrow(book.id, f"reader{i}@example.com")

    results = run_together(30, step)

    borrowed = sum(1 for r in results[5:] if r.status is BorrowStatus.BORROWED)
    quantity = lib.catalog.get_book(book.id).quantity
    assert 0 <= borrowed <= 5
    assert quantity == 5 - borrowed
    assert lib.ledger.count() == borrowed
