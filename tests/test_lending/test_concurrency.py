"""Concurrency tests for the lending ledger.

These run real threads against a file-backed SQLite database and check
that availability and open loans never drift apart.
"""

import threading
from datetime import date, timedelta
from uuid import UUID

from conftest import TODAY, assert_consistent

from circulation.db.schemas import CustomerCreate
from circulation.lending import AvailabilityGate, LendingLedger
from circulation.lending.errors import BookUnavailable, Contention, NoOpenLoan
from circulation.lending.schemas import LoanCreate


def run_together(workers):
    """Start every worker at the same moment and collect outcomes."""
    barrier = threading.Barrier(len(workers))
    results = [None] * len(workers)

    def wrap(index, fn):
        barrier.wait()
        try:
            results[index] = fn()
        except Exception as e:  # collected for assertions
            results[index] = e

    threads = [threading.Thread(target=wrap, args=(i, fn)) for i, fn in enumerate(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


def make_customers(db, count):
    return [
        db.create_customer(CustomerCreate(name=f"Reader {i}", email=f"reader{i}@example.com"))
        for i in range(count)
    ]


class TestConcurrentBorrow:
    """Tests for many customers racing for one book."""

    def test_single_winner(self, db, ledger, book):
        """Test exactly one of many concurrent borrows succeeds."""
        customers = make_customers(db, 8)

        results = run_together(
            [lambda c=c: ledger.borrow_now(c.id, book.id) for c in customers]
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert all(isinstance(r, BookUnavailable) for r in losers)
        assert db.get_book(book.id).available is False
        assert_consistent(db)

    def test_single_winner_across_creating_paths(self, db, ledger, book):
        """Test borrow_now, borrow_with_date and create_loan racing for one book."""
        customers = make_customers(db, 9)
        workers = []
        for i, c in enumerate(customers):
            if i % 3 == 0:
                workers.append(lambda c=c: ledger.borrow_now(c.id, book.id))
            elif i % 3 == 1:
                workers.append(lambda c=c: ledger.borrow_with_date(c.id, book.id, date(2026, 2, 1)))
            else:
                data = LoanCreate(
                    borrow_date=TODAY,
                    due_date=TODAY + timedelta(days=7),
                    customer_id=UUID(c.id),
                    book_id=UUID(book.id),
                )
                workers.append(lambda data=data: ledger.create_loan(data))

        results = run_together(workers)

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert all(isinstance(r, BookUnavailable) for r in losers)
        assert len(db.find_loans_for_book(book.id)) == 1
        assert_consistent(db)

    def test_single_winner_across_ledgers(self, db, book):
        """Test separate ledgers sharing a database never double-lend."""
        customers = make_customers(db, 4)
        ledgers = [
            LendingLedger(db, gate=AvailabilityGate(db, lock_timeout=2.0), clock=lambda: TODAY)
            for _ in customers
        ]

        results = run_together(
            [lambda lg=lg, c=c: lg.borrow_now(c.id, book.id) for lg, c in zip(ledgers, customers)]
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) <= 1
        assert all(isinstance(r, (BookUnavailable, Contention)) for r in losers)
        assert_consistent(db)

    def test_different_books_do_not_block(self, db, ledger, many_books):
        """Test borrows of different books all succeed."""
        customers = make_customers(db, len(many_books))

        results = run_together(
            [lambda c=c, b=b: ledger.borrow_now(c.id, b.id) for c, b in zip(customers, many_books)]
        )

        failures = [r for r in results if isinstance(r, Exception)]
        # SQLite serializes writers; a busy database is the only acceptable failure
        assert all(isinstance(r, Contention) for r in failures)
        assert_consistent(db)


class TestConcurrentReturn:
    """Tests for racing returns of the same book."""

    def test_single_return_closes_loan(self, db, ledger, customer, book):
        """Test only one of many concurrent returns closes the loan."""
        ledger.borrow_with_date(customer.id, book.id, date(2026, 2, 20))

        results = run_together([lambda: ledger.return_by_book(book.id) for _ in range(6)])

        closed = [r for r in results if isinstance(r, str)]
        assert len(closed) == 1
        assert all(isinstance(r, NoOpenLoan) for r in results if not isinstance(r, str))
        assert db.get_book(book.id).available is True
        assert_consistent(db)

    def test_borrow_and_return_interleaved(self, db, ledger, book):
        """Test a mix of borrows and returns leaves the book consistent."""
        customers = make_customers(db, 4)
        workers = []
        for c in customers:
            workers.append(lambda c=c: ledger.borrow_now(c.id, book.id))
            workers.append(lambda: ledger.return_by_book(book.id))

        results = run_together(workers)

        for result in results:
            if isinstance(result, Exception):
                assert isinstance(result, (BookUnavailable, NoOpenLoan, Contention))
        assert_consistent(db)
