"""Lending ledger: borrow and return operations for books.

The ledger is the only writer of ``Loan.return_date`` and, through the
availability gate, of ``Book.available``. Every mutation runs under the
book's mutex inside a single session, so the availability flip and the
loan write are committed together or not at all.
"""

import logging
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Callable, Generator, Optional, Union
from uuid import UUID

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..config import get_config
from ..db.models import Book, Customer
from ..db.sqlite import Database, get_db, is_lock_error
from .errors import (
    BookNotFound,
    BookUnavailable,
    Contention,
    CustomerNotFound,
    DueDateInPast,
    InvalidDateRange,
    LendingError,
    NoBorrowingPrivilege,
    NoOpenLoan,
)
from .gate import AvailabilityGate
from .models import Loan
from .schemas import LoanCreate

logger = logging.getLogger(__name__)

Id = Union[str, UUID]


class LendingLedger:
    """Opens and closes loans while keeping book availability in step."""

    def __init__(
        self,
        db: Optional[Database] = None,
        gate: Optional[AvailabilityGate] = None,
        clock: Optional[Callable[[], date]] = None,
        loan_period_days: Optional[int] = None,
    ):
        """Initialize the ledger.

        Args:
            db: Database instance
            gate: Availability gate; one is created for ``db`` if omitted
            clock: Returns today's date (default: date.today)
            loan_period_days: Days until a new loan is due
        """
        self.db = db or get_db()
        self.gate = gate or AvailabilityGate(self.db)
        self.clock = clock or date.today
        if loan_period_days is None:
            loan_period_days = get_config().loan_period_days
        self.loan_period = timedelta(days=loan_period_days)

    @contextmanager
    def _transaction(self, operation: str, book_id: str) -> Generator[Session, None, None]:
        """Run one mutation under the book's mutex in a single session."""
        try:
            with self.gate.hold(book_id):
                with self.db.get_session() as session:
                    yield session
        except LendingError as e:
            logger.warning("%s rejected for book %s: %s", operation, book_id, e)
            raise
        except OperationalError as e:
            if not is_lock_error(e):
                raise
            logger.warning("%s hit a locked database for book %s", operation, book_id)
            raise Contention(f"Database is busy, retry {operation}") from e

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_book(self, session: Session, book_id: str) -> Book:
        book = self.db.get_book(book_id, session=session)
        if book is None:
            raise BookNotFound(book_id)
        return book

    def _require_customer(self, session: Session, customer_id: str) -> Customer:
        customer = self.db.get_customer(customer_id, session=session)
        if customer is None:
            raise CustomerNotFound(customer_id)
        return customer

    def _open_loan(
        self,
        session: Session,
        book_id: str,
        customer_id: str,
        borrow_date: date,
        due_date: date,
    ) -> Loan:
        self.gate.try_acquire(session, book_id)
        loan = self.db.save_loan(
            Loan(
                book_id=book_id,
                customer_id=customer_id,
                borrow_date=borrow_date.isoformat(),
                due_date=due_date.isoformat(),
                return_date=None,
            ),
            session=session,
        )
        logger.info(
            "Loan %s opened: book %s to customer %s, due %s",
            loan.id,
            book_id,
            customer_id,
            loan.due_date,
        )
        return loan

    def _close_loan(self, session: Session, loan: Loan, return_date: date) -> None:
        if not self.db.update_loan(loan.id, return_date, session=session):
            raise NoOpenLoan(loan.book_id, f"Loan {loan.id} was already returned")
        self.gate.release(session, loan.book_id)
        logger.info("Loan %s closed on %s", loan.id, return_date.isoformat())

    def _borrow(
        self,
        operation: str,
        customer_id: Id,
        book_id: Id,
        borrow_date: date,
    ) -> Loan:
        customer_id, book_id = str(customer_id), str(book_id)
        with self._transaction(operation, book_id) as session:
            book = self._require_book(session, book_id)
            if not book.available:
                raise BookUnavailable(book_id)

            customer = self._require_customer(session, customer_id)
            if not customer.privileges:
                raise NoBorrowingPrivilege(customer_id)

            loan = self._open_loan(
                session, book_id, customer_id, borrow_date, borrow_date + self.loan_period
            )
        return loan

    # -------------------------------------------------------------------------
    # Loan creation
    # -------------------------------------------------------------------------

    def create_loan(self, data: LoanCreate) -> Loan:
        """Create a loan with caller-supplied borrow and due dates.

        Args:
            data: Loan creation data

        Returns:
            Created loan

        Raises:
            InvalidDateRange: If borrow_date is after due_date
            DueDateInPast: If due_date is before today
            CustomerNotFound: If the customer does not exist
            BookNotFound: If the book does not exist
            NoBorrowingPrivilege: If the customer may not borrow
            BookUnavailable: If the book is already on loan
        """
        customer_id, book_id = str(data.customer_id), str(data.book_id)
        with self._transaction("create_loan", book_id) as session:
            if data.borrow_date > data.due_date:
                raise InvalidDateRange(data.borrow_date, data.due_date)
            today = self.clock()
            if data.due_date < today:
                raise DueDateInPast(data.due_date, today)

            customer = self._require_customer(session, customer_id)
            self._require_book(session, book_id)
            if not customer.privileges:
                raise NoBorrowingPrivilege(customer_id)

            loan = self._open_loan(
                session, book_id, customer_id, data.borrow_date, data.due_date
            )
        return loan

    def borrow_now(self, customer_id: Id, book_id: Id) -> Loan:
        """Lend a book to a customer from today for the standard loan period.

        Raises:
            BookNotFound: If the book does not exist
            BookUnavailable: If the book is already on loan
            CustomerNotFound: If the customer does not exist
            NoBorrowingPrivilege: If the customer may not borrow
        """
        return self._borrow("borrow_now", customer_id, book_id, self.clock())

    def borrow_with_date(self, customer_id: Id, book_id: Id, borrow_date: date) -> Loan:
        """Lend a book from a given date, e.g. when replaying historical loans.

        The borrow date is not compared with today; the due date is the
        borrow date plus the standard loan period.

        Raises:
            BookNotFound: If the book does not exist
            BookUnavailable: If the book is already on loan
            CustomerNotFound: If the customer does not exist
            NoBorrowingPrivilege: If the customer may not borrow
        """
        return self._borrow("borrow_with_date", customer_id, book_id, borrow_date)

    # -------------------------------------------------------------------------
    # Returns
    # -------------------------------------------------------------------------

    def return_by_book(self, book_id: Id) -> str:
        """Return a book today, closing its earliest open loan.

        Returns:
            ID of the closed loan

        Raises:
            NoOpenLoan: If the book has no loans, or all are already returned
        """
        book_id = str(book_id)
        with self._transaction("return_by_book", book_id) as session:
            loans = self.db.find_loans_for_book(book_id, session=session)
            if not loans:
                raise NoOpenLoan(book_id, "No loans found")

            loan = next((candidate for candidate in loans if candidate.is_open), None)
            if loan is None:
                raise NoOpenLoan(book_id, "All loans already returned")

            self._close_loan(session, loan, self.clock())
        return loan.id

    def return_with_date(self, book_id: Id, return_date: date) -> list[str]:
        """Close every open loan for a book on a given date.

        Loans that are already returned are left as they are.

        Returns:
            IDs of the loans closed, oldest first

        Raises:
            NoOpenLoan: If the book has no loans at all
        """
        book_id = str(book_id)
        closed: list[str] = []
        with self._transaction("return_with_date", book_id) as session:
            loans = self.db.find_loans_for_book(book_id, session=session)
            if not loans:
                raise NoOpenLoan(book_id, "No loans found")

            for loan in loans:
                if loan.is_open:
                    self._close_loan(session, loan, return_date)
                    closed.append(loan.id)

        if not closed:
            logger.info("No open loans to close for book %s", book_id)
        return closed
