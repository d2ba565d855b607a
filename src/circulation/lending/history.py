"""Read-only views over loan history."""

from datetime import date
from typing import Callable, Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from ..config import get_config
from ..db.sqlite import Database, get_db
from .errors import CustomerNotFound
from .models import Loan
from .schemas import LoanPage, LoanResponse, SortField

Id = Union[str, UUID]


class HistoryReader:
    """Paginated and per-book views of loans. Never mutates anything."""

    def __init__(
        self,
        db: Optional[Database] = None,
        default_page_size: Optional[int] = None,
        max_page_size: Optional[int] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.db = db or get_db()
        config = get_config()
        self.default_page_size = default_page_size or config.default_page_size
        self.max_page_size = max_page_size or config.max_page_size
        self.clock = clock or date.today

    def _snapshot(self, session: Session, loan: Loan) -> LoanResponse:
        today = self.clock()
        response = LoanResponse.model_validate(loan)
        response.is_overdue = loan.is_overdue_on(today)
        response.days_until_due = loan.days_until_due_on(today)
        book = self.db.get_book(loan.book_id, session=session)
        customer = self.db.get_customer(loan.customer_id, session=session)
        if book:
            response.book_title = book.title
            response.book_isbn = book.isbn
        if customer:
            response.customer_name = customer.name
            response.customer_email = customer.email
        return response

    def view_history(
        self,
        customer_id: Id,
        page: int = 0,
        page_size: Optional[int] = None,
        sort_field: Union[SortField, str] = SortField.BORROW_DATE,
        descending: bool = False,
    ) -> LoanPage:
        """Get one page of a customer's borrowing history.

        Args:
            customer_id: Customer ID
            page: Zero-based page number
            page_size: Loans per page (default from config)
            sort_field: Field to order by; loan id breaks ties
            descending: Order newest/largest first

        Returns:
            LoanPage, empty when the customer has no loans on that page

        Raises:
            CustomerNotFound: If the customer does not exist
            ValueError: If paging arguments are out of range
        """
        customer_id = str(customer_id)
        sort_field = SortField(sort_field)
        if page_size is None:
            page_size = self.default_page_size
        if page < 0:
            raise ValueError("page must be zero or greater")
        if not 1 <= page_size <= self.max_page_size:
            raise ValueError(f"page_size must be between 1 and {self.max_page_size}")

        with self.db.get_session() as session:
            if self.db.get_customer(customer_id, session=session) is None:
                raise CustomerNotFound(customer_id)

            loans, total = self.db.find_loans_for_customer(
                customer_id,
                offset=page * page_size,
                limit=page_size,
                sort_field=sort_field.value,
                descending=descending,
                session=session,
            )
            items = [self._snapshot(session, loan) for loan in loans]

        return LoanPage(
            items=items,
            page=page,
            page_size=page_size,
            total=total,
            sort_field=sort_field,
            descending=descending,
        )

    def find_by_id(self, loan_id: Id) -> Optional[Loan]:
        """Get a loan by ID, or None."""
        return self.db.find_loan_by_id(str(loan_id))

    def get_loan(self, loan_id: Id) -> Optional[LoanResponse]:
        """Get a loan snapshot with book and customer details, or None."""
        with self.db.get_session() as session:
            loan = self.db.find_loan_by_id(str(loan_id), session=session)
            if loan is None:
                return None
            return self._snapshot(session, loan)

    def loans_for_book(self, book_id: Id) -> list[LoanResponse]:
        """Get every loan of a book, oldest first."""
        with self.db.get_session() as session:
            loans = self.db.find_loans_for_book(str(book_id), session=session)
            return [self._snapshot(session, loan) for loan in loans]

    def open_loan_for_book(self, book_id: Id) -> Optional[LoanResponse]:
        """Get the open loan of a book, or None if it is on the shelf."""
        return next(
            (loan for loan in self.loans_for_book(book_id) if loan.is_open),
            None,
        )
