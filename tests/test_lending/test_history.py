"""Tests for HistoryReader."""

from datetime import date, timedelta
from uuid import UUID, uuid4

import pytest

from circulation.lending.errors import CustomerNotFound
from circulation.lending.schemas import SortField


@pytest.fixture
def customer_loans(ledger, customer, many_books):
    """Give the customer five loans, borrowed on consecutive days."""
    loans = []
    for offset, book in enumerate(many_books):
        loans.append(ledger.borrow_with_date(customer.id, book.id, date(2025, 3, 1) + timedelta(days=offset)))
    # Return the first two
    ledger.return_with_date(many_books[0].id, date(2025, 3, 10))
    ledger.return_with_date(many_books[1].id, date(2025, 3, 11))
    return loans


class TestViewHistory:
    """Tests for paginated borrowing history."""

    def test_first_page(self, history, customer, customer_loans):
        """Test the first page holds the oldest loans."""
        page = history.view_history(customer.id, page=0, page_size=2)

        assert page.total == 5
        assert page.total_pages == 3
        assert page.has_next
        assert [str(item.id) for item in page.items] == [customer_loans[0].id, customer_loans[1].id]

    def test_last_page(self, history, customer, customer_loans):
        """Test the last page holds the remainder."""
        page = history.view_history(customer.id, page=2, page_size=2)

        assert len(page.items) == 1
        assert not page.has_next
        assert str(page.items[0].id) == customer_loans[4].id

    def test_page_past_end_is_empty(self, history, customer, customer_loans):
        """Test a page beyond the data is empty, not an error."""
        page = history.view_history(customer.id, page=10, page_size=2)
        assert page.is_empty
        assert page.total == 5

    def test_pages_do_not_overlap(self, history, customer, customer_loans):
        """Test walking every page yields each loan exactly once."""
        seen = []
        for number in range(3):
            seen.extend(str(item.id) for item in history.view_history(customer.id, page=number, page_size=2).items)
        assert sorted(seen) == sorted(loan.id for loan in customer_loans)

    def test_descending(self, history, customer, customer_loans):
        """Test newest first ordering."""
        page = history.view_history(customer.id, page_size=5, descending=True)
        assert str(page.items[0].id) == customer_loans[4].id

    def test_sort_by_return_date(self, history, customer, customer_loans):
        """Test sorting by return date puts open loans last."""
        page = history.view_history(customer.id, page_size=5, sort_field=SortField.RETURN_DATE)

        returned = [item.return_date for item in page.items]
        assert returned[:2] == [date(2025, 3, 10), date(2025, 3, 11)]
        assert returned[2:] == [None, None, None]

    def test_sort_field_as_string(self, history, customer, customer_loans):
        """Test sort fields may be given by name."""
        page = history.view_history(customer.id, page_size=5, sort_field="due_date")
        assert page.sort_field == SortField.DUE_DATE

    def test_snapshot_fields(self, history, customer, customer_loans, many_books):
        """Test items carry book and customer details."""
        item = history.view_history(customer.id, page_size=1).items[0]

        assert item.book_title == many_books[0].title
        assert item.book_isbn == many_books[0].isbn
        assert item.customer_name == "Ada Lovelace"
        assert item.customer_email == "ada@example.com"
        assert item.borrow_date == date(2025, 3, 1)
        assert item.due_date == date(2025, 3, 15)
        assert item.return_date == date(2025, 3, 10)
        assert item.is_open is False

    def test_empty_history(self, history, other_customer):
        """Test a customer without loans gets an empty page."""
        page = history.view_history(other_customer.id)

        assert page.is_empty
        assert page.total == 0
        assert page.total_pages == 0
        assert page.page_size == 20

    def test_unknown_customer(self, history):
        """Test history of a missing customer."""
        with pytest.raises(CustomerNotFound):
            history.view_history(str(uuid4()))

    def test_invalid_paging(self, history, customer):
        """Test out of range paging arguments."""
        with pytest.raises(ValueError):
            history.view_history(customer.id, page=-1)
        with pytest.raises(ValueError):
            history.view_history(customer.id, page_size=0)
        with pytest.raises(ValueError):
            history.view_history(customer.id, page_size=101)

    def test_invalid_sort_field(self, history, customer):
        """Test unknown sort fields are rejected."""
        with pytest.raises(ValueError):
            history.view_history(customer.id, sort_field="title")


class TestLookups:
    """Tests for single-loan and per-book lookups."""

    def test_find_by_id(self, history, ledger, customer, book):
        """Test finding a loan by ID."""
        loan = ledger.borrow_now(customer.id, book.id)

        found = history.find_by_id(loan.id)
        assert found is not None
        assert found.id == loan.id

    def test_find_by_uuid(self, history, ledger, customer, book):
        """Test finding a loan by UUID object."""
        loan = ledger.borrow_now(customer.id, book.id)
        assert history.find_by_id(UUID(loan.id)).id == loan.id

    def test_find_by_id_missing(self, history):
        """Test a missing loan gives None."""
        assert history.find_by_id(str(uuid4())) is None

    def test_get_loan_snapshot(self, history, ledger, customer, book):
        """Test fetching a loan snapshot."""
        loan = ledger.borrow_now(customer.id, book.id)

        snapshot = history.get_loan(loan.id)
        assert snapshot.book_title == "The Great Gatsby"
        assert snapshot.is_open

    def test_loans_for_book(self, history, ledger, customer, other_customer, book):
        """Test per-book history in borrow order."""
        ledger.borrow_with_date(customer.id, book.id, date(2025, 1, 1))
        ledger.return_with_date(book.id, date(2025, 1, 3))
        ledger.borrow_with_date(other_customer.id, book.id, date(2025, 2, 1))

        loans = history.loans_for_book(book.id)
        assert [loan.customer_name for loan in loans] == ["Ada Lovelace", "Alan Turing"]

        current = history.open_loan_for_book(book.id)
        assert current.customer_name == "Alan Turing"

    def test_due_status_uses_reader_clock(self, db, ledger, customer, book):
        """Test overdue status and days until due follow the reader's today."""
        from circulation.lending import HistoryReader

        loan = ledger.borrow_with_date(customer.id, book.id, date(2026, 3, 1))

        before = HistoryReader(db, clock=lambda: date(2026, 3, 10)).get_loan(loan.id)
        assert before.is_overdue is False
        assert before.days_until_due == 5

        after = HistoryReader(db, clock=lambda: date(2026, 3, 20)).get_loan(loan.id)
        assert after.is_overdue is True
        assert after.days_until_due == -5

    def test_returned_loan_not_overdue(self, history, ledger, customer, book):
        """Test a returned loan is never overdue."""
        loan = ledger.borrow_with_date(customer.id, book.id, date(2025, 1, 1))
        ledger.return_with_date(book.id, date(2025, 3, 1))

        snapshot = history.get_loan(loan.id)
        assert snapshot.is_overdue is False
        assert snapshot.days_until_due is None

    def test_open_loan_for_available_book(self, history, book):
        """Test a book on the shelf has no open loan."""
        assert history.open_loan_for_book(book.id) is None
