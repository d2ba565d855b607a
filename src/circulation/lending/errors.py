"""Errors raised by lending operations.

Every error is scoped to a single operation call. ``retryable`` tells the
caller whether repeating the same request unchanged can succeed.
"""


class LendingError(Exception):
    """Base class for lending errors."""

    code = "lending_error"
    retryable = False


class BookNotFound(LendingError):
    """Referenced book does not exist."""

    code = "book_not_found"

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book not found: {book_id}")


class CustomerNotFound(LendingError):
    """Referenced customer does not exist."""

    code = "customer_not_found"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")


class BookUnavailable(LendingError):
    """Book is already on loan."""

    code = "book_unavailable"

    def __init__(self, book_id: str):
        self.book_id = book_id
        super().__init__(f"Book is not available for borrowing: {book_id}")


class NoBorrowingPrivilege(LendingError):
    """Customer may not borrow books."""

    code = "no_borrowing_privilege"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer does not have borrowing privileges: {customer_id}")


class InvalidDateRange(LendingError):
    """Borrow date falls after the due date."""

    code = "invalid_date_range"

    def __init__(self, borrow_date, due_date):
        self.borrow_date = borrow_date
        self.due_date = due_date
        super().__init__(
            f"Borrow date {borrow_date} must not be after due date {due_date}"
        )


class DueDateInPast(LendingError):
    """Due date is already in the past."""

    code = "due_date_in_past"

    def __init__(self, due_date, today):
        self.due_date = due_date
        self.today = today
        super().__init__(f"Due date {due_date} is before today ({today})")


class NoOpenLoan(LendingError):
    """No qualifying loan exists for a return."""

    code = "no_open_loan"

    def __init__(self, book_id: str, reason: str = "No open loan found"):
        self.book_id = book_id
        super().__init__(f"{reason} for book: {book_id}")


class Contention(LendingError):
    """Transient lock conflict; safe to retry with backoff."""

    code = "contention"
    retryable = True

    def __init__(self, message: str = "Resource is busy, try again"):
        super().__init__(message)
