"""Book lending module.

Provides functionality for:
- Borrowing and returning books (LendingLedger)
- Per-book availability state (AvailabilityGate)
- Borrowing history views (HistoryReader)
"""

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
from .history import HistoryReader
from .ledger import LendingLedger
from .models import Loan
from .schemas import BookState, LoanCreate, LoanPage, LoanResponse, SortField

__all__ = [
    "AvailabilityGate",
    "HistoryReader",
    "LendingLedger",
    "Loan",
    "BookState",
    "LoanCreate",
    "LoanPage",
    "LoanResponse",
    "SortField",
    "LendingError",
    "BookNotFound",
    "BookUnavailable",
    "Contention",
    "CustomerNotFound",
    "DueDateInPast",
    "InvalidDateRange",
    "NoBorrowingPrivilege",
    "NoOpenLoan",
]
