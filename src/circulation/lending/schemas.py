"""Pydantic schemas for book lending."""

from datetime import date, datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class BookState(str, Enum):
    """Availability state of a single book."""

    AVAILABLE = "available"
    ON_LOAN = "on_loan"


class SortField(str, Enum):
    """Fields loan history can be ordered by."""

    BORROW_DATE = "borrow_date"
    DUE_DATE = "due_date"
    RETURN_DATE = "return_date"
    CREATED_AT = "created_at"


class LoanCreate(BaseModel):
    """Schema for creating a loan with explicit dates.

    Date ordering is checked by the ledger so that it can report the
    dedicated error kinds.
    """

    borrow_date: date
    due_date: date
    customer_id: UUID
    book_id: UUID


class LoanResponse(BaseModel):
    """Schema for loan responses.

    Book and customer details are a snapshot taken when the loan is read;
    the ids are authoritative.
    """

    id: UUID
    book_id: UUID
    customer_id: UUID
    borrow_date: date
    due_date: date
    return_date: Optional[date]
    is_open: bool
    created_at: datetime

    # Populated by the history reader from its clock
    is_overdue: bool = False
    days_until_due: Optional[int] = None

    # Related data (populated by the history reader)
    book_title: Optional[str] = None
    book_isbn: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None

    model_config = {"from_attributes": True}


class LoanPage(BaseModel):
    """One page of a loan listing."""

    items: list[LoanResponse] = Field(default_factory=list)
    page: int
    page_size: int
    total: int
    sort_field: SortField = SortField.BORROW_DATE
    descending: bool = False

    @property
    def total_pages(self) -> int:
        """Number of pages at this page size."""
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        """Whether a later page holds more loans."""
        return (self.page + 1) * self.page_size < self.total

    @property
    def is_empty(self) -> bool:
        """Whether this page holds no loans."""
        return not self.items
