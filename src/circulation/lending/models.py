"""SQLAlchemy model for book loans.

Tables:
- loans: One row per borrow, closed by setting return_date
"""

from datetime import date
from typing import Optional

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.models import Base, Book, Customer, generate_uuid, utc_now


class Loan(Base):
    """Loan model - one customer holding one book."""

    __tablename__ = "loans"
    __table_args__ = (
        Index("ix_loans_book_open", "book_id", "return_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    book_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("books.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("customers.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Dates
    borrow_date: Mapped[str] = mapped_column(String(10), nullable=False)  # ISO date
    due_date: Mapped[str] = mapped_column(String(10), nullable=False)  # ISO date
    return_date: Mapped[Optional[str]] = mapped_column(String(10))  # ISO date, null = open

    created_at: Mapped[str] = mapped_column(String(32), default=utc_now)

    # Relationships
    book: Mapped["Book"] = relationship("Book")
    customer: Mapped["Customer"] = relationship("Customer")

    def __repr__(self) -> str:
        return (
            f"<Loan(id={self.id}, book_id={self.book_id}, "
            f"customer_id={self.customer_id}, return_date={self.return_date})>"
        )

    @property
    def is_open(self) -> bool:
        """Check if the book is still out."""
        return self.return_date is None

    def is_overdue_on(self, today: date) -> bool:
        """Check if loan is open past its due date as of ``today``."""
        if not self.is_open:
            return False
        return date.fromisoformat(self.due_date) < today

    def days_until_due_on(self, today: date) -> Optional[int]:
        """Days until due as of ``today`` (negative if overdue), None once returned."""
        if not self.is_open:
            return None
        return (date.fromisoformat(self.due_date) - today).days
