"""SQLite database operations.

Handles database connection, session management, and the persistence
operations the lending ledger is built on.
"""

import os
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Generator, Optional

from sqlalchemy import create_engine, event, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Author, Base, Book, Customer
from .schemas import BookCreate, BookUpdate, CustomerCreate

if TYPE_CHECKING:
    from ..lending.models import Loan


DEFAULT_DB_PATH = Path.home() / ".circulation" / "library.db"

# Columns loan listings may be ordered by
LOAN_SORT_COLUMNS = ("borrow_date", "due_date", "return_date", "created_at")


def is_lock_error(exc: BaseException) -> bool:
    """Check whether an exception is SQLite lock contention."""
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return "locked" in message or "busy" in message


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Database connection and operations manager."""

    def __init__(self, db_path: Optional[str] = None, busy_timeout: float = 5.0):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses
                     CIRCULATION_DB_PATH env var or default location.
            busy_timeout: Seconds SQLite waits on a locked database
                          before giving up.
        """
        if db_path is None:
            db_path = os.environ.get("CIRCULATION_DB_PATH", str(DEFAULT_DB_PATH))

        self.db_path = Path(db_path).expanduser()
        self._is_memory = str(db_path) == ":memory:"

        if not self._is_memory:
            self._ensure_directory()

        # For in-memory databases, use StaticPool to reuse the same connection
        # so all sessions share the same in-memory database
        if self._is_memory:
            self.engine = create_engine(
                "sqlite:///:memory:",
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(
                f"sqlite:///{self.db_path}",
                echo=False,
                connect_args={"check_same_thread": False, "timeout": busy_timeout},
            )
        event.listen(self.engine, "connect", _enable_foreign_keys)
        # Results are handed out detached, so keep their loaded state after commit
        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False
        )

    def _ensure_directory(self) -> None:
        """Ensure the database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def create_tables(self) -> None:
        """Create all database tables."""
        # Import lending models to register them with Base
        from ..lending.models import Loan  # noqa: F401

        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        """Drop all database tables. Use with caution!"""
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session context manager.

        Commits on normal exit. Any exception, including KeyboardInterrupt,
        rolls back so no partial write is ever committed.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    # ========================================================================
    # Book Operations
    # ========================================================================

    def _get_or_create_authors(self, s: Session, names: list[str]) -> list[Author]:
        authors = []
        for name in names:
            author = s.execute(select(Author).where(Author.name == name)).scalar_one_or_none()
            if author is None:
                author = Author(name=name)
                s.add(author)
            authors.append(author)
        return authors

    def create_book(self, book: BookCreate, session: Optional[Session] = None) -> Book:
        """Create a new book record."""

        def _create(s: Session) -> Book:
            db_book = Book(
                title=book.title,
                isbn=book.isbn,
                publication_year=book.publication_year,
                available=True,
            )
            db_book.authors = self._get_or_create_authors(s, book.authors)
            s.add(db_book)
            s.flush()
            return db_book

        if session:
            return _create(session)
        else:
            with self.get_session() as s:
                book_obj = _create(s)
                s.expunge(book_obj)
                return book_obj

    def get_book(self, book_id: str, session: Optional[Session] = None) -> Optional[Book]:
        """Get a book by ID."""

        def _get(s: Session) -> Optional[Book]:
            return s.get(Book, book_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                book = _get(s)
                if book:
                    s.expunge(book)
                return book

    def get_book_by_isbn(
        self, isbn: str, session: Optional[Session] = None
    ) -> Optional[Book]:
        """Get a book by ISBN."""

        def _get(s: Session) -> Optional[Book]:
            stmt = select(Book).where(Book.isbn == isbn.strip())
            return s.execute(stmt).scalar_one_or_none()

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                book = _get(s)
                if book:
                    s.expunge(book)
                return book

    def list_books(
        self, available: Optional[bool] = None, session: Optional[Session] = None
    ) -> list[Book]:
        """Get all books, optionally filtered by availability."""

        def _get(s: Session) -> list[Book]:
            stmt = select(Book).order_by(Book.title, Book.id)
            if available is not None:
                stmt = stmt.where(Book.available == available)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                books = _get(s)
                for book in books:
                    s.expunge(book)
                return books

    def update_book(
        self, book_id: str, update_data: BookUpdate, session: Optional[Session] = None
    ) -> Optional[Book]:
        """Update the catalog fields of a book record."""

        def _update(s: Session) -> Optional[Book]:
            book = s.get(Book, book_id)
            if not book:
                return None

            for field, value in update_data.model_dump(exclude_unset=True).items():
                if field == "authors":
                    book.authors = self._get_or_create_authors(s, value or [])
                elif value is not None:
                    setattr(book, field, value)

            s.flush()
            return book

        if session:
            return _update(session)
        else:
            with self.get_session() as s:
                book = _update(s)
                if book:
                    s.expunge(book)
                return book

    def set_availability(
        self,
        book_id: str,
        available: bool,
        session: Optional[Session] = None,
    ) -> bool:
        """Flip a book's availability flag.

        This is a compare-and-swap: the row is only written while it still
        holds the opposite value, so a flip never happens twice.

        Returns:
            True if the book was flipped
        """

        def _set(s: Session) -> bool:
            stmt = (
                update(Book)
                .where(Book.id == book_id, Book.available == (not available))
                .values(available=available)
                .execution_options(synchronize_session="evaluate")
            )
            result = s.execute(stmt)
            return result.rowcount == 1

        if session:
            return _set(session)
        else:
            with self.get_session() as s:
                return _set(s)

    # ========================================================================
    # Customer Operations
    # ========================================================================

    def create_customer(
        self, customer: CustomerCreate, session: Optional[Session] = None
    ) -> Customer:
        """Create a new customer record."""

        def _create(s: Session) -> Customer:
            db_customer = Customer(
                name=customer.name,
                email=customer.email,
                privileges=customer.privileges,
            )
            s.add(db_customer)
            s.flush()
            return db_customer

        if session:
            return _create(session)
        else:
            with self.get_session() as s:
                customer_obj = _create(s)
                s.expunge(customer_obj)
                return customer_obj

    def get_customer(
        self, customer_id: str, session: Optional[Session] = None
    ) -> Optional[Customer]:
        """Get a customer by ID."""

        def _get(s: Session) -> Optional[Customer]:
            return s.get(Customer, customer_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                customer = _get(s)
                if customer:
                    s.expunge(customer)
                return customer

    def get_customer_by_email(
        self, email: str, session: Optional[Session] = None
    ) -> Optional[Customer]:
        """Get a customer by email (case insensitive)."""

        def _get(s: Session) -> Optional[Customer]:
            stmt = select(Customer).where(func.lower(Customer.email) == email.strip().lower())
            return s.execute(stmt).scalar_one_or_none()

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                customer = _get(s)
                if customer:
                    s.expunge(customer)
                return customer

    def get_customer_by_name(
        self, name: str, session: Optional[Session] = None
    ) -> Optional[Customer]:
        """Get the first customer with a name (case insensitive)."""

        def _get(s: Session) -> Optional[Customer]:
            stmt = (
                select(Customer)
                .where(func.lower(Customer.name) == name.strip().lower())
                .order_by(Customer.created_at, Customer.id)
                .limit(1)
            )
            return s.execute(stmt).scalar_one_or_none()

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                customer = _get(s)
                if customer:
                    s.expunge(customer)
                return customer

    def list_customers(self, session: Optional[Session] = None) -> list[Customer]:
        """Get all customers ordered by name."""

        def _get(s: Session) -> list[Customer]:
            stmt = select(Customer).order_by(Customer.name, Customer.id)
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                customers = _get(s)
                for customer in customers:
                    s.expunge(customer)
                return customers

    def set_privileges(
        self, customer_id: str, privileges: bool, session: Optional[Session] = None
    ) -> Optional[Customer]:
        """Grant or revoke a customer's borrowing privileges.

        Open loans are left untouched.
        """

        def _set(s: Session) -> Optional[Customer]:
            customer = s.get(Customer, customer_id)
            if not customer:
                return None
            customer.privileges = privileges
            s.flush()
            return customer

        if session:
            return _set(session)
        else:
            with self.get_session() as s:
                customer = _set(s)
                if customer:
                    s.expunge(customer)
                return customer

    # ========================================================================
    # Loan Operations
    # ========================================================================

    def save_loan(self, loan: "Loan", session: Optional[Session] = None) -> "Loan":
        """Insert a new loan record. The id is assigned on flush."""

        def _save(s: Session) -> "Loan":
            s.add(loan)
            s.flush()
            return loan

        if session:
            return _save(session)
        else:
            with self.get_session() as s:
                saved = _save(s)
                s.expunge(saved)
                return saved

    def update_loan(
        self, loan_id: str, return_date: date, session: Optional[Session] = None
    ) -> bool:
        """Close an open loan by setting its return date.

        Setting the return date is the only mutation a loan ever receives,
        and only while it is still null.

        Returns:
            True if the loan was open and is now closed
        """
        from ..lending.models import Loan

        def _update(s: Session) -> bool:
            stmt = (
                update(Loan)
                .where(Loan.id == loan_id, Loan.return_date.is_(None))
                .values(return_date=return_date.isoformat())
                .execution_options(synchronize_session="evaluate")
            )
            result = s.execute(stmt)
            return result.rowcount == 1

        if session:
            return _update(session)
        else:
            with self.get_session() as s:
                return _update(s)

    def find_loan_by_id(
        self, loan_id: str, session: Optional[Session] = None
    ) -> Optional["Loan"]:
        """Get a loan by ID."""
        from ..lending.models import Loan

        def _get(s: Session) -> Optional["Loan"]:
            return s.get(Loan, loan_id)

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                loan = _get(s)
                if loan:
                    s.expunge(loan)
                return loan

    def find_loans_for_book(
        self, book_id: str, session: Optional[Session] = None
    ) -> list["Loan"]:
        """Get every loan for a book, oldest first.

        Ordered by borrow date, then creation time, then id, so the
        result order is stable.
        """
        from ..lending.models import Loan

        def _get(s: Session) -> list["Loan"]:
            stmt = (
                select(Loan)
                .where(Loan.book_id == book_id)
                .order_by(Loan.borrow_date, Loan.created_at, Loan.id)
            )
            return list(s.execute(stmt).scalars().all())

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                loans = _get(s)
                for loan in loans:
                    s.expunge(loan)
                return loans

    def find_loans_for_customer(
        self,
        customer_id: str,
        offset: int = 0,
        limit: int = 20,
        sort_field: str = "borrow_date",
        descending: bool = False,
        session: Optional[Session] = None,
    ) -> tuple[list["Loan"], int]:
        """Get one page of a customer's loans.

        Args:
            customer_id: Customer ID
            offset: Rows to skip
            limit: Maximum rows to return
            sort_field: One of LOAN_SORT_COLUMNS
            descending: Sort newest/largest first

        Returns:
            Tuple of (loans on the page, total loans for the customer)
        """
        from ..lending.models import Loan

        if sort_field not in LOAN_SORT_COLUMNS:
            raise ValueError(f"Cannot sort loans by '{sort_field}'")

        def _get(s: Session) -> tuple[list["Loan"], int]:
            total = s.execute(
                select(func.count()).select_from(Loan).where(Loan.customer_id == customer_id)
            ).scalar() or 0

            column = getattr(Loan, sort_field)
            primary = column.desc() if descending else column.asc()
            stmt = (
                select(Loan)
                .where(Loan.customer_id == customer_id)
                .order_by(primary.nulls_last(), Loan.id)
                .offset(offset)
                .limit(limit)
            )
            return list(s.execute(stmt).scalars().all()), total

        if session:
            return _get(session)
        else:
            with self.get_session() as s:
                loans, total = _get(s)
                for loan in loans:
                    s.expunge(loan)
                return loans, total


# Global database instance
_db: Optional[Database] = None


def get_db(db_path: Optional[str] = None) -> Database:
    """Get or create the global database instance."""
    global _db
    if _db is None:
        from ..config import get_config

        config = get_config()
        _db = Database(db_path or str(config.db_path), busy_timeout=config.lock_timeout)
        _db.create_tables()
    return _db


def reset_db() -> None:
    """Reset the global database instance. Used for testing."""
    global _db
    if _db is not None:
        _db.engine.dispose()
    _db = None
