"""Bulk JSON import of books, customers and historical loans.

Expected document layout::

    {
      "books": [{"title": "...", "isbn": "...", "publicationYear": 1999,
                 "authors": ["..."]}],
      "customers": [{"name": "...", "email": "...", "privileges": true}],
      "transactions": [{"customerEmail": "...", "bookIsbn": "...",
                        "borrowDate": "2025-08-01", "returnDate": "2025-08-10"}]
    }

Every section is optional. Transactions are replayed through the lending
ledger in borrow-date order, so a book can be borrowed and returned
several times within one file.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from sqlalchemy.exc import IntegrityError

from ..db.models import Customer
from ..db.schemas import BookCreate, CustomerCreate
from ..db.sqlite import Database, get_db
from ..lending.errors import LendingError
from ..lending.ledger import LendingLedger

logger = logging.getLogger(__name__)


class ImportError(Exception):
    """Import-specific error."""

    pass


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ImportBook(_Record):
    """Book entry of an import file."""

    title: str
    isbn: str
    publication_year: Optional[int] = Field(None, alias="publicationYear")
    authors: list[str] = Field(default_factory=list)


class ImportCustomer(_Record):
    """Customer entry of an import file."""

    name: str
    email: str
    privileges: bool = True


class ImportTransaction(_Record):
    """Historical loan entry of an import file."""

    customer_name: Optional[str] = Field(None, alias="customerName")
    customer_email: Optional[str] = Field(None, alias="customerEmail")
    book_isbn: str = Field(..., alias="bookIsbn")
    borrow_date: date = Field(..., alias="borrowDate")
    return_date: Optional[date] = Field(None, alias="returnDate")

    @model_validator(mode="after")
    def check_fields(self) -> "ImportTransaction":
        """Require a customer reference and ordered dates."""
        if not (self.customer_email or self.customer_name):
            raise ValueError("customerEmail or customerName is required")
        if self.return_date and self.return_date < self.borrow_date:
            raise ValueError("returnDate must not be before borrowDate")
        return self

    @property
    def label(self) -> str:
        who = self.customer_email or self.customer_name
        return f"{who} / {self.book_isbn} @ {self.borrow_date.isoformat()}"


class ImportDocument(_Record):
    """Whole import file."""

    books: list[ImportBook] = Field(default_factory=list)
    customers: list[ImportCustomer] = Field(default_factory=list)
    transactions: list[ImportTransaction] = Field(default_factory=list)

    # Entries that failed validation, as "section[index]: reason"
    rejected: list[str] = Field(default_factory=list)


@dataclass
class ImportResult:
    """Result of an import operation."""

    success: bool = False
    source_file: Optional[Path] = None
    books_imported: int = 0
    customers_imported: int = 0
    loans_imported: int = 0
    loans_returned: int = 0
    skipped: int = 0
    errors: int = 0
    error_messages: list[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        """Get summary string."""
        return (
            f"Books: {self.books_imported}, "
            f"Customers: {self.customers_imported}, "
            f"Loans: {self.loans_imported} ({self.loans_returned} returned), "
            f"Skipped: {self.skipped}, "
            f"Errors: {self.errors}"
        )

    def add_error(self, message: str) -> None:
        self.errors += 1
        self.error_messages.append(message)
        logger.warning("Import error: %s", message)


class JSONImporter:
    """Imports catalog records and replays historical loans from JSON."""

    def __init__(self, db: Optional[Database] = None, ledger: Optional[LendingLedger] = None):
        """Initialize importer.

        Args:
            db: Database instance
            ledger: Ledger used to replay loans
        """
        self.db = db or get_db()
        self.ledger = ledger or LendingLedger(self.db)

    def parse_file(self, file_path: Path) -> ImportDocument:
        """Parse and validate an import file.

        Raises:
            ImportError: If the file is missing or malformed
        """
        if not file_path.exists():
            raise ImportError(f"File not found: {file_path}")
        try:
            raw = json.loads(file_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ImportError(f"Invalid JSON in {file_path}: {e}") from e
        return self.parse_data(raw)

    def parse_data(self, raw: dict) -> ImportDocument:
        """Validate an already-decoded import document.

        Invalid entries are collected in ``rejected`` instead of failing
        the whole document.

        Raises:
            ImportError: If the document does not have the expected layout
        """
        if not isinstance(raw, dict):
            raise ImportError("Import document must be a JSON object")

        document = ImportDocument()
        sections = (
            ("books", ImportBook, document.books),
            ("customers", ImportCustomer, document.customers),
            ("transactions", ImportTransaction, document.transactions),
        )
        for key, model, target in sections:
            entries = raw.get(key) or []
            if not isinstance(entries, list):
                raise ImportError(f"'{key}' must be a list")
            for index, entry in enumerate(entries):
                try:
                    target.append(model.model_validate(entry))
                except ValidationError as e:
                    reason = "; ".join(err["msg"] for err in e.errors())
                    document.rejected.append(f"{key}[{index}]: {reason}")
        return document

    def import_file(self, file_path: Path, dry_run: bool = False) -> ImportResult:
        """Import everything in a file.

        Args:
            file_path: Path to the JSON file
            dry_run: If True, only validate and count

        Returns:
            ImportResult with counts and per-record errors
        """
        result = ImportResult(source_file=file_path)
        try:
            document = self.parse_file(file_path)
        except ImportError as e:
            result.add_error(str(e))
            return result
        return self.import_document(document, dry_run=dry_run, result=result)

    def import_document(
        self,
        document: ImportDocument,
        dry_run: bool = False,
        result: Optional[ImportResult] = None,
    ) -> ImportResult:
        """Import a validated document."""
        result = result or ImportResult()
        for message in document.rejected:
            result.add_error(message)

        if dry_run:
            result.books_imported = len(document.books)
            result.customers_imported = len(document.customers)
            result.loans_imported = len(document.transactions)
            result.loans_returned = sum(1 for t in document.transactions if t.return_date)
            result.success = result.errors == 0
            return result

        for book in document.books:
            self._import_book(book, result)
        for customer in document.customers:
            self._import_customer(customer, result)
        for transaction in sorted(document.transactions, key=lambda t: t.borrow_date):
            self._import_transaction(transaction, result)

        result.success = result.errors == 0
        logger.info("Import finished: %s", result.summary)
        return result

    def _import_book(self, record: ImportBook, result: ImportResult) -> None:
        if self.db.get_book_by_isbn(record.isbn):
            result.skipped += 1
            return
        try:
            self.db.create_book(
                BookCreate(
                    title=record.title,
                    isbn=record.isbn,
                    publication_year=record.publication_year,
                    authors=record.authors,
                )
            )
            result.books_imported += 1
        except (ValidationError, IntegrityError) as e:
            result.add_error(f"Book '{record.title}': {e}")

    def _import_customer(self, record: ImportCustomer, result: ImportResult) -> None:
        if self.db.get_customer_by_email(record.email):
            result.skipped += 1
            return
        try:
            self.db.create_customer(
                CustomerCreate(name=record.name, email=record.email, privileges=record.privileges)
            )
            result.customers_imported += 1
        except (ValidationError, IntegrityError) as e:
            result.add_error(f"Customer '{record.name}': {e}")

    def _find_customer(self, record: ImportTransaction) -> Optional[Customer]:
        if record.customer_email:
            return self.db.get_customer_by_email(record.customer_email)
        return self.db.get_customer_by_name(record.customer_name)

    def _import_transaction(self, record: ImportTransaction, result: ImportResult) -> None:
        customer = self._find_customer(record)
        if customer is None:
            result.add_error(f"Loan {record.label}: customer not found")
            return
        book = self.db.get_book_by_isbn(record.book_isbn)
        if book is None:
            result.add_error(f"Loan {record.label}: book not found")
            return

        try:
            self.ledger.borrow_with_date(customer.id, book.id, record.borrow_date)
            result.loans_imported += 1
            if record.return_date:
                self.ledger.return_with_date(book.id, record.return_date)
                result.loans_returned += 1
        except LendingError as e:
            result.add_error(f"Loan {record.label}: {e}")
