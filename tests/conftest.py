"""Pytest configuration and shared fixtures.

This module provides fixtures for testing the circulation package,
including temporary databases, sample catalog data and a fixed clock.
"""

import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Generator

import pytest

from circulation.config import reset_config
from circulation.db.models import Book, Customer
from circulation.db.schemas import BookCreate, CustomerCreate
from circulation.db.sqlite import Database, reset_db
from circulation.lending import AvailabilityGate, HistoryReader, LendingLedger

# Fixed "today" for ledger tests
TODAY = date(2026, 3, 2)


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture(scope="function")
def temp_db_path() -> Generator[Path, None, None]:
    """Create a temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup
    if db_path.exists():
        db_path.unlink()


@pytest.fixture(scope="function")
def db(temp_db_path: Path) -> Generator[Database, None, None]:
    """Create a test database instance."""
    # Reset any global state
    reset_db()
    reset_config()

    os.environ["CIRCULATION_DB_PATH"] = str(temp_db_path)

    database = Database(str(temp_db_path), busy_timeout=5.0)
    database.create_tables()
    yield database

    # Cleanup
    database.engine.dispose()
    reset_db()
    reset_config()
    if "CIRCULATION_DB_PATH" in os.environ:
        del os.environ["CIRCULATION_DB_PATH"]


# ============================================================================
# Lending Fixtures
# ============================================================================


@pytest.fixture
def gate(db: Database) -> AvailabilityGate:
    """Create an availability gate with a short lock timeout."""
    return AvailabilityGate(db, lock_timeout=2.0)


@pytest.fixture
def ledger(db: Database, gate: AvailabilityGate) -> LendingLedger:
    """Create a ledger whose today is TODAY."""
    return LendingLedger(db, gate=gate, clock=lambda: TODAY, loan_period_days=14)


@pytest.fixture
def history(db: Database) -> HistoryReader:
    """Create a history reader whose today is TODAY."""
    return HistoryReader(db, default_page_size=20, max_page_size=100, clock=lambda: TODAY)


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_book_data() -> BookCreate:
    """Create sample book data for testing."""
    return BookCreate(
        title="The Great Gatsby",
        isbn="9780743273565",
        publication_year=1925,
        authors=["F. Scott Fitzgerald"],
    )


@pytest.fixture
def book(db: Database, sample_book_data: BookCreate) -> Book:
    """Create and return an available book."""
    return db.create_book(sample_book_data)


@pytest.fixture
def other_book(db: Database) -> Book:
    """Create a second available book."""
    return db.create_book(
        BookCreate(title="Dune", isbn="9780441172719", publication_year=1965, authors=["Frank Herbert"])
    )


@pytest.fixture
def customer(db: Database) -> Customer:
    """Create a customer with borrowing privileges."""
    return db.create_customer(CustomerCreate(name="Ada Lovelace", email="ada@example.com"))


@pytest.fixture
def other_customer(db: Database) -> Customer:
    """Create a second customer with borrowing privileges."""
    return db.create_customer(CustomerCreate(name="Alan Turing", email="alan@example.com"))


@pytest.fixture
def restricted_customer(db: Database) -> Customer:
    """Create a customer without borrowing privileges."""
    return db.create_customer(
        CustomerCreate(name="Grace Hopper", email="grace@example.com", privileges=False)
    )


@pytest.fixture
def many_books(db: Database) -> list[Book]:
    """Create five available books."""
    return [
        db.create_book(BookCreate(title=f"Test Book {i}", isbn=f"978000000000{i}"))
        for i in range(5)
    ]


# ============================================================================
# Assertions
# ============================================================================


def assert_consistent(db: Database) -> None:
    """Every book is on loan iff it has exactly one open loan."""
    for book in db.list_books():
        open_loans = [loan for loan in db.find_loans_for_book(book.id) if loan.is_open]
        assert len(open_loans) <= 1, f"{book.title} has {len(open_loans)} open loans"
        assert book.available == (not open_loans), f"{book.title} availability out of sync"
