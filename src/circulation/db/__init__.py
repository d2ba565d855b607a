"""Database module for the library catalog and persistence port."""

from .models import Author, Base, Book, Customer
from .schemas import (
    BookCreate,
    BookResponse,
    BookUpdate,
    CustomerCreate,
    CustomerResponse,
)
from .sqlite import Database, get_db, reset_db

__all__ = [
    "Author",
    "Base",
    "Book",
    "Customer",
    "BookCreate",
    "BookResponse",
    "BookUpdate",
    "CustomerCreate",
    "CustomerResponse",
    "Database",
    "get_db",
    "reset_db",
]
