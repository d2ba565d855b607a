"""Bulk import of catalog records and historical loans."""

from .json_import import (
    ImportDocument,
    ImportError as LoanImportError,
    ImportResult,
    JSONImporter,
)

__all__ = [
    "ImportDocument",
    "ImportResult",
    "JSONImporter",
    "LoanImportError",
]
