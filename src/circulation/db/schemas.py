"""Pydantic schemas for catalog data validation."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Book Schemas
# ============================================================================


class BookBase(BaseModel):
    """Base book fields common to create/update operations."""

    title: str = Field(..., min_length=1, max_length=500, description="Book title")
    isbn: str = Field(..., min_length=10, max_length=17, description="ISBN-10 or ISBN-13")
    publication_year: Optional[int] = Field(None, ge=0, le=9999)
    authors: list[str] = Field(default_factory=list, description="Author names")

    @field_validator("isbn", mode="before")
    @classmethod
    def clean_isbn(cls, v: Optional[str]) -> Optional[str]:
        """Strip whitespace and quotes around ISBN values."""
        if v is None:
            return None
        v = str(v).strip().strip('"').strip("'")
        return v

    @field_validator("authors", mode="before")
    @classmethod
    def clean_authors(cls, v) -> list[str]:
        """Drop blank and duplicate author names, preserving order."""
        if v is None:
            return []
        seen: list[str] = []
        for name in v:
            name = str(name).strip()
            if name and name not in seen:
                seen.append(name)
        return seen


class BookCreate(BookBase):
    """Schema for creating a new book.

    New books always start on the shelf.
    """

    pass


class BookUpdate(BaseModel):
    """Schema for updating catalog fields of a book.

    Availability is not updatable here; it belongs to the lending ledger.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    isbn: Optional[str] = Field(None, min_length=10, max_length=17)
    publication_year: Optional[int] = Field(None, ge=0, le=9999)
    authors: Optional[list[str]] = None


class BookResponse(BaseModel):
    """Schema for book responses."""

    id: UUID
    title: str
    isbn: str
    publication_year: Optional[int]
    available: bool
    author_names: list[str] = Field(default_factory=list)
    created_at: datetime

    model_config = {"from_attributes": True}


# ============================================================================
# Customer Schemas
# ============================================================================


class CustomerCreate(BaseModel):
    """Schema for creating a customer."""

    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=200)
    privileges: bool = True

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Lowercase and validate the email address."""
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v


class CustomerResponse(BaseModel):
    """Schema for customer responses."""

    id: UUID
    name: str
    email: str
    privileges: bool
    created_at: datetime

    model_config = {"from_attributes": True}
