"""
Book model for the library engine.

A Book is one inventory unit identified by its ISBN. It carries the copy
counts the Registry consults for every loan: ``available_copies`` never
exceeds ``total_copies`` and never goes negative. Copy counts only change
through ``borrow_copy``, ``return_copy``, ``add_copies`` and
``remove_copies``.
"""

import logging
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..errors import StateError, ValidationError

logger = logging.getLogger(__name__)

UNKNOWN_AUTHOR = "Unknown"

# Reserved by the line-oriented text form
RESERVED_CHARACTERS = "|\r\n"


def has_reserved_characters(value: str) -> bool:
    return any(char in value for char in RESERVED_CHARACTERS)


class BookTheme(str, Enum):
    """Closed set of catalog themes."""

    FICTION = "FICTION"
    NON_FICTION = "NON_FICTION"
    SCIENCE = "SCIENCE"
    RELIGION = "RELIGION"
    POLITICS = "POLITICS"
    HISTORY = "HISTORY"
    BIOGRAPHY = "BIOGRAPHY"
    TECHNOLOGY = "TECHNOLOGY"
    CHILDREN = "CHILDREN"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: "str | BookTheme | None") -> "BookTheme":
        """Lenient parse: upper-cases, maps spaces to underscores, falls back to OTHER."""
        if isinstance(value, cls):
            return value
        if value is None or not str(value).strip():
            return cls.OTHER
        key = str(value).strip().upper().replace(" ", "_").replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            return cls.OTHER


class Book(BaseModel):
    """
    Represents a title in the library inventory.

    Books are owned by the Library registry, keyed by ISBN, and referenced
    by loans. Two Book objects with the same ISBN compare equal.
    """

    isbn: str = Field(
        ...,
        description="ISBN identifying the title",
        min_length=1,
        examples=["978-0141439518", "9780262033848"],
    )

    title: str = Field(
        ...,
        description="The title of the book",
        min_length=1,
        examples=["Pride and Prejudice", "Introduction to Algorithms"],
    )

    author: str = Field(
        default=UNKNOWN_AUTHOR,
        description="Author name; 'Unknown' when absent",
        examples=["Jane Austen", "Thomas H. Cormen"],
    )

    theme: BookTheme = Field(
        default=BookTheme.OTHER,
        description="Catalog theme",
    )

    total_copies: int = Field(
        ...,
        description="Total number of copies owned by the library",
        ge=0,
        examples=[1, 3, 10],
    )

    available_copies: int | None = Field(
        default=None,
        description="Copies currently on the shelf; defaults to total_copies",
        ge=0,
        examples=[0, 1, 5],
    )

    @field_validator("isbn", "title")
    @classmethod
    def not_blank(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("cannot be empty")
        if has_reserved_characters(stripped):
            raise ValueError("cannot contain '|' or line breaks")
        return stripped

    @field_validator("author", mode="before")
    @classmethod
    def default_author(cls, v):
        if v is None or not str(v).strip():
            return UNKNOWN_AUTHOR
        return v

    @field_validator("author")
    @classmethod
    def author_is_storable(cls, v: str) -> str:
        if has_reserved_characters(v):
            raise ValueError("cannot contain '|' or line breaks")
        return v

    @field_validator("theme", mode="before")
    @classmethod
    def parse_theme(cls, v):
        return BookTheme.parse(v)

    @model_validator(mode="after")
    def validate_copies(self) -> "Book":
        """Fill in and bound available copies against the total."""
        if self.available_copies is None:
            self.available_copies = self.total_copies
        if self.available_copies > self.total_copies:
            raise ValueError("Available copies must be between 0 and total copies")
        return self

    @property
    def is_available(self) -> bool:
        """Check if the book has any copy on the shelf."""
        return self.available_copies > 0

    @property
    def checked_out_copies(self) -> int:
        return self.total_copies - self.available_copies

    def borrow_copy(self) -> None:
        """
        Take one copy off the shelf.

        Raises:
            StateError: If no copies are available
        """
        if not self.is_available:
            raise StateError(f"No copies of '{self.title}' are available")
        self.available_copies -= 1

    def return_copy(self) -> None:
        """
        Put one copy back on the shelf.

        Raises:
            StateError: If every copy is already on the shelf
        """
        if self.available_copies >= self.total_copies:
            raise StateError(f"All copies of '{self.title}' are already returned")
        self.available_copies += 1

    def add_copies(self, count: int) -> None:
        """Grow the inventory; new copies go straight onto the shelf."""
        if count < 1:
            raise ValidationError("Number of copies to add must be positive")
        self.total_copies += count
        self.available_copies += count
        logger.info(
            "Added %d %s of '%s'. Total: %d",
            count,
            "copy" if count == 1 else "copies",
            self.title,
            self.total_copies,
        )

    def remove_copies(self, count: int) -> None:
        """Shrink the inventory; only copies on the shelf can be removed."""
        if count < 1 or count > self.available_copies:
            raise ValidationError(
                f"Invalid number of copies to remove: {count}. "
                f"Available: {self.available_copies}"
            )
        self.available_copies -= count
        self.total_copies -= count
        logger.info(
            "Removed %d %s of '%s'. Remaining: %d",
            count,
            "copy" if count == 1 else "copies",
            self.title,
            self.total_copies,
        )

    def rename(self, title: str) -> None:
        if title is None or not title.strip():
            raise ValidationError("Title cannot be empty")
        if has_reserved_characters(title.strip()):
            raise ValidationError("Title cannot contain '|' or line breaks")
        self.title = title.strip()

    def set_author(self, author: str | None) -> None:
        if author and has_reserved_characters(author.strip()):
            raise ValidationError("Author cannot contain '|' or line breaks")
        self.author = author.strip() if author and author.strip() else UNKNOWN_AUTHOR

    def set_theme(self, theme: "str | BookTheme | None") -> None:
        self.theme = BookTheme.parse(theme)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Book):
            return NotImplemented
        return self.isbn == other.isbn

    def __hash__(self) -> int:
        return hash(self.isbn)

    def __str__(self) -> str:
        return (
            f"Book{{ISBN='{self.isbn}', title='{self.title}', author='{self.author}', "
            f"theme={self.theme.value}, copies={self.available_copies}/{self.total_copies}}}"
        )

    model_config = ConfigDict(
        str_strip_whitespace=True,
        json_schema_extra={
            "example": {
                "isbn": "978-0141439518",
                "title": "Pride and Prejudice",
                "author": "Jane Austen",
                "theme": "FICTION",
                "total_copies": 5,
                "available_copies": 4,
            }
        },
    )
