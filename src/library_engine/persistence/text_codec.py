"""
Pipe-delimited text form for the book inventory.

One book per line::

    ISBN|Title|Author|THEME|TotalCopies|AvailableCopies

Loading is forgiving: blank lines are ignored and malformed lines are
skipped with a warning, so one bad record never loses the rest of the file.
Saving overwrites the file wholesale.
"""

import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from ..errors import PersistenceError
from ..models.book import Book, BookTheme, has_reserved_characters

logger = logging.getLogger(__name__)

SEPARATOR = "|"
FIELD_COUNT = 6


def format_book_line(book: Book) -> str:
    """
    Render one record.

    Raises:
        ValueError: If a text field holds the separator or a line break
    """
    for field in (book.isbn, book.title, book.author):
        if has_reserved_characters(field):
            raise ValueError(f"field {field!r} of book {book.isbn!r} cannot be stored")
    return SEPARATOR.join(
        [
            book.isbn,
            book.title,
            book.author,
            book.theme.value,
            str(book.total_copies),
            str(book.available_copies),
        ]
    )


def parse_book_line(line: str) -> Book:
    """
    Parse one record.

    Raises:
        ValueError: If the field count, a copy count or the theme is invalid,
            or the fields do not make a valid Book
    """
    parts = line.rstrip("\r\n").split(SEPARATOR)
    if len(parts) != FIELD_COUNT:
        raise ValueError(f"expected {FIELD_COUNT} fields, got {len(parts)}")
    isbn, title, author, theme, total, available = (part.strip() for part in parts)
    try:
        total_copies = int(total)
        available_copies = int(available)
    except ValueError as e:
        raise ValueError(f"copy counts must be integers: {total!r}, {available!r}") from e
    try:
        book_theme = BookTheme(theme)
    except ValueError as e:
        raise ValueError(f"unknown theme {theme!r}") from e
    try:
        return Book(
            isbn=isbn,
            title=title,
            author=author,
            theme=book_theme,
            total_copies=total_copies,
            available_copies=available_copies,
        )
    except PydanticValidationError as e:
        raise ValueError(f"invalid book: {e.error_count()} error(s)") from e


def dumps_books(books: Iterable[Book]) -> str:
    return "".join(format_book_line(book) + "\n" for book in books)


def loads_books(text: str, source: str = "<string>") -> list[Book]:
    """Parse every well-formed line; later duplicates of an ISBN are skipped."""
    books: dict[str, Book] = {}
    for number, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            book = parse_book_line(line)
        except ValueError as e:
            logger.warning("Skipping %s line %d: %s", source, number, e)
            continue
        if book.isbn in books:
            logger.warning("Skipping %s line %d: duplicate ISBN %s", source, number, book.isbn)
            continue
        books[book.isbn] = book
    return list(books.values())


def save_books_text(books: Iterable[Book], path: Path) -> int:
    """Write the inventory; returns how many books were written."""
    books = list(books)
    try:
        text = dumps_books(books)
    except ValueError as e:
        raise PersistenceError(f"Could not write books to {path}: {e}") from e
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise PersistenceError(f"Could not write books to {path}: {e}") from e
    logger.info("Saved %d books to %s", len(books), path)
    return len(books)


def load_books_text(path: Path) -> list[Book]:
    """Read the inventory; a missing or unreadable file yields no books."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info("No book file at %s", path)
        return []
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("Could not read books from %s: %s", path, e)
        return []
    books = loads_books(text, source=str(path))
    logger.info("Loaded %d books from %s", len(books), path)
    return books
