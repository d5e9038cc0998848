"""
Binary snapshot of a Library's collections.

Each collection is one artifact under the data directory:

- books.dat
- members.dat
- staff.dat
- loans.dat
- loan_history.dat

An artifact is a pickled list of JSON-mode model dumps, so only plain
builtins (dicts, lists, strings, numbers, booleans, None) ever go through
pickle. Reading uses an unpickler that refuses every global lookup.

Loading is all-or-nothing per artifact: if a file is missing, unreadable or
contains one invalid record, that collection comes back empty. Every
collection is built before the Library is touched.
"""

import io
import logging
import pickle
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from ..errors import PersistenceError
from ..library import Library
from ..models.book import Book
from ..models.loan import Loan
from ..models.principal import Member, Staff

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

BOOKS_FILE = "books.dat"
MEMBERS_FILE = "members.dat"
STAFF_FILE = "staff.dat"
LOANS_FILE = "loans.dat"
LOAN_HISTORY_FILE = "loan_history.dat"


class _RestrictedUnpickler(pickle.Unpickler):
    """Unpickler that only rebuilds builtin containers and scalars."""

    def find_class(self, module: str, name: str) -> Any:
        raise pickle.UnpicklingError(f"global '{module}.{name}' is forbidden")


def _restricted_loads(data: bytes) -> Any:
    return _RestrictedUnpickler(io.BytesIO(data)).load()


class LibraryStore:
    """
    Reads and writes a Library snapshot in one directory.

    Args:
        data_directory: Directory holding the ``.dat`` artifacts
    """

    def __init__(self, data_directory: Path):
        self.data_directory = Path(data_directory)

    def path_for(self, filename: str) -> Path:
        return self.data_directory / filename

    # === Saving ===

    def _write(self, filename: str, records: list[M]) -> None:
        path = self.path_for(filename)
        payload = [record.model_dump(mode="json") for record in records]
        try:
            path.write_bytes(pickle.dumps(payload, protocol=pickle.HIGHEST_PROTOCOL))
        except (OSError, pickle.PicklingError) as e:
            raise PersistenceError(f"Could not write {path}: {e}") from e

    def save(self, library: Library) -> None:
        """
        Write every collection.

        Raises:
            PersistenceError: If the directory or any artifact cannot be written
        """
        try:
            self.data_directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Could not create {self.data_directory}: {e}") from e

        self._write(BOOKS_FILE, library.books())
        self._write(MEMBERS_FILE, library.members())
        self._write(STAFF_FILE, library.staff())
        self._write(LOANS_FILE, library.active_loans())
        self._write(LOAN_HISTORY_FILE, library.loan_history())
        logger.info(
            "Saved %d books, %d members, %d staff, %d active loans to %s",
            library.book_count,
            library.member_count,
            library.staff_count,
            library.active_loan_count,
            self.data_directory,
        )

    # === Loading ===

    def _read(self, filename: str, model: type[M]) -> list[M]:
        path = self.path_for(filename)
        if not path.exists():
            logger.info("No %s found, starting empty", path.name)
            return []
        try:
            payload = _restricted_loads(path.read_bytes())
            if not isinstance(payload, list):
                raise TypeError(f"expected a list, got {type(payload).__name__}")
            return [model.model_validate(record) for record in payload]
        except Exception as e:  # noqa: BLE001
            logger.warning("Could not load %s, using an empty collection: %s", path.name, e)
            return []

    def exists(self) -> bool:
        """True if at least one artifact is present."""
        return any(
            self.path_for(name).exists()
            for name in (BOOKS_FILE, MEMBERS_FILE, STAFF_FILE, LOANS_FILE, LOAN_HISTORY_FILE)
        )

    def load(self, library: Library) -> bool:
        """
        Replace the Library's state with the stored snapshot.

        Returns:
            False when there was nothing stored (the Library is left as is)
        """
        if not self.exists():
            logger.info("No saved data in %s", self.data_directory)
            return False

        books = self._read(BOOKS_FILE, Book)
        members = self._read(MEMBERS_FILE, Member)
        staff = self._read(STAFF_FILE, Staff)
        active_loans = self._read(LOANS_FILE, Loan)
        loan_history = self._read(LOAN_HISTORY_FILE, Loan)

        library.restore(books, members, staff, active_loans, loan_history)
        return True
