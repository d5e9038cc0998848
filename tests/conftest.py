"""Test configuration and fixtures for the library engine.

Fixtures provide:
1. Isolated settings - each test gets its own data directory under tmp_path
2. A controllable clock - tests move "today" forward to make loans overdue
3. A populated library - a few books, members and one staff account
"""

from collections.abc import Generator
from datetime import date, timedelta
from pathlib import Path

import pytest

from library_engine.config import LibrarySettings, reset_settings
from library_engine.library import Library
from library_engine.models.book import BookTheme
from library_engine.models.principal import Member, Staff

START_DATE = date(2024, 3, 1)

ALICE_EMAIL = "alice@library.org"
ALICE_PASSWORD = "password123"
BOB_EMAIL = "bob@library.org"
BOB_PASSWORD = "bobpass456"
SARAH_EMAIL = "sarah@library.org"
SARAH_PASSWORD = "admin123"

PRIDE = "978-0141439518"
ALGORITHMS = "978-0262033848"
SAPIENS = "978-0143127550"
DA_VINCI = "978-0307474278"
BRAVE = "978-0060850524"
ORWELL = "978-0452284234"


class FakeClock:
    """Callable clock whose date tests can move."""

    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int) -> date:
        self.today += timedelta(days=days)
        return self.today


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None, None, None]:
    """Keep the settings singleton from leaking between tests."""
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def settings(data_dir: Path) -> LibrarySettings:
    return LibrarySettings(data_directory=data_dir, library_name="Test Library")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START_DATE)


@pytest.fixture
def library(clock: FakeClock) -> Library:
    """An empty library on the fake clock."""
    return Library("Test Library", clock=clock)


@pytest.fixture
def populated_library(library: Library) -> Library:
    """Six books, two members (BASIC and PREMIUM) and one staff account."""
    library.create_book(PRIDE, "Pride and Prejudice", "Jane Austen", BookTheme.FICTION, 5)
    library.create_book(ALGORITHMS, "Introduction to Algorithms", "Thomas H. Cormen", "technology", 3)
    library.create_book(SAPIENS, "Sapiens", "Yuval Noah Harari", BookTheme.HISTORY, 4)
    library.create_book(DA_VINCI, "The Da Vinci Code", "Dan Brown", BookTheme.FICTION, 6)
    library.create_book(BRAVE, "Brave New World", "Aldous Huxley", BookTheme.FICTION, 1)
    library.create_book(ORWELL, "1984", "George Orwell", BookTheme.FICTION, 4)

    library.register_member("Alice", "Smith", 28, ALICE_EMAIL, ALICE_PASSWORD)
    bob = library.register_member("Bob", "Wilson", 35, BOB_EMAIL, BOB_PASSWORD)
    library.upgrade_member_plan(bob.id, "PREMIUM")
    library.register_staff("Sarah", "Johnson", 35, SARAH_EMAIL, SARAH_PASSWORD, employee_id="EMP001")
    return library


@pytest.fixture
def alice(populated_library: Library) -> Member:
    return populated_library.find_member(101)


@pytest.fixture
def bob(populated_library: Library) -> Member:
    return populated_library.find_member(102)


@pytest.fixture
def sarah(populated_library: Library) -> Staff:
    return populated_library.find_staff(103)
