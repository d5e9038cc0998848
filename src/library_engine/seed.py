"""
Sample data for the library engine.

Populates a Library with a small, fixed catalog, one librarian and three
members on different plans, plus a handful of loans, so the CLI demo and
the report have something to show.
"""

import logging

from .library import Library
from .models.book import BookTheme
from .models.membership import PlanType

logger = logging.getLogger(__name__)

SAMPLE_BOOKS = [
    ("978-0141439518", "Pride and Prejudice", "Jane Austen", BookTheme.FICTION, 5),
    ("978-0262033848", "Introduction to Algorithms", "Thomas H. Cormen", BookTheme.TECHNOLOGY, 3),
    (
        "978-0143127550",
        "Sapiens: A Brief History of Humankind",
        "Yuval Noah Harari",
        BookTheme.HISTORY,
        4,
    ),
    ("978-0307474278", "The Da Vinci Code", "Dan Brown", BookTheme.FICTION, 6),
    ("978-0060850524", "Brave New World", "Aldous Huxley", BookTheme.FICTION, 2),
    ("978-0452284234", "1984", "George Orwell", BookTheme.FICTION, 4),
]

# name, surname, age, email, password, plan
SAMPLE_MEMBERS = [
    ("Alice", "Smith", 28, "alice@email.com", "password123", PlanType.BASIC),
    ("Bob", "Wilson", 35, "bob@email.com", "bobpass456", PlanType.PREMIUM),
    ("Charlie", "Brown", 22, "charlie@email.com", "securepass", PlanType.VIP),
]

SAMPLE_STAFF = ("Sarah", "Johnson", 35, "sarah@library.com", "admin123", "EMP001")

# member email -> ISBNs borrowed
SAMPLE_LOANS = {
    "alice@email.com": ["978-0141439518", "978-0262033848", "978-0143127550"],
    "bob@email.com": ["978-0307474278", "978-0060850524"],
    "charlie@email.com": ["978-0452284234"],
}


def seed_library(library: Library) -> Library:
    """Add the sample staff, books, members and loans to ``library``."""
    name, surname, age, email, password, employee_id = SAMPLE_STAFF
    library.register_staff(name, surname, age, email, password, employee_id=employee_id)

    for isbn, title, author, theme, copies in SAMPLE_BOOKS:
        library.create_book(isbn, title, author, theme, copies)

    members_by_email = {}
    for name, surname, age, email, password, plan in SAMPLE_MEMBERS:
        member = library.register_member(name, surname, age, email, password)
        if plan != member.membership_plan.plan_type:
            library.upgrade_member_plan(member.id, plan)
        members_by_email[email] = member

    for email, isbns in SAMPLE_LOANS.items():
        for isbn in isbns:
            library.issue_loan(members_by_email[email].id, isbn)

    logger.info(
        "Seeded %d books, %d members, %d staff, %d loans",
        library.book_count,
        library.member_count,
        library.staff_count,
        library.active_loan_count,
    )
    return library
