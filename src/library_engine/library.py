"""
Library registry for the library engine.

The Library owns every collection (books by ISBN, members and staff by id,
active loans, loan history) and is the only writer of cross-entity state:

1. **Inventory**: Adding, updating and removing books and copies
2. **Accounts**: Registering and removing members and staff
3. **Circulation**: Issuing, returning and extending loans with fee accrual
4. **Plans and Fees**: Tier changes and fee payments for members
5. **Sessions**: Logging principals in and out

Every operation either completes or raises a LibraryError before anything
is mutated. Mutating operations are serialized behind one re-entrant lock
per Library.
"""

import functools
import logging
import threading
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta
from typing import TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import LibrarySettings
from .errors import (
    AuthError,
    DuplicateKeyError,
    LimitError,
    NotFoundError,
    StateError,
    ValidationError,
)
from .ids import DEFAULT_ID_BASE, IdAllocator
from .models.book import Book, BookTheme, has_reserved_characters
from .models.loan import Loan
from .models.membership import MembershipPlan, PlanType
from .models.principal import Member, Principal, Staff

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)
M = TypeVar("M", bound=BaseModel)
P = TypeVar("P", bound=Principal)

DEFAULT_LIBRARY_NAME = "City Library"


class InventorySummary(BaseModel):
    """Copy counts across the whole inventory."""

    titles: int
    total_copies: int
    available_copies: int
    borrowed_copies: int


class MemberStatistics(BaseModel):
    """Borrowing state across all members."""

    total_members: int
    members_with_loans: int
    members_with_overdue: int
    total_staff: int
    outstanding_fees: float


class FeeSummary(BaseModel):
    """A member's fee position on a given day."""

    member_id: int
    accumulated: float
    current_overdue: float
    total: float


def _synchronized(method: F) -> F:
    @functools.wraps(method)
    def wrapper(self: "Library", *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


def _describe(error: PydanticValidationError) -> str:
    """Flatten a pydantic error into one readable line."""
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        parts.append(f"{location}: {detail['msg']}" if location else detail["msg"])
    return "; ".join(parts)


def _parse_plan(plan: PlanType | str) -> PlanType:
    try:
        return PlanType(plan.strip().upper() if isinstance(plan, str) else plan)
    except ValueError as e:
        raise ValidationError(f"Unknown membership plan: {plan}") from e


class Library:
    """
    Registry of books, principals and loans.

    Args:
        name: Library name shown on reports
        id_base: Reserved principal id base; the first id issued is id_base + 1
        clock: Returns today's date; defaults to ``date.today``
    """

    def __init__(
        self,
        name: str = DEFAULT_LIBRARY_NAME,
        *,
        id_base: int = DEFAULT_ID_BASE,
        clock: Callable[[], date] | None = None,
    ):
        self.name = name
        self._clock = clock or date.today
        self._ids = IdAllocator(id_base)
        self._lock = threading.RLock()

        self._books: dict[str, Book] = {}
        self._members: dict[int, Member] = {}
        self._staff: dict[int, Staff] = {}
        self._active_loans: list[Loan] = []
        self._loan_history: list[Loan] = []
        self._current_user: Principal | None = None

    @classmethod
    def from_settings(
        cls, settings: LibrarySettings, clock: Callable[[], date] | None = None
    ) -> "Library":
        return cls(settings.library_name, id_base=settings.id_base, clock=clock)

    def today(self) -> date:
        return self._clock()

    @property
    def ids(self) -> IdAllocator:
        return self._ids

    def _build(self, model: type[M], **data) -> M:
        try:
            return model(**data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {model.__name__.lower()}: {_describe(e)}") from e

    # === Books ===

    @_synchronized
    def add_book(self, book: Book) -> Book:
        """
        Add a book to the inventory.

        Raises:
            DuplicateKeyError: If a book with the same ISBN exists
        """
        if book.isbn in self._books:
            raise DuplicateKeyError(f"Book with ISBN {book.isbn} already exists")
        self._books[book.isbn] = book
        logger.info("Added book '%s' (%s)", book.title, book.isbn)
        return book

    @_synchronized
    def create_book(
        self,
        isbn: str,
        title: str,
        author: str | None = None,
        theme: BookTheme | str | None = None,
        total_copies: int = 1,
    ) -> Book:
        """Build a Book from raw fields and add it."""
        book = self._build(
            Book, isbn=isbn, title=title, author=author, theme=theme, total_copies=total_copies
        )
        return self.add_book(book)

    @_synchronized
    def remove_book(self, isbn: str) -> Book:
        """
        Remove a book from the inventory.

        Raises:
            NotFoundError: If the ISBN is unknown
            StateError: If any copy is on loan
        """
        book = self.find_book(isbn)
        if book.checked_out_copies > 0 or any(loan.isbn == book.isbn for loan in self._active_loans):
            raise StateError(f"Cannot remove '{book.title}': copies are currently on loan")
        del self._books[book.isbn]
        logger.info("Removed book '%s' (%s)", book.title, book.isbn)
        return book

    @_synchronized
    def update_book(
        self,
        isbn: str,
        title: str | None = None,
        author: str | None = None,
        theme: BookTheme | str | None = None,
    ) -> Book:
        """Change a book's descriptive fields; arguments left as None are untouched."""
        book = self.find_book(isbn)
        if title is not None and not title.strip():
            raise ValidationError("Title cannot be empty")
        for field, value in (("Title", title), ("Author", author)):
            if value is not None and has_reserved_characters(value.strip()):
                raise ValidationError(f"{field} cannot contain '|' or line breaks")
        if title is not None:
            book.rename(title)
        if author is not None:
            book.set_author(author)
        if theme is not None:
            book.set_theme(theme)
        return book

    @_synchronized
    def add_copies(self, isbn: str, count: int) -> Book:
        book = self.find_book(isbn)
        book.add_copies(count)
        return book

    @_synchronized
    def remove_copies(self, isbn: str, count: int) -> Book:
        book = self.find_book(isbn)
        book.remove_copies(count)
        return book

    def find_book(self, isbn: str) -> Book:
        book = self._books.get(isbn.strip() if isbn else isbn)
        if book is None:
            raise NotFoundError(f"Book {isbn} not found")
        return book

    # === Principals ===

    def _check_principal_id(self, principal_id: int) -> None:
        if principal_id in self._members or principal_id in self._staff:
            raise DuplicateKeyError(f"Principal with id {principal_id} already exists")
        if principal_id <= self._ids.last_issued:
            raise DuplicateKeyError(
                f"Id {principal_id} was already issued or is reserved and cannot be reused"
            )

    def _insert_member(self, member: Member) -> Member:
        self._members[member.id] = member
        self._ids.reserve_through(member.id)
        logger.info("Added member %s (id %d)", member.full_name, member.id)
        return member

    def _insert_staff(self, staff: Staff) -> Staff:
        staff.attach_library(self)
        self._staff[staff.id] = staff
        self._ids.reserve_through(staff.id)
        logger.info("Added staff %s (id %d)", staff.full_name, staff.id)
        return staff

    @_synchronized
    def add_member(self, member: Member) -> Member:
        """
        Add an existing Member object.

        Ids are never reused: the id must be above every id issued so far.

        Raises:
            DuplicateKeyError: If the id is taken, was issued before, or is reserved
        """
        self._check_principal_id(member.id)
        return self._insert_member(member)

    @_synchronized
    def register_member(
        self,
        name: str,
        surname: str,
        age: int,
        email: str | None = None,
        password: str | None = None,
    ) -> Member:
        """Create a member with the next free id and add it."""
        member = self._build(
            Member,
            id=self._ids.peek(),
            name=name,
            surname=surname,
            age=age,
            email=email,
            password=password,
        )
        member.membership_plan = MembershipPlan.for_tier(member.default_plan(), self.today())
        self._ids.next_id()
        return self._insert_member(member)

    @_synchronized
    def remove_member(self, member_id: int) -> Member:
        """
        Remove a member.

        Raises:
            NotFoundError: If the id is unknown
            StateError: If the member still holds loans
        """
        member = self.find_member(member_id)
        if member.active_loan_count > 0:
            raise StateError(
                f"Cannot remove {member.full_name}: {member.active_loan_count} active loan(s)"
            )
        if self._current_user is member:
            self.logout()
        del self._members[member_id]
        logger.info("Removed member %s (id %d)", member.full_name, member_id)
        return member

    def find_member(self, member_id: int) -> Member:
        member = self._members.get(member_id)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found")
        return member

    @_synchronized
    def add_staff(self, staff: Staff) -> Staff:
        self._check_principal_id(staff.id)
        return self._insert_staff(staff)

    @_synchronized
    def register_staff(
        self,
        name: str,
        surname: str,
        age: int,
        email: str | None = None,
        password: str | None = None,
        employee_id: str | None = None,
    ) -> Staff:
        staff = self._build(
            Staff,
            id=self._ids.peek(),
            name=name,
            surname=surname,
            age=age,
            email=email,
            password=password,
            employee_id=employee_id,
        )
        staff.membership_plan = MembershipPlan.for_tier(staff.default_plan(), self.today())
        self._ids.next_id()
        return self._insert_staff(staff)

    @_synchronized
    def remove_staff(self, staff_id: int) -> Staff:
        staff = self.find_staff(staff_id)
        if self._current_user is staff:
            self.logout()
        del self._staff[staff_id]
        staff.attach_library(None)
        logger.info("Removed staff %s (id %d)", staff.full_name, staff_id)
        return staff

    def find_staff(self, staff_id: int) -> Staff:
        staff = self._staff.get(staff_id)
        if staff is None:
            raise NotFoundError(f"Staff {staff_id} not found")
        return staff

    @_synchronized
    def find_principal_by_email(self, email: str) -> Principal:
        """
        Look up a member or staff account by email (case-insensitive).

        Raises:
            NotFoundError: If no account uses the email
            DuplicateKeyError: If more than one account uses it
        """
        wanted = (email or "").strip().lower()
        matches = [
            principal
            for principal in (*self._members.values(), *self._staff.values())
            if principal.email is not None and principal.email.lower() == wanted
        ]
        if not matches:
            raise NotFoundError(f"No account with email {email}")
        if len(matches) > 1:
            raise DuplicateKeyError(f"Email {email} is shared by {len(matches)} accounts")
        return matches[0]

    # === Circulation ===

    @_synchronized
    def issue_loan(self, member_id: int, isbn: str) -> Loan:
        """
        Lend one copy of a book to a member.

        Checks run in this order, before anything changes:
        1. Member and book exist
        2. A copy is available
        3. The member is under their plan's loan limit
        4. The member holds no overdue loan
        5. The member does not already hold this book

        Returns:
            The new active loan, due after the member's current plan period

        Raises:
            NotFoundError, StateError, LimitError
        """
        member = self.find_member(member_id)
        book = self.find_book(isbn)
        today = self.today()

        if not book.is_available:
            raise StateError(f"'{book.title}' is not available")
        if not member.can_borrow_more(member.active_loan_count):
            raise LimitError(
                f"{member.full_name} has reached the loan limit ({member.max_loans} books "
                f"on {member.membership_plan.name})"
            )
        if member.has_overdue_books(today):
            raise StateError(f"{member.full_name} has overdue books and cannot borrow")
        if member.find_active_loan(book.isbn) is not None:
            raise StateError(f"{member.full_name} already has '{book.title}' on loan")

        loan = Loan(
            member_id=member.id,
            isbn=book.isbn,
            loan_date=today,
            due_date=today + timedelta(days=member.loan_period_days),
        )
        book.borrow_copy()
        loan.link(member, book)
        member.add_loan(loan)
        self._active_loans.append(loan)
        logger.info(
            "%s borrowed '%s', due %s", member.full_name, book.title, loan.due_date.isoformat()
        )
        return loan

    def _active_loan_of(self, member: Member, isbn: str) -> Loan:
        loan = member.find_active_loan(isbn.strip() if isbn else isbn)
        if loan is None:
            raise NotFoundError(f"{member.full_name} has no active loan of {isbn}")
        return loan

    def _replace_active(self, old: Loan, new: Loan | None) -> None:
        for index, loan in enumerate(self._active_loans):
            if loan is old:
                if new is None:
                    del self._active_loans[index]
                else:
                    self._active_loans[index] = new
                return

    @_synchronized
    def return_loan(self, member_id: int, isbn: str) -> tuple[Loan, float]:
        """
        Close a member's active loan of a book.

        The overdue fee is charged at the member's plan rate as of today and
        added to their balance.

        Returns:
            The returned loan and the fee charged for it

        Raises:
            NotFoundError: If the member has no active loan of the book
            StateError: If the loan or the book's copy count cannot take the return
        """
        member = self.find_member(member_id)
        loan = self._active_loan_of(member, isbn)
        book = self.find_book(loan.isbn)
        today = self.today()

        if loan.returned:
            raise StateError(f"Loan of '{book.title}' is already returned")
        if book.checked_out_copies < 1:
            raise StateError(f"All copies of '{book.title}' are already returned")
        if today < loan.loan_date:
            raise StateError(f"Cannot return '{book.title}' before its loan date")

        fee = loan.calculate_overdue_fee(member.daily_overdue_fee, today)
        loan.mark_returned(today)
        self._replace_active(loan, None)
        self._loan_history.append(loan)
        member.archive_loan(loan)
        book.return_copy()
        if fee > 0:
            member.add_fee(fee)
            logger.info(
                "Overdue fee of $%.2f charged to %s (%d days)",
                fee,
                member.full_name,
                loan.days_overdue(),
            )
        logger.info("%s returned '%s'", member.full_name, book.title)
        return loan, fee

    @_synchronized
    def extend_loan(self, member_id: int, isbn: str, days: int) -> Loan:
        """
        Push an active loan's due date back by ``days``.

        Loans are immutable in their dates, so the active loan is replaced
        by a new one with the same identity.

        Raises:
            ValidationError: If days is not positive
            NotFoundError: If there is no such active loan
            StateError: If the loan is already overdue
        """
        if days < 1:
            raise ValidationError("Extension must be at least 1 day")
        member = self.find_member(member_id)
        loan = self._active_loan_of(member, isbn)
        if loan.is_overdue(self.today()):
            raise StateError("Cannot extend an overdue loan")

        extended = Loan(
            member_id=loan.member_id,
            isbn=loan.isbn,
            loan_date=loan.loan_date,
            due_date=loan.due_date + timedelta(days=days),
        )
        extended.link(member, loan.book or self.find_book(loan.isbn))
        member.replace_loan(loan, extended)
        self._replace_active(loan, extended)
        logger.info("Loan of '%s' extended to %s", loan.isbn, extended.due_date.isoformat())
        return extended

    # === Plans and Fees ===

    @_synchronized
    def upgrade_member_plan(self, member_id: int, plan: PlanType | str) -> bool:
        target = _parse_plan(plan)
        return self.find_member(member_id).upgrade_plan(target, self.today())

    @_synchronized
    def change_member_plan(self, member_id: int, plan: PlanType | str) -> bool:
        target = _parse_plan(plan)
        return self.find_member(member_id).change_plan(target, self.today())

    @_synchronized
    def renew_member_plan(self, member_id: int) -> bool:
        return self.find_member(member_id).membership_plan.renew(self.today())

    @_synchronized
    def pay_member_fees(self, member_id: int, amount: float) -> float:
        """Apply a payment; returns the change due."""
        return self.find_member(member_id).pay_fees(amount)

    def member_overdue_fees(self, member_id: int) -> FeeSummary:
        member = self.find_member(member_id)
        today = self.today()
        return FeeSummary(
            member_id=member.id,
            accumulated=member.accumulated_fees,
            current_overdue=member.current_overdue_fees(today),
            total=member.total_overdue_fees(today),
        )

    # === Searches ===

    def find_books_by_title(self, query: str) -> list[Book]:
        needle = (query or "").strip().lower()
        return [book for book in self._books.values() if needle in book.title.lower()]

    def find_books_by_author(self, query: str) -> list[Book]:
        needle = (query or "").strip().lower()
        return [book for book in self._books.values() if needle in book.author.lower()]

    def find_books_by_theme(self, theme: BookTheme | str) -> list[Book]:
        """Books of exactly this theme; an unknown theme matches nothing."""
        try:
            wanted = BookTheme(theme.strip().upper() if isinstance(theme, str) else theme)
        except ValueError:
            return []
        return [book for book in self._books.values() if book.theme == wanted]

    def find_members_by_name(self, query: str) -> list[Member]:
        needle = (query or "").strip().lower()
        return [member for member in self._members.values() if needle in member.full_name.lower()]

    # === Listings ===

    def books(self) -> list[Book]:
        return list(self._books.values())

    def available_books(self) -> list[Book]:
        return [book for book in self._books.values() if book.is_available]

    def members(self) -> list[Member]:
        return list(self._members.values())

    def staff(self) -> list[Staff]:
        return list(self._staff.values())

    def active_loans(self) -> list[Loan]:
        return list(self._active_loans)

    def loan_history(self) -> list[Loan]:
        return list(self._loan_history)

    def active_loans_for(self, member_id: int) -> list[Loan]:
        return self.find_member(member_id).active_loans

    def loan_history_for(self, member_id: int) -> list[Loan]:
        return self.find_member(member_id).loan_history

    def overdue_loans(self, today: date | None = None) -> list[Loan]:
        today = today or self.today()
        return [loan for loan in self._active_loans if loan.is_overdue(today)]

    # === Statistics ===

    @property
    def book_count(self) -> int:
        return len(self._books)

    @property
    def member_count(self) -> int:
        return len(self._members)

    @property
    def staff_count(self) -> int:
        return len(self._staff)

    @property
    def active_loan_count(self) -> int:
        return len(self._active_loans)

    def inventory_summary(self) -> InventorySummary:
        total = sum(book.total_copies for book in self._books.values())
        available = sum(book.available_copies for book in self._books.values())
        return InventorySummary(
            titles=len(self._books),
            total_copies=total,
            available_copies=available,
            borrowed_copies=total - available,
        )

    def member_statistics(self) -> MemberStatistics:
        today = self.today()
        members = list(self._members.values())
        return MemberStatistics(
            total_members=len(members),
            members_with_loans=sum(1 for m in members if m.active_loan_count > 0),
            members_with_overdue=sum(1 for m in members if m.has_overdue_books(today)),
            total_staff=len(self._staff),
            outstanding_fees=round(sum(m.accumulated_fees for m in members), 2),
        )

    # === Sessions ===

    @property
    def current_user(self) -> Principal | None:
        return self._current_user

    @property
    def is_member_logged_in(self) -> bool:
        return isinstance(self._current_user, Member)

    @property
    def is_staff_logged_in(self) -> bool:
        return isinstance(self._current_user, Staff)

    def _open_session(
        self, email: str, password: str, kind: type[P]
    ) -> tuple[P, list[str]]:
        try:
            principal = self.find_principal_by_email(email)
        except NotFoundError as e:
            raise AuthError("Invalid email or password") from e
        if not isinstance(principal, kind):
            raise AuthError(f"This account is not a {kind.__name__.lower()} account")

        now = datetime.combine(self.today(), datetime.now().time())
        notices = principal.login(email, password, now=now)
        if self._current_user is not None and self._current_user is not principal:
            self._current_user.logout()
        self._current_user = principal
        return principal, notices

    @_synchronized
    def authenticate(self, email: str, password: str) -> tuple[Principal, list[str]]:
        """
        Log in whichever account owns ``email``.

        Any principal already logged in is logged out first. A failed login
        leaves the current session as it was.

        Returns:
            The principal and its login notices

        Raises:
            AuthError: If no account matches or the password is wrong
            DuplicateKeyError: If the email is shared by several accounts
        """
        return self._open_session(email, password, Principal)

    @_synchronized
    def login_member(self, email: str, password: str) -> tuple[Member, list[str]]:
        return self._open_session(email, password, Member)

    @_synchronized
    def login_staff(self, email: str, password: str) -> tuple[Staff, list[str]]:
        return self._open_session(email, password, Staff)

    @_synchronized
    def logout(self) -> bool:
        if self._current_user is None:
            logger.warning("No user is logged in")
            return False
        self._current_user.logout()
        self._current_user = None
        return True

    # === Restore ===

    @_synchronized
    def restore(
        self,
        books: Iterable[Book],
        members: Iterable[Member],
        staff: Iterable[Staff],
        active_loans: Iterable[Loan],
        loan_history: Iterable[Loan],
    ) -> None:
        """
        Replace every collection with loaded state.

        Loans are re-linked to their member and book; loans that point at a
        missing member or book, or whose returned flag does not match the
        collection they came from, are dropped with a warning. Book copy
        counts are then reconciled with the surviving active loans. Staff are
        attached to this Library and the id allocator is advanced past every
        loaded id.
        """
        books_by_isbn = {book.isbn: book for book in books}
        members_by_id = {member.id: member for member in members}
        staff_by_id: dict[int, Staff] = {}
        for person in staff:
            if person.id in members_by_id:
                logger.warning("Skipping staff %d: id already used by a member", person.id)
                continue
            staff_by_id[person.id] = person

        def relink(loans: Iterable[Loan], returned: bool) -> list[Loan]:
            kept = []
            for loan in loans:
                member = members_by_id.get(loan.member_id)
                book = books_by_isbn.get(loan.isbn)
                if member is None or book is None or loan.returned != returned:
                    logger.warning(
                        "Skipping loan of %s for member %d: unresolved reference",
                        loan.isbn,
                        loan.member_id,
                    )
                    continue
                loan.link(member, book)
                kept.append(loan)
            return kept

        restored_active = relink(active_loans, returned=False)
        restored_history = relink(loan_history, returned=True)

        # Copies off the shelf must match the active loans exactly
        on_loan: dict[str, int] = {}
        for loan in restored_active:
            on_loan[loan.isbn] = on_loan.get(loan.isbn, 0) + 1
        for book in books_by_isbn.values():
            borrowed = on_loan.get(book.isbn, 0)
            if book.checked_out_copies == borrowed:
                continue
            logger.warning(
                "Book %s had %d/%d copies available but %d active loan(s); adjusting",
                book.isbn,
                book.available_copies,
                book.total_copies,
                borrowed,
            )
            book.total_copies = max(book.total_copies, borrowed)
            book.available_copies = book.total_copies - borrowed
        for member in members_by_id.values():
            member.load_loans(
                (loan for loan in restored_active if loan.member_id == member.id),
                (loan for loan in restored_history if loan.member_id == member.id),
            )

        if self._current_user is not None:
            self._current_user.logout()
        self._current_user = None

        for person in self._staff.values():
            person.attach_library(None)
        for person in staff_by_id.values():
            person.attach_library(self)

        self._books = books_by_isbn
        self._members = members_by_id
        self._staff = staff_by_id
        self._active_loans = restored_active
        self._loan_history = restored_history

        for principal_id in (*members_by_id, *staff_by_id):
            self._ids.reserve_through(principal_id)
        logger.info(
            "Restored %d books, %d members, %d staff, %d active loans",
            len(books_by_isbn),
            len(members_by_id),
            len(staff_by_id),
            len(restored_active),
        )
