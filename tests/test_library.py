"""
Tests for the Library registry.

These tests verify that the registry correctly:
1. Adds, finds and removes books and principals
2. Issues and returns loans, checking rules in a fixed order
3. Charges overdue fees at the member's plan rate when the book comes back
4. Keeps copy counts and loan collections consistent
5. Manages login sessions
"""

import logging
from datetime import timedelta

import pytest
from conftest import (
    ALGORITHMS,
    ALICE_EMAIL,
    ALICE_PASSWORD,
    BOB_EMAIL,
    BRAVE,
    DA_VINCI,
    ORWELL,
    PRIDE,
    SAPIENS,
    SARAH_EMAIL,
    SARAH_PASSWORD,
    START_DATE,
)

from library_engine.errors import (
    AuthError,
    DuplicateKeyError,
    LimitError,
    NotFoundError,
    StateError,
    ValidationError,
)
from library_engine.library import Library
from library_engine.models.book import Book, BookTheme
from library_engine.models.loan import Loan
from library_engine.models.membership import PlanType
from library_engine.models.principal import Member, Staff


def assert_consistent(library: Library) -> None:
    """Copy counts and loan collections agree with each other."""
    for book in library.books():
        on_loan = sum(1 for loan in library.active_loans() if loan.isbn == book.isbn)
        assert 0 <= book.available_copies <= book.total_copies
        assert book.checked_out_copies == on_loan
    for member in library.members():
        assert member.active_loan_count <= member.max_loans
        assert all(not loan.returned for loan in member.active_loans)
        assert all(loan.returned and loan.return_date for loan in member.loan_history)
    registry_active = {id(loan) for loan in library.active_loans()}
    member_active = {id(loan) for m in library.members() for loan in m.active_loans}
    assert registry_active == member_active


class TestBooks:
    """Test suite for inventory operations."""

    def test_create_and_find_book(self, library):
        book = library.create_book(PRIDE, "Pride and Prejudice", "Jane Austen", "fiction", 5)
        assert library.find_book(PRIDE) is book
        assert library.find_book(f"  {PRIDE} ") is book
        assert book.theme == BookTheme.FICTION
        assert library.book_count == 1

    def test_duplicate_isbn_rejected(self, library):
        library.create_book(PRIDE, "Pride and Prejudice", total_copies=1)
        with pytest.raises(DuplicateKeyError):
            library.add_book(Book(isbn=PRIDE, title="Another", total_copies=2))
        assert library.find_book(PRIDE).title == "Pride and Prejudice"

    def test_create_book_translates_validation_errors(self, library):
        with pytest.raises(ValidationError):
            library.create_book("", "No ISBN")
        with pytest.raises(ValidationError):
            library.create_book(PRIDE, "Negative", total_copies=-1)
        assert library.book_count == 0

    def test_find_missing_book(self, library):
        with pytest.raises(NotFoundError):
            library.find_book("missing")

    def test_remove_book(self, populated_library):
        removed = populated_library.remove_book(ORWELL)
        assert removed.isbn == ORWELL
        with pytest.raises(NotFoundError):
            populated_library.find_book(ORWELL)
        with pytest.raises(NotFoundError):
            populated_library.remove_book(ORWELL)

    def test_remove_book_on_loan_fails(self, populated_library, alice):
        populated_library.issue_loan(alice.id, ORWELL)
        with pytest.raises(StateError):
            populated_library.remove_book(ORWELL)
        assert populated_library.find_book(ORWELL)

    def test_update_book(self, populated_library):
        book = populated_library.update_book(ORWELL, title="Nineteen Eighty-Four", theme="politics")
        assert book.title == "Nineteen Eighty-Four"
        assert book.author == "George Orwell"
        assert book.theme == BookTheme.POLITICS

        with pytest.raises(ValidationError):
            populated_library.update_book(ORWELL, title=" ", author="Someone")
        assert book.author == "George Orwell"

        with pytest.raises(ValidationError):
            populated_library.update_book(ORWELL, title="1984", author="Orwell | Blair")
        assert book.title == "Nineteen Eighty-Four"
        assert book.author == "George Orwell"

    def test_add_and_remove_copies(self, populated_library):
        assert populated_library.add_copies(BRAVE, 2).total_copies == 3
        assert populated_library.remove_copies(BRAVE, 1).available_copies == 2
        with pytest.raises(ValidationError):
            populated_library.remove_copies(BRAVE, 5)

    def test_searches(self, populated_library):
        titles = [book.title for book in populated_library.find_books_by_title("the")]
        assert titles == ["The Da Vinci Code"]
        assert len(populated_library.find_books_by_author("AUSTEN")) == 1
        assert len(populated_library.find_books_by_theme("FICTION")) == 4
        assert len(populated_library.find_books_by_theme(BookTheme.TECHNOLOGY)) == 1
        assert populated_library.find_books_by_theme("POETRY") == []
        assert populated_library.find_books_by_title("zzz") == []

    def test_listings_are_new_lists(self, populated_library):
        books = populated_library.books()
        books.clear()
        assert populated_library.book_count == 6

    def test_available_books(self, populated_library, alice):
        populated_library.issue_loan(alice.id, BRAVE)
        available = {book.isbn for book in populated_library.available_books()}
        assert BRAVE not in available
        assert len(available) == 5


class TestPrincipals:
    """Test suite for member and staff accounts."""

    def test_ids_start_after_reserved_base(self, populated_library, alice, bob, sarah):
        assert (alice.id, bob.id, sarah.id) == (101, 102, 103)
        assert populated_library.register_member("Dan", "Moss", 40).id == 104

    def test_register_member_uses_clock_for_plan_start(self, populated_library, alice):
        assert alice.membership_plan.start_date == START_DATE
        assert alice.membership_plan.plan_type == PlanType.BASIC

    def test_register_member_validation(self, library):
        with pytest.raises(ValidationError):
            library.register_member("Dan", "Moss", 0)
        with pytest.raises(ValidationError):
            library.register_member("Dan", "Moss", 30, "not-an-email", "secret123")
        assert library.member_count == 0
        assert library.register_member("Dan", "Moss", 30).id == 101

    def test_principal_ids_unique_across_kinds(self, populated_library):
        with pytest.raises(DuplicateKeyError):
            populated_library.add_member(Member(id=103, name="Eve", surname="Stone", age=30))
        with pytest.raises(DuplicateKeyError):
            populated_library.add_staff(Staff(id=101, name="Eve", surname="Stone", age=30))

    def test_add_member_advances_ids(self, library):
        library.add_member(Member(id=150, name="Eve", surname="Stone", age=30))
        assert library.register_member("Dan", "Moss", 40).id == 151

    def test_removed_ids_are_never_reused(self, library):
        member = library.register_member("Dan", "Moss", 30)
        assert member.id == 101
        library.remove_member(member.id)

        with pytest.raises(DuplicateKeyError):
            library.add_member(Member(id=101, name="Eve", surname="Stone", age=30))
        with pytest.raises(DuplicateKeyError):
            library.add_staff(Staff(id=101, name="Eve", surname="Stone", age=30))
        with pytest.raises(DuplicateKeyError):
            library.add_member(Member(id=50, name="Eve", surname="Stone", age=30))  # Reserved

        assert library.member_count == 0
        assert library.register_member("Eve", "Stone", 30).id == 102

    def test_staff_is_linked_to_library(self, populated_library, sarah):
        assert sarah.library is populated_library
        removed = populated_library.remove_staff(sarah.id)
        assert removed.library is None
        with pytest.raises(NotFoundError):
            populated_library.find_staff(sarah.id)

    def test_remove_member(self, populated_library, bob):
        populated_library.remove_member(bob.id)
        with pytest.raises(NotFoundError):
            populated_library.find_member(bob.id)

    def test_remove_member_with_loans_fails(self, populated_library, alice):
        populated_library.issue_loan(alice.id, PRIDE)
        with pytest.raises(StateError):
            populated_library.remove_member(alice.id)
        assert populated_library.find_member(alice.id) is alice

    def test_find_members_by_name(self, populated_library):
        assert [m.name for m in populated_library.find_members_by_name("smi")] == ["Alice"]
        assert len(populated_library.find_members_by_name("")) == 2

    def test_find_principal_by_email(self, populated_library, sarah):
        assert populated_library.find_principal_by_email(SARAH_EMAIL.upper()) is sarah
        with pytest.raises(NotFoundError):
            populated_library.find_principal_by_email("nobody@library.org")

    def test_shared_email_is_ambiguous(self, populated_library):
        populated_library.register_member("Alias", "Smith", 30, ALICE_EMAIL, "another1")
        with pytest.raises(DuplicateKeyError):
            populated_library.find_principal_by_email(ALICE_EMAIL)


class TestIssueLoan:
    """Test suite for lending books."""

    def test_issue_loan(self, populated_library, alice):
        loan = populated_library.issue_loan(alice.id, PRIDE)

        assert loan.loan_date == START_DATE
        assert loan.due_date == START_DATE + timedelta(days=14)
        assert loan.member is alice
        assert loan.book is populated_library.find_book(PRIDE)
        assert populated_library.find_book(PRIDE).available_copies == 4
        assert alice.active_loans == [loan]
        assert populated_library.active_loans() == [loan]
        assert_consistent(populated_library)

    def test_due_date_follows_plan_period(self, populated_library, bob):
        loan = populated_library.issue_loan(bob.id, PRIDE)
        assert loan.due_date == START_DATE + timedelta(days=21)

    def test_missing_member_or_book(self, populated_library, alice):
        with pytest.raises(NotFoundError):
            populated_library.issue_loan(999, PRIDE)
        with pytest.raises(NotFoundError):
            populated_library.issue_loan(alice.id, "missing")

    def test_unavailable_book(self, populated_library, alice, bob):
        populated_library.issue_loan(bob.id, BRAVE)
        with pytest.raises(StateError):
            populated_library.issue_loan(alice.id, BRAVE)
        assert alice.active_loan_count == 0

    def test_loan_limit(self, populated_library, alice):
        for isbn in (PRIDE, ALGORITHMS, SAPIENS):
            populated_library.issue_loan(alice.id, isbn)
        with pytest.raises(LimitError):
            populated_library.issue_loan(alice.id, DA_VINCI)
        assert populated_library.find_book(DA_VINCI).available_copies == 6
        assert_consistent(populated_library)

    def test_overdue_member_cannot_borrow(self, populated_library, clock, alice):
        populated_library.issue_loan(alice.id, PRIDE)
        clock.advance(15)
        with pytest.raises(StateError):
            populated_library.issue_loan(alice.id, ALGORITHMS)

    def test_same_book_twice(self, populated_library, alice):
        populated_library.issue_loan(alice.id, PRIDE)
        with pytest.raises(StateError):
            populated_library.issue_loan(alice.id, PRIDE)
        assert populated_library.find_book(PRIDE).available_copies == 4

    def test_availability_checked_before_limit(self, populated_library, alice, bob):
        """An unavailable book reports StateError even for a member at their limit."""
        populated_library.issue_loan(bob.id, BRAVE)
        for isbn in (PRIDE, ALGORITHMS, SAPIENS):
            populated_library.issue_loan(alice.id, isbn)
        with pytest.raises(StateError):
            populated_library.issue_loan(alice.id, BRAVE)

    def test_limit_checked_before_overdue(self, populated_library, clock, alice):
        """A member at their limit with overdue books gets LimitError."""
        for isbn in (PRIDE, ALGORITHMS, SAPIENS):
            populated_library.issue_loan(alice.id, isbn)
        clock.advance(30)
        with pytest.raises(LimitError):
            populated_library.issue_loan(alice.id, DA_VINCI)

    def test_overdue_checked_before_duplicate(self, populated_library, clock, alice):
        """Asking for a book already held while overdue reports the overdue state."""
        populated_library.issue_loan(alice.id, PRIDE)
        clock.advance(20)
        with pytest.raises(StateError, match="overdue"):
            populated_library.issue_loan(alice.id, PRIDE)

    def test_staff_cannot_borrow_as_member(self, populated_library, sarah):
        with pytest.raises(NotFoundError):
            populated_library.issue_loan(sarah.id, PRIDE)


class TestReturnLoan:
    """Test suite for returning books and fee accrual."""

    def test_on_time_return(self, populated_library, clock, alice):
        loan = populated_library.issue_loan(alice.id, PRIDE)
        clock.advance(10)

        returned, fee = populated_library.return_loan(alice.id, PRIDE)

        assert returned is loan
        assert fee == 0.0
        assert loan.returned is True
        assert loan.return_date == START_DATE + timedelta(days=10)
        assert alice.active_loans == []
        assert alice.loan_history == [loan]
        assert populated_library.loan_history() == [loan]
        assert populated_library.active_loans() == []
        assert populated_library.find_book(PRIDE).available_copies == 5
        assert alice.accumulated_fees == 0.0
        assert_consistent(populated_library)

    def test_failed_return_changes_nothing(self, populated_library, alice):
        loan = populated_library.issue_loan(alice.id, PRIDE)
        book = populated_library.find_book(PRIDE)
        book.return_copy()  # Shelved outside the registry

        with pytest.raises(StateError):
            populated_library.return_loan(alice.id, PRIDE)

        assert loan.returned is False
        assert loan.return_date is None
        assert alice.active_loans == [loan]
        assert alice.loan_history == []
        assert populated_library.active_loans() == [loan]
        assert populated_library.loan_history() == []
        assert book.available_copies == book.total_copies
        assert alice.accumulated_fees == 0.0

    def test_late_return_charges_fee(self, populated_library, clock, alice):
        populated_library.issue_loan(alice.id, PRIDE)
        clock.advance(14 + 5)

        _, fee = populated_library.return_loan(alice.id, PRIDE)

        assert fee == 2.50  # 5 days * 0.50
        assert alice.accumulated_fees == 2.50

    def test_fee_uses_plan_at_return_time(self, populated_library, clock, alice):
        """Upgrading before returning lowers the rate for the whole overdue period."""
        populated_library.issue_loan(alice.id, PRIDE)
        clock.advance(14 + 10)
        populated_library.upgrade_member_plan(alice.id, PlanType.VIP)

        _, fee = populated_library.return_loan(alice.id, PRIDE)

        assert fee == 1.00  # 10 days * 0.10

    def test_return_without_loan(self, populated_library, alice):
        with pytest.raises(NotFoundError):
            populated_library.return_loan(alice.id, PRIDE)
        with pytest.raises(NotFoundError):
            populated_library.return_loan(999, PRIDE)

    def test_return_twice_fails(self, populated_library, alice):
        populated_library.issue_loan(alice.id, PRIDE)
        populated_library.return_loan(alice.id, PRIDE)
        with pytest.raises(NotFoundError):
            populated_library.return_loan(alice.id, PRIDE)
        assert populated_library.find_book(PRIDE).available_copies == 5

    def test_borrow_again_after_return(self, populated_library, clock, alice):
        populated_library.issue_loan(alice.id, BRAVE)
        clock.advance(3)
        populated_library.return_loan(alice.id, BRAVE)
        loan = populated_library.issue_loan(alice.id, BRAVE)
        assert loan.loan_date == START_DATE + timedelta(days=3)
        assert_consistent(populated_library)

    def test_overdue_loans_and_fee_summary(self, populated_library, clock, alice, bob):
        populated_library.issue_loan(alice.id, PRIDE)
        populated_library.issue_loan(bob.id, ALGORITHMS)
        clock.advance(16)

        overdue = populated_library.overdue_loans()
        assert [loan.member_id for loan in overdue] == [alice.id]

        summary = populated_library.member_overdue_fees(alice.id)
        assert summary.current_overdue == 1.00
        assert summary.accumulated == 0.0
        assert summary.total == 1.00

    def test_many_cycles_stay_consistent(self, populated_library, clock, alice, bob):
        for day in range(6):
            populated_library.issue_loan(alice.id, PRIDE)
            populated_library.issue_loan(bob.id, ORWELL)
            clock.advance(day + 1)
            populated_library.return_loan(alice.id, PRIDE)
            assert_consistent(populated_library)
            populated_library.return_loan(bob.id, ORWELL)
        assert len(alice.loan_history) == 6
        assert populated_library.find_book(PRIDE).available_copies == 5
        assert_consistent(populated_library)


class TestExtendLoan:
    """Test suite for loan extensions."""

    def test_extend_loan(self, populated_library, alice):
        loan = populated_library.issue_loan(alice.id, PRIDE)
        extended = populated_library.extend_loan(alice.id, PRIDE, 7)

        assert extended.due_date == loan.due_date + timedelta(days=7)
        assert extended == loan  # Same identity
        assert alice.active_loans[0] is extended
        assert populated_library.active_loans()[0] is extended
        assert extended.book is populated_library.find_book(PRIDE)
        assert_consistent(populated_library)

    def test_extend_validation(self, populated_library, clock, alice):
        populated_library.issue_loan(alice.id, PRIDE)
        with pytest.raises(ValidationError):
            populated_library.extend_loan(alice.id, PRIDE, 0)
        with pytest.raises(NotFoundError):
            populated_library.extend_loan(alice.id, ALGORITHMS, 3)
        clock.advance(20)
        with pytest.raises(StateError):
            populated_library.extend_loan(alice.id, PRIDE, 3)


class TestPlansAndFees:
    """Test suite for plan management through the registry."""

    def test_upgrade_member_plan(self, populated_library, alice):
        assert populated_library.upgrade_member_plan(alice.id, "vip") is True
        assert alice.max_loans == 10
        assert populated_library.upgrade_member_plan(alice.id, "basic") is False
        assert populated_library.upgrade_member_plan(alice.id, PlanType.STAFF) is False

    def test_unknown_plan(self, populated_library, alice):
        with pytest.raises(ValidationError):
            populated_library.upgrade_member_plan(alice.id, "GOLD")

    def test_change_member_plan_lowers_limit(self, populated_library, bob):
        for isbn in (PRIDE, ALGORITHMS, SAPIENS, DA_VINCI):
            populated_library.issue_loan(bob.id, isbn)
        assert populated_library.change_member_plan(bob.id, PlanType.BASIC) is True
        with pytest.raises(LimitError):
            populated_library.issue_loan(bob.id, ORWELL)

    def test_renew_member_plan(self, populated_library, clock, alice):
        clock.advance(200)
        assert populated_library.renew_member_plan(alice.id) is True
        assert alice.membership_plan.start_date == clock.today

    def test_pay_member_fees(self, populated_library, clock, alice):
        populated_library.issue_loan(alice.id, PRIDE)
        clock.advance(20)
        populated_library.return_loan(alice.id, PRIDE)  # 6 days late: 3.00

        assert populated_library.pay_member_fees(alice.id, 1.0) == 0.0
        assert alice.accumulated_fees == 2.0
        assert populated_library.pay_member_fees(alice.id, 5.0) == 3.0
        assert alice.accumulated_fees == 0.0
        with pytest.raises(ValidationError):
            populated_library.pay_member_fees(alice.id, 0)


class TestStatistics:
    """Test suite for summary counts."""

    def test_inventory_summary(self, populated_library, alice):
        populated_library.issue_loan(alice.id, PRIDE)
        summary = populated_library.inventory_summary()
        assert summary.titles == 6
        assert summary.total_copies == 23
        assert summary.borrowed_copies == 1
        assert summary.available_copies == 22

    def test_member_statistics(self, populated_library, clock, alice, bob):
        populated_library.issue_loan(alice.id, PRIDE)
        populated_library.issue_loan(bob.id, ALGORITHMS)
        clock.advance(15)
        stats = populated_library.member_statistics()
        assert stats.total_members == 2
        assert stats.members_with_loans == 2
        assert stats.members_with_overdue == 1
        assert stats.total_staff == 1


class TestSessions:
    """Test suite for login sessions."""

    def test_login_member(self, populated_library, alice):
        member, notices = populated_library.login_member(ALICE_EMAIL, ALICE_PASSWORD)
        assert member is alice
        assert notices == ["You have 0 active loan(s)."]
        assert populated_library.current_user is alice
        assert populated_library.is_member_logged_in is True
        assert populated_library.is_staff_logged_in is False
        assert alice.last_login.date() == START_DATE

    def test_login_staff_shows_library_status(self, populated_library, clock, alice, sarah):
        populated_library.issue_loan(alice.id, PRIDE)
        clock.advance(20)

        staff, notices = populated_library.login_staff(SARAH_EMAIL, SARAH_PASSWORD)

        assert staff is sarah
        assert notices[0] == "Staff access granted."
        assert notices[1] == "Library status: 6 books, 2 members, 1 active loans"
        assert notices[2] == "Alert: 1 overdue loan(s) in the system."
        assert populated_library.is_staff_logged_in is True

    def test_wrong_account_kind(self, populated_library, alice, sarah):
        with pytest.raises(AuthError):
            populated_library.login_staff(ALICE_EMAIL, ALICE_PASSWORD)
        assert populated_library.current_user is None
        assert alice.is_logged_in is False

        with pytest.raises(AuthError):
            populated_library.login_member(SARAH_EMAIL, SARAH_PASSWORD)
        assert sarah.is_logged_in is False

    def test_failed_login_keeps_current_session(self, populated_library, alice, sarah):
        populated_library.login_member(ALICE_EMAIL, ALICE_PASSWORD)

        with pytest.raises(AuthError):
            populated_library.login_member(SARAH_EMAIL, SARAH_PASSWORD)
        with pytest.raises(AuthError):
            populated_library.login_staff(SARAH_EMAIL, "wrong-password")

        assert populated_library.current_user is alice
        assert alice.is_logged_in is True
        assert sarah.is_logged_in is False
        assert populated_library.is_member_logged_in is True

    def test_bad_credentials(self, populated_library):
        with pytest.raises(AuthError):
            populated_library.authenticate(ALICE_EMAIL, "wrong")
        with pytest.raises(AuthError):
            populated_library.authenticate("nobody@library.org", ALICE_PASSWORD)
        assert populated_library.current_user is None

    def test_new_login_replaces_session(self, populated_library, alice, bob):
        populated_library.login_member(ALICE_EMAIL, ALICE_PASSWORD)
        populated_library.login_member(BOB_EMAIL, "bobpass456")
        assert populated_library.current_user is bob
        assert alice.is_logged_in is False

    def test_logout(self, populated_library, alice):
        assert populated_library.logout() is False
        populated_library.login_member(ALICE_EMAIL, ALICE_PASSWORD)
        assert populated_library.logout() is True
        assert populated_library.current_user is None
        assert alice.is_logged_in is False


class TestRestore:
    """Test suite for swapping in loaded state."""

    def test_restore_relinks_and_advances_ids(self, library, clock):
        book = Book(isbn=PRIDE, title="Pride and Prejudice", total_copies=2, available_copies=1)
        member = Member(id=140, name="Alice", surname="Smith", age=28)
        staff = Staff(id=150, name="Sarah", surname="Johnson", age=35)

        active = Loan(
            member_id=140,
            isbn=PRIDE,
            loan_date=START_DATE,
            due_date=START_DATE + timedelta(days=14),
        )
        dangling = Loan(
            member_id=999,
            isbn=PRIDE,
            loan_date=START_DATE,
            due_date=START_DATE + timedelta(days=14),
        )

        library.restore([book], [member], [staff], [active, dangling], [])

        assert library.active_loans() == [active]
        assert active.member is member
        assert active.book is book
        assert member.active_loans == [active]
        assert staff.library is library
        assert library.register_member("Dan", "Moss", 40).id == 151

    def test_restore_shelves_copies_without_loans(self, library, caplog):
        book = Book(isbn=PRIDE, title="Pride and Prejudice", total_copies=2, available_copies=1)

        with caplog.at_level(logging.WARNING):
            library.restore([book], [], [], [], [])

        assert book.available_copies == 2
        assert "adjusting" in caplog.text
        assert library.remove_book(PRIDE) is book

    def test_restore_accounts_for_every_active_loan(self, library, clock):
        book = Book(isbn=PRIDE, title="Pride and Prejudice", total_copies=1, available_copies=1)
        first = Member(id=140, name="Alice", surname="Smith", age=28)
        second = Member(id=141, name="Bob", surname="Jones", age=35)
        loans = [
            Loan(
                member_id=member_id,
                isbn=PRIDE,
                loan_date=START_DATE,
                due_date=START_DATE + timedelta(days=14),
            )
            for member_id in (140, 141)
        ]

        library.restore([book], [first, second], [], loans, [])

        assert (book.available_copies, book.total_copies) == (0, 2)
        assert_consistent(library)

        library.return_loan(140, PRIDE)
        assert book.available_copies == 1
        assert_consistent(library)
