"""
Principal models for the library engine.

A Principal is anyone who can hold an account: library members who borrow
books and staff who run the library. Both kinds share identity, contact
details, credentials and a membership plan; the plan they start with comes
from the ``default_plan()`` hook each kind overrides.

Credentials are optional. A principal created without an email and
password simply cannot log in. Passwords are accepted as plaintext on
construction (``password=...``) and only ever stored as a digest.

The session flag and last-login stamp live on the object but are excluded
from serialization, so sessions do not survive a restart.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    PrivateAttr,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError

from ..auth import hash_password, validate_password, verify_password
from ..errors import AuthError, ValidationError
from .loan import Loan
from .membership import MembershipPlan, PlanType

if TYPE_CHECKING:
    from ..library import Library

logger = logging.getLogger(__name__)

MIN_AGE = 1
MAX_AGE = 120

_email_adapter = TypeAdapter(EmailStr)


class Role(str, Enum):
    """Account kind; fixed by the principal's class."""

    MEMBER = "MEMBER"
    LIBRARIAN = "LIBRARIAN"


class Principal(BaseModel, ABC):
    """
    Base class for every account holder.

    Subclasses fix the ``role`` default and implement ``default_plan()``
    and ``on_login()``.
    """

    id: int = Field(
        ...,
        description="Unique principal id, shared across members and staff",
        ge=1,
        examples=[101, 102],
    )

    name: str = Field(
        ...,
        description="Given name",
        min_length=1,
        examples=["Alice"],
    )

    surname: str = Field(
        ...,
        description="Family name",
        min_length=1,
        examples=["Smith"],
    )

    age: int = Field(
        ...,
        description="Age in years",
        ge=MIN_AGE,
        le=MAX_AGE,
    )

    email: EmailStr | None = Field(
        default=None,
        description="Login email; None for accounts without credentials",
    )

    password_hash: str | None = Field(
        default=None,
        description="SHA-256 hex digest of the password",
        repr=False,
    )

    role: Role = Field(
        default=Role.MEMBER,
        description="Account kind",
    )

    membership_plan: MembershipPlan | None = Field(
        default=None,
        description="Current plan; assigned from default_plan() when omitted",
    )

    is_logged_in: bool = Field(default=False, exclude=True)
    last_login: datetime | None = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def hash_plaintext_password(cls, data: Any) -> Any:
        """Accept ``password=`` on construction and keep only its digest."""
        if isinstance(data, dict) and "password" in data:
            data = dict(data)
            password = data.pop("password")
            if password is not None:
                data["password_hash"] = hash_password(validate_password(password))
        return data

    @field_validator("role")
    @classmethod
    def role_matches_kind(cls, v: Role) -> Role:
        expected = cls.model_fields["role"].default
        if v != expected:
            raise ValueError(f"{cls.__name__} accounts must have role {expected.value}")
        return v

    @model_validator(mode="after")
    def assign_default_plan(self) -> "Principal":
        if self.membership_plan is None:
            self.membership_plan = MembershipPlan.for_tier(self.default_plan())
        return self

    @abstractmethod
    def default_plan(self) -> PlanType:
        """Tier a new principal of this kind starts on."""

    def on_login(self, today: date | None = None) -> list[str]:
        """Notices to show after a successful login."""
        return []

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}"

    @property
    def has_credentials(self) -> bool:
        return self.email is not None and self.password_hash is not None

    @property
    def max_loans(self) -> int:
        return self.membership_plan.max_loans

    @property
    def loan_period_days(self) -> int:
        return self.membership_plan.loan_period_days

    @property
    def daily_overdue_fee(self) -> float:
        return self.membership_plan.daily_overdue_fee

    def can_borrow_more(self, current_loans: int) -> bool:
        return current_loans < self.max_loans

    # Authentication

    def login(self, email: str | None, password: str | None, now: datetime | None = None) -> list[str]:
        """
        Open a session for this principal.

        Args:
            email: Login email, compared case-insensitively
            password: Plaintext password
            now: Login timestamp (defaults to the current time)

        Returns:
            Notices produced by ``on_login()``

        Raises:
            AuthError: If the account has no credentials or they do not match
        """
        if not self.has_credentials:
            raise AuthError("No credentials set for this account")
        if (
            email is None
            or email.strip().lower() != self.email.lower()
            or not verify_password(password, self.password_hash)
        ):
            raise AuthError("Invalid email or password")

        self.is_logged_in = True
        self.last_login = now or datetime.now()
        logger.info("%s logged in", self.full_name)

        try:
            return self.on_login(today=self.last_login.date())
        except Exception:
            logger.exception("Login notices failed for principal %d", self.id)
            return []

    def logout(self) -> bool:
        if not self.is_logged_in:
            logger.warning("%s is not logged in", self.full_name)
            return False
        self.is_logged_in = False
        logger.info("%s logged out", self.full_name)
        return True

    def set_credentials(self, email: str, password: str) -> None:
        """Set email and password together; nothing changes if either is invalid."""
        try:
            normalized = _email_adapter.validate_python(email)
        except PydanticValidationError as e:
            raise ValidationError("Invalid email address format") from e
        password_hash = hash_password(validate_password(password))
        self.email = normalized
        self.password_hash = password_hash

    def set_password(self, password: str) -> None:
        self.password_hash = hash_password(validate_password(password))

    def set_age(self, age: int) -> None:
        if not MIN_AGE <= age <= MAX_AGE:
            raise ValidationError(f"Age must be between {MIN_AGE} and {MAX_AGE}")
        self.age = age

    def __str__(self) -> str:
        return (
            f"{type(self).__name__}{{id={self.id}, name='{self.full_name}', "
            f"role={self.role.value}, plan={self.membership_plan.name}}}"
        )

    model_config = ConfigDict(str_strip_whitespace=True)


class Member(Principal):
    """
    A library member who borrows books.

    Members start on the BASIC plan and can move between the public tiers,
    never onto STAFF. Active loans and loan history are kept in memory and
    rebuilt by the Library from the persisted loan collections.
    """

    role: Role = Field(default=Role.MEMBER, description="Account kind")

    accumulated_fees: float = Field(
        default=0.0,
        description="Overdue fees charged on returned loans and not yet paid",
        ge=0.0,
    )

    _active_loans: list[Loan] = PrivateAttr(default_factory=list)
    _loan_history: list[Loan] = PrivateAttr(default_factory=list)

    def default_plan(self) -> PlanType:
        return PlanType.BASIC

    # Plan management

    def upgrade_plan(self, target: PlanType, today: date | None = None) -> bool:
        if target == PlanType.STAFF:
            logger.info("Members cannot upgrade to the Staff plan")
            return False
        changed = self.membership_plan.upgrade(target, today)
        if changed:
            logger.info("%s upgraded to %s", self.full_name, target.display_name)
        return changed

    def change_plan(self, target: PlanType, today: date | None = None) -> bool:
        if target == PlanType.STAFF:
            logger.info("Members cannot have the Staff plan")
            return False
        self.membership_plan.change(target, today)
        return True

    # Loans

    @property
    def active_loans(self) -> list[Loan]:
        return list(self._active_loans)

    @property
    def loan_history(self) -> list[Loan]:
        return list(self._loan_history)

    @property
    def active_loan_count(self) -> int:
        return len(self._active_loans)

    def add_loan(self, loan: Loan) -> None:
        self._active_loans.append(loan)

    def archive_loan(self, loan: Loan) -> None:
        """Move a returned loan from the active set to the history."""
        self._active_loans.remove(loan)
        self._loan_history.append(loan)

    def replace_loan(self, old: Loan, new: Loan) -> None:
        self._active_loans[self._active_loans.index(old)] = new

    def load_loans(self, active: Iterable[Loan], history: Iterable[Loan]) -> None:
        """Replace both loan collections wholesale (used when restoring state)."""
        self._active_loans = list(active)
        self._loan_history = list(history)

    def find_active_loan(self, isbn: str) -> Loan | None:
        for loan in self._active_loans:
            if loan.isbn == isbn:
                return loan
        return None

    def has_overdue_books(self, today: date | None = None) -> bool:
        return any(loan.is_overdue(today) for loan in self._active_loans)

    def overdue_book_count(self, today: date | None = None) -> int:
        return sum(1 for loan in self._active_loans if loan.is_overdue(today))

    # Fees

    def current_overdue_fees(self, today: date | None = None) -> float:
        """Fees accruing on loans that are still out, at the current plan rate."""
        rate = self.daily_overdue_fee
        return round(sum(loan.calculate_overdue_fee(rate, today) for loan in self._active_loans), 2)

    def total_overdue_fees(self, today: date | None = None) -> float:
        return round(self.accumulated_fees + self.current_overdue_fees(today), 2)

    def add_fee(self, amount: float) -> None:
        if amount < 0:
            raise ValidationError("Fee cannot be negative")
        self.accumulated_fees = round(self.accumulated_fees + amount, 2)

    def pay_fees(self, amount: float) -> float:
        """
        Pay down the accumulated balance.

        Returns:
            Change due back; non-zero only when ``amount`` exceeds the balance

        Raises:
            ValidationError: If amount is not positive
        """
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        if amount >= self.accumulated_fees:
            change = round(amount - self.accumulated_fees, 2)
            logger.info("Payment of $%.2f accepted, all fees cleared", self.accumulated_fees)
            self.accumulated_fees = 0.0
            return change
        self.accumulated_fees = round(self.accumulated_fees - amount, 2)
        logger.info("Payment of $%.2f accepted, remaining $%.2f", amount, self.accumulated_fees)
        return 0.0

    def on_login(self, today: date | None = None) -> list[str]:
        notices = [f"You have {self.active_loan_count} active loan(s)."]
        if self.has_overdue_books(today):
            notices.append("Warning: You have overdue books! Please return them soon.")
        if self.membership_plan.is_expiring_soon(today):
            days = self.membership_plan.days_until_expiry(today)
            notices.append(f"Your membership expires in {days} days. Consider renewing!")
        return notices

    def __str__(self) -> str:
        return (
            f"Member{{id={self.id}, name='{self.full_name}', plan={self.membership_plan.name}, "
            f"activeLoans={self.active_loan_count}/{self.max_loans}, fees={self.accumulated_fees:.2f}}}"
        )


class Staff(Principal):
    """Library staff. Always on the STAFF plan; linked to the Library it works for."""

    role: Role = Field(default=Role.LIBRARIAN, description="Account kind")

    employee_id: str | None = Field(
        default=None,
        description="Employee number",
        examples=["EMP001"],
    )

    _library: "Library | None" = PrivateAttr(default=None)

    def default_plan(self) -> PlanType:
        return PlanType.STAFF

    @property
    def library(self) -> "Library | None":
        return self._library

    def attach_library(self, library: "Library | None") -> None:
        self._library = library

    def on_login(self, today: date | None = None) -> list[str]:
        notices = ["Staff access granted."]
        library = self._library
        if library is None:
            return notices
        notices.append(
            f"Library status: {library.book_count} books, {library.member_count} members, "
            f"{library.active_loan_count} active loans"
        )
        overdue = library.overdue_loans(today)
        if overdue:
            notices.append(f"Alert: {len(overdue)} overdue loan(s) in the system.")
        return notices

    def __str__(self) -> str:
        return (
            f"Staff{{id={self.id}, name='{self.full_name}', employeeId={self.employee_id}, "
            f"plan={self.membership_plan.name}}}"
        )
