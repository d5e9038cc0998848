"""
Loan model for the library engine.

A Loan records one member borrowing one copy of one book. The only state
transition is ACTIVE -> RETURNED. The loan and due dates are fixed at
issue time; extending a loan replaces it with a new Loan.

Loans reference their member and book by id and ISBN. The object links
are re-established by the Library after loading and are never serialized.
"""

from datetime import date
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from ..errors import StateError, ValidationError

if TYPE_CHECKING:
    from .book import Book
    from .principal import Member


class Loan(BaseModel):
    """
    Represents a single book loan.

    Identity is the (member id, ISBN, loan date) triple.
    """

    member_id: int = Field(
        ...,
        description="ID of the borrowing member",
        examples=[101, 102],
    )

    isbn: str = Field(
        ...,
        description="ISBN of the borrowed book",
        min_length=1,
        examples=["978-0141439518"],
    )

    loan_date: date = Field(
        ...,
        description="Date the book was borrowed",
        frozen=True,
    )

    due_date: date = Field(
        ...,
        description="Date the book must be returned by",
        frozen=True,
    )

    return_date: date | None = Field(
        default=None,
        description="Date the book was actually returned",
    )

    returned: bool = Field(
        default=False,
        description="Whether the loan has been closed",
    )

    _member: "Member | None" = PrivateAttr(default=None)
    _book: "Book | None" = PrivateAttr(default=None)

    @model_validator(mode="after")
    def validate_dates(self) -> "Loan":
        """Validate date relationships."""
        if self.due_date <= self.loan_date:
            raise ValueError("Loan period must be at least 1 day")
        if self.returned and self.return_date is None:
            raise ValueError("Returned loans must carry a return date")
        if self.return_date is not None and self.return_date < self.loan_date:
            raise ValueError("Return date cannot be before loan date")
        return self

    @property
    def member(self) -> "Member | None":
        return self._member

    @property
    def book(self) -> "Book | None":
        return self._book

    def link(self, member: "Member", book: "Book") -> None:
        """Attach the live member and book this loan refers to."""
        self._member = member
        self._book = book

    @property
    def key(self) -> tuple[int, str, date]:
        return (self.member_id, self.isbn, self.loan_date)

    @property
    def loan_period_days(self) -> int:
        return (self.due_date - self.loan_date).days

    def is_overdue(self, today: date | None = None) -> bool:
        """An active loan past its due date; returned loans are never overdue."""
        if self.returned:
            return False
        today = today or date.today()
        return today > self.due_date

    def days_overdue(self, today: date | None = None) -> int:
        """
        Days past the due date.

        Measured against the return date once returned, against ``today``
        while active. Never negative.
        """
        if self.returned:
            end = self.return_date
        else:
            end = today or date.today()
        return max(0, (end - self.due_date).days)

    def days_until_due(self, today: date | None = None) -> int:
        """Days left before the due date (negative once overdue, 0 once returned)."""
        if self.returned:
            return 0
        today = today or date.today()
        return (self.due_date - today).days

    def calculate_overdue_fee(self, daily_rate: float, today: date | None = None) -> float:
        """
        Calculate the fee owed for this loan.

        Args:
            daily_rate: Fee per overdue day

        Returns:
            days overdue times the rate, rounded to cents
        """
        if daily_rate < 0:
            raise ValidationError("Daily overdue fee cannot be negative")
        return round(self.days_overdue(today) * daily_rate, 2)

    def mark_returned(self, today: date | None = None) -> None:
        """
        Close the loan.

        Only the loan itself changes; putting the copy back on the shelf is
        the Library's job.

        Raises:
            StateError: If the loan was already returned
        """
        if self.returned:
            raise StateError(f"Loan of '{self.isbn}' has already been returned")
        self.return_date = today or date.today()
        self.returned = True

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Loan):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def describe(self, today: date | None = None) -> str:
        member = (
            f"{self._member.name} {self._member.surname}" if self._member else f"#{self.member_id}"
        )
        title = self._book.title if self._book else self.isbn
        text = f"Loan{{member='{member}', book='{title}', loanDate={self.loan_date}, dueDate={self.due_date}"
        if self.returned:
            text += f", returnDate={self.return_date}, status=RETURNED"
        elif self.is_overdue(today):
            text += f", status=OVERDUE ({self.days_overdue(today)} days)"
        else:
            text += f", status=ACTIVE ({self.days_until_due(today)} days left)"
        return text + "}"

    def __str__(self) -> str:
        return self.describe()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "member_id": 101,
                "isbn": "978-0141439518",
                "loan_date": "2024-01-01",
                "due_date": "2024-01-15",
                "return_date": None,
                "returned": False,
            }
        },
    )
