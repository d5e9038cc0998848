"""
Membership plan model for the library engine.

A closed set of four tiers fixes every plan-derived quantity the Registry
consults: how many loans a principal may hold at once, how long each loan
runs, and how much an overdue day costs. Tier constants are pure lookup data
(``PlanType.policy``); a ``MembershipPlan`` instance adds the dates and the
active flag for one principal.

Tiers are ordered BASIC < PREMIUM < VIP < STAFF. ``upgrade`` only moves up
that order; ``change`` moves anywhere.
"""

import logging
from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger(__name__)

EXPIRY_WARNING_DAYS = 30


class PlanPolicy(BaseModel):
    """Fixed policy constants for one tier."""

    display_name: str
    monthly_fee: float = Field(..., ge=0.0)
    max_loans: int = Field(..., ge=1)
    loan_period_days: int = Field(..., ge=1)
    daily_overdue_fee: float = Field(..., ge=0.0)
    can_reserve: bool
    priority_access: bool

    model_config = ConfigDict(frozen=True)


class PlanType(str, Enum):
    """Membership tiers, declared in rank order."""

    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    VIP = "VIP"
    STAFF = "STAFF"

    @property
    def policy(self) -> PlanPolicy:
        return PLAN_POLICIES[self]

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def display_name(self) -> str:
        return self.policy.display_name


_RANKS = {plan: position for position, plan in enumerate(PlanType)}

PLAN_POLICIES: dict[PlanType, PlanPolicy] = {
    PlanType.BASIC: PlanPolicy(
        display_name="Basic Plan",
        monthly_fee=0.00,
        max_loans=3,
        loan_period_days=14,
        daily_overdue_fee=0.50,
        can_reserve=False,
        priority_access=False,
    ),
    PlanType.PREMIUM: PlanPolicy(
        display_name="Premium Plan",
        monthly_fee=9.99,
        max_loans=5,
        loan_period_days=21,
        daily_overdue_fee=0.25,
        can_reserve=True,
        priority_access=False,
    ),
    PlanType.VIP: PlanPolicy(
        display_name="VIP Plan",
        monthly_fee=19.99,
        max_loans=10,
        loan_period_days=30,
        daily_overdue_fee=0.10,
        can_reserve=True,
        priority_access=True,
    ),
    PlanType.STAFF: PlanPolicy(
        display_name="Staff Plan",
        monthly_fee=0.00,
        max_loans=20,
        loan_period_days=60,
        daily_overdue_fee=0.00,
        can_reserve=True,
        priority_access=True,
    ),
}


def _expiry_for(plan_type: PlanType, start: date) -> date | None:
    """Staff plans never expire; everything else runs one year."""
    if plan_type == PlanType.STAFF:
        return None
    try:
        return start.replace(year=start.year + 1)
    except ValueError:
        # Feb 29 start
        return start.replace(year=start.year + 1, day=28)


class MembershipPlan(BaseModel):
    """
    A principal's membership plan.

    The policy constants come from the tier; the instance tracks when the
    plan started, when it expires, and whether it has been deactivated.
    """

    plan_type: PlanType = Field(
        default=PlanType.BASIC,
        description="Membership tier",
    )

    start_date: date = Field(
        default_factory=date.today,
        description="Date the current tier took effect",
    )

    expiry_date: date | None = Field(
        default=None,
        description="Date the plan expires; None for plans that never expire",
    )

    active: bool = Field(
        default=True,
        description="Whether the plan has been deactivated",
    )

    @model_validator(mode="before")
    @classmethod
    def fill_expiry(cls, data):
        """Derive the expiry date from the tier when it is not given explicitly."""
        if isinstance(data, dict) and "expiry_date" not in data:
            plan_type = PlanType(data.get("plan_type", PlanType.BASIC))
            start = data.get("start_date") or date.today()
            if isinstance(start, str):
                start = date.fromisoformat(start)
            data = {**data, "start_date": start, "expiry_date": _expiry_for(plan_type, start)}
        return data

    @model_validator(mode="after")
    def validate_dates(self) -> "MembershipPlan":
        if self.expiry_date is not None and self.expiry_date < self.start_date:
            raise ValueError("Expiry date cannot be before start date")
        return self

    @classmethod
    def for_tier(cls, plan_type: PlanType, start: date | None = None) -> "MembershipPlan":
        start = start or date.today()
        return cls(plan_type=plan_type, start_date=start)

    # Policy lookups

    @property
    def policy(self) -> PlanPolicy:
        return self.plan_type.policy

    @property
    def name(self) -> str:
        return self.policy.display_name

    @property
    def monthly_fee(self) -> float:
        return self.policy.monthly_fee

    @property
    def max_loans(self) -> int:
        return self.policy.max_loans

    @property
    def loan_period_days(self) -> int:
        return self.policy.loan_period_days

    @property
    def daily_overdue_fee(self) -> float:
        return self.policy.daily_overdue_fee

    @property
    def can_reserve(self) -> bool:
        return self.policy.can_reserve

    @property
    def priority_access(self) -> bool:
        return self.policy.priority_access

    @property
    def annual_cost(self) -> float:
        return round(self.monthly_fee * 12, 2)

    # State

    def is_active(self, today: date | None = None) -> bool:
        """Active flag set and not past expiry (STAFF never expires)."""
        if not self.active:
            return False
        if self.expiry_date is None:
            return True
        today = today or date.today()
        return today <= self.expiry_date

    def days_until_expiry(self, today: date | None = None) -> int | None:
        """Days left on the plan; None when it never expires."""
        if self.expiry_date is None:
            return None
        today = today or date.today()
        return (self.expiry_date - today).days

    def is_expiring_soon(self, today: date | None = None) -> bool:
        days_left = self.days_until_expiry(today)
        if days_left is None:
            return False
        return 0 < days_left <= EXPIRY_WARNING_DAYS

    # Transitions

    def _switch_to(self, plan_type: PlanType, today: date | None) -> None:
        start = today or date.today()
        self.expiry_date = _expiry_for(plan_type, start)
        self.start_date = start
        self.plan_type = plan_type

    def upgrade(self, target: PlanType, today: date | None = None) -> bool:
        """
        Move to a strictly higher tier.

        Returns:
            True if the plan changed. A target that does not rank above the
            current tier is reported and refused without raising.
        """
        if target.rank <= self.plan_type.rank:
            logger.warning(
                "Cannot upgrade %s to %s: use change() to move down or sideways",
                self.plan_type.value,
                target.value,
            )
            return False
        self._switch_to(target, today)
        logger.info("Plan upgraded to %s", target.display_name)
        return True

    def change(self, target: PlanType, today: date | None = None) -> None:
        """Move to any tier, unchecked."""
        self._switch_to(target, today)
        logger.info("Plan changed to %s", target.display_name)

    def renew(self, today: date | None = None) -> bool:
        """Restart the plan year and re-activate. Staff plans need no renewal."""
        if self.plan_type == PlanType.STAFF:
            logger.info("Staff plans don't need renewal")
            return False
        self._switch_to(self.plan_type, today)
        self.active = True
        logger.info("Plan renewed until %s", self.expiry_date)
        return True

    def deactivate(self) -> None:
        self.active = False
        logger.info("Membership plan deactivated")

    def __str__(self) -> str:
        expires = self.expiry_date.isoformat() if self.expiry_date else "Never"
        return f"MembershipPlan{{type={self.name}, active={self.is_active()}, expires={expires}}}"

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "plan_type": "PREMIUM",
                "start_date": "2024-01-15",
                "expiry_date": "2025-01-15",
                "active": True,
            }
        },
    )


def plan_comparison_table() -> str:
    """Render every tier's benefits side by side."""
    tiers = list(PlanType)
    rows = [
        ("Monthly Fee", lambda p: "FREE" if p.monthly_fee == 0 else f"${p.monthly_fee:.2f}"),
        ("Max Loans", lambda p: f"{p.max_loans} books"),
        ("Loan Period", lambda p: f"{p.loan_period_days} days"),
        (
            "Overdue Fee/day",
            lambda p: "None" if p.daily_overdue_fee == 0 else f"${p.daily_overdue_fee:.2f}",
        ),
        ("Reserve Books", lambda p: "Yes" if p.can_reserve else "No"),
        ("Priority Access", lambda p: "Yes" if p.priority_access else "No"),
    ]
    header = f"{'Feature':<16} | " + " | ".join(f"{t.value.title():<9}" for t in tiers)
    lines = [header, "-" * len(header)]
    for label, render in rows:
        cells = " | ".join(f"{render(t.policy):<9}" for t in tiers)
        lines.append(f"{label:<16} | {cells}")
    return "\n".join(lines)
