"""
Library engine models.

This package contains the Pydantic models for every entity the Library
registry owns:

- Book: Inventory titles with copy counts
- MembershipPlan: Tier benefits, dates and transitions
- Loan: One member borrowing one copy of one book
- Member, Staff: Account holders, sharing the abstract Principal base
"""

from .book import Book, BookTheme
from .loan import Loan
from .membership import MembershipPlan, PlanPolicy, PlanType, plan_comparison_table
from .principal import Member, Principal, Role, Staff

__all__ = [
    "Book",
    "BookTheme",
    "Loan",
    "Member",
    "MembershipPlan",
    "PlanPolicy",
    "PlanType",
    "Principal",
    "Role",
    "Staff",
    "plan_comparison_table",
]
