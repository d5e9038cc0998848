"""
Library Engine Package.

A library-management domain engine: book inventory, members and staff,
loans, membership-tier benefits, overdue fees, and persistence of that
state across restarts.

Key Components:
- models: Pydantic models for books, plans, loans and principals
- library: The Library registry every operation goes through
- persistence: Text, binary and report formats
- config: Configuration management with pydantic-settings
- cli: The library-engine command
"""

__version__ = "0.1.0"

from .errors import (
    AuthError,
    DuplicateKeyError,
    LibraryError,
    LimitError,
    NotFoundError,
    PersistenceError,
    StateError,
    ValidationError,
)
from .library import Library

__all__ = [
    "AuthError",
    "DuplicateKeyError",
    "Library",
    "LibraryError",
    "LimitError",
    "NotFoundError",
    "PersistenceError",
    "StateError",
    "ValidationError",
    "__version__",
]
