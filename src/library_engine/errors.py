"""
Error taxonomy for the library engine.

Every Registry operation either returns a result or raises one of these
typed failures, so a presentation layer can render the message without
inspecting internal state. None of them are retryable: the engine has no
network or external service, so every failure is a local, synchronous
condition.
"""


class LibraryError(Exception):
    """Base exception for library operations."""


class ValidationError(LibraryError, ValueError):
    """Raised for malformed input: empty names, bad copy counts, bad credentials shape."""


class DuplicateKeyError(LibraryError):
    """Raised when inserting an entity whose identity already exists."""


class NotFoundError(LibraryError, LookupError):
    """Raised when a lookup by id, ISBN or email misses."""


class StateError(LibraryError):
    """Raised when an operation would violate a lifecycle invariant."""


class LimitError(LibraryError):
    """Raised when a plan-derived quantity would be exceeded."""


class AuthError(LibraryError):
    """Raised on credential mismatch."""


class PersistenceError(LibraryError):
    """Raised when a collection cannot be written to disk."""
