"""
Credential hashing for library principals.

Passwords are never stored or compared in plaintext. Hashing is one-way and
deterministic (the same password always yields the same digest), so a login
check is a digest comparison.
"""

import hashlib
import hmac

from .errors import ValidationError

MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    """Return the SHA-256 hex digest of ``password``."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def verify_password(password: str | None, password_hash: str | None) -> bool:
    """Check ``password`` against a stored digest in constant time."""
    if password is None or password_hash is None:
        return False
    return hmac.compare_digest(hash_password(password), password_hash)


def validate_password(password: str) -> str:
    """Enforce the minimum password shape; returns the password unchanged."""
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password
