from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError

passwordHasher = PasswordHasher(encoding="utf-8")


def makePassword(password: str) -> str:
    """Hash a plain-text password using Argon2."""
    return passwordHasher.hash(password)


def checkPassword(password: str, passwordHash: str) -> bool:
    """
    Verify a plain-text password against a stored Argon2 hash.

    A malformed stored hash is treated as a mismatch, so the caller reports
    invalid credentials instead of failing.
    """
    try:
        return passwordHasher.verify(passwordHash, password)
    except (VerifyMismatchError, InvalidHashError):
        return False


def rehashPassword(password: str, passwordHash: str) -> str | None:
    """
    Re-hash a verified password if the stored hash uses outdated parameters.

    Returns:
        str | None: The new hash, or None if the stored hash is current.
    """
    if passwordHasher.check_needs_rehash(passwordHash):
        return passwordHasher.hash(password)
    return None
