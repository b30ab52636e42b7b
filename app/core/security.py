import hashlib
import re
import secrets
from typing import List

from passlib.context import CryptContext

from app.core.config import settings
from app.core.exceptions import WeakPassword

# Password hashing
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72
PASSWORD_SPECIAL_CHARACTERS = "@$!%*?&"


def validate_password(password: str) -> List[str]:
    """Return every policy violation for ``password`` (empty when it passes).

    The same policy applies to registration, password reset and password
    change.
    """
    errors: List[str] = []

    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        errors.append("Password is too long")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not any(char in PASSWORD_SPECIAL_CHARACTERS for char in password):
        errors.append(
            f"Password must contain at least one special character ({PASSWORD_SPECIAL_CHARACTERS})"
        )

    return errors


def ensure_strong_password(password: str) -> None:
    errors = validate_password(password)
    if errors:
        raise WeakPassword(
            message=f"Password validation failed: {', '.join(errors)}",
            errors=errors,
        )


def hash_password(password: str) -> str:
    """Hash password using bcrypt (safe wrapper)"""
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise WeakPassword(message="Password is too long")

    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify plain password against hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


def generate_reset_token() -> str:
    """High-entropy single-use secret for password reset links."""
    return secrets.token_hex(32)


def fingerprint(secret: str) -> str:
    """One-way digest used to look up secrets without storing them."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()
