"""Password hashing (bcrypt) and random password generation."""

import secrets
import string

import bcrypt as _bcrypt

from errors import ValidationError

_ALPHABET = string.ascii_letters + string.digits

# bcrypt refuses (or silently truncates) anything past 72 bytes
PASSWORD_MAX_BYTES = 72


def check_password_length(password: str) -> str:
    """Reject passwords whose UTF-8 encoding bcrypt cannot hash."""
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(
            f"Password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded"
        )
    return password


def hash_password(password: str) -> str:
    """Hash a password with bcrypt.

    Raises:
        ValidationError: the password is longer than 72 bytes.
    """
    check_password_length(password)
    return _bcrypt.hashpw(password.encode("utf-8"), _bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash. Malformed hashes never match."""
    try:
        return _bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def generate_password(length: int = 8) -> str:
    """Random alphanumeric password handed out on user creation and admin reset."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))
