"""
Password hashing and credential generation helpers.
"""

import secrets
import string

import bcrypt

_TEMP_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def get_password_hash(password: str) -> str:
    """Hash a password with bcrypt (12 rounds)."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Check a plaintext password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def generate_temp_password(length: int = 12) -> str:
    """Generate a random alphanumeric temporary password."""
    return "".join(secrets.choice(_TEMP_PASSWORD_ALPHABET) for _ in range(length))
