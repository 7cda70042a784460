"""Password hashing utilities.

Learn: Uses bcrypt for password hashing. bcrypt salts automatically and
produces hashes starting with "$2b$". The work factor comes from
TECHFLOW_BCRYPT_ROUNDS (default 12, ~250ms per hash). Passwords are
truncated to 72 bytes (bcrypt's limit).
"""

import bcrypt

from techflow.config import settings


def hash_password(password: str) -> str:
    pw_bytes = password.encode("utf-8")[:72]
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(pw_bytes, salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(
            password.encode("utf-8")[:72], password_hash.encode("utf-8")
        )
    except (ValueError, TypeError):
        return False
