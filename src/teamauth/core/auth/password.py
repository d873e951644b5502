"""Credential store: bcrypt password hashes for email users.

OAuth users carry no hash at all, so every check here treats a missing hash
as a failed match rather than an error.
"""

import bcrypt

# bcrypt only looks at the first 72 bytes; newer releases refuse longer input
MAX_PASSWORD_BYTES = 72
DEFAULT_ROUNDS = 12


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:MAX_PASSWORD_BYTES]


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Hash a password for storage on the user record.

    Args:
        password: Plain text password.
        rounds: bcrypt work factor.

    Returns:
        The bcrypt hash as text.
    """
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Check a password against a stored hash.

    An empty password or a user without a hash never matches.
    """
    if not plain_password or not hashed_password:
        return False
    try:
        return bcrypt.checkpw(_encode(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False
