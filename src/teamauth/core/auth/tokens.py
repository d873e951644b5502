"""Identifier and one-time token generation."""

import re
import secrets
from uuid import UUID, uuid4

UNIQUE_ID_PATTERN = re.compile(r"^[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}$")


def unique_id() -> str:
    """Generate a directory id such as ``f725-4791-80ac``."""
    hex_chars = secrets.token_hex(6)
    return "-".join(hex_chars[i : i + 4] for i in range(0, 12, 4))


def is_unique_id(value: object) -> bool:
    """Check a value is in the directory's unique-id format."""
    return isinstance(value, str) and bool(UNIQUE_ID_PATTERN.match(value))


def generate_one_time_token() -> str:
    """Generate a single-use token for verification or password reset.

    Returns:
        A random UUID4 string.
    """
    return str(uuid4())


def is_one_time_token(value: object) -> bool:
    """Check a value parses as a UUID before it is used for a lookup."""
    if not isinstance(value, str):
        return False
    try:
        return str(UUID(value)) == value.lower()
    except ValueError:
        return False
