"""Directory adapters."""

from teamauth.adapters.directory.memory import InMemoryDirectory
from teamauth.adapters.directory.postgres import PostgresDirectory

__all__ = ["InMemoryDirectory", "PostgresDirectory"]
