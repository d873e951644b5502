"""Core domain - Auth services and policies behind Protocol seams."""

from .exceptions import (
    AccessDeniedError,
    ConflictError,
    ExchangeFailure,
    ExternalExchangeError,
    NotFoundError,
    ReconciliationInconsistency,
    TeamAuthError,
    TokenError,
    ValidationError,
)

__all__ = [
    "AccessDeniedError",
    "TeamAuthError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "TokenError",
    "ExchangeFailure",
    "ExternalExchangeError",
    "ReconciliationInconsistency",
]
