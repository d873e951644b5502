"""Domain-specific exceptions.

All exceptions in the teamauth system inherit from TeamAuthError,
making it easy to catch all system errors while still being able
to handle specific error types.

Token errors are raised across the Token Service boundary because
verification failure is its contract. Every other service converts
these exceptions into outcome values at its own boundary.
"""

from __future__ import annotations

from enum import Enum


class TeamAuthError(Exception):
    """Base exception for all teamauth errors."""

    pass


class ValidationError(TeamAuthError):
    """Input was malformed: bad email, short password, missing fields.

    Raised before any Directory write takes place.

    Attributes:
        errors: Field name to problem description.
    """

    def __init__(self, message: str, errors: dict[str, str] | None = None) -> None:
        """Initialize ValidationError.

        Args:
            message: Error description.
            errors: Optional per-field error details.
        """
        super().__init__(message)
        self.errors = errors or {}


class ConflictError(TeamAuthError):
    """An active account already exists for this email."""

    pass


class NotFoundError(TeamAuthError):
    """Unknown user, team or one-time token.

    The message is deliberately uniform so callers cannot tell
    which lookup failed.
    """

    def __init__(self, message: str = "not found") -> None:
        """Initialize NotFoundError."""
        super().__init__(message)


class AccessDeniedError(TeamAuthError):
    """The actor may not act on the requested resource, or credentials were wrong."""

    pass


class TokenError(TeamAuthError):
    """Base class for signed token failures. Never retried locally."""

    pass


class DecodeError(TokenError):
    """Token could not be parsed into claims."""

    pass


class SignatureError(TokenError):
    """Token was not signed with our secret."""

    pass


class ExpiredTokenError(TokenError):
    """Token signature is valid but its expiration has passed."""

    pass


class ExchangeFailure(str, Enum):
    """Typed failures from the external code-for-identity exchange."""

    DENIED = "denied"
    NO_CODE = "no-code"
    EXCHANGE_ERROR = "exchange-error"


class ExternalExchangeError(TeamAuthError):
    """The identity provider round trip failed.

    Attributes:
        reason: Which kind of failure occurred.
        redirect: UI page the caller should return to, if the state named one.
    """

    def __init__(
        self,
        reason: ExchangeFailure,
        message: str | None = None,
        redirect: str | None = None,
    ) -> None:
        """Initialize ExternalExchangeError.

        Args:
            reason: Typed exchange failure.
            message: Optional description; defaults to the reason value.
            redirect: UI page carried in the OAuth state.
        """
        super().__init__(message or reason.value)
        self.reason = reason
        self.redirect = redirect


class ReconciliationInconsistency(TeamAuthError):
    """An org-add referenced a user or team id that does not exist."""

    pass
