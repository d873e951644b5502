"""Outcome values returned across service boundaries."""

from dataclasses import dataclass, field
from enum import Enum

from teamauth.core.auth.types import User
from teamauth.core.exceptions import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    TeamAuthError,
    ValidationError,
)


class OutcomeStatus(str, Enum):
    """Result kinds a caller maps onto its own responses."""

    OK = "ok"
    CREATED = "created"
    NO_CONTENT = "no_content"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    UNAUTHORIZED = "unauthorized"
    FAILED = "failed"


SUCCESS_STATUSES = frozenset({OutcomeStatus.OK, OutcomeStatus.CREATED, OutcomeStatus.NO_CONTENT})


@dataclass
class AuthOutcome:
    """Result of an onboarding, login, refresh or user operation."""

    status: OutcomeStatus
    user: User | None = None
    token: str | None = None
    message: str | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """Whether the operation succeeded."""
        return self.status in SUCCESS_STATUSES

    def raise_for_status(self) -> "AuthOutcome":
        """Raise the matching TeamAuthError unless the outcome is a success.

        For callers that would rather handle failures as exceptions.

        Returns:
            The outcome itself, so calls can be chained.

        Raises:
            ValidationError: For invalid input, carrying the field errors.
            ConflictError: For a duplicate account or email.
            NotFoundError: For an unknown user or token.
            AccessDeniedError: For denied access or bad credentials.
            TeamAuthError: For any other failure.
        """
        if self.ok:
            return self

        message = self.message or self.status.value
        if self.status == OutcomeStatus.INVALID:
            raise ValidationError(message, self.errors)
        if self.status == OutcomeStatus.CONFLICT:
            raise ConflictError(message)
        if self.status == OutcomeStatus.NOT_FOUND:
            raise NotFoundError()
        if self.status == OutcomeStatus.UNAUTHORIZED:
            raise AccessDeniedError(message)
        raise TeamAuthError(message)

    @classmethod
    def not_found(cls) -> "AuthOutcome":
        """Uniform not-found result."""
        return cls(OutcomeStatus.NOT_FOUND, message="not found")

    @classmethod
    def unauthorized(cls, message: str = "not authorized") -> "AuthOutcome":
        """Uniform denial result."""
        return cls(OutcomeStatus.UNAUTHORIZED, message=message)

    @classmethod
    def invalid(cls, message: str, errors: dict[str, str] | None = None) -> "AuthOutcome":
        """Validation failure result."""
        return cls(OutcomeStatus.INVALID, message=message, errors=errors or {})
