"""Auth domain types and services."""

from teamauth.core.auth.claims import EmailClaims, OAuthClaims
from teamauth.core.auth.directory import Directory
from teamauth.core.auth.identity import ExternalProfile, IdentityAssertion, IdentityProvider
from teamauth.core.auth.jwt import TokenService
from teamauth.core.auth.notifications import Notifier, NotificationType, TokenNotification
from teamauth.core.auth.onboarding import OnboardingService
from teamauth.core.auth.outcomes import AuthOutcome, OutcomeStatus
from teamauth.core.auth.password import hash_password, verify_password
from teamauth.core.auth.reconciler import AccessKind, IdentityReconciler, ReconcileOutcome
from teamauth.core.auth.service import AuthService
from teamauth.core.auth.types import (
    AuthSource,
    BotCredential,
    Team,
    ThirdPartyOrg,
    User,
    UserStatus,
)
from teamauth.core.auth.users import UserService, UserUpdate

__all__ = [
    "User",
    "Team",
    "ThirdPartyOrg",
    "BotCredential",
    "AuthSource",
    "UserStatus",
    "EmailClaims",
    "OAuthClaims",
    "hash_password",
    "verify_password",
    "Directory",
    "TokenService",
    "ExternalProfile",
    "IdentityAssertion",
    "IdentityProvider",
    "Notifier",
    "NotificationType",
    "TokenNotification",
    "AuthOutcome",
    "OutcomeStatus",
    "AuthService",
    "OnboardingService",
    "IdentityReconciler",
    "ReconcileOutcome",
    "AccessKind",
    "UserService",
    "UserUpdate",
]
