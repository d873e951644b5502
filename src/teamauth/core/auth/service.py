"""Auth service for email login and token refresh."""

from datetime import UTC, datetime

import structlog

from teamauth.core.auth.claims import OAuthClaims
from teamauth.core.auth.directory import Directory
from teamauth.core.auth.identity import IdentityProvider
from teamauth.core.auth.jwt import TokenService
from teamauth.core.auth.outcomes import AuthOutcome, OutcomeStatus
from teamauth.core.auth.password import verify_password
from teamauth.core.auth.types import AuthSource, User
from teamauth.core.exceptions import TokenError

logger = structlog.get_logger()

INVALID_CREDENTIALS = "Invalid email or password"


class AuthService:
    """Service for authentication operations."""

    def __init__(
        self,
        directory: Directory,
        tokens: TokenService,
        provider: IdentityProvider | None = None,
    ) -> None:
        """Initialize the auth service.

        Args:
            directory: Directory for user lookups.
            tokens: Token service for issuing and verifying tokens.
            provider: Identity provider used to re-validate oauth tokens.
        """
        self._directory = directory
        self._tokens = tokens
        self._provider = provider

    async def authenticate(
        self,
        email: str,
        password: str,
        now: datetime | None = None,
    ) -> AuthOutcome:
        """Authenticate with email and password.

        Returns:
            ok with a token for an active user, no_content for a user who
            still has to verify their email, or unauthorized.
        """
        user = await self._directory.get_user_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("email_auth_failed", email=email)
            return AuthOutcome.unauthorized(INVALID_CREDENTIALS)

        if not user.is_active:
            logger.info("email_auth_pending_user", user_id=user.id)
            return AuthOutcome(OutcomeStatus.NO_CONTENT, user=user)

        logger.info("email_auth_succeeded", user_id=user.id)
        token = await self._tokens.issue(user, AuthSource.EMAIL, now or datetime.now(UTC))
        return AuthOutcome(OutcomeStatus.OK, user=user, token=token)

    async def refresh(self, token: str, now: datetime | None = None) -> AuthOutcome:
        """Exchange a genuine, possibly expired, token for a fresh one.

        Args:
            token: A token this service signed.
            now: Issuance time for the new token.

        Returns:
            ok with a new token, or unauthorized.
        """
        now = now or datetime.now(UTC)
        try:
            claims = self._tokens.verify(token, now, verify_expiry=False)
        except TokenError as e:
            logger.warning("token_refresh_rejected", error=str(e))
            return AuthOutcome.unauthorized()

        user = await self._directory.get_user(claims.user_id)
        if user is None:
            logger.warning("token_refresh_unknown_user", user_id=claims.user_id)
            return AuthOutcome.unauthorized()

        refreshed = await claims.refresh(self, user, now)
        if refreshed is None:
            return AuthOutcome.unauthorized("Could not confirm token")

        logger.info("token_refreshed", user_id=user.id, auth_source=claims.auth_source)
        return AuthOutcome(OutcomeStatus.OK, user=user, token=refreshed)

    async def reissue_email(self, user: User, now: datetime) -> str | None:
        """Issue a fresh email token from directory state."""
        return await self._tokens.issue(user, AuthSource.EMAIL, now)

    async def reissue_oauth(self, user: User, claims: OAuthClaims, now: datetime) -> str | None:
        """Re-validate the provider token, refresh the profile and re-issue."""
        if self._provider is None:
            logger.error("oauth_refresh_without_provider", user_id=user.id)
            return None

        profile = await self._provider.validate_access_token(claims.external_token)
        if profile is None:
            logger.warning("invalid_external_token", user_id=user.id)
            return None

        changes = {
            key: value
            for key, value in profile.model_dump(
                include={"name", "first_name", "last_name", "avatar_url"}
            ).items()
            if value
        }
        changes.update(owner=profile.owner, admin=profile.admin)

        logger.info("refreshing_oauth_user", user_id=user.id, external_id=claims.external_id)
        updated = await self._directory.update_user(user.id, **changes) or user
        return await self._tokens.issue(
            updated,
            AuthSource.OAUTH,
            now,
            external_token=claims.external_token,
        )
