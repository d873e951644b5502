"""JWT token creation and validation.

Tokens are signed with a shared secret (HMAC). Anyone who can verify a
token can also mint one, so the secret must stay with trusted services.
"""

from datetime import UTC, datetime
from typing import Any

import jwt
import structlog
from pydantic import ValidationError as PydanticValidationError

from teamauth.config import AuthSettings
from teamauth.core.auth.claims import EmailClaims, OAuthClaims, claims_adapter
from teamauth.core.auth.directory import Directory
from teamauth.core.auth.types import AuthSource, BotCredential, User
from teamauth.core.exceptions import DecodeError, ExpiredTokenError, SignatureError

logger = structlog.get_logger()


def to_millis(moment: datetime) -> int:
    """Convert a datetime to epoch milliseconds."""
    return int(moment.timestamp() * 1000)


class TokenService:
    """Mints, decodes and verifies signed claim sets."""

    def __init__(self, directory: Directory, settings: AuthSettings) -> None:
        """Initialize the token service.

        Args:
            directory: Directory used to re-hydrate claims at issuance.
            settings: Signing secret, algorithm and token lifetimes.
        """
        self._directory = directory
        self._settings = settings

    async def bots_for(self, user: User) -> dict[str, list[BotCredential]]:
        """Map each of the user's teams to the bots of its linked orgs.

        Teams without a linked org, and orgs without a bot, are left out.
        """
        teams = await self._directory.list_teams_by_ids(user.teams)
        org_ids = sorted({org_id for team in teams for org_id in team.org_ids})
        if not org_ids:
            return {}

        orgs = await self._directory.list_orgs_by_ids(org_ids)
        bot_by_org = {org.id: org.bot for org in orgs if org.bot is not None}

        bots: dict[str, list[BotCredential]] = {}
        for team in teams:
            team_bots = [bot_by_org[org_id] for org_id in team.org_ids if org_id in bot_by_org]
            if team_bots:
                bots[team.id] = team_bots
        return bots

    async def build_claims(
        self,
        user: User,
        auth_source: AuthSource,
        now: datetime,
        external_token: str | None = None,
    ) -> EmailClaims | OAuthClaims:
        """Build claims from the user's current directory state.

        Args:
            user: User the token is for.
            auth_source: How the user authenticated.
            now: Issuance time.
            external_token: Provider access token, required for oauth.

        Returns:
            Claims ready for signing.
        """
        admin_teams = await self._directory.admin_of(user.id)
        common: dict[str, Any] = {
            "user_id": user.id,
            "teams": list(user.teams),
            "admin_teams": admin_teams,
            "email": user.email,
            "name": user.name,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "avatar_url": user.avatar_url,
        }

        if auth_source == AuthSource.OAUTH:
            bots = await self.bots_for(user)
            ttl = self._settings.oauth_bot_token_ttl if bots else self._settings.email_token_ttl
            return OAuthClaims(
                **common,
                external_id=user.external_id or "",
                external_token=external_token or "",
                bots=bots,
                expire=to_millis(now + ttl),
            )

        return EmailClaims(**common, expire=to_millis(now + self._settings.email_token_ttl))

    async def issue(
        self,
        user: User,
        auth_source: AuthSource,
        now: datetime | None = None,
        external_token: str | None = None,
    ) -> str:
        """Create a signed token for the user.

        Args:
            user: User the token is for.
            auth_source: How the user authenticated.
            now: Issuance time, defaults to the current time.
            external_token: Provider access token, embedded for oauth users.

        Returns:
            Encoded JWT string
        """
        now = now or datetime.now(UTC)
        claims = await self.build_claims(user, auth_source, now, external_token)
        logger.debug("token_issued", user_id=user.id, auth_source=auth_source.value)
        return self.encode(claims)

    def encode(self, claims: EmailClaims | OAuthClaims) -> str:
        """Sign a claim set."""
        return jwt.encode(
            claims.model_dump(mode="json"),
            self._settings.signing_secret,
            algorithm=self._settings.algorithm,
        )

    def decode(self, token: str) -> EmailClaims | OAuthClaims:
        """Parse a token without checking its signature or expiration.

        For introspection only; never use the result to authorize anything.

        Raises:
            DecodeError: If the token is malformed or its claims are invalid.
        """
        try:
            payload = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError as e:
            raise DecodeError(f"Invalid token: {e}") from None
        return self._to_claims(payload)

    def verify(
        self,
        token: str,
        now: datetime | None = None,
        verify_expiry: bool = True,
    ) -> EmailClaims | OAuthClaims:
        """Check the signature, then the expiration.

        Args:
            token: Encoded JWT string.
            now: Time to check expiration against, defaults to the current time.
            verify_expiry: Pass False to accept a genuine but expired token.

        Returns:
            Verified claims.

        Raises:
            SignatureError: If the token was not signed with our secret.
            DecodeError: If the token or its claims are malformed.
            ExpiredTokenError: If the token has expired.
        """
        try:
            payload = jwt.decode(
                token,
                self._settings.signing_secret,
                algorithms=[self._settings.algorithm],
            )
        except jwt.InvalidSignatureError:
            raise SignatureError("Token signature is invalid") from None
        except jwt.InvalidAlgorithmError:
            raise SignatureError("Token was signed with an unexpected algorithm") from None
        except jwt.InvalidTokenError as e:
            raise DecodeError(f"Invalid token: {e}") from None

        claims = self._to_claims(payload)
        if verify_expiry and claims.is_expired(to_millis(now or datetime.now(UTC))):
            raise ExpiredTokenError("Token has expired")
        return claims

    def _to_claims(self, payload: dict[str, Any]) -> EmailClaims | OAuthClaims:
        try:
            return claims_adapter.validate_python(payload)
        except PydanticValidationError as e:
            raise DecodeError(f"Invalid claims: {e.error_count()} error(s)") from None
