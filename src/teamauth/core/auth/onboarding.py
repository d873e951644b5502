"""Email onboarding, invitations and password reset.

Sign-up with an email address lands in one of four states:

- unknown email, unknown domain: pending user, verification sent (created)
- unknown email, domain claimed by a team: pending user in that team (no content)
- pending user from an invitation: invitation resent (no content)
- active user: conflict, nothing written

One-time tokens gate the pending to active transition and password
changes. Redemption clears the token, so each token works exactly once.
An invited user has no password yet and accepts the invitation by
choosing one, so an active email user always has a password hash.
"""

from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, EmailStr
from pydantic import ValidationError as PydanticValidationError

from teamauth.config import AuthSettings
from teamauth.core.auth.directory import Directory
from teamauth.core.auth.jwt import TokenService
from teamauth.core.auth.notifications import (
    Notifier,
    NotificationType,
    TokenNotification,
    dispatch,
)
from teamauth.core.auth.outcomes import AuthOutcome, OutcomeStatus
from teamauth.core.auth.password import hash_password
from teamauth.core.auth.tokens import generate_one_time_token, is_one_time_token, unique_id
from teamauth.core.auth.types import AuthSource, Team, User, UserStatus
from teamauth.core.exceptions import ConflictError, ValidationError

logger = structlog.get_logger()

ACCOUNT_EXISTS = "Account already exists"


class NewEmailAccount(BaseModel):
    """Sign-up request for an email/password account."""

    email: EmailStr
    password: str
    first_name: str
    last_name: str


class EmailAddress(BaseModel):
    """A bare email address to validate."""

    email: EmailStr


def field_errors(error: PydanticValidationError) -> dict[str, str]:
    """Flatten pydantic errors into field name to message."""
    return {".".join(str(part) for part in err["loc"]): err["msg"] for err in error.errors()}


class OnboardingService:
    """Drives email sign-up, verification, invitations and password resets."""

    def __init__(
        self,
        directory: Directory,
        tokens: TokenService,
        notifier: Notifier,
        settings: AuthSettings,
    ) -> None:
        """Initialize the onboarding service.

        Args:
            directory: Directory holding users and teams.
            tokens: Token service for signing users in after verification.
            notifier: Outbound notification channel.
            settings: Password policy.
        """
        self._directory = directory
        self._tokens = tokens
        self._notifier = notifier
        self._settings = settings

    async def create_email_account(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> AuthOutcome:
        """Sign up with email and password.

        No token is issued: the new user stays pending until they redeem
        the verification token.

        Returns:
            created, no_content, conflict or invalid.
        """
        try:
            account = self._validate_account(email, password, first_name, last_name)
        except ValidationError as e:
            return AuthOutcome.invalid(str(e), e.errors)

        existing = await self._directory.get_user_by_email(account.email)
        if existing is not None:
            if existing.is_active:
                logger.info("email_account_conflict", user_id=existing.id)
                return AuthOutcome(OutcomeStatus.CONFLICT, message=ACCOUNT_EXISTS)
            return await self._resend_invitation(existing)

        domain = account.email.rsplit("@", 1)[-1].lower()
        domain_teams = await self._directory.list_teams_by_email_domain(domain)

        logger.info("creating_email_user", email=account.email, domain_match=bool(domain_teams))
        try:
            user = await self._directory.create_user(
                User(
                    id=unique_id(),
                    auth_source=AuthSource.EMAIL,
                    email=account.email,
                    name=f"{account.first_name} {account.last_name}".strip(),
                    first_name=account.first_name,
                    last_name=account.last_name,
                    status=UserStatus.PENDING,
                    password_hash=hash_password(account.password),
                    one_time_token=generate_one_time_token(),
                    teams=[team.id for team in domain_teams],
                )
            )
        except ConflictError:
            # Another request created this email since the lookup above
            logger.warning("email_account_created_concurrently", email=account.email)
            return AuthOutcome(OutcomeStatus.CONFLICT, message=ACCOUNT_EXISTS)
        await self._notify(NotificationType.VERIFY, user)

        status = OutcomeStatus.NO_CONTENT if domain_teams else OutcomeStatus.CREATED
        return AuthOutcome(status, user=user)

    async def invite_user(
        self,
        actor_id: str,
        team_id: str,
        email: str,
        first_name: str = "",
        last_name: str = "",
    ) -> AuthOutcome:
        """Invite an email address to a team the actor administers.

        Returns:
            created for a new pending user, no_content when an open invitation
            is resent, ok when an active user simply gains the team.
        """
        team = await self._directory.get_team(team_id)
        if team is None or actor_id not in team.admins:
            logger.warning("invite_denied", actor_id=actor_id, team_id=team_id)
            return AuthOutcome.unauthorized()

        try:
            address = EmailAddress(email=email)
        except PydanticValidationError as e:
            return AuthOutcome.invalid("Invalid email address", field_errors(e))

        existing = await self._directory.get_user_by_email(address.email)
        if existing is not None:
            user = await self._directory.add_team_to_user(existing.id, team.id) or existing
            if user.is_active:
                logger.info("invite_existing_user_added", user_id=user.id, team_id=team.id)
                return AuthOutcome(OutcomeStatus.OK, user=user)
            return await self._resend_invitation(user)

        logger.info("creating_invited_user", email=address.email, team_id=team.id)
        try:
            user = await self._directory.create_user(
                User(
                    id=unique_id(),
                    auth_source=AuthSource.EMAIL,
                    email=address.email,
                    name=f"{first_name} {last_name}".strip(),
                    first_name=first_name,
                    last_name=last_name,
                    status=UserStatus.PENDING,
                    one_time_token=generate_one_time_token(),
                    teams=[team.id],
                )
            )
        except ConflictError:
            logger.warning("invited_user_created_concurrently", email=address.email)
            return AuthOutcome(OutcomeStatus.CONFLICT, message=ACCOUNT_EXISTS)
        await self._notify(NotificationType.INVITE, user)
        return AuthOutcome(OutcomeStatus.CREATED, user=user)

    async def verify_email(self, token: str, now: datetime | None = None) -> AuthOutcome:
        """Redeem a verification token and sign the user in.

        Invited users without a password must use ``accept_invite``; their
        token is left unredeemed.

        Returns:
            ok with a token, invalid when a password is still needed, or a
            uniform not_found.
        """
        holder = await self._token_holder(token)
        if holder is None:
            return AuthOutcome.not_found()
        if holder.password_hash is None:
            logger.info("verification_needs_password", user_id=holder.id)
            return AuthOutcome.invalid("Password required", {"password": "required"})

        user = await self._redeem(token)
        if user is None:
            return AuthOutcome.not_found()

        logger.info("email_verified", user_id=user.id)
        signed = await self._tokens.issue(user, AuthSource.EMAIL, now or datetime.now(UTC))
        return AuthOutcome(OutcomeStatus.OK, user=user, token=signed)

    async def accept_invite(
        self,
        token: str,
        password: str,
        now: datetime | None = None,
    ) -> AuthOutcome:
        """Redeem an invitation token, choosing a first password.

        Returns:
            ok with a token, invalid for a short password, or not_found.
        """
        return await self._set_password_with_token(token, password, now, "invitation_accepted")

    async def request_password_reset(self, email: str) -> AuthOutcome:
        """Send a password reset token.

        For security, this always succeeds (doesn't reveal if email exists).
        """
        try:
            address = EmailAddress(email=email)
        except PydanticValidationError as e:
            return AuthOutcome.invalid("Invalid email address", field_errors(e))

        user = await self._directory.get_user_by_email(address.email)
        if user is None:
            logger.warning("password_reset_requested_unknown_email", email=address.email)
            return AuthOutcome(OutcomeStatus.NO_CONTENT)

        if user.auth_source == AuthSource.OAUTH:
            logger.info("password_reset_requested_oauth_user", user_id=user.id)
            return AuthOutcome(OutcomeStatus.NO_CONTENT)

        if not user.is_active:
            logger.info("password_reset_requested_pending_user", user_id=user.id)
            return AuthOutcome(OutcomeStatus.NO_CONTENT)

        logger.info("adding_reset_token", user_id=user.id)
        user = await self._directory.update_user(
            user.id, one_time_token=generate_one_time_token()
        ) or user
        await self._notify(NotificationType.RESET, user)
        return AuthOutcome(OutcomeStatus.NO_CONTENT)

    async def reset_password(
        self,
        token: str,
        new_password: str,
        now: datetime | None = None,
    ) -> AuthOutcome:
        """Set a new password using a one-time token.

        Returns:
            ok with a fresh token, invalid for a short password or an oauth
            user, or not_found.
        """
        return await self._set_password_with_token(
            token, new_password, now, "password_reset_successful"
        )

    async def _set_password_with_token(
        self,
        token: str,
        password: str,
        now: datetime | None,
        event: str,
    ) -> AuthOutcome:
        if len(password) < self._settings.min_password_length:
            return AuthOutcome.invalid(
                "Password too short",
                {"password": f"at least {self._settings.min_password_length} characters"},
            )

        holder = await self._token_holder(token)
        if holder is None:
            return AuthOutcome.not_found()
        if holder.auth_source == AuthSource.OAUTH:
            logger.warning("password_rejected_for_oauth_user", user_id=holder.id)
            return AuthOutcome.invalid(
                "Password not allowed", {"password": "not allowed for oauth users"}
            )

        user = await self._redeem(token, password_hash=hash_password(password))
        if user is None:
            return AuthOutcome.not_found()

        logger.info(event, user_id=user.id)
        signed = await self._tokens.issue(user, AuthSource.EMAIL, now or datetime.now(UTC))
        return AuthOutcome(OutcomeStatus.OK, user=user, token=signed)

    async def _token_holder(self, token: str) -> User | None:
        if not is_one_time_token(token):
            logger.warning("one_time_token_rejected", reason="format")
            return None

        user = await self._directory.get_user_by_token(token)
        if user is None:
            logger.warning("one_time_token_rejected", reason="unknown")
        return user

    async def _redeem(self, token: str, password_hash: str | None = None) -> User | None:
        user = await self._directory.redeem_one_time_token(
            token, activate=True, password_hash=password_hash
        )
        if user is None:
            # Redeemed by a concurrent request since the holder lookup
            logger.warning("one_time_token_rejected", reason="redeemed")
            return None

        if not user.teams:
            user = await self._create_first_team(user)
        return user

    async def _create_first_team(self, user: User) -> User:
        """Give a newly active user with no team one of their own."""
        team = await self._directory.create_team(
            Team(id=unique_id(), name=user.email_domain, admins=[user.id])
        )
        logger.info("created_first_team", user_id=user.id, team_id=team.id)
        return await self._directory.add_team_to_user(user.id, team.id) or user

    async def _resend_invitation(self, user: User) -> AuthOutcome:
        token = user.one_time_token
        if token is None:
            token = generate_one_time_token()
            user = await self._directory.update_user(user.id, one_time_token=token) or user

        # Self sign-ups already chose a password and only need to verify
        kind = NotificationType.VERIFY if user.password_hash else NotificationType.INVITE
        logger.info("resending_invitation", user_id=user.id, type=kind.value)
        await self._notify(kind, user)
        return AuthOutcome(OutcomeStatus.NO_CONTENT, user=user)

    async def _notify(self, kind: NotificationType, user: User) -> None:
        if user.one_time_token is None:
            logger.error("notification_without_token", user_id=user.id, type=kind.value)
            return
        await dispatch(self._notifier, TokenNotification(kind, user.email, user.one_time_token))

    def _validate_account(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
    ) -> NewEmailAccount:
        try:
            account = NewEmailAccount(
                email=email,
                password=password,
                first_name=first_name,
                last_name=last_name,
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid account details", field_errors(e)) from None

        if len(account.password) < self._settings.min_password_length:
            raise ValidationError(
                "Invalid account details",
                {"password": f"at least {self._settings.min_password_length} characters"},
            )
        return account
