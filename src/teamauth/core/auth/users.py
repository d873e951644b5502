"""User resource operations: read, update, delete and list."""

from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, EmailStr
from pydantic import ValidationError as PydanticValidationError

from teamauth.config import AuthSettings
from teamauth.core.auth.directory import Directory
from teamauth.core.auth.onboarding import field_errors
from teamauth.core.auth.outcomes import AuthOutcome, OutcomeStatus
from teamauth.core.auth.password import hash_password, verify_password
from teamauth.core.auth.types import RESERVED_PROPERTIES, AuthSource, User
from teamauth.core.exceptions import ConflictError

if TYPE_CHECKING:
    from teamauth.core.rbac.policy import AccessChecker

logger = structlog.get_logger()


class UserUpdate(BaseModel):
    """Fields a user may change on their own record."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr | None = None
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None
    password: str | None = None
    current_password: str | None = None


class UserService:
    """Access-checked operations on user records."""

    def __init__(
        self,
        directory: Directory,
        policy: "AccessChecker",
        settings: AuthSettings,
    ) -> None:
        self._directory = directory
        self._policy = policy
        self._settings = settings

    async def get_user(self, actor_id: str, user_id: str) -> AuthOutcome:
        """Fetch a user the actor may see."""
        if not await self._policy.can_access(actor_id, user_id):
            return AuthOutcome.unauthorized()

        user = await self._directory.get_user(user_id)
        if user is None:
            return AuthOutcome.not_found()
        return AuthOutcome(OutcomeStatus.OK, user=user)

    async def update_user(
        self,
        actor_id: str,
        user_id: str,
        changes: dict[str, Any],
    ) -> AuthOutcome:
        """Apply changes to a user record.

        Reserved properties are dropped silently. Changing the password
        of a user who already has one requires ``current_password``, and
        only the user themselves may set a first password. Oauth users
        have no password.

        Args:
            actor_id: User making the change.
            user_id: User being changed.
            changes: Requested field values.

        Returns:
            ok with the updated user, or invalid, conflict, unauthorized
            or not_found.
        """
        if not await self._policy.can_access(actor_id, user_id):
            return AuthOutcome.unauthorized()

        user = await self._directory.get_user(user_id)
        if user is None:
            return AuthOutcome.not_found()

        requested = {k: v for k, v in changes.items() if k not in RESERVED_PROPERTIES}
        try:
            update = UserUpdate(**requested)
        except PydanticValidationError as e:
            return AuthOutcome.invalid("Invalid user update", field_errors(e))

        fields = update.model_dump(exclude_unset=True, exclude={"password", "current_password"})

        if update.password is not None:
            outcome = self._check_password_change(actor_id, user, update)
            if outcome is not None:
                return outcome
            fields["password_hash"] = hash_password(update.password)

        if update.email is not None and update.email.lower() != user.email.lower():
            holder = await self._directory.get_user_by_email(update.email)
            if holder is not None and holder.id != user.id:
                return AuthOutcome(OutcomeStatus.CONFLICT, message="Email already in use")

        if not fields:
            return AuthOutcome(OutcomeStatus.OK, user=user)

        logger.info("updating_user", user_id=user.id, fields=sorted(fields))
        try:
            updated = await self._directory.update_user(user.id, **fields)
        except ConflictError:
            logger.warning("email_taken_concurrently", user_id=user.id)
            return AuthOutcome(OutcomeStatus.CONFLICT, message="Email already in use")
        if updated is None:
            return AuthOutcome.not_found()
        return AuthOutcome(OutcomeStatus.OK, user=updated)

    async def delete_user(self, actor_id: str, user_id: str) -> AuthOutcome:
        """Delete a user the actor may access."""
        if not await self._policy.can_access(actor_id, user_id):
            return AuthOutcome.unauthorized()

        if not await self._directory.delete_user(user_id):
            return AuthOutcome.not_found()

        logger.info("user_deleted", user_id=user_id, actor_id=actor_id)
        return AuthOutcome(OutcomeStatus.NO_CONTENT)

    async def list_users(self, actor_id: str) -> list[User]:
        """Users the actor shares a team with, including the actor."""
        return await self._policy.accessible_users(actor_id)

    def _check_password_change(
        self,
        actor_id: str,
        user: User,
        update: UserUpdate,
    ) -> AuthOutcome | None:
        if user.auth_source == AuthSource.OAUTH:
            return AuthOutcome.invalid(
                "Password not allowed", {"password": "not allowed for oauth users"}
            )

        password = update.password or ""
        if len(password) < self._settings.min_password_length:
            return AuthOutcome.invalid(
                "Password too short",
                {"password": f"at least {self._settings.min_password_length} characters"},
            )

        if user.password_hash is not None and not verify_password(
            update.current_password or "", user.password_hash
        ):
            logger.warning("password_change_denied", user_id=user.id)
            return AuthOutcome.unauthorized("Current password is incorrect")

        if user.password_hash is None and actor_id != user.id:
            logger.warning("first_password_denied", user_id=user.id, actor_id=actor_id)
            return AuthOutcome.unauthorized("Only the user can set their first password")
        return None
