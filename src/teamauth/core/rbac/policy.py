"""Team-scoped access policy for user resources."""

from typing import Protocol, runtime_checkable

import structlog

from teamauth.core.auth.directory import Directory
from teamauth.core.auth.types import User

logger = structlog.get_logger()


@runtime_checkable
class AccessChecker(Protocol):
    """Protocol for user resource access checks."""

    async def can_access(self, actor_id: str, target_user_id: str) -> bool:
        """Check if the actor may read, update or delete the target user."""
        ...

    async def accessible_users(self, actor_id: str) -> list[User]:
        """Get the users the actor may enumerate."""
        ...


class AccessPolicy:
    """Service for evaluating access to user resources."""

    def __init__(self, directory: Directory) -> None:
        """Initialize the policy."""
        self._directory = directory

    async def can_access(self, actor_id: str, target_user_id: str) -> bool:
        """Check if the actor may read, update or delete a user.

        Returns True if ANY of these conditions are met:
        1. The actor is the target user
        2. The actor administers a team the target user belongs to
        """
        if actor_id == target_user_id:
            return True

        target = await self._directory.get_user(target_user_id)
        if target is None:
            return False

        admin_teams = set(await self._directory.admin_of(actor_id))
        allowed = any(team_id in admin_teams for team_id in target.teams)
        if not allowed:
            logger.info("user_access_denied", actor_id=actor_id, target_user_id=target_user_id)
        return allowed

    async def accessible_users(self, actor_id: str) -> list[User]:
        """Get users sharing at least one team with the actor, the actor included."""
        actor = await self._directory.get_user(actor_id)
        if actor is None:
            return []

        users: dict[str, User] = {actor.id: actor}
        for team_id in actor.teams:
            for user in await self._directory.list_users_by_team(team_id):
                users.setdefault(user.id, user)
        return list(users.values())

