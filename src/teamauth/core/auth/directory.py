"""Directory protocol for persisted users, teams and third-party orgs."""

from typing import Any, Protocol, runtime_checkable

from teamauth.core.auth.types import ThirdPartyOrg, Team, User


@runtime_checkable
class Directory(Protocol):
    """Protocol for directory storage operations.

    Implementations own all persisted entities and must be safe under
    concurrent invocation. Membership and org-link updates are set unions,
    org upserts are keyed by the external org id, and one-time token
    redemption is an atomic compare-and-clear.
    """

    # User operations
    async def get_user(self, user_id: str) -> User | None:
        """Get user by ID."""
        ...

    async def get_user_by_email(self, email: str) -> User | None:
        """Get user by email address (case-insensitive)."""
        ...

    async def get_user_by_token(self, token: str) -> User | None:
        """Get the user currently holding a one-time token."""
        ...

    async def create_user(self, user: User) -> User:
        """Persist a new user.

        Raises:
            ConflictError: If the id or the email (case-insensitive) is taken.
        """
        ...

    async def update_user(self, user_id: str, **fields: Any) -> User | None:
        """Merge fields into an existing user. Reserved properties are ignored.

        Raises:
            ConflictError: If a new email is already held by another user.
        """
        ...

    async def add_team_to_user(self, user_id: str, team_id: str) -> User | None:
        """Add a team to the user's membership set. Idempotent."""
        ...

    async def redeem_one_time_token(
        self,
        token: str,
        activate: bool = False,
        password_hash: str | None = None,
    ) -> User | None:
        """Clear a one-time token if some user holds it.

        Args:
            token: The one-time token to consume.
            activate: Also transition the holder to active.
            password_hash: Also store this hash, in the same atomic step.

        Returns:
            The updated user, or None if no user held the token.
        """
        ...

    async def delete_user(self, user_id: str) -> bool:
        """Delete a user."""
        ...

    async def list_users_by_team(self, team_id: str) -> list[User]:
        """List users who are members of a team."""
        ...

    async def admin_of(self, user_id: str) -> list[str]:
        """IDs of teams that list the user as an admin."""
        ...

    # Team operations
    async def get_team(self, team_id: str) -> Team | None:
        """Get team by ID."""
        ...

    async def list_teams_by_ids(self, team_ids: list[str]) -> list[Team]:
        """Get the teams with the given IDs, skipping unknown ones."""
        ...

    async def list_teams_by_org(self, org_id: str) -> list[Team]:
        """Get all teams linked to a third-party org."""
        ...

    async def list_teams_by_email_domain(self, domain: str) -> list[Team]:
        """Get teams that accept sign-ups from an email domain."""
        ...

    async def create_team(self, team: Team) -> Team:
        """Persist a new team."""
        ...

    async def add_org_to_team(self, team_id: str, org_id: str) -> Team | None:
        """Link a third-party org to a team. Idempotent."""
        ...

    # Third-party org operations
    async def get_org(self, org_id: str) -> ThirdPartyOrg | None:
        """Get third-party org by its external ID."""
        ...

    async def upsert_org(self, org: ThirdPartyOrg) -> ThirdPartyOrg:
        """Insert the org, or replace its name and bot credential wholesale."""
        ...

    async def list_orgs_by_ids(self, org_ids: list[str]) -> list[ThirdPartyOrg]:
        """Get the orgs with the given IDs, skipping unknown ones."""
        ...
