"""In-memory directory for tests and local development."""

from __future__ import annotations

import asyncio
from typing import Any

from teamauth.core.auth.directory import Directory
from teamauth.core.auth.types import (
    RESERVED_PROPERTIES,
    Team,
    ThirdPartyOrg,
    User,
    UserStatus,
    utc_now,
)
from teamauth.core.exceptions import ConflictError


class InMemoryDirectory:
    """Directory backed by dicts.

    Every read returns a copy, so callers can never mutate stored records
    without going through an update operation. A single lock makes each
    operation atomic.

    Attributes:
        users: Stored users by id.
        teams: Stored teams by id.
        orgs: Stored third-party orgs by external id.
    """

    def __init__(
        self,
        users: list[User] | None = None,
        teams: list[Team] | None = None,
        orgs: list[ThirdPartyOrg] | None = None,
    ) -> None:
        """Initialize the directory, optionally seeded with records."""
        self.users: dict[str, User] = {u.id: u.model_copy(deep=True) for u in users or []}
        self.teams: dict[str, Team] = {t.id: t.model_copy(deep=True) for t in teams or []}
        self.orgs: dict[str, ThirdPartyOrg] = {o.id: o.model_copy(deep=True) for o in orgs or []}
        self._lock = asyncio.Lock()

    # User operations
    async def get_user(self, user_id: str) -> User | None:
        """Get user by ID."""
        return _copy(self.users.get(user_id))

    async def get_user_by_email(self, email: str) -> User | None:
        """Get user by email address (case-insensitive)."""
        wanted = email.lower()
        for user in self.users.values():
            if user.email.lower() == wanted:
                return _copy(user)
        return None

    async def get_user_by_token(self, token: str) -> User | None:
        """Get the user currently holding a one-time token."""
        for user in self.users.values():
            if user.one_time_token is not None and user.one_time_token == token:
                return _copy(user)
        return None

    async def create_user(self, user: User) -> User:
        """Persist a new user."""
        async with self._lock:
            if user.id in self.users:
                raise ConflictError(f"User {user.id} already exists")
            self._check_email_free(user.email, user.id)
            self.users[user.id] = user.model_copy(deep=True)
            return user.model_copy(deep=True)

    async def update_user(self, user_id: str, **fields: Any) -> User | None:
        """Merge fields into an existing user. Reserved properties are ignored."""
        async with self._lock:
            return self._update_user(user_id, fields)

    async def add_team_to_user(self, user_id: str, team_id: str) -> User | None:
        """Add a team to the user's membership set. Idempotent."""
        async with self._lock:
            user = self.users.get(user_id)
            if user is None:
                return None
            if team_id in user.teams:
                return _copy(user)
            return self._update_user(user_id, {"teams": [*user.teams, team_id]})

    async def redeem_one_time_token(
        self,
        token: str,
        activate: bool = False,
        password_hash: str | None = None,
    ) -> User | None:
        """Clear a one-time token if some user holds it."""
        async with self._lock:
            holder = next(
                (u for u in self.users.values() if u.one_time_token == token),
                None,
            )
            if holder is None:
                return None

            changes: dict[str, Any] = {"one_time_token": None}
            if activate:
                changes["status"] = UserStatus.ACTIVE
            if password_hash is not None:
                changes["password_hash"] = password_hash
            return self._update_user(holder.id, changes)

    async def delete_user(self, user_id: str) -> bool:
        """Delete a user."""
        async with self._lock:
            return self.users.pop(user_id, None) is not None

    async def list_users_by_team(self, team_id: str) -> list[User]:
        """List users who are members of a team."""
        return [u.model_copy(deep=True) for u in self.users.values() if team_id in u.teams]

    async def admin_of(self, user_id: str) -> list[str]:
        """IDs of teams that list the user as an admin."""
        return [t.id for t in self.teams.values() if user_id in t.admins]

    # Team operations
    async def get_team(self, team_id: str) -> Team | None:
        """Get team by ID."""
        return _copy(self.teams.get(team_id))

    async def list_teams_by_ids(self, team_ids: list[str]) -> list[Team]:
        """Get the teams with the given IDs, skipping unknown ones."""
        return [t.model_copy(deep=True) for tid in team_ids if (t := self.teams.get(tid))]

    async def list_teams_by_org(self, org_id: str) -> list[Team]:
        """Get all teams linked to a third-party org."""
        return [t.model_copy(deep=True) for t in self.teams.values() if org_id in t.org_ids]

    async def list_teams_by_email_domain(self, domain: str) -> list[Team]:
        """Get teams that accept sign-ups from an email domain."""
        wanted = domain.lower()
        return [
            t.model_copy(deep=True)
            for t in self.teams.values()
            if wanted in (d.lower() for d in t.email_domains)
        ]

    async def create_team(self, team: Team) -> Team:
        """Persist a new team."""
        async with self._lock:
            if team.id in self.teams:
                raise ConflictError(f"Team {team.id} already exists")
            self.teams[team.id] = team.model_copy(deep=True)
            return team.model_copy(deep=True)

    async def add_org_to_team(self, team_id: str, org_id: str) -> Team | None:
        """Link a third-party org to a team. Idempotent."""
        async with self._lock:
            team = self.teams.get(team_id)
            if team is None:
                return None
            if org_id not in team.org_ids:
                team = team.model_copy(
                    update={"org_ids": [*team.org_ids, org_id], "updated_at": utc_now()}
                )
                self.teams[team_id] = team
            return team.model_copy(deep=True)

    # Third-party org operations
    async def get_org(self, org_id: str) -> ThirdPartyOrg | None:
        """Get third-party org by its external ID."""
        return _copy(self.orgs.get(org_id))

    async def upsert_org(self, org: ThirdPartyOrg) -> ThirdPartyOrg:
        """Insert the org, or replace its name and bot credential wholesale."""
        async with self._lock:
            existing = self.orgs.get(org.id)
            if existing is not None:
                org = existing.model_copy(
                    update={
                        "name": org.name,
                        "bot_user_id": org.bot_user_id,
                        "bot_token": org.bot_token,
                        "updated_at": org.updated_at,
                    }
                )
            self.orgs[org.id] = org.model_copy(deep=True)
            return org.model_copy(deep=True)

    async def list_orgs_by_ids(self, org_ids: list[str]) -> list[ThirdPartyOrg]:
        """Get the orgs with the given IDs, skipping unknown ones."""
        return [o.model_copy(deep=True) for oid in org_ids if (o := self.orgs.get(oid))]

    def _update_user(self, user_id: str, fields: dict[str, Any]) -> User | None:
        user = self.users.get(user_id)
        if user is None:
            return None
        changes = {k: v for k, v in fields.items() if k not in RESERVED_PROPERTIES}
        if "email" in changes:
            self._check_email_free(changes["email"], user_id)
        # Validate the merged record so bad values never reach the store
        updated = User.model_validate(
            {**user.model_dump(), **changes, "updated_at": utc_now()}
        )
        self.users[user_id] = updated
        return updated.model_copy(deep=True)

    def _check_email_free(self, email: str, owner_id: str) -> None:
        wanted = email.lower()
        for user in self.users.values():
            if user.id != owner_id and user.email.lower() == wanted:
                raise ConflictError(f"Email {email} is already in use")


def _copy(record: Any) -> Any:
    return None if record is None else record.model_copy(deep=True)


# Verify we implement the protocol
_directory: Directory = InMemoryDirectory()
