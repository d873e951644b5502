"""PostgreSQL implementation of the Directory.

Schema lives in ``migrations/001_directory.sql``.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import asyncpg

from teamauth.core.auth.types import (
    RESERVED_PROPERTIES,
    AuthSource,
    Team,
    ThirdPartyOrg,
    User,
    UserStatus,
)
from teamauth.core.exceptions import ConflictError

if TYPE_CHECKING:
    from asyncpg import Connection

USER_COLUMNS = (
    "auth_source",
    "email",
    "name",
    "first_name",
    "last_name",
    "avatar_url",
    "status",
    "password_hash",
    "one_time_token",
    "teams",
    "external_id",
    "owner",
    "admin",
)


class PostgresDirectory:
    """Directory backed by PostgreSQL through an asyncpg connection."""

    def __init__(self, conn: "Connection") -> None:
        """Initialize the directory.

        Args:
            conn: asyncpg connection (or pool, which exposes the same methods).
        """
        self._conn = conn

    # User operations
    async def get_user(self, user_id: str) -> User | None:
        """Get user by ID."""
        row = await self._conn.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
        return self._row_to_user(row) if row else None

    async def get_user_by_email(self, email: str) -> User | None:
        """Get user by email address (case-insensitive)."""
        row = await self._conn.fetchrow(
            "SELECT * FROM users WHERE lower(email) = lower($1)",
            email,
        )
        return self._row_to_user(row) if row else None

    async def get_user_by_token(self, token: str) -> User | None:
        """Get the user currently holding a one-time token."""
        row = await self._conn.fetchrow("SELECT * FROM users WHERE one_time_token = $1", token)
        return self._row_to_user(row) if row else None

    async def create_user(self, user: User) -> User:
        """Persist a new user."""
        values = self._user_values(user.model_dump())
        columns = ["id", *values, "created_at", "updated_at"]
        params = [user.id, *values.values(), user.created_at, user.updated_at]
        placeholders = ", ".join(f"${i}" for i in range(1, len(params) + 1))

        try:
            row = await self._conn.fetchrow(
                f"""
                INSERT INTO users ({", ".join(columns)})
                VALUES ({placeholders})
                RETURNING *
                """,
                *params,
            )
        except asyncpg.UniqueViolationError:
            raise ConflictError(f"User {user.id} or email {user.email} already exists") from None
        assert row is not None, "INSERT RETURNING should always return a row"
        return self._row_to_user(row)

    async def update_user(self, user_id: str, **fields: Any) -> User | None:
        """Merge fields into an existing user. Reserved properties are ignored."""
        values = self._user_values(
            {k: v for k, v in fields.items() if k not in RESERVED_PROPERTIES}
        )
        if not values:
            return await self.get_user(user_id)

        updates = [f"{column} = ${i}" for i, column in enumerate(values, start=1)]
        params: list[Any] = list(values.values())

        params.append(datetime.now(UTC))
        updates.append(f"updated_at = ${len(params)}")

        params.append(user_id)
        try:
            row = await self._conn.fetchrow(
                f"""
                UPDATE users SET {", ".join(updates)}
                WHERE id = ${len(params)}
                RETURNING *
                """,
                *params,
            )
        except asyncpg.UniqueViolationError:
            raise ConflictError("Email already in use by another user") from None
        return self._row_to_user(row) if row else None

    async def add_team_to_user(self, user_id: str, team_id: str) -> User | None:
        """Add a team to the user's membership set. Idempotent."""
        row = await self._conn.fetchrow(
            """
            UPDATE users
            SET teams = array_append(teams, $2), updated_at = NOW()
            WHERE id = $1 AND NOT ($2 = ANY(teams))
            RETURNING *
            """,
            user_id,
            team_id,
        )
        if row is None:
            # Already a member, or no such user
            return await self.get_user(user_id)
        return self._row_to_user(row)

    async def redeem_one_time_token(
        self,
        token: str,
        activate: bool = False,
        password_hash: str | None = None,
    ) -> User | None:
        """Clear a one-time token if some user holds it.

        A single conditional UPDATE, so two concurrent redemptions cannot
        both succeed.
        """
        row = await self._conn.fetchrow(
            """
            UPDATE users
            SET one_time_token = NULL,
                status = CASE WHEN $2 THEN 'active' ELSE status END,
                password_hash = COALESCE($3, password_hash),
                updated_at = NOW()
            WHERE one_time_token = $1
            RETURNING *
            """,
            token,
            activate,
            password_hash,
        )
        return self._row_to_user(row) if row else None

    async def delete_user(self, user_id: str) -> bool:
        """Delete a user."""
        result: str = await self._conn.execute("DELETE FROM users WHERE id = $1", user_id)
        return result == "DELETE 1"

    async def list_users_by_team(self, team_id: str) -> list[User]:
        """List users who are members of a team."""
        rows = await self._conn.fetch(
            "SELECT * FROM users WHERE $1 = ANY(teams) ORDER BY created_at",
            team_id,
        )
        return [self._row_to_user(row) for row in rows]

    async def admin_of(self, user_id: str) -> list[str]:
        """IDs of teams that list the user as an admin."""
        rows = await self._conn.fetch(
            "SELECT id FROM teams WHERE $1 = ANY(admins) ORDER BY created_at",
            user_id,
        )
        return [row["id"] for row in rows]

    # Team operations
    async def get_team(self, team_id: str) -> Team | None:
        """Get team by ID."""
        row = await self._conn.fetchrow("SELECT * FROM teams WHERE id = $1", team_id)
        return self._row_to_team(row) if row else None

    async def list_teams_by_ids(self, team_ids: list[str]) -> list[Team]:
        """Get the teams with the given IDs, skipping unknown ones."""
        if not team_ids:
            return []
        rows = await self._conn.fetch(
            "SELECT * FROM teams WHERE id = ANY($1::text[]) ORDER BY created_at",
            team_ids,
        )
        return [self._row_to_team(row) for row in rows]

    async def list_teams_by_org(self, org_id: str) -> list[Team]:
        """Get all teams linked to a third-party org."""
        rows = await self._conn.fetch(
            "SELECT * FROM teams WHERE $1 = ANY(org_ids) ORDER BY created_at",
            org_id,
        )
        return [self._row_to_team(row) for row in rows]

    async def list_teams_by_email_domain(self, domain: str) -> list[Team]:
        """Get teams that accept sign-ups from an email domain."""
        rows = await self._conn.fetch(
            "SELECT * FROM teams WHERE lower($1) = ANY(email_domains) ORDER BY created_at",
            domain,
        )
        return [self._row_to_team(row) for row in rows]

    async def create_team(self, team: Team) -> Team:
        """Persist a new team."""
        row = await self._conn.fetchrow(
            """
            INSERT INTO teams
                (id, name, logo_url, admins, org_ids, email_domains, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING *
            """,
            team.id,
            team.name,
            team.logo_url,
            team.admins,
            team.org_ids,
            [domain.lower() for domain in team.email_domains],
            team.created_at,
            team.updated_at,
        )
        assert row is not None, "INSERT RETURNING should always return a row"
        return self._row_to_team(row)

    async def add_org_to_team(self, team_id: str, org_id: str) -> Team | None:
        """Link a third-party org to a team. Idempotent."""
        row = await self._conn.fetchrow(
            """
            UPDATE teams
            SET org_ids = array_append(org_ids, $2), updated_at = NOW()
            WHERE id = $1 AND NOT ($2 = ANY(org_ids))
            RETURNING *
            """,
            team_id,
            org_id,
        )
        if row is None:
            return await self.get_team(team_id)
        return self._row_to_team(row)

    # Third-party org operations
    async def get_org(self, org_id: str) -> ThirdPartyOrg | None:
        """Get third-party org by its external ID."""
        row = await self._conn.fetchrow("SELECT * FROM third_party_orgs WHERE id = $1", org_id)
        return self._row_to_org(row) if row else None

    async def upsert_org(self, org: ThirdPartyOrg) -> ThirdPartyOrg:
        """Insert the org, or replace its name and bot credential wholesale."""
        row = await self._conn.fetchrow(
            """
            INSERT INTO third_party_orgs
                (id, name, bot_user_id, bot_token, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                bot_user_id = EXCLUDED.bot_user_id,
                bot_token = EXCLUDED.bot_token,
                updated_at = EXCLUDED.updated_at
            RETURNING *
            """,
            org.id,
            org.name,
            org.bot_user_id,
            org.bot_token,
            org.created_at,
            org.updated_at,
        )
        assert row is not None, "UPSERT RETURNING should always return a row"
        return self._row_to_org(row)

    async def list_orgs_by_ids(self, org_ids: list[str]) -> list[ThirdPartyOrg]:
        """Get the orgs with the given IDs, skipping unknown ones."""
        if not org_ids:
            return []
        rows = await self._conn.fetch(
            "SELECT * FROM third_party_orgs WHERE id = ANY($1::text[])",
            org_ids,
        )
        return [self._row_to_org(row) for row in rows]

    def _user_values(self, fields: dict[str, Any]) -> dict[str, Any]:
        """Keep known user columns, converting enums to their stored values."""
        values: dict[str, Any] = {}
        for column in USER_COLUMNS:
            if column not in fields:
                continue
            value = fields[column]
            if isinstance(value, AuthSource | UserStatus):
                value = value.value
            values[column] = value
        return values

    def _row_to_user(self, row: Any) -> User:
        """Convert database row to User model."""
        return User(
            id=row["id"],
            auth_source=AuthSource(row["auth_source"]),
            email=row["email"],
            name=row["name"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            avatar_url=row["avatar_url"],
            status=UserStatus(row["status"]),
            password_hash=row["password_hash"],
            one_time_token=row["one_time_token"],
            teams=list(row["teams"] or []),
            external_id=row["external_id"],
            owner=row["owner"],
            admin=row["admin"],
            created_at=_aware(row["created_at"]),
            updated_at=_aware(row["updated_at"]),
        )

    def _row_to_team(self, row: Any) -> Team:
        """Convert database row to Team model."""
        return Team(
            id=row["id"],
            name=row["name"],
            logo_url=row["logo_url"],
            admins=list(row["admins"]),
            org_ids=list(row["org_ids"] or []),
            email_domains=list(row["email_domains"] or []),
            created_at=_aware(row["created_at"]),
            updated_at=_aware(row["updated_at"]),
        )

    def _row_to_org(self, row: Any) -> ThirdPartyOrg:
        """Convert database row to ThirdPartyOrg model."""
        return ThirdPartyOrg(
            id=row["id"],
            name=row["name"],
            bot_user_id=row["bot_user_id"],
            bot_token=row["bot_token"],
            created_at=_aware(row["created_at"]),
            updated_at=_aware(row["updated_at"]),
        )


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)
