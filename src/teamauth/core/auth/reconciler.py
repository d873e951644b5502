"""Identity reconciliation for OAuth sign-in and org-add callbacks.

Merges an identity assertion from the external provider with the users,
teams and third-party orgs already in the directory:

1. Resolve the local user (by target user id, else by email).
2. Upsert the third-party org by its external id.
3. Work out which teams the org backs (or the explicitly targeted team).
4. Create a user (and a team, if the org backs none), or extend the
   existing user's membership and refresh their profile.
5. Link the org to a targeted team unless only a bot was being added.
6. Issue an oauth token.

The steps are not one transaction. Every write is an idempotent upsert or
set union, and callbacks for the same external org are serialized within
the process, so a retried or duplicated callback converges on one user
and one team.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from weakref import WeakValueDictionary

import structlog

from teamauth.core.auth.directory import Directory
from teamauth.core.auth.identity import IdentityAssertion, IdentityProvider
from teamauth.core.auth.jwt import TokenService
from teamauth.core.auth.tokens import unique_id
from teamauth.core.auth.types import (
    AuthSource,
    Team,
    ThirdPartyOrg,
    User,
    UserStatus,
)
from teamauth.core.exceptions import (
    ConflictError,
    ExternalExchangeError,
    ReconciliationInconsistency,
)

logger = structlog.get_logger()


class AccessKind(str, Enum):
    """What the callback granted, used to pick the UI landing page."""

    TEAM = "team"
    BOT = "bot"
    FAILED = "failed"


@dataclass
class ReconcileOutcome:
    """Result of handling an identity provider callback."""

    access: AccessKind
    user: User | None = None
    token: str | None = None
    redirect: str | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        """Whether reconciliation produced a signed-in user."""
        return self.access != AccessKind.FAILED

    def redirect_url(self, ui_server_url: str) -> str:
        """UI location to send the browser back to, with the token if any."""
        page = self.redirect or "/login"
        url = f"{ui_server_url.rstrip('/')}{page}?access={self.access.value}"
        if self.token:
            url += f"&jwt={self.token}"
        return url


class IdentityReconciler:
    """Turns identity assertions into a consistent user/team/org graph."""

    def __init__(self, directory: Directory, tokens: TokenService) -> None:
        """Initialize the reconciler.

        Args:
            directory: Directory holding users, teams and orgs.
            tokens: Token service used to sign the resulting user in.
        """
        self._directory = directory
        self._tokens = tokens
        self._org_locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    async def handle_callback(
        self,
        params: Mapping[str, str],
        provider: IdentityProvider,
        now: datetime | None = None,
    ) -> ReconcileOutcome:
        """Exchange the callback parameters and reconcile the result.

        A failed exchange short-circuits before any directory writes.

        Args:
            params: Query parameters of the OAuth callback.
            provider: Identity provider that performs the exchange.
            now: Time used for token issuance.

        Returns:
            The reconciliation outcome.
        """
        try:
            assertion = await provider.exchange(params)
        except ExternalExchangeError as e:
            logger.warning("identity_exchange_failed", reason=e.reason.value)
            return ReconcileOutcome(AccessKind.FAILED, redirect=e.redirect, reason=e.reason.value)

        return await self.reconcile(assertion, now)

    async def reconcile(
        self,
        assertion: IdentityAssertion,
        now: datetime | None = None,
    ) -> ReconcileOutcome:
        """Reconcile an identity assertion with directory state.

        Args:
            assertion: Identity asserted by the provider.
            now: Time used for record timestamps and token issuance.

        Returns:
            The signed-in user and token, or a failed outcome.
        """
        now = now or datetime.now(UTC)

        async with self._lock_for(assertion.external_org_id):
            try:
                user, bot_only = await self._reconcile(assertion, now)
            except ReconciliationInconsistency as e:
                logger.error(
                    "reconciliation_inconsistent",
                    error=str(e),
                    external_org_id=assertion.external_org_id,
                    target_team_id=assertion.target_team_id,
                    target_user_id=assertion.target_user_id,
                )
                return ReconcileOutcome(
                    AccessKind.FAILED,
                    redirect=assertion.redirect,
                    reason="inconsistent",
                )

        token = await self._tokens.issue(
            user,
            AuthSource.OAUTH,
            now,
            external_token=assertion.access_token,
        )
        access = AccessKind.BOT if bot_only else AccessKind.TEAM
        logger.info("identity_reconciled", user_id=user.id, access=access.value)
        return ReconcileOutcome(access, user=user, token=token, redirect=assertion.redirect)

    def _lock_for(self, org_id: str) -> asyncio.Lock:
        lock = self._org_locks.get(org_id)
        if lock is None:
            lock = asyncio.Lock()
            self._org_locks[org_id] = lock
        return lock

    async def _reconcile(self, assertion: IdentityAssertion, now: datetime) -> tuple[User, bool]:
        existing_user = await self._resolve_user(assertion)
        target_team = await self._resolve_target_team(assertion)

        org = await self._upsert_org(assertion, now)

        if target_team is not None:
            relevant_teams = [target_team]
        else:
            relevant_teams = await self._directory.list_teams_by_org(org.id)

        if existing_user is None:
            try:
                user = await self._create_user(assertion, org, relevant_teams, now)
            except ConflictError:
                # Created by a concurrent callback since the lookup above
                existing_user = await self._directory.get_user_by_email(assertion.email)
                if existing_user is None:
                    raise ReconciliationInconsistency(
                        f"User {assertion.email} both exists and is missing"
                    ) from None
                logger.info("oauth_user_created_concurrently", user_id=existing_user.id)

        if existing_user is not None:
            user = await self._update_user(existing_user, assertion, relevant_teams)

        # Org already on the targeted team: only its bot was (re)added
        bot_only = target_team is not None and org.id in target_team.org_ids
        if target_team is not None and not bot_only:
            logger.info("linking_org_to_team", org_id=org.id, team_id=target_team.id)
            await self._directory.add_org_to_team(target_team.id, org.id)

        return user, bot_only

    async def _resolve_user(self, assertion: IdentityAssertion) -> User | None:
        if assertion.target_user_id is None:
            return await self._directory.get_user_by_email(assertion.email)

        user = await self._directory.get_user(assertion.target_user_id)
        if user is None:
            raise ReconciliationInconsistency(
                f"No user {assertion.target_user_id} for org add of {assertion.external_org_id}"
            )
        return user

    async def _resolve_target_team(self, assertion: IdentityAssertion) -> Team | None:
        if assertion.target_team_id is None:
            return None

        team = await self._directory.get_team(assertion.target_team_id)
        if team is None:
            raise ReconciliationInconsistency(
                f"No team {assertion.target_team_id} for org add of {assertion.external_org_id}"
            )
        return team

    async def _upsert_org(self, assertion: IdentityAssertion, now: datetime) -> ThirdPartyOrg:
        existing = await self._directory.get_org(assertion.external_org_id)
        bot = assertion.bot

        if existing is None:
            logger.info("creating_org", org_id=assertion.external_org_id)
            org = ThirdPartyOrg(
                id=assertion.external_org_id,
                name=assertion.external_org_name,
                created_at=now,
                updated_at=now,
            )
        else:
            logger.info("updating_org", org_id=existing.id)
            org = existing.model_copy(
                update={"name": assertion.external_org_name or existing.name, "updated_at": now}
            )

        # A new bot replaces the old one outright
        if bot is not None:
            org = org.model_copy(update={"bot_user_id": bot.id, "bot_token": bot.token})

        return await self._directory.upsert_org(org)

    async def _create_user(
        self,
        assertion: IdentityAssertion,
        org: ThirdPartyOrg,
        relevant_teams: list[Team],
        now: datetime,
    ) -> User:
        user_id = unique_id()

        logger.info("creating_oauth_user", user_id=user_id, email=assertion.email)
        user = await self._directory.create_user(
            User(
                id=user_id,
                auth_source=AuthSource.OAUTH,
                email=assertion.email,
                status=UserStatus.ACTIVE,
                teams=list(dict.fromkeys(team.id for team in relevant_teams)),
                created_at=now,
                updated_at=now,
                **self._profile_fields(assertion),
            )
        )
        if relevant_teams:
            return user

        # Never create a team for a user that failed to persist
        logger.info("creating_team_for_org", org_id=org.id, name=org.name)
        team = await self._directory.create_team(
            Team(
                id=unique_id(),
                name=org.name,
                logo_url=assertion.logo_url,
                admins=[user.id],
                org_ids=[org.id],
                created_at=now,
                updated_at=now,
            )
        )
        return await self._directory.add_team_to_user(user.id, team.id) or user

    async def _update_user(
        self,
        existing: User,
        assertion: IdentityAssertion,
        relevant_teams: list[Team],
    ) -> User:
        current = set(existing.teams)
        relevant_ids = dict.fromkeys(team.id for team in relevant_teams)
        additional = [team_id for team_id in relevant_ids if team_id not in current]

        user = existing
        for team_id in additional:
            logger.info("adding_team_access", team_id=team_id, user_id=user.id)
            user = await self._directory.add_team_to_user(user.id, team_id) or user

        logger.info("refreshing_oauth_profile", user_id=user.id)
        updated = await self._directory.update_user(user.id, **self._profile_fields(assertion))
        return updated or user

    def _profile_fields(self, assertion: IdentityAssertion) -> dict[str, Any]:
        """Provider-side profile values; blanks never overwrite local data."""
        fields: dict[str, Any] = {
            "external_id": assertion.external_user_id,
            "owner": assertion.owner,
            "admin": assertion.admin,
        }
        for key in ("name", "first_name", "last_name", "avatar_url"):
            value = getattr(assertion, key)
            if value:
                fields[key] = value
        return fields
