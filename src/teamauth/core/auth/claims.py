"""Signed token payloads.

Claims are a tagged variant keyed on ``auth_source``. Each variant knows
how it is refreshed, so callers dispatch with ``claims.refresh(...)``
rather than by comparing source strings.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from teamauth.core.auth.types import BotCredential, User


class ClaimsRefresher(Protocol):
    """What a claims variant needs in order to renew itself."""

    async def reissue_email(self, user: User, now: datetime) -> str | None:
        """Issue a fresh email token for the user."""
        ...

    async def reissue_oauth(self, user: User, claims: OAuthClaims, now: datetime) -> str | None:
        """Re-validate the external token and issue a fresh oauth token."""
        ...


class BaseClaims(BaseModel):
    """Fields shared by every token."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    teams: list[str] = Field(default_factory=list)
    admin_teams: list[str] = Field(default_factory=list)
    email: str
    name: str = ""
    first_name: str = ""
    last_name: str = ""
    avatar_url: str | None = None
    expire: int  # epoch millis

    def is_expired(self, now_millis: int) -> bool:
        """Whether the token is past its expiration."""
        return now_millis > self.expire


class EmailClaims(BaseClaims):
    """Claims for a user who signed in with email and password."""

    auth_source: Literal["email"] = "email"

    async def refresh(self, refresher: ClaimsRefresher, user: User, now: datetime) -> str | None:
        """Email tokens are re-issued straight from directory state."""
        return await refresher.reissue_email(user, now)


class OAuthClaims(BaseClaims):
    """Claims for a user who signed in through the identity provider."""

    auth_source: Literal["oauth"] = "oauth"
    external_id: str
    external_token: str
    bots: dict[str, list[BotCredential]] = Field(default_factory=dict)

    async def refresh(self, refresher: ClaimsRefresher, user: User, now: datetime) -> str | None:
        """OAuth tokens are only renewed while the provider still honours them."""
        return await refresher.reissue_oauth(user, self, now)


Claims = Annotated[EmailClaims | OAuthClaims, Field(discriminator="auth_source")]

claims_adapter: TypeAdapter[EmailClaims | OAuthClaims] = TypeAdapter(Claims)
