"""Auth domain types."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, EmailStr, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class AuthSource(str, Enum):
    """Where a user's credentials come from."""

    EMAIL = "email"
    OAUTH = "oauth"


class UserStatus(str, Enum):
    """Email-side account lifecycle."""

    PENDING = "pending"
    ACTIVE = "active"


class BotCredential(BaseModel):
    """A bot token scoped to one third-party org."""

    model_config = ConfigDict(frozen=True)

    org_id: str
    id: str
    token: str


class User(BaseModel):
    """User domain model.

    `owner` and `admin` echo the identity provider's privilege flags and
    are independent of `status`, which tracks email verification.
    """

    id: str
    auth_source: AuthSource
    email: EmailStr
    name: str = ""
    first_name: str = ""
    last_name: str = ""
    avatar_url: str | None = None
    status: UserStatus = UserStatus.PENDING
    password_hash: str | None = None  # None for oauth users
    one_time_token: str | None = None
    teams: list[str] = Field(default_factory=list)
    external_id: str | None = None  # provider user id, oauth users only
    owner: bool = False
    admin: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        """Whether the user has completed verification."""
        return self.status == UserStatus.ACTIVE

    @property
    def email_domain(self) -> str:
        """Lower-cased domain part of the email address."""
        return self.email.rsplit("@", 1)[-1].lower()


class Team(BaseModel):
    """Team (workspace) domain model."""

    id: str
    name: str
    logo_url: str | None = None
    admins: list[str] = Field(min_length=1)
    org_ids: list[str] = Field(default_factory=list)
    email_domains: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ThirdPartyOrg(BaseModel):
    """The identity provider's organization, keyed by its external id."""

    id: str
    name: str
    bot_user_id: str | None = None
    bot_token: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def bot(self) -> BotCredential | None:
        """Bot credential for this org, if one is fully configured."""
        if self.bot_user_id and self.bot_token:
            return BotCredential(org_id=self.id, id=self.bot_user_id, token=self.bot_token)
        return None


# Properties callers may never set through an update.
RESERVED_PROPERTIES = frozenset({"id", "created_at", "updated_at"})
