"""Identity provider protocol and the assertions it produces."""

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from teamauth.core.auth.types import BotCredential


class ExternalProfile(BaseModel):
    """A user's profile as the identity provider reports it."""

    model_config = ConfigDict(frozen=True)

    external_user_id: str
    email: str
    name: str = ""
    first_name: str = ""
    last_name: str = ""
    avatar_url: str | None = None
    owner: bool = False
    admin: bool = False


class IdentityAssertion(ExternalProfile):
    """Result of a successful code exchange.

    ``target_team_id`` and ``target_user_id`` are only present when a
    signed-in user is adding the external org to an existing team.
    """

    external_org_id: str
    external_org_name: str
    access_token: str
    logo_url: str | None = None
    bot_user_id: str | None = None
    bot_token: str | None = None
    target_team_id: str | None = None
    target_user_id: str | None = None
    redirect: str | None = None

    @property
    def bot(self) -> BotCredential | None:
        """Bot credential granted during this exchange, if any."""
        if self.bot_user_id and self.bot_token:
            return BotCredential(
                org_id=self.external_org_id,
                id=self.bot_user_id,
                token=self.bot_token,
            )
        return None


@runtime_checkable
class IdentityProvider(Protocol):
    """Protocol for the external OAuth identity provider."""

    async def exchange(self, params: Mapping[str, str]) -> IdentityAssertion:
        """Exchange callback parameters for an identity assertion.

        Args:
            params: Query parameters of the OAuth callback.

        Returns:
            The asserted identity.

        Raises:
            ExternalExchangeError: With reason denied, no-code or exchange-error.
        """
        ...

    async def validate_access_token(self, access_token: str) -> ExternalProfile | None:
        """Check a provider access token is still honoured.

        Returns:
            The current profile, or None if the token is no longer valid.
        """
        ...
