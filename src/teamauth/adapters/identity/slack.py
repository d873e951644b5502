"""Slack identity provider adapter.

Handles the Slack OAuth callback:
1. Reject denied or code-less callbacks
2. Swap the code for an access token (``oauth.access``)
3. Confirm the token and collect the user's profile
4. Return an identity assertion for reconciliation
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from teamauth.config import AuthSettings
from teamauth.core.auth.identity import ExternalProfile, IdentityAssertion, IdentityProvider
from teamauth.core.exceptions import ExchangeFailure, ExternalExchangeError

logger = structlog.get_logger()

SLACK_API_URL = "https://slack.com/api"
SLACK_REDIRECT_PATH = "/slack/auth"

# Largest sensible avatar first
AVATAR_KEYS = ("image_192", "image_72", "image_48", "image_512", "image_32", "image_24")
NAME_KEYS = ("real_name_normalized", "real_name", "name")


@dataclass(frozen=True)
class OAuthState:
    """Parsed OAuth ``state`` parameter.

    Only a four-part state, ``"<prefix>:<team-id>:<user-id>:<redirect>"``,
    targets an existing team and user.
    """

    team_id: str | None = None
    user_id: str | None = None
    redirect: str | None = None


def parse_state(state: str | None) -> OAuthState:
    """Split an OAuth state into its target team, user and redirect."""
    parts = (state or "").split(":")
    if len(parts) != 4:
        return OAuthState()
    _, team_id, user_id, redirect = parts
    return OAuthState(team_id=team_id or None, user_id=user_id or None, redirect=redirect or None)


def coerce_profile(user_data: Mapping[str, Any]) -> dict[str, Any]:
    """Map Slack user data onto profile fields.

    Args:
        user_data: A Slack user object, with its ``profile`` merged in.

    Returns:
        Keyword arguments for ExternalProfile.
    """
    name = next((user_data[key] for key in NAME_KEYS if user_data.get(key)), "")
    words = name.split()
    if len(words) == 2:
        first_name, last_name = words
    elif len(words) == 1:
        first_name, last_name = name, ""
    else:
        first_name, last_name = "", ""

    return {
        "external_user_id": user_data.get("id", ""),
        "email": user_data.get("email", ""),
        "name": name,
        "first_name": first_name,
        "last_name": last_name,
        "avatar_url": next((user_data[key] for key in AVATAR_KEYS if user_data.get(key)), None),
        "owner": bool(user_data.get("is_owner", False)),
        "admin": bool(user_data.get("is_admin", False)),
    }


def _flatten_user(user: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge a Slack user object with its nested profile."""
    if not user:
        return {}
    return {**user, **(user.get("profile") or {})}


class SlackIdentityProvider:
    """Identity provider backed by the Slack Web API."""

    def __init__(
        self,
        settings: AuthSettings,
        api_url: str = SLACK_API_URL,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            settings: Slack client credentials and the auth server URL.
            api_url: Base URL of the Slack Web API.
            timeout_seconds: Per-request timeout.
            transport: Optional httpx transport, e.g. a mock in tests.
        """
        self._settings = settings
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    @property
    def redirect_uri(self) -> str:
        """Callback URL registered with the Slack app."""
        return f"{self._settings.auth_server_url.rstrip('/')}{SLACK_REDIRECT_PATH}"

    async def exchange(self, params: Mapping[str, str]) -> IdentityAssertion:
        """Exchange Slack callback parameters for an identity assertion.

        Raises:
            ExternalExchangeError: denied, no-code or exchange-error.
        """
        state = parse_state(params.get("state"))
        if params.get("error"):
            raise ExternalExchangeError(ExchangeFailure.DENIED, redirect=state.redirect)
        code = params.get("code")
        if not code:
            raise ExternalExchangeError(ExchangeFailure.NO_CODE, redirect=state.redirect)

        logger.info("slack_code_received", state=params.get("state"))
        try:
            async with self._client() as client:
                return await self._swap_code(client, code, state)
        except httpx.HTTPError as e:
            logger.warning("slack_request_failed", error=str(e))
            raise ExternalExchangeError(
                ExchangeFailure.EXCHANGE_ERROR, str(e), redirect=state.redirect
            ) from None

    async def validate_access_token(self, access_token: str) -> ExternalProfile | None:
        """Check a Slack access token with a test call.

        Returns:
            The token holder's profile, or None if Slack rejects the token.
        """
        try:
            async with self._client() as client:
                user_data = await self._confirmed_user(client, access_token)
        except httpx.HTTPError as e:
            logger.warning("slack_request_failed", error=str(e))
            return None

        if user_data is None:
            return None
        return ExternalProfile(**coerce_profile(user_data))

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._api_url,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _swap_code(
        self,
        client: httpx.AsyncClient,
        code: str,
        state: OAuthState,
    ) -> IdentityAssertion:
        response = await self._call(
            client,
            "oauth.access",
            client_id=self._settings.slack_client_id,
            client_secret=self._settings.slack_client_secret,
            code=code,
            redirect_uri=self.redirect_uri,
        )
        access_token = response.get("access_token")
        if not response.get("ok") or not access_token:
            logger.warning("slack_code_swap_failed", error=response.get("error"))
            raise ExternalExchangeError(
                ExchangeFailure.EXCHANGE_ERROR,
                "Could not swap code for token",
                redirect=state.redirect,
            )

        confirmed = await self._confirmed_user(client, access_token)
        if confirmed is None:
            raise ExternalExchangeError(
                ExchangeFailure.EXCHANGE_ERROR,
                "Access token could not be validated",
                redirect=state.redirect,
            )

        # identity.basic returns the user inline; otherwise look them up
        user_data = _flatten_user(response.get("user"))
        if not user_data.get("email"):
            slack_id = response.get("user_id") or user_data.get("id") or confirmed.get("id")
            user_data = await self._user_info(client, access_token, slack_id) or {}

        team = response.get("team") or {}
        org_id = response.get("team_id") or team.get("id")
        if not org_id or not user_data.get("email"):
            raise ExternalExchangeError(
                ExchangeFailure.EXCHANGE_ERROR,
                "Slack did not return a user and team",
                redirect=state.redirect,
            )

        bot = response.get("bot") or {}
        return IdentityAssertion(
            **coerce_profile(user_data),
            external_org_id=org_id,
            external_org_name=response.get("team_name") or team.get("name", ""),
            access_token=access_token,
            logo_url=team.get("image_132") or team.get("image_88"),
            bot_user_id=bot.get("bot_user_id"),
            bot_token=bot.get("bot_access_token"),
            target_team_id=state.team_id,
            target_user_id=state.user_id,
            redirect=state.redirect,
        )

    async def _confirmed_user(
        self,
        client: httpx.AsyncClient,
        access_token: str,
    ) -> dict[str, Any] | None:
        """Confirm a token with users.identity, falling back to auth.test."""
        identity = await self._call(client, "users.identity", token=access_token)
        if identity.get("ok"):
            return _flatten_user(identity.get("user"))

        auth_test = await self._call(client, "auth.test", token=access_token)
        if auth_test.get("ok"):
            return await self._user_info(client, access_token, auth_test.get("user_id"))

        logger.warning(
            "slack_token_invalid",
            identity_error=identity.get("error"),
            auth_test_error=auth_test.get("error"),
        )
        return None

    async def _user_info(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        slack_id: str | None,
    ) -> dict[str, Any] | None:
        if not slack_id:
            return None

        info = await self._call(client, "users.info", token=access_token, user=slack_id)
        if not info.get("ok"):
            logger.warning("slack_user_info_failed", slack_id=slack_id, error=info.get("error"))
            return None
        return _flatten_user(info.get("user"))

    async def _call(self, client: httpx.AsyncClient, method: str, **data: Any) -> dict[str, Any]:
        response = await client.post(f"/{method}", data=data)
        response.raise_for_status()
        try:
            payload: dict[str, Any] = response.json()
        except ValueError:
            logger.warning("slack_response_not_json", method=method)
            return {"ok": False, "error": "invalid_response"}
        return payload


# Verify we implement the protocol
_provider: IdentityProvider = SlackIdentityProvider(AuthSettings())
