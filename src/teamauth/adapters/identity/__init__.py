"""Identity provider adapters."""

from teamauth.adapters.identity.slack import SlackIdentityProvider, coerce_profile, parse_state

__all__ = ["SlackIdentityProvider", "coerce_profile", "parse_state"]
