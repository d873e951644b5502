"""Settings loaded from the environment and passed explicitly to services."""

import os
from dataclasses import dataclass
from datetime import timedelta

import structlog

logger = structlog.get_logger()

DEV_SIGNING_SECRET = "dev-signing-secret-change-in-production"  # pragma: allowlist secret


@dataclass(frozen=True)
class AuthSettings:
    """Configuration for token signing, URLs and the Slack app."""

    signing_secret: str = DEV_SIGNING_SECRET
    algorithm: str = "HS256"
    email_token_ttl: timedelta = timedelta(hours=2)
    oauth_bot_token_ttl: timedelta = timedelta(hours=24)
    ui_server_url: str = "http://localhost:3559"
    auth_server_url: str = "http://localhost:3003"
    slack_client_id: str = ""
    slack_client_secret: str = ""
    min_password_length: int = 8

    @classmethod
    def from_env(cls) -> "AuthSettings":
        """Load settings from environment variables."""
        secret = os.getenv("TEAMAUTH_SIGNING_SECRET", "").strip()
        if not secret:
            logger.warning("signing_secret_missing", fallback="development")
            secret = DEV_SIGNING_SECRET

        port = os.getenv("PORT", "3003")
        return cls(
            signing_secret=secret,
            ui_server_url=os.getenv("TEAMAUTH_UI_SERVER_URL", "http://localhost:3559"),
            auth_server_url=os.getenv("TEAMAUTH_AUTH_SERVER_URL", f"http://localhost:{port}"),
            slack_client_id=os.getenv("TEAMAUTH_SLACK_CLIENT_ID", ""),
            slack_client_secret=os.getenv("TEAMAUTH_SLACK_CLIENT_SECRET", ""),
        )
