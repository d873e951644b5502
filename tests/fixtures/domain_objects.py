"""Domain object fixtures for testing."""

from __future__ import annotations

import pytest

from teamauth.core.auth.identity import IdentityAssertion
from teamauth.core.auth.password import hash_password
from teamauth.core.auth.types import AuthSource, Team, ThirdPartyOrg, User, UserStatus

SAMPLE_PASSWORD = "correct-horse-battery"  # pragma: allowlist secret

# Low work factor keeps fixture setup fast
SAMPLE_PASSWORD_HASH = hash_password(SAMPLE_PASSWORD, rounds=4)


@pytest.fixture
def sample_admin() -> User:
    """Return an active email user who administers the sample team."""
    return User(
        id="aaaa-0000-0001",
        auth_source=AuthSource.EMAIL,
        email="admin@acme.com",
        name="Ada Admin",
        first_name="Ada",
        last_name="Admin",
        status=UserStatus.ACTIVE,
        password_hash=SAMPLE_PASSWORD_HASH,
        teams=["eeee-0000-0001"],
    )


@pytest.fixture
def sample_member() -> User:
    """Return an active email user in the sample team without admin rights."""
    return User(
        id="aaaa-0000-0002",
        auth_source=AuthSource.EMAIL,
        email="member@acme.com",
        name="Max Member",
        first_name="Max",
        last_name="Member",
        status=UserStatus.ACTIVE,
        password_hash=SAMPLE_PASSWORD_HASH,
        teams=["eeee-0000-0001"],
    )


@pytest.fixture
def outsider() -> User:
    """Return an active user in an unrelated team."""
    return User(
        id="aaaa-0000-0003",
        auth_source=AuthSource.EMAIL,
        email="someone@other.com",
        status=UserStatus.ACTIVE,
        password_hash=SAMPLE_PASSWORD_HASH,
        teams=["eeee-0000-0002"],
    )


@pytest.fixture
def sample_team() -> Team:
    """Return a team accepting sign-ups from acme.com."""
    return Team(
        id="eeee-0000-0001",
        name="Acme",
        admins=["aaaa-0000-0001"],
        email_domains=["acme.com"],
    )


@pytest.fixture
def other_team() -> Team:
    """Return a team unrelated to the sample team."""
    return Team(id="eeee-0000-0002", name="Other", admins=["aaaa-0000-0003"])


@pytest.fixture
def sample_org() -> ThirdPartyOrg:
    """Return a Slack org with a bot."""
    return ThirdPartyOrg(
        id="T0ACME",
        name="Acme Slack",
        bot_user_id="B0BOT",
        bot_token="xoxb-acme",
    )


@pytest.fixture
def sample_assertion() -> IdentityAssertion:
    """Return a fresh sign-in assertion for a brand new Slack user."""
    return IdentityAssertion(
        external_user_id="U0NEW",
        email="newbie@slackers.com",
        name="Nina Newbie",
        first_name="Nina",
        last_name="Newbie",
        avatar_url="https://avatars.example.com/nina.png",
        external_org_id="T0SLACK",
        external_org_name="Slackers",
        access_token="xoxp-nina",
    )
