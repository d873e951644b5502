"""Tests for email onboarding, invitations and password reset."""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from teamauth.adapters.directory.memory import InMemoryDirectory
from teamauth.config import AuthSettings
from teamauth.core.auth.jwt import TokenService
from teamauth.core.auth.notifications import NotificationType
from teamauth.core.auth.onboarding import OnboardingService
from teamauth.core.auth.outcomes import OutcomeStatus
from teamauth.core.auth.password import verify_password
from teamauth.core.auth.tokens import generate_one_time_token
from teamauth.core.auth.types import AuthSource, User, UserStatus
from teamauth.core.exceptions import ConflictError
from tests.fixtures.mocks import RecordingNotifier

PASSWORD = "s3cret-enough"  # pragma: allowlist secret


@pytest.fixture
def tokens(seeded_directory: InMemoryDirectory, settings: AuthSettings) -> TokenService:
    """Create token service over the seeded directory."""
    return TokenService(seeded_directory, settings)


@pytest.fixture
def service(
    seeded_directory: InMemoryDirectory,
    tokens: TokenService,
    notifier: RecordingNotifier,
    settings: AuthSettings,
) -> OnboardingService:
    """Create onboarding service over the seeded directory."""
    return OnboardingService(seeded_directory, tokens, notifier, settings)


class TestCreateEmailAccount:
    """The four-way sign-up split."""

    async def test_unknown_email_unknown_domain(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
    ) -> None:
        """Creates a pending user with no team and sends a verification."""
        outcome = await service.create_email_account("new@example.com", PASSWORD, "New", "Person")

        assert outcome.status == OutcomeStatus.CREATED
        assert outcome.token is None
        user = await seeded_directory.get_user_by_email("new@example.com")
        assert user is not None
        assert user.status == UserStatus.PENDING
        assert user.teams == []
        assert user.one_time_token is not None
        assert verify_password(PASSWORD, user.password_hash)
        assert [(n.type, n.email, n.token) for n in notifier.sent] == [
            (NotificationType.VERIFY, "new@example.com", user.one_time_token)
        ]

    async def test_unknown_email_matching_domain(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
    ) -> None:
        """A domain claimed by a team scopes the pending user to that team."""
        outcome = await service.create_email_account("Newhire@ACME.com", PASSWORD, "New", "Hire")

        assert outcome.status == OutcomeStatus.NO_CONTENT
        assert outcome.token is None
        assert outcome.user is not None
        assert outcome.user.status == UserStatus.PENDING
        assert outcome.user.teams == ["eeee-0000-0001"]
        assert notifier.sent[0].type == NotificationType.VERIFY

    async def test_pending_invite_is_resent(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
    ) -> None:
        """A pending invitee signing up gets the same token again."""
        token = generate_one_time_token()
        await seeded_directory.create_user(
            User(
                id="aaaa-0000-0042",
                auth_source=AuthSource.EMAIL,
                email="invited@example.com",
                one_time_token=token,
                teams=["eeee-0000-0001"],
            )
        )
        before = len(seeded_directory.users)

        outcome = await service.create_email_account(
            "invited@example.com", PASSWORD, "In", "Vited"
        )

        assert outcome.status == OutcomeStatus.NO_CONTENT
        assert len(seeded_directory.users) == before
        assert [(n.type, n.token) for n in notifier.sent] == [(NotificationType.INVITE, token)]

    async def test_pending_self_signup_gets_verification_again(
        self,
        service: OnboardingService,
        notifier: RecordingNotifier,
    ) -> None:
        """Signing up twice before verifying resends the verification."""
        first = await service.create_email_account("new@example.com", PASSWORD, "New", "One")
        assert first.user is not None

        again = await service.create_email_account("new@example.com", PASSWORD, "New", "One")

        assert again.status == OutcomeStatus.NO_CONTENT
        assert [(n.type, n.token) for n in notifier.sent] == [
            (NotificationType.VERIFY, first.user.one_time_token),
            (NotificationType.VERIFY, first.user.one_time_token),
        ]

    async def test_create_racing_another_signup_conflicts(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
    ) -> None:
        """An email taken between lookup and insert is a conflict."""
        seeded_directory.create_user = AsyncMock(  # type: ignore[method-assign]
            side_effect=ConflictError("taken")
        )

        outcome = await service.create_email_account("new@example.com", PASSWORD, "New", "One")

        assert outcome.status == OutcomeStatus.CONFLICT
        assert notifier.sent == []

    async def test_active_user_conflicts_without_writes(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
    ) -> None:
        """An already active email is a conflict and nothing changes."""
        before = {uid: u.model_dump() for uid, u in seeded_directory.users.items()}

        outcome = await service.create_email_account("admin@acme.com", PASSWORD, "Ada", "Admin")

        assert outcome.status == OutcomeStatus.CONFLICT
        assert {uid: u.model_dump() for uid, u in seeded_directory.users.items()} == before
        assert notifier.sent == []

    @pytest.mark.parametrize(
        ("email", "password", "field"),
        [
            ("not-an-email", PASSWORD, "email"),
            ("ok@example.com", "short", "password"),
        ],
    )
    async def test_invalid_input_rejected_before_writes(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        email: str,
        password: str,
        field: str,
    ) -> None:
        """Malformed sign-ups return invalid with the offending field."""
        before = len(seeded_directory.users)

        outcome = await service.create_email_account(email, password, "A", "B")

        assert outcome.status == OutcomeStatus.INVALID
        assert field in outcome.errors
        assert len(seeded_directory.users) == before

    async def test_failed_notification_keeps_user(
        self,
        seeded_directory: InMemoryDirectory,
        tokens: TokenService,
        settings: AuthSettings,
    ) -> None:
        """Delivery failure does not roll back the directory write."""
        service = OnboardingService(
            seeded_directory, tokens, RecordingNotifier(succeed=False), settings
        )

        outcome = await service.create_email_account("new@example.com", PASSWORD, "New", "One")

        assert outcome.status == OutcomeStatus.CREATED
        assert await seeded_directory.get_user_by_email("new@example.com") is not None


class TestVerifyEmail:
    """One-time token redemption."""

    async def test_verify_activates_and_signs_in(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        tokens: TokenService,
        now: datetime,
    ) -> None:
        """Redeeming the token activates the user and issues a token."""
        created = await service.create_email_account("new@acme.com", PASSWORD, "New", "Acme")
        assert created.user is not None and created.user.one_time_token is not None

        outcome = await service.verify_email(created.user.one_time_token, now)

        assert outcome.status == OutcomeStatus.OK
        assert outcome.user is not None
        assert outcome.user.status == UserStatus.ACTIVE
        assert outcome.user.one_time_token is None
        assert outcome.token is not None
        assert tokens.verify(outcome.token, now).teams == ["eeee-0000-0001"]

    async def test_token_is_single_use(
        self, service: OnboardingService, seeded_directory: InMemoryDirectory, now: datetime
    ) -> None:
        """The second redemption is not found and the user stays active."""
        created = await service.create_email_account("new@acme.com", PASSWORD, "New", "Acme")
        assert created.user is not None
        token = created.user.one_time_token
        assert token is not None

        first = await service.verify_email(token, now)
        second = await service.verify_email(token, now)

        assert first.status == OutcomeStatus.OK
        assert second.status == OutcomeStatus.NOT_FOUND
        user = await seeded_directory.get_user(created.user.id)
        assert user is not None and user.status == UserStatus.ACTIVE

    async def test_unknown_and_malformed_tokens_look_the_same(
        self, service: OnboardingService, now: datetime
    ) -> None:
        """Bad format and unknown token give the same uniform result."""
        unknown = await service.verify_email(generate_one_time_token(), now)
        malformed = await service.verify_email("'; DROP TABLE users; --", now)

        assert unknown.status == malformed.status == OutcomeStatus.NOT_FOUND
        assert unknown.message == malformed.message

    async def test_teamless_user_gets_first_team(
        self, service: OnboardingService, seeded_directory: InMemoryDirectory, now: datetime
    ) -> None:
        """Activating a user with no team creates one they administer."""
        created = await service.create_email_account("solo@example.com", PASSWORD, "So", "Lo")
        assert created.user is not None and created.user.one_time_token is not None

        outcome = await service.verify_email(created.user.one_time_token, now)

        assert outcome.user is not None
        [team_id] = outcome.user.teams
        team = seeded_directory.teams[team_id]
        assert team.name == "example.com"
        assert team.admins == [outcome.user.id]

    async def test_invitee_without_password_is_not_activated(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
        now: datetime,
    ) -> None:
        """An invitation token cannot activate a user who has no password."""
        invited = await service.invite_user(
            "aaaa-0000-0001", "eeee-0000-0001", "friend@example.com"
        )
        assert invited.user is not None
        token = notifier.sent[0].token

        outcome = await service.verify_email(token, now)

        assert outcome.status == OutcomeStatus.INVALID
        assert "password" in outcome.errors
        assert outcome.token is None
        user = await seeded_directory.get_user(invited.user.id)
        assert user is not None
        assert user.status == UserStatus.PENDING
        assert user.one_time_token == token


class TestAcceptInvite:
    """Invitees choosing their first password."""

    async def test_accept_sets_password_and_activates(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
        tokens: TokenService,
        now: datetime,
    ) -> None:
        """Accepting stores the password, activates and signs in."""
        invited = await service.invite_user(
            "aaaa-0000-0001", "eeee-0000-0001", "friend@example.com"
        )
        assert invited.user is not None
        token = notifier.sent[0].token

        outcome = await service.accept_invite(token, PASSWORD, now)

        assert outcome.status == OutcomeStatus.OK
        assert outcome.token is not None
        assert tokens.verify(outcome.token, now).teams == ["eeee-0000-0001"]
        user = await seeded_directory.get_user(invited.user.id)
        assert user is not None
        assert user.status == UserStatus.ACTIVE
        assert user.one_time_token is None
        assert verify_password(PASSWORD, user.password_hash)

        replay = await service.accept_invite(token, "another-password", now)
        assert replay.status == OutcomeStatus.NOT_FOUND

    async def test_short_password_keeps_invitation_open(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
        now: datetime,
    ) -> None:
        """A too-short first password leaves the invitee pending."""
        invited = await service.invite_user(
            "aaaa-0000-0001", "eeee-0000-0001", "friend@example.com"
        )
        assert invited.user is not None
        token = notifier.sent[0].token

        outcome = await service.accept_invite(token, "short", now)

        assert outcome.status == OutcomeStatus.INVALID
        user = await seeded_directory.get_user(invited.user.id)
        assert user is not None
        assert user.status == UserStatus.PENDING
        assert user.password_hash is None
        assert user.one_time_token == token


class TestInviteUser:
    """Team admins inviting email addresses."""

    async def test_admin_invites_new_address(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
    ) -> None:
        """A new address becomes a pending member without a password."""
        outcome = await service.invite_user(
            "aaaa-0000-0001", "eeee-0000-0001", "friend@example.com", "Fr", "Iend"
        )

        assert outcome.status == OutcomeStatus.CREATED
        assert outcome.user is not None
        assert outcome.user.teams == ["eeee-0000-0001"]
        assert outcome.user.password_hash is None
        assert notifier.sent[0].type == NotificationType.INVITE

    async def test_non_admin_cannot_invite(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
    ) -> None:
        """Members who are not admins are denied."""
        outcome = await service.invite_user(
            "aaaa-0000-0002", "eeee-0000-0001", "friend@example.com"
        )

        assert outcome.status == OutcomeStatus.UNAUTHORIZED
        assert await seeded_directory.get_user_by_email("friend@example.com") is None
        assert notifier.sent == []

    async def test_active_user_is_added_to_team(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
    ) -> None:
        """Inviting an active user just adds the team."""
        outcome = await service.invite_user(
            "aaaa-0000-0001", "eeee-0000-0001", "someone@other.com"
        )

        assert outcome.status == OutcomeStatus.OK
        assert outcome.user is not None
        assert outcome.user.teams == ["eeee-0000-0002", "eeee-0000-0001"]
        assert notifier.sent == []


class TestPasswordReset:
    """Reset request and redemption."""

    async def test_reset_round_trip(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
        now: datetime,
    ) -> None:
        """A reset token sets a new password exactly once."""
        requested = await service.request_password_reset("member@acme.com")
        assert requested.status == OutcomeStatus.NO_CONTENT
        [notification] = notifier.sent
        assert notification.type == NotificationType.RESET

        outcome = await service.reset_password(notification.token, "brand-new-password", now)

        assert outcome.status == OutcomeStatus.OK
        assert outcome.token is not None
        user = await seeded_directory.get_user("aaaa-0000-0002")
        assert user is not None
        assert user.one_time_token is None
        assert verify_password("brand-new-password", user.password_hash)

        replay = await service.reset_password(notification.token, "another-password", now)
        assert replay.status == OutcomeStatus.NOT_FOUND

    async def test_unknown_email_is_silent(
        self, service: OnboardingService, notifier: RecordingNotifier
    ) -> None:
        """Unknown addresses look exactly like known ones."""
        outcome = await service.request_password_reset("ghost@example.com")

        assert outcome.status == OutcomeStatus.NO_CONTENT
        assert notifier.sent == []

    async def test_short_password_rejected_without_consuming_token(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
        now: datetime,
    ) -> None:
        """A too-short password leaves the token usable."""
        await service.request_password_reset("member@acme.com")
        token = notifier.sent[0].token

        outcome = await service.reset_password(token, "short", now)

        assert outcome.status == OutcomeStatus.INVALID
        user = await seeded_directory.get_user("aaaa-0000-0002")
        assert user is not None and user.one_time_token == token


class TestOAuthUsersHaveNoPassword:
    """Password reset never gives an oauth user a password."""

    @pytest.fixture
    async def oauth_user(self, seeded_directory: InMemoryDirectory) -> User:
        """Store an active oauth user."""
        return await seeded_directory.create_user(
            User(
                id="aaaa-0000-0077",
                auth_source=AuthSource.OAUTH,
                email="slacker@acme.com",
                status=UserStatus.ACTIVE,
                teams=["eeee-0000-0001"],
            )
        )

    async def test_reset_request_is_silent(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        notifier: RecordingNotifier,
        oauth_user: User,
    ) -> None:
        """No reset token is stored or sent for an oauth user."""
        outcome = await service.request_password_reset("slacker@acme.com")

        assert outcome.status == OutcomeStatus.NO_CONTENT
        assert notifier.sent == []
        user = await seeded_directory.get_user(oauth_user.id)
        assert user is not None and user.one_time_token is None

    async def test_reset_with_held_token_is_rejected(
        self,
        service: OnboardingService,
        seeded_directory: InMemoryDirectory,
        oauth_user: User,
        now: datetime,
    ) -> None:
        """An oauth user holding a token still cannot set a password with it."""
        token = generate_one_time_token()
        await seeded_directory.update_user(oauth_user.id, one_time_token=token)

        outcome = await service.reset_password(token, "brand-new-password", now)

        assert outcome.status == OutcomeStatus.INVALID
        assert outcome.token is None
        user = await seeded_directory.get_user(oauth_user.id)
        assert user is not None
        assert user.password_hash is None
        assert user.one_time_token == token
