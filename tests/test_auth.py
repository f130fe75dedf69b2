"""
Tests for AuthService: login flows, password maintenance and email verification.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest
from argon2 import PasswordHasher

from backoffice.db.models import AuditLog, EmailVerificationToken, PasswordResetToken, User
from backoffice.exceptions import DeliveryError, NotFoundError, UnauthorizedError, ValidationError
from backoffice.models.api import UserRole
from backoffice.models.domain import OAuthToken, OAuthUser
from backoffice.services.auth import (
    INVALID_CREDENTIALS,
    INVALID_RESET_TOKEN,
    PASSWORD_POLICY_MESSAGE,
    AuthService,
    safe_redirect,
    validate_password_policy,
)
from backoffice.services.identity import IdentityVerifier

SECRET = "auth-test-secret-0123456789abcdefghij"
TOKEN = "ab" * 32

# Cheap parameters keep hashing fast in tests
HASHER = PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def provider() -> MagicMock:
    provider = MagicMock()
    provider.get_authorization_url = MagicMock(return_value="https://id.example.com/authorize")
    provider.exchange_code_for_token = AsyncMock(
        return_value=OAuthToken(access_token="access-1", refresh_token="refresh-1")
    )
    provider.get_user_profile = AsyncMock(
        return_value=OAuthUser(id="kp_new_user", email="admin@example.com", name="Avery Payne")
    )
    provider.revoke_token = AsyncMock(return_value=True)
    return provider


@pytest.fixture
def auth_service(provider: MagicMock, email_service, clock) -> AuthService:
    verifier = IdentityVerifier(provider, SECRET, admin_emails=["admin@example.com"])
    return AuthService(
        provider,
        verifier,
        email_service,
        SECRET,
        admin_emails=["admin@example.com"],
        password_hasher=HASHER,
        clock=clock,
    )


def _user(password: str | None = "Correct-Horse1", **overrides) -> User:
    data = {
        "uid": "kp_user_002",
        "email": "client@example.com",
        "display_name": "Jordan Rivera",
        "role": "user",
        "is_active": True,
        "email_verified": False,
        "password_hash": HASHER.hash(password) if password else None,
    }
    data.update(overrides)
    return User(**data)


def _get_by_model(rows: dict):
    async def get(model, key):
        return rows.get(model)

    return AsyncMock(side_effect=get)


class TestPasswordPolicy:
    @pytest.mark.parametrize("password", ["Sh0rt!", "alllowercase!", "NoSpecial123"])
    def test_rejects_weak(self, password: str):
        with pytest.raises(ValidationError, match=PASSWORD_POLICY_MESSAGE):
            validate_password_policy(password)

    def test_accepts_strong(self):
        validate_password_policy("Leadership#2026")


class TestSafeRedirect:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("/admin/invoices", "/admin/invoices"),
            (None, "/admin"),
            ("", "/admin"),
            ("https://evil.example.com", "/admin"),
            ("//evil.example.com", "/admin"),
        ],
    )
    def test_only_relative_paths(self, value, expected):
        assert safe_redirect(value) == expected


class TestOAuthLogin:
    def test_login_url_carries_signed_state(self, auth_service: AuthService, provider: MagicMock):
        url = auth_service.build_login_url("/admin/leads", "https://coach.example.com/auth/callback")

        assert url == "https://id.example.com/authorize"
        state, callback = provider.get_authorization_url.call_args[0]
        assert callback == "https://coach.example.com/auth/callback"
        claims = jwt.decode(state, SECRET, algorithms=["HS256"], options={"verify_exp": False})
        assert claims["redirect_uri"] == "/admin/leads"
        assert claims["purpose"] == "oauth_state"

    async def test_complete_login_creates_admin(
        self, auth_service: AuthService, provider: MagicMock, db_session: AsyncMock
    ):
        provider.get_authorization_url = MagicMock(side_effect=lambda state, cb: state)
        state = auth_service.build_login_url("/admin/invoices", "https://coach.example.com/auth/callback")

        grant = await auth_service.complete_login("code-1", state, db_session)

        assert grant.user.uid == "kp_new_user"
        assert grant.user.role == UserRole.ADMIN
        assert grant.redirect_uri == "/admin/invoices"
        assert grant.refresh_token == "refresh-1"
        added = [call.args[0] for call in db_session.add.call_args_list]
        assert any(isinstance(row, User) for row in added)
        login_entries = [row for row in added if isinstance(row, AuditLog)]
        assert login_entries[0].action == "login"
        assert login_entries[0].details["title"] == "Admin login"
        provider.exchange_code_for_token.assert_awaited_once_with(
            "code-1", "https://coach.example.com/auth/callback"
        )

    async def test_bad_state(self, auth_service: AuthService, db_session: AsyncMock):
        with pytest.raises(UnauthorizedError, match="Invalid or expired login state"):
            await auth_service.complete_login("code-1", "not-a-jwt", db_session)

    async def test_state_with_wrong_purpose(self, auth_service: AuthService, db_session: AsyncMock):
        state = jwt.encode({"purpose": "session"}, SECRET, algorithm="HS256")
        with pytest.raises(UnauthorizedError):
            await auth_service.complete_login("code-1", state, db_session)

    async def test_failed_exchange(
        self, auth_service: AuthService, provider: MagicMock, db_session: AsyncMock
    ):
        provider.get_authorization_url = MagicMock(side_effect=lambda state, cb: state)
        provider.exchange_code_for_token = AsyncMock(side_effect=ValueError("Token exchange failed: 400"))
        state = auth_service.build_login_url(None, "https://coach.example.com/auth/callback")

        with pytest.raises(UnauthorizedError, match="Login failed"):
            await auth_service.complete_login("code-1", state, db_session)


class TestPasswordLogin:
    async def test_success(self, auth_service: AuthService, db_session: AsyncMock, make_result, fixed_now):
        user = _user()
        db_session.execute = AsyncMock(return_value=make_result(scalar=user))

        grant = await auth_service.login_with_password("Client@Example.com", "Correct-Horse1", db_session)

        assert grant.user.uid == "kp_user_002"
        assert user.last_login_at == fixed_now

    async def test_wrong_password(self, auth_service: AuthService, db_session: AsyncMock, make_result):
        db_session.execute = AsyncMock(return_value=make_result(scalar=_user()))
        with pytest.raises(UnauthorizedError, match=INVALID_CREDENTIALS):
            await auth_service.login_with_password("client@example.com", "wrong", db_session)

    async def test_unknown_user_same_message(self, auth_service: AuthService, db_session: AsyncMock):
        with pytest.raises(UnauthorizedError, match=INVALID_CREDENTIALS):
            await auth_service.login_with_password("ghost@example.com", "whatever", db_session)

    async def test_missing_fields(self, auth_service: AuthService, db_session: AsyncMock):
        with pytest.raises(ValidationError):
            await auth_service.login_with_password("", "x", db_session)


class TestChangePassword:
    async def test_changes_without_audit(
        self, auth_service: AuthService, db_session: AsyncMock, regular_user
    ):
        stored = _user()
        db_session.get = AsyncMock(return_value=stored)

        await auth_service.change_password(regular_user, "Correct-Horse1", "New-Password!", db_session)

        assert HASHER.verify(stored.password_hash, "New-Password!")
        db_session.commit.assert_awaited_once()
        db_session.add.assert_not_called()

    async def test_wrong_current_password(self, auth_service: AuthService, db_session: AsyncMock, regular_user):
        db_session.get = AsyncMock(return_value=_user())
        with pytest.raises(ValidationError, match="Current password is incorrect"):
            await auth_service.change_password(regular_user, "nope", "New-Password!", db_session)

    async def test_policy_checked_first(self, auth_service: AuthService, db_session: AsyncMock, regular_user):
        with pytest.raises(ValidationError, match=PASSWORD_POLICY_MESSAGE):
            await auth_service.change_password(regular_user, "Correct-Horse1", "weak", db_session)
        db_session.get.assert_not_awaited()


class TestPasswordReset:
    async def test_request_for_unknown_email_is_silent(
        self, auth_service: AuthService, db_session: AsyncMock, email_service
    ):
        await auth_service.request_password_reset("ghost@example.com", db_session)
        email_service.send.assert_not_awaited()
        db_session.add.assert_not_called()

    async def test_request_stores_token_and_emails(
        self, auth_service: AuthService, db_session: AsyncMock, email_service, make_result, fixed_now
    ):
        db_session.execute = AsyncMock(return_value=make_result(scalar=_user()))

        await auth_service.request_password_reset("Client@Example.com", db_session)

        row = db_session.add.call_args[0][0]
        assert isinstance(row, PasswordResetToken)
        assert len(row.token) == 64
        assert row.expires_at == fixed_now + timedelta(hours=1)
        outbound = email_service.send.call_args[0][0]
        assert outbound.to == "client@example.com"
        assert row.token in outbound.html

    async def test_request_survives_delivery_failure(
        self, auth_service: AuthService, db_session: AsyncMock, email_service, make_result
    ):
        db_session.execute = AsyncMock(return_value=make_result(scalar=_user()))
        email_service.send = AsyncMock(side_effect=DeliveryError("Failed to send email: down"))

        await auth_service.request_password_reset("client@example.com", db_session)

    @pytest.mark.parametrize(
        ("token", "password", "message"),
        [
            ("short", "Long-enough1", "Invalid reset token format"),
            (TOKEN, "short", "at least 8 characters"),
        ],
    )
    async def test_rejects_malformed_input(
        self, auth_service: AuthService, db_session: AsyncMock, token: str, password: str, message: str
    ):
        with pytest.raises(ValidationError, match=message):
            await auth_service.reset_password(token, "client@example.com", password, db_session)

    async def test_unknown_token(self, auth_service: AuthService, db_session: AsyncMock):
        with pytest.raises(ValidationError, match=INVALID_RESET_TOKEN):
            await auth_service.reset_password(TOKEN, "client@example.com", "Long-enough1", db_session)

    async def test_expired_token_is_deleted(
        self, auth_service: AuthService, db_session: AsyncMock, fixed_now: datetime
    ):
        row = PasswordResetToken(
            token=TOKEN,
            email="client@example.com",
            user_id="kp_user_002",
            expires_at=fixed_now - timedelta(minutes=1),
            used=False,
        )
        db_session.get = _get_by_model({PasswordResetToken: row})

        with pytest.raises(ValidationError, match=INVALID_RESET_TOKEN):
            await auth_service.reset_password(TOKEN, "client@example.com", "Long-enough1", db_session)
        db_session.delete.assert_awaited_once_with(row)

    async def test_token_for_other_email(
        self, auth_service: AuthService, db_session: AsyncMock, fixed_now: datetime
    ):
        row = PasswordResetToken(
            token=TOKEN,
            email="someone-else@example.com",
            user_id="kp_user_002",
            expires_at=fixed_now + timedelta(minutes=30),
            used=False,
        )
        db_session.get = _get_by_model({PasswordResetToken: row})
        with pytest.raises(ValidationError, match=INVALID_RESET_TOKEN):
            await auth_service.reset_password(TOKEN, "client@example.com", "Long-enough1", db_session)

    async def test_successful_reset(self, auth_service: AuthService, db_session: AsyncMock, fixed_now: datetime):
        row = PasswordResetToken(
            token=TOKEN,
            email="client@example.com",
            user_id="kp_user_002",
            expires_at=fixed_now + timedelta(minutes=30),
            used=False,
        )
        user = _user()
        db_session.get = _get_by_model({PasswordResetToken: row, User: user})

        await auth_service.reset_password(TOKEN, "Client@example.com", "Brand-new-pass", db_session)

        assert HASHER.verify(user.password_hash, "Brand-new-pass")
        db_session.delete.assert_awaited_once_with(row)


class TestEmailVerification:
    async def test_already_verified(self, auth_service: AuthService, db_session: AsyncMock, regular_user):
        db_session.get = AsyncMock(return_value=_user(email_verified=True))
        assert await auth_service.send_verification(regular_user, db_session) is False

    async def test_sends_link(
        self, auth_service: AuthService, db_session: AsyncMock, email_service, regular_user
    ):
        db_session.get = AsyncMock(return_value=_user())

        assert await auth_service.send_verification(regular_user, db_session) is True

        row = db_session.add.call_args[0][0]
        assert isinstance(row, EmailVerificationToken)
        assert email_service.send.call_args.kwargs["template"] == "email_verification"

    async def test_verify_marks_user_and_audits(
        self, auth_service: AuthService, db_session: AsyncMock, fixed_now: datetime
    ):
        row = EmailVerificationToken(
            token=TOKEN,
            email="client@example.com",
            user_id="kp_user_002",
            expires_at=fixed_now + timedelta(hours=1),
            used=False,
        )
        user = _user()
        db_session.get = _get_by_model({EmailVerificationToken: row, User: user})

        verified = await auth_service.verify_email(TOKEN, db_session)

        assert verified.email_verified is True
        entry = db_session.add.call_args[0][0]
        assert isinstance(entry, AuditLog)
        assert entry.details["title"] == "Email verified"

    async def test_malformed_token(self, auth_service: AuthService, db_session: AsyncMock):
        with pytest.raises(ValidationError):
            await auth_service.verify_email("xyz", db_session)


class TestUpdateProfile:
    async def test_updates_name_and_contact(
        self, auth_service: AuthService, db_session: AsyncMock, regular_user, fixed_now: datetime
    ):
        user = _user()
        db_session.get = AsyncMock(return_value=user)

        updated = await auth_service.update_profile(
            regular_user, " Jordan ", "Rivera-Lee", db_session, phone="+1 (555) 010-2000", organization=" Acme "
        )

        assert updated.display_name == "Jordan Rivera-Lee"
        assert updated.phone == "+1 (555) 010-2000"
        assert updated.organization == "Acme"
        assert updated.email == "client@example.com"
        assert updated.updated_at == fixed_now
        entry = db_session.add.call_args[0][0]
        assert isinstance(entry, AuditLog)
        assert entry.entity == "auth"
        assert entry.details["title"] == "Profile updated"
        assert entry.details["updatedFields"] == ["displayName", "phone", "organization"]

    async def test_name_only_leaves_contact_alone(
        self, auth_service: AuthService, db_session: AsyncMock, regular_user
    ):
        user = _user(phone="+15550100", organization="Northwind")
        db_session.get = AsyncMock(return_value=user)

        await auth_service.update_profile(regular_user, "Jordan", "Rivera", db_session)

        assert user.phone == "+15550100"
        assert user.organization == "Northwind"

    @pytest.mark.parametrize(
        ("first", "last", "field"),
        [("  ", "Rivera", "firstName"), ("Jordan", "", "lastName")],
    )
    async def test_names_required(
        self, auth_service: AuthService, db_session: AsyncMock, regular_user, first, last, field
    ):
        with pytest.raises(ValidationError) as exc_info:
            await auth_service.update_profile(regular_user, first, last, db_session)
        assert exc_info.value.field == field
        db_session.commit.assert_not_awaited()

    async def test_bad_phone(self, auth_service: AuthService, db_session: AsyncMock, regular_user):
        db_session.get = AsyncMock(return_value=_user())

        with pytest.raises(ValidationError, match="valid phone number"):
            await auth_service.update_profile(regular_user, "Jordan", "Rivera", db_session, phone="call me")

    async def test_missing_user_row(self, auth_service: AuthService, db_session: AsyncMock, regular_user):
        with pytest.raises(NotFoundError, match="User not found"):
            await auth_service.update_profile(regular_user, "Jordan", "Rivera", db_session)
        db_session.commit.assert_not_awaited()


class TestMaintenance:
    async def test_purge_counts_both_tables(self, auth_service: AuthService, db_session: AsyncMock, make_result):
        db_session.execute = AsyncMock(side_effect=[make_result(rowcount=2), make_result(rowcount=5)])
        assert await auth_service.purge_expired_tokens(db_session) == 7

    async def test_logout_revokes_refresh_token(self, auth_service: AuthService, provider: MagicMock):
        await auth_service.logout("refresh-1")
        provider.revoke_token.assert_awaited_once_with("refresh-1")

    async def test_logout_without_token(self, auth_service: AuthService, provider: MagicMock):
        await auth_service.logout(None)
        provider.revoke_token.assert_not_awaited()
