"""
Auth Service - Sign-in, sessions and credential maintenance.

Covers the OAuth authorization-code login, password login, profile updates,
password change and reset, and email verification. Session tokens are issued
through the IdentityVerifier so that issuing and verifying share one secret
and format.
"""

import re
import secrets
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta
from typing import Any

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from backoffice.db.models import EmailVerificationToken, PasswordResetToken, User, utc_now
from backoffice.exceptions import DeliveryError, NotFoundError, UnauthorizedError, ValidationError
from backoffice.models.api import AuditAction, UserRole
from backoffice.models.domain import AuthenticatedUser, OAuthUser, RequestMeta, SessionGrant
from backoffice.services.audit import AuditService
from backoffice.services.email import EmailService
from backoffice.services.identity import IdentityVerifier
from backoffice.services.identity_provider import IdentityProviderClient
from backoffice.services.leads import PHONE_PATTERN, PHONE_SEPARATORS

logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
PASSWORD_POLICY_MESSAGE = (
    "Password must contain at least 8 characters, 1 uppercase letter, 1 special character"
)
INVALID_RESET_TOKEN = "Invalid or expired reset token"
INVALID_VERIFICATION_TOKEN = "Invalid or expired verification token"

TOKEN_PATTERN = re.compile(r"^[0-9a-f]{64}$")
STATE_PURPOSE = "oauth_state"
STATE_TTL = timedelta(minutes=10)


def validate_password_policy(password: str) -> None:
    """At least 8 characters, one uppercase letter and one special character."""
    if (
        len(password) < 8
        or not any(ch.isupper() for ch in password)
        or all(ch.isalnum() for ch in password)
    ):
        raise ValidationError(PASSWORD_POLICY_MESSAGE, field="newPassword")


def safe_redirect(redirect_uri: str | None, default: str = "/admin") -> str:
    """Only same-site relative paths are honored after login."""
    if not redirect_uri or not redirect_uri.startswith("/") or redirect_uri.startswith("//"):
        return default
    return redirect_uri


def new_token() -> str:
    return secrets.token_hex(32)


class AuthService:
    """Sign-in and credential service."""

    def __init__(
        self,
        provider: IdentityProviderClient,
        verifier: IdentityVerifier,
        email: EmailService,
        jwt_secret: str,
        admin_emails: Iterable[str] = (),
        reset_ttl: timedelta = timedelta(hours=1),
        verification_ttl: timedelta = timedelta(hours=24),
        password_hasher: PasswordHasher | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider
        self.verifier = verifier
        self.email = email
        self.jwt_secret = jwt_secret
        self.admin_emails = frozenset(e.lower() for e in admin_emails)
        self.reset_ttl = reset_ttl
        self.verification_ttl = verification_ttl
        self.hasher = password_hasher or PasswordHasher()
        self.clock = clock

    # ========================================================================
    # OAuth login
    # ========================================================================

    def build_login_url(self, redirect_uri: str | None, callback_url: str) -> str:
        """
        Provider authorization URL. The state is a signed JWT carrying the
        post-login redirect, so no server-side session is needed.
        """
        now = self.clock()
        state = jwt.encode(
            {
                "purpose": STATE_PURPOSE,
                "redirect_uri": safe_redirect(redirect_uri),
                "callback_url": callback_url,
                "nonce": secrets.token_urlsafe(16),
                "iat": now,
                "exp": now + STATE_TTL,
            },
            self.jwt_secret,
            algorithm="HS256",
        )
        logger.info("oauth_flow_initiated", callback_url=callback_url)
        return self.provider.get_authorization_url(state, callback_url)

    def _decode_state(self, state: str) -> dict[str, Any]:
        try:
            claims: dict[str, Any] = jwt.decode(state, self.jwt_secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as exc:
            logger.warning("invalid_oauth_state", error=str(exc))
            raise UnauthorizedError("Invalid or expired login state") from exc
        if claims.get("purpose") != STATE_PURPOSE:
            raise UnauthorizedError("Invalid or expired login state")
        return claims

    async def complete_login(
        self, code: str, state: str, db: AsyncSession, meta: RequestMeta | None = None
    ) -> SessionGrant:
        """
        Finish the authorization-code flow and issue a session.

        Raises:
            UnauthorizedError: Bad state, failed exchange, or deactivated account
        """
        claims = self._decode_state(state)
        try:
            token = await self.provider.exchange_code_for_token(code, claims["callback_url"])
            profile = await self.provider.get_user_profile(token.access_token)
        except ValueError as exc:
            raise UnauthorizedError("Login failed") from exc

        user = await self._get_or_create_user(db, profile)
        if not user.is_active:
            logger.warning("inactive_user_login_attempt", email=user.email)
            raise UnauthorizedError("Account is deactivated")

        grant = await self._start_session(db, user, "oauth", meta)
        return SessionGrant(
            session_token=grant.session_token,
            user=grant.user,
            redirect_uri=claims.get("redirect_uri"),
            refresh_token=token.refresh_token,
        )

    async def _get_or_create_user(self, db: AsyncSession, profile: OAuthUser) -> User:
        user = await db.get(User, profile.id)
        if user is None:
            result = await db.execute(select(User).where(func.lower(User.email) == profile.email))
            user = result.scalar_one_or_none()
        if user is not None:
            if profile.name and not user.display_name:
                user.display_name = profile.name
            return user

        now = self.clock()
        role = UserRole.ADMIN if profile.email in self.admin_emails else UserRole.USER
        user = User(
            uid=profile.id,
            email=profile.email,
            display_name=profile.name,
            role=role.value,
            is_active=True,
            email_verified=True,
            created_at=now,
            updated_at=now,
        )
        db.add(user)
        logger.info("user_created", uid=user.uid, email=user.email, role=role.value)
        return user

    async def _start_session(
        self, db: AsyncSession, user: User, method: str, meta: RequestMeta | None
    ) -> SessionGrant:
        now = self.clock()
        user.last_login_at = now
        await db.commit()

        authenticated = AuthenticatedUser(uid=user.uid, email=user.email, role=UserRole(user.role))
        session_token = self.verifier.create_session_token(authenticated, now)
        logger.info("login_success", uid=user.uid, email=user.email, role=user.role, method=method)

        await AuditService(db, self.clock).log_action(
            authenticated,
            AuditAction.LOGIN,
            "auth",
            user.uid,
            {
                "title": "Admin login" if authenticated.is_admin else "User login",
                "method": method,
            },
            meta=meta,
        )
        return SessionGrant(session_token=session_token, user=authenticated)

    # ========================================================================
    # Password login
    # ========================================================================

    async def _find_by_email(self, db: AsyncSession, email: str) -> User | None:
        result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
        return result.scalar_one_or_none()

    async def login_with_password(
        self, email: str, password: str, db: AsyncSession, meta: RequestMeta | None = None
    ) -> SessionGrant:
        """
        Raises:
            ValidationError: Missing email or password
            UnauthorizedError: Any other failure, always with a generic message
        """
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = await self._find_by_email(db, email)
        if user is None or not user.password_hash or not user.is_active:
            logger.info("password_login_rejected", email=email)
            raise UnauthorizedError(INVALID_CREDENTIALS)

        try:
            self.hasher.verify(user.password_hash, password)
        except (VerificationError, InvalidHashError):
            logger.info("password_login_rejected", email=email)
            raise UnauthorizedError(INVALID_CREDENTIALS) from None

        if self.hasher.check_needs_rehash(user.password_hash):
            user.password_hash = self.hasher.hash(password)

        return await self._start_session(db, user, "password", meta)

    async def logout(self, refresh_token: str | None) -> None:
        """Revoke the provider refresh token, if any. Best-effort."""
        if refresh_token:
            revoked = await self.provider.revoke_token(refresh_token)
            logger.info("logout", refresh_token_revoked=revoked)

    # ========================================================================
    # Password change / reset
    # ========================================================================

    async def change_password(
        self, user: AuthenticatedUser, current_password: str, new_password: str, db: AsyncSession
    ) -> None:
        """Change the caller's password. Password changes are not audited."""
        if not current_password or not new_password:
            raise ValidationError("Current password and new password are required")
        validate_password_policy(new_password)

        stored = await db.get(User, user.uid)
        if stored is None or not stored.password_hash:
            raise ValidationError("Password sign-in is not enabled for this account")

        try:
            self.hasher.verify(stored.password_hash, current_password)
        except (VerificationError, InvalidHashError):
            raise ValidationError("Current password is incorrect", field="currentPassword") from None

        stored.password_hash = self.hasher.hash(new_password)
        stored.updated_at = self.clock()
        await db.commit()
        logger.info("password_changed", uid=user.uid)

    async def update_profile(
        self,
        user: AuthenticatedUser,
        first_name: str,
        last_name: str,
        db: AsyncSession,
        phone: str | None = None,
        organization: str | None = None,
        meta: RequestMeta | None = None,
    ) -> User:
        """
        Update the caller's display name and contact details. The email is
        the sign-in identity and is never changed here.

        Raises:
            ValidationError: Blank first or last name, or a malformed phone number
            NotFoundError: The caller has no user row
        """
        first_name = (first_name or "").strip()
        last_name = (last_name or "").strip()
        if not first_name:
            raise ValidationError("First name is required", field="firstName")
        if not last_name:
            raise ValidationError("Last name is required", field="lastName")
        phone = phone.strip() if phone and phone.strip() else None
        if phone and not PHONE_PATTERN.match(PHONE_SEPARATORS.sub("", phone)):
            raise ValidationError("Please enter a valid phone number", field="phone")

        stored = await db.get(User, user.uid)
        if stored is None:
            raise NotFoundError("user", user.uid)

        updated_fields = ["displayName"]
        stored.display_name = f"{first_name} {last_name}"
        if phone is not None:
            stored.phone = phone
            updated_fields.append("phone")
        if organization and organization.strip():
            stored.organization = organization.strip()
            updated_fields.append("organization")
        stored.updated_at = self.clock()
        await db.commit()
        logger.info("profile_updated", uid=user.uid, fields=updated_fields)

        await AuditService(db, self.clock).log_action(
            user,
            AuditAction.UPDATE,
            "auth",
            user.uid,
            {"title": "Profile updated", "email": stored.email, "updatedFields": updated_fields},
            meta=meta,
        )
        return stored

    async def request_password_reset(self, email: str, db: AsyncSession) -> None:
        """
        Issue a reset token and email the link. Unknown or inactive accounts
        get the same outward result so that account existence is not revealed.
        """
        if not email or not email.strip():
            raise ValidationError("Email is required", field="email")
        email = email.strip().lower()

        user = await self._find_by_email(db, email)
        if user is None or not user.is_active:
            logger.info("password_reset_unknown_email", email=email)
            return

        now = self.clock()
        token = new_token()
        db.add(
            PasswordResetToken(
                token=token,
                email=email,
                user_id=user.uid,
                expires_at=now + self.reset_ttl,
                used=False,
                created_at=now,
            )
        )
        await db.commit()

        try:
            await self.email.send(self.email.password_reset_email(email, token), template="password_reset")
        except DeliveryError as exc:
            logger.warning("password_reset_email_failed", email=email, error=exc.message)
            return
        logger.info("password_reset_requested", uid=user.uid)

    async def reset_password(self, token: str, email: str, new_password: str, db: AsyncSession) -> None:
        """
        Consume a reset token and set a new password.

        Raises:
            ValidationError: Missing fields, malformed token, short password,
                or a token that is unknown, used, expired or for another email
        """
        if not token or not email or not new_password:
            raise ValidationError("Token, email and new password are required")
        if not TOKEN_PATTERN.match(token):
            raise ValidationError("Invalid reset token format", field="token")
        if len(new_password) < 8:
            raise ValidationError("Password must be at least 8 characters", field="password")

        row = await db.get(PasswordResetToken, token)
        if row is None or row.used or row.email != email.strip().lower():
            raise ValidationError(INVALID_RESET_TOKEN)

        now = self.clock()
        if row.expires_at < now:
            await db.delete(row)
            await db.commit()
            raise ValidationError(INVALID_RESET_TOKEN)

        user = await db.get(User, row.user_id)
        if user is None:
            raise ValidationError(INVALID_RESET_TOKEN)

        user.password_hash = self.hasher.hash(new_password)
        user.updated_at = now
        await db.delete(row)
        await db.commit()
        logger.info("password_reset_completed", uid=user.uid)

    # ========================================================================
    # Email verification
    # ========================================================================

    async def send_verification(self, user: AuthenticatedUser, db: AsyncSession) -> bool:
        """
        Email a verification link. Returns False when already verified.

        Raises:
            NotFoundError: No stored user for the caller
            DeliveryError: Email could not be sent
        """
        stored = await db.get(User, user.uid)
        if stored is None:
            raise NotFoundError("user", user.uid)
        if stored.email_verified:
            return False

        now = self.clock()
        token = new_token()
        db.add(
            EmailVerificationToken(
                token=token,
                email=stored.email,
                user_id=stored.uid,
                expires_at=now + self.verification_ttl,
                used=False,
                created_at=now,
            )
        )
        await db.commit()

        outbound = self.email.verification_email(stored.email, stored.display_name, token)
        await self.email.send(outbound, template="email_verification")
        logger.info("verification_email_sent", uid=stored.uid)
        return True

    async def verify_email(self, token: str, db: AsyncSession, meta: RequestMeta | None = None) -> User:
        if not token or not TOKEN_PATTERN.match(token):
            raise ValidationError(INVALID_VERIFICATION_TOKEN, field="token")

        row = await db.get(EmailVerificationToken, token)
        if row is None or row.used:
            raise ValidationError(INVALID_VERIFICATION_TOKEN)

        now = self.clock()
        if row.expires_at < now:
            await db.delete(row)
            await db.commit()
            raise ValidationError(INVALID_VERIFICATION_TOKEN)

        user = await db.get(User, row.user_id)
        if user is None:
            raise ValidationError(INVALID_VERIFICATION_TOKEN)

        user.email_verified = True
        user.updated_at = now
        await db.delete(row)
        await db.commit()
        logger.info("email_verified", uid=user.uid)

        actor = AuthenticatedUser(uid=user.uid, email=user.email, role=UserRole(user.role))
        await AuditService(db, self.clock).log_action(
            actor,
            AuditAction.UPDATE,
            "user",
            user.uid,
            {"title": "Email verified", "email": user.email},
            meta=meta,
        )
        return user

    async def purge_expired_tokens(self, db: AsyncSession) -> int:
        """Delete expired or used reset and verification tokens. Returns rows removed."""
        now = self.clock()
        deleted = 0
        for model in (PasswordResetToken, EmailVerificationToken):
            result = await db.execute(
                delete(model).where(or_(model.expires_at < now, model.used.is_(True)))
            )
            deleted += result.rowcount or 0
        await db.commit()
        logger.info("auth_tokens_purged", deleted=deleted)
        return deleted
