"""
Identity Verifier - Request-scoped credential verification.

Two credential schemes are accepted:
    header: Authorization: Bearer <identity-provider access token>
    cookie: session JWT (HS256) issued by this service at sign-in

The header wins when both are present. verify() never raises: callers get
an AuthResult and decide whether an absent user is an error.
"""

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from fastapi import Request
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from backoffice.db.models import User
from backoffice.models.api import UserRole
from backoffice.models.domain import AuthenticatedUser, AuthResult
from backoffice.services.identity_provider import IdentityProviderClient

logger = get_logger(__name__)

HEADER_SCHEME = "header"
COOKIE_SCHEME = "cookie"
SESSION_TOKEN_TYPE = "session"


def extract_credential(
    headers: Mapping[str, str], cookies: Mapping[str, str], cookie_name: str
) -> tuple[str, str] | None:
    """Return (scheme, token) or None. The Authorization header wins."""
    authorization = headers.get("authorization") or ""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return HEADER_SCHEME, token.strip()

    cookie = cookies.get(cookie_name)
    if cookie:
        return COOKIE_SCHEME, cookie
    return None


class IdentityVerifier:
    """Verifies bearer tokens and session cookies and resolves the user's role."""

    def __init__(
        self,
        provider: IdentityProviderClient,
        jwt_secret: str,
        cookie_name: str = "auth_token",
        admin_emails: Iterable[str] = (),
        session_expire_hours: int = 24,
    ):
        self.provider = provider
        self.jwt_secret = jwt_secret
        self.cookie_name = cookie_name
        self.admin_emails = frozenset(email.lower() for email in admin_emails)
        self.session_expire_hours = session_expire_hours

    # ========================================================================
    # Session tokens
    # ========================================================================

    def create_session_token(self, user: AuthenticatedUser, now: datetime | None = None) -> str:
        """Create the HS256 session JWT stored in the session cookie."""
        now = now or datetime.now(UTC)
        payload = {
            "sub": user.uid,
            "email": user.email,
            "role": user.role.value,
            "typ": SESSION_TOKEN_TYPE,
            "iat": now,
            "exp": now + timedelta(hours=self.session_expire_hours),
        }
        return jwt.encode(payload, self.jwt_secret, algorithm="HS256")

    def decode_session_token(self, token: str) -> dict[str, Any]:
        """
        Decode and verify a session JWT.

        Raises:
            jwt.InvalidTokenError: Bad signature, expired, or not a session token
        """
        payload: dict[str, Any] = jwt.decode(
            token,
            self.jwt_secret,
            algorithms=["HS256"],
            options={"require": ["sub", "email", "exp"]},
        )
        if payload.get("typ") != SESSION_TOKEN_TYPE:
            raise jwt.InvalidTokenError("Not a session token")
        return payload

    # ========================================================================
    # Verification
    # ========================================================================

    def resolve_role(self, stored: User | None, claimed: str | None, email: str) -> UserRole:
        """Stored role, then the token claim, then ADMIN_EMAILS, then user."""
        for candidate in (stored.role if stored else None, claimed):
            if candidate in (UserRole.ADMIN.value, UserRole.USER.value):
                return UserRole(candidate)
        if email.lower() in self.admin_emails:
            return UserRole.ADMIN
        return UserRole.USER

    async def _load_user(self, db: AsyncSession, uid: str, email: str) -> User | None:
        user = await db.get(User, uid)
        if user is not None:
            return user
        result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
        return result.scalar_one_or_none()

    async def verify(self, request: Request, db: AsyncSession) -> AuthResult:
        """
        Verify the request's credential.

        Returns:
            AuthResult(None, None) when no credential is present,
            AuthResult(None, error) when it is rejected,
            AuthResult(user) on success.
        """
        credential = extract_credential(request.headers, request.cookies, self.cookie_name)
        if credential is None:
            return AuthResult(user=None)
        scheme, token = credential

        claimed_role: str | None = None
        try:
            if scheme == HEADER_SCHEME:
                profile = await self.provider.get_user_profile(token)
                uid, email = profile.id, profile.email
            else:
                claims = self.decode_session_token(token)
                uid, email = str(claims["sub"]), str(claims["email"])
                claimed_role = claims.get("role")
        except jwt.ExpiredSignatureError:
            logger.info("session_token_expired", scheme=scheme)
            return AuthResult(user=None, error="Session expired")
        except jwt.InvalidTokenError as exc:
            logger.warning("session_token_invalid", scheme=scheme, error=str(exc))
            return AuthResult(user=None, error="Invalid session token")
        except ValueError as exc:
            logger.warning("access_token_rejected", scheme=scheme, error=str(exc))
            return AuthResult(user=None, error=f"Token verification failed: {exc}")
        except Exception as exc:
            logger.error("credential_verification_error", scheme=scheme, error=str(exc), exc_info=True)
            return AuthResult(user=None, error="Token verification failed")

        try:
            stored = await self._load_user(db, uid, email)
        except SQLAlchemyError as exc:
            logger.error("user_lookup_failed", uid=uid, error=str(exc))
            return AuthResult(user=None, error="Could not load user")

        if stored is not None and not stored.is_active:
            logger.warning("inactive_user_request", uid=stored.uid, email=stored.email)
            return AuthResult(user=None, error="Account is deactivated")

        user = AuthenticatedUser(
            uid=stored.uid if stored else uid,
            email=stored.email if stored else email,
            role=self.resolve_role(stored, claimed_role, email),
        )
        return AuthResult(user=user)
