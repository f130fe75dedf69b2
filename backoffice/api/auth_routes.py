"""
Authentication routes.

Handles the OAuth flow, password sign-in, session cookies and credential
maintenance (profile, password change/reset, email verification).
"""

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from backoffice.api.dependencies import (
    ServiceContainer,
    get_current_user,
    get_request_meta,
    get_services,
    require_admin,
)
from backoffice.config import Settings
from backoffice.db.session import get_write_db
from backoffice.models.api import (
    AuthUserResponse,
    ChangePasswordRequest,
    LoginResponse,
    MeResponse,
    PasswordLoginRequest,
    ProfileResponse,
    PurgeResponse,
    ResetPasswordRequest,
    SendPasswordResetRequest,
    SuccessResponse,
    UpdateProfileRequest,
    UpdateProfileResponse,
    VerifyEmailRequest,
)
from backoffice.models.domain import AuthenticatedUser, RequestMeta, SessionGrant

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _user_response(user: AuthenticatedUser) -> AuthUserResponse:
    return AuthUserResponse(uid=user.uid, email=user.email, role=user.role)


def _set_session_cookies(response: Response, grant: SessionGrant, settings: Settings) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=grant.session_token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        max_age=settings.session_expire_hours * 3600,
    )
    if grant.refresh_token:
        response.set_cookie(
            key=settings.refresh_cookie_name,
            value=grant.refresh_token,
            httponly=True,
            secure=settings.session_cookie_secure,
            samesite="lax",
            max_age=30 * 24 * 3600,
        )


def _callback_url(settings: Settings) -> str:
    # Built from configuration only; request headers are client-controlled
    return f"{settings.app_url.rstrip('/')}/auth/callback"


@router.get("/login")
async def oauth_login(
    redirect_uri: str | None = None,
    services: ServiceContainer = Depends(get_services),
) -> RedirectResponse:
    """Redirect to the identity provider's consent screen."""
    auth_url = services.auth.build_login_url(redirect_uri, _callback_url(services.settings))
    return RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)


@router.get("/callback")
async def oauth_callback(
    code: str,
    state: str,
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
    meta: RequestMeta = Depends(get_request_meta),
) -> RedirectResponse:
    """Finish the OAuth flow, set the session cookie and redirect into the app."""
    grant = await services.auth.complete_login(code, state, db, meta)
    app_url = services.settings.app_url.rstrip("/")
    response = RedirectResponse(
        url=f"{app_url}{grant.redirect_uri or '/admin'}", status_code=status.HTTP_302_FOUND
    )
    _set_session_cookies(response, grant, services.settings)
    logger.info("oauth_callback_success", uid=grant.user.uid, role=grant.user.role.value)
    return response


@router.post("/login", response_model=LoginResponse)
async def password_login(
    body: PasswordLoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
    meta: RequestMeta = Depends(get_request_meta),
) -> LoginResponse:
    grant = await services.auth.login_with_password(body.email, body.password, db, meta)
    _set_session_cookies(response, grant, services.settings)
    return LoginResponse(user=_user_response(grant.user))


@router.post("/logout", response_model=SuccessResponse)
async def logout(
    request: Request,
    response: Response,
    services: ServiceContainer = Depends(get_services),
) -> SuccessResponse:
    settings = services.settings
    await services.auth.logout(request.cookies.get(settings.refresh_cookie_name))
    response.delete_cookie(key=settings.session_cookie_name)
    response.delete_cookie(key=settings.refresh_cookie_name)
    return SuccessResponse(message="Logged out successfully")


@router.get("/me", response_model=MeResponse)
async def me(user: AuthenticatedUser = Depends(get_current_user)) -> MeResponse:
    return MeResponse(user=_user_response(user))


@router.post("/change-password", response_model=SuccessResponse)
async def change_password(
    body: ChangePasswordRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
) -> SuccessResponse:
    await services.auth.change_password(user, body.current_password, body.new_password, db)
    return SuccessResponse(message="Password updated successfully")


@router.post("/update-profile", response_model=UpdateProfileResponse)
async def update_profile(
    body: UpdateProfileRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
    meta: RequestMeta = Depends(get_request_meta),
) -> UpdateProfileResponse:
    stored = await services.auth.update_profile(
        user,
        body.first_name,
        body.last_name,
        db,
        phone=body.phone,
        organization=body.organization,
        meta=meta,
    )
    return UpdateProfileResponse(
        message="Profile updated successfully",
        user=ProfileResponse(
            uid=stored.uid,
            email=stored.email,
            display_name=stored.display_name,
            phone=stored.phone,
            organization=stored.organization,
            role=user.role,
        ),
    )


@router.post("/send-password-reset", response_model=SuccessResponse)
async def send_password_reset(
    body: SendPasswordResetRequest,
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
) -> SuccessResponse:
    await services.auth.request_password_reset(body.email, db)
    return SuccessResponse(
        message="If an account exists for that email, a password reset link has been sent"
    )


@router.post("/reset-password", response_model=SuccessResponse)
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
) -> SuccessResponse:
    await services.auth.reset_password(body.token, body.email, body.password, db)
    return SuccessResponse(message="Password has been reset successfully")


@router.post("/send-verification", response_model=SuccessResponse)
async def send_verification(
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
) -> SuccessResponse:
    sent = await services.auth.send_verification(user, db)
    return SuccessResponse(message="Verification email sent" if sent else "Email is already verified")


@router.post("/verify-email", response_model=SuccessResponse)
async def verify_email(
    body: VerifyEmailRequest,
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
    meta: RequestMeta = Depends(get_request_meta),
) -> SuccessResponse:
    await services.auth.verify_email(body.token, db, meta)
    return SuccessResponse(message="Email verified successfully")


@router.post("/purge-tokens", response_model=PurgeResponse)
async def purge_tokens(
    admin: AuthenticatedUser = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
) -> PurgeResponse:
    deleted = await services.auth.purge_expired_tokens(db)
    return PurgeResponse(deleted=deleted)
