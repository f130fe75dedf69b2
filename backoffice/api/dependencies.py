"""
FastAPI Dependencies - Service container, authentication and authorization.

Long-lived service handles are built once in the application lifespan and
stored on app.state.services. Request-scoped managers are constructed per
request around the request's database session.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from backoffice.config import Settings
from backoffice.db.models import utc_now
from backoffice.db.session import get_read_db, get_write_db
from backoffice.exceptions import ForbiddenError, UnauthorizedError
from backoffice.models.domain import AuthenticatedUser, AuthResult, RequestMeta
from backoffice.services.analytics import AnalyticsService
from backoffice.services.audit import AuditService, extract_request_meta
from backoffice.services.auth import AuthService
from backoffice.services.email import EmailService
from backoffice.services.identity import IdentityVerifier
from backoffice.services.identity_provider import IdentityProviderClient
from backoffice.services.invoices import InvoiceDefaults, InvoiceService
from backoffice.services.leads import LeadService
from backoffice.services.payment_provider import PaymentProvider
from backoffice.services.pdf import BusinessProfile, InvoicePDFRenderer
from backoffice.services.pending_payments import PendingPaymentService
from backoffice.services.resources import ResourceService
from backoffice.services.stripe_provider import StripeProvider
from backoffice.services.testimonials import TestimonialService

logger = get_logger(__name__)


# ============================================================================
# Service container
# ============================================================================


@dataclass
class ServiceContainer:
    """Process-wide service handles shared by all requests."""

    settings: Settings
    email: EmailService
    pdf: InvoicePDFRenderer
    identity_provider: IdentityProviderClient
    verifier: IdentityVerifier
    auth: AuthService
    payments: PaymentProvider
    invoice_defaults: InvoiceDefaults = field(default_factory=InvoiceDefaults)
    clock: Callable[[], datetime] = utc_now

    async def close(self) -> None:
        await self.identity_provider.close()


def build_services(settings: Settings) -> ServiceContainer:
    """Construct the service container from settings."""
    email = EmailService.from_settings(settings)
    identity_provider = IdentityProviderClient(
        issuer=settings.identity_provider_issuer,
        client_id=settings.identity_provider_client_id,
        client_secret=settings.identity_provider_client_secret,
        timeout=settings.identity_provider_timeout,
    )
    verifier = IdentityVerifier(
        provider=identity_provider,
        jwt_secret=settings.session_jwt_secret,
        cookie_name=settings.session_cookie_name,
        admin_emails=settings.admin_email_list,
        session_expire_hours=settings.session_expire_hours,
    )
    auth = AuthService(
        provider=identity_provider,
        verifier=verifier,
        email=email,
        jwt_secret=settings.session_jwt_secret,
        admin_emails=settings.admin_email_list,
        reset_ttl=timedelta(minutes=settings.password_reset_ttl_minutes),
        verification_ttl=timedelta(hours=settings.email_verification_ttl_hours),
    )
    return ServiceContainer(
        settings=settings,
        email=email,
        pdf=InvoicePDFRenderer(
            BusinessProfile(
                name=settings.business_name,
                email=settings.mail_sender,
                website=settings.app_url,
            )
        ),
        identity_provider=identity_provider,
        verifier=verifier,
        auth=auth,
        payments=StripeProvider(
            api_key=settings.stripe_api_key,
            webhook_secret=settings.stripe_webhook_secret,
        ),
        invoice_defaults=InvoiceDefaults(
            tax_rate=settings.invoice_tax_rate,
            due_days=settings.invoice_due_days,
            currency=settings.invoice_currency,
            terms=settings.invoice_terms,
        ),
    )


def get_services(request: Request) -> ServiceContainer:
    """Service container built in the lifespan."""
    services: ServiceContainer = request.app.state.services
    return services


def get_request_meta(request: Request) -> RequestMeta:
    return extract_request_meta(request.headers)


# ============================================================================
# Authentication
# ============================================================================


async def get_auth_result(
    request: Request,
    db: AsyncSession = Depends(get_read_db),
    services: ServiceContainer = Depends(get_services),
) -> AuthResult:
    """Verify the request credential. Never raises."""
    return await services.verifier.verify(request, db)


async def get_current_user(auth: AuthResult = Depends(get_auth_result)) -> AuthenticatedUser:
    """
    Require an authenticated user.

    Raises:
        UnauthorizedError: No credential, or it was rejected
    """
    if auth.user is None:
        if auth.error:
            logger.info("auth_rejected", reason=auth.error)
        raise UnauthorizedError()
    return auth.user


async def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """
    Require the admin role.

    Raises:
        ForbiddenError: Authenticated but not an admin
    """
    if not user.is_admin:
        logger.warning("admin_auth_insufficient_role", uid=user.uid, email=user.email, role=user.role.value)
        raise ForbiddenError()
    return user


# ============================================================================
# Request-scoped services
# ============================================================================


def get_audit_service(
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
) -> AuditService:
    return AuditService(db, clock=services.clock)


def get_read_audit_service(
    db: AsyncSession = Depends(get_read_db),
    services: ServiceContainer = Depends(get_services),
) -> AuditService:
    return AuditService(db, clock=services.clock)


def get_invoice_service(
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
    audit: AuditService = Depends(get_audit_service),
) -> InvoiceService:
    return InvoiceService(
        db=db,
        email=services.email,
        renderer=services.pdf,
        audit=audit,
        defaults=services.invoice_defaults,
        clock=services.clock,
    )


def get_pending_payment_service(
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
    audit: AuditService = Depends(get_audit_service),
) -> PendingPaymentService:
    return PendingPaymentService(db=db, email=services.email, audit=audit, clock=services.clock)


def get_lead_service(
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
    audit: AuditService = Depends(get_audit_service),
) -> LeadService:
    return LeadService(
        db=db,
        email=services.email,
        audit=audit,
        notify_to=services.settings.admin_notification_email,
        clock=services.clock,
    )


def get_resource_service(
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
    audit: AuditService = Depends(get_audit_service),
) -> ResourceService:
    return ResourceService(db=db, audit=audit, clock=services.clock)


def get_testimonial_service(
    db: AsyncSession = Depends(get_write_db),
    services: ServiceContainer = Depends(get_services),
    audit: AuditService = Depends(get_audit_service),
) -> TestimonialService:
    return TestimonialService(db=db, audit=audit, clock=services.clock)


def get_analytics_service(
    db: AsyncSession = Depends(get_read_db),
    services: ServiceContainer = Depends(get_services),
) -> AnalyticsService:
    return AnalyticsService(db, clock=services.clock)
