"""
Payment API routes - Pending payments and Stripe Checkout.

Public routes: pending-payment lookup, checkout session creation, payment
confirmation and the Stripe webhook. Admin routes manage pending payments.
"""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query, Request
from structlog import get_logger

from backoffice.api.dependencies import (
    ServiceContainer,
    get_invoice_service,
    get_pending_payment_service,
    get_request_meta,
    get_services,
    require_admin,
)
from backoffice.api.invoice_routes import invoice_response
from backoffice.db.models import PendingPayment
from backoffice.exceptions import (
    DeliveryError,
    NotFoundError,
    PaymentExpiredError,
    PaymentProviderError,
    ValidationError,
)
from backoffice.models.api import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreatePaymentLinkRequest,
    CreatePendingPaymentRequest,
    ExpireOverdueResponse,
    PaymentLinkResponse,
    PendingPaymentCreatedResponse,
    PendingPaymentListResponse,
    PendingPaymentLookupResponse,
    PendingPaymentResponse,
    PendingPaymentStatus,
    SuccessResponse,
    UpdatePendingPaymentRequest,
    UpdatePendingPaymentStatusRequest,
    UserPaymentStatusResponse,
    WebhookAckResponse,
)
from backoffice.models.domain import AuthenticatedUser, RequestMeta, to_money
from backoffice.services.invoices import InvoiceService
from backoffice.services.payment_provider import CheckoutRequest, CheckoutSession
from backoffice.services.pending_payments import PendingPaymentService

logger = get_logger(__name__)
router = APIRouter(prefix="/payment", tags=["payments"])

# option -> (amount, product name)
CHECKOUT_OPTIONS: dict[str, tuple[Decimal, str]] = {
    "consultation": (Decimal("150.00"), "Leadership Consultation"),
    "workshop": (Decimal("500.00"), "Leadership Workshop"),
    "retreat": (Decimal("2500.00"), "Executive Leadership Retreat"),
}
CUSTOM_OPTION = "custom"
CHECKOUT_COMPLETED = "checkout.session.completed"


def payment_response(payment: PendingPayment) -> PendingPaymentResponse:
    return PendingPaymentResponse(
        id=payment.id,
        client_email=payment.client_email,
        client_name=payment.client_name,
        base_amount=float(payment.base_amount),
        description=payment.description,
        status=PendingPaymentStatus(payment.status),
        invoice_number=payment.invoice_number,
        expires_at=payment.expires_at,
        notes=payment.notes,
        stripe_session_id=payment.stripe_session_id,
        amount_paid=float(payment.amount_paid) if payment.amount_paid is not None else None,
        bonus_amount=float(payment.bonus_amount) if payment.bonus_amount is not None else None,
        completed_at=payment.completed_at,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
    )


def to_minor(amount: Decimal) -> int:
    return int(to_money(amount) * 100)


def _urls(services: ServiceContainer) -> tuple[str, str]:
    app_url = services.settings.app_url.rstrip("/")
    return f"{app_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}", f"{app_url}/payment"


async def _checkout_for_pending(
    payment: PendingPayment,
    amount: Decimal | None,
    services: ServiceContainer,
) -> CheckoutSession:
    """Open a checkout for a pending payment; the client may pay more than base_amount."""
    if payment.status != PendingPaymentStatus.PENDING.value:
        raise ValidationError(f"Payment is {payment.status}")
    if payment.expires_at < services.clock():
        raise PaymentExpiredError(payment.id)

    base = to_money(payment.base_amount)
    charge = to_money(amount) if amount is not None else base
    if charge < base:
        raise ValidationError(f"Amount must be at least {base}", field="amount")
    if charge <= 0:
        raise ValidationError("Amount must be greater than zero", field="amount")

    success_url, cancel_url = _urls(services)
    session = await services.payments.create_checkout_session(
        CheckoutRequest(
            amount_minor=to_minor(charge),
            currency=services.settings.invoice_currency,
            product_name=payment.description,
            description=f"Payment for {payment.client_name}",
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=payment.client_email,
            metadata={
                "pending_payment_id": str(payment.id),
                "invoice_number": payment.invoice_number or "",
                "base_amount": str(base),
            },
        )
    )
    if not session.url:
        raise PaymentProviderError("Checkout session has no URL")
    return session


async def complete_checkout(
    session: CheckoutSession,
    pending: PendingPaymentService,
    invoices: InvoiceService,
    services: ServiceContainer,
    source: str,
) -> PendingPayment | None:
    """
    Apply a paid checkout session.

    Matches the pending payment by metadata id, then by email and amount;
    marks it completed, marks a linked invoice paid and sends the client a
    confirmation. Every step is idempotent, so webhook and confirm may both
    run for the same session.
    """
    amount_paid = Decimal(session.amount_total_minor or 0) / 100
    payment: PendingPayment | None = None

    payment_id = session.metadata.get("pending_payment_id")
    if payment_id:
        try:
            payment = await pending.get_payment(UUID(payment_id))
        except (ValueError, NotFoundError):
            logger.warning("checkout_pending_payment_missing", pending_payment_id=payment_id)
    if payment is None and session.customer_email:
        payment = await pending.find_matching(session.customer_email, amount_paid)

    newly_completed = False
    if payment is not None:
        newly_completed = payment.status != PendingPaymentStatus.COMPLETED.value
        payment = await pending.mark_completed(
            payment.id,
            stripe_session_id=session.session_id,
            amount_paid=amount_paid,
            source=source,
        )
    else:
        logger.info("checkout_without_pending_payment", session_id=session.session_id)

    invoice_number = session.metadata.get("invoice_number") or (
        payment.invoice_number if payment else None
    )
    if invoice_number:
        await invoices.mark_paid_by_number(invoice_number)

    recipient = payment.client_email if payment else session.customer_email
    should_notify = newly_completed or (payment is None and source == "webhook")
    if recipient and should_notify:
        outbound = services.email.payment_confirmation_email(
            to=recipient,
            client_name=payment.client_name if payment else "there",
            amount_paid=amount_paid,
            description=payment.description if payment else session.metadata.get("option", "your session"),
            invoice_number=invoice_number,
        )
        try:
            await services.email.send(outbound, template="payment_confirmation")
        except DeliveryError as exc:
            logger.warning("payment_confirmation_email_failed", session_id=session.session_id, error=exc.message)

    return payment


# ============================================================================
# Public routes
# ============================================================================


@router.get("/pending", response_model=PendingPaymentLookupResponse)
async def get_pending_payment(
    email: str = Query("", description="Client email"),
    pending: PendingPaymentService = Depends(get_pending_payment_service),
) -> PendingPaymentLookupResponse:
    if not email.strip():
        raise ValidationError("Email is required", field="email")
    payment = await pending.get_active_for_email(email)
    return PendingPaymentLookupResponse(payment=payment_response(payment))


@router.get("/user-status", response_model=UserPaymentStatusResponse)
async def get_user_payment_status(
    email: str = Query("", description="Client email"),
    pending: PendingPaymentService = Depends(get_pending_payment_service),
    invoices: InvoiceService = Depends(get_invoice_service),
    services: ServiceContainer = Depends(get_services),
) -> UserPaymentStatusResponse:
    """Whether the client has something to pay: an open pending payment or an unpaid invoice."""
    if not email.strip():
        raise ValidationError("Email is required", field="email")
    payment, has_completed = await pending.status_for_email(email)
    invoice = await invoices.latest_open_invoice(email)
    return UserPaymentStatusResponse(
        has_pending_payment=payment is not None,
        has_completed_payment=has_completed,
        pending_payment=payment_response(payment) if payment else None,
        has_latest_invoice_pending=invoice is not None,
        latest_invoice=invoice_response(invoice, services.clock()) if invoice else None,
        should_show_payment_button=payment is not None or invoice is not None,
    )


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    body: CheckoutSessionRequest,
    pending: PendingPaymentService = Depends(get_pending_payment_service),
    services: ServiceContainer = Depends(get_services),
) -> CheckoutSessionResponse:
    option = body.option.strip().lower()

    if option == CUSTOM_OPTION:
        if body.pending_payment_id is None:
            raise ValidationError("pendingPaymentId is required for custom payments", field="pendingPaymentId")
        payment = await pending.get_payment(body.pending_payment_id)
        session = await _checkout_for_pending(payment, body.amount, services)
    elif option in CHECKOUT_OPTIONS:
        amount, product_name = CHECKOUT_OPTIONS[option]
        success_url, cancel_url = _urls(services)
        session = await services.payments.create_checkout_session(
            CheckoutRequest(
                amount_minor=to_minor(amount),
                currency=services.settings.invoice_currency,
                product_name=product_name,
                description=f"{services.settings.business_name} - {product_name}",
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=body.customer_email,
                metadata={"option": option},
            )
        )
        if not session.url:
            raise PaymentProviderError("Checkout session has no URL")
    else:
        allowed = ", ".join([*CHECKOUT_OPTIONS, CUSTOM_OPTION])
        raise ValidationError(f"Invalid payment option. Must be one of: {allowed}", field="option")

    logger.info("checkout_session_created", option=option, session_id=session.session_id)
    return CheckoutSessionResponse(session_id=session.session_id, url=session.url or "")


@router.post("/webhook", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="Stripe-Signature"),
    pending: PendingPaymentService = Depends(get_pending_payment_service),
    invoices: InvoiceService = Depends(get_invoice_service),
    services: ServiceContainer = Depends(get_services),
) -> WebhookAckResponse:
    payload = await request.body()
    event = await services.payments.verify_webhook(payload, stripe_signature)

    if event.event_type == CHECKOUT_COMPLETED and event.session is not None:
        if event.session.is_paid:
            await complete_checkout(event.session, pending, invoices, services, source="webhook")
        else:
            logger.info("checkout_completed_unpaid", session_id=event.session.session_id)
    else:
        logger.debug("stripe_webhook_ignored", event_type=event.event_type, event_id=event.event_id)

    return WebhookAckResponse()


@router.post("/confirm", response_model=ConfirmPaymentResponse)
async def confirm_payment(
    body: ConfirmPaymentRequest,
    pending: PendingPaymentService = Depends(get_pending_payment_service),
    invoices: InvoiceService = Depends(get_invoice_service),
    services: ServiceContainer = Depends(get_services),
) -> ConfirmPaymentResponse:
    session = await services.payments.retrieve_checkout_session(body.session_id)
    if not session.is_paid:
        raise ValidationError("Payment has not been completed", field="sessionId")

    payment = await complete_checkout(session, pending, invoices, services, source="confirm")
    amount_paid = Decimal(session.amount_total_minor or 0) / 100
    return ConfirmPaymentResponse(
        payment_id=payment.id if payment else None,
        amount_paid=float(amount_paid),
        base_amount=float(payment.base_amount) if payment else None,
        bonus_amount=float(payment.bonus_amount) if payment and payment.bonus_amount is not None else None,
    )


# ============================================================================
# Admin routes
# ============================================================================


@router.post("/create-pending", response_model=PendingPaymentCreatedResponse)
async def create_pending_payment(
    body: CreatePendingPaymentRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    pending: PendingPaymentService = Depends(get_pending_payment_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> PendingPaymentCreatedResponse:
    payment = await pending.create(body, admin, meta)
    return PendingPaymentCreatedResponse(payment=payment_response(payment))


@router.post("/create-link", response_model=PaymentLinkResponse)
async def create_payment_link(
    body: CreatePaymentLinkRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    pending: PendingPaymentService = Depends(get_pending_payment_service),
    services: ServiceContainer = Depends(get_services),
) -> PaymentLinkResponse:
    payment = await pending.get_payment(body.pending_payment_id)
    session = await _checkout_for_pending(payment, None, services)
    logger.info("payment_link_created", payment_id=str(payment.id), created_by=admin.uid)
    return PaymentLinkResponse(payment_url=session.url or "", session_id=session.session_id)


@router.get("/admin/payments", response_model=PendingPaymentListResponse)
async def list_pending_payments(
    status: str | None = Query(None),
    admin: AuthenticatedUser = Depends(require_admin),
    pending: PendingPaymentService = Depends(get_pending_payment_service),
) -> PendingPaymentListResponse:
    payments = await pending.list_payments(status)
    return PendingPaymentListResponse(payments=[payment_response(p) for p in payments])


@router.put("/admin/update-payment", response_model=SuccessResponse)
async def update_pending_payment(
    body: UpdatePendingPaymentRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    pending: PendingPaymentService = Depends(get_pending_payment_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> SuccessResponse:
    _, notified = await pending.update(body, admin, meta)
    message = "Payment updated and client notified" if notified else "Payment updated"
    return SuccessResponse(message=message)


@router.put("/admin/update-status", response_model=SuccessResponse)
async def update_pending_payment_status(
    body: UpdatePendingPaymentStatusRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    pending: PendingPaymentService = Depends(get_pending_payment_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> SuccessResponse:
    payment = await pending.update_status(body.payment_id, body.status, admin, meta)
    return SuccessResponse(message=f"Payment status updated to {payment.status}")


@router.post("/admin/expire-overdue", response_model=ExpireOverdueResponse)
async def expire_overdue_payments(
    admin: AuthenticatedUser = Depends(require_admin),
    pending: PendingPaymentService = Depends(get_pending_payment_service),
) -> ExpireOverdueResponse:
    expired = await pending.expire_overdue()
    return ExpireOverdueResponse(expired=expired)
