"""
Invoice Service - Invoice lifecycle and status state machine.

All invoice mutations go through this service. Each admin-triggered mutation
commits first and then writes exactly one audit entry; the audit write is
best-effort.

State machine:
    draft/sent -> sent | paid | overdue | cancelled
    overdue    -> paid | cancelled
    paid, cancelled -> (terminal)

"overdue" is also derived on read for draft/sent invoices whose due date has
passed; it is only persisted through an explicit status update.
"""

import re
import secrets
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backoffice.db.models import Invoice, utc_now
from backoffice.exceptions import (
    ConflictError,
    InternalError,
    InvalidStatusError,
    NotFoundError,
    ValidationError,
)
from backoffice.models.api import AuditAction, CreateInvoiceRequest, InvoiceStatus, LineItemInput
from backoffice.models.domain import AuthenticatedUser, InvoiceTotals, LineItem, RequestMeta, to_money
from backoffice.observability.logging import get_logger
from backoffice.observability.metrics import metrics
from backoffice.observability.tracing import trace_operation
from backoffice.services.audit import AuditService
from backoffice.services.email import EmailService
from backoffice.services.pdf import InvoicePDFRenderer

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset(
        {InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}
    ),
    InvoiceStatus.SENT: frozenset(
        {InvoiceStatus.SENT, InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.CANCELLED}
    ),
    InvoiceStatus.OVERDUE: frozenset({InvoiceStatus.PAID, InvoiceStatus.CANCELLED}),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.CANCELLED: frozenset(),
}

INVOICE_NUMBER_ATTEMPTS = 5
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class InvoiceDefaults:
    """Defaults applied when a create request omits them."""

    tax_rate: Decimal = Decimal("8")
    due_days: int = 30
    currency: str = "USD"
    terms: str = "Payment is due within 30 days of invoice date."


def parse_invoice_status(value: str) -> InvoiceStatus:
    """Raises InvalidStatusError for anything outside the five statuses."""
    try:
        return InvoiceStatus(value)
    except ValueError:
        raise InvalidStatusError(value, [s.value for s in InvoiceStatus]) from None


def build_line_items(items: Sequence[LineItemInput]) -> list[LineItem]:
    """Validate submitted lines and assign ids item-1..item-N."""
    if not items:
        raise ValidationError("At least one line item is required", field="items")

    line_items = []
    for index, item in enumerate(items, start=1):
        if not item.description.strip():
            raise ValidationError(f"Line item {index}: description is required", field="items")
        if item.quantity <= 0:
            raise ValidationError(f"Line item {index}: quantity must be positive", field="items")
        if item.unit_price < 0:
            raise ValidationError(f"Line item {index}: price cannot be negative", field="items")
        line_items.append(
            LineItem(
                id=f"item-{index}",
                description=item.description.strip(),
                quantity=item.quantity,
                unit_price=to_money(item.unit_price),
                type=item.type,
            )
        )
    return line_items


def compute_totals(items: Sequence[LineItem], tax_rate: Decimal) -> InvoiceTotals:
    """subtotal = sum of line totals; tax rounded half-up to cents; total = subtotal + tax."""
    if tax_rate < 0 or tax_rate > 100:
        raise ValidationError("Tax rate must be between 0 and 100", field="taxRate")
    subtotal = to_money(sum((item.total for item in items), Decimal("0")))
    tax_amount = to_money(subtotal * tax_rate / Decimal("100"))
    return InvoiceTotals(
        subtotal=subtotal,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        total=subtotal + tax_amount,
    )


def generate_invoice_number(now: datetime, randbelow: Callable[[int], int] = secrets.randbelow) -> str:
    """INV-YYYYMM-NNNN with a random 4-digit suffix."""
    return f"INV-{now:%Y%m}-{randbelow(10000):04d}"


def effective_status(invoice: Invoice, now: datetime) -> InvoiceStatus:
    """Stored status, except unpaid draft/sent invoices past due read as overdue."""
    status = InvoiceStatus(invoice.status)
    if status in (InvoiceStatus.DRAFT, InvoiceStatus.SENT) and invoice.due_date < now:
        return InvoiceStatus.OVERDUE
    return status


def invoice_snapshot(invoice: Invoice) -> dict[str, Any]:
    """Fields captured in audit entries."""
    return {
        "invoiceNumber": invoice.invoice_number,
        "clientName": invoice.client_name,
        "clientEmail": invoice.client_email,
        "total": float(invoice.total),
        "status": invoice.status,
    }


def _start_of_day(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=UTC)


class InvoiceService:
    """Invoice lifecycle manager bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        email: EmailService,
        renderer: InvoicePDFRenderer,
        audit: AuditService,
        defaults: InvoiceDefaults | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.email = email
        self.renderer = renderer
        self.audit = audit
        self.defaults = defaults or InvoiceDefaults()
        self.clock = clock

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = await self.db.get(Invoice, invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    async def list_invoices(
        self, status: str | None = None, page: int = 1, limit: int = 50
    ) -> tuple[list[Invoice], int, int, int]:
        """
        List invoices newest first.

        The status filter matches the effective status, so "overdue" also
        returns draft/sent invoices that are past due.

        Returns:
            (invoices, total, page, limit)
        """
        page = max(page, 1)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        now = self.clock()

        conditions = []
        if status and status != "all":
            wanted = parse_invoice_status(status)
            unpaid = Invoice.status.in_([InvoiceStatus.DRAFT.value, InvoiceStatus.SENT.value])
            if wanted == InvoiceStatus.OVERDUE:
                conditions.append(
                    or_(
                        Invoice.status == InvoiceStatus.OVERDUE.value,
                        and_(unpaid, Invoice.due_date < now),
                    )
                )
            elif wanted in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
                conditions.append(and_(Invoice.status == wanted.value, Invoice.due_date >= now))
            else:
                conditions.append(Invoice.status == wanted.value)

        count_stmt = select(func.count()).select_from(Invoice).where(*conditions)
        total = (await self.db.execute(count_stmt)).scalar_one()

        stmt = (
            select(Invoice)
            .where(*conditions)
            .order_by(Invoice.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), int(total), page, limit

    async def latest_open_invoice(self, email: str) -> Invoice | None:
        """Newest invoice sent to the client that still awaits payment (sent or overdue)."""
        result = await self.db.execute(
            select(Invoice)
            .where(
                func.lower(Invoice.client_email) == email.strip().lower(),
                Invoice.status.in_([InvoiceStatus.SENT.value, InvoiceStatus.OVERDUE.value]),
            )
            .order_by(Invoice.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ========================================================================
    # Mutations
    # ========================================================================

    async def create_invoice(
        self,
        data: CreateInvoiceRequest,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> Invoice:
        """
        Create a draft invoice.

        Raises:
            ValidationError: Bad client email, no items, non-positive quantity,
                negative price, tax rate out of range, due date before issue date
        """
        now = self.clock()
        client_email = data.client_email.strip().lower()
        if not EMAIL_PATTERN.match(client_email):
            raise ValidationError("Please enter a valid client email address", field="clientEmail")

        items = build_line_items(data.items)
        tax_rate = data.tax_rate if data.tax_rate is not None else self.defaults.tax_rate
        totals = compute_totals(items, tax_rate)

        issue_date = _start_of_day(data.issue_date) if data.issue_date else now
        due_date = (
            _start_of_day(data.due_date)
            if data.due_date
            else issue_date + timedelta(days=self.defaults.due_days)
        )
        if due_date < issue_date:
            raise ValidationError("Due date cannot be before the issue date", field="dueDate")

        invoice = Invoice(
            id=uuid4(),
            invoice_number=await self._unique_invoice_number(now),
            client_name=data.client_name.strip(),
            client_email=client_email,
            client_address=data.client_address,
            line_items=[item.to_json() for item in items],
            subtotal=totals.subtotal,
            tax_rate=totals.tax_rate,
            tax_amount=totals.tax_amount,
            total=totals.total,
            currency=self.defaults.currency,
            status=InvoiceStatus.DRAFT.value,
            issue_date=issue_date,
            due_date=due_date,
            notes=data.notes,
            terms=data.terms or self.defaults.terms,
            created_by=actor.uid,
            created_at=now,
            updated_at=now,
        )
        self.db.add(invoice)
        await self.db.commit()

        metrics.invoices_created_total.inc()
        logger.info(
            "invoice_created",
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
            total=str(invoice.total),
            created_by=actor.uid,
        )

        await self.audit.log_action(
            actor,
            AuditAction.CREATE,
            "invoice",
            str(invoice.id),
            invoice_snapshot(invoice),
            name=invoice.invoice_number,
            meta=meta,
        )
        return invoice

    async def update_status(
        self,
        invoice_id: UUID,
        new_status: str,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> Invoice:
        """
        Explicit admin status change.

        Raises:
            InvalidStatusError: new_status is not one of the five statuses
            NotFoundError: Unknown invoice
            ConflictError: Transition not allowed from the current status
        """
        target = parse_invoice_status(new_status)
        invoice = await self.get_invoice(invoice_id)
        current = InvoiceStatus(invoice.status)

        if target not in ALLOWED_TRANSITIONS[current]:
            logger.warning(
                "invoice_transition_rejected",
                invoice_id=str(invoice_id),
                from_status=current.value,
                to_status=target.value,
            )
            raise ConflictError(
                f"Cannot change invoice status from {current.value} to {target.value}"
            )

        self._apply_transition(invoice, target, self.clock())
        await self._commit(invoice, "update_status")

        logger.info(
            "invoice_status_updated",
            invoice_id=str(invoice_id),
            from_status=current.value,
            to_status=target.value,
        )

        await self.audit.log_action(
            actor,
            AuditAction.UPDATE,
            "invoice",
            str(invoice.id),
            {
                "invoiceNumber": invoice.invoice_number,
                "clientName": invoice.client_name,
                "clientEmail": invoice.client_email,
                "amount": float(invoice.total),
            },
            before={"status": current.value},
            after={"status": target.value},
            meta=meta,
        )
        return invoice

    async def email_invoice(
        self,
        invoice_id: UUID,
        actor: AuthenticatedUser,
        message: str | None = None,
        document: bytes | None = None,
        meta: RequestMeta | None = None,
    ) -> Invoice:
        """
        Email the invoice PDF to the client; a draft becomes sent.

        The status only advances after the email is accepted by the mail
        server. A re-send of a sent invoice keeps the original sent_at.

        Raises:
            NotFoundError: Unknown invoice
            ConflictError: Invoice is cancelled
            InternalError: PDF could not be rendered
            DeliveryError: Email could not be sent (no status change)
        """
        invoice = await self.get_invoice(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED.value:
            raise ConflictError("Cannot email a cancelled invoice")

        with trace_operation(
            "invoice_email", invoice_id=str(invoice.id), invoice_number=invoice.invoice_number
        ):
            pdf = document or await self.renderer.render(invoice)
            outbound = self.email.invoice_email(
                to=invoice.client_email,
                client_name=invoice.client_name,
                invoice_number=invoice.invoice_number,
                total=invoice.total,
                currency=invoice.currency,
                due_date=invoice.due_date,
                document=pdf,
                message=message,
            )
            await self.email.send(outbound, template="invoice")

        now = self.clock()
        previous = invoice.status
        if previous == InvoiceStatus.DRAFT.value:
            self._apply_transition(invoice, InvoiceStatus.SENT, now)
        else:
            invoice.updated_at = now
        await self._commit(invoice, "email_invoice")

        logger.info(
            "invoice_emailed",
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
            status_changed=previous != invoice.status,
        )

        await self.audit.log_action(
            actor,
            AuditAction.UPDATE,
            "invoice",
            str(invoice.id),
            {
                "title": "Invoice emailed to client",
                "invoiceNumber": invoice.invoice_number,
                "clientEmail": invoice.client_email,
                "hasCustomMessage": bool(message),
                "previousStatus": previous,
                "status": invoice.status,
            },
            meta=meta,
        )
        return invoice

    async def render_invoice(
        self,
        invoice_id: UUID,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> tuple[Invoice, bytes]:
        invoice = await self.get_invoice(invoice_id)
        pdf = await self.renderer.render(invoice)
        await self.audit.log_action(
            actor,
            AuditAction.DOWNLOAD,
            "invoice",
            str(invoice.id),
            {
                "title": f"Downloaded invoice: {invoice.invoice_number}",
                "invoiceNumber": invoice.invoice_number,
            },
            meta=meta,
        )
        return invoice, pdf

    async def delete_invoice(
        self,
        invoice_id: UUID,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> dict[str, Any]:
        """
        Hard delete. The snapshot is read before deletion and recorded in the
        audit entry. A missing invoice raises NotFoundError and is not audited.
        """
        invoice = await self.get_invoice(invoice_id)
        snapshot = invoice_snapshot(invoice)

        await self.db.delete(invoice)
        await self.db.commit()

        logger.info(
            "invoice_deleted",
            invoice_id=str(invoice_id),
            invoice_number=snapshot["invoiceNumber"],
        )

        await self.audit.log_action(
            actor,
            AuditAction.DELETE,
            "invoice",
            str(invoice_id),
            snapshot,
            name=snapshot["invoiceNumber"],
            meta=meta,
        )
        return snapshot

    async def mark_paid_by_number(self, invoice_number: str) -> Invoice | None:
        """
        Payment-event transition. Idempotent: an already-paid invoice is left
        untouched; a cancelled one is logged and skipped.
        """
        result = await self.db.execute(
            select(Invoice).where(Invoice.invoice_number == invoice_number)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            logger.warning("payment_for_unknown_invoice", invoice_number=invoice_number)
            return None

        if invoice.status == InvoiceStatus.PAID.value:
            logger.info("invoice_already_paid", invoice_number=invoice_number)
            return invoice
        if invoice.status == InvoiceStatus.CANCELLED.value:
            logger.warning("payment_for_cancelled_invoice", invoice_number=invoice_number)
            return invoice

        self._apply_transition(invoice, InvoiceStatus.PAID, self.clock())
        await self._commit(invoice, "mark_paid")
        logger.info("invoice_marked_paid", invoice_number=invoice_number)
        return invoice

    # ========================================================================
    # Internals
    # ========================================================================

    def _apply_transition(self, invoice: Invoice, target: InvoiceStatus, now: datetime) -> None:
        """Set status; sent_at/paid_at are only ever set once."""
        previous = invoice.status
        invoice.status = target.value
        if target == InvoiceStatus.SENT and invoice.sent_at is None:
            invoice.sent_at = now
        if target == InvoiceStatus.PAID and invoice.paid_at is None:
            invoice.paid_at = now
        invoice.updated_at = now
        metrics.record_invoice_transition(previous, target.value)

    async def _commit(self, invoice: Invoice, operation: str) -> None:
        try:
            await self.db.commit()
        except StaleDataError as exc:
            await self.db.rollback()
            logger.warning(
                "invoice_concurrent_modification",
                invoice_id=str(invoice.id),
                operation=operation,
            )
            raise ConflictError("Invoice was modified by another request; reload and retry") from exc

    async def _unique_invoice_number(self, now: datetime) -> str:
        for _ in range(INVOICE_NUMBER_ATTEMPTS):
            candidate = generate_invoice_number(now)
            result = await self.db.execute(
                select(Invoice.id).where(Invoice.invoice_number == candidate)
            )
            if result.scalar_one_or_none() is None:
                return candidate
            logger.debug("invoice_number_collision", candidate=candidate)
        raise InternalError("Could not allocate a unique invoice number")
