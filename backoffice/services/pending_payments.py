"""
Pending Payment Service - Out-of-band ("pay later") payment requests.

A pending payment is editable while pending, completes when a matching
checkout is observed, and expires after expires_at. Completion is
idempotent: repeated payment events leave the record unchanged.
"""

import re
from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from backoffice.db.models import PendingPayment, utc_now
from backoffice.exceptions import (
    ConflictError,
    DeliveryError,
    InvalidStatusError,
    NotFoundError,
    PaymentExpiredError,
    ValidationError,
)
from backoffice.models.api import (
    AuditAction,
    CreatePendingPaymentRequest,
    PendingPaymentStatus,
    UpdatePendingPaymentRequest,
)
from backoffice.models.domain import AuthenticatedUser, RequestMeta, to_money
from backoffice.observability.logging import get_logger
from backoffice.observability.metrics import metrics
from backoffice.services.audit import AuditService
from backoffice.services.email import EmailService

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ADMIN_TRANSITIONS: dict[PendingPaymentStatus, frozenset[PendingPaymentStatus]] = {
    PendingPaymentStatus.PENDING: frozenset(
        {PendingPaymentStatus.CANCELLED, PendingPaymentStatus.EXPIRED, PendingPaymentStatus.COMPLETED}
    ),
    PendingPaymentStatus.COMPLETED: frozenset(),
    PendingPaymentStatus.CANCELLED: frozenset(),
    PendingPaymentStatus.EXPIRED: frozenset(),
}


def parse_payment_status(value: str) -> PendingPaymentStatus:
    try:
        return PendingPaymentStatus(value)
    except ValueError:
        raise InvalidStatusError(value, [s.value for s in PendingPaymentStatus]) from None


def payment_snapshot(payment: PendingPayment) -> dict[str, Any]:
    return {
        "clientName": payment.client_name,
        "clientEmail": payment.client_email,
        "amount": float(payment.base_amount),
        "description": payment.description,
        "status": payment.status,
    }


class PendingPaymentService:
    """Pending payment manager bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        email: EmailService,
        audit: AuditService,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.email = email
        self.audit = audit
        self.clock = clock

    async def get_payment(self, payment_id: UUID) -> PendingPayment:
        payment = await self.db.get(PendingPayment, payment_id)
        if payment is None:
            raise NotFoundError("payment", payment_id)
        return payment

    async def create(
        self,
        data: CreatePendingPaymentRequest,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> PendingPayment:
        """
        Create a pending payment request.

        Raises:
            ValidationError: Negative amount, invalid email, blank name or description
        """
        if data.base_amount < 0:
            raise ValidationError("Amount cannot be negative", field="baseAmount")
        client_email = data.client_email.strip().lower()
        if not EMAIL_PATTERN.match(client_email):
            raise ValidationError("Please enter a valid email address", field="clientEmail")
        if not data.client_name.strip():
            raise ValidationError("Client name is required", field="clientName")
        if not data.description.strip():
            raise ValidationError("Description is required", field="description")

        now = self.clock()
        payment = PendingPayment(
            id=uuid4(),
            client_email=client_email,
            client_name=data.client_name.strip(),
            base_amount=to_money(data.base_amount),
            description=data.description.strip(),
            status=PendingPaymentStatus.PENDING.value,
            invoice_number=data.invoice_number,
            expires_at=now + timedelta(days=data.expires_in_days),
            notes=data.notes,
            created_by=actor.uid,
            created_at=now,
            updated_at=now,
        )
        self.db.add(payment)
        await self.db.commit()

        logger.info(
            "pending_payment_created",
            payment_id=str(payment.id),
            client_email=client_email,
            base_amount=str(payment.base_amount),
        )

        await self.audit.log_action(
            actor,
            AuditAction.CREATE,
            "pending_payment",
            str(payment.id),
            payment_snapshot(payment),
            name=f"{payment.client_name} ({payment.description})",
            meta=meta,
        )
        return payment

    async def update(
        self,
        data: UpdatePendingPaymentRequest,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> tuple[PendingPayment, bool]:
        """
        Revise a pending payment.

        The client is emailed only when base_amount or description actually
        changes value. The notification is best-effort.

        Returns:
            (payment, notified)

        Raises:
            NotFoundError: Unknown payment
            ConflictError: Payment is no longer pending
            ValidationError: Negative amount or blank description
        """
        payment = await self.get_payment(data.payment_id)
        if payment.status != PendingPaymentStatus.PENDING.value:
            raise ConflictError(f"Cannot edit a payment that is {payment.status}")
        if data.base_amount is not None and data.base_amount < 0:
            raise ValidationError("Amount cannot be negative", field="baseAmount")
        if data.description is not None and not data.description.strip():
            raise ValidationError("Description cannot be empty", field="description")

        before = {"amount": float(payment.base_amount), "description": payment.description}
        amount_changed = False
        description_changed = False

        if data.base_amount is not None:
            new_amount = to_money(data.base_amount)
            if new_amount != to_money(payment.base_amount):
                payment.base_amount = new_amount
                amount_changed = True
        if data.description is not None:
            new_description = data.description.strip()
            if new_description != payment.description:
                payment.description = new_description
                description_changed = True
        if data.notes is not None:
            payment.notes = data.notes

        payment.updated_at = self.clock()
        await self._commit(payment, "update")

        after = {"amount": float(payment.base_amount), "description": payment.description}
        logger.info(
            "pending_payment_updated",
            payment_id=str(payment.id),
            amount_changed=amount_changed,
            description_changed=description_changed,
        )

        await self.audit.log_action(
            actor,
            AuditAction.UPDATE,
            "pending_payment",
            str(payment.id),
            {"clientName": payment.client_name, "clientEmail": payment.client_email},
            before=before,
            after=after,
            meta=meta,
        )

        notified = False
        if amount_changed or description_changed:
            notified = await self._notify_updated(payment)
        return payment, notified

    async def _notify_updated(self, payment: PendingPayment) -> bool:
        outbound = self.email.payment_updated_email(
            to=payment.client_email,
            client_name=payment.client_name,
            base_amount=payment.base_amount,
            description=payment.description,
        )
        try:
            await self.email.send(outbound, template="payment_updated")
        except DeliveryError as exc:
            logger.warning(
                "pending_payment_notification_failed",
                payment_id=str(payment.id),
                error=exc.message,
            )
            return False
        return True

    async def update_status(
        self,
        payment_id: UUID,
        status: str,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> PendingPayment:
        """
        Admin status change: pending -> cancelled | expired | completed.

        "completed" goes through mark_completed. Setting the current status
        again is a no-op; every other move out of a closed status raises.

        Raises:
            InvalidStatusError: Unknown status
            NotFoundError: Unknown payment
            ConflictError: Payment is already completed, cancelled or expired
        """
        target = parse_payment_status(status)
        payment = await self.get_payment(payment_id)
        previous = payment.status

        if previous == target.value:
            return payment
        if target not in ADMIN_TRANSITIONS[PendingPaymentStatus(previous)]:
            logger.warning(
                "pending_payment_transition_rejected",
                payment_id=str(payment_id),
                from_status=previous,
                to_status=target.value,
            )
            raise ConflictError(f"Cannot change the status of a {previous} payment")

        if target == PendingPaymentStatus.COMPLETED:
            payment = await self.mark_completed(payment.id)
        else:
            payment.status = target.value
            payment.updated_at = self.clock()
            await self._commit(payment, "update_status")

        logger.info(
            "pending_payment_status_updated",
            payment_id=str(payment.id),
            from_status=previous,
            to_status=target.value,
        )

        await self.audit.log_action(
            actor,
            AuditAction.UPDATE,
            "pending_payment",
            str(payment.id),
            {"clientName": payment.client_name, "clientEmail": payment.client_email},
            before={"status": previous},
            after={"status": payment.status},
            meta=meta,
        )
        return payment

    async def mark_completed(
        self,
        payment_id: UUID,
        stripe_session_id: str | None = None,
        amount_paid: Decimal | None = None,
        source: str = "admin",
    ) -> PendingPayment:
        """
        Complete a pending payment. An already-completed payment is returned
        unchanged.

        An admin can only complete a pending payment. A checkout observed by
        the webhook or the confirm call means money was received, so it also
        completes a cancelled or expired payment.

        bonus_amount = max(0, amount_paid - base_amount); amount_paid
        defaults to base_amount.

        Raises:
            ConflictError: Admin completion of a cancelled or expired payment
        """
        payment = await self.get_payment(payment_id)
        if payment.status == PendingPaymentStatus.COMPLETED.value:
            logger.info("pending_payment_already_completed", payment_id=str(payment_id))
            return payment
        if payment.status != PendingPaymentStatus.PENDING.value:
            if source == "admin":
                raise ConflictError(f"Cannot complete a {payment.status} payment")
            logger.warning(
                "pending_payment_completed_after_close",
                payment_id=str(payment_id),
                status=payment.status,
                source=source,
            )

        now = self.clock()
        paid = to_money(amount_paid) if amount_paid is not None else to_money(payment.base_amount)
        payment.status = PendingPaymentStatus.COMPLETED.value
        payment.completed_at = now
        payment.updated_at = now
        payment.amount_paid = paid
        payment.bonus_amount = max(Decimal("0.00"), paid - to_money(payment.base_amount))
        if stripe_session_id:
            payment.stripe_session_id = stripe_session_id
        await self._commit(payment, "mark_completed")

        metrics.record_payment_completed(source)
        logger.info(
            "pending_payment_completed",
            payment_id=str(payment.id),
            amount_paid=str(paid),
            bonus_amount=str(payment.bonus_amount),
            source=source,
        )
        return payment

    async def find_matching(self, email: str, amount: Decimal) -> PendingPayment | None:
        """
        Match a payment event to a pending record by client email.

        An exact base_amount match wins; otherwise the oldest pending record
        with base_amount <= amount (the client paid extra).
        """
        stmt = (
            select(PendingPayment)
            .where(
                func.lower(PendingPayment.client_email) == email.strip().lower(),
                PendingPayment.status == PendingPaymentStatus.PENDING.value,
            )
            .order_by(PendingPayment.created_at.asc())
        )
        result = await self.db.execute(stmt)
        candidates = list(result.scalars().all())

        amount = to_money(amount)
        for payment in candidates:
            if to_money(payment.base_amount) == amount:
                return payment
        for payment in candidates:
            if to_money(payment.base_amount) <= amount:
                return payment
        return None

    async def get_active_for_email(self, email: str) -> PendingPayment:
        """
        Newest pending payment for a client.

        Raises:
            NotFoundError: No pending payment for the email
            PaymentExpiredError: The newest one is past expires_at (it is
                marked expired before raising)
        """
        stmt = (
            select(PendingPayment)
            .where(
                func.lower(PendingPayment.client_email) == email.strip().lower(),
                PendingPayment.status == PendingPaymentStatus.PENDING.value,
            )
            .order_by(PendingPayment.created_at.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        payment = result.scalar_one_or_none()
        if payment is None:
            raise NotFoundError("pending_payment", email)

        now = self.clock()
        if payment.expires_at < now:
            payment.status = PendingPaymentStatus.EXPIRED.value
            payment.updated_at = now
            await self._commit(payment, "expire")
            logger.info("pending_payment_expired_on_lookup", payment_id=str(payment.id))
            raise PaymentExpiredError(payment.id)

        return payment

    async def status_for_email(self, email: str) -> tuple[PendingPayment | None, bool]:
        """
        (newest unexpired pending payment, whether any payment has completed)
        for a client. Read-only: a lapsed payment is skipped, not marked.
        """
        normalized = email.strip().lower()
        result = await self.db.execute(
            select(PendingPayment)
            .where(
                func.lower(PendingPayment.client_email) == normalized,
                PendingPayment.status == PendingPaymentStatus.PENDING.value,
                PendingPayment.expires_at >= self.clock(),
            )
            .order_by(PendingPayment.created_at.desc())
            .limit(1)
        )
        completed = await self.db.scalar(
            select(func.count())
            .select_from(PendingPayment)
            .where(
                func.lower(PendingPayment.client_email) == normalized,
                PendingPayment.status == PendingPaymentStatus.COMPLETED.value,
            )
        )
        return result.scalar_one_or_none(), bool(completed)

    async def list_payments(self, status: str | None = None) -> list[PendingPayment]:
        stmt = select(PendingPayment)
        if status and status != "all":
            stmt = stmt.where(PendingPayment.status == parse_payment_status(status).value)
        stmt = stmt.order_by(PendingPayment.created_at.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def expire_overdue(self) -> int:
        """Mark every pending payment past expires_at as expired. Returns the count."""
        now = self.clock()
        result = await self.db.execute(
            update(PendingPayment)
            .where(
                PendingPayment.status == PendingPaymentStatus.PENDING.value,
                PendingPayment.expires_at < now,
            )
            .values(
                status=PendingPaymentStatus.EXPIRED.value,
                updated_at=now,
                version=PendingPayment.version + 1,
            )
        )
        await self.db.commit()
        expired = result.rowcount or 0
        logger.info("pending_payments_expired", expired=expired)
        return expired

    async def _commit(self, payment: PendingPayment, operation: str) -> None:
        try:
            await self.db.commit()
        except StaleDataError as exc:
            await self.db.rollback()
            logger.warning(
                "pending_payment_concurrent_modification",
                payment_id=str(payment.id),
                operation=operation,
            )
            raise ConflictError("Payment was modified by another request; reload and retry") from exc
