"""
Analytics Service - Dashboard projections.

Everything here is read-only and recomputed per request; nothing is stored.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.db.models import Invoice, Lead, PendingPayment, Resource, Testimonial, User, utc_now
from backoffice.exceptions import ValidationError
from backoffice.models.api import (
    AnalyticsPeriod,
    DashboardAnalytics,
    InvoiceStatus,
    LeadSourceCount,
    OutstandingInvoices,
    PendingPaymentStatus,
    TestimonialStats,
    TopResource,
)
from backoffice.models.domain import to_money
from backoffice.observability.logging import get_logger

logger = get_logger(__name__)

PERIOD_DAYS: dict[AnalyticsPeriod, int] = {
    AnalyticsPeriod.WEEK: 7,
    AnalyticsPeriod.MONTH: 30,
    AnalyticsPeriod.YEAR: 365,
}

TOP_RESOURCES = 5


def conversion_rate(completed_count: int, lead_count: int) -> float:
    """
    Completed payments per lead, as a percentage.

    This is an approximation: payments are not joined to leads, so the ratio
    is clamped to 100 when completions outnumber current leads.
    """
    if lead_count <= 0:
        return 0.0
    return round(min(100.0, completed_count / lead_count * 100), 1)


def parse_period(value: str) -> AnalyticsPeriod:
    try:
        return AnalyticsPeriod(value)
    except ValueError:
        allowed = ", ".join(p.value for p in AnalyticsPeriod)
        raise ValidationError(f"Invalid period '{value}'. Must be one of: {allowed}", field="period") from None


class AnalyticsService:
    """Dashboard analytics over one read session."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now) -> None:
        self.db = db
        self.clock = clock

    async def _count(self, stmt) -> int:
        return int(await self.db.scalar(stmt) or 0)

    async def revenue_between(self, start: datetime | None, end: datetime) -> Decimal:
        """
        Completed pending payments (base_amount) plus paid invoices (total)
        within [start, end). start=None means all time.
        """
        payments = select(func.coalesce(func.sum(PendingPayment.base_amount), 0)).where(
            PendingPayment.status == PendingPaymentStatus.COMPLETED.value,
            PendingPayment.completed_at < end,
        )
        invoices = select(func.coalesce(func.sum(Invoice.total), 0)).where(
            Invoice.status == InvoiceStatus.PAID.value,
            Invoice.paid_at < end,
        )
        if start is not None:
            payments = payments.where(PendingPayment.completed_at >= start)
            invoices = invoices.where(Invoice.paid_at >= start)

        payment_total = await self.db.scalar(payments) or 0
        invoice_total = await self.db.scalar(invoices) or 0
        return to_money(Decimal(str(payment_total)) + Decimal(str(invoice_total)))

    async def dashboard(self, period: str) -> DashboardAnalytics:
        """
        Build the dashboard summary for week/month/year.

        Raises:
            ValidationError: Unknown period
        """
        window = parse_period(period)
        now = self.clock()
        since = now - timedelta(days=PERIOD_DAYS[window])

        total_leads = await self._count(select(func.count()).select_from(Lead))
        leads_this_period = await self._count(
            select(func.count()).select_from(Lead).where(Lead.created_at >= since)
        )
        completed_payments = await self._count(
            select(func.count())
            .select_from(PendingPayment)
            .where(PendingPayment.status == PendingPaymentStatus.COMPLETED.value)
        )
        paid_invoices = await self._count(
            select(func.count()).select_from(Invoice).where(Invoice.status == InvoiceStatus.PAID.value)
        )
        open_payments = await self._count(
            select(func.count())
            .select_from(PendingPayment)
            .where(PendingPayment.status == PendingPaymentStatus.PENDING.value)
        )
        active_users = await self._count(
            select(func.count()).select_from(User).where(User.is_active.is_(True))
        )

        total_revenue = await self.revenue_between(None, now)
        revenue_this_period = await self.revenue_between(since, now)

        resource_downloads = await self._count(
            select(func.coalesce(func.sum(Resource.download_count), 0))
        )
        top = await self.db.execute(
            select(Resource.id, Resource.title, Resource.download_count)
            .where(Resource.download_count > 0)
            .order_by(Resource.download_count.desc())
            .limit(TOP_RESOURCES)
        )
        top_resources = [
            TopResource(id=row.id, title=row.title, downloads=row.download_count) for row in top
        ]

        sources = await self.db.execute(
            select(Lead.source, func.count()).group_by(Lead.source).order_by(func.count().desc())
        )
        lead_sources = [LeadSourceCount(source=source, count=count) for source, count in sources]

        outstanding = (
            await self.db.execute(
                select(func.count(), func.coalesce(func.sum(Invoice.total), 0)).where(
                    Invoice.status.in_([InvoiceStatus.SENT.value, InvoiceStatus.OVERDUE.value])
                )
            )
        ).one()

        testimonials = (
            await self.db.execute(
                select(
                    func.count(),
                    func.count().filter(Testimonial.is_public.is_(True)),
                    func.avg(Testimonial.rating).filter(Testimonial.is_public.is_(True)),
                ).select_from(Testimonial)
            )
        ).one()

        logger.debug("dashboard_computed", period=window.value, total_leads=total_leads)

        return DashboardAnalytics(
            total_leads=total_leads,
            leads_this_period=leads_this_period,
            conversion_rate=conversion_rate(completed_payments + paid_invoices, total_leads),
            total_revenue=float(total_revenue),
            revenue_this_period=float(revenue_this_period),
            active_users=active_users,
            resource_downloads=resource_downloads,
            top_resources=top_resources,
            lead_sources=lead_sources,
            pending_payments=open_payments,
            outstanding_invoices=OutstandingInvoices(
                count=int(outstanding[0]), amount=float(outstanding[1] or 0)
            ),
            testimonials=TestimonialStats(
                total=int(testimonials[0]),
                public=int(testimonials[1]),
                average_rating=round(float(testimonials[2]), 1) if testimonials[2] is not None else None,
            ),
        )
