"""
Lead Service - Contact-form capture and admin lead management.
"""

import re
from collections.abc import Callable
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.db.models import Lead, utc_now
from backoffice.exceptions import DeliveryError, InvalidStatusError, NotFoundError, ValidationError
from backoffice.models.api import AuditAction, ContactRequest, CreateLeadRequest, LeadSource, LeadStatus
from backoffice.models.domain import AuthenticatedUser, RequestMeta
from backoffice.observability.logging import get_logger
from backoffice.services.audit import AuditService
from backoffice.services.email import EmailService

logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s\-']+$")
PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{0,15}$")
PHONE_SEPARATORS = re.compile(r"[\s\-().]")

MAX_PAGE_SIZE = 100


def _validate_name(value: str, label: str, field: str) -> str:
    value = value.strip()
    if len(value) < 2:
        raise ValidationError(f"{label} must be at least 2 characters", field=field)
    if len(value) > 50:
        raise ValidationError(f"{label} must be less than 50 characters", field=field)
    if not NAME_PATTERN.match(value):
        raise ValidationError(
            f"{label} can only contain letters, spaces, hyphens, and apostrophes", field=field
        )
    return value


def validate_contact(data: ContactRequest) -> dict[str, str | None]:
    """Normalize and validate contact fields. Returns the cleaned values."""
    first_name = _validate_name(data.first_name, "First name", "firstName")
    last_name = _validate_name(data.last_name, "Last name", "lastName")

    email = data.email.strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Please enter a valid email address", field="email")

    challenges = data.challenges.strip()
    if len(challenges) < 10:
        raise ValidationError("Please describe your challenges in at least 10 characters", field="challenges")
    if len(challenges) > 1000:
        raise ValidationError("Challenges must be less than 1000 characters", field="challenges")

    phone = None
    if data.phone and data.phone.strip():
        phone = data.phone.strip()
        if not PHONE_PATTERN.match(PHONE_SEPARATORS.sub("", phone)):
            raise ValidationError("Please enter a valid phone number", field="phone")

    return {
        "first_name": first_name,
        "last_name": last_name,
        "email": email,
        "phone": phone,
        "company": data.company.strip() if data.company else None,
        "challenges": challenges,
    }


def parse_lead_status(value: str) -> LeadStatus:
    try:
        return LeadStatus(value)
    except ValueError:
        raise InvalidStatusError(value, [s.value for s in LeadStatus]) from None


class LeadService:
    """Lead capture and management bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        email: EmailService,
        audit: AuditService,
        notify_to: str = "",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.email = email
        self.audit = audit
        self.notify_to = notify_to
        self.clock = clock

    def _new_lead(self, data: ContactRequest, source: LeadSource, notes: str | None) -> Lead:
        fields = validate_contact(data)
        now = self.clock()
        return Lead(
            id=uuid4(),
            contact_method=data.contact_method.value,
            status=LeadStatus.NEW.value,
            source=source.value,
            notes=notes,
            created_at=now,
            updated_at=now,
            **fields,
        )

    async def submit_contact(self, data: ContactRequest) -> Lead:
        """Public contact form. The admin notification is best-effort."""
        lead = self._new_lead(data, LeadSource.WEBSITE, None)
        self.db.add(lead)
        await self.db.commit()
        logger.info("lead_captured", lead_id=str(lead.id), source=lead.source)

        if self.notify_to:
            outbound = self.email.new_lead_email(
                to=self.notify_to,
                lead_name=f"{lead.first_name} {lead.last_name}",
                lead_email=lead.email,
                challenges=lead.challenges,
            )
            try:
                await self.email.send(outbound, template="new_lead")
            except DeliveryError as exc:
                logger.warning("lead_notification_failed", lead_id=str(lead.id), error=exc.message)
        return lead

    async def create(
        self,
        data: CreateLeadRequest,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> Lead:
        lead = self._new_lead(data, data.source, data.notes)
        self.db.add(lead)
        await self.db.commit()
        logger.info("lead_created", lead_id=str(lead.id), created_by=actor.uid)

        await self.audit.log_action(
            actor,
            AuditAction.CREATE,
            "lead",
            str(lead.id),
            {"email": lead.email, "source": lead.source},
            name=f"{lead.first_name} {lead.last_name}",
            meta=meta,
        )
        return lead

    async def list_leads(
        self,
        status: str | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Lead], int, int, int]:
        page = max(page, 1)
        limit = max(1, min(limit, MAX_PAGE_SIZE))

        conditions = []
        if status and status != "all":
            conditions.append(Lead.status == parse_lead_status(status).value)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            conditions.append(
                or_(
                    Lead.first_name.ilike(pattern),
                    Lead.last_name.ilike(pattern),
                    Lead.email.ilike(pattern),
                    Lead.company.ilike(pattern),
                )
            )

        total = (
            await self.db.execute(select(func.count()).select_from(Lead).where(*conditions))
        ).scalar_one()
        result = await self.db.execute(
            select(Lead)
            .where(*conditions)
            .order_by(Lead.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total), page, limit

    async def update_status(
        self,
        lead_id: UUID,
        status: str,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> Lead:
        target = parse_lead_status(status)
        lead = await self.db.get(Lead, lead_id)
        if lead is None:
            raise NotFoundError("lead", lead_id)

        previous = lead.status
        lead.status = target.value
        lead.updated_at = self.clock()
        await self.db.commit()
        logger.info("lead_status_updated", lead_id=str(lead_id), from_status=previous, to_status=target.value)

        await self.audit.log_action(
            actor,
            AuditAction.UPDATE,
            "lead",
            str(lead.id),
            {"email": lead.email},
            before={"status": previous},
            after={"status": target.value},
            meta=meta,
        )
        return lead

