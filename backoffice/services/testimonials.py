"""
Testimonial Service - Client testimonials shown on the public site.

Admins create, edit and delete testimonials; every change is audited. Only
testimonials marked public appear on the testimonials page and the homepage,
newest first.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic.alias_generators import to_camel
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.db.models import Testimonial, utc_now
from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.models.api import AuditAction, CreateTestimonialRequest, UpdateTestimonialRequest
from backoffice.models.domain import AuthenticatedUser, RequestMeta
from backoffice.observability.logging import get_logger
from backoffice.services.audit import AuditService

logger = get_logger(__name__)

MAX_LIST_SIZE = 100
HOMEPAGE_LIMIT = 3

# Fields an admin may edit, in the order they appear in audit snapshots
EDITABLE_FIELDS = ("client_name", "company", "content", "rating", "is_public")


def validate_rating(rating: int) -> int:
    if rating < 1 or rating > 5:
        raise ValidationError("Rating must be between 1 and 5", field="rating")
    return rating


def testimonial_snapshot(testimonial: Testimonial) -> dict[str, Any]:
    return {
        "clientName": testimonial.client_name,
        "company": testimonial.company,
        "rating": testimonial.rating,
        "isPublic": testimonial.is_public,
    }


class TestimonialService:
    """Testimonial management bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        audit: AuditService,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.audit = audit
        self.clock = clock

    async def get(self, testimonial_id: UUID) -> Testimonial:
        testimonial = await self.db.get(Testimonial, testimonial_id)
        if testimonial is None:
            raise NotFoundError("testimonial", testimonial_id)
        return testimonial

    async def list_testimonials(
        self,
        is_public: bool | None = None,
        limit: int | None = None,
        search: str | None = None,
    ) -> list[Testimonial]:
        """Newest first. search matches client name, company or content."""
        stmt = select(Testimonial)
        if is_public is not None:
            stmt = stmt.where(Testimonial.is_public.is_(is_public))
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Testimonial.client_name.ilike(pattern),
                    Testimonial.company.ilike(pattern),
                    Testimonial.content.ilike(pattern),
                )
            )
        stmt = stmt.order_by(Testimonial.created_at.desc())
        if limit:
            stmt = stmt.limit(max(1, min(limit, MAX_LIST_SIZE)))

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_public(self, limit: int | None = None) -> list[Testimonial]:
        return await self.list_testimonials(is_public=True, limit=limit)

    async def list_homepage(self, limit: int = HOMEPAGE_LIMIT) -> list[Testimonial]:
        return await self.list_testimonials(is_public=True, limit=limit)

    async def create(
        self,
        data: CreateTestimonialRequest,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> Testimonial:
        """
        Raises:
            ValidationError: Missing client name, company or content; rating outside 1-5
        """
        client_name = data.client_name.strip()
        company = data.company.strip()
        content = data.content.strip()
        if not client_name or not company or not content:
            raise ValidationError("Client name, company, and content are required")
        rating = validate_rating(data.rating)

        now = self.clock()
        testimonial = Testimonial(
            id=uuid4(),
            client_name=client_name,
            company=company,
            content=content,
            rating=rating,
            is_public=data.is_public,
            created_at=now,
            updated_at=now,
        )
        self.db.add(testimonial)
        await self.db.commit()
        logger.info("testimonial_created", testimonial_id=str(testimonial.id), created_by=actor.uid)

        await self.audit.log_action(
            actor,
            AuditAction.CREATE,
            "testimonial",
            str(testimonial.id),
            {"clientName": client_name, "company": company},
            name=client_name,
            meta=meta,
        )
        return testimonial

    async def update(
        self,
        testimonial_id: UUID,
        data: UpdateTestimonialRequest,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> Testimonial:
        """
        Apply the fields present in data.

        Raises:
            NotFoundError: Unknown testimonial
            ValidationError: Blank required field or rating outside 1-5
        """
        testimonial = await self.get(testimonial_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "rating" in changes:
            validate_rating(changes["rating"])
        for field in ("client_name", "company", "content"):
            if field in changes:
                changes[field] = changes[field].strip()
                if not changes[field]:
                    raise ValidationError(
                        f"{field.replace('_', ' ').capitalize()} cannot be empty", field=to_camel(field)
                    )

        before = testimonial_snapshot(testimonial)
        for field in EDITABLE_FIELDS:
            if field in changes:
                setattr(testimonial, field, changes[field])
        testimonial.updated_at = self.clock()
        await self.db.commit()
        logger.info(
            "testimonial_updated", testimonial_id=str(testimonial_id), fields=sorted(changes)
        )

        await self.audit.log_action(
            actor,
            AuditAction.UPDATE,
            "testimonial",
            str(testimonial.id),
            name=testimonial.client_name,
            before=before,
            after=testimonial_snapshot(testimonial),
            meta=meta,
        )
        return testimonial

    async def delete(
        self,
        testimonial_id: UUID,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> None:
        testimonial = await self.get(testimonial_id)
        snapshot = testimonial_snapshot(testimonial)
        await self.db.delete(testimonial)
        await self.db.commit()
        logger.info("testimonial_deleted", testimonial_id=str(testimonial_id), deleted_by=actor.uid)

        await self.audit.log_action(
            actor,
            AuditAction.DELETE,
            "testimonial",
            str(testimonial_id),
            snapshot,
            name=snapshot["clientName"],
            meta=meta,
        )
