"""
Resource Service - The public resource library.

Visitors browse published resources and download them; each download bumps
a counter that feeds the dashboard. Admins manage the catalogue, and every
catalogue change is audited. Files themselves live in external storage; a
resource only records their URLs.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.db.models import Resource, utc_now
from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.models.api import (
    AuditAction,
    CreateResourceRequest,
    ResourceCategory,
    ResourceType,
    UpdateResourceRequest,
)
from backoffice.models.domain import AuthenticatedUser, RequestMeta
from backoffice.observability.logging import get_logger
from backoffice.services.audit import AuditService

logger = get_logger(__name__)

# API field name -> column
EDITABLE_FIELDS = {
    "title": "title",
    "description": "description",
    "type": "resource_type",
    "category": "category",
    "file_url": "file_url",
    "thumbnail_url": "thumbnail_url",
    "file_size": "file_size",
    "is_published": "is_published",
    "featured": "featured",
}


def resource_snapshot(resource: Resource) -> dict[str, Any]:
    return {
        "title": resource.title,
        "type": resource.resource_type,
        "category": resource.category,
        "isPublished": resource.is_published,
        "featured": resource.featured,
    }


class ResourceService:
    """Resource catalogue bound to one database session."""

    def __init__(
        self,
        db: AsyncSession,
        audit: AuditService,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.audit = audit
        self.clock = clock

    async def get(self, resource_id: UUID, published_only: bool = False) -> Resource:
        """
        Raises:
            NotFoundError: Unknown id, or unpublished when published_only is set
        """
        resource = await self.db.get(Resource, resource_id)
        if resource is None or (published_only and not resource.is_published):
            raise NotFoundError("resource", resource_id)
        return resource

    async def list_resources(
        self,
        category: ResourceCategory | None = None,
        resource_type: ResourceType | None = None,
        search: str | None = None,
        published_only: bool = True,
    ) -> list[Resource]:
        """Featured resources first, then newest first."""
        stmt = select(Resource)
        if published_only:
            stmt = stmt.where(Resource.is_published.is_(True))
        if category is not None:
            stmt = stmt.where(Resource.category == category.value)
        if resource_type is not None:
            stmt = stmt.where(Resource.resource_type == resource_type.value)
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(Resource.title.ilike(pattern), Resource.description.ilike(pattern)))
        stmt = stmt.order_by(Resource.featured.desc(), Resource.created_at.desc())

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def record_download(self, resource_id: UUID) -> str:
        """Increment the download counter of a published resource; returns its file URL."""
        resource = await self.get(resource_id, published_only=True)

        await self.db.execute(
            update(Resource)
            .where(Resource.id == resource_id)
            .values(download_count=Resource.download_count + 1)
        )
        await self.db.commit()
        logger.info("resource_downloaded", resource_id=str(resource_id))
        return resource.file_url

    async def create(
        self,
        data: CreateResourceRequest,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> Resource:
        """
        Raises:
            ValidationError: Missing title, description or file URL
        """
        title = data.title.strip()
        description = data.description.strip()
        if not title or not description:
            raise ValidationError("Title and description are required")
        file_url = data.file_url.strip()
        if not file_url:
            raise ValidationError("A file URL is required", field="fileUrl")

        now = self.clock()
        resource = Resource(
            id=uuid4(),
            title=title,
            description=description,
            resource_type=data.type.value,
            category=data.category.value,
            file_url=file_url,
            thumbnail_url=data.thumbnail_url,
            file_size=data.file_size,
            download_count=0,
            is_published=data.is_published,
            featured=data.featured,
            created_by=actor.uid,
            created_at=now,
            updated_at=now,
        )
        self.db.add(resource)
        await self.db.commit()
        logger.info("resource_created", resource_id=str(resource.id), created_by=actor.uid)

        await self.audit.log_action(
            actor,
            AuditAction.CREATE,
            "resource",
            str(resource.id),
            {"category": resource.category},
            name=title,
            meta=meta,
        )
        return resource

    async def update(
        self,
        resource_id: UUID,
        data: UpdateResourceRequest,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> Resource:
        resource = await self.get(resource_id)
        changes = data.model_dump(exclude_unset=True)
        for required in ("title", "description", "file_url"):
            if required in changes and not (changes[required] or "").strip():
                raise ValidationError(f"{required.replace('_', ' ').capitalize()} cannot be empty")

        before = resource_snapshot(resource)
        for field, column in EDITABLE_FIELDS.items():
            if field not in changes:
                continue
            value = changes[field]
            if isinstance(value, (ResourceType, ResourceCategory)):
                value = value.value
            elif isinstance(value, str):
                value = value.strip()
            if value is None and column not in ("thumbnail_url", "file_size"):
                continue
            setattr(resource, column, value)
        resource.updated_at = self.clock()
        await self.db.commit()
        logger.info("resource_updated", resource_id=str(resource_id), fields=sorted(changes))

        await self.audit.log_action(
            actor,
            AuditAction.UPDATE,
            "resource",
            str(resource.id),
            name=resource.title,
            before=before,
            after=resource_snapshot(resource),
            meta=meta,
        )
        return resource

    async def delete(
        self,
        resource_id: UUID,
        actor: AuthenticatedUser,
        meta: RequestMeta | None = None,
    ) -> None:
        resource = await self.get(resource_id)
        snapshot = resource_snapshot(resource)
        await self.db.delete(resource)
        await self.db.commit()
        logger.info("resource_deleted", resource_id=str(resource_id), deleted_by=actor.uid)

        await self.audit.log_action(
            actor,
            AuditAction.DELETE,
            "resource",
            str(resource_id),
            snapshot,
            name=snapshot["title"],
            meta=meta,
        )
