"""
Audit API routes (admin only).
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from backoffice.api.dependencies import (
    ServiceContainer,
    get_audit_service,
    get_read_audit_service,
    get_services,
    require_admin,
)
from backoffice.models.api import (
    AuditLogListResponse,
    AuditLogResponse,
    PurgeResponse,
    RecentActivityResponse,
)
from backoffice.models.domain import AuthenticatedUser
from backoffice.services.audit import AuditService, activity_item

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/recent", response_model=RecentActivityResponse)
async def recent_activity(
    limit: int = Query(10),
    admin: AuthenticatedUser = Depends(require_admin),
    audit: AuditService = Depends(get_read_audit_service),
    services: ServiceContainer = Depends(get_services),
) -> RecentActivityResponse:
    entries = await audit.get_recent_activity(limit)
    now = services.clock()
    return RecentActivityResponse(activities=[activity_item(entry, now) for entry in entries])


@router.get("/logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    entity: str | None = Query(None),
    action: str | None = Query(None),
    user_id: str | None = Query(None, alias="userId"),
    search: str | None = Query(None),
    limit: int = Query(50, ge=1, le=1000),
    admin: AuthenticatedUser = Depends(require_admin),
    audit: AuditService = Depends(get_read_audit_service),
) -> AuditLogListResponse:
    entries = await audit.list_logs(entity, action, user_id, search, limit)
    return AuditLogListResponse(
        logs=[
            AuditLogResponse(
                id=entry.id,
                user_id=entry.user_id,
                user_email=entry.user_email,
                action=entry.action,
                entity=entry.entity,
                entity_id=entry.entity_id,
                details=entry.details or {},
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                timestamp=entry.timestamp,
            )
            for entry in entries
        ]
    )


@router.get("/export")
async def export_audit_logs(
    entity: str | None = Query(None),
    action: str | None = Query(None),
    user_id: str | None = Query(None, alias="userId"),
    search: str | None = Query(None),
    admin: AuthenticatedUser = Depends(require_admin),
    audit: AuditService = Depends(get_read_audit_service),
) -> Response:
    csv_text = await audit.export_csv(entity, action, user_id, search)
    return Response(
        content=csv_text,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="audit-log.csv"'},
    )


@router.post("/purge", response_model=PurgeResponse)
async def purge_audit_logs(
    days: int | None = Query(None, ge=1),
    admin: AuthenticatedUser = Depends(require_admin),
    audit: AuditService = Depends(get_audit_service),
    services: ServiceContainer = Depends(get_services),
) -> PurgeResponse:
    """Delete entries older than `days` (default AUDIT_RETENTION_DAYS)."""
    deleted = await audit.purge_older_than(days or services.settings.audit_retention_days)
    return PurgeResponse(deleted=deleted)
