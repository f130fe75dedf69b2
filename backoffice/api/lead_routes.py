"""
Lead API routes - public contact form and admin lead management.
"""

from fastapi import APIRouter, Depends, Query

from backoffice.api.dependencies import get_lead_service, get_request_meta, require_admin
from backoffice.db.models import Lead
from backoffice.models.api import (
    ContactRequest,
    CreateLeadRequest,
    LeadCreatedResponse,
    LeadListResponse,
    LeadResponse,
    LeadSource,
    LeadStatus,
    SuccessResponse,
    UpdateLeadStatusRequest,
)
from backoffice.models.domain import AuthenticatedUser, RequestMeta
from backoffice.services.leads import LeadService

router = APIRouter(tags=["leads"])


def lead_response(lead: Lead) -> LeadResponse:
    return LeadResponse(
        id=lead.id,
        first_name=lead.first_name,
        last_name=lead.last_name,
        email=lead.email,
        phone=lead.phone,
        company=lead.company,
        challenges=lead.challenges,
        contact_method=lead.contact_method,
        status=LeadStatus(lead.status),
        source=LeadSource(lead.source),
        notes=lead.notes,
        created_at=lead.created_at,
        updated_at=lead.updated_at,
    )


@router.post("/contact", response_model=SuccessResponse)
async def submit_contact(
    body: ContactRequest,
    leads: LeadService = Depends(get_lead_service),
) -> SuccessResponse:
    await leads.submit_contact(body)
    return SuccessResponse(message="Thank you for reaching out. We will be in touch soon.")


@router.get("/leads", response_model=LeadListResponse)
async def list_leads(
    status: str | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    admin: AuthenticatedUser = Depends(require_admin),
    leads: LeadService = Depends(get_lead_service),
) -> LeadListResponse:
    rows, total, page, limit = await leads.list_leads(status, search, page, limit)
    return LeadListResponse(leads=[lead_response(row) for row in rows], total=total, page=page, limit=limit)


@router.post("/admin/leads/create", response_model=LeadCreatedResponse)
async def create_lead(
    body: CreateLeadRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    leads: LeadService = Depends(get_lead_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> LeadCreatedResponse:
    lead = await leads.create(body, admin, meta)
    return LeadCreatedResponse(id=lead.id)


@router.put("/admin/leads/update-status", response_model=SuccessResponse)
async def update_lead_status(
    body: UpdateLeadStatusRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    leads: LeadService = Depends(get_lead_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> SuccessResponse:
    lead = await leads.update_status(body.lead_id, body.status, admin, meta)
    return SuccessResponse(message=f"Lead status updated to {lead.status}")

