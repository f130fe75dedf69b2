"""
Invoice API routes.

All routes require the admin role. Domain errors propagate to the handlers
registered in main.py.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import Response
from structlog import get_logger

from backoffice.api.dependencies import (
    ServiceContainer,
    get_invoice_service,
    get_request_meta,
    get_services,
    require_admin,
)
from backoffice.db.models import Invoice
from backoffice.models.api import (
    CreateInvoiceRequest,
    InvoiceCreatedResponse,
    InvoiceListResponse,
    InvoiceResponse,
    InvoiceStatus,
    LineItemResponse,
    SuccessResponse,
    UpdateInvoiceStatusRequest,
)
from backoffice.models.domain import AuthenticatedUser, LineItem, RequestMeta
from backoffice.services.invoices import InvoiceService, effective_status

logger = get_logger(__name__)
router = APIRouter(tags=["invoices"])


def invoice_response(invoice: Invoice, now: datetime) -> InvoiceResponse:
    """Map an Invoice row to its API shape; status is the effective status."""
    items = [LineItem.from_json(raw) for raw in invoice.line_items]
    return InvoiceResponse(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        client_name=invoice.client_name,
        client_email=invoice.client_email,
        client_address=invoice.client_address,
        items=[
            LineItemResponse(
                id=item.id,
                description=item.description,
                quantity=float(item.quantity),
                unit_price=float(item.unit_price),
                total=float(item.total),
                type=item.type.value,
            )
            for item in items
        ],
        subtotal=float(invoice.subtotal),
        tax_rate=float(invoice.tax_rate),
        tax_amount=float(invoice.tax_amount),
        total=float(invoice.total),
        currency=invoice.currency,
        status=effective_status(invoice, now),
        stored_status=InvoiceStatus(invoice.status),
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        sent_at=invoice.sent_at,
        paid_at=invoice.paid_at,
        notes=invoice.notes,
        terms=invoice.terms,
        created_at=invoice.created_at,
        updated_at=invoice.updated_at,
    )


@router.get("/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    status: str | None = Query(None, description="Invoice status filter, or 'all'"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    admin: AuthenticatedUser = Depends(require_admin),
    invoices: InvoiceService = Depends(get_invoice_service),
    services: ServiceContainer = Depends(get_services),
) -> InvoiceListResponse:
    rows, total, page, limit = await invoices.list_invoices(status=status, page=page, limit=limit)
    now = services.clock()
    return InvoiceListResponse(
        invoices=[invoice_response(row, now) for row in rows],
        total=total,
        page=page,
        limit=limit,
    )


@router.post("/invoice/generate", response_model=InvoiceCreatedResponse)
async def generate_invoice(
    body: CreateInvoiceRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    invoices: InvoiceService = Depends(get_invoice_service),
    services: ServiceContainer = Depends(get_services),
    meta: RequestMeta = Depends(get_request_meta),
) -> InvoiceCreatedResponse:
    invoice = await invoices.create_invoice(body, admin, meta)
    return InvoiceCreatedResponse(invoice=invoice_response(invoice, services.clock()))


@router.post("/invoice/update-status", response_model=SuccessResponse)
async def update_invoice_status(
    body: UpdateInvoiceStatusRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    invoices: InvoiceService = Depends(get_invoice_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> SuccessResponse:
    invoice = await invoices.update_status(body.invoice_id, body.status, admin, meta)
    return SuccessResponse(message=f"Invoice status updated to {invoice.status}")


@router.delete("/invoice/delete/{invoice_id}", response_model=SuccessResponse)
async def delete_invoice(
    invoice_id: UUID,
    admin: AuthenticatedUser = Depends(require_admin),
    invoices: InvoiceService = Depends(get_invoice_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> SuccessResponse:
    snapshot = await invoices.delete_invoice(invoice_id, admin, meta)
    return SuccessResponse(message=f"Invoice {snapshot['invoiceNumber']} deleted successfully")


@router.get("/invoice/download/{invoice_id}")
async def download_invoice(
    invoice_id: UUID,
    admin: AuthenticatedUser = Depends(require_admin),
    invoices: InvoiceService = Depends(get_invoice_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> Response:
    invoice, pdf = await invoices.render_invoice(invoice_id, admin, meta)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="invoice-{invoice.invoice_number}.pdf"'
        },
    )


@router.post("/invoice/send-email", response_model=SuccessResponse)
async def send_invoice_email(
    invoice_id: UUID = Form(..., alias="invoiceId"),
    message: str | None = Form(None),
    document: UploadFile | None = File(None),
    admin: AuthenticatedUser = Depends(require_admin),
    invoices: InvoiceService = Depends(get_invoice_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> SuccessResponse:
    """
    Email an invoice to its client (multipart form).

    An uploaded document replaces the server-rendered PDF.
    """
    content = await document.read() if document is not None else None
    invoice = await invoices.email_invoice(
        invoice_id,
        admin,
        message=message.strip() if message and message.strip() else None,
        document=content or None,
        meta=meta,
    )
    return SuccessResponse(message=f"Invoice sent to {invoice.client_email}")
