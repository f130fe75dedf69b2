"""
API Models - Pydantic models for request/response validation.

JSON bodies use camelCase keys; Python attributes stay snake_case.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class UserRole(str, Enum):
    """User role enumeration."""

    ADMIN = "admin"
    USER = "user"


class InvoiceStatus(str, Enum):
    """Invoice status enumeration."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class LineItemType(str, Enum):
    """Invoice line item category."""

    SERVICE = "service"
    PRODUCT = "product"
    CONSULTATION = "consultation"


class PendingPaymentStatus(str, Enum):
    """Pending payment status enumeration."""

    PENDING = "pending"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class AuditAction(str, Enum):
    """Audit log action enumeration."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    DOWNLOAD = "download"


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    LOST = "lost"


class LeadSource(str, Enum):
    WEBSITE = "website"
    REFERRAL = "referral"
    SOCIAL = "social"
    OTHER = "other"


class ContactMethod(str, Enum):
    EMAIL = "email"
    PHONE = "phone"


class ResourceType(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    ARTICLE = "article"
    WHITEPAPER = "whitepaper"
    TEMPLATE = "template"
    TOOLKIT = "toolkit"


class ResourceCategory(str, Enum):
    VIDEOS = "videos"
    ARTICLES = "articles"
    PDFS = "pdfs"
    WHITEPAPERS = "whitepapers"
    LEADERSHIP = "leadership"
    TEAM_BUILDING = "team-building"
    COMMUNICATION = "communication"
    STRATEGY = "strategy"
    OTHER = "other"


class AnalyticsPeriod(str, Enum):
    """Dashboard reporting window."""

    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Generic Responses
# ============================================================================


class SuccessResponse(CamelModel):
    """Generic `{success, message}` body."""

    success: bool = True
    message: str


class PurgeResponse(CamelModel):
    success: bool = True
    deleted: int


class HealthResponse(CamelModel):
    status: str
    database: str
    timestamp: datetime


# ============================================================================
# Invoice Models
# ============================================================================


class LineItemInput(CamelModel):
    """A single invoice line as submitted by the admin UI."""

    description: str = ""
    quantity: Decimal
    unit_price: Decimal
    type: LineItemType = LineItemType.SERVICE


class CreateInvoiceRequest(CamelModel):
    """POST /invoice/generate request body."""

    client_name: str = Field(..., min_length=1, max_length=255)
    client_email: str = Field(..., min_length=3, max_length=255)
    client_address: str | None = Field(None, max_length=1000)
    items: list[LineItemInput]
    tax_rate: Decimal | None = Field(None, description="Tax rate in percent; default from settings")
    issue_date: date | None = None
    due_date: date | None = None
    notes: str | None = Field(None, max_length=5000)
    terms: str | None = Field(None, max_length=2000)


class UpdateInvoiceStatusRequest(CamelModel):
    """POST /invoice/update-status request body."""

    invoice_id: UUID
    status: str


class LineItemResponse(CamelModel):
    id: str
    description: str
    quantity: float
    unit_price: float
    total: float
    type: str


class InvoiceResponse(CamelModel):
    """Invoice as returned to the admin UI (status is the effective status)."""

    id: UUID
    invoice_number: str
    client_name: str
    client_email: str
    client_address: str | None
    items: list[LineItemResponse]
    subtotal: float
    tax_rate: float
    tax_amount: float
    total: float
    currency: str
    status: InvoiceStatus
    stored_status: InvoiceStatus
    issue_date: datetime
    due_date: datetime
    sent_at: datetime | None
    paid_at: datetime | None
    notes: str | None
    terms: str | None
    created_at: datetime
    updated_at: datetime


class InvoiceCreatedResponse(CamelModel):
    success: bool = True
    invoice: InvoiceResponse


class InvoiceListResponse(CamelModel):
    """GET /invoices response body."""

    invoices: list[InvoiceResponse]
    total: int
    page: int
    limit: int


# ============================================================================
# Pending Payment Models
# ============================================================================


class CreatePendingPaymentRequest(CamelModel):
    """POST /payment/create-pending request body."""

    client_email: str = Field(..., min_length=3, max_length=255)
    client_name: str = Field(..., min_length=1, max_length=255)
    base_amount: Decimal
    description: str = Field(..., min_length=1, max_length=1000)
    invoice_number: str | None = Field(None, max_length=50)
    notes: str | None = Field(None, max_length=5000)
    expires_in_days: int = Field(30, ge=1, le=365)


class UpdatePendingPaymentRequest(CamelModel):
    """PUT /payment/admin/update-payment request body."""

    payment_id: UUID
    base_amount: Decimal | None = None
    description: str | None = Field(None, max_length=1000)
    notes: str | None = Field(None, max_length=5000)


class UpdatePendingPaymentStatusRequest(CamelModel):
    """PUT /payment/admin/update-status request body."""

    payment_id: UUID
    status: str


class PendingPaymentResponse(CamelModel):
    id: UUID
    client_email: str
    client_name: str
    base_amount: float
    description: str
    status: PendingPaymentStatus
    invoice_number: str | None
    expires_at: datetime
    notes: str | None
    stripe_session_id: str | None
    amount_paid: float | None
    bonus_amount: float | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class PendingPaymentCreatedResponse(CamelModel):
    success: bool = True
    payment: PendingPaymentResponse


class PendingPaymentLookupResponse(CamelModel):
    payment: PendingPaymentResponse


class PendingPaymentListResponse(CamelModel):
    payments: list[PendingPaymentResponse]


class ExpireOverdueResponse(CamelModel):
    success: bool = True
    expired: int


class UserPaymentStatusResponse(CamelModel):
    """What the client dashboard needs to decide whether to offer a pay button."""

    has_pending_payment: bool
    has_completed_payment: bool
    pending_payment: PendingPaymentResponse | None
    has_latest_invoice_pending: bool
    latest_invoice: InvoiceResponse | None
    should_show_payment_button: bool


# ============================================================================
# Checkout Models
# ============================================================================


class CheckoutSessionRequest(CamelModel):
    """POST /payment/create-checkout-session request body."""

    option: str = Field(..., description="consultation, workshop, retreat or custom")
    pending_payment_id: UUID | None = None
    amount: Decimal | None = None
    customer_email: str | None = Field(None, max_length=255)


class CheckoutSessionResponse(CamelModel):
    session_id: str
    url: str


class CreatePaymentLinkRequest(CamelModel):
    pending_payment_id: UUID


class PaymentLinkResponse(CamelModel):
    success: bool = True
    payment_url: str
    session_id: str


class ConfirmPaymentRequest(CamelModel):
    session_id: str = Field(..., min_length=1)


class ConfirmPaymentResponse(CamelModel):
    success: bool = True
    payment_id: UUID | None
    amount_paid: float
    base_amount: float | None
    bonus_amount: float | None


class WebhookAckResponse(CamelModel):
    received: bool = True


# ============================================================================
# Audit Models
# ============================================================================


class ActivityItem(CamelModel):
    """One row of the dashboard activity feed."""

    action: str
    time: str
    entity_type: str
    entity_title: str


class RecentActivityResponse(CamelModel):
    activities: list[ActivityItem]


class AuditLogResponse(CamelModel):
    id: UUID
    user_id: str
    user_email: str
    action: str
    entity: str
    entity_id: str
    details: dict[str, Any]
    ip_address: str | None
    user_agent: str | None
    timestamp: int


class AuditLogListResponse(CamelModel):
    logs: list[AuditLogResponse]


# ============================================================================
# Analytics Models
# ============================================================================


class TopResource(CamelModel):
    id: UUID
    title: str
    downloads: int


class LeadSourceCount(CamelModel):
    source: str
    count: int


class OutstandingInvoices(CamelModel):
    count: int
    amount: float


class TestimonialStats(CamelModel):
    total: int
    public: int
    average_rating: float | None


class DashboardAnalytics(CamelModel):
    """Read-only projection recomputed on every request."""

    total_leads: int
    leads_this_period: int
    conversion_rate: float
    conversion_rate_is_approximate: bool = True
    total_revenue: float
    revenue_this_period: float
    active_users: int
    resource_downloads: int
    top_resources: list[TopResource]
    lead_sources: list[LeadSourceCount]
    pending_payments: int
    outstanding_invoices: OutstandingInvoices
    testimonials: TestimonialStats


class AnalyticsResponse(CamelModel):
    analytics: DashboardAnalytics
    period: AnalyticsPeriod


# ============================================================================
# Lead Models
# ============================================================================


class ContactRequest(CamelModel):
    """POST /contact request body (public contact form)."""

    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str | None = None
    company: str | None = Field(None, max_length=255)
    challenges: str = ""
    contact_method: ContactMethod = ContactMethod.EMAIL


class CreateLeadRequest(ContactRequest):
    """POST /admin/leads/create request body."""

    source: LeadSource = LeadSource.OTHER
    notes: str | None = Field(None, max_length=5000)


class UpdateLeadStatusRequest(CamelModel):
    lead_id: UUID
    status: str


class LeadResponse(CamelModel):
    id: UUID
    first_name: str
    last_name: str
    email: str
    phone: str | None
    company: str | None
    challenges: str
    contact_method: str
    status: LeadStatus
    source: LeadSource
    notes: str | None
    created_at: datetime
    updated_at: datetime


class LeadListResponse(CamelModel):
    leads: list[LeadResponse]
    total: int
    page: int
    limit: int


class LeadCreatedResponse(CamelModel):
    id: UUID


class ResourceDownloadResponse(CamelModel):
    file_url: str


# ============================================================================
# Content Models
# ============================================================================


class ResourceResponse(CamelModel):
    id: UUID
    title: str
    description: str
    type: ResourceType
    category: ResourceCategory
    file_url: str
    thumbnail_url: str | None
    file_size: int | None
    download_count: int
    is_published: bool
    featured: bool
    created_at: datetime
    updated_at: datetime


class ResourceListResponse(CamelModel):
    resources: list[ResourceResponse]
    total: int


class CreateResourceRequest(CamelModel):
    """POST /admin/resources request body."""

    title: str = ""
    description: str = ""
    type: ResourceType = ResourceType.PDF
    category: ResourceCategory = ResourceCategory.OTHER
    file_url: str = Field("", max_length=1024)
    thumbnail_url: str | None = Field(None, max_length=1024)
    file_size: int | None = Field(None, ge=0)
    is_published: bool = True
    featured: bool = False


class UpdateResourceRequest(CamelModel):
    """Partial update; omitted fields are left unchanged."""

    title: str | None = None
    description: str | None = None
    type: ResourceType | None = None
    category: ResourceCategory | None = None
    file_url: str | None = Field(None, max_length=1024)
    thumbnail_url: str | None = Field(None, max_length=1024)
    file_size: int | None = Field(None, ge=0)
    is_published: bool | None = None
    featured: bool | None = None


class ContentCreatedResponse(CamelModel):
    success: bool = True
    id: UUID


class TestimonialResponse(CamelModel):
    id: UUID
    client_name: str
    company: str
    content: str
    rating: int
    is_public: bool
    created_at: datetime
    updated_at: datetime


class TestimonialListResponse(CamelModel):
    testimonials: list[TestimonialResponse]
    total: int


class CreateTestimonialRequest(CamelModel):
    """POST /admin/testimonials request body."""

    client_name: str = Field("", max_length=255)
    company: str = Field("", max_length=255)
    content: str = ""
    rating: int = 5
    is_public: bool = False


class UpdateTestimonialRequest(CamelModel):
    client_name: str | None = Field(None, max_length=255)
    company: str | None = Field(None, max_length=255)
    content: str | None = None
    rating: int | None = None
    is_public: bool | None = None


# ============================================================================
# Auth Models
# ============================================================================


class AuthUserResponse(CamelModel):
    uid: str
    email: str
    role: UserRole


class MeResponse(CamelModel):
    user: AuthUserResponse


class LoginResponse(CamelModel):
    success: bool = True
    user: AuthUserResponse


class PasswordLoginRequest(CamelModel):
    email: str = ""
    password: str = ""


class ChangePasswordRequest(CamelModel):
    """POST /auth/change-password request body."""

    current_password: str = ""
    new_password: str = ""


class SendPasswordResetRequest(CamelModel):
    email: str = ""


class ResetPasswordRequest(CamelModel):
    """POST /auth/reset-password request body."""

    token: str = ""
    email: str = ""
    password: str = ""


class VerifyEmailRequest(CamelModel):
    token: str = ""


class UpdateProfileRequest(CamelModel):
    """POST /auth/update-profile request body. The email cannot be changed here."""

    first_name: str = ""
    last_name: str = ""
    phone: str | None = Field(None, max_length=50)
    organization: str | None = Field(None, max_length=255)


class ProfileResponse(CamelModel):
    uid: str
    email: str
    display_name: str | None
    phone: str | None
    organization: str | None
    role: UserRole


class UpdateProfileResponse(CamelModel):
    success: bool = True
    message: str
    user: ProfileResponse


class TestEmailRequest(CamelModel):
    to: str = Field(..., min_length=3, max_length=255)
