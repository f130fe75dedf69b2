"""
Content API routes - the resource library and client testimonials.

Public reads see published resources and public testimonials only; the
admin routes manage both catalogues.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from backoffice.api.dependencies import (
    get_request_meta,
    get_resource_service,
    get_testimonial_service,
    require_admin,
)
from backoffice.db.models import Resource, Testimonial
from backoffice.models.api import (
    ContentCreatedResponse,
    CreateResourceRequest,
    CreateTestimonialRequest,
    ResourceCategory,
    ResourceDownloadResponse,
    ResourceListResponse,
    ResourceResponse,
    ResourceType,
    SuccessResponse,
    TestimonialListResponse,
    TestimonialResponse,
    UpdateResourceRequest,
    UpdateTestimonialRequest,
)
from backoffice.models.domain import AuthenticatedUser, RequestMeta
from backoffice.services.resources import ResourceService
from backoffice.services.testimonials import HOMEPAGE_LIMIT, MAX_LIST_SIZE, TestimonialService

router = APIRouter(tags=["content"])


def resource_response(resource: Resource) -> ResourceResponse:
    return ResourceResponse(
        id=resource.id,
        title=resource.title,
        description=resource.description,
        type=ResourceType(resource.resource_type),
        category=ResourceCategory(resource.category),
        file_url=resource.file_url,
        thumbnail_url=resource.thumbnail_url,
        file_size=resource.file_size,
        download_count=resource.download_count,
        is_published=resource.is_published,
        featured=resource.featured,
        created_at=resource.created_at,
        updated_at=resource.updated_at,
    )


def testimonial_response(testimonial: Testimonial) -> TestimonialResponse:
    return TestimonialResponse(
        id=testimonial.id,
        client_name=testimonial.client_name,
        company=testimonial.company,
        content=testimonial.content,
        rating=testimonial.rating,
        is_public=testimonial.is_public,
        created_at=testimonial.created_at,
        updated_at=testimonial.updated_at,
    )


def _testimonial_list(rows: list[Testimonial]) -> TestimonialListResponse:
    return TestimonialListResponse(
        testimonials=[testimonial_response(row) for row in rows], total=len(rows)
    )


def _resource_list(rows: list[Resource]) -> ResourceListResponse:
    return ResourceListResponse(resources=[resource_response(row) for row in rows], total=len(rows))


# ============================================================================
# Resources
# ============================================================================


@router.get("/content/resources", response_model=ResourceListResponse)
async def list_resources(
    category: ResourceCategory | None = Query(None),
    resource_type: ResourceType | None = Query(None, alias="type"),
    search: str | None = Query(None, max_length=200),
    resources: ResourceService = Depends(get_resource_service),
) -> ResourceListResponse:
    rows = await resources.list_resources(category, resource_type, search)
    return _resource_list(rows)


@router.get("/content/resources/{resource_id}", response_model=ResourceResponse)
async def get_resource(
    resource_id: UUID,
    resources: ResourceService = Depends(get_resource_service),
) -> ResourceResponse:
    return resource_response(await resources.get(resource_id, published_only=True))


@router.post("/resources/{resource_id}/download", response_model=ResourceDownloadResponse)
async def download_resource(
    resource_id: UUID,
    resources: ResourceService = Depends(get_resource_service),
) -> ResourceDownloadResponse:
    file_url = await resources.record_download(resource_id)
    return ResourceDownloadResponse(file_url=file_url)


@router.get("/admin/resources", response_model=ResourceListResponse)
async def admin_list_resources(
    category: ResourceCategory | None = Query(None),
    resource_type: ResourceType | None = Query(None, alias="type"),
    search: str | None = Query(None, max_length=200),
    admin: AuthenticatedUser = Depends(require_admin),
    resources: ResourceService = Depends(get_resource_service),
) -> ResourceListResponse:
    rows = await resources.list_resources(category, resource_type, search, published_only=False)
    return _resource_list(rows)


@router.post("/admin/resources", response_model=ContentCreatedResponse)
async def create_resource(
    body: CreateResourceRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    resources: ResourceService = Depends(get_resource_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> ContentCreatedResponse:
    resource = await resources.create(body, admin, meta)
    return ContentCreatedResponse(id=resource.id)


@router.put("/admin/resources/{resource_id}", response_model=ResourceResponse)
async def update_resource(
    resource_id: UUID,
    body: UpdateResourceRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    resources: ResourceService = Depends(get_resource_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> ResourceResponse:
    return resource_response(await resources.update(resource_id, body, admin, meta))


@router.delete("/admin/resources/{resource_id}", response_model=SuccessResponse)
async def delete_resource(
    resource_id: UUID,
    admin: AuthenticatedUser = Depends(require_admin),
    resources: ResourceService = Depends(get_resource_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> SuccessResponse:
    await resources.delete(resource_id, admin, meta)
    return SuccessResponse(message="Resource deleted")


# ============================================================================
# Testimonials
# ============================================================================


@router.get("/testimonials", response_model=TestimonialListResponse)
async def list_public_testimonials(
    limit: int | None = Query(None, ge=1, le=MAX_LIST_SIZE),
    testimonials: TestimonialService = Depends(get_testimonial_service),
) -> TestimonialListResponse:
    return _testimonial_list(await testimonials.list_public(limit))


@router.get("/testimonials/homepage", response_model=TestimonialListResponse)
async def list_homepage_testimonials(
    limit: int = Query(HOMEPAGE_LIMIT, ge=1, le=MAX_LIST_SIZE),
    testimonials: TestimonialService = Depends(get_testimonial_service),
) -> TestimonialListResponse:
    return _testimonial_list(await testimonials.list_homepage(limit))


@router.get("/admin/testimonials", response_model=TestimonialListResponse)
async def admin_list_testimonials(
    is_public: bool | None = Query(None, alias="isPublic"),
    limit: int | None = Query(None, ge=1, le=MAX_LIST_SIZE),
    search: str | None = Query(None, max_length=200),
    admin: AuthenticatedUser = Depends(require_admin),
    testimonials: TestimonialService = Depends(get_testimonial_service),
) -> TestimonialListResponse:
    return _testimonial_list(await testimonials.list_testimonials(is_public, limit, search))


@router.post("/admin/testimonials", response_model=ContentCreatedResponse)
async def create_testimonial(
    body: CreateTestimonialRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    testimonials: TestimonialService = Depends(get_testimonial_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> ContentCreatedResponse:
    testimonial = await testimonials.create(body, admin, meta)
    return ContentCreatedResponse(id=testimonial.id)


@router.put("/admin/testimonials/{testimonial_id}", response_model=TestimonialResponse)
async def update_testimonial(
    testimonial_id: UUID,
    body: UpdateTestimonialRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    testimonials: TestimonialService = Depends(get_testimonial_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> TestimonialResponse:
    return testimonial_response(await testimonials.update(testimonial_id, body, admin, meta))


@router.delete("/admin/testimonials/{testimonial_id}", response_model=SuccessResponse)
async def delete_testimonial(
    testimonial_id: UUID,
    admin: AuthenticatedUser = Depends(require_admin),
    testimonials: TestimonialService = Depends(get_testimonial_service),
    meta: RequestMeta = Depends(get_request_meta),
) -> SuccessResponse:
    await testimonials.delete(testimonial_id, admin, meta)
    return SuccessResponse(message="Testimonial deleted")
