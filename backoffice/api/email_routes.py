"""
Email API routes (admin only).
"""

from fastapi import APIRouter, Depends

from backoffice.api.dependencies import ServiceContainer, get_services, require_admin
from backoffice.models.api import SuccessResponse, TestEmailRequest
from backoffice.models.domain import AuthenticatedUser

router = APIRouter(prefix="/email", tags=["email"])


@router.post("/test", response_model=SuccessResponse)
async def send_test_email(
    body: TestEmailRequest,
    admin: AuthenticatedUser = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
) -> SuccessResponse:
    """Send a test message to verify SMTP configuration. Delivery failures return 502."""
    await services.email.send(services.email.test_email(body.to), template="test")
    return SuccessResponse(message=f"Test email sent to {body.to}")
