"""
Analytics API routes (admin only).
"""

from fastapi import APIRouter, Depends, Query

from backoffice.api.dependencies import get_analytics_service, require_admin
from backoffice.models.api import AnalyticsPeriod, AnalyticsResponse
from backoffice.models.domain import AuthenticatedUser
from backoffice.services.analytics import AnalyticsService

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/dashboard", response_model=AnalyticsResponse)
async def dashboard(
    period: str = Query(AnalyticsPeriod.MONTH.value),
    admin: AuthenticatedUser = Depends(require_admin),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> AnalyticsResponse:
    summary = await analytics.dashboard(period)
    return AnalyticsResponse(analytics=summary, period=AnalyticsPeriod(period))
