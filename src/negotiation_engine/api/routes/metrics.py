"""Admin routes for premium conversion metrics.

Routes:
    GET    /api/v1/admin/premium/metrics?window_days=&tier=
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved at runtime by FastAPI

from negotiation_engine.api.deps import Viewer, get_admin_viewer, get_db_session
from negotiation_engine.domain.enums import PremiumTier  # noqa: TC001
from negotiation_engine.schemas.operations import PremiumMetricsResponse
from negotiation_engine.services.premium_metrics_service import PremiumMetricsService

router = APIRouter(prefix="/api/v1/admin/premium", tags=["Admin"])


@router.get(
    "/metrics",
    response_model=PremiumMetricsResponse,
    summary="Premium conversion funnel metrics",
)
async def get_premium_metrics(
    window_days: int | None = Query(
        default=None, description="Window size in days, clamped to 7..120"
    ),
    tier: PremiumTier | None = Query(default=None),
    viewer: Viewer = Depends(get_admin_viewer),
    session: AsyncSession = Depends(get_db_session),
) -> PremiumMetricsResponse:
    svc = PremiumMetricsService(session)
    metrics = await svc.get_conversion_metrics(window_days=window_days, tier=tier)
    return PremiumMetricsResponse.model_validate(metrics)
