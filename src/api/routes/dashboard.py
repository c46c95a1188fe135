"""Dashboard endpoints."""

from fastapi import APIRouter, Depends, Query

from src.api.deps import get_dashboard, get_owner
from src.domains.compliance.dashboard import ActivityItem, DashboardService, DashboardStats

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=DashboardStats)
async def get_stats(
    owner: str = Depends(get_owner),  # noqa: B008
    dashboard: DashboardService = Depends(get_dashboard),  # noqa: B008
) -> DashboardStats:
    return await dashboard.stats(owner)


@router.get("/activity", response_model=list[ActivityItem])
async def get_activity(
    limit: int = Query(10, ge=1, le=100),
    owner: str = Depends(get_owner),  # noqa: B008
    dashboard: DashboardService = Depends(get_dashboard),  # noqa: B008
) -> list[ActivityItem]:
    return await dashboard.recent_activity(owner, limit=limit)
