"""API routes for the finance dashboard: metrics and analytics."""

from fastapi import APIRouter

from payouts.analytics_service import AnalyticsService, parse_timeframe
from payouts.deps import SessionDep
from payouts.metrics_service import MetricsService
from payouts.schemas import AnalyticsReport, DashboardMetrics

router = APIRouter(tags=["reporting"])


@router.get("/metrics", response_model=DashboardMetrics)
async def get_metrics(db: SessionDep):
    """Point-in-time snapshot of schedules and alerts."""
    return await MetricsService.snapshot(db)


@router.get("/analytics", response_model=AnalyticsReport)
async def get_analytics(db: SessionDep, timeframe: str = "30d"):
    """Transaction report over the last `timeframe` days, e.g. `7d` or `30d`."""
    return await AnalyticsService.report(db, timeframe_days=parse_timeframe(timeframe))
