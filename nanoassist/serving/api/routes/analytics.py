"""
Analytics API Endpoints

Chart series and metric widgets of the dashboard page.
"""

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query

from nanoassist.analytics import (
    ChartPeriod,
    ChartPoint,
    DashboardMetricsService,
    DashboardSummary,
    MetricsAggregator,
    order_history,
)
from nanoassist.analytics.dashboard import OrderHistoryPoint
from nanoassist.auth import Profile
from nanoassist.backend.records import MetricSnapshot
from nanoassist.serving.api.deps import (
    check_store,
    get_aggregator,
    get_dashboard,
    require_profile,
    require_store,
)

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/chart", response_model=List[ChartPoint])
async def get_chart(
    period: ChartPeriod = ChartPeriod.WEEK,
    profile: Profile = Depends(require_profile),
    store_name: str = Depends(require_store),
    aggregator: MetricsAggregator = Depends(get_aggregator),
) -> List[ChartPoint]:
    """One point per bucket: 24 for day, 8 for week, 31 for month."""
    return await aggregator.fetch_chart_data(profile.id, store_name, period)


@router.get("/metrics/latest", response_model=Optional[MetricSnapshot])
async def get_latest_metrics(
    store_name: Optional[str] = None,
    profile: Profile = Depends(require_profile),
    dashboard: DashboardMetricsService = Depends(get_dashboard),
) -> Optional[MetricSnapshot]:
    check_store(profile, store_name)
    return await dashboard.latest_metrics(profile.id, store_name)


@router.get("/metrics/history", response_model=List[MetricSnapshot])
async def get_metrics_history(
    days: int = Query(default=7, ge=1, le=90),
    store_name: Optional[str] = None,
    profile: Profile = Depends(require_profile),
    dashboard: DashboardMetricsService = Depends(get_dashboard),
) -> List[MetricSnapshot]:
    """Latest ``days`` snapshots, oldest first."""
    check_store(profile, store_name)
    return await dashboard.metrics_history(profile.id, days, store_name)


@router.get("/summary", response_model=DashboardSummary)
async def get_summary(
    store_name: Optional[str] = None,
    profile: Profile = Depends(require_profile),
    dashboard: DashboardMetricsService = Depends(get_dashboard),
) -> DashboardSummary:
    check_store(profile, store_name)
    return await dashboard.summary(profile.id, store_name)


@router.get("/orders/history", response_model=List[OrderHistoryPoint])
async def get_order_history(
    days: int = Query(default=7, ge=1, le=90),
    store_name: Optional[str] = None,
    profile: Profile = Depends(require_profile),
    dashboard: DashboardMetricsService = Depends(get_dashboard),
) -> List[OrderHistoryPoint]:
    check_store(profile, store_name)
    return order_history(await dashboard.metrics_history(profile.id, days, store_name))
