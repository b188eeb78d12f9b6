"""
Dashboard Widgets

Latest snapshot and recent history behind the metric widgets. Failures
degrade to "no data" so the page still renders.
"""

from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel, ValidationError

from nanoassist.analytics.aggregator import WEEKDAY_LABELS
from nanoassist.backend.base import RecordStore
from nanoassist.backend.records import MetricSnapshot
from nanoassist.config import get_settings
from nanoassist.serving.cache import CacheManager

logger = structlog.get_logger(__name__)
settings = get_settings()


class ConversionSlice(BaseModel):
    """Slice of the conversion pie"""
    name: str
    value: float


class OrderHistoryPoint(BaseModel):
    """Confirmed vs abandoned per snapshot"""
    name: str
    confirmed: int
    abandoned: int


class DashboardSummary(BaseModel):
    """Values shown by the metric widgets"""
    total_calls: int = 0
    initiated_calls: int = 0
    received_calls: int = 0
    conversion_rate: float = 0.0
    conversion_breakdown: List[ConversionSlice]
    minutes_used: float = 0.0
    total_orders: int = 0
    confirmed_orders: int = 0
    abandoned_carts: int = 0
    recovered_carts: int = 0
    generated_sales: float = 0.0
    as_of: Optional[datetime] = None


def summarize(snapshot: Optional[MetricSnapshot]) -> DashboardSummary:
    """Widget values for ``snapshot``; all zero when there is none."""
    if snapshot is None:
        return DashboardSummary(
            conversion_breakdown=[
                ConversionSlice(name="completed", value=0.0),
                ConversionSlice(name="abandoned", value=100.0),
            ]
        )
    
    rate = snapshot.rata_conversie
    return DashboardSummary(
        total_calls=snapshot.total_apeluri,
        initiated_calls=snapshot.apeluri_initiate,
        received_calls=snapshot.apeluri_primite,
        conversion_rate=rate,
        conversion_breakdown=[
            ConversionSlice(name="completed", value=rate),
            ConversionSlice(name="abandoned", value=max(100.0 - rate, 0.0)),
        ],
        minutes_used=snapshot.minute_consumate,
        total_orders=snapshot.total_comenzi,
        confirmed_orders=snapshot.comenzi_confirmate,
        abandoned_carts=snapshot.cosuri_abandonate,
        recovered_carts=snapshot.cosuri_recuperate,
        generated_sales=snapshot.vanzari_generate,
        as_of=snapshot.created_at,
    )


def order_history(snapshots: List[MetricSnapshot], tz: Optional[ZoneInfo] = None) -> List[OrderHistoryPoint]:
    """Area chart of confirmed orders and abandoned carts, one point per snapshot."""
    tz = tz or ZoneInfo(settings.dashboard.timezone)
    return [
        OrderHistoryPoint(
            name=WEEKDAY_LABELS[s.created_at.astimezone(tz).weekday()],
            confirmed=s.comenzi_confirmate,
            abandoned=s.cosuri_abandonate,
        )
        for s in snapshots
    ]


class DashboardMetricsService:
    """
    Reads the snapshots behind the dashboard widgets.
    
    Example:
        service = DashboardMetricsService(store, cache=dashboard_cache)
        latest = await service.latest_metrics(user_id)
    """
    
    def __init__(self, store: RecordStore, cache: Optional[CacheManager] = None):
        self._store = store
        self._cache = cache
    
    async def latest_metrics(self, user_id: Optional[str], store_name: Optional[str] = None) -> Optional[MetricSnapshot]:
        """Most recent snapshot, or None when there is none or the read fails."""
        if not user_id:
            return None
        
        key = f"latest:{user_id}:{store_name or '*'}"
        cached = await self._cached(key)
        if cached:
            return cached[0]
        
        try:
            snapshot = await self._store.latest_metrics(user_id, store_name)
        except Exception as e:
            logger.error("Error fetching metrics", user_id=user_id, error=str(e))
            return None
        
        if snapshot is not None and self._cache is not None:
            await self._cache.set(key, [snapshot.model_dump(mode="json")], ttl=settings.dashboard.latest_metrics_ttl)
        return snapshot
    
    async def metrics_history(
        self,
        user_id: Optional[str],
        days: Optional[int] = None,
        store_name: Optional[str] = None,
    ) -> List[MetricSnapshot]:
        """The ``days`` most recent snapshots, oldest first; empty on failure."""
        if not user_id:
            return []
        days = days or settings.dashboard.history_days
        
        key = f"history:{user_id}:{store_name or '*'}:{days}"
        cached = await self._cached(key)
        if cached is not None:
            return cached
        
        try:
            history = await self._store.metrics_history(user_id, days, store_name)
        except Exception as e:
            logger.error("Error fetching history", user_id=user_id, error=str(e))
            return []
        
        if self._cache is not None:
            await self._cache.set(
                key,
                [s.model_dump(mode="json") for s in history],
                ttl=settings.dashboard.history_ttl,
            )
        return history
    
    async def summary(self, user_id: Optional[str], store_name: Optional[str] = None) -> DashboardSummary:
        return summarize(await self.latest_metrics(user_id, store_name))
    
    async def _cached(self, key: str) -> Optional[List[MetricSnapshot]]:
        if self._cache is None:
            return None
        data = await self._cache.get(key)
        if data is None:
            return None
        try:
            return [MetricSnapshot.model_validate(item) for item in data]
        except (TypeError, ValidationError):
            return None
