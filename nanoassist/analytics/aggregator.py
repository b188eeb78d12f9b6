"""
Chart Aggregation

Folds two independently sampled streams (individual call records and
daily metric snapshots) into one fixed-length, time-bucketed series:

- day: 24 hourly buckets of the current local day, keyed ``"HH:00"``
- week: 8 daily buckets from now - 7 days, keyed ``"YYYY-MM-DD"``
- month: 31 daily buckets from now - 30 days, keyed ``"YYYY-MM-DD"``

Buckets are created up front, so sparse data yields zero points and
records keyed outside the window never add a bucket.
"""

import asyncio
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union
from zoneinfo import ZoneInfo

import polars as pl
import structlog
from prometheus_client import Histogram
from pydantic import BaseModel, ValidationError

from nanoassist.backend.base import RecordStore
from nanoassist.backend.records import MetricSnapshot, as_utc
from nanoassist.config import get_settings
from nanoassist.serving.cache import CacheManager

logger = structlog.get_logger(__name__)
settings = get_settings()


AGGREGATION_TIME = Histogram(
    "nanoassist_chart_aggregation_seconds",
    "Time spent building a chart series",
    ["period"],
)


class ChartPeriod(str, Enum):
    """Selectable chart ranges"""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


PERIOD_DAYS = {
    ChartPeriod.WEEK: 7,
    ChartPeriod.MONTH: 30,
}

# ro-RO short forms, as shown on the dashboard axis
WEEKDAY_LABELS = ["lun.", "mar.", "mie.", "joi", "vin.", "sâm.", "dum."]
MONTH_LABELS = ["ian.", "feb.", "mar.", "apr.", "mai", "iun.", "iul.", "aug.", "sept.", "oct.", "nov.", "dec."]


class ChartPoint(BaseModel):
    """One bucket of the chart series"""
    name: str
    calls: int = 0
    orders: int = 0
    drafts: int = 0
    sales: float = 0.0
    full_date: Optional[str] = None


def bucket_key(period: ChartPeriod, ts: datetime, tz: tzinfo) -> str:
    """Key of the bucket ``ts`` falls into. Naive timestamps are UTC."""
    local = as_utc(ts).astimezone(tz)
    if period == ChartPeriod.DAY:
        return f"{local.hour:02d}:00"
    return local.date().isoformat()


def bucket_label(period: ChartPeriod, day: date) -> str:
    if period == ChartPeriod.WEEK:
        return WEEKDAY_LABELS[day.weekday()]
    return f"{day.day:02d} {MONTH_LABELS[day.month - 1]}"


@dataclass(frozen=True)
class BucketWindow:
    """Time range and bucket layout of one chart request"""
    period: ChartPeriod
    tz: tzinfo
    start: datetime
    end: datetime
    keys: List[str]
    labels: List[str]
    full_dates: List[Optional[str]]
    
    def key_for(self, ts: datetime) -> str:
        return bucket_key(self.period, ts, self.tz)
    
    def __len__(self) -> int:
        return len(self.keys)


def build_window(period: Union[ChartPeriod, str], now: datetime, tz: tzinfo) -> BucketWindow:
    """
    Compute the fetch range and the ordered bucket keys for ``period``.
    
    ``end`` is the local midnight after the last bucket, so records dated
    after the window are never fetched.
    """
    period = ChartPeriod(period)
    local_now = now.astimezone(tz) if now.tzinfo else now.replace(tzinfo=tz)
    
    if period == ChartPeriod.DAY:
        start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        keys = [f"{hour:02d}:00" for hour in range(24)]
        return BucketWindow(
            period=period,
            tz=tz,
            start=start,
            end=datetime.combine(start.date() + timedelta(days=1), datetime.min.time(), tzinfo=tz),
            keys=keys,
            labels=list(keys),
            full_dates=[None] * len(keys),
        )
    
    days = PERIOD_DAYS[period]
    start = local_now - timedelta(days=days)
    dates = [start.date() + timedelta(days=offset) for offset in range(days + 1)]
    keys = [d.isoformat() for d in dates]
    return BucketWindow(
        period=period,
        tz=tz,
        start=start,
        end=datetime.combine(dates[-1] + timedelta(days=1), datetime.min.time(), tzinfo=tz),
        keys=keys,
        labels=[bucket_label(period, d) for d in dates],
        full_dates=list(keys),
    )


def fold_series(
    window: BucketWindow,
    call_times: Sequence[datetime],
    snapshots: Sequence[MetricSnapshot],
) -> List[ChartPoint]:
    """
    Merge both streams into the window's buckets.
    
    Calls are counted; confirmed orders, abandoned carts and generated
    sales are summed. The left join onto the bucket frame drops records
    whose key is not one of the window's buckets.
    """
    buckets = pl.DataFrame(
        {"key": window.keys, "name": window.labels, "full_date": window.full_dates},
        schema={"key": pl.Utf8, "name": pl.Utf8, "full_date": pl.Utf8},
    )
    
    calls = (
        pl.DataFrame({"key": [window.key_for(ts) for ts in call_times]}, schema={"key": pl.Utf8})
        .group_by("key")
        .agg(pl.len().cast(pl.Int64).alias("calls"))
    )
    
    metrics = (
        pl.DataFrame(
            {
                "key": [window.key_for(s.created_at) for s in snapshots],
                "orders": [s.comenzi_confirmate for s in snapshots],
                "drafts": [s.cosuri_abandonate for s in snapshots],
                "sales": [float(s.vanzari_generate) for s in snapshots],
            },
            schema={"key": pl.Utf8, "orders": pl.Int64, "drafts": pl.Int64, "sales": pl.Float64},
        )
        .group_by("key")
        .agg(
            pl.col("orders").sum(),
            pl.col("drafts").sum(),
            pl.col("sales").sum(),
        )
    )
    
    series = (
        buckets.join(calls, on="key", how="left")
        .join(metrics, on="key", how="left")
        .with_columns(
            pl.col("calls").fill_null(0),
            pl.col("orders").fill_null(0),
            pl.col("drafts").fill_null(0),
            pl.col("sales").fill_null(0.0),
        )
    )
    
    if window.period == ChartPeriod.DAY:
        series = series.sort(pl.col("key").str.slice(0, 2).cast(pl.Int32))
    else:
        series = series.sort("full_date")
    
    return [
        ChartPoint(
            name=row["name"],
            calls=int(row["calls"]),
            orders=int(row["orders"]),
            drafts=int(row["drafts"]),
            sales=float(row["sales"]),
            full_date=row["full_date"],
        )
        for row in series.iter_rows(named=True)
    ]


class MetricsAggregator:
    """
    Builds chart series for a user's store.
    
    Example:
        aggregator = MetricsAggregator(store, cache=chart_cache)
        points = await aggregator.fetch_chart_data(user_id, "Acme", "week")
    """
    
    def __init__(
        self,
        store: RecordStore,
        cache: Optional[CacheManager] = None,
        tz: Optional[tzinfo] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._cache = cache
        self._tz = tz or ZoneInfo(settings.dashboard.timezone)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
    
    async def fetch_chart_data(
        self,
        user_id: Optional[str],
        store_name: Optional[str],
        period: Union[ChartPeriod, str],
    ) -> List[ChartPoint]:
        """
        Chart series for ``store_name``.
        
        Returns an empty list without querying when the user or store is
        missing; otherwise always exactly one point per bucket.
        """
        if not user_id or not store_name:
            return []
        period = ChartPeriod(period)
        
        cache_key = f"{user_id}:{store_name}:{period.value}"
        cached = await self._cached(cache_key)
        if cached is not None:
            return cached
        
        with AGGREGATION_TIME.labels(period=period.value).time():
            window = build_window(period, self._clock(), self._tz)
            call_times, snapshots = await asyncio.gather(
                self._fetch_call_times(user_id, store_name, window),
                self._fetch_snapshots(user_id, store_name, window),
            )
            points = fold_series(window, call_times, snapshots)
        
        logger.debug(
            "Chart series built",
            store=store_name,
            period=period.value,
            calls=len(call_times),
            snapshots=len(snapshots),
        )
        
        if self._cache is not None:
            await self._cache.set(cache_key, [p.model_dump() for p in points])
        return points
    
    async def invalidate(self, user_id: str, store_name: str) -> None:
        """Drop cached series of a store, all periods."""
        if self._cache is not None:
            await self._cache.invalidate(f"{user_id}:{store_name}:")
    
    async def _cached(self, key: str) -> Optional[List[ChartPoint]]:
        if self._cache is None:
            return None
        data = await self._cache.get(key)
        if not data:
            return None
        try:
            return [ChartPoint.model_validate(point) for point in data]
        except (TypeError, ValidationError):
            return None
    
    async def _fetch_call_times(self, user_id: str, store_name: str, window: BucketWindow) -> List[datetime]:
        try:
            return await self._store.call_timestamps(user_id, store_name, window.start, window.end)
        except Exception as e:
            logger.error("Error fetching recordings for chart", store=store_name, error=str(e))
            return []
    
    async def _fetch_snapshots(self, user_id: str, store_name: str, window: BucketWindow) -> List[MetricSnapshot]:
        try:
            return await self._store.metric_snapshots(user_id, store_name, window.start, window.end)
        except Exception as e:
            logger.error("Error fetching metrics for chart", store=store_name, error=str(e))
            return []
