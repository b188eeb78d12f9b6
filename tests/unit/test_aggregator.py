"""
Unit Tests - Chart Aggregation
"""
from datetime import datetime, timezone

import pytest

from nanoassist.analytics.aggregator import (
    ChartPeriod,
    MetricsAggregator,
    bucket_key,
    build_window,
    fold_series,
)
from nanoassist.backend.records import CallRecord, MetricSnapshot

from tests.fakes import TZ, FakeRecordStore


def call(id: int, ts: datetime, store: str = "Acme", user: str = "u1") -> CallRecord:
    return CallRecord(id=id, user_id=user, created_at=ts, store_name=store)


def snapshot(ts: datetime, store: str = "Acme", user: str = "u1", **counters) -> MetricSnapshot:
    return MetricSnapshot(user_id=user, created_at=ts, store_name=store, **counters)


class TestBuildWindow:
    """Tests for bucket layout"""
    
    @pytest.mark.parametrize("period,expected", [("day", 24), ("week", 8), ("month", 31)])
    def test_bucket_count(self, now, period, expected):
        """Test bucket count per period with no data"""
        window = build_window(period, now, TZ)
        
        assert len(window) == expected
        assert len(fold_series(window, [], [])) == expected
    
    def test_day_keys_are_hours(self, now):
        """Test day window spans local midnight to midnight"""
        window = build_window(ChartPeriod.DAY, now, TZ)
        
        assert window.keys[0] == "00:00"
        assert window.keys[-1] == "23:00"
        assert window.start == datetime(2025, 6, 18, 0, 0, tzinfo=TZ)
        assert window.end == datetime(2025, 6, 19, 0, 0, tzinfo=TZ)
    
    def test_week_keys_are_dates(self, now):
        """Test week window keys are ISO dates"""
        window = build_window(ChartPeriod.WEEK, now, TZ)
        
        assert window.keys[0] == "2025-06-11"
        assert window.keys[-1] == "2025-06-18"
        assert window.start == datetime(2025, 6, 11, 12, 0, tzinfo=TZ)
        assert window.end == datetime(2025, 6, 19, 0, 0, tzinfo=TZ)
    
    def test_labels(self, now):
        """Test Romanian weekday and day-month labels"""
        week = build_window(ChartPeriod.WEEK, now, TZ)
        month = build_window(ChartPeriod.MONTH, now, TZ)
        
        # 2025-06-16 is a Monday
        assert week.labels[week.keys.index("2025-06-16")] == "lun."
        assert month.labels[month.keys.index("2025-06-16")] == "16 iun."
    
    def test_naive_now_is_local(self):
        """Test naive now is read as local time"""
        window = build_window(ChartPeriod.DAY, datetime(2025, 6, 18, 1, 0), TZ)
        
        assert window.start == datetime(2025, 6, 18, 0, 0, tzinfo=TZ)


class TestBucketKey:
    """Tests for bucket assignment"""
    
    def test_hour_boundary(self):
        """Test hour boundary truncation"""
        ts = datetime(2025, 6, 18, 9, 0, 0, tzinfo=TZ)
        
        assert bucket_key(ChartPeriod.DAY, ts, TZ) == "09:00"
        assert bucket_key(ChartPeriod.DAY, ts.replace(minute=59, second=59), TZ) == "09:00"
    
    def test_midnight_boundary(self):
        """Test midnight lands in the new day"""
        ts = datetime(2025, 6, 17, 0, 0, 0, tzinfo=TZ)
        
        assert bucket_key(ChartPeriod.WEEK, ts, TZ) == "2025-06-17"
        assert bucket_key(ChartPeriod.DAY, ts, TZ) == "00:00"
    
    def test_utc_timestamps_use_local_day(self):
        """Test UTC timestamps bucket by local day"""
        # 21:30 UTC is 00:30 the next day in Bucharest summer time
        ts = datetime(2025, 6, 16, 21, 30, tzinfo=timezone.utc)
        
        assert bucket_key(ChartPeriod.WEEK, ts, TZ) == "2025-06-17"
    
    def test_naive_timestamps_are_utc(self):
        """Test naive record timestamps are UTC"""
        assert bucket_key(ChartPeriod.DAY, datetime(2025, 6, 18, 6, 15), TZ) == "09:00"


class TestFoldSeries:
    """Tests for fold_series"""
    
    def test_counts_calls_per_hour(self, now):
        """Test calls counted per hour bucket"""
        window = build_window(ChartPeriod.DAY, now, TZ)

        points = fold_series(
            window,
            [
                datetime(2025, 6, 18, 10, 0, tzinfo=TZ),
                datetime(2025, 6, 18, 10, 45, tzinfo=TZ),
                datetime(2025, 6, 18, 23, 59, tzinfo=TZ),
            ],
            [],
        )

        assert len(points) == 24
        assert points[10].calls == 2
        assert points[23].calls == 1
        assert sum(p.calls for p in points) == 3
    
    def test_unknown_keys_never_add_buckets(self, now):
        """Test records outside the window are dropped"""
        window = build_window(ChartPeriod.WEEK, now, TZ)
        far = datetime(2025, 1, 1, 10, 0, tzinfo=TZ)
        
        points = fold_series(window, [far], [snapshot(far, comenzi_confirmate=5)])
        
        assert len(points) == 8
        assert all(p.calls == 0 and p.orders == 0 for p in points)
    
    def test_sums_snapshots_in_one_bucket(self, now):
        """Test snapshot counters summed per bucket"""
        window = build_window(ChartPeriod.WEEK, now, TZ)
        day = datetime(2025, 6, 15, 0, 0, tzinfo=TZ)
        
        points = fold_series(
            window,
            [],
            [
                snapshot(day, comenzi_confirmate=2, cosuri_abandonate=1, vanzari_generate=100.5),
                snapshot(day.replace(hour=18), comenzi_confirmate=1, vanzari_generate=49.5),
            ],
        )
        
        point = next(p for p in points if p.full_date == "2025-06-15")
        assert point.orders == 3
        assert point.drafts == 1
        assert point.sales == pytest.approx(150.0)
    
    def test_series_is_chronological(self, now):
        """Test month series is ordered by date"""
        points = fold_series(build_window(ChartPeriod.MONTH, now, TZ), [], [])
        
        dates = [p.full_date for p in points]
        assert dates == sorted(dates)
        assert dates[0] == "2025-05-19"
        assert dates[-1] == "2025-06-18"


class TestMetricsAggregator:
    """Tests for MetricsAggregator"""
    
    async def test_week_scenario(self, clock):
        """Test week chart with calls and one snapshot"""
        store = FakeRecordStore(
            calls=[
                call(1, datetime(2025, 6, 16, 10, 0, tzinfo=TZ)),
                call(2, datetime(2025, 6, 16, 15, 0, tzinfo=TZ)),
            ],
            snapshots=[snapshot(datetime(2025, 6, 16, 0, 0, tzinfo=TZ), comenzi_confirmate=3)],
        )
        aggregator = MetricsAggregator(store, tz=TZ, clock=clock)
        
        points = await aggregator.fetch_chart_data("u1", "Acme", "week")
        
        assert len(points) == 8
        day = next(p for p in points if p.full_date == "2025-06-16")
        assert (day.calls, day.orders) == (2, 3)
        others = [p for p in points if p.full_date != "2025-06-16"]
        assert len(others) == 7
        assert all((p.calls, p.orders, p.drafts, p.sales) == (0, 0, 0, 0.0) for p in others)
    
    async def test_other_stores_and_users_are_excluded(self, clock):
        """Test other stores and users do not count"""
        ts = datetime(2025, 6, 18, 9, 30, tzinfo=TZ)
        store = FakeRecordStore(calls=[call(1, ts), call(2, ts, store="Beta"), call(3, ts, user="u2")])
        aggregator = MetricsAggregator(store, tz=TZ, clock=clock)
        
        points = await aggregator.fetch_chart_data("u1", "Acme", ChartPeriod.DAY)
        
        assert sum(p.calls for p in points) == 1
        assert points[9].name == "09:00" and points[9].calls == 1
    
    async def test_snapshot_failure_keeps_calls(self, clock):
        """Test snapshot failure leaves call counts"""
        store = FakeRecordStore(calls=[call(1, datetime(2025, 6, 18, 11, 5, tzinfo=TZ))])
        store.fail.add("metric_snapshots")
        aggregator = MetricsAggregator(store, tz=TZ, clock=clock)
        
        points = await aggregator.fetch_chart_data("u1", "Acme", "day")
        
        assert len(points) == 24
        assert points[11].calls == 1
        assert all(p.orders == 0 and p.drafts == 0 and p.sales == 0 for p in points)
    
    async def test_both_streams_failing_yields_zero_series(self, clock):
        """Test full zero series when both queries fail"""
        store = FakeRecordStore()
        store.fail.update({"metric_snapshots", "call_timestamps"})
        aggregator = MetricsAggregator(store, tz=TZ, clock=clock)
        
        points = await aggregator.fetch_chart_data("u1", "Acme", "month")
        
        assert len(points) == 31
        assert all(p.calls == 0 for p in points)
    
    @pytest.mark.parametrize("user_id,store_name", [(None, "Acme"), ("u1", None), ("u1", ""), ("", "Acme")])
    async def test_missing_inputs_return_empty_without_query(self, clock, user_id, store_name):
        """Test missing user or store skips querying"""
        store = FakeRecordStore()
        aggregator = MetricsAggregator(store, tz=TZ, clock=clock)
        
        assert await aggregator.fetch_chart_data(user_id, store_name, "week") == []
        assert store.calls_made == []
    
    async def test_series_is_cached_per_period(self, clock, cache):
        """Test series caching and invalidation"""
        store = FakeRecordStore(calls=[call(1, datetime(2025, 6, 18, 8, 0, tzinfo=TZ))])
        aggregator = MetricsAggregator(store, cache=cache, tz=TZ, clock=clock)
        
        first = await aggregator.fetch_chart_data("u1", "Acme", "day")
        store.calls.clear()
        second = await aggregator.fetch_chart_data("u1", "Acme", "day")
        
        assert second == first
        assert store.calls_made.count("call_timestamps") == 1
        
        await aggregator.invalidate("u1", "Acme")
        third = await aggregator.fetch_chart_data("u1", "Acme", "day")
        
        assert sum(p.calls for p in third) == 0
