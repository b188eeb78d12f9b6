"""
Analytics Module
"""
from .aggregator import ChartPeriod, ChartPoint, MetricsAggregator, build_window, bucket_key, fold_series
from .dashboard import DashboardMetricsService, DashboardSummary, order_history, summarize

__all__ = [
    "ChartPeriod",
    "ChartPoint",
    "MetricsAggregator",
    "build_window",
    "bucket_key",
    "fold_series",
    "DashboardMetricsService",
    "DashboardSummary",
    "order_history",
    "summarize",
]
