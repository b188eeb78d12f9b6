"""
Call Recordings Module
"""
from .service import (
    RecordingItem,
    RecordingsPage,
    RecordingsQuery,
    RecordingsService,
    format_duration,
    page_bounds,
    total_pages,
)
from .watcher import RecordingsWatcher

__all__ = [
    "RecordingItem",
    "RecordingsPage",
    "RecordingsQuery",
    "RecordingsService",
    "RecordingsWatcher",
    "format_duration",
    "page_bounds",
    "total_pages",
]
