"""
Call Recordings Browser

Paged, date-bounded listing of a store's call recordings plus transcript
lookup. Unlike the chart, query failures propagate: the browser shows an
error instead of an empty table.
"""

import math
from datetime import date, datetime, time, tzinfo
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel, Field, ValidationError, model_validator

from nanoassist.backend.base import RecordStore
from nanoassist.backend.records import CallRecord
from nanoassist.config import get_settings
from nanoassist.serving.cache import CacheManager

logger = structlog.get_logger(__name__)
settings = get_settings()


def page_bounds(page: int, page_size: int) -> Tuple[int, int]:
    """Inclusive row range of a 1-based page: ``(from, to)``."""
    if page < 1 or page_size < 1:
        raise ValueError("page and page_size must be positive")
    start = (page - 1) * page_size
    return start, start + page_size - 1


def total_pages(total: int, page_size: int) -> int:
    if total <= 0 or page_size <= 0:
        return 0
    return math.ceil(total / page_size)


def format_duration(seconds: Optional[int]) -> str:
    """``MM:SS``; missing or zero durations read ``00:00``."""
    if not seconds:
        return "00:00"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


class RecordingsQuery(BaseModel):
    """Filter and page selection of the browser"""
    store_name: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=settings.dashboard.default_page_size, ge=1, le=settings.dashboard.max_page_size)
    search: Optional[str] = None
    
    @model_validator(mode="after")
    def check_range(self) -> "RecordingsQuery":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.search is not None:
            self.search = self.search.strip() or None
        return self
    
    def cache_key(self, user_id: str) -> str:
        return (
            f"{user_id}:{self.store_name}:{self.start_date}:{self.end_date}:"
            f"{self.page}:{self.page_size}:{self.search or ''}"
        )


class RecordingItem(CallRecord):
    """Listed recording with its display duration"""
    duration: str = "00:00"
    
    @model_validator(mode="after")
    def fill_duration(self) -> "RecordingItem":
        self.duration = format_duration(self.duration_seconds)
        return self


class RecordingsPage(BaseModel):
    """One page of the browser"""
    items: List[RecordingItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class RecordingsService:
    """
    Reads recordings for the browser.
    
    Example:
        service = RecordingsService(store, cache=recordings_cache)
        page = await service.fetch_page(user_id, RecordingsQuery(...))
    """
    
    def __init__(
        self,
        store: RecordStore,
        cache: Optional[CacheManager] = None,
        tz: Optional[tzinfo] = None,
    ):
        self._store = store
        self._cache = cache
        self._tz = tz or ZoneInfo(settings.dashboard.timezone)
    
    def date_range(self, query: RecordingsQuery) -> Tuple[datetime, datetime]:
        """Local start of ``start_date`` to local end of ``end_date``."""
        return (
            datetime.combine(query.start_date, time.min, tzinfo=self._tz),
            datetime.combine(query.end_date, time.max, tzinfo=self._tz),
        )
    
    async def fetch_page(self, user_id: str, query: RecordingsQuery) -> RecordingsPage:
        """
        Newest-first page of recordings with the exact total.
        
        Raises:
            QueryError: The store query failed
        """
        key = query.cache_key(user_id)
        if self._cache is not None:
            cached = await self._cache.get(key)
            if cached is not None:
                try:
                    return RecordingsPage.model_validate(cached)
                except ValidationError:
                    logger.debug("Discarding malformed cached page", key=key)
        
        offset, last = page_bounds(query.page, query.page_size)
        start, end = self.date_range(query)
        records, total = await self._store.recordings_page(
            user_id,
            query.store_name,
            start,
            end,
            offset,
            last - offset + 1,
            query.search,
        )
        
        page = RecordingsPage(
            items=[RecordingItem.model_validate(r.model_dump()) for r in records],
            total=total,
            page=query.page,
            page_size=query.page_size,
            total_pages=total_pages(total, query.page_size),
        )
        
        if self._cache is not None:
            await self._cache.set(key, page.model_dump(mode="json"), ttl=settings.dashboard.recordings_ttl)
        return page
    
    async def recording(self, user_id: str, recording_id: int) -> Optional[CallRecord]:
        """One of the user's recordings, transcript included."""
        return await self._store.get_recording(user_id, recording_id)

    async def transcript(self, user_id: str, recording_id: int) -> Optional[str]:
        """Transcript of one recording; None if it has none or is not the user's."""
        record = await self.recording(user_id, recording_id)
        if record is None:
            return None
        return record.recording_transcript
    
    async def invalidate(self, user_id: str, store_name: str) -> int:
        """Drop every cached page of a store."""
        if self._cache is None:
            return 0
        return await self._cache.invalidate(f"{user_id}:{store_name}:")
