"""
SQL Record Store

RecordStore over the backend's Postgres tables with SQLAlchemy 2.0 async.
Timestamps are bound and returned in UTC.
"""

from datetime import datetime
from typing import Callable, List, Optional, Tuple

import structlog
from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nanoassist.backend.base import RecordStore
from nanoassist.backend.records import CallRecord, MetricSnapshot, ProfileRow, as_utc
from nanoassist.database.models import CallMetric, CallRecording, Profile
from nanoassist.exceptions import QueryError

logger = structlog.get_logger(__name__)

# Columns the chart needs from call_metrics
CHART_METRIC_COLUMNS = (
    CallMetric.created_at,
    CallMetric.comenzi_confirmate,
    CallMetric.cosuri_abandonate,
    CallMetric.vanzari_generate,
)

# Everything but the transcript, which is fetched per recording
LIST_RECORDING_COLUMNS = (
    CallRecording.id,
    CallRecording.user_id,
    CallRecording.created_at,
    CallRecording.duration_seconds,
    CallRecording.recording_url,
    CallRecording.phone_number,
    CallRecording.direction,
    CallRecording.store_name,
    CallRecording.client_personal_id,
    CallRecording.status,
)


class SqlRecordStore(RecordStore):
    """
    Record store backed by an async session factory.
    
    Example:
        store = SqlRecordStore(get_session_factory())
        row = await store.fetch_profile(user_id)
    """
    
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | Callable[[], AsyncSession]):
        self._session_factory = session_factory
    
    async def _scalars(self, table: str, stmt: Select) -> list:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Query failed", table=table, error=str(e))
            raise QueryError(str(e), table=table) from e
    
    async def _rows(self, table: str, stmt: Select) -> list:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return list(result.all())
        except SQLAlchemyError as e:
            logger.error("Query failed", table=table, error=str(e))
            raise QueryError(str(e), table=table) from e
    
    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------
    
    async def fetch_profile(self, user_id: str) -> Optional[ProfileRow]:
        rows = await self._scalars("profiles", select(Profile).where(Profile.id == user_id).limit(1))
        return ProfileRow.model_validate(rows[0]) if rows else None
    
    async def fetch_profile_by_email(self, email: str) -> Optional[ProfileRow]:
        rows = await self._scalars(
            "profiles",
            select(Profile).where(func.lower(Profile.email) == email.lower()).limit(1),
        )
        return ProfileRow.model_validate(rows[0]) if rows else None
    
    # -------------------------------------------------------------------------
    # Chart streams
    # -------------------------------------------------------------------------
    
    async def call_timestamps(
        self,
        user_id: str,
        store_name: str,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> List[datetime]:
        conditions = [
            CallRecording.user_id == user_id,
            CallRecording.store_name == store_name,
            CallRecording.created_at >= as_utc(since),
        ]
        if until is not None:
            conditions.append(CallRecording.created_at < as_utc(until))
        
        stmt = (
            select(CallRecording.created_at)
            .where(and_(*conditions))
            .order_by(CallRecording.created_at.asc())
        )
        return [as_utc(ts) for ts in await self._scalars("call_recordings", stmt)]
    
    async def metric_snapshots(
        self,
        user_id: str,
        store_name: str,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> List[MetricSnapshot]:
        conditions = [
            CallMetric.user_id == user_id,
            CallMetric.store_name == store_name,
            CallMetric.created_at >= as_utc(since),
        ]
        if until is not None:
            conditions.append(CallMetric.created_at < as_utc(until))
        
        stmt = (
            select(*CHART_METRIC_COLUMNS)
            .where(and_(*conditions))
            .order_by(CallMetric.created_at.asc())
        )
        rows = await self._rows("call_metrics", stmt)
        return [MetricSnapshot.model_validate(dict(row._mapping)) for row in rows]
    
    # -------------------------------------------------------------------------
    # Dashboard widgets
    # -------------------------------------------------------------------------
    
    async def latest_metrics(self, user_id: str, store_name: Optional[str] = None) -> Optional[MetricSnapshot]:
        stmt = select(CallMetric).where(CallMetric.user_id == user_id)
        if store_name:
            stmt = stmt.where(CallMetric.store_name == store_name)
        stmt = stmt.order_by(CallMetric.created_at.desc()).limit(1)
        
        rows = await self._scalars("call_metrics", stmt)
        return MetricSnapshot.model_validate(rows[0]) if rows else None
    
    async def metrics_history(
        self,
        user_id: str,
        limit: int,
        store_name: Optional[str] = None,
    ) -> List[MetricSnapshot]:
        stmt = select(CallMetric).where(CallMetric.user_id == user_id)
        if store_name:
            stmt = stmt.where(CallMetric.store_name == store_name)
        stmt = stmt.order_by(CallMetric.created_at.desc()).limit(limit)
        
        rows = await self._scalars("call_metrics", stmt)
        return [MetricSnapshot.model_validate(row) for row in reversed(rows)]
    
    # -------------------------------------------------------------------------
    # Recordings browser
    # -------------------------------------------------------------------------
    
    async def recordings_page(
        self,
        user_id: str,
        store_name: str,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
        search: Optional[str] = None,
    ) -> Tuple[List[CallRecord], int]:
        conditions = [
            CallRecording.user_id == user_id,
            CallRecording.store_name == store_name,
            CallRecording.created_at >= as_utc(start),
            CallRecording.created_at <= as_utc(end),
        ]
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(
                or_(
                    CallRecording.phone_number.ilike(pattern),
                    CallRecording.client_personal_id.ilike(pattern),
                )
            )
        
        count_stmt = select(func.count()).select_from(CallRecording).where(and_(*conditions))
        page_stmt = (
            select(*LIST_RECORDING_COLUMNS)
            .where(and_(*conditions))
            .order_by(CallRecording.created_at.desc(), CallRecording.id.desc())
            .offset(offset)
            .limit(limit)
        )
        
        try:
            async with self._session_factory() as session:
                total = (await session.execute(count_stmt)).scalar_one()
                rows = (await session.execute(page_stmt)).all()
        except SQLAlchemyError as e:
            logger.error("Query failed", table="call_recordings", error=str(e))
            raise QueryError(str(e), table="call_recordings") from e
        
        return [CallRecord.model_validate(dict(row._mapping)) for row in rows], int(total or 0)
    
    async def get_recording(self, user_id: str, recording_id: int) -> Optional[CallRecord]:
        stmt = select(CallRecording).where(
            and_(CallRecording.id == recording_id, CallRecording.user_id == user_id)
        )
        rows = await self._scalars("call_recordings", stmt)
        return CallRecord.model_validate(rows[0]) if rows else None
