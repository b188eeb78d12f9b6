"""
Call Recordings Endpoints
"""

from datetime import date
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, ValidationError

from nanoassist.auth import Profile
from nanoassist.config import get_settings
from nanoassist.exceptions import QueryError
from nanoassist.recordings import RecordingsPage, RecordingsQuery, RecordingsService
from nanoassist.serving.api.deps import ensure_watcher, get_recordings, require_profile, require_store

settings = get_settings()
router = APIRouter()
logger = structlog.get_logger(__name__)


class TranscriptResponse(BaseModel):
    id: int
    transcript: Optional[str] = None


@router.get("", response_model=RecordingsPage)
async def list_recordings(
    request: Request,
    start_date: date,
    end_date: date,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.dashboard.default_page_size, ge=1, le=settings.dashboard.max_page_size),
    search: Optional[str] = None,
    profile: Profile = Depends(require_profile),
    store_name: str = Depends(require_store),
    recordings: RecordingsService = Depends(get_recordings),
) -> RecordingsPage:
    """Newest-first page of the store's recordings between two dates, inclusive."""
    try:
        query = RecordingsQuery(
            store_name=store_name,
            start_date=start_date,
            end_date=end_date,
            page=page,
            page_size=page_size,
            search=search,
        )
    except ValidationError as e:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=[err["msg"] for err in e.errors()])
    
    await ensure_watcher(request, profile.id)
    
    try:
        return await recordings.fetch_page(profile.id, query)
    except QueryError as e:
        logger.error("Recordings query failed", store=store_name, error=str(e))
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail="Could not load recordings")


@router.get("/{recording_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(
    recording_id: int,
    profile: Profile = Depends(require_profile),
    recordings: RecordingsService = Depends(get_recordings),
) -> TranscriptResponse:
    try:
        record = await recordings.recording(profile.id, recording_id)
    except QueryError as e:
        logger.error("Transcript query failed", recording_id=recording_id, error=str(e))
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail="Could not load transcript")
    
    if record is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Recording not found")
    if record.store_name and not profile.can_view_store(record.store_name):
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=f"No access to store {record.store_name!r}")
    return TranscriptResponse(id=record.id, transcript=record.recording_transcript)
