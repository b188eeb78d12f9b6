"""
Route dependencies.

Components are built once in the application lifespan and stored on
``app.state``; routes reach them through these helpers.
"""

from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Query, Request, status

from nanoassist.analytics import DashboardMetricsService, MetricsAggregator
from nanoassist.auth import Profile, SessionResolver
from nanoassist.backend.base import Session
from nanoassist.recordings import RecordingsService, RecordingsWatcher

logger = structlog.get_logger(__name__)


def get_resolver(request: Request) -> SessionResolver:
    resolver = getattr(request.app.state, "resolver", None)
    if resolver is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auth not initialized")
    return resolver


def get_aggregator(request: Request) -> MetricsAggregator:
    return request.app.state.aggregator


def get_dashboard(request: Request) -> DashboardMetricsService:
    return request.app.state.dashboard


def get_recordings(request: Request) -> RecordingsService:
    return request.app.state.recordings


async def require_session(resolver: SessionResolver = Depends(get_resolver)) -> Session:
    """The signed-in session, waiting out the bootstrap phase first."""
    await resolver.wait_until_ready()
    session = resolver.current_session()
    if session is None:
        raise HTTPException(
            status.HTTP_401_UNAUTHORIZED,
            detail="Not signed in",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return session


async def require_profile(
    session: Session = Depends(require_session),
    resolver: SessionResolver = Depends(get_resolver),
) -> Profile:
    profile = resolver.current_profile()
    if profile is None or profile.id != session.user_id:
        # Profile still resolving; refresh_profile always leaves one set
        await resolver.refresh_profile()
        profile = resolver.current_profile()
    if profile is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail="Profile not available")
    return profile


def check_store(profile: Profile, store_name: Optional[str]) -> None:
    """403 unless the profile may view ``store_name``."""
    if store_name and not profile.can_view_store(store_name):
        logger.warning("Store access denied", user_id=profile.id, store=store_name)
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail=f"No access to store {store_name!r}")


async def require_store(
    store_name: str = Query(..., min_length=1),
    profile: Profile = Depends(require_profile),
) -> str:
    check_store(profile, store_name)
    return store_name


async def ensure_watcher(request: Request, user_id: str) -> Optional[RecordingsWatcher]:
    """Start the recordings watcher of ``user_id`` on first use."""
    feed = getattr(request.app.state, "feed", None)
    if feed is None:
        return None
    
    watchers = request.app.state.watchers
    watcher = watchers.get(user_id)
    if watcher is not None and watcher.running:
        return watcher
    
    watcher = RecordingsWatcher(
        feed,
        user_id,
        recordings=request.app.state.recordings,
        aggregator=request.app.state.aggregator,
    )
    if await watcher.start():
        watchers[user_id] = watcher
        return watcher
    return None
