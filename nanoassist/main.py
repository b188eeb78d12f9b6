"""
Dashboard API Application

Entry point of the dashboard server. One process holds one signed-in
operator: the session resolver, aggregator and recordings services are
built in the lifespan and shared by every request.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from prometheus_client import make_asgi_app

from nanoassist.analytics import DashboardMetricsService, MetricsAggregator
from nanoassist.auth import SessionResolver
from nanoassist.backend.auth_client import GoTrueAuthClient
from nanoassist.backend.base import ChangeFeed
from nanoassist.backend.realtime import RedisChangeFeed
from nanoassist.backend.sql_store import SqlRecordStore
from nanoassist.config import get_settings
from nanoassist.config.logging import configure_logging
from nanoassist.database.connection import close_database, get_session_factory, init_database
from nanoassist.recordings import RecordingsService
from nanoassist.serving.api.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from nanoassist.serving.api.routes import (
    analytics_router,
    auth_router,
    health_router,
    recordings_router,
)
from nanoassist.serving.cache import (
    auth_cache,
    chart_cache,
    close_redis,
    dashboard_cache,
    init_redis,
    profile_cache,
    recordings_cache,
)

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared components, tear them down in reverse."""
    configure_logging()
    logger.info("Starting dashboard API", environment=settings.app_env)
    
    try:
        await init_database()
    except Exception as e:
        logger.warning("Database init failed", error=str(e))
    
    feed: Optional[ChangeFeed] = None
    try:
        redis = await init_redis()
        if settings.realtime.enabled:
            feed = RedisChangeFeed(redis)
    except Exception as e:
        logger.warning("Redis init failed, running without cache and live updates", error=str(e))
    
    store = SqlRecordStore(lambda: get_session_factory()())
    auth = GoTrueAuthClient(session_cache=auth_cache if settings.supabase.persist_session else None)
    resolver = SessionResolver(auth, store, feed=feed, profile_cache=profile_cache)
    
    app.state.feed = feed
    app.state.store = store
    app.state.auth = auth
    app.state.resolver = resolver
    app.state.aggregator = MetricsAggregator(store, cache=chart_cache)
    app.state.dashboard = DashboardMetricsService(store, cache=dashboard_cache)
    app.state.recordings = RecordingsService(store, cache=recordings_cache)
    app.state.watchers = {}
    
    await resolver.init()
    
    yield
    
    logger.info("Shutting down...")
    for watcher in list(app.state.watchers.values()):
        await watcher.stop()
    app.state.watchers.clear()
    
    await resolver.teardown()
    await auth.close()
    if feed is not None:
        await feed.close()
    await close_redis()
    await close_database()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    
    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Nanoassist Dashboard API",
        description="Session, analytics and call recordings API of the Nanoassist dashboard",
        version=settings.version,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.security.rate_limit_requests,
        window_seconds=settings.security.rate_limit_window_seconds,
    )
    app.add_middleware(RequestLoggingMiddleware)
    
    app.include_router(health_router, prefix="/api/v1", tags=["Health"])
    app.include_router(auth_router, prefix="/api/v1/auth", tags=["Auth"])
    app.include_router(analytics_router, prefix="/api/v1/analytics", tags=["Analytics"])
    app.include_router(recordings_router, prefix="/api/v1/recordings", tags=["Recordings"])
    
    if settings.monitoring.expose_metrics:
        app.mount("/metrics", make_asgi_app())
    
    @app.get("/api/v1/info")
    async def api_info():
        """API information endpoint."""
        return {
            "name": settings.app_name,
            "version": settings.version,
            "environment": settings.app_env,
            "timezone": settings.dashboard.timezone,
        }
    
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
