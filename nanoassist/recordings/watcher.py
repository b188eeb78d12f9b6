"""
Recordings Watcher

Listens for new call recordings of one user and, after a burst settles,
drops the cached pages and chart series of the affected store so the next
read reflects the insert.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set

import structlog
from prometheus_client import Counter

from nanoassist.analytics.aggregator import MetricsAggregator
from nanoassist.backend.base import ChangeEvent, ChangeFeed, ChangeType, Subscription
from nanoassist.config import get_settings
from nanoassist.exceptions import SubscriptionError
from nanoassist.recordings.service import RecordingsService

logger = structlog.get_logger(__name__)
settings = get_settings()

RECORDING_REFRESHES = Counter(
    "nanoassist_recording_refreshes_total",
    "Debounced refreshes triggered by new recordings",
)

RECORDINGS_TABLE = "call_recordings"

RefreshCallback = Callable[[str, str], Awaitable[None]]


class RecordingsWatcher:
    """
    Debounced INSERT listener on ``call_recordings`` for one user.
    
    ``store_names`` limits the stores that trigger a refresh; ``None``
    accepts every store of the user. Each store has its own debounce timer.
    
    Example:
        watcher = RecordingsWatcher(feed, user_id, recordings, aggregator=aggregator)
        await watcher.start()
        ...
        await watcher.stop()
    """
    
    def __init__(
        self,
        feed: ChangeFeed,
        user_id: str,
        recordings: Optional[RecordingsService] = None,
        aggregator: Optional[MetricsAggregator] = None,
        store_names: Optional[Iterable[str]] = None,
        on_refresh: Optional[RefreshCallback] = None,
        debounce_ms: Optional[int] = None,
    ):
        self._feed = feed
        self.user_id = user_id
        self._recordings = recordings
        self._aggregator = aggregator
        self._store_names = set(store_names) if store_names is not None else None
        self._on_refresh = on_refresh
        delay_ms = settings.realtime.recordings_debounce_ms if debounce_ms is None else debounce_ms
        self._delay = delay_ms / 1000
        
        self._subscription: Optional[Subscription] = None
        self._pending: Dict[str, asyncio.Task] = {}
        self._refreshing: Set[asyncio.Task] = set()
    
    @property
    def running(self) -> bool:
        return self._subscription is not None and self._subscription.active
    
    async def start(self) -> bool:
        """Open the subscription. Returns False when the feed is unavailable."""
        if self.running:
            return True
        try:
            self._subscription = await self._feed.subscribe(
                RECORDINGS_TABLE,
                self._on_insert,
                filters={"user_id": self.user_id},
                events=[ChangeType.INSERT],
            )
        except SubscriptionError as e:
            logger.warning("Recordings subscription failed", user_id=self.user_id, error=str(e))
            return False
        
        logger.info("Watching recordings", user_id=self.user_id)
        return True
    
    async def stop(self) -> None:
        """Cancel pending and running refreshes, then close the subscription."""
        tasks = [t for t in (*self._pending.values(), *self._refreshing) if t is not asyncio.current_task()]
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await subscription.unsubscribe()
    
    async def _on_insert(self, change: ChangeEvent) -> None:
        store_name = change.new.get("store_name")
        if not store_name:
            return
        if self._store_names is not None and store_name not in self._store_names:
            return
        
        logger.debug("New recording", user_id=self.user_id, store=store_name)
        pending = self._pending.get(store_name)
        if pending is not None and not pending.done():
            pending.cancel()
        self._pending[store_name] = asyncio.create_task(
            self._refresh_later(store_name),
            name=f"recordings-refresh-{store_name}",
        )
    
    async def _refresh_later(self, store_name: str) -> None:
        await asyncio.sleep(self._delay)
        task = asyncio.current_task()
        # past this point a newer insert must not cancel the refresh, only stop() may
        if self._pending.get(store_name) is task:
            del self._pending[store_name]
        self._refreshing.add(task)
        try:
            await self.refresh(store_name)
        finally:
            self._refreshing.discard(task)
    
    async def refresh(self, store_name: str) -> None:
        """Invalidate the store's cached reads and notify the callback."""
        RECORDING_REFRESHES.inc()
        if self._recordings is not None:
            await self._recordings.invalidate(self.user_id, store_name)
        if self._aggregator is not None:
            await self._aggregator.invalidate(self.user_id, store_name)
        
        if self._on_refresh is not None:
            try:
                await self._on_refresh(self.user_id, store_name)
            except Exception as e:
                logger.error("Recordings refresh callback failed", store=store_name, error=str(e))
