"""
Redis Change Feed

Row-level change notifications over Redis pub/sub. Producers publish a
JSON payload ``{"event": ..., "new": {...}, "old": {...}}`` on
``<prefix>:<table>``; each subscription owns a pubsub connection and a
listener task that filters rows and awaits the handler.
"""

import asyncio
import json
from typing import Any, Dict, Iterable, Optional, Set

import structlog
from prometheus_client import Counter, Gauge
from pydantic import ValidationError
from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from nanoassist.backend.base import (
    ChangeEvent,
    ChangeFeed,
    ChangeHandler,
    ChangeType,
    Subscription,
    matches_filters,
)
from nanoassist.config import get_settings
from nanoassist.exceptions import SubscriptionError

logger = structlog.get_logger(__name__)
settings = get_settings()


# =============================================================================
# METRICS
# =============================================================================

CHANGES_DELIVERED = Counter(
    "nanoassist_changes_delivered_total",
    "Change notifications delivered to handlers",
    ["table", "event"],
)

CHANGE_HANDLER_ERRORS = Counter(
    "nanoassist_change_handler_errors_total",
    "Change handlers that raised",
    ["table"],
)

ACTIVE_SUBSCRIPTIONS = Gauge(
    "nanoassist_change_subscriptions",
    "Open change subscriptions",
    ["table"],
)


class RedisSubscription(Subscription):
    """One pubsub connection plus its listener task"""
    
    def __init__(self, feed: "RedisChangeFeed", table: str, channel: str, pubsub: PubSub):
        self.table = table
        self.channel = channel
        self._feed = feed
        self._pubsub = pubsub
        self._task: Optional[asyncio.Task] = None
        self._closed = False
    
    @property
    def active(self) -> bool:
        return not self._closed
    
    def start(self, handler: ChangeHandler, filters: Optional[Dict[str, Any]], events: Optional[Set[ChangeType]]) -> None:
        self._task = asyncio.create_task(
            self._feed._listen(self, handler, filters, events),
            name=f"change-feed:{self.channel}",
        )
    
    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        
        try:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Failed to close pubsub cleanly", channel=self.channel, error=str(e))
        
        self._feed._discard(self)
        ACTIVE_SUBSCRIPTIONS.labels(table=self.table).dec()
        logger.debug("Unsubscribed from changes", channel=self.channel)


class RedisChangeFeed(ChangeFeed):
    """
    Change feed on Redis pub/sub.
    
    Example:
        feed = RedisChangeFeed(get_redis())
        sub = await feed.subscribe("profiles", on_change, filters={"id": user_id})
        ...
        await sub.unsubscribe()
    """
    
    def __init__(self, client: Redis, channel_prefix: Optional[str] = None):
        self._client = client
        self._prefix = channel_prefix or settings.realtime.channel_prefix
        self._subscriptions: Set[RedisSubscription] = set()
    
    def channel_for(self, table: str) -> str:
        return f"{self._prefix}:{table}"
    
    async def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        filters: Optional[Dict[str, Any]] = None,
        events: Optional[Iterable[ChangeType]] = None,
    ) -> Subscription:
        channel = self.channel_for(table)
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        
        try:
            await pubsub.subscribe(channel)
        except (RedisError, OSError) as e:
            logger.error("Change subscription failed", channel=channel, error=str(e))
            raise SubscriptionError(f"Could not subscribe to {channel}: {e}") from e
        
        subscription = RedisSubscription(self, table, channel, pubsub)
        subscription.start(handler, filters, set(events) if events else None)
        self._subscriptions.add(subscription)
        ACTIVE_SUBSCRIPTIONS.labels(table=table).inc()
        
        logger.info("Subscribed to changes", channel=channel, filters=filters)
        return subscription
    
    async def _listen(
        self,
        subscription: RedisSubscription,
        handler: ChangeHandler,
        filters: Optional[Dict[str, Any]],
        events: Optional[Set[ChangeType]],
    ) -> None:
        table = subscription.table
        try:
            async for message in subscription._pubsub.listen():
                if message.get("type") != "message":
                    continue
                
                change = self.decode(table, message.get("data"))
                if change is None:
                    continue
                if events and change.event not in events:
                    continue
                if not matches_filters(change.row, filters):
                    continue
                
                CHANGES_DELIVERED.labels(table=table, event=change.event.value).inc()
                try:
                    await handler(change)
                except Exception as e:
                    CHANGE_HANDLER_ERRORS.labels(table=table).inc()
                    logger.error("Change handler failed", table=table, error=str(e), error_type=type(e).__name__)
        except (RedisError, OSError) as e:
            logger.error("Change feed connection lost", channel=subscription.channel, error=str(e))
    
    @staticmethod
    def decode(table: str, data: Any) -> Optional[ChangeEvent]:
        """Parse a published payload; malformed payloads are dropped."""
        try:
            payload = json.loads(data)
            return ChangeEvent.model_validate({**payload, "table": table})
        except (TypeError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("Malformed change notification", table=table, error=str(e))
            return None
    
    async def publish(self, change: ChangeEvent) -> int:
        receivers = await self._client.publish(
            self.channel_for(change.table),
            change.model_dump_json(exclude={"table"}),
        )
        logger.debug("Published change", table=change.table, event=change.event.value, receivers=receivers)
        return receivers
    
    def _discard(self, subscription: RedisSubscription) -> None:
        self._subscriptions.discard(subscription)
    
    async def close(self) -> None:
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()
        logger.info("Change feed closed")
