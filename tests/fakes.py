"""
In-memory stand-ins for the backend collaborators
"""
import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from nanoassist.backend.base import (
    AuthClient,
    AuthEvent,
    AuthListener,
    AuthUser,
    CallbackSubscription,
    ChangeEvent,
    ChangeFeed,
    ChangeHandler,
    ChangeType,
    RecordStore,
    Session,
    Subscription,
    matches_filters,
)
from nanoassist.backend.records import CallRecord, MetricSnapshot, ProfileRow
from nanoassist.exceptions import AuthError, QueryError, SubscriptionError

TZ = ZoneInfo("Europe/Bucharest")


def make_session(user_id: str = "u1", email: Optional[str] = "u1@example.com", token: str = "access-1") -> Session:
    return Session(access_token=token, refresh_token="refresh-1", user=AuthUser(id=user_id, email=email))


# =============================================================================
# FAKE COLLABORATORS
# =============================================================================

class FakeAuthClient(AuthClient):
    """In-memory auth client; tests drive transitions through ``emit``"""
    
    def __init__(
        self,
        session: Optional[Session] = None,
        accounts: Optional[Dict[Tuple[str, str], Session]] = None,
        get_session_delay: float = 0.0,
        sign_out_error: Optional[Exception] = None,
        sign_out_delay: float = 0.0,
    ):
        self.session = session
        self.accounts = accounts or {}
        self.get_session_delay = get_session_delay
        self.sign_out_error = sign_out_error
        self.sign_out_delay = sign_out_delay
        self.listeners: List[AuthListener] = []
        self.sign_out_calls = 0
    
    async def get_session(self) -> Optional[Session]:
        if self.get_session_delay:
            await asyncio.sleep(self.get_session_delay)
        return self.session
    
    def on_auth_state_change(self, listener: AuthListener) -> Subscription:
        self.listeners.append(listener)
        return CallbackSubscription(lambda: self.listeners.remove(listener))
    
    async def emit(self, event: AuthEvent, session: Optional[Session]) -> None:
        self.session = session
        for listener in list(self.listeners):
            await listener(event, session)
    
    async def sign_in_with_password(self, email: str, password: str) -> Session:
        session = self.accounts.get((email, password))
        if session is None:
            raise AuthError("Invalid login credentials", user_message="Incorrect email or password.", status_code=400)
        await self.emit(AuthEvent.SIGNED_IN, session)
        return session
    
    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.sign_out_delay:
            await asyncio.sleep(self.sign_out_delay)
        if self.sign_out_error is not None:
            raise self.sign_out_error
        await self.emit(AuthEvent.SIGNED_OUT, None)


class FakeChangeFeed(ChangeFeed):
    """Delivers published changes synchronously to matching handlers"""
    
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.handlers: List[Tuple[str, ChangeHandler, Optional[Dict[str, Any]], Optional[set], CallbackSubscription]] = []
        self.subscribe_calls: List[Tuple[str, Optional[Dict[str, Any]]]] = []
    
    async def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        filters: Optional[Dict[str, Any]] = None,
        events: Optional[Iterable[ChangeType]] = None,
    ) -> Subscription:
        self.subscribe_calls.append((table, filters))
        if self.fail:
            raise SubscriptionError("feed down")
        
        entry: list = []
        subscription = CallbackSubscription(lambda: self.handlers.remove(entry[0]))
        entry.append((table, handler, filters, set(events) if events else None, subscription))
        self.handlers.append(entry[0])
        return subscription
    
    async def publish(self, change: ChangeEvent) -> int:
        delivered = 0
        for table, handler, filters, events, _ in list(self.handlers):
            if table != change.table:
                continue
            if events and change.event not in events:
                continue
            if not matches_filters(change.row, filters):
                continue
            await handler(change)
            delivered += 1
        return delivered
    
    @property
    def active(self) -> int:
        return len(self.handlers)


class FakeRecordStore(RecordStore):
    """
    Record store over plain lists.
    
    ``fail`` names methods that raise QueryError; ``delays`` adds latency
    per method.
    """
    
    def __init__(
        self,
        profiles: Optional[List[ProfileRow]] = None,
        calls: Optional[List[CallRecord]] = None,
        snapshots: Optional[List[MetricSnapshot]] = None,
    ):
        self.profiles = list(profiles or [])
        self.calls = list(calls or [])
        self.snapshots = list(snapshots or [])
        self.fail: set = set()
        self.delays: Dict[str, float] = {}
        self.calls_made: List[str] = []
    
    async def _enter(self, name: str) -> None:
        self.calls_made.append(name)
        if name in self.delays:
            await asyncio.sleep(self.delays[name])
        if name in self.fail:
            raise QueryError(f"{name} failed")
    
    async def fetch_profile(self, user_id: str) -> Optional[ProfileRow]:
        await self._enter("fetch_profile")
        return next((p for p in self.profiles if p.id == user_id), None)
    
    async def fetch_profile_by_email(self, email: str) -> Optional[ProfileRow]:
        await self._enter("fetch_profile_by_email")
        return next((p for p in self.profiles if p.email and p.email.lower() == email.lower()), None)
    
    def _scoped(self, rows, user_id, store_name, since, until):
        return [
            r for r in rows
            if r.user_id == user_id
            and r.store_name == store_name
            and r.created_at >= since
            and (until is None or r.created_at < until)
        ]
    
    async def call_timestamps(self, user_id, store_name, since, until=None) -> List[datetime]:
        await self._enter("call_timestamps")
        return sorted(r.created_at for r in self._scoped(self.calls, user_id, store_name, since, until))
    
    async def metric_snapshots(self, user_id, store_name, since, until=None) -> List[MetricSnapshot]:
        await self._enter("metric_snapshots")
        return sorted(self._scoped(self.snapshots, user_id, store_name, since, until), key=lambda s: s.created_at)
    
    async def latest_metrics(self, user_id, store_name=None) -> Optional[MetricSnapshot]:
        await self._enter("latest_metrics")
        rows = [s for s in self.snapshots if s.user_id == user_id and (not store_name or s.store_name == store_name)]
        return max(rows, key=lambda s: s.created_at) if rows else None
    
    async def metrics_history(self, user_id, limit, store_name=None) -> List[MetricSnapshot]:
        await self._enter("metrics_history")
        rows = [s for s in self.snapshots if s.user_id == user_id and (not store_name or s.store_name == store_name)]
        return sorted(rows, key=lambda s: s.created_at)[-limit:]
    
    async def recordings_page(self, user_id, store_name, start, end, offset, limit, search=None):
        await self._enter("recordings_page")
        rows = [
            r for r in self.calls
            if r.user_id == user_id and r.store_name == store_name and start <= r.created_at <= end
        ]
        rows.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return rows[offset:offset + limit], len(rows)
    
    async def get_recording(self, user_id, recording_id) -> Optional[CallRecord]:
        await self._enter("get_recording")
        return next((r for r in self.calls if r.id == recording_id and r.user_id == user_id), None)


class FakeCache:
    """Dict-backed stand-in for CacheManager"""
    
    def __init__(self):
        self.data: Dict[str, Any] = {}
    
    async def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)
    
    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        self.data[key] = value
        return True
    
    async def delete(self, key: str) -> bool:
        return self.data.pop(key, None) is not None
    
    async def invalidate(self, prefix: str = "") -> int:
        keys = [k for k in self.data if k.startswith(prefix)]
        for key in keys:
            del self.data[key]
        return len(keys)
