"""
Collaborator Interfaces

The dashboard delegates persistence, authentication and change
notification to a hosted backend. These abstract classes are the only
surface the resolver, aggregator and recordings browser depend on.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from nanoassist.backend.records import CallRecord, MetricSnapshot, ProfileRow


# =============================================================================
# AUTH MODELS
# =============================================================================

class AuthUser(BaseModel):
    """Identity carried by a session"""
    
    model_config = ConfigDict(frozen=True, extra="ignore")
    
    id: str
    email: Optional[str] = None


class Session(BaseModel):
    """
    Credential handle issued by the auth service.
    
    Frozen: a transition always produces a new Session.
    """
    
    model_config = ConfigDict(frozen=True, extra="ignore")
    
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[datetime] = None
    user: AuthUser
    
    @property
    def user_id(self) -> str:
        return self.user.id
    
    @property
    def email(self) -> Optional[str]:
        return self.user.email
    
    def expires_within(self, seconds: float) -> bool:
        """True if the access token expires in less than ``seconds``."""
        if self.expires_at is None:
            return False
        return self.expires_at - datetime.now(timezone.utc) < timedelta(seconds=seconds)


class AuthEvent(str, Enum):
    """Auth state transitions"""
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


# =============================================================================
# CHANGE NOTIFICATIONS
# =============================================================================

class ChangeType(str, Enum):
    """Row-level change kinds"""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """Row change notification payload"""
    
    model_config = ConfigDict(extra="ignore")
    
    table: str
    event: ChangeType
    new: Dict[str, Any] = Field(default_factory=dict)
    old: Dict[str, Any] = Field(default_factory=dict)
    
    @property
    def row(self) -> Dict[str, Any]:
        """The row the change applies to (``old`` for deletes)."""
        return self.old if self.event == ChangeType.DELETE else self.new


# Profile lookups by email ignore case, so filters on it must too
CASELESS_COLUMNS = frozenset({"email"})


def matches_filters(row: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """Equality predicate used to scope subscriptions to specific rows."""
    if not filters:
        return True
    for column, expected in filters.items():
        value = row.get(column)
        if value is None:
            return False
        if column in CASELESS_COLUMNS:
            if str(value).casefold() != str(expected).casefold():
                return False
        elif str(value) != str(expected):
            return False
    return True


AuthListener = Callable[[AuthEvent, Optional[Session]], Awaitable[None]]
ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


class Subscription(ABC):
    """Handle returned by every subscribe call"""
    
    @property
    @abstractmethod
    def active(self) -> bool:
        """Whether notifications are still delivered"""
        pass
    
    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivery. Safe to call more than once."""
        pass


class CallbackSubscription(Subscription):
    """Subscription whose teardown is a plain callable"""
    
    def __init__(self, remove: Callable[[], None]):
        self._remove = remove
        self._active = True
    
    @property
    def active(self) -> bool:
        return self._active
    
    async def unsubscribe(self) -> None:
        if self._active:
            self._active = False
            self._remove()


# =============================================================================
# COLLABORATORS
# =============================================================================

class AuthClient(ABC):
    """Authentication sub-interface of the hosted backend"""
    
    @abstractmethod
    async def get_session(self) -> Optional[Session]:
        """One-shot lookup of the current session"""
        pass
    
    @abstractmethod
    def on_auth_state_change(self, listener: AuthListener) -> Subscription:
        """Register a listener for auth transitions"""
        pass
    
    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> Session:
        """
        Exchange credentials for a session.
        
        Raises:
            AuthError: Invalid credentials or unreachable service
        """
        pass
    
    @abstractmethod
    async def sign_out(self) -> None:
        """Revoke the current session"""
        pass
    
    async def close(self) -> None:
        """Release transport resources"""
        return None


class ChangeFeed(ABC):
    """Push channel for row-level change notifications"""
    
    @abstractmethod
    async def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        filters: Optional[Dict[str, Any]] = None,
        events: Optional[Iterable[ChangeType]] = None,
    ) -> Subscription:
        """
        Subscribe to changes of ``table`` rows matching ``filters``.
        
        Raises:
            SubscriptionError: The channel could not be opened
        """
        pass
    
    @abstractmethod
    async def publish(self, change: ChangeEvent) -> int:
        """Announce a change. Returns the number of receivers."""
        pass
    
    async def close(self) -> None:
        """Cancel every open subscription"""
        return None


class RecordStore(ABC):
    """
    Queryable record store.
    
    Every method raises QueryError when the backend call fails.
    """
    
    @abstractmethod
    async def fetch_profile(self, user_id: str) -> Optional[ProfileRow]:
        pass
    
    @abstractmethod
    async def fetch_profile_by_email(self, email: str) -> Optional[ProfileRow]:
        pass
    
    @abstractmethod
    async def call_timestamps(
        self,
        user_id: str,
        store_name: str,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> List[datetime]:
        """Creation times of the store's calls, oldest first"""
        pass
    
    @abstractmethod
    async def metric_snapshots(
        self,
        user_id: str,
        store_name: str,
        since: datetime,
        until: Optional[datetime] = None,
    ) -> List[MetricSnapshot]:
        """Snapshots of the store in the window, oldest first"""
        pass
    
    @abstractmethod
    async def latest_metrics(self, user_id: str, store_name: Optional[str] = None) -> Optional[MetricSnapshot]:
        pass
    
    @abstractmethod
    async def metrics_history(
        self,
        user_id: str,
        limit: int,
        store_name: Optional[str] = None,
    ) -> List[MetricSnapshot]:
        """The ``limit`` most recent snapshots, oldest first"""
        pass
    
    @abstractmethod
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
        """A page of recordings, newest first, plus the exact total count"""
        pass
    
    @abstractmethod
    async def get_recording(self, user_id: str, recording_id: int) -> Optional[CallRecord]:
        pass
