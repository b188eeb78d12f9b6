"""
Session/Profile Resolver

Single source of truth for who the current user is and what they may see.
Reconciles three asynchronous inputs:

- the one-shot session lookup at startup
- auth transitions pushed by the auth client (sign-in, sign-out, refresh)
- change notifications for the active user's profile row

States run UNAUTHENTICATED -> SESSION_PENDING -> AUTHENTICATED and back to
UNAUTHENTICATED on sign-out. ``loading`` covers the bootstrap phase only
and is released by a watchdog if the backend never answers.

Profile rows are keyed by one column per deployment (``id`` by default,
``email`` for schemas keyed that way); the realtime subscription uses the
same key.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, Literal, Optional

import structlog
from pydantic import BaseModel, ValidationError

from nanoassist.auth.profiles import Profile, degraded_profile, profile_from_row
from nanoassist.backend.base import (
    AuthClient,
    AuthEvent,
    ChangeEvent,
    ChangeFeed,
    ChangeType,
    RecordStore,
    Session,
    Subscription,
    matches_filters,
)
from nanoassist.backend.records import ProfileRow
from nanoassist.config import get_settings
from nanoassist.exceptions import ProfileFetchError, SubscriptionError
from nanoassist.serving.cache import CacheManager

logger = structlog.get_logger(__name__)
settings = get_settings()

PROFILES_TABLE = "profiles"


class AuthState(str, Enum):
    """Identity lifecycle"""
    UNAUTHENTICATED = "unauthenticated"
    SESSION_PENDING = "session_pending"
    AUTHENTICATED = "authenticated"


class AuthSnapshot(BaseModel):
    """Point-in-time view of the resolver for consumers"""
    state: AuthState
    loading: bool
    session: Optional[Session] = None
    profile: Optional[Profile] = None


class SessionResolver:
    """
    Owns the current session and profile.
    
    Constructed once at startup and handed to consumers; nothing reads
    identity from module state.
    
    Example:
        resolver = SessionResolver(auth_client, store, feed)
        await resolver.init()
        await resolver.wait_until_ready()
        profile = resolver.current_profile()
        ...
        await resolver.teardown()
    """
    
    def __init__(
        self,
        auth: AuthClient,
        store: RecordStore,
        feed: Optional[ChangeFeed] = None,
        profile_cache: Optional[CacheManager] = None,
        bootstrap_timeout: Optional[float] = None,
        sign_out_timeout: Optional[float] = None,
        fetch_timeout: Optional[float] = None,
        profile_lookup: Optional[Literal["id", "email"]] = None,
    ):
        self._auth = auth
        self._store = store
        self._feed = feed
        self._profile_cache = profile_cache
        self._bootstrap_timeout = (
            settings.dashboard.bootstrap_timeout_seconds if bootstrap_timeout is None else bootstrap_timeout
        )
        self._sign_out_timeout = (
            settings.dashboard.sign_out_timeout_seconds if sign_out_timeout is None else sign_out_timeout
        )
        self._fetch_timeout = settings.supabase.request_timeout if fetch_timeout is None else fetch_timeout
        self._lookup = profile_lookup or settings.dashboard.profile_lookup
        
        self._session: Optional[Session] = None
        self._profile: Optional[Profile] = None
        self._loading = True
        self._ready = asyncio.Event()
        
        # Bumped whenever the identity changes; late results from an older
        # generation are dropped.
        self._generation = 0
        
        self._auth_subscription: Optional[Subscription] = None
        self._profile_subscription: Optional[Subscription] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._bootstrap_task: Optional[asyncio.Task] = None
        self._started = False
    
    # -------------------------------------------------------------------------
    # Read side
    # -------------------------------------------------------------------------
    
    def current_session(self) -> Optional[Session]:
        return self._session
    
    def current_profile(self) -> Optional[Profile]:
        return self._profile
    
    @property
    def loading(self) -> bool:
        return self._loading
    
    @property
    def state(self) -> AuthState:
        if self._session is None:
            return AuthState.UNAUTHENTICATED
        if self._profile is None:
            return AuthState.SESSION_PENDING
        return AuthState.AUTHENTICATED
    
    def snapshot(self) -> AuthSnapshot:
        return AuthSnapshot(
            state=self.state,
            loading=self._loading,
            session=self._session,
            profile=self._profile,
        )
    
    async def wait_until_ready(self) -> None:
        """Block until the bootstrap phase has ended."""
        await self._ready.wait()
    
    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    
    async def init(self) -> None:
        """Subscribe to auth transitions and start the bootstrap lookup."""
        if self._started:
            logger.warning("Session resolver already initialized")
            return
        self._started = True
        
        self._auth_subscription = self._auth.on_auth_state_change(self._on_auth_event)
        
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(self._bootstrap_timeout, self._release_loading, "watchdog")
        self._bootstrap_task = asyncio.create_task(self._bootstrap(), name="session-bootstrap")
        
        logger.info("Session resolver started", profile_lookup=self._lookup, timeout=self._bootstrap_timeout)
    
    async def teardown(self) -> None:
        """Cancel pending work and close every subscription."""
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        
        if self._bootstrap_task is not None and not self._bootstrap_task.done():
            self._bootstrap_task.cancel()
            try:
                await self._bootstrap_task
            except asyncio.CancelledError:
                pass
        self._bootstrap_task = None
        
        if self._auth_subscription is not None:
            await self._auth_subscription.unsubscribe()
            self._auth_subscription = None
        
        await self._unwatch_profile()
        self._started = False
        logger.info("Session resolver stopped")
    
    async def _bootstrap(self) -> None:
        generation = self._generation
        try:
            session = await self._auth.get_session()
            if generation == self._generation:
                await self._apply_session(session)
            else:
                logger.debug("Bootstrap session superseded by an auth event")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Auth initialization error", error=str(e), error_type=type(e).__name__)
        finally:
            self._release_loading("bootstrap")
    
    def _release_loading(self, reason: str) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        if not self._loading:
            return
        
        self._loading = False
        self._ready.set()
        
        if reason == "watchdog":
            logger.warning(
                "Session bootstrap exceeded time limit, releasing loading",
                timeout=self._bootstrap_timeout,
                state=self.state.value,
            )
        else:
            logger.debug("Session bootstrap finished", reason=reason, state=self.state.value)
    
    # -------------------------------------------------------------------------
    # Mutators
    # -------------------------------------------------------------------------
    
    async def sign_in(self, email: str, password: str) -> Session:
        """
        Sign in with credentials.
        
        Raises:
            AuthError: Rejected credentials or unreachable auth service
        """
        session = await self._auth.sign_in_with_password(email, password)
        
        # Clients that deliver the SIGNED_IN event later still leave us resolved
        current = self._session
        if current is None or current.user_id != session.user_id or self._profile is None:
            await self._apply_session(session)
        return session
    
    async def sign_out(self) -> None:
        """Clear local identity at once, then revoke remotely."""
        user_id = self._session.user_id if self._session else None
        await self._clear()
        
        if user_id and self._profile_cache is not None:
            await self._profile_cache.delete(user_id)
        
        try:
            await asyncio.wait_for(self._auth.sign_out(), timeout=self._sign_out_timeout)
        except asyncio.TimeoutError:
            logger.error("Sign-out timed out", timeout=self._sign_out_timeout, user_id=user_id)
        except Exception as e:
            logger.error("Error signing out", error=str(e), user_id=user_id)
    
    async def refresh_profile(self) -> None:
        """Re-read the profile row; keeps the previous profile on failure."""
        session = self._session
        if session is None:
            return
        
        generation = self._generation
        try:
            row = await self._fetch_row(session)
        except ProfileFetchError as e:
            logger.error("Failed to refresh profile", user_id=session.user_id, error=str(e))
            if self._profile is None:
                fallback = await self._fallback_profile(session)
                if generation == self._generation:
                    self._profile = fallback
            return
        
        if generation != self._generation:
            logger.info("Discarding profile of superseded session", user_id=session.user_id)
            return
        
        if row is None:
            if self._profile is None:
                self._profile = degraded_profile(session.user_id, session.email)
            return
        
        profile = profile_from_row(row, session.user_id, session.email)
        self._profile = profile
        await self._remember(profile)
    
    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------
    
    async def _on_auth_event(self, event: AuthEvent, session: Optional[Session]) -> None:
        logger.info(
            "Auth state changed",
            auth_event=event.value,
            user_id=session.user_id if session else None,
        )
        try:
            if event == AuthEvent.SIGNED_OUT or session is None:
                await self._clear()
            else:
                await self._apply_session(session)
        finally:
            self._release_loading(event.value.lower())
    
    async def _apply_session(self, session: Optional[Session]) -> None:
        if session is None:
            await self._clear()
            return
        
        previous = self._session
        self._session = session
        
        if previous is None or previous.user_id != session.user_id:
            self._generation += 1
            self._profile = None
            await self._watch_profile(session)
        
        if self._profile is not None:
            return
        
        generation = self._generation
        profile = await self._resolve_profile(session)
        if generation != self._generation:
            logger.info("Discarding profile of superseded session", user_id=session.user_id)
            return
        self._profile = profile
    
    async def _clear(self) -> None:
        self._generation += 1
        self._session = None
        self._profile = None
        self._release_loading("signed_out")
        await self._unwatch_profile()
    
    # -------------------------------------------------------------------------
    # Profile resolution
    # -------------------------------------------------------------------------
    
    async def _fetch_row(self, session: Session) -> Optional[ProfileRow]:
        try:
            if self._lookup == "email":
                if not session.email:
                    return None
                pending = self._store.fetch_profile_by_email(session.email)
            else:
                pending = self._store.fetch_profile(session.user_id)
            return await asyncio.wait_for(pending, timeout=self._fetch_timeout)
        except asyncio.TimeoutError as e:
            raise ProfileFetchError(f"Profile fetch timed out after {self._fetch_timeout}s") from e
        except Exception as e:
            raise ProfileFetchError(str(e)) from e
    
    async def _resolve_profile(self, session: Session) -> Profile:
        try:
            row = await self._fetch_row(session)
        except ProfileFetchError as e:
            logger.warning("Profile fetch failed, using fallback profile", user_id=session.user_id, error=str(e))
            return await self._fallback_profile(session)
        
        if row is None:
            logger.info("No profile row, using default profile", user_id=session.user_id)
            return degraded_profile(session.user_id, session.email)
        
        profile = profile_from_row(row, session.user_id, session.email)
        await self._remember(profile)
        return profile
    
    async def _fallback_profile(self, session: Session) -> Profile:
        cached = await self._cached_profile(session.user_id)
        return cached or degraded_profile(session.user_id, session.email)
    
    async def _remember(self, profile: Profile) -> None:
        if self._profile_cache is not None:
            await self._profile_cache.set(profile.id, profile.model_dump(mode="json"))
    
    async def _cached_profile(self, user_id: str) -> Optional[Profile]:
        if self._profile_cache is None:
            return None
        data = await self._profile_cache.get(user_id)
        if not data:
            return None
        try:
            return Profile.model_validate(data)
        except ValidationError:
            return None
    
    # -------------------------------------------------------------------------
    # Realtime profile sync
    # -------------------------------------------------------------------------
    
    def _profile_filter(self, session: Session) -> Optional[Dict[str, Any]]:
        if self._lookup == "email":
            return {"email": session.email} if session.email else None
        return {"id": session.user_id}
    
    async def _watch_profile(self, session: Session) -> None:
        await self._unwatch_profile()
        if self._feed is None:
            return
        filters = self._profile_filter(session)
        if filters is None:
            return
        
        generation = self._generation
        try:
            subscription = await self._feed.subscribe(
                PROFILES_TABLE,
                self._on_profile_change,
                filters=filters,
                events=(ChangeType.INSERT, ChangeType.UPDATE),
            )
        except SubscriptionError as e:
            logger.warning("Profile realtime sync unavailable", user_id=session.user_id, error=str(e))
            return
        
        if generation != self._generation:
            await subscription.unsubscribe()
            return
        self._profile_subscription = subscription
    
    async def _unwatch_profile(self) -> None:
        subscription, self._profile_subscription = self._profile_subscription, None
        if subscription is not None:
            await subscription.unsubscribe()
    
    async def _on_profile_change(self, change: ChangeEvent) -> None:
        session = self._session
        if session is None or not matches_filters(change.new, self._profile_filter(session)):
            return
        
        try:
            row = ProfileRow.model_validate(change.new)
        except ValidationError as e:
            logger.warning("Ignoring malformed profile notification", error=str(e))
            return
        
        profile = profile_from_row(row, session.user_id, session.email)
        self._profile = profile
        logger.info("Profile updated from change feed", user_id=session.user_id, stores=len(profile.stores))
        await self._remember(profile)
