"""
Hosted Auth Client

Password sign-in, token refresh and sign-out against the auth REST API
(GoTrue-compatible ``/auth/v1`` endpoints) with httpx. The client keeps the
current session in memory, optionally persists it in the cache, refreshes
the access token before it expires, and notifies listeners of every
transition.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from nanoassist.backend.base import (
    AuthClient,
    AuthEvent,
    AuthListener,
    AuthUser,
    CallbackSubscription,
    Session,
    Subscription,
)
from nanoassist.config import get_settings
from nanoassist.exceptions import AuthError
from nanoassist.serving.cache import CacheManager

logger = structlog.get_logger(__name__)
settings = get_settings()

SESSION_CACHE_KEY = "session"
REFRESH_RETRY_SECONDS = 10.0

INVALID_CREDENTIALS = "Invalid login credentials"
INVALID_CREDENTIALS_MESSAGE = "Incorrect email or password."
CONNECTION_MESSAGE = "Connection error: check the backend configuration."


def user_message_for(message: str) -> str:
    """Map an auth service error to the text shown on the login form."""
    if message == INVALID_CREDENTIALS:
        return INVALID_CREDENTIALS_MESSAGE
    return message


class GoTrueAuthClient(AuthClient):
    """
    Auth client for the hosted backend.
    
    Example:
        auth = GoTrueAuthClient(session_cache=auth_cache)
        auth.on_auth_state_change(listener)
        session = await auth.sign_in_with_password(email, password)
    """
    
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        session_cache: Optional[CacheManager] = None,
        auto_refresh: Optional[bool] = None,
        refresh_margin_seconds: Optional[int] = None,
    ):
        self._base_url = (base_url or settings.supabase.auth_url).rstrip("/")
        self._api_key = api_key or settings.supabase.anon_key.get_secret_value()
        self._http = http_client or httpx.AsyncClient(timeout=settings.supabase.request_timeout)
        self._owns_http = http_client is None
        self._session_cache = session_cache
        self._auto_refresh = settings.supabase.auto_refresh_token if auto_refresh is None else auto_refresh
        self._refresh_margin = (
            settings.supabase.refresh_margin_seconds if refresh_margin_seconds is None else refresh_margin_seconds
        )
        
        self._session: Optional[Session] = None
        self._restored = False
        self._listeners: List[AuthListener] = []
        self._refresh_task: Optional[asyncio.Task] = None
    
    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    
    async def get_session(self) -> Optional[Session]:
        if self._session is None and not self._restored:
            self._restored = True
            restored = await self._restore()
            if restored is not None:
                self._session = restored
                self._schedule_refresh(restored)
                logger.info("Session restored", user_id=restored.user_id)
        
        if self._session is not None and self._session.expires_within(0):
            await self._try_refresh()
        
        return self._session
    
    def on_auth_state_change(self, listener: AuthListener) -> Subscription:
        self._listeners.append(listener)
        
        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        
        return CallbackSubscription(remove)
    
    async def sign_in_with_password(self, email: str, password: str) -> Session:
        data = await self._post(
            "/token",
            params={"grant_type": "password"},
            payload={"email": email, "password": password},
        )
        session = self._session_from_payload(data)
        await self._set_session(session, AuthEvent.SIGNED_IN)
        logger.info("Signed in", user_id=session.user_id)
        return session
    
    async def refresh_session(self) -> Session:
        """
        Exchange the refresh token for a new session.
        
        Raises:
            AuthError: No refresh token, or the service rejected it
        """
        current = self._session
        if current is None or not current.refresh_token:
            raise AuthError("No session to refresh", user_message="Session expired. Please sign in again.")
        
        data = await self._post(
            "/token",
            params={"grant_type": "refresh_token"},
            payload={"refresh_token": current.refresh_token},
        )
        session = self._session_from_payload(data)
        await self._set_session(session, AuthEvent.TOKEN_REFRESHED)
        logger.debug("Access token refreshed", user_id=session.user_id)
        return session
    
    async def sign_out(self) -> None:
        current = self._session
        try:
            if current is not None:
                response = await self._http.post(
                    f"{self._base_url}/logout",
                    headers=self._headers(current.access_token),
                )
                # Already-revoked tokens count as signed out
                if response.status_code >= 400 and response.status_code not in (401, 403, 404):
                    raise AuthError(
                        f"Sign-out failed with HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
        except httpx.HTTPError as e:
            raise AuthError(f"Sign-out request failed: {e}", user_message=CONNECTION_MESSAGE) from e
        finally:
            await self._set_session(None, AuthEvent.SIGNED_OUT)
    
    async def close(self) -> None:
        self._cancel_refresh()
        if self._owns_http:
            await self._http.aclose()
    
    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    
    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
        }
    
    async def _post(self, path: str, params: Dict[str, str], payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._http.post(
                f"{self._base_url}{path}",
                params=params,
                json=payload,
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error("Auth service unreachable", path=path, error=str(e))
            raise AuthError(f"Auth request failed: {e}", user_message=CONNECTION_MESSAGE) from e
        
        if response.status_code >= 400:
            message = self._error_message(response)
            logger.warning("Auth request rejected", path=path, status_code=response.status_code, error=message)
            raise AuthError(message, user_message=user_message_for(message), status_code=response.status_code)
        
        try:
            return response.json()
        except ValueError as e:
            raise AuthError("Malformed auth response", user_message=CONNECTION_MESSAGE) from e
    
    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        if not isinstance(body, dict):
            return f"HTTP {response.status_code}"
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
        return f"HTTP {response.status_code}"
    
    @staticmethod
    def _session_from_payload(data: Dict[str, Any]) -> Session:
        try:
            if data.get("expires_at"):
                expires_at = datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc)
            elif data.get("expires_in"):
                expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(data["expires_in"]))
            else:
                expires_at = None
            
            user = data.get("user") or {}
            return Session(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
                token_type=data.get("token_type") or "bearer",
                expires_at=expires_at,
                user=AuthUser(id=str(user["id"]), email=user.get("email")),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise AuthError(f"Malformed session payload: {e}", user_message=CONNECTION_MESSAGE) from e
    
    async def _set_session(self, session: Optional[Session], event: AuthEvent) -> None:
        self._session = session
        
        if session is None:
            self._cancel_refresh()
        else:
            self._schedule_refresh(session)
        
        await self._persist(session)
        await self._notify(event, session)
    
    async def _notify(self, event: AuthEvent, session: Optional[Session]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except Exception as e:
                logger.error("Auth listener failed", auth_event=event.value, error=str(e))
    
    async def _persist(self, session: Optional[Session]) -> None:
        if self._session_cache is None or not settings.supabase.persist_session:
            return
        if session is None:
            await self._session_cache.delete(SESSION_CACHE_KEY)
        else:
            await self._session_cache.set(SESSION_CACHE_KEY, session.model_dump(mode="json"))
    
    async def _restore(self) -> Optional[Session]:
        if self._session_cache is None or not settings.supabase.persist_session:
            return None
        data = await self._session_cache.get(SESSION_CACHE_KEY)
        if not data:
            return None
        try:
            return Session.model_validate(data)
        except ValidationError as e:
            logger.warning("Discarding unreadable persisted session", error=str(e))
            await self._session_cache.delete(SESSION_CACHE_KEY)
            return None
    
    async def _try_refresh(self) -> bool:
        try:
            await self.refresh_session()
            return True
        except AuthError as e:
            if e.status_code is not None and 400 <= e.status_code < 500:
                logger.warning("Refresh token rejected, signing out locally", error=str(e))
                await self._set_session(None, AuthEvent.SIGNED_OUT)
            else:
                logger.warning("Token refresh failed", error=str(e))
            return False
    
    def _schedule_refresh(self, session: Session) -> None:
        self._cancel_refresh()
        if not self._auto_refresh or session.expires_at is None or not session.refresh_token:
            return
        
        remaining = (session.expires_at - datetime.now(timezone.utc)).total_seconds()
        delay = max(remaining - self._refresh_margin, 0.0)
        self._refresh_task = asyncio.create_task(self._refresh_later(delay), name="auth-token-refresh")
    
    async def _refresh_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if not await self._try_refresh() and self._session is not None:
            self._refresh_task = asyncio.create_task(
                self._refresh_later(REFRESH_RETRY_SECONDS),
                name="auth-token-refresh",
            )
    
    def _cancel_refresh(self) -> None:
        # The refresh task itself ends up here through _set_session
        if self._refresh_task is not None and self._refresh_task is not asyncio.current_task():
            self._refresh_task.cancel()
        self._refresh_task = None
