"""
Auth Endpoints

Sign-in, sign-out and the current identity of the dashboard server.
"""

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from nanoassist.auth import AuthSnapshot, AuthState, Profile, SessionResolver
from nanoassist.exceptions import AuthError
from nanoassist.serving.api.deps import get_resolver, require_profile

router = APIRouter()
logger = structlog.get_logger(__name__)


class LoginRequest(BaseModel):
    """Email/password credentials"""
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class SessionInfo(BaseModel):
    """Identity summary; tokens never leave the server"""
    state: AuthState
    loading: bool
    user_id: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    stores: List[str] = Field(default_factory=list)


def session_info(snapshot: AuthSnapshot) -> SessionInfo:
    info = SessionInfo(state=snapshot.state, loading=snapshot.loading)
    if snapshot.session is not None:
        info.user_id = snapshot.session.user_id
        info.email = snapshot.session.email
    if snapshot.profile is not None:
        info.role = snapshot.profile.role
        info.stores = list(snapshot.profile.stores)
    return info


@router.post("/login", response_model=SessionInfo)
async def login(body: LoginRequest, resolver: SessionResolver = Depends(get_resolver)) -> SessionInfo:
    """Sign in; failures return 401 with a displayable message."""
    try:
        await resolver.sign_in(body.email, body.password)
    except AuthError as e:
        logger.warning("Sign-in rejected", email=body.email, error=str(e))
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=e.user_message)
    return session_info(resolver.snapshot())


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(request: Request, resolver: SessionResolver = Depends(get_resolver)) -> None:
    """Always succeeds locally, even if the remote revoke fails."""
    session = resolver.current_session()
    await resolver.sign_out()
    
    if session is not None:
        watcher = request.app.state.watchers.pop(session.user_id, None)
        if watcher is not None:
            await watcher.stop()


@router.get("/session", response_model=SessionInfo)
async def get_session(resolver: SessionResolver = Depends(get_resolver)) -> SessionInfo:
    """Current state without waiting for bootstrap to finish."""
    return session_info(resolver.snapshot())


@router.get("/profile", response_model=Profile)
async def get_profile(profile: Profile = Depends(require_profile)) -> Profile:
    return profile


@router.post("/profile/refresh", response_model=Profile)
async def refresh_profile(
    profile: Profile = Depends(require_profile),
    resolver: SessionResolver = Depends(get_resolver),
) -> Profile:
    await resolver.refresh_profile()
    return resolver.current_profile() or profile
