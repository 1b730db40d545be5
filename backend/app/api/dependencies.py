"""
FastAPI dependencies — per-app services and the caller's Profile.

The engine, session store and countdown manager live on ``app.state``
(set by ``create_app``), so tests can build an app around fakes.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.app.alerts.alert_service import AlertEngine
from backend.app.alerts.countdown import CountdownManager
from backend.app.core.errors import NotAuthenticatedError
from backend.app.core.logging_config import update_request_context
from backend.app.profiles.profile import Profile
from backend.app.profiles.session_store import SessionStore

_bearer = HTTPBearer(auto_error=False)


def get_engine(request: Request) -> AlertEngine:
    return request.app.state.engine


def get_sessions(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_countdowns(request: Request) -> CountdownManager:
    return request.app.state.countdowns


def get_session_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[str]:
    return credentials.credentials if credentials else None


async def get_current_profile(
    request: Request,
    token: Optional[str] = Depends(get_session_token),
    sessions: SessionStore = Depends(get_sessions),
) -> Profile:
    """The logged-in profile; 401 when the token is missing or unknown."""
    profile = sessions.resolve(token)
    if profile is None:
        raise NotAuthenticatedError()
    request.state.profile_id = profile.profile_id
    update_request_context(profile_id=profile.profile_id)
    return profile
