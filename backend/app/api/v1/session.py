"""
FastAPI route: account and session endpoints.

    POST  /api/v1/session/register  — create an account + profile
    POST  /api/v1/session/login     — open a session (bearer token)
    POST  /api/v1/session/logout    — close the current session
    GET   /api/v1/session/profile   — profile with contacts and history
    PATCH /api/v1/session/profile   — update name / phone / wallet
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status

from backend.app.api.dependencies import (
    get_current_profile,
    get_session_token,
    get_sessions,
)
from backend.app.api.schemas import LoginRequest, ProfileUpdate, RegisterRequest
from backend.app.profiles.profile import Profile
from backend.app.profiles.session_store import SessionStore

router = APIRouter(prefix="/api/v1/session", tags=["session"])


@router.post("/register", status_code=status.HTTP_201_CREATED, summary="Register an account")
async def register(
    request: RegisterRequest,
    sessions: SessionStore = Depends(get_sessions),
):
    sessions.register(
        request.email,
        request.password,
        name=request.name,
        phone_number=request.phone_number,
        wallet_address=request.wallet_address,
    )
    token, profile = sessions.login(request.email, request.password)
    return {"token": token, "profile": profile.to_dict()}


@router.post("/login", summary="Open a session")
async def login(
    request: LoginRequest,
    sessions: SessionStore = Depends(get_sessions),
):
    token, profile = sessions.login(request.email, request.password)
    return {"token": token, "profile": profile.to_dict()}


@router.post("/logout", summary="Close the current session")
async def logout(
    token: Optional[str] = Depends(get_session_token),
    sessions: SessionStore = Depends(get_sessions),
):
    return {"logged_out": bool(token) and sessions.logout(token)}


@router.get("/profile", summary="Current profile with contacts and alert history")
async def read_profile(profile: Profile = Depends(get_current_profile)):
    return profile.to_dict(include_history=True)


@router.patch("/profile", summary="Update profile details")
async def update_profile(
    request: ProfileUpdate,
    profile: Profile = Depends(get_current_profile),
    sessions: SessionStore = Depends(get_sessions),
):
    sessions.update_profile(profile, **request.model_dump(exclude_unset=True))
    return profile.to_dict()
