"""
FastAPI route: alert history and terminal transitions.

    GET  /api/v1/alerts                    — history, newest first (?status=)
    GET  /api/v1/alerts/summary            — counts per status
    GET  /api/v1/alerts/{id}               — one alert
    POST /api/v1/alerts/{id}/resolve       — active → resolved (notes optional)
    POST /api/v1/alerts/{id}/false-alarm   — active → false_alarm
    POST /api/v1/alerts/{id}/responses     — record a responding contact
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from backend.app.alerts.alert_service import AlertEngine
from backend.app.alerts.models import AlertStatus
from backend.app.api.dependencies import get_current_profile, get_engine
from backend.app.api.schemas import ResolveRequest, ResponderRequest
from backend.app.profiles.profile import Profile

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.get("", summary="Alert history")
async def list_alerts(
    status: Optional[AlertStatus] = Query(None, description="Filter by status"),
    profile: Profile = Depends(get_current_profile),
):
    if status is None:
        alerts = profile.alerts.list_all()
    else:
        alerts = profile.alerts.filter_by_status(status)
    return {"alerts": [a.to_dict() for a in alerts], "total": len(alerts)}


@router.get("/summary", summary="Alert counts per status")
async def alert_summary(profile: Profile = Depends(get_current_profile)):
    return profile.alerts.summary()


@router.get("/{alert_id}", summary="Read an alert")
async def read_alert(alert_id: str, profile: Profile = Depends(get_current_profile)):
    return profile.alerts.get(alert_id).to_dict()


@router.post("/{alert_id}/resolve", summary="Resolve an alert")
async def resolve_alert(
    alert_id: str,
    request: Optional[ResolveRequest] = None,
    profile: Profile = Depends(get_current_profile),
    engine: AlertEngine = Depends(get_engine),
):
    notes = request.notes if request else None
    return engine.resolve(profile, alert_id, notes).to_dict()


@router.post("/{alert_id}/false-alarm", summary="Mark an alert as a false alarm")
async def mark_false_alarm(
    alert_id: str,
    request: Optional[ResolveRequest] = None,
    profile: Profile = Depends(get_current_profile),
    engine: AlertEngine = Depends(get_engine),
):
    notes = request.notes if request else None
    return engine.mark_false_alarm(profile, alert_id, notes).to_dict()


@router.post("/{alert_id}/responses", summary="Record a responding contact")
async def record_response(
    alert_id: str,
    request: ResponderRequest,
    profile: Profile = Depends(get_current_profile),
    engine: AlertEngine = Depends(get_engine),
):
    return engine.record_response(profile, alert_id, request.contact_id).to_dict()
