"""
FastAPI route: SOS triggering.

    POST   /api/v1/sos/trigger          — raise an alert now
    POST   /api/v1/sos/share-location   — notify contacts, no alert record
    POST   /api/v1/sos/countdown        — start a cancellable countdown
    GET    /api/v1/sos/countdown/{id}   — countdown state / trigger result
    DELETE /api/v1/sos/countdown/{id}   — cancel (no-op once triggering)

A trigger answers 201 even when some or all contacts could not be
notified; the body carries success_count / failure_count and the
"degraded" flag. Only a missing location fails the request (503).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from backend.app.alerts.alert_service import AlertEngine
from backend.app.alerts.channels.location import (
    HttpLocationProvider,
    LocationProvider,
    ReportedLocationProvider,
)
from backend.app.alerts.countdown import CountdownManager
from backend.app.api.dependencies import (
    get_countdowns,
    get_current_profile,
    get_engine,
)
from backend.app.api.schemas import CountdownRequest, LocationReport
from backend.app.core.config import settings
from backend.app.profiles.profile import Profile

router = APIRouter(prefix="/api/v1/sos", tags=["sos"])


def _location_provider(report: LocationReport) -> LocationProvider:
    """Device fix first; server-side lookup only when the device had none."""
    if not report.has_fix and settings.LOCATION_LOOKUP_URL:
        return HttpLocationProvider(settings.LOCATION_LOOKUP_URL)
    return ReportedLocationProvider(report.latitude, report.longitude, report.address)


@router.post("/trigger", status_code=status.HTTP_201_CREATED, summary="Trigger an SOS alert")
async def trigger_sos(
    request: LocationReport,
    profile: Profile = Depends(get_current_profile),
    engine: AlertEngine = Depends(get_engine),
):
    report = await engine.trigger(profile, location_provider=_location_provider(request))
    return report.to_dict()


@router.post("/share-location", summary="Share current location with emergency contacts")
async def share_location(
    request: LocationReport,
    profile: Profile = Depends(get_current_profile),
    engine: AlertEngine = Depends(get_engine),
):
    report = await engine.share_location(profile, location_provider=_location_provider(request))
    return report.to_dict()


@router.post(
    "/countdown",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start an SOS countdown",
)
async def start_countdown(
    request: CountdownRequest,
    profile: Profile = Depends(get_current_profile),
    engine: AlertEngine = Depends(get_engine),
    countdowns: CountdownManager = Depends(get_countdowns),
):
    provider = _location_provider(request)
    countdown = countdowns.start(
        lambda: engine.trigger(profile, location_provider=provider),
        seconds=request.seconds,
        profile_id=profile.profile_id,
    )
    return countdown.to_dict()


@router.get("/countdown/{countdown_id}", summary="Countdown state")
async def read_countdown(
    countdown_id: str,
    profile: Profile = Depends(get_current_profile),
    countdowns: CountdownManager = Depends(get_countdowns),
):
    return countdowns.get(countdown_id, profile_id=profile.profile_id).to_dict()


@router.delete("/countdown/{countdown_id}", summary="Cancel a countdown")
async def cancel_countdown(
    countdown_id: str,
    profile: Profile = Depends(get_current_profile),
    countdowns: CountdownManager = Depends(get_countdowns),
):
    countdown = countdowns.get(countdown_id, profile_id=profile.profile_id)
    cancelled = countdown.cancel()
    return {"cancelled": cancelled, **countdown.to_dict()}
