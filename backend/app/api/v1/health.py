"""
FastAPI route: health probes.

    GET /health        — every component, overall worst status
    GET /health/live   — process is up
    GET /health/ready  — 503 when an SOS could not notify anyone
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from backend.app.core.health import HealthStatus, run_health_check

router = APIRouter(prefix="/health", tags=["health"])


async def _report(request: Request):
    state = request.app.state
    return await run_health_check(state.engine, state.sessions, state.countdowns)


@router.get("", summary="Deep health probe")
async def health_check(request: Request):
    return (await _report(request)).to_dict()


@router.get("/live", summary="Liveness probe")
async def liveness():
    return {"status": "alive"}


@router.get("/ready", summary="Readiness probe")
async def readiness(request: Request):
    report = await _report(request)
    if report.status is HealthStatus.UNHEALTHY:
        return JSONResponse(status_code=503, content=report.to_dict())
    return report.to_dict()
