"""
location.py — Location providers.

Every provider exposes:
    async get_current_position() → GeoLocation

and raises LocationUnavailableError on any failure. Callers make a
single attempt: no caching, no retry. A trigger treats the error as
fatal.

Providers:
    ReportedLocationProvider — coordinates sent by the client device
                               (browser / phone geolocation)
    FixedLocationProvider    — a constant reading (tests, kiosks)
    HttpLocationProvider     — server-side lookup against a JSON endpoint
                               returning {"latitude": .., "longitude": ..}
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional, Protocol

import httpx

from backend.app.alerts.models import GeoLocation
from backend.app.core.config import settings
from backend.app.core.errors import LocationUnavailableError

logger = logging.getLogger(__name__)


class LocationProvider(Protocol):
    async def get_current_position(self) -> GeoLocation: ...


def _validated(latitude: Any, longitude: Any, address: Optional[str] = None) -> GeoLocation:
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise LocationUnavailableError("reading is not numeric") from None
    if math.isnan(lat) or math.isnan(lon):
        raise LocationUnavailableError("reading is not numeric")
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        raise LocationUnavailableError(
            "reading out of range", latitude=lat, longitude=lon,
        )
    return GeoLocation(latitude=lat, longitude=lon, address=address or None)


class FixedLocationProvider:
    """Always returns the same reading."""

    def __init__(self, latitude: float, longitude: float, address: Optional[str] = None):
        self._location = _validated(latitude, longitude, address)

    async def get_current_position(self) -> GeoLocation:
        return self._location


class ReportedLocationProvider:
    """
    Wraps the coordinates a client device attached to its request.

    Missing coordinates mean the device could not (or would not) provide
    a position, which is the same as the geolocation call failing.
    """

    def __init__(
        self,
        latitude: Optional[float],
        longitude: Optional[float],
        address: Optional[str] = None,
    ):
        self.latitude = latitude
        self.longitude = longitude
        self.address = address

    async def get_current_position(self) -> GeoLocation:
        if self.latitude is None or self.longitude is None:
            raise LocationUnavailableError("device did not report a position")
        return _validated(self.latitude, self.longitude, self.address)


class HttpLocationProvider:
    """Looks the position up from a JSON endpoint with httpx."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout_seconds: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or settings.LOCATION_LOOKUP_URL
        self.timeout_seconds = timeout_seconds or settings.LOCATION_TIMEOUT_SECONDS
        self._client = client

    async def get_current_position(self) -> GeoLocation:
        if not self.url:
            raise LocationUnavailableError("no location lookup endpoint configured")

        try:
            if self._client is not None:
                response = await self._client.get(self.url, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.get(self.url)
            response.raise_for_status()
            data: Dict[str, Any] = response.json()
        except httpx.HTTPError as exc:
            logger.warning("Location lookup failed: %s", exc)
            raise LocationUnavailableError(str(exc)) from exc
        except ValueError as exc:
            raise LocationUnavailableError("lookup returned invalid JSON") from exc

        return _validated(
            data.get("latitude", data.get("lat")),
            data.get("longitude", data.get("lon")),
            data.get("address") or data.get("city"),
        )
