"""
Pydantic schemas for the SOS API.

Separated from the route handlers so they are reusable across
the codebase (background workers, tests).

Blank contact names and phone numbers pass through to the contact
directory, which answers NAME_REQUIRED / PHONE_REQUIRED.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    email: str = Field(..., examples=["jane.doe@example.com"])
    password: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, examples=["Jane Doe"])
    phone_number: str = Field("", examples=["+1 555-123-4567"])
    wallet_address: Optional[str] = Field(None, examples=["0x1234...5678"])


class LoginRequest(BaseModel):
    email: str = Field(..., examples=["jane.doe@example.com"])
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone_number: Optional[str] = None
    wallet_address: Optional[str] = None


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

class ContactCreate(BaseModel):
    name: str = Field("", examples=["John Smith"])
    phone_number: str = Field("", examples=["+1 555-987-6543"])
    email: str = Field("", examples=["john.smith@example.com"])
    wallet_address: Optional[str] = Field(None, examples=["0x8765...4321"])
    is_emergency_contact: bool = Field(
        True, description="Notify this contact when an SOS is triggered",
    )


class ContactUpdate(BaseModel):
    """Partial update; only fields present in the request are applied."""
    name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    wallet_address: Optional[str] = None
    is_emergency_contact: Optional[bool] = None


# ---------------------------------------------------------------------------
# SOS
# ---------------------------------------------------------------------------

class LocationReport(BaseModel):
    """
    Position reported by the device. Omit both coordinates when the
    device could not obtain a fix; the server falls back to its lookup
    endpoint if one is configured, otherwise the trigger fails with
    LOCATION_UNAVAILABLE.
    """
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0, examples=[40.7128])
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0, examples=[-74.006])
    address: Optional[str] = Field(None, examples=["New York, NY"])

    @property
    def has_fix(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class CountdownRequest(LocationReport):
    seconds: Optional[int] = Field(
        None, ge=0, le=30,
        description="Countdown length; defaults to SOS_COUNTDOWN_SECONDS",
    )


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class ResolveRequest(BaseModel):
    notes: Optional[str] = Field(None, examples=["Manually resolved by user"])


class ResponderRequest(BaseModel):
    contact_id: str = Field(..., examples=["CON-0A1B2C3D4E5F"])


class PhotoRequest(BaseModel):
    photo_data: str = Field(
        ..., min_length=1,
        description="Captured image as a data URL or base64 string",
    )
    subject: Optional[str] = Field(None, examples=["Photo from Safety App"])
