"""
FastAPI route: trusted contacts.

    GET    /api/v1/contacts                         — list (insertion order)
    POST   /api/v1/contacts                         — add
    GET    /api/v1/contacts/{id}                    — read one
    PATCH  /api/v1/contacts/{id}                    — partial update
    DELETE /api/v1/contacts/{id}                    — remove (idempotent)
    POST   /api/v1/contacts/{id}/toggle-emergency   — flip SOS eligibility
    POST   /api/v1/contacts/{id}/photo              — e-mail a captured photo
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from backend.app.alerts.alert_service import AlertEngine
from backend.app.api.dependencies import get_current_profile, get_engine
from backend.app.api.schemas import ContactCreate, ContactUpdate, PhotoRequest
from backend.app.profiles.profile import Profile

router = APIRouter(prefix="/api/v1/contacts", tags=["contacts"])


@router.get("", summary="List contacts")
async def list_contacts(profile: Profile = Depends(get_current_profile)):
    contacts = profile.contacts.list_all()
    return {
        "contacts": [c.to_dict() for c in contacts],
        "total": len(contacts),
        "eligible": len(profile.contacts.eligible()),
    }


@router.post("", status_code=status.HTTP_201_CREATED, summary="Add a contact")
async def add_contact(
    request: ContactCreate,
    profile: Profile = Depends(get_current_profile),
):
    contact = profile.contacts.add(
        request.name,
        request.phone_number,
        email=request.email,
        wallet_address=request.wallet_address,
        is_emergency_contact=request.is_emergency_contact,
    )
    return contact.to_dict()


@router.get("/{contact_id}", summary="Read a contact")
async def read_contact(contact_id: str, profile: Profile = Depends(get_current_profile)):
    return profile.contacts.get(contact_id).to_dict()


@router.patch("/{contact_id}", summary="Update a contact")
async def update_contact(
    contact_id: str,
    request: ContactUpdate,
    profile: Profile = Depends(get_current_profile),
):
    contact = profile.contacts.update(contact_id, **request.model_dump(exclude_unset=True))
    return contact.to_dict()


@router.delete("/{contact_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Remove a contact")
async def remove_contact(contact_id: str, profile: Profile = Depends(get_current_profile)):
    profile.contacts.remove(contact_id)


@router.post("/{contact_id}/toggle-emergency", summary="Toggle emergency notification")
async def toggle_emergency(contact_id: str, profile: Profile = Depends(get_current_profile)):
    return profile.contacts.toggle_emergency(contact_id).to_dict()


@router.post("/{contact_id}/photo", summary="E-mail a captured photo to a contact")
async def send_photo(
    contact_id: str,
    request: PhotoRequest,
    profile: Profile = Depends(get_current_profile),
    engine: AlertEngine = Depends(get_engine),
):
    attempt = await engine.send_photo(
        profile, contact_id, request.photo_data, subject=request.subject,
    )
    return {"sent": True, "attempt": attempt.to_dict()}
