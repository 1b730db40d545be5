"""
directory.py — A profile's trusted contacts.

Insertion order is preserved for display. Contacts are frozen values:
`update` and `toggle_emergency` swap in a new Contact under the same id,
so alert records that captured an earlier Contact keep what they saw.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from backend.app.alerts.models import Contact, generate_id
from backend.app.core.errors import (
    ContactNotFoundError,
    NameRequiredError,
    PhoneRequiredError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Fields a caller may change through update()
UPDATABLE_FIELDS = frozenset(
    {"name", "phone_number", "email", "wallet_address", "is_emergency_contact"}
)


def _require_text(value: Optional[str], error: type) -> str:
    if value is None or not str(value).strip():
        raise error()
    return str(value).strip()


class ContactDirectory:
    """Contacts keyed by id, in insertion order."""

    def __init__(self, contacts: Optional[Iterable[Contact]] = None):
        self._lock = threading.RLock()
        self._contacts: Dict[str, Contact] = {c.id: c for c in contacts or []}

    def __len__(self) -> int:
        with self._lock:
            return len(self._contacts)

    def __contains__(self, contact_id: object) -> bool:
        with self._lock:
            return contact_id in self._contacts

    def add(
        self,
        name: str,
        phone_number: str,
        email: str = "",
        wallet_address: Optional[str] = None,
        is_emergency_contact: bool = True,
    ) -> Contact:
        """Create a contact with a fresh id."""
        contact = Contact(
            id=generate_id("CON"),
            name=_require_text(name, NameRequiredError),
            phone_number=_require_text(phone_number, PhoneRequiredError),
            email=(email or "").strip(),
            wallet_address=wallet_address or None,
            is_emergency_contact=bool(is_emergency_contact),
        )
        with self._lock:
            while contact.id in self._contacts:
                contact = replace(contact, id=generate_id("CON"))
            self._contacts[contact.id] = contact
        logger.info("Contact %s added", contact.id, extra={"contact_id": contact.id})
        return contact

    def remove(self, contact_id: str) -> None:
        """Remove a contact; unknown ids are ignored."""
        with self._lock:
            removed = self._contacts.pop(contact_id, None)
        if removed is not None:
            logger.info("Contact %s removed", contact_id, extra={"contact_id": contact_id})

    def update(self, contact_id: str, **fields: Any) -> Contact:
        """
        Merge ``fields`` into an existing contact.

        An unknown id raises ContactNotFoundError before any field is
        looked at.
        """
        with self._lock:
            current = self._contacts.get(contact_id)
            if current is None:
                raise ContactNotFoundError(contact_id)

            unknown = set(fields) - UPDATABLE_FIELDS
            if unknown:
                raise ValidationError(
                    f"Cannot update contact field(s): {', '.join(sorted(unknown))}",
                    field=sorted(unknown)[0],
                )
            if "name" in fields:
                fields["name"] = _require_text(fields["name"], NameRequiredError)
            if "phone_number" in fields:
                fields["phone_number"] = _require_text(
                    fields["phone_number"], PhoneRequiredError,
                )
            if "email" in fields:
                fields["email"] = (fields["email"] or "").strip()
            if "wallet_address" in fields:
                fields["wallet_address"] = fields["wallet_address"] or None
            if "is_emergency_contact" in fields:
                if fields["is_emergency_contact"] is None:
                    raise ValidationError(
                        "is_emergency_contact must be true or false",
                        field="is_emergency_contact",
                    )
                fields["is_emergency_contact"] = bool(fields["is_emergency_contact"])

            updated = replace(current, **fields)
            self._contacts[contact_id] = updated
        return updated

    def toggle_emergency(self, contact_id: str) -> Contact:
        with self._lock:
            current = self.get(contact_id)
            return self.update(
                contact_id, is_emergency_contact=not current.is_emergency_contact,
            )

    def get(self, contact_id: str) -> Contact:
        with self._lock:
            contact = self._contacts.get(contact_id)
        if contact is None:
            raise ContactNotFoundError(contact_id)
        return contact

    def list_all(self) -> List[Contact]:
        with self._lock:
            return list(self._contacts.values())

    def eligible(self) -> List[Contact]:
        """Contacts flagged for emergencies that have a usable e-mail address."""
        return [c for c in self.list_all() if c.is_eligible]
