"""
profile.py — The aggregate root handed to every engine operation.

A Profile owns exactly one ContactDirectory and one AlertStore. It is
passed explicitly; nothing in the application holds a global "current
profile".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from backend.app.alerts.models import generate_id
from backend.app.alerts.store import AlertStore
from backend.app.profiles.directory import ContactDirectory


@dataclass
class Profile:
    name: str
    email: str
    phone_number: str = ""
    wallet_address: Optional[str] = None
    profile_id: str = field(default_factory=lambda: generate_id("PRF"))
    contacts: ContactDirectory = field(default_factory=ContactDirectory)
    alerts: AlertStore = field(default_factory=AlertStore)

    def to_dict(self, *, include_history: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "profile_id": self.profile_id,
            "name": self.name,
            "email": self.email,
            "phone_number": self.phone_number,
            "wallet_address": self.wallet_address,
            "contact_count": len(self.contacts),
            "alert_summary": self.alerts.summary(),
        }
        if include_history:
            data["contacts"] = [c.to_dict() for c in self.contacts.list_all()]
            data["alerts"] = [a.to_dict() for a in self.alerts.list_all()]
        return data
