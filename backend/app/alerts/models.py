"""
models.py — Shared data structures for the SOS alert lifecycle.

Defines:
    • AlertStatus        — alert state machine (active → resolved | false_alarm)
    • DeliveryStatus     — per-recipient notification outcome
    • Contact            — a trusted contact (immutable value, replaced on edit)
    • GeoLocation        — coordinate reading captured at trigger time
    • Alert              — a single emergency event record
    • NotificationAttempt — one dispatch to one recipient
    • TriggerReport      — outcome of an SOS trigger
    • ShareReport        — outcome of a location share (no alert record)

═══════════════════════════════════════════════════════════════════════════
ALERT STATE MACHINE
═══════════════════════════════════════════════════════════════════════════

    ┌──────────┐   resolve    ┌──────────┐
    │  ACTIVE  │ ───────────▶ │ RESOLVED │ ◀─┐ resolve (notes update)
    └────┬─────┘              └──────────┘ ──┘
         │ mark_false_alarm   ┌─────────────┐
         └──────────────────▶ │ FALSE_ALARM │ ◀─┐ mark_false_alarm
                              └─────────────┘ ──┘

Terminal states never return to ACTIVE and never cross over to each
other. Alerts are frozen: every transition produces a new Alert that
replaces the old one in the store, so `timestamp` and a set
`verification_ref` cannot drift and `responded_by` holds contact
values, not references into the live directory.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from backend.app.core.errors import InvalidAlertTransitionError


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertStatus(str, Enum):
    ACTIVE      = "active"
    RESOLVED    = "resolved"
    FALSE_ALARM = "false_alarm"

    @property
    def is_terminal(self) -> bool:
        return self is not AlertStatus.ACTIVE


class DeliveryStatus(str, Enum):
    """Delivery state per recipient."""
    PENDING   = "pending"     # queued, not yet sent
    SENDING   = "sending"     # dispatch in progress
    DELIVERED = "delivered"   # gateway reported success
    FAILED    = "failed"      # gateway reported failure or raised
    TIMED_OUT = "timed_out"   # no answer within the dispatch bound


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def generate_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso_from_ms(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat()


# ═══════════════════════════════════════════════════════════════════════════
# Value Objects
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Contact:
    """
    A trusted contact.

    Attributes
    ----------
    id : str
        Assigned by the contact directory; never changes.
    name : str
    phone_number : str
    email : str
        Empty string when unknown. An empty address makes the contact
        ineligible for SOS fan-out even if flagged.
    wallet_address : str | None
    is_emergency_contact : bool
        Opt-in flag for SOS notifications.
    """
    id: str
    name: str
    phone_number: str
    email: str = ""
    wallet_address: Optional[str] = None
    is_emergency_contact: bool = True

    @property
    def is_eligible(self) -> bool:
        return self.is_emergency_contact and bool(self.email and self.email.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone_number": self.phone_number,
            "email": self.email,
            "wallet_address": self.wallet_address,
            "is_emergency_contact": self.is_emergency_contact,
        }


@dataclass(frozen=True)
class GeoLocation:
    """A single coordinate reading."""
    latitude: float
    longitude: float
    address: Optional[str] = None

    def describe(self) -> str:
        if self.address:
            return self.address
        return f"{self.latitude:.4f}, {self.longitude:.4f}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
        }


@dataclass(frozen=True)
class Alert:
    """
    One emergency event record.

    Created only by the alert engine's trigger; changed only through
    the transition helpers below, each of which returns a new Alert.
    """
    id: str
    timestamp: int
    location: GeoLocation
    status: AlertStatus = AlertStatus.ACTIVE
    responded_by: Optional[Tuple[Contact, ...]] = None
    notes: Optional[str] = None
    verification_ref: Optional[str] = None

    def with_status(self, status: AlertStatus, notes: Optional[str] = None) -> "Alert":
        """
        Move to a terminal status.

        Re-applying the current terminal status is allowed and only
        updates notes. Anything else out of a terminal status raises
        InvalidAlertTransitionError.
        """
        if status is AlertStatus.ACTIVE:
            raise InvalidAlertTransitionError(self.id, self.status.value, status.value)
        if self.status.is_terminal and self.status is not status:
            raise InvalidAlertTransitionError(self.id, self.status.value, status.value)
        return replace(
            self,
            status=status,
            notes=notes if notes else self.notes,
        )

    def with_verification(self, reference: str) -> "Alert":
        if self.verification_ref is not None:
            raise ValueError(
                f"Alert {self.id} already carries verification reference "
                f"{self.verification_ref!r}"
            )
        return replace(self, verification_ref=reference)

    def with_responder(self, contact: Contact) -> "Alert":
        responders = self.responded_by or ()
        if any(c.id == contact.id for c in responders):
            return self
        return replace(self, responded_by=responders + (replace(contact),))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "created_at": _iso_from_ms(self.timestamp),
            "location": self.location.to_dict(),
            "status": self.status.value,
            "responded_by": (
                [c.to_dict() for c in self.responded_by]
                if self.responded_by is not None else None
            ),
            "notes": self.notes,
            "verification_ref": self.verification_ref,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Fan-out Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class NotificationAttempt:
    """Record of a single dispatch to one contact."""
    contact_id: str
    contact_name: str
    recipient: str
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "contact_id": self.contact_id,
            "contact_name": self.contact_name,
            "status": self.status.value,
            "attempted_at": self.attempted_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "error_message": self.error_message,
        }


@dataclass
class FanOutResult:
    """Aggregate of one concurrent dispatch batch."""
    attempts: List[NotificationAttempt] = field(default_factory=list)

    @property
    def eligible_count(self) -> int:
        return len(self.attempts)

    @property
    def success_count(self) -> int:
        return sum(1 for a in self.attempts if a.succeeded)

    @property
    def failure_count(self) -> int:
        return sum(1 for a in self.attempts if not a.succeeded)

    @property
    def no_eligible_contacts(self) -> bool:
        return not self.attempts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligible_count": self.eligible_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "no_eligible_contacts": self.no_eligible_contacts,
            "attempts": [a.to_dict() for a in self.attempts],
        }


@dataclass
class TriggerReport:
    """Outcome of an SOS trigger: the durable alert plus degraded-success details."""
    alert: Alert
    fan_out: FanOutResult = field(default_factory=FanOutResult)
    verification_error: Optional[str] = None
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def success_count(self) -> int:
        return self.fan_out.success_count

    @property
    def failure_count(self) -> int:
        return self.fan_out.failure_count

    @property
    def no_eligible_contacts(self) -> bool:
        return self.fan_out.no_eligible_contacts

    @property
    def is_degraded(self) -> bool:
        return (
            self.failure_count > 0
            or self.no_eligible_contacts
            or self.verification_error is not None
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert": self.alert.to_dict(),
            **self.fan_out.to_dict(),
            "verification_error": self.verification_error,
            "degraded": self.is_degraded,
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }


@dataclass
class ShareReport:
    """Outcome of sharing the current location without raising an alert."""
    location: GeoLocation
    timestamp: int
    fan_out: FanOutResult = field(default_factory=FanOutResult)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "location": self.location.to_dict(),
            "timestamp": self.timestamp,
            **self.fan_out.to_dict(),
        }
