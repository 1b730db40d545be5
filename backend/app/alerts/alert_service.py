"""
alert_service.py — SOS alert lifecycle engine.

This is the central coordinator that:
    1. Acquires the caller's location (single attempt, fatal on failure)
    2. Builds and durably stores a new ACTIVE alert
    3. Anchors a verification reference (best effort)
    4. Selects eligible emergency contacts
    5. Notifies them concurrently, each dispatch with its own deadline
    6. Aggregates per-recipient outcomes into a trigger report

and applies the terminal transitions (resolve / false alarm) afterwards.

═══════════════════════════════════════════════════════════════════════════
TRIGGER FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  profile loaded?    │── no ──▶ NotAuthenticatedError (nothing stored)
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  1. Location        │── fails ──▶ LocationUnavailableError
    │     (one attempt)   │             (nothing stored)
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  2. Alert → store   │  durability point: visible to readers now
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  3. Verification    │  failure / timeout → recorded, not raised
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  4. Eligible set    │  is_emergency_contact and e-mail present
    └─────────┬───────────┘    empty → warning, no dispatch
              ▼
    ┌─────────────────────┐
    │  5. Fan-out         │  asyncio.gather, one wait_for per contact
    └─────────┬───────────┘
              ▼
    ┌─────────────────────┐
    │  6. Report          │  success_count + failure_count == eligible
    └─────────────────────┘

Nothing after step 2 can remove or invalidate the alert. Partial
notification failure is a degraded success, never an error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from backend.app.alerts.channels.email_alert import (
    DEFAULT_PHOTO_SUBJECT,
    EmailNotificationGateway,
    NotificationGateway,
)
from backend.app.alerts.channels.location import LocationProvider
from backend.app.alerts.channels.verification import VerificationAnchor, build_anchor
from backend.app.alerts.models import (
    Alert,
    AlertStatus,
    Contact,
    DeliveryStatus,
    FanOutResult,
    GeoLocation,
    NotificationAttempt,
    ShareReport,
    TriggerReport,
    generate_id,
    now_ms,
)
from backend.app.core.config import settings
from backend.app.core.errors import (
    EmailRequiredError,
    LocationUnavailableError,
    NotAuthenticatedError,
    NotificationDispatchError,
    VerificationAnchorError,
)
from backend.app.core.logging_config import mask_address
from backend.app.profiles.profile import Profile

logger = logging.getLogger(__name__)


class AlertEngine:
    """
    Alert lifecycle operations over an explicitly passed Profile.

    Parameters
    ----------
    gateway
        Notification gateway (``async notify(...) → bool``).
    location_provider
        Default provider; a trigger may pass its own.
    anchor
        Verification anchor, or None to skip anchoring.
    dispatch_timeout : float
        Seconds allowed for each notification before it counts as failed.
    anchor_timeout : float
    location_timeout : float
    clock
        Returns epoch milliseconds; used for alert timestamps.
    """

    def __init__(
        self,
        gateway: NotificationGateway,
        *,
        location_provider: Optional[LocationProvider] = None,
        anchor: Optional[VerificationAnchor] = None,
        dispatch_timeout: Optional[float] = None,
        anchor_timeout: Optional[float] = None,
        location_timeout: Optional[float] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.gateway = gateway
        self.location_provider = location_provider
        self.anchor = anchor
        self.dispatch_timeout = dispatch_timeout or settings.NOTIFY_TIMEOUT_SECONDS
        self.anchor_timeout = anchor_timeout or settings.VERIFICATION_TIMEOUT_SECONDS
        self.location_timeout = location_timeout or settings.LOCATION_TIMEOUT_SECONDS
        self._clock = clock

        if self.dispatch_timeout <= 0:
            raise ValueError("dispatch_timeout must be positive")

    # ═══════════════════════════════════════════════════════════════════════
    # Trigger
    # ═══════════════════════════════════════════════════════════════════════

    async def trigger(
        self,
        profile: Optional[Profile],
        *,
        location_provider: Optional[LocationProvider] = None,
    ) -> TriggerReport:
        """
        Raise an SOS alert for ``profile``.

        Returns
        -------
        TriggerReport
            ``report.alert`` is the stored alert (with its verification
            reference when anchoring succeeded).

        Raises
        ------
        NotAuthenticatedError
            No profile is loaded.
        LocationUnavailableError
            The location reading failed; the alert store is unchanged.
        """
        if profile is None:
            raise NotAuthenticatedError("You must be logged in to trigger an SOS alert")

        location = await self._acquire_location(location_provider)

        started = datetime.now(timezone.utc)
        alert = Alert(
            id=generate_id("ALR"),
            timestamp=self._clock(),
            location=location,
        )
        profile.alerts.prepend(alert)
        logger.info(
            "SOS alert %s created for %s at (%.5f, %.5f)",
            alert.id, profile.profile_id, location.latitude, location.longitude,
            extra={"alert_id": alert.id, "profile_id": profile.profile_id},
        )

        report = TriggerReport(alert=alert, started_at=started)
        report.alert, report.verification_error = await self._anchor(profile, alert)
        report.fan_out = await self._fan_out(profile, location, alert.timestamp, alert.id)
        # Resolve / false alarm may have landed during the awaits above
        report.alert = profile.alerts.get(alert.id)
        report.completed_at = datetime.now(timezone.utc)

        logger.info(
            "Alert %s dispatch complete: %d/%d notified, %d failed, %.1fs",
            alert.id,
            report.success_count, report.fan_out.eligible_count,
            report.failure_count,
            (report.completed_at - started).total_seconds(),
            extra={
                "alert_id": alert.id,
                "success_count": report.success_count,
                "failure_count": report.failure_count,
            },
        )
        return report

    async def share_location(
        self,
        profile: Optional[Profile],
        *,
        location_provider: Optional[LocationProvider] = None,
    ) -> ShareReport:
        """Send the current location to emergency contacts without raising an alert."""
        if profile is None:
            raise NotAuthenticatedError("You must be logged in to share your location")

        location = await self._acquire_location(location_provider)
        timestamp = self._clock()
        fan_out = await self._fan_out(profile, location, timestamp, None)
        return ShareReport(location=location, timestamp=timestamp, fan_out=fan_out)

    async def send_photo(
        self,
        profile: Optional[Profile],
        contact_id: str,
        photo_data: str,
        subject: Optional[str] = None,
    ) -> NotificationAttempt:
        """
        E-mail a captured photo to one contact.

        There is a single recipient, so a failed or timed-out delivery is
        raised as NotificationDispatchError instead of being counted.

        Raises
        ------
        ContactNotFoundError
        EmailRequiredError
            The contact has no e-mail address.
        NotificationDispatchError
        """
        if profile is None:
            raise NotAuthenticatedError("You must be logged in to send a photo")
        contact = profile.contacts.get(contact_id)
        if not contact.email:
            raise EmailRequiredError(contact_id)

        try:
            delivered = await asyncio.wait_for(
                self.gateway.send_photo(
                    contact.email, photo_data, subject or DEFAULT_PHOTO_SUBJECT,
                ),
                timeout=self.dispatch_timeout,
            )
        except asyncio.TimeoutError:
            error = NotificationDispatchError(
                contact.name, f"no response within {self.dispatch_timeout:.1f}s",
                timed_out=True,
            )
        except Exception as exc:
            error = NotificationDispatchError(contact.name, str(exc))
        else:
            error = None if delivered else NotificationDispatchError(
                contact.name, "gateway reported failure",
            )

        if error is not None:
            logger.error(
                "Failed to send photo to %s (%s): %s",
                contact.name, mask_address(contact.email), error.message,
                extra={"contact_id": contact.id},
            )
            raise error

        logger.info(
            "Photo sent to %s (%s)", contact.name, mask_address(contact.email),
            extra={"contact_id": contact.id, "profile_id": profile.profile_id},
        )
        return NotificationAttempt(
            contact_id=contact.id,
            contact_name=contact.name,
            recipient=contact.email,
            status=DeliveryStatus.DELIVERED,
            completed_at=datetime.now(timezone.utc),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Terminal Transitions
    # ═══════════════════════════════════════════════════════════════════════

    def resolve(
        self,
        profile: Optional[Profile],
        alert_id: str,
        notes: Optional[str] = None,
    ) -> Alert:
        """
        Mark an alert resolved. Existing notes survive unless ``notes``
        is given; re-resolving only updates notes.
        """
        return self._transition(profile, alert_id, AlertStatus.RESOLVED, notes)

    def mark_false_alarm(
        self,
        profile: Optional[Profile],
        alert_id: str,
        notes: Optional[str] = None,
    ) -> Alert:
        return self._transition(profile, alert_id, AlertStatus.FALSE_ALARM, notes)

    def record_response(
        self,
        profile: Optional[Profile],
        alert_id: str,
        contact_id: str,
    ) -> Alert:
        """Append a snapshot of a contact who responded to the alert."""
        if profile is None:
            raise NotAuthenticatedError()
        profile.alerts.get(alert_id)
        contact = profile.contacts.get(contact_id)
        alert = profile.alerts.apply(alert_id, lambda a: a.with_responder(contact))
        logger.info(
            "Contact %s responded to alert %s", contact_id, alert_id,
            extra={"alert_id": alert_id, "contact_id": contact_id},
        )
        return alert

    def _transition(
        self,
        profile: Optional[Profile],
        alert_id: str,
        status: AlertStatus,
        notes: Optional[str],
    ) -> Alert:
        if profile is None:
            raise NotAuthenticatedError()
        alert = profile.alerts.apply(alert_id, lambda a: a.with_status(status, notes))
        logger.info(
            "Alert %s marked %s", alert_id, status.value,
            extra={"alert_id": alert_id, "profile_id": profile.profile_id},
        )
        return alert

    # ═══════════════════════════════════════════════════════════════════════
    # Steps
    # ═══════════════════════════════════════════════════════════════════════

    async def _acquire_location(
        self, location_provider: Optional[LocationProvider],
    ) -> GeoLocation:
        provider = location_provider or self.location_provider
        if provider is None:
            raise LocationUnavailableError("no location provider available")

        try:
            return await asyncio.wait_for(
                provider.get_current_position(), timeout=self.location_timeout,
            )
        except LocationUnavailableError as exc:
            logger.warning("Location unavailable: %s", exc.reason or exc.message)
            raise
        except asyncio.TimeoutError:
            logger.warning("Location lookup timed out after %.1fs", self.location_timeout)
            raise LocationUnavailableError("timed out") from None
        except Exception as exc:
            logger.warning("Location provider error: %s", exc)
            raise LocationUnavailableError(str(exc)) from exc

    async def _anchor(
        self, profile: Profile, alert: Alert,
    ) -> Tuple[Alert, Optional[str]]:
        """Attach a verification reference; returns (alert, error message | None)."""
        if self.anchor is None:
            return alert, None

        payload = {
            "alert_id": alert.id,
            "profile_id": profile.profile_id,
            "timestamp": alert.timestamp,
            "location": alert.location.to_dict(),
        }
        try:
            reference = await asyncio.wait_for(
                self.anchor.record(payload), timeout=self.anchor_timeout,
            )
            if not reference:
                raise VerificationAnchorError("empty reference")
        except asyncio.TimeoutError:
            error = VerificationAnchorError(f"timed out after {self.anchor_timeout:.1f}s")
        except VerificationAnchorError as exc:
            error = exc
        except Exception as exc:
            logger.exception("Verification anchor raised unexpectedly")
            error = VerificationAnchorError(str(exc))
        else:
            updated = profile.alerts.apply(alert.id, lambda a: a.with_verification(reference))
            logger.info(
                "Alert %s anchored: %s", alert.id, reference,
                extra={"alert_id": alert.id},
            )
            return updated, None

        logger.warning(
            "Alert %s stored without verification reference: %s",
            alert.id, error.message,
            extra={"alert_id": alert.id},
        )
        return alert, error.message

    async def _fan_out(
        self,
        profile: Profile,
        location: GeoLocation,
        timestamp: int,
        alert_id: Optional[str],
    ) -> FanOutResult:
        contacts = profile.contacts.eligible()
        if not contacts:
            logger.warning(
                "No emergency contacts found to notify",
                extra={"alert_id": alert_id, "profile_id": profile.profile_id},
            )
            return FanOutResult()

        logger.info(
            "Sending alerts to %d emergency contacts", len(contacts),
            extra={"alert_id": alert_id, "eligible_count": len(contacts)},
        )
        attempts: List[NotificationAttempt] = await asyncio.gather(
            *(self._dispatch(c, profile.name, location, timestamp) for c in contacts)
        )
        return FanOutResult(attempts=list(attempts))

    async def _dispatch(
        self,
        contact: Contact,
        sender_name: str,
        location: GeoLocation,
        timestamp: int,
    ) -> NotificationAttempt:
        """Notify one contact. Never raises: every outcome becomes an attempt record."""
        attempt = NotificationAttempt(
            contact_id=contact.id,
            contact_name=contact.name,
            recipient=contact.email,
            status=DeliveryStatus.SENDING,
        )
        start = time.monotonic()

        try:
            delivered = await asyncio.wait_for(
                self.gateway.notify(contact.email, sender_name, location, timestamp),
                timeout=self.dispatch_timeout,
            )
        except asyncio.TimeoutError:
            error = NotificationDispatchError(
                contact.name, f"no response within {self.dispatch_timeout:.1f}s",
                timed_out=True,
            )
            attempt.status = DeliveryStatus.TIMED_OUT
            attempt.error_message = error.message
        except Exception as exc:
            attempt.status = DeliveryStatus.FAILED
            attempt.error_message = NotificationDispatchError(contact.name, str(exc)).message
        else:
            if delivered:
                attempt.status = DeliveryStatus.DELIVERED
            else:
                attempt.status = DeliveryStatus.FAILED
                attempt.error_message = NotificationDispatchError(
                    contact.name, "gateway reported failure",
                ).message

        attempt.completed_at = datetime.now(timezone.utc)
        duration_ms = (time.monotonic() - start) * 1000

        if attempt.succeeded:
            logger.info(
                "Alert sent successfully to %s (%s)",
                contact.name, mask_address(contact.email),
                extra={"contact_id": contact.id, "duration_ms": duration_ms},
            )
        else:
            logger.error(
                "Failed to send alert to %s (%s): %s",
                contact.name, mask_address(contact.email), attempt.error_message,
                extra={"contact_id": contact.id, "duration_ms": duration_ms},
            )
        return attempt


def build_engine() -> AlertEngine:
    """Engine wired from settings (simulated providers by default)."""
    return AlertEngine(
        EmailNotificationGateway(),
        anchor=build_anchor(),
    )
