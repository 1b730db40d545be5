"""
test_alert_service.py — Tests for the SOS alert lifecycle engine.

Covers:
    • Trigger: durability, ordering, timestamp, location failure, auth
    • Fan-out: eligibility, partial failure, timeouts, concurrency
    • Verification anchoring: success, failure, timeout
    • Resolve / false alarm transitions and notes semantics
    • Responder snapshots vs. later contact edits
    • Location sharing without an alert record
    • Sending a photo to one contact

Run with:
    pytest tests/test_alert_service.py -v
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from backend.app.alerts.alert_service import AlertEngine
from backend.app.alerts.channels.location import FixedLocationProvider
from backend.app.alerts.models import AlertStatus, DeliveryStatus, GeoLocation
from backend.app.core.errors import (
    AlertNotFoundError,
    ContactNotFoundError,
    EmailRequiredError,
    InvalidAlertTransitionError,
    LocationUnavailableError,
    NotAuthenticatedError,
    NotificationDispatchError,
    TriggerFailedError,
    VerificationAnchorError,
)
from backend.app.profiles.profile import Profile


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

NYC_LAT = 40.7128
NYC_LON = -74.006
FIXED_NOW_MS = 1_700_000_000_000


class FakeGateway:
    """
    Records every notify() call. ``outcomes`` maps address → True / False /
    an exception instance / "hang".
    """

    def __init__(self, outcomes=None, on_notify=None):
        self.outcomes = outcomes or {}
        self.on_notify = on_notify
        self.calls = []

    async def notify(self, recipient_address, sender_name, location, timestamp):
        self.calls.append((recipient_address, sender_name, location, timestamp))
        if self.on_notify is not None:
            self.on_notify(recipient_address)
        outcome = self.outcomes.get(recipient_address, True)
        if outcome == "hang":
            await asyncio.sleep(3600)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def send_photo(self, recipient_address, photo_data, subject):
        self.calls.append((recipient_address, photo_data, subject))
        outcome = self.outcomes.get(recipient_address, True)
        if outcome == "hang":
            await asyncio.sleep(3600)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeAnchor:
    def __init__(self, reference="0xfeed...beef", error=None, hang=False, delay=0.0):
        self.reference = reference
        self.error = error
        self.hang = hang
        self.delay = delay
        self.payloads = []

    async def record(self, payload):
        self.payloads.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        return self.reference


class BrokenLocation:
    async def get_current_position(self):
        raise LocationUnavailableError("permission denied")


class CrashingLocation:
    async def get_current_position(self):
        raise RuntimeError("sensor offline")


def _make_profile(*contacts) -> Profile:
    profile = Profile(name="Jane Doe", email="jane.doe@example.com")
    for name, email, flagged in contacts:
        profile.contacts.add(
            name, "+1 555-000-0000", email=email, is_emergency_contact=flagged,
        )
    return profile


def _make_engine(gateway=None, anchor=None, **kwargs) -> AlertEngine:
    return AlertEngine(
        gateway or FakeGateway(),
        location_provider=FixedLocationProvider(NYC_LAT, NYC_LON, "New York, NY"),
        anchor=anchor,
        dispatch_timeout=kwargs.pop("dispatch_timeout", 1.0),
        anchor_timeout=kwargs.pop("anchor_timeout", 1.0),
        clock=kwargs.pop("clock", lambda: FIXED_NOW_MS),
        **kwargs,
    )


def _run(coro):
    return asyncio.run(coro)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Trigger
# ═══════════════════════════════════════════════════════════════════════════

class TestTrigger:

    def test_creates_one_active_alert_at_front(self):
        profile = _make_profile(("John", "john@example.com", True))
        engine = _make_engine()
        _run(engine.trigger(profile))
        report = _run(engine.trigger(profile))

        alerts = profile.alerts.list_all()
        assert len(alerts) == 2
        assert alerts[0].id == report.alert.id
        assert alerts[0].status == AlertStatus.ACTIVE

    def test_timestamp_is_trigger_time(self):
        profile = _make_profile()
        report = _run(_make_engine().trigger(profile))
        assert report.alert.timestamp == FIXED_NOW_MS
        assert profile.alerts.get(report.alert.id).timestamp == FIXED_NOW_MS

    def test_location_captured(self):
        profile = _make_profile()
        report = _run(_make_engine().trigger(profile))
        assert report.alert.location == GeoLocation(NYC_LAT, NYC_LON, "New York, NY")

    def test_ids_unique(self):
        profile = _make_profile()
        engine = _make_engine()
        ids = {_run(engine.trigger(profile)).alert.id for _ in range(10)}
        assert len(ids) == 10

    def test_no_profile_raises_not_authenticated(self):
        gateway = FakeGateway()
        with pytest.raises(NotAuthenticatedError):
            _run(_make_engine(gateway).trigger(None))
        assert gateway.calls == []

    def test_location_failure_leaves_store_unchanged(self):
        profile = _make_profile(("John", "john@example.com", True))
        gateway = FakeGateway()
        engine = _make_engine(gateway)
        with pytest.raises(LocationUnavailableError):
            _run(engine.trigger(profile, location_provider=BrokenLocation()))
        assert len(profile.alerts) == 0
        assert gateway.calls == []

    def test_location_failure_is_trigger_failed(self):
        profile = _make_profile()
        with pytest.raises(TriggerFailedError):
            _run(_make_engine().trigger(profile, location_provider=BrokenLocation()))

    def test_unexpected_provider_error_becomes_location_unavailable(self):
        profile = _make_profile()
        with pytest.raises(LocationUnavailableError) as exc_info:
            _run(_make_engine().trigger(profile, location_provider=CrashingLocation()))
        assert "sensor offline" in exc_info.value.message
        assert len(profile.alerts) == 0

    def test_missing_provider_is_location_unavailable(self):
        engine = AlertEngine(FakeGateway(), dispatch_timeout=1.0)
        profile = _make_profile()
        with pytest.raises(LocationUnavailableError):
            _run(engine.trigger(profile))
        assert len(profile.alerts) == 0

    def test_alert_stored_before_dispatch(self):
        profile = _make_profile(("John", "john@example.com", True))
        seen = []
        gateway = FakeGateway(
            on_notify=lambda addr: seen.append(len(profile.alerts)),
        )
        _run(_make_engine(gateway).trigger(profile))
        assert seen == [1]

    def test_dispatch_carries_sender_location_timestamp(self):
        profile = _make_profile(("John", "john@example.com", True))
        gateway = FakeGateway()
        report = _run(_make_engine(gateway).trigger(profile))
        address, sender, location, timestamp = gateway.calls[0]
        assert address == "john@example.com"
        assert sender == "Jane Doe"
        assert location == report.alert.location
        assert timestamp == report.alert.timestamp


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Fan-out
# ═══════════════════════════════════════════════════════════════════════════

class TestFanOut:

    def test_partial_failure_counts(self):
        profile = _make_profile(
            ("Alice", "alice@example.com", True),
            ("Bob", "bob@example.com", True),
        )
        gateway = FakeGateway({"alice@example.com": True, "bob@example.com": False})
        report = _run(_make_engine(gateway).trigger(profile))

        assert report.alert.status == AlertStatus.ACTIVE
        assert report.success_count == 1
        assert report.failure_count == 1
        assert report.is_degraded

    def test_counts_sum_to_eligible(self):
        profile = _make_profile(
            ("A", "a@example.com", True),
            ("B", "b@example.com", True),
            ("C", "", True),               # no e-mail → not eligible
            ("D", "d@example.com", False),  # not flagged → not eligible
            ("E", "e@example.com", True),
        )
        gateway = FakeGateway({"b@example.com": RuntimeError("smtp down")})
        report = _run(_make_engine(gateway).trigger(profile))

        assert report.fan_out.eligible_count == 3
        assert report.success_count + report.failure_count == 3
        assert {c[0] for c in gateway.calls} == {
            "a@example.com", "b@example.com", "e@example.com",
        }

    def test_no_eligible_contacts(self):
        profile = _make_profile(("D", "d@example.com", False))
        gateway = FakeGateway()
        report = _run(_make_engine(gateway).trigger(profile))

        assert report.no_eligible_contacts is True
        assert report.alert.status == AlertStatus.ACTIVE
        assert len(profile.alerts) == 1
        assert gateway.calls == []
        assert report.success_count == 0 and report.failure_count == 0

    def test_exception_marks_only_that_recipient_failed(self):
        profile = _make_profile(
            ("A", "a@example.com", True),
            ("B", "b@example.com", True),
        )
        gateway = FakeGateway({"a@example.com": ConnectionError("refused")})
        report = _run(_make_engine(gateway).trigger(profile))

        by_contact = {a.recipient: a for a in report.fan_out.attempts}
        assert by_contact["a@example.com"].status == DeliveryStatus.FAILED
        assert "refused" in by_contact["a@example.com"].error_message
        assert by_contact["b@example.com"].status == DeliveryStatus.DELIVERED

    def test_hanging_recipient_times_out(self):
        profile = _make_profile(
            ("A", "a@example.com", True),
            ("B", "b@example.com", True),
        )
        gateway = FakeGateway({"a@example.com": "hang"})
        engine = _make_engine(gateway, dispatch_timeout=0.05)
        report = _run(engine.trigger(profile))

        by_contact = {a.recipient: a for a in report.fan_out.attempts}
        assert by_contact["a@example.com"].status == DeliveryStatus.TIMED_OUT
        assert by_contact["b@example.com"].status == DeliveryStatus.DELIVERED
        assert report.failure_count == 1
        assert report.success_count == 1

    def test_dispatches_run_concurrently(self):
        profile = _make_profile(*[
            (f"C{i}", f"c{i}@example.com", True) for i in range(5)
        ])
        in_flight = {"now": 0, "peak": 0}

        class SlowGateway:
            async def notify(self, recipient_address, sender_name, location, timestamp):
                in_flight["now"] += 1
                in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
                await asyncio.sleep(0.02)
                in_flight["now"] -= 1
                return True

        report = _run(_make_engine(SlowGateway()).trigger(profile))
        assert report.success_count == 5
        assert in_flight["peak"] == 5

    def test_attempts_serialise(self):
        profile = _make_profile(("A", "a@example.com", True))
        report = _run(_make_engine().trigger(profile))
        data = report.to_dict()
        assert data["success_count"] == 1
        assert data["attempts"][0]["status"] == "delivered"
        assert data["alert"]["status"] == "active"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Verification Anchor
# ═══════════════════════════════════════════════════════════════════════════

class TestVerification:

    def test_reference_attached(self):
        profile = _make_profile()
        anchor = FakeAnchor("0xabcd...1234")
        report = _run(_make_engine(anchor=anchor).trigger(profile))

        assert report.alert.verification_ref == "0xabcd...1234"
        assert profile.alerts.get(report.alert.id).verification_ref == "0xabcd...1234"
        assert anchor.payloads[0]["alert_id"] == report.alert.id
        assert anchor.payloads[0]["timestamp"] == FIXED_NOW_MS

    def test_anchor_failure_is_degraded_success(self):
        profile = _make_profile(("A", "a@example.com", True))
        anchor = FakeAnchor(error=VerificationAnchorError("ledger offline"))
        report = _run(_make_engine(anchor=anchor).trigger(profile))

        assert report.alert.verification_ref is None
        assert "ledger offline" in report.verification_error
        assert report.success_count == 1
        assert len(profile.alerts) == 1

    def test_anchor_timeout_is_degraded_success(self):
        profile = _make_profile()
        engine = _make_engine(anchor=FakeAnchor(hang=True), anchor_timeout=0.05)
        report = _run(engine.trigger(profile))
        assert report.alert.verification_ref is None
        assert "timed out" in report.verification_error

    def test_unexpected_anchor_error_does_not_fail_trigger(self):
        profile = _make_profile()
        report = _run(_make_engine(anchor=FakeAnchor(error=KeyError("x"))).trigger(profile))
        assert report.alert.status == AlertStatus.ACTIVE
        assert report.verification_error is not None

    def test_reference_survives_resolution(self):
        profile = _make_profile()
        engine = _make_engine(anchor=FakeAnchor("0x11...22"))
        report = _run(engine.trigger(profile))
        resolved = engine.resolve(profile, report.alert.id, "ok")
        assert resolved.verification_ref == "0x11...22"


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Resolve / False Alarm
# ═══════════════════════════════════════════════════════════════════════════

class TestTransitions:

    def _triggered(self):
        profile = _make_profile()
        engine = _make_engine()
        alert = _run(engine.trigger(profile)).alert
        return profile, engine, alert

    def test_resolve_sets_status(self):
        profile, engine, alert = self._triggered()
        engine.resolve(profile, alert.id)
        assert profile.alerts.get(alert.id).status == AlertStatus.RESOLVED

    def test_resolve_preserves_notes_when_none_given(self):
        profile, engine, alert = self._triggered()
        engine.resolve(profile, alert.id, "first note")
        engine.resolve(profile, alert.id)
        assert profile.alerts.get(alert.id).notes == "first note"

    def test_re_resolve_updates_notes(self):
        profile, engine, alert = self._triggered()
        engine.resolve(profile, alert.id, "first")
        engine.resolve(profile, alert.id, "second")
        stored = profile.alerts.get(alert.id)
        assert stored.status == AlertStatus.RESOLVED
        assert stored.notes == "second"

    def test_resolve_unknown_id(self):
        profile, engine, alert = self._triggered()
        before = profile.alerts.list_all()
        with pytest.raises(AlertNotFoundError):
            engine.resolve(profile, "unknown-id")
        assert profile.alerts.list_all() == before

    def test_resolve_requires_profile(self):
        with pytest.raises(NotAuthenticatedError):
            _make_engine().resolve(None, "ALR-X")

    def test_false_alarm(self):
        profile, engine, alert = self._triggered()
        engine.mark_false_alarm(profile, alert.id, "pocket dial")
        stored = profile.alerts.get(alert.id)
        assert stored.status == AlertStatus.FALSE_ALARM
        assert stored.notes == "pocket dial"

    def test_resolved_cannot_become_false_alarm(self):
        profile, engine, alert = self._triggered()
        engine.resolve(profile, alert.id)
        with pytest.raises(InvalidAlertTransitionError):
            engine.mark_false_alarm(profile, alert.id)
        assert profile.alerts.get(alert.id).status == AlertStatus.RESOLVED

    def test_false_alarm_cannot_become_resolved(self):
        profile, engine, alert = self._triggered()
        engine.mark_false_alarm(profile, alert.id)
        with pytest.raises(InvalidAlertTransitionError):
            engine.resolve(profile, alert.id, "late")
        stored = profile.alerts.get(alert.id)
        assert stored.status == AlertStatus.FALSE_ALARM
        assert stored.notes is None

    def test_concurrent_resolves_settle_on_one_note(self):
        profile, engine, alert = self._triggered()
        notes = [f"note {i}" for i in range(8)]
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda n: engine.resolve(profile, alert.id, n), notes))
        stored = profile.alerts.get(alert.id)
        assert stored.status == AlertStatus.RESOLVED
        assert stored.notes in notes
        assert len(profile.alerts) == 1

    def test_resolve_during_anchoring_is_kept(self):
        profile = _make_profile(("John", "john@example.com", True))
        engine = _make_engine(anchor=FakeAnchor("0xabc", delay=0.05))

        async def scenario():
            pending = asyncio.ensure_future(engine.trigger(profile))
            while not profile.alerts.list_all():
                await asyncio.sleep(0)
            engine.resolve(profile, profile.alerts.list_all()[0].id, "safe")
            return await pending

        report = _run(scenario())
        stored = profile.alerts.get(report.alert.id)
        assert stored.status == AlertStatus.RESOLVED
        assert stored.notes == "safe"
        assert stored.verification_ref == "0xabc"
        assert report.alert == stored
        assert report.success_count == 1

    def test_resolve_during_fan_out_is_reported(self):
        profile = _make_profile(("John", "john@example.com", True))

        def resolve_first(_address):
            engine.resolve(profile, profile.alerts.list_all()[0].id, "found")

        engine = _make_engine(FakeGateway(on_notify=resolve_first))
        report = _run(engine.trigger(profile))
        assert report.alert.status == AlertStatus.RESOLVED
        assert report.alert.notes == "found"
        assert report.success_count == 1

    def test_timestamp_unchanged_by_resolution(self):
        profile, engine, alert = self._triggered()
        engine.resolve(profile, alert.id, "done")
        assert profile.alerts.get(alert.id).timestamp == alert.timestamp


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Responders
# ═══════════════════════════════════════════════════════════════════════════

class TestResponders:

    def test_snapshot_survives_contact_removal_and_edit(self):
        profile = _make_profile(
            ("John", "john@example.com", True),
            ("Sarah", "sarah@example.com", True),
        )
        engine = _make_engine()
        alert = _run(engine.trigger(profile)).alert
        john, sarah = profile.contacts.list_all()

        engine.record_response(profile, alert.id, john.id)
        engine.record_response(profile, alert.id, sarah.id)
        engine.resolve(profile, alert.id, "Both came")

        profile.contacts.remove(john.id)
        profile.contacts.update(sarah.id, name="Sarah J.", email="new@example.com")

        responders = profile.alerts.get(alert.id).responded_by
        assert [c.name for c in responders] == ["John", "Sarah"]
        assert responders[1].email == "sarah@example.com"

    def test_duplicate_response_ignored(self):
        profile = _make_profile(("John", "john@example.com", True))
        engine = _make_engine()
        alert = _run(engine.trigger(profile)).alert
        contact = profile.contacts.list_all()[0]
        engine.record_response(profile, alert.id, contact.id)
        engine.record_response(profile, alert.id, contact.id)
        assert len(profile.alerts.get(alert.id).responded_by) == 1

    def test_unknown_contact(self):
        profile = _make_profile()
        engine = _make_engine()
        alert = _run(engine.trigger(profile)).alert
        with pytest.raises(ContactNotFoundError):
            engine.record_response(profile, alert.id, "CON-NOPE")
        assert profile.alerts.get(alert.id).responded_by is None

    def test_unknown_alert(self):
        profile = _make_profile(("John", "john@example.com", True))
        contact = profile.contacts.list_all()[0]
        with pytest.raises(AlertNotFoundError):
            _make_engine().record_response(profile, "ALR-NOPE", contact.id)


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: Share Location
# ═══════════════════════════════════════════════════════════════════════════

class TestShareLocation:

    def test_notifies_without_creating_alert(self):
        profile = _make_profile(("John", "john@example.com", True))
        gateway = FakeGateway()
        report = _run(_make_engine(gateway).share_location(profile))

        assert len(profile.alerts) == 0
        assert report.fan_out.success_count == 1
        assert report.location.latitude == NYC_LAT
        assert len(gateway.calls) == 1

    def test_requires_location(self):
        profile = _make_profile(("John", "john@example.com", True))
        with pytest.raises(LocationUnavailableError):
            _run(_make_engine().share_location(profile, location_provider=BrokenLocation()))

    def test_requires_profile(self):
        with pytest.raises(NotAuthenticatedError):
            _run(_make_engine().share_location(None))


class TestSendPhoto:

    def _contact(self, profile):
        return profile.contacts.list_all()[0]

    def test_sends_to_one_contact(self):
        profile = _make_profile(
            ("John", "john@example.com", True), ("Sarah", "sarah@example.com", True),
        )
        gateway = FakeGateway()
        attempt = _run(
            _make_engine(gateway).send_photo(profile, self._contact(profile).id, "AAAA")
        )
        assert attempt.status == DeliveryStatus.DELIVERED
        assert gateway.calls == [("john@example.com", "AAAA", "Photo from Safety App")]
        assert len(profile.alerts) == 0

    def test_custom_subject(self):
        profile = _make_profile(("John", "john@example.com", False))
        gateway = FakeGateway()
        _run(_make_engine(gateway).send_photo(
            profile, self._contact(profile).id, "AAAA", subject="Where I am",
        ))
        assert gateway.calls[0][2] == "Where I am"

    def test_unknown_contact(self):
        profile = _make_profile()
        with pytest.raises(ContactNotFoundError):
            _run(_make_engine().send_photo(profile, "CON-NOPE", "AAAA"))

    def test_contact_without_email(self):
        profile = _make_profile(("John", "", True))
        gateway = FakeGateway()
        with pytest.raises(EmailRequiredError) as exc_info:
            _run(_make_engine(gateway).send_photo(profile, self._contact(profile).id, "AAAA"))
        assert exc_info.value.status_code == 422
        assert gateway.calls == []

    @pytest.mark.parametrize("outcome", [False, RuntimeError("smtp down"), "hang"])
    def test_delivery_failure_raises(self, outcome):
        profile = _make_profile(("John", "john@example.com", True))
        engine = _make_engine(
            FakeGateway({"john@example.com": outcome}), dispatch_timeout=0.05,
        )
        with pytest.raises(NotificationDispatchError) as exc_info:
            _run(engine.send_photo(profile, self._contact(profile).id, "AAAA"))
        assert exc_info.value.details["timed_out"] is (outcome == "hang")

    def test_requires_profile(self):
        with pytest.raises(NotAuthenticatedError):
            _run(_make_engine().send_photo(None, "CON-X", "AAAA"))


class TestEngineConfig:

    def test_non_positive_dispatch_timeout_rejected(self):
        with pytest.raises(ValueError):
            AlertEngine(FakeGateway(), dispatch_timeout=-1)
