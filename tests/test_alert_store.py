"""
test_alert_store.py — Tests for the per-profile alert history.

Covers:
    • Newest-first ordering and id uniqueness
    • Atomic apply (unknown ids, failing changes, immutable fields)
    • Status filtering and summary counts
    • Frozen alert transitions (notes, verification, responders)

Run with:
    pytest tests/test_alert_store.py -v
"""

from dataclasses import replace

import pytest

from backend.app.alerts.models import Alert, AlertStatus, Contact, GeoLocation
from backend.app.alerts.store import AlertStore
from backend.app.core.errors import AlertNotFoundError, InvalidAlertTransitionError


def _make_alert(alert_id: str, timestamp: int = 1_700_000_000_000, **kwargs) -> Alert:
    return Alert(
        id=alert_id,
        timestamp=timestamp,
        location=GeoLocation(40.7128, -74.006),
        **kwargs,
    )


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertStore:

    def test_prepend_newest_first(self):
        store = AlertStore()
        store.prepend(_make_alert("ALR-1"))
        store.prepend(_make_alert("ALR-2"))
        store.prepend(_make_alert("ALR-3"))
        assert [a.id for a in store.list_all()] == ["ALR-3", "ALR-2", "ALR-1"]
        assert store.latest().id == "ALR-3"

    def test_duplicate_id_rejected(self):
        store = AlertStore([_make_alert("ALR-1")])
        with pytest.raises(ValueError):
            store.prepend(_make_alert("ALR-1"))
        assert len(store) == 1

    def test_list_is_a_snapshot(self):
        store = AlertStore([_make_alert("ALR-1")])
        snapshot = store.list_all()
        store.prepend(_make_alert("ALR-2"))
        assert len(snapshot) == 1

    def test_get_and_find(self):
        store = AlertStore([_make_alert("ALR-1")])
        assert store.get("ALR-1").id == "ALR-1"
        assert store.find("ALR-9") is None
        assert "ALR-1" in store
        with pytest.raises(AlertNotFoundError):
            store.get("ALR-9")

    def test_latest_on_empty_store(self):
        assert AlertStore().latest() is None

    def test_apply_replaces_in_place(self):
        store = AlertStore([_make_alert("ALR-1"), _make_alert("ALR-2")])
        store.apply("ALR-2", lambda a: a.with_status(AlertStatus.RESOLVED, "ok"))
        assert [a.id for a in store.list_all()] == ["ALR-1", "ALR-2"]
        assert store.get("ALR-2").status == AlertStatus.RESOLVED

    def test_apply_unknown_id(self):
        store = AlertStore([_make_alert("ALR-1")])
        before = store.list_all()
        with pytest.raises(AlertNotFoundError):
            store.apply("ALR-9", lambda a: a.with_status(AlertStatus.RESOLVED))
        assert store.list_all() == before

    def test_failing_change_leaves_alert(self):
        store = AlertStore([_make_alert("ALR-1", status=AlertStatus.RESOLVED)])
        with pytest.raises(InvalidAlertTransitionError):
            store.apply("ALR-1", lambda a: a.with_status(AlertStatus.FALSE_ALARM))
        assert store.get("ALR-1").status == AlertStatus.RESOLVED

    def test_timestamp_cannot_change(self):
        store = AlertStore([_make_alert("ALR-1")])
        with pytest.raises(ValueError):
            store.apply("ALR-1", lambda a: replace(a, timestamp=0))
        assert store.get("ALR-1").timestamp == 1_700_000_000_000

    def test_filter_by_status_keeps_order(self):
        store = AlertStore([
            _make_alert("ALR-3"),
            _make_alert("ALR-2", status=AlertStatus.RESOLVED),
            _make_alert("ALR-1"),
        ])
        active = store.filter_by_status(AlertStatus.ACTIVE)
        assert [a.id for a in active] == ["ALR-3", "ALR-1"]
        assert [a.id for a in store.filter_by_status("resolved")] == ["ALR-2"]
        assert store.filter_by_status(AlertStatus.FALSE_ALARM) == []

    def test_summary(self):
        store = AlertStore([
            _make_alert("ALR-3"),
            _make_alert("ALR-2", status=AlertStatus.RESOLVED),
            _make_alert("ALR-1", status=AlertStatus.FALSE_ALARM),
        ])
        assert store.summary() == {
            "active": 1, "resolved": 1, "false_alarm": 1, "total": 3,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Alert Value Transitions
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertTransitions:

    def test_cannot_return_to_active(self):
        alert = _make_alert("ALR-1", status=AlertStatus.RESOLVED)
        with pytest.raises(InvalidAlertTransitionError):
            alert.with_status(AlertStatus.ACTIVE)

    def test_blank_notes_keep_existing(self):
        alert = _make_alert("ALR-1").with_status(AlertStatus.RESOLVED, "found safe")
        assert alert.with_status(AlertStatus.RESOLVED, "").notes == "found safe"

    def test_verification_is_write_once(self):
        alert = _make_alert("ALR-1").with_verification("0xaa...bb")
        with pytest.raises(ValueError):
            alert.with_verification("0xcc...dd")

    def test_responder_is_copied(self):
        contact = Contact(id="CON-1", name="John", phone_number="+1 555", email="j@x.com")
        alert = _make_alert("ALR-1").with_responder(contact)
        assert alert.responded_by == (contact,)
        assert alert.with_responder(contact) is alert

    def test_to_dict(self):
        data = _make_alert("ALR-1").to_dict()
        assert data["status"] == "active"
        assert data["responded_by"] is None
        assert data["created_at"].startswith("2023-11-14T22:13:20")
        assert data["location"]["latitude"] == 40.7128
