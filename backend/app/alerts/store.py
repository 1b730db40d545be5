"""
store.py — Append-only, newest-first alert history for one profile.

Readers may list or filter while a trigger is in flight; every read
returns a list snapshot taken under the lock. Mutation goes through
`prepend` (new alert) and `apply` (transition an existing alert), both
called only by the alert engine.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional

from backend.app.alerts.models import Alert, AlertStatus
from backend.app.core.errors import AlertNotFoundError

logger = logging.getLogger(__name__)


class AlertStore:
    """Ordered alert history (index 0 is the newest)."""

    def __init__(self, alerts: Optional[Iterable[Alert]] = None):
        self._lock = threading.RLock()
        self._alerts: List[Alert] = list(alerts or [])
        self._seen_ids = {a.id for a in self._alerts}

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)

    def __contains__(self, alert_id: object) -> bool:
        with self._lock:
            return alert_id in self._seen_ids

    # ── Mutation (engine only) ──

    def prepend(self, alert: Alert) -> None:
        """Insert a brand-new alert at the front. Ids are never reused."""
        with self._lock:
            if alert.id in self._seen_ids:
                raise ValueError(f"Alert id {alert.id} already used")
            self._alerts.insert(0, alert)
            self._seen_ids.add(alert.id)
        logger.debug("Stored alert %s", alert.id, extra={"alert_id": alert.id})

    def apply(self, alert_id: str, change: Callable[[Alert], Alert]) -> Alert:
        """
        Atomically replace an alert with ``change(current)``.

        Raises AlertNotFoundError (store untouched) for unknown ids.
        Exceptions from ``change`` propagate and leave the alert as it was.
        """
        with self._lock:
            for idx, current in enumerate(self._alerts):
                if current.id == alert_id:
                    updated = change(current)
                    if updated.id != current.id or updated.timestamp != current.timestamp:
                        raise ValueError("Alert id and timestamp are immutable")
                    self._alerts[idx] = updated
                    return updated
        raise AlertNotFoundError(alert_id)

    # ── Queries ──

    def get(self, alert_id: str) -> Alert:
        with self._lock:
            for alert in self._alerts:
                if alert.id == alert_id:
                    return alert
        raise AlertNotFoundError(alert_id)

    def find(self, alert_id: str) -> Optional[Alert]:
        try:
            return self.get(alert_id)
        except AlertNotFoundError:
            return None

    def list_all(self) -> List[Alert]:
        """All alerts, newest first."""
        with self._lock:
            return list(self._alerts)

    def filter_by_status(self, status: AlertStatus) -> List[Alert]:
        """Alerts with ``status``, in the same newest-first order."""
        status = AlertStatus(status)
        return [a for a in self.list_all() if a.status == status]

    def latest(self) -> Optional[Alert]:
        with self._lock:
            return self._alerts[0] if self._alerts else None

    def summary(self) -> Dict[str, int]:
        """Alert counts per status, plus a total."""
        counts = Counter(a.status for a in self.list_all())
        result = {status.value: counts.get(status, 0) for status in AlertStatus}
        result["total"] = sum(counts.values())
        return result
