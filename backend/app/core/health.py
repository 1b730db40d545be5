"""
Health check aggregation for the SOS service.

Components:
    notification_gateway  UNHEALTHY when no delivery path exists: an SOS
                          would be stored but nobody could be told
    verification_anchor   DEGRADED when anchoring is disabled or has no
                          endpoint; alerts still work, unverified
    session_store         account / session counts
    countdowns            pending countdowns (informational)

The overall status is the worst component status. ``/health/ready``
answers 503 only for UNHEALTHY.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from backend.app.core.config import settings

logger = logging.getLogger(__name__)

_started = time.monotonic()


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @classmethod
    def worst(cls, statuses: Iterable["HealthStatus"]) -> "HealthStatus":
        order = [cls.HEALTHY, cls.DEGRADED, cls.UNHEALTHY]
        return max(statuses, key=order.index, default=cls.HEALTHY)


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"name": self.name, "status": self.status.value}
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    components: List[ComponentHealth] = field(default_factory=list)
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> HealthStatus:
        return HealthStatus.worst(c.status for c in self.components)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": self.checked_at.isoformat(),
            "uptime_seconds": round(time.monotonic() - _started, 1),
            "components": [c.to_dict() for c in self.components],
        }


# ═══════════════════════════════════════════════════════════════════════════
# Component Checks
# ═══════════════════════════════════════════════════════════════════════════

def check_notification_gateway(gateway: Any) -> ComponentHealth:
    provider = getattr(gateway, "provider", type(gateway).__name__)
    comp = ComponentHealth("notification_gateway", details={"provider": provider})
    if getattr(gateway, "is_configured", True):
        comp.message = f"Provider '{provider}' ready"
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = f"Provider '{provider}' has no endpoint configured"
    return comp


def check_verification_anchor(anchor: Optional[Any]) -> ComponentHealth:
    comp = ComponentHealth("verification_anchor")
    if anchor is None:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Anchoring disabled; alerts carry no verification reference"
        return comp

    comp.message = f"{type(anchor).__name__} ready"
    if hasattr(anchor, "endpoint_url"):
        comp.details["endpoint_configured"] = bool(anchor.endpoint_url)
        if not anchor.endpoint_url:
            comp.status = HealthStatus.DEGRADED
            comp.message = "Anchor endpoint not configured"
    return comp


def check_session_store(sessions: Any) -> ComponentHealth:
    return ComponentHealth(
        "session_store",
        message="In-memory store available",
        details={
            "accounts": sessions.account_count,
            "sessions": sessions.session_count,
        },
    )


def check_countdowns(countdowns: Any) -> ComponentHealth:
    pending = [c for c in countdowns.list() if not c.is_done]
    return ComponentHealth("countdowns", details={"pending": len(pending)})


async def run_health_check(
    engine: Any, sessions: Any, countdowns: Optional[Any] = None,
) -> HealthReport:
    """Run every component check and aggregate the result."""
    components = [
        check_notification_gateway(engine.gateway),
        check_verification_anchor(engine.anchor),
        check_session_store(sessions),
    ]
    if countdowns is not None:
        components.append(check_countdowns(countdowns))

    report = HealthReport(components=components)
    if report.status is not HealthStatus.HEALTHY:
        logger.warning(
            "Health check %s: %s",
            report.status.value,
            ", ".join(f"{c.name}={c.status.value}" for c in components
                      if c.status is not HealthStatus.HEALTHY),
        )
    return report
