"""
countdown.py — Cancellable pre-trigger countdown.

Pressing SOS starts a short countdown (3 s by default) so an accidental
press can be taken back. The countdown is an asyncio task:

    PENDING ──tick…tick──▶ FIRING ──▶ FIRED | FAILED
       │
       └── cancel() ──▶ CANCELLED

`cancel()` only succeeds while the countdown is PENDING. The terminal
tick checks the state and flips it to FIRING with no await in between,
so on a single event loop a successful cancel can never be followed by
a trigger, and a trigger that has started (location acquisition under
way) can no longer be cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from backend.app.alerts.models import generate_id
from backend.app.core.config import settings
from backend.app.core.errors import CountdownNotFoundError

logger = logging.getLogger(__name__)


class CountdownState(str, Enum):
    PENDING   = "pending"
    CANCELLED = "cancelled"
    FIRING    = "firing"
    FIRED     = "fired"
    FAILED    = "failed"


class SOSCountdown:
    """
    A deferred trigger.

    Parameters
    ----------
    seconds : int
        Number of one-tick steps before firing; 0 fires on the next loop turn.
    on_fire : callable
        Coroutine function invoked once on the terminal tick.
    on_tick : callable, optional
        Called with the remaining seconds after each tick.
    tick_seconds : float
        Length of one tick (shortened in tests).
    """

    def __init__(
        self,
        seconds: int,
        on_fire: Callable[[], Awaitable[Any]],
        *,
        on_tick: Optional[Callable[[int], None]] = None,
        tick_seconds: float = 1.0,
        profile_id: Optional[str] = None,
    ):
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        self.countdown_id = generate_id("CDN")
        self.seconds = seconds
        self.remaining = seconds
        self.profile_id = profile_id
        self.state = CountdownState.PENDING
        self.result: Any = None
        self.error: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None
        self._on_fire = on_fire
        self._on_tick = on_tick
        self._tick_seconds = tick_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def is_done(self) -> bool:
        return self.state in (
            CountdownState.CANCELLED, CountdownState.FIRED, CountdownState.FAILED,
        )

    def start(self) -> "SOSCountdown":
        """Schedule the countdown on the running event loop."""
        if self._task is not None:
            raise RuntimeError("Countdown already started")
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    def cancel(self) -> bool:
        """Stop the countdown. Returns False once the trigger has begun."""
        if self.state is not CountdownState.PENDING:
            return False
        self.state = CountdownState.CANCELLED
        self.finished_at = datetime.now(timezone.utc)
        if self._task is not None:
            self._task.cancel()
        logger.info(
            "SOS countdown %s cancelled with %ds left", self.countdown_id, self.remaining,
            extra={"countdown_id": self.countdown_id},
        )
        return True

    async def wait(self) -> "SOSCountdown":
        """Wait until the countdown is cancelled or its trigger has finished."""
        if self._task is not None:
            try:
                await asyncio.shield(self._task)
            except asyncio.CancelledError:
                if not self._task.cancelled():
                    raise
        return self

    async def _run(self) -> None:
        while self.remaining > 0:
            await asyncio.sleep(self._tick_seconds)
            if self.state is not CountdownState.PENDING:
                return
            self.remaining -= 1
            if self._on_tick is not None:
                self._on_tick(self.remaining)

        if self.state is not CountdownState.PENDING:
            return
        self.state = CountdownState.FIRING

        logger.info(
            "SOS countdown %s elapsed, triggering", self.countdown_id,
            extra={"countdown_id": self.countdown_id},
        )
        try:
            self.result = await self._on_fire()
        except Exception as exc:
            logger.warning("SOS countdown %s trigger failed: %s", self.countdown_id, exc)
            self.state = CountdownState.FAILED
            self.error = str(exc)
        else:
            self.state = CountdownState.FIRED
        finally:
            self.finished_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        result = self.result.to_dict() if hasattr(self.result, "to_dict") else self.result
        return {
            "countdown_id": self.countdown_id,
            "state": self.state.value,
            "seconds": self.seconds,
            "remaining": self.remaining,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
            "result": result,
        }


class CountdownManager:
    """
    Tracks countdowns by id.

    Usage:
        manager = CountdownManager()
        countdown = manager.start(lambda: engine.trigger(profile), profile_id=...)
        manager.cancel(countdown.countdown_id)
    """

    def __init__(self, *, tick_seconds: float = 1.0):
        self._lock = threading.Lock()
        self._countdowns: Dict[str, SOSCountdown] = {}
        self._tick_seconds = tick_seconds

    def start(
        self,
        on_fire: Callable[[], Awaitable[Any]],
        *,
        seconds: Optional[int] = None,
        profile_id: Optional[str] = None,
    ) -> SOSCountdown:
        countdown = SOSCountdown(
            settings.SOS_COUNTDOWN_SECONDS if seconds is None else seconds,
            on_fire,
            tick_seconds=self._tick_seconds,
            profile_id=profile_id,
        )
        with self._lock:
            self._countdowns[countdown.countdown_id] = countdown
        countdown.start()
        logger.info(
            "SOS countdown %s started (%ds)", countdown.countdown_id, countdown.seconds,
            extra={"countdown_id": countdown.countdown_id, "profile_id": profile_id},
        )
        return countdown

    def get(self, countdown_id: str, *, profile_id: Optional[str] = None) -> SOSCountdown:
        with self._lock:
            countdown = self._countdowns.get(countdown_id)
        if countdown is None or (profile_id and countdown.profile_id != profile_id):
            raise CountdownNotFoundError(countdown_id)
        return countdown

    def cancel(self, countdown_id: str, *, profile_id: Optional[str] = None) -> bool:
        return self.get(countdown_id, profile_id=profile_id).cancel()

    def list(self, profile_id: Optional[str] = None) -> List[SOSCountdown]:
        with self._lock:
            countdowns = list(self._countdowns.values())
        if profile_id:
            countdowns = [c for c in countdowns if c.profile_id == profile_id]
        return sorted(countdowns, key=lambda c: c.created_at, reverse=True)

    def cleanup_finished(self, max_age_seconds: Optional[float] = None) -> int:
        """
        Forget cancelled/fired/failed countdowns, optionally only those
        finished more than ``max_age_seconds`` ago. Returns count removed.
        """
        now = datetime.now(timezone.utc)
        with self._lock:
            done = [
                cid for cid, c in self._countdowns.items()
                if c.is_done and (
                    max_age_seconds is None
                    or (now - c.finished_at).total_seconds() >= max_age_seconds
                )
            ]
            for cid in done:
                del self._countdowns[cid]
        return len(done)
