"""Tracking statistics.

In-memory counters about sessions, ticks and the health of external calls.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time

TICK_SOURCES = ("realtime", "local", "hold", "pending", "idle")


class TrackingStats:
    """Thread-safe tracking counters.

    Tick counters are split by which source drove the position, which shows
    at a glance whether a remote simulator is feeding positions (``realtime``)
    or clients are animating on their own (``local``).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()

        self.sessions_started: int = 0
        self.sessions_stopped: int = 0
        self.sessions_failed: int = 0
        self.realtime_updates: int = 0
        self.order_updates: int = 0
        self.order_refetches: int = 0
        self.drone_events: int = 0
        self.geocode_failures: int = 0
        self.side_effect_failures: int = 0
        self.deliveries_completed: int = 0
        self._ticks: dict[str, int] = {source: 0 for source in TICK_SOURCES}

    def record_session_started(self) -> None:
        with self._lock:
            self.sessions_started += 1

    def record_session_stopped(self) -> None:
        with self._lock:
            self.sessions_stopped += 1

    def record_session_failed(self) -> None:
        """An initial order fetch failed; the session never started."""
        with self._lock:
            self.sessions_failed += 1

    def record_tick(self, source: str) -> None:
        with self._lock:
            self._ticks[source] = self._ticks.get(source, 0) + 1

    def record_realtime_update(self) -> None:
        with self._lock:
            self.realtime_updates += 1

    def record_order_update(self, refetched: bool = False) -> None:
        with self._lock:
            self.order_updates += 1
            if refetched:
                self.order_refetches += 1

    def record_drone_event(self) -> None:
        with self._lock:
            self.drone_events += 1

    def record_geocode_failure(self) -> None:
        with self._lock:
            self.geocode_failures += 1

    def record_side_effect_failure(self) -> None:
        with self._lock:
            self.side_effect_failures += 1

    def record_delivery_completed(self) -> None:
        with self._lock:
            self.deliveries_completed += 1

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "sessions": {
                    "started": self.sessions_started,
                    "stopped": self.sessions_stopped,
                    "failed": self.sessions_failed,
                    "active": self.sessions_started - self.sessions_stopped,
                },
                "ticks": dict(self._ticks),
                "realtime_updates": self.realtime_updates,
                "order_updates": self.order_updates,
                "order_refetches": self.order_refetches,
                "drone_events": self.drone_events,
                "geocode_failures": self.geocode_failures,
                "side_effect_failures": self.side_effect_failures,
                "deliveries_completed": self.deliveries_completed,
            }
