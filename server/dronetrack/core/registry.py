"""Session registry — at most one live tracking session per order.

The HTTP layer opens sessions on demand and shares them between every
client watching the same order.
"""

from __future__ import annotations

import asyncio
from typing import Callable

import structlog

from dronetrack.core.tracking import TrackingSessionController

log = structlog.get_logger()


class SessionRegistry:
    def __init__(self, factory: Callable[[], TrackingSessionController]) -> None:
        self._factory = factory
        self._sessions: dict[str, TrackingSessionController] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, order_id: str) -> TrackingSessionController | None:
        return self._sessions.get(order_id)

    async def open(self, order_id: str) -> TrackingSessionController:
        """Return the running session for ``order_id``, starting one if needed.

        Errors from ``start`` (``ValueError``, ``SessionLoadError``) propagate
        and nothing is registered. An order that is already delivered or
        cancelled gets a stopped session that is not registered either.
        """
        async with self._lock:
            existing = self._sessions.get(order_id)
            if existing is not None and existing.running:
                return existing

            controller = self._factory()
            await controller.start(order_id)
            if controller.running:
                # Finished deliveries stop themselves and leave the registry.
                controller.add_stop_callback(self._forget)
                self._sessions[order_id] = controller
            return controller

    def _forget(self, controller: TrackingSessionController) -> None:
        if self._sessions.get(controller.order_id) is controller:
            del self._sessions[controller.order_id]
            log.info("session_released", order=controller.order_id)

    async def close(self, order_id: str) -> bool:
        controller = self._sessions.pop(order_id, None)
        if controller is None:
            return False
        await controller.stop()
        return True

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for controller in sessions:
            await controller.stop()
        if sessions:
            log.info("sessions_closed", count=len(sessions))
