"""Delivery phase state machine.

A drone delivery runs hub → restaurant → customer:

    idle → to_restaurant → picking_up → to_customer → delivering → completed

``advance`` steps to the next phase. ``force`` lets an external signal (an
order status change) jump ahead, never back.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import structlog

log = structlog.get_logger()


class DeliveryPhase(str, Enum):
    IDLE = "idle"
    TO_RESTAURANT = "to_restaurant"
    PICKING_UP = "picking_up"
    TO_CUSTOMER = "to_customer"
    DELIVERING = "delivering"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _ORDER.index(self)

    @property
    def is_flight(self) -> bool:
        """Flight phases move the drone along a segment; the others hold it."""
        return self in (DeliveryPhase.TO_RESTAURANT, DeliveryPhase.TO_CUSTOMER)

    @property
    def is_timed(self) -> bool:
        return self not in (DeliveryPhase.IDLE, DeliveryPhase.COMPLETED)


_ORDER = [
    DeliveryPhase.IDLE,
    DeliveryPhase.TO_RESTAURANT,
    DeliveryPhase.PICKING_UP,
    DeliveryPhase.TO_CUSTOMER,
    DeliveryPhase.DELIVERING,
    DeliveryPhase.COMPLETED,
]


@dataclass(frozen=True)
class PhaseDurations:
    """Seconds spent in each timed phase."""
    to_restaurant: float
    picking_up: float
    to_customer: float
    delivering: float

    def for_phase(self, phase: DeliveryPhase) -> float:
        if not phase.is_timed:
            return 0.0
        return getattr(self, phase.value)

    @property
    def total(self) -> float:
        return self.to_restaurant + self.picking_up + self.to_customer + self.delivering


# "simulator" is the pace of the admin-side delivery simulator pushing real
# positions; "client" is the slower pace the tracking client animates at
# when nothing is pushing positions.
PRESETS: dict[str, PhaseDurations] = {
    "simulator": PhaseDurations(to_restaurant=20, picking_up=5, to_customer=30, delivering=3),
    "client": PhaseDurations(to_restaurant=30, picking_up=5, to_customer=45, delivering=3),
}


def get_preset(name: str) -> PhaseDurations:
    try:
        return PRESETS[name]
    except KeyError:
        raise ValueError(f"unknown phase preset {name!r}, expected one of {sorted(PRESETS)}") from None


class PhaseTransitionError(Exception):
    """Raised when asked to advance past the terminal phase."""


class PhaseStateMachine:
    """Tracks the current phase and enforces forward-only transitions."""

    def __init__(
        self,
        durations: PhaseDurations | None = None,
        phase: DeliveryPhase = DeliveryPhase.IDLE,
    ) -> None:
        self.durations = durations or PRESETS["client"]
        self._phase = phase
        self.history: list[DeliveryPhase] = [phase]

    @property
    def phase(self) -> DeliveryPhase:
        return self._phase

    @property
    def is_completed(self) -> bool:
        return self._phase is DeliveryPhase.COMPLETED

    def duration(self, phase: DeliveryPhase | None = None) -> float:
        return self.durations.for_phase(phase or self._phase)

    @staticmethod
    def next_phase(phase: DeliveryPhase) -> DeliveryPhase:
        if phase is DeliveryPhase.COMPLETED:
            raise PhaseTransitionError("completed is terminal")
        return _ORDER[phase.rank + 1]

    def advance(self) -> DeliveryPhase:
        """Step to the next phase in order and return it."""
        new = self.next_phase(self._phase)
        log.debug("phase_advanced", old=self._phase.value, new=new.value)
        self._set(new)
        return new

    def force(self, target: DeliveryPhase) -> bool:
        """Jump straight to ``target`` if it lies ahead. Returns whether it moved."""
        if target.rank <= self._phase.rank:
            if target is not self._phase:
                log.debug("phase_force_ignored", current=self._phase.value, target=target.value)
            return False
        log.info("phase_forced", old=self._phase.value, new=target.value)
        self._set(target)
        return True

    def _set(self, phase: DeliveryPhase) -> None:
        self._phase = phase
        self.history.append(phase)
