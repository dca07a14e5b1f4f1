"""
Garden Zone Domain Entities

Zone configuration, per-run zone state and the dispatch state machine that
each zone walks through while the sequencer waters the garden.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from cimis_irrigation.constants import MAX_HISTORY_DAYS

SECONDS_PER_DAY = 86400.0


class DispatchState(str, Enum):
    """Lifecycle of a zone during one dispatch cycle"""

    IDLE = "idle"
    COMMANDING = "commanding"
    WAITING = "waiting"
    ACKNOWLEDGED = "acknowledged"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({DispatchState.ACKNOWLEDGED, DispatchState.TIMED_OUT, DispatchState.SKIPPED})

_TRANSITIONS: dict[DispatchState, frozenset[DispatchState]] = {
    DispatchState.IDLE: frozenset({DispatchState.COMMANDING, DispatchState.SKIPPED}),
    DispatchState.COMMANDING: frozenset({DispatchState.WAITING}),
    DispatchState.WAITING: frozenset({DispatchState.ACKNOWLEDGED, DispatchState.TIMED_OUT}),
    DispatchState.ACKNOWLEDGED: frozenset(),
    DispatchState.TIMED_OUT: frozenset(),
    DispatchState.SKIPPED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a zone is moved along an edge the state machine does not have."""


@dataclass(frozen=True)
class ZoneConfig:
    """
    Static configuration of a garden zone, loaded from the ledger.

    A relay or controller number of 0 marks hardware that is not online yet.
    """

    name: str
    plant_factor: float
    landscape_area_sq_ft: float
    relay_number: int = 0
    controller_number: int = 0

    @property
    def is_reachable(self) -> bool:
        return self.controller_number > 0 and self.relay_number > 0


@dataclass
class ZoneState:
    """Mutable per-run state of a zone."""

    days_since_irrigation: float = 0.0
    last_gallons_applied: float = 0.0
    effective_irrigation_gallons: float = 0.0
    computed_demand_gallons: float = 0.0
    dispatch_state: DispatchState = DispatchState.IDLE
    dispatched: bool = False
    acknowledged: bool = False
    history_discarded: bool = False
    transitions: list[DispatchState] = field(default_factory=list)

    @classmethod
    def from_history(
        cls,
        last_irrigated: datetime,
        last_gallons: float,
        run_time: datetime,
        max_history_days: float = MAX_HISTORY_DAYS,
    ) -> "ZoneState":
        """
        Build the run state from the ledger's last irrigation record.

        History older than ``max_history_days`` is discarded: the zone is
        treated as never irrigated this cycle and earns no irrigation credit.
        An irrigation date in the future clamps to zero days.
        """
        days_since = (run_time - last_irrigated).total_seconds() / SECONDS_PER_DAY
        if days_since > max_history_days:
            return cls(days_since_irrigation=0.0, last_gallons_applied=0.0, history_discarded=True)
        return cls(days_since_irrigation=max(days_since, 0.0), last_gallons_applied=max(last_gallons, 0.0))

    def transition(self, new_state: DispatchState) -> None:
        """Move to ``new_state``, rejecting edges the state machine does not define."""
        if new_state not in _TRANSITIONS[self.dispatch_state]:
            raise InvalidTransitionError(f"Cannot move zone from {self.dispatch_state.value} to {new_state.value}")
        self.transitions.append(self.dispatch_state)
        self.dispatch_state = new_state
        # The command is on the wire once the zone is waiting on it.
        if new_state == DispatchState.WAITING:
            self.dispatched = True
        elif new_state == DispatchState.ACKNOWLEDGED:
            self.acknowledged = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "days_since_irrigation": round(self.days_since_irrigation, 2),
            "last_gallons_applied": round(self.last_gallons_applied, 3),
            "effective_irrigation_gallons": round(self.effective_irrigation_gallons, 3),
            "computed_demand_gallons": round(self.computed_demand_gallons, 3),
            "dispatch_state": self.dispatch_state.value,
            "dispatched": self.dispatched,
            "acknowledged": self.acknowledged,
        }


def is_eligible(zone: ZoneConfig, state: ZoneState) -> bool:
    """A zone is dispatched only when reachable and actually short of water."""
    return zone.is_reachable and state.computed_demand_gallons > 0
