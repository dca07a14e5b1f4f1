"""
Dispatch Sequencer
==================
Waters eligible garden zones one at a time.

For each zone the sequencer publishes an activation command to the zone's
controller, sleeps for the whole watering time plus a safety margin, then
checks whether the controller reported completion during that window:

    IDLE -> COMMANDING -> WAITING -> ACKNOWLEDGED | TIMED_OUT
    IDLE -> SKIPPED   (offline hardware, no demand, no controller topic)

All zones share one water source, so the next command is never published
before the previous zone's wait has fully elapsed. The remote controller
switches its relay off on its own timer; a missing acknowledgment is logged
and the run moves on without re-commanding the zone.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol, Sequence

from cimis_irrigation.constants import (
    DEFAULT_FLOW_RATE_MS_PER_GALLON,
    DEFAULT_WAIT_MARGIN_SECONDS,
    RELAY_DONE_TOPIC,
)
from cimis_irrigation.domain.exceptions import DispatchTimeout
from cimis_irrigation.domain.zone import DispatchState, ZoneConfig, ZoneState
from cimis_irrigation.hardware.relay_protocol import encode_activation
from cimis_irrigation.services.completion_tracker import CompletionTracker

logger = logging.getLogger(__name__)


class PubSubChannel(Protocol):
    """Publish/subscribe capability the sequencer needs from the transport."""

    def publish(self, topic: str, payload: str) -> None:
        ...

    def subscribe(self, topic: str, callback: Callable[..., None]) -> None:
        ...


@dataclass
class DispatchOutcome:
    """Terminal result of one zone's dispatch cycle."""

    zone_name: str
    state: DispatchState
    demand_gallons: float = 0.0
    topic: str | None = None
    payload: str | None = None
    duration_ms: int = 0
    wait_seconds: float = 0.0
    published_at: float | None = None
    skip_reason: str | None = None
    timeout: DispatchTimeout | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "zone": self.zone_name,
            "state": self.state.value,
            "demand_gallons": round(self.demand_gallons, 3),
            "topic": self.topic,
            "payload": self.payload,
            "duration_ms": self.duration_ms,
            "wait_seconds": self.wait_seconds,
            "skip_reason": self.skip_reason,
        }


class DispatchSequencer:
    """
    Sequential relay dispatcher.

    Args:
        transport: Connected publish/subscribe channel
        controller_topics: Controller number -> command topic
        tracker: Completion tracker fed by the relay-done subscription
        flow_rate_ms_per_gallon: Relay on-time per gallon of demand
        wait_margin_seconds: Extra sleep after each zone
        sleep: Blocking sleep function (injected in tests)
        clock: Monotonic clock used to timestamp publishes
    """

    def __init__(
        self,
        transport: PubSubChannel,
        controller_topics: Mapping[int, str],
        tracker: CompletionTracker | None = None,
        flow_rate_ms_per_gallon: float = DEFAULT_FLOW_RATE_MS_PER_GALLON,
        wait_margin_seconds: float = DEFAULT_WAIT_MARGIN_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.transport = transport
        self.controller_topics = dict(controller_topics)
        self.tracker = tracker or CompletionTracker()
        self.flow_rate_ms_per_gallon = flow_rate_ms_per_gallon
        self.wait_margin_seconds = wait_margin_seconds
        self._sleep = sleep
        self._clock = clock

    def subscribe_completions(self, topic: str = RELAY_DONE_TOPIC) -> None:
        self.transport.subscribe(topic, self.tracker.on_message)

    def duration_ms(self, demand_gallons: float) -> int:
        return int(demand_gallons * self.flow_rate_ms_per_gallon)

    def wait_seconds(self, duration_ms: int) -> float:
        # Whole seconds of watering, then the margin that keeps relays from overlapping.
        return duration_ms // 1000 + self.wait_margin_seconds

    def _skip_reason(self, zone: ZoneConfig, state: ZoneState) -> str | None:
        if not zone.is_reachable:
            return "controller or relay offline"
        if state.computed_demand_gallons <= 0:
            return "no water demand"
        if zone.controller_number not in self.controller_topics:
            return f"no topic configured for controller {zone.controller_number}"
        return None

    def run(self, zones: Sequence[tuple[ZoneConfig, ZoneState]]) -> list[DispatchOutcome]:
        """
        Dispatch every zone in order.

        Raises:
            TransportError: publishing failed; zones already watered keep their state
        """
        outcomes = []
        for zone, state in zones:
            outcomes.append(self._dispatch_zone(zone, state))

        watered = sum(1 for o in outcomes if o.state in (DispatchState.ACKNOWLEDGED, DispatchState.TIMED_OUT))
        timed_out = sum(1 for o in outcomes if o.state == DispatchState.TIMED_OUT)
        logger.info("Dispatch finished: %d zone(s) watered, %d without acknowledgment", watered, timed_out)
        return outcomes

    def _dispatch_zone(self, zone: ZoneConfig, state: ZoneState) -> DispatchOutcome:
        demand = state.computed_demand_gallons
        reason = self._skip_reason(zone, state)
        if reason is not None:
            state.transition(DispatchState.SKIPPED)
            if zone.is_reachable and demand > 0:
                logger.warning("Skipping zone %s: %s", zone.name, reason)
            else:
                logger.debug("Skipping zone %s: %s", zone.name, reason)
            return DispatchOutcome(zone.name, DispatchState.SKIPPED, demand_gallons=demand, skip_reason=reason)

        topic = self.controller_topics[zone.controller_number]
        duration_ms = self.duration_ms(demand)
        wait = self.wait_seconds(duration_ms)
        payload = encode_activation(zone.relay_number, duration_ms)

        expectation = self.tracker.expect(zone.controller_number, zone.relay_number)
        state.transition(DispatchState.COMMANDING)
        logger.info("Zone %s will be watered for %d ms; turning ON relay %d", zone.name, duration_ms, zone.relay_number)
        try:
            self.transport.publish(topic, payload)
        except Exception:
            self.tracker.clear()
            raise
        published_at = self._clock()

        state.transition(DispatchState.WAITING)
        logger.info("Waiting %s seconds for zone %s", wait, zone.name)
        self._sleep(wait)

        outcome = DispatchOutcome(
            zone.name,
            DispatchState.WAITING,
            demand_gallons=demand,
            topic=topic,
            payload=payload,
            duration_ms=duration_ms,
            wait_seconds=wait,
            published_at=published_at,
        )
        if expectation.acknowledged:
            state.transition(DispatchState.ACKNOWLEDGED)
            outcome.state = DispatchState.ACKNOWLEDGED
            logger.info("Garden zone %s successfully watered", zone.name)
        else:
            state.transition(DispatchState.TIMED_OUT)
            outcome.state = DispatchState.TIMED_OUT
            outcome.timeout = DispatchTimeout(
                f"No completion from controller {zone.controller_number} relay {zone.relay_number} "
                f"within {wait} seconds",
                detail={"zone": zone.name, "controller": zone.controller_number, "relay": zone.relay_number},
            )
            logger.warning("Zone %s: %s", zone.name, outcome.timeout)
        self.tracker.clear()
        return outcome


def run_dispatch(
    zones: Sequence[tuple[ZoneConfig, ZoneState]],
    transport: PubSubChannel,
    controller_topics: Mapping[int, str],
    **kwargs: Any,
) -> list[DispatchOutcome]:
    """Subscribe to completion notices and dispatch ``zones`` over ``transport``."""
    sequencer = DispatchSequencer(transport, controller_topics, **kwargs)
    sequencer.subscribe_completions()
    return sequencer.run(zones)
