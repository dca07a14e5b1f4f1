"""
Dispatch Sequencer Tests
========================
Tests for sequential relay activation, acknowledgment checks and the zone
dispatch state machine.
"""

import pytest

from cimis_irrigation.domain.exceptions import TransportError
from cimis_irrigation.domain.zone import DispatchState, InvalidTransitionError, ZoneConfig, ZoneState
from cimis_irrigation.services.completion_tracker import CompletionTracker
from cimis_irrigation.services.dispatch_sequencer import DispatchSequencer, run_dispatch

TOPICS = {1: "/back_yard", 2: "/front_yard"}


def zone(name, relay=1, controller=1, demand=10.0):
    config = ZoneConfig(
        name=name, plant_factor=1.0, landscape_area_sq_ft=10, relay_number=relay, controller_number=controller
    )
    return config, ZoneState(computed_demand_gallons=demand)


@pytest.fixture
def sequencer(fake_transport, clock):
    fake_transport.topic_controllers = {"/back_yard": 1, "/front_yard": 2}
    seq = DispatchSequencer(fake_transport, TOPICS, sleep=clock.sleep, clock=clock.time)
    seq.subscribe_completions()
    return seq


class TestDispatch:
    """Tests for DispatchSequencer.run()."""

    def test_publishes_relay_and_duration(self, sequencer, fake_transport, clock):
        outcomes = sequencer.run([zone("Tomatoes", relay=2, demand=18.5)])

        assert [(t, p) for _, t, p in fake_transport.published] == [("/back_yard", "2 18500")]
        assert clock.sleeps == [19]
        assert outcomes[0].state == DispatchState.ACKNOWLEDGED
        assert outcomes[0].duration_ms == 18500

    def test_sequential_publishes_respect_previous_wait(self, sequencer, fake_transport):
        zones = [zone("A", relay=1, demand=12.5), zone("B", relay=2, demand=3.0), zone("C", relay=3, demand=40.0)]

        outcomes = sequencer.run(zones)

        times = [t for t, _, _ in fake_transport.published]
        assert len(times) == 3
        for previous, (t_prev, t_next) in zip(outcomes, zip(times, times[1:])):
            assert t_next - t_prev >= previous.wait_seconds
            assert t_next - t_prev >= previous.duration_ms / 1000

    def test_one_publish_per_dispatched_zone(self, sequencer, fake_transport):
        zones = [
            zone("Watered", relay=1),
            zone("Offline relay", relay=0),
            zone("Offline controller", controller=0),
            zone("Wet", demand=0.0),
        ]

        outcomes = sequencer.run(zones)

        assert len(fake_transport.published) == 1
        assert [o.state for o in outcomes] == [
            DispatchState.ACKNOWLEDGED,
            DispatchState.SKIPPED,
            DispatchState.SKIPPED,
            DispatchState.SKIPPED,
        ]
        assert outcomes[3].skip_reason == "no water demand"

    def test_skipped_zone_stays_undispatched(self, sequencer):
        config, state = zone("Offline", relay=0)

        sequencer.run([(config, state)])

        assert state.dispatch_state == DispatchState.SKIPPED
        assert not state.dispatched
        assert not state.acknowledged

    def test_controller_without_topic_is_skipped(self, sequencer, fake_transport):
        outcomes = sequencer.run([zone("Side yard", controller=3)])

        assert fake_transport.published == []
        assert outcomes[0].state == DispatchState.SKIPPED
        assert "controller 3" in outcomes[0].skip_reason

    def test_routes_by_controller_topic(self, sequencer, fake_transport):
        sequencer.run([zone("Back", controller=1), zone("Front", controller=2, relay=4)])

        assert [(t, p) for _, t, p in fake_transport.published] == [
            ("/back_yard", "1 10000"),
            ("/front_yard", "4 10000"),
        ]

    def test_missing_acknowledgment_times_out_and_continues(self, sequencer, fake_transport):
        fake_transport.auto_ack = False
        zones = [zone("A", relay=1), zone("B", relay=2)]

        outcomes = sequencer.run(zones)

        assert [o.state for o in outcomes] == [DispatchState.TIMED_OUT, DispatchState.TIMED_OUT]
        assert len(fake_transport.published) == 2
        assert outcomes[0].timeout is not None
        assert zones[0][1].dispatched and not zones[0][1].acknowledged

    def test_acknowledgment_for_another_relay_does_not_count(self, fake_transport, clock):
        fake_transport.auto_ack = False
        tracker = CompletionTracker()

        def sleep_and_wrong_ack(seconds):
            clock.sleep(seconds)
            fake_transport.deliver("/relay_done", b"12")

        seq = DispatchSequencer(fake_transport, TOPICS, tracker=tracker, sleep=sleep_and_wrong_ack, clock=clock.time)
        seq.subscribe_completions()

        outcomes = seq.run([zone("A", relay=1)])

        assert outcomes[0].state == DispatchState.TIMED_OUT
        assert tracker.last_completion.relay_number == 2

    def test_late_ack_from_previous_zone_is_not_reused(self, fake_transport, clock):
        fake_transport.auto_ack = False
        deliveries = iter([b"11", b"11"])

        def sleep_then_ack(seconds):
            clock.sleep(seconds)
            fake_transport.deliver("/relay_done", next(deliveries))

        seq = DispatchSequencer(fake_transport, TOPICS, sleep=sleep_then_ack, clock=clock.time)
        seq.subscribe_completions()

        outcomes = seq.run([zone("A", relay=1), zone("B", relay=2)])

        assert [o.state for o in outcomes] == [DispatchState.ACKNOWLEDGED, DispatchState.TIMED_OUT]

    def test_publish_failure_aborts(self, sequencer, fake_transport):
        fake_transport.fail_on_publish = 2
        zones = [zone("A", relay=1), zone("B", relay=2), zone("C", relay=3)]

        with pytest.raises(TransportError):
            sequencer.run(zones)

        assert zones[0][1].dispatched
        assert not zones[1][1].dispatched
        assert zones[2][1].dispatch_state == DispatchState.IDLE

    def test_flow_rate_and_margin_are_configurable(self, fake_transport, clock):
        seq = DispatchSequencer(
            fake_transport,
            TOPICS,
            flow_rate_ms_per_gallon=3600 * 1000,
            wait_margin_seconds=2,
            sleep=clock.sleep,
            clock=clock.time,
        )
        seq.subscribe_completions()

        seq.run([zone("Drip", relay=1, demand=0.5)])

        assert fake_transport.published[0][2] == "1 1800000"
        assert clock.sleeps == [1802]

    def test_run_dispatch_subscribes_to_relay_done(self, fake_transport, clock):
        outcomes = run_dispatch([zone("A")], fake_transport, TOPICS, sleep=clock.sleep, clock=clock.time)

        assert [t for t, _ in fake_transport.subscriptions] == ["/relay_done"]
        assert outcomes[0].state == DispatchState.ACKNOWLEDGED


class TestDispatchStateMachine:
    """Tests for ZoneState.transition()."""

    def test_full_cycle(self):
        state = ZoneState()
        for step in (DispatchState.COMMANDING, DispatchState.WAITING, DispatchState.ACKNOWLEDGED):
            state.transition(step)

        assert state.dispatch_state.is_terminal
        assert state.dispatched and state.acknowledged
        assert state.transitions == [DispatchState.IDLE, DispatchState.COMMANDING, DispatchState.WAITING]

    def test_cannot_skip_waiting(self):
        state = ZoneState()
        state.transition(DispatchState.COMMANDING)

        with pytest.raises(InvalidTransitionError):
            state.transition(DispatchState.ACKNOWLEDGED)

    def test_terminal_states_are_final(self):
        state = ZoneState()
        state.transition(DispatchState.SKIPPED)

        with pytest.raises(InvalidTransitionError):
            state.transition(DispatchState.COMMANDING)
