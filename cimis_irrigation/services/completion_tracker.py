"""
Completion Tracker
==================
Bridges relay completion notices, delivered on the MQTT network thread, to
the dispatch sequencer on the main thread.

Before commanding a zone the sequencer arms an expectation for that zone's
controller and relay; the subscriber handler resolves it when a matching
notice arrives. Notices for anything other than the armed zone are recorded
but never resolve it, so a late notice from the previous zone cannot be
mistaken for the current one.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from cimis_irrigation.hardware.relay_protocol import RelayCompletion, decode_completion

logger = logging.getLogger(__name__)


@dataclass
class CompletionExpectation:
    """A pending acknowledgment for one commanded zone."""

    controller_number: int
    relay_number: int
    event: threading.Event = field(default_factory=threading.Event)

    @property
    def acknowledged(self) -> bool:
        return self.event.is_set()


class CompletionTracker:
    """Thread-safe record of relay completion notices."""

    def __init__(self):
        self._lock = threading.Lock()
        self._expectation: CompletionExpectation | None = None
        self._last_completion: RelayCompletion | None = None
        self._malformed_count = 0

    @property
    def last_completion(self) -> RelayCompletion | None:
        with self._lock:
            return self._last_completion

    @property
    def malformed_count(self) -> int:
        with self._lock:
            return self._malformed_count

    def expect(self, controller_number: int, relay_number: int) -> CompletionExpectation:
        """Arm a fresh expectation, replacing any previous one."""
        expectation = CompletionExpectation(controller_number, relay_number)
        with self._lock:
            self._expectation = expectation
        return expectation

    def clear(self) -> None:
        with self._lock:
            self._expectation = None

    def record(self, completion: RelayCompletion) -> bool:
        """
        Record a completion notice.

        Returns:
            True if it resolved the armed expectation
        """
        with self._lock:
            self._last_completion = completion
            expectation = self._expectation
            if expectation is None or not completion.matches(
                expectation.controller_number, expectation.relay_number
            ):
                return False
            expectation.event.set()
            return True

    def on_message(self, client, userdata, msg) -> None:
        """MQTT handler for the relay-done topic."""
        try:
            completion = decode_completion(msg.payload)
        except ValueError as e:
            with self._lock:
                self._malformed_count += 1
            logger.warning("Ignoring relay completion on %s: %s", msg.topic, e)
            return

        logger.info(
            "Relay completion from controller %s relay %s",
            completion.controller_number,
            completion.relay_number,
        )
        if not self.record(completion):
            logger.debug("Completion %s does not match the zone being watered", completion)
