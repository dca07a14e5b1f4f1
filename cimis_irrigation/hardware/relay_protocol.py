"""
Relay controller wire format.

Activation command (published on the controller's topic)::

    "<relay> <duration_ms>"        e.g. "2 18417"

Completion notice (published by a controller on ``/relay_done``)::

    "<controller><relay>"          e.g. "12" = controller 1, relay 2

Controller and relay numbers are single digits in the completion notice.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RelayCompletion:
    controller_number: int
    relay_number: int

    def matches(self, controller_number: int, relay_number: int) -> bool:
        return self.controller_number == controller_number and self.relay_number == relay_number


def encode_activation(relay_number: int, duration_ms: int) -> str:
    if relay_number <= 0:
        raise ValueError(f"Relay number must be positive, got {relay_number}")
    if duration_ms < 0:
        raise ValueError(f"Duration must not be negative, got {duration_ms}")
    return f"{relay_number} {duration_ms}"


def decode_completion(payload: bytes | str) -> RelayCompletion:
    """
    Parse a completion notice.

    Raises:
        ValueError: the payload is not two or more digits
    """
    text = payload.decode("utf-8", errors="replace") if isinstance(payload, bytes) else payload
    text = text.strip().rstrip("\x00")
    if len(text) < 2 or not text.isdigit():
        raise ValueError(f"Malformed relay completion payload: {text!r}")
    return RelayCompletion(controller_number=int(text[0]), relay_number=int(text[1:]))
