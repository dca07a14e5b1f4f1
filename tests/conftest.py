"""
Shared test fixtures for the irrigation controller test suite.

Provides:
- CIMIS response builders and a sample week of weather
- A ledger file written to a temporary directory
- A virtual clock whose sleep advances time instantly
- A fake publish/subscribe transport that can play the relay controller

Usage:
    def test_example(ledger_path, fake_transport):
        ...
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cimis_irrigation.domain.exceptions import TransportError  # noqa: E402
from cimis_irrigation.hardware.mqtt.mqtt_broker_wrapper import HealthStatus  # noqa: E402

# ---------------------------------------------------------------------------
# Logging: keep test output clean
# ---------------------------------------------------------------------------
logging.getLogger("cimis_irrigation").setLevel(logging.WARNING)

RUN_TIME = datetime(2024, 7, 14, 6, 0, 0)


# ========================== Weather Fixtures ===============================


def day_record(eto: Any = "0.25", precip: Any = "0.00") -> dict[str, Any]:
    """One CIMIS daily record with the fields the aggregator reads."""
    return {
        "Date": "2024-07-07",
        "DayAsceEto": {"Value": eto, "Qc": " ", "Unit": "(in)"},
        "DayPrecip": {"Value": precip, "Qc": " ", "Unit": "(in)"},
    }


def cimis_document(records: list[Any]) -> dict[str, Any]:
    return {"Data": {"Providers": [{"Name": "cimis", "Type": "station", "Records": records}]}}


@pytest.fixture()
def sample_records():
    """A week of records; the most recent day has no precipitation value yet."""
    return [
        day_record("0.70", "0.00"),
        day_record("0.70", "0.50"),
        day_record("0.72", "0.00"),
        day_record("0.68", "0.00"),
        day_record("0.75", "0.00"),
        day_record("0.75", "0.00"),
        day_record("0.70", None),
    ]


# ========================== Ledger Fixtures ================================


def ledger_row(
    name: str,
    pf: Any = "1.0",
    la: Any = 96,
    relay: int = 1,
    controller: int = 1,
    date: str = "2024-07-12 06:00:00",
    gallons: Any = "0.000000",
) -> dict[str, Any]:
    return {
        "Name": name,
        "PF": pf,
        "LA": la,
        "Relay": relay,
        "Controller": controller,
        "Date": date,
        "Gallons": gallons,
    }


@pytest.fixture()
def ledger_document():
    return {
        "Data": [
            ledger_row("Tomatoes", pf="1.0", la=96, relay=1, controller=1, date="2024-07-12 06:00:00", gallons="400.0"),
            ledger_row("Herbs", pf="0.5", la=40, relay=2, controller=1, date="2024-06-01 06:00:00", gallons="50.0"),
            ledger_row("Front Roses", pf="0.7", la=60, relay=0, controller=0, date="2024-07-01 06:00:00"),
        ]
    }


@pytest.fixture()
def ledger_path(tmp_path, ledger_document):
    path = tmp_path / "irrigation_ledger.json"
    path.write_text(json.dumps(ledger_document, indent=4), encoding="utf-8")
    return str(path)


# ========================== Transport Fixtures =============================


class VirtualClock:
    """Monotonic clock whose sleep advances time without blocking."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTransport:
    """In-memory publish/subscribe channel.

    With ``auto_ack`` set, every activation command is answered on the
    subscribed relay-done handlers as a relay controller would, using the
    controller number mapped from the command topic.
    """

    def __init__(self, clock: VirtualClock | None = None, topic_controllers: dict[str, int] | None = None):
        self.clock = clock or VirtualClock()
        self.topic_controllers = topic_controllers or {"/back_yard": 1}
        self.published: list[tuple[float, str, str]] = []
        self.subscriptions: list[tuple[str, Any]] = []
        self.auto_ack = True
        self.fail_on_publish: int | None = None
        self.connected = False
        self.connect_error: Exception | None = None
        self.disconnect_calls = 0
        self.health_status = HealthStatus()

    def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def subscribe(self, topic, callback) -> None:
        self.subscriptions.append((topic, callback))

    def publish(self, topic, payload) -> None:
        if self.fail_on_publish is not None and len(self.published) + 1 >= self.fail_on_publish:
            self.health_status.failed_publishes += 1
            raise TransportError(f"Failed to publish to {topic}")
        self.published.append((self.clock.time(), topic, payload))
        self.health_status.successful_publishes += 1
        if self.auto_ack:
            relay = payload.split()[0]
            controller = self.topic_controllers[topic]
            self.deliver("/relay_done", f"{controller}{relay}".encode())

    def deliver(self, topic: str, payload: bytes) -> None:
        msg = SimpleNamespace(topic=topic, payload=payload)
        for sub, callback in self.subscriptions:
            if sub == topic:
                callback(None, None, msg)


@pytest.fixture()
def clock():
    return VirtualClock()


@pytest.fixture()
def fake_transport(clock):
    return FakeTransport(clock)
