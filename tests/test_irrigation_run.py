"""
Irrigation Run Tests
====================
End-to-end tests for one irrigation cycle: weather, demand, dispatch over a
fake broker, and the ledger write-back.
"""

import json

import pytest

from cimis_irrigation.config import AppConfig
from cimis_irrigation.domain.exceptions import DataIntegrityError, TransportConnectError, TransportError
from cimis_irrigation.domain.zone import DispatchState
from cimis_irrigation.services.irrigation_run import IrrigationRunService
from conftest import RUN_TIME, day_record


class FakeWeatherService:
    def __init__(self, records, envelope_errors=0):
        self.records = records
        self.envelope_errors = envelope_errors
        self.calls = []

    def fetch_or_load(self, station_id, app_key, start, end):
        self.calls.append((station_id, app_key, start, end))
        return self.records, self.envelope_errors


class TransportFactory:
    def __init__(self, transport):
        self.transport = transport
        self.calls = 0

    def __call__(self, config):
        self.calls += 1
        return self.transport


@pytest.fixture
def config(ledger_path, tmp_path):
    return AppConfig(
        cimis_station="80",
        cimis_app_key="app-key",
        weather_cache_dir=str(tmp_path),
        ledger_path=ledger_path,
        controller_topics={1: "/back_yard"},
    )


@pytest.fixture
def factory(fake_transport):
    return TransportFactory(fake_transport)


def build_service(config, records, factory, clock, envelope_errors=0):
    return IrrigationRunService(
        config,
        weather_service=FakeWeatherService(records, envelope_errors),
        transport_factory=factory,
        sleep=clock.sleep,
    )


def read_rows(path):
    with open(path, encoding="utf-8") as fh:
        return {row["Name"]: row for row in json.load(fh)["Data"]}


def test_full_run_waters_and_advances_ledger(config, sample_records, factory, fake_transport, clock, ledger_document):
    service = build_service(config, sample_records, factory, clock)

    report = service.run(RUN_TIME)

    tomatoes, herbs, roses = (state for _, state in report.zones)
    assert report.weather.total_eto == pytest.approx(5.0)
    assert report.weather.total_precip == pytest.approx(0.5)
    # 5.0 * 1.0 * 96 * 0.623 - 0.15575 - 400 * 0.7
    assert tomatoes.computed_demand_gallons == pytest.approx(18.88425)
    # History older than a week is ignored
    assert herbs.history_discarded
    assert herbs.computed_demand_gallons == pytest.approx(62.14425)

    assert [(t, p) for _, t, p in fake_transport.published] == [
        ("/back_yard", f"1 {int(tomatoes.computed_demand_gallons * 1000)}"),
        ("/back_yard", f"2 {int(herbs.computed_demand_gallons * 1000)}"),
    ]
    assert [o.state for o in report.outcomes] == [
        DispatchState.ACKNOWLEDGED,
        DispatchState.ACKNOWLEDGED,
        DispatchState.SKIPPED,
    ]
    assert roses.dispatch_state == DispatchState.SKIPPED
    assert fake_transport.disconnect_calls == 1

    rows = read_rows(config.ledger_path)
    assert rows["Tomatoes"]["Date"] == "2024-07-14 06:00:00"
    assert rows["Tomatoes"]["Gallons"] == f"{tomatoes.computed_demand_gallons:f}"
    assert rows["Herbs"]["Date"] == "2024-07-14 06:00:00"
    assert rows["Front Roses"] == ledger_document["Data"][2]
    assert report.ledger_persisted
    assert report.ledger.advanced_zones == ["Tomatoes", "Herbs"]
    transport = report.to_dict()["transport"]
    assert transport["successful_publishes"] == 2
    assert transport["publish_success_rate"] == 100.0


def test_weather_window_ends_the_day_before_the_run(config, sample_records, factory, clock):
    service = build_service(config, sample_records, factory, clock)

    service.run(RUN_TIME)

    station, key, start, end = service.weather_service.calls[0]
    assert (station, key) == ("80", "app-key")
    assert (start.isoformat(), end.isoformat()) == ("2024-07-06", "2024-07-13")


def test_malformed_weather_aborts_before_any_dispatch(config, factory, fake_transport, clock, ledger_path):
    records = [day_record("0.70", "0.00"), day_record("n/a", "0.00")]
    service = build_service(config, records, factory, clock)
    with open(ledger_path, encoding="utf-8") as fh:
        before = fh.read()

    with pytest.raises(DataIntegrityError):
        service.run(RUN_TIME)

    assert factory.calls == 0
    assert fake_transport.published == []
    with open(ledger_path, encoding="utf-8") as fh:
        assert fh.read() == before


@pytest.mark.parametrize("eto", ["nan", "inf"])
def test_non_finite_weather_aborts_before_any_dispatch(config, factory, fake_transport, clock, eto):
    records = [day_record("0.70", "0.00"), day_record(eto, "0.00")]
    service = build_service(config, records, factory, clock)

    with pytest.raises(DataIntegrityError):
        service.run(RUN_TIME)

    assert factory.calls == 0
    assert fake_transport.published == []


def test_broken_envelope_aborts(config, factory, clock):
    service = build_service(config, [], factory, clock, envelope_errors=2)

    with pytest.raises(DataIntegrityError) as exc_info:
        service.run(RUN_TIME)

    assert exc_info.value.detail["errors"] == 2
    assert factory.calls == 0


def test_unreachable_broker_leaves_ledger_untouched(config, sample_records, factory, fake_transport, clock):
    fake_transport.connect_error = TransportConnectError("Unable to connect to MQTT broker localhost:1883")
    service = build_service(config, sample_records, factory, clock)
    with open(config.ledger_path, encoding="utf-8") as fh:
        before = fh.read()

    with pytest.raises(TransportConnectError):
        service.run(RUN_TIME)

    assert fake_transport.published == []
    assert fake_transport.disconnect_calls == 1
    with open(config.ledger_path, encoding="utf-8") as fh:
        assert fh.read() == before


def test_publish_failure_records_only_watered_zones(config, sample_records, factory, fake_transport, clock):
    fake_transport.fail_on_publish = 2
    service = build_service(config, sample_records, factory, clock)

    with pytest.raises(TransportError):
        service.run(RUN_TIME)

    rows = read_rows(config.ledger_path)
    assert rows["Tomatoes"]["Date"] == "2024-07-14 06:00:00"
    assert rows["Herbs"]["Date"] == "2024-06-01 06:00:00"
    assert rows["Herbs"]["Gallons"] == "50.0"


def test_missing_acknowledgments_still_advance_ledger(config, sample_records, factory, fake_transport, clock):
    fake_transport.auto_ack = False
    service = build_service(config, sample_records, factory, clock)

    report = service.run(RUN_TIME)

    assert report.timed_out_zones == ["Tomatoes", "Herbs"]
    assert report.watering_ok
    assert read_rows(config.ledger_path)["Tomatoes"]["Date"] == "2024-07-14 06:00:00"


def test_no_demand_skips_the_broker(config, factory, fake_transport, clock, ledger_document):
    wet_week = [day_record("0.10", "10.00") for _ in range(7)]
    service = build_service(config, wet_week, factory, clock)

    report = service.run(RUN_TIME)

    assert factory.calls == 0
    assert fake_transport.published == []
    assert all(o.state == DispatchState.SKIPPED for o in report.outcomes)
    assert all(state.computed_demand_gallons == 0 for _, state in report.zones)
    rows = read_rows(config.ledger_path)
    assert rows == {row["Name"]: row for row in ledger_document["Data"]}
    assert report.ledger.advanced_zones == []
    assert report.transport_health is None


def test_unwritable_ledger_is_reported(config, sample_records, factory, clock, monkeypatch):
    def refuse(*_args, **_kwargs):
        raise PermissionError("read-only file system")

    monkeypatch.setattr("cimis_irrigation.services.zone_ledger.save_json_file", refuse)
    service = build_service(config, sample_records, factory, clock)

    report = service.run(RUN_TIME)

    assert not report.ledger_persisted
    assert report.ledger.error is not None
    assert report.to_dict()["ledger"]["success"] is False
