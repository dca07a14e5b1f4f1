"""
Irrigation Run Service
======================
Runs one daily irrigation cycle end to end:

1. Fetch (or load cached) CIMIS weather for the window ending yesterday
2. Aggregate ETo and precipitation; any malformed record aborts the run
3. Load the zone ledger and compute each zone's water demand
4. Connect to the MQTT broker and water eligible zones one at a time
5. Write the advanced records back to the ledger

Fatal errors raise an :class:`IrrigationError` subclass. The broker
connection is always closed before the error leaves this module.

Usage:
    service = IrrigationRunService(load_config())
    report = service.run()
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from cimis_irrigation.config import AppConfig
from cimis_irrigation.domain.demand_calculator import DemandCalculator
from cimis_irrigation.domain.exceptions import DataIntegrityError, TransportError
from cimis_irrigation.domain.weather import WeatherSummary, aggregate
from cimis_irrigation.domain.zone import DispatchState, ZoneConfig, ZoneState, is_eligible
from cimis_irrigation.hardware.mqtt.mqtt_broker_wrapper import MQTTClientWrapper
from cimis_irrigation.services.dispatch_sequencer import DispatchOutcome, DispatchSequencer
from cimis_irrigation.services.weather_service import CimisWeatherService, weather_window
from cimis_irrigation.services.zone_ledger import LedgerCommitResult, ZoneLedger
from cimis_irrigation.utils.time import local_now

logger = logging.getLogger(__name__)


def create_transport(config: AppConfig) -> MQTTClientWrapper:
    """Build the MQTT channel described by ``config`` (not yet connected)."""
    return MQTTClientWrapper(
        config.mqtt_broker_host,
        config.mqtt_broker_port,
        client_id=config.mqtt_client_id,
        username=config.mqtt_username or None,
        password=config.mqtt_password or None,
        connect_retries=config.mqtt_connect_retries,
        backoff_seconds=config.mqtt_connect_backoff_seconds,
    )


@dataclass
class RunReport:
    """Summary of one irrigation run."""

    run_time: datetime
    weather: WeatherSummary
    zones: list[tuple[ZoneConfig, ZoneState]]
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    ledger: LedgerCommitResult | None = None
    transport_health: dict[str, Any] | None = None

    @property
    def watering_ok(self) -> bool:
        """Every dispatch cycle reached a terminal state."""
        return all(o.state.is_terminal for o in self.outcomes)

    @property
    def ledger_persisted(self) -> bool:
        return self.ledger is not None and self.ledger.success

    @property
    def timed_out_zones(self) -> list[str]:
        return [o.zone_name for o in self.outcomes if o.state == DispatchState.TIMED_OUT]

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_time": self.run_time.isoformat(sep=" "),
            "weather": self.weather.to_dict(),
            "zones": {zone.name: state.to_dict() for zone, state in self.zones},
            "outcomes": [o.to_dict() for o in self.outcomes],
            "ledger": self.ledger.to_dict() if self.ledger else None,
            "transport": self.transport_health,
            "watering_ok": self.watering_ok,
            "ledger_persisted": self.ledger_persisted,
        }


class IrrigationRunService:
    """
    Orchestrates the weather, demand, dispatch and ledger steps of a run.

    Args:
        config: Runtime configuration
        weather_service: CIMIS client (defaults to one built from ``config``)
        calculator: Demand calculator (defaults to the domain coefficients)
        transport_factory: Builds an unconnected transport from ``config``
        sleep: Blocking sleep used between zones
    """

    def __init__(
        self,
        config: AppConfig,
        weather_service: CimisWeatherService | None = None,
        calculator: DemandCalculator | None = None,
        transport_factory: Callable[[AppConfig], Any] = create_transport,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.weather_service = weather_service or CimisWeatherService(
            cache_dir=config.weather_cache_dir,
            timeout=config.http_timeout,
        )
        self.calculator = calculator or DemandCalculator()
        self.transport_factory = transport_factory
        self._sleep = sleep

    def load_weather(self, run_time: datetime) -> WeatherSummary:
        """
        Fetch and aggregate the run's weather.

        Raises:
            WeatherFetchError: the data could not be obtained
            DataIntegrityError: any weather record was malformed
        """
        start, end = weather_window(run_time, self.config.weather_window_days)
        records, envelope_errors = self.weather_service.fetch_or_load(
            self.config.cimis_station, self.config.cimis_app_key, start, end
        )
        summary, record_errors = aggregate(records)
        error_count = envelope_errors + record_errors
        if error_count > 0:
            raise DataIntegrityError(
                f"There were {error_count} type errors when parsing the weather data",
                detail={"start": start.isoformat(), "end": end.isoformat(), "errors": error_count},
            )

        logger.info("CIMIS ETo reads %.2f in, precipitation reads %.2f in", summary.total_eto, summary.total_precip)
        return summary

    def compute_demands(self, summary: WeatherSummary, zones: list[tuple[ZoneConfig, ZoneState]]) -> None:
        logger.info("Gallons of water needed to meet demand for %d garden zone(s):", len(zones))
        for zone, state in zones:
            demand = self.calculator.compute_demand(summary, zone, state)
            logger.info("  %-20s | %10.3f", zone.name, demand)

    def dispatch(
        self, zones: list[tuple[ZoneConfig, ZoneState]], report: RunReport | None = None
    ) -> list[DispatchOutcome]:
        """
        Water the eligible zones over a fresh broker connection.

        The transport's health counters are copied onto ``report`` once the
        connection is closed, whether or not the dispatch succeeded.

        Raises:
            TransportConnectError: the broker could not be reached
            TransportError: a command could not be published
        """
        transport = self.transport_factory(self.config)
        try:
            transport.connect()
            sequencer = DispatchSequencer(
                transport,
                self.config.controller_topics,
                flow_rate_ms_per_gallon=self.config.flow_rate_ms_per_gallon,
                wait_margin_seconds=self.config.wait_margin_seconds,
                sleep=self._sleep,
            )
            sequencer.subscribe_completions(self.config.relay_done_topic)
            logger.info("Now connected to the broker")
            return sequencer.run(zones)
        finally:
            transport.disconnect()
            if report is not None:
                report.transport_health = transport.health_status.to_dict()

    def run(self, run_time: datetime | None = None) -> RunReport:
        """
        Execute one irrigation run.

        Raises:
            IrrigationError: any fatal error; see the module docstring
        """
        run_time = run_time or local_now()
        logger.info("Starting irrigation run for %s", run_time.isoformat(sep=" "))

        summary = self.load_weather(run_time)
        ledger = ZoneLedger.load(self.config.ledger_path)
        zones = ledger.build_run(run_time, self.config.max_history_days)
        self.compute_demands(summary, zones)

        report = RunReport(run_time=run_time, weather=summary, zones=zones)
        if any(is_eligible(zone, state) for zone, state in zones):
            try:
                report.outcomes = self.dispatch(zones, report)
            except TransportError:
                # Zones commanded before the failure were watered; record them.
                if any(state.dispatched for _, state in zones):
                    report.ledger = ledger.commit(zones, run_time)
                raise
        else:
            logger.info("No garden zone needs water today")
            sequencer = DispatchSequencer(transport=None, controller_topics=self.config.controller_topics)
            report.outcomes = sequencer.run(zones)

        report.ledger = ledger.commit(zones, run_time)
        return report
