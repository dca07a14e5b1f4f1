"""
Demand Calculator Domain Service
================================
Computes the water deficit of a garden zone, in gallons, from the run's
weather totals, the zone's plant factor and area, and the credit earned by
recent irrigation.

Formula:
    effective_precip     = total_precip * precipitation_effectiveness * gallons_per_inch_sqft
    effective_irrigation = last_gallons_applied * drip_efficiency   (history <= 7 days)
    raw_demand = total_eto * plant_factor * landscape_area * gallons_per_inch_sqft
                 - effective_precip - effective_irrigation
    demand = max(raw_demand, 0)

Usage:
    calculator = DemandCalculator()
    gallons = calculator.compute_demand(summary, zone, state)
"""

import logging
from dataclasses import dataclass

from cimis_irrigation.constants import (
    DRIP_EFFICIENCY,
    GALLONS_PER_INCH_SQFT,
    MAX_HISTORY_DAYS,
    PRECIPITATION_EFFECTIVENESS,
)
from cimis_irrigation.domain.weather import WeatherSummary
from cimis_irrigation.domain.zone import ZoneConfig, ZoneState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DemandCoefficients:
    """Domain constants of the deficit formula, overridable for tests."""

    gallons_per_inch_sqft: float = GALLONS_PER_INCH_SQFT
    precipitation_effectiveness: float = PRECIPITATION_EFFECTIVENESS
    drip_efficiency: float = DRIP_EFFICIENCY
    max_history_days: float = MAX_HISTORY_DAYS


class DemandCalculator:
    """
    Calculates per-zone irrigation demand.

    The precipitation credit is area independent: it uses the same
    inches-to-gallons constant without multiplying by the zone's area.
    """

    def __init__(self, coefficients: DemandCoefficients | None = None):
        self.coefficients = coefficients or DemandCoefficients()

    def effective_precipitation(self, summary: WeatherSummary) -> float:
        c = self.coefficients
        return summary.total_precip * c.precipitation_effectiveness * c.gallons_per_inch_sqft

    def effective_irrigation(self, state: ZoneState) -> float:
        if state.days_since_irrigation > self.coefficients.max_history_days:
            return 0.0
        return state.last_gallons_applied * self.coefficients.drip_efficiency

    def compute_demand(self, summary: WeatherSummary, zone: ZoneConfig, state: ZoneState) -> float:
        """
        Compute the zone's demand and record it on ``state``.

        Returns:
            Demand in gallons, never negative
        """
        c = self.coefficients
        gross = summary.total_eto * zone.plant_factor * zone.landscape_area_sq_ft * c.gallons_per_inch_sqft
        effective_precip = self.effective_precipitation(summary)
        effective_irrigation = self.effective_irrigation(state)

        raw_demand = gross - effective_precip - effective_irrigation
        demand = raw_demand if raw_demand > 0 else 0.0

        state.effective_irrigation_gallons = effective_irrigation
        state.computed_demand_gallons = demand

        logger.debug("Zone %s demand: %s", zone.name, self.explain(gross, effective_precip, effective_irrigation, demand))
        return demand

    @staticmethod
    def explain(gross: float, effective_precip: float, effective_irrigation: float, demand: float) -> str:
        factors = [
            f"gross={gross:.3f}gal",
            f"precip_credit={effective_precip:.3f}gal",
            f"irrigation_credit={effective_irrigation:.3f}gal",
        ]
        return f"{demand:.3f}gal ({', '.join(factors)})"
