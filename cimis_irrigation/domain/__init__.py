"""
Domain Package
==============
Weather totals, garden zones and the demand formula. Nothing in here touches
the network or the filesystem.
"""

from .demand_calculator import DemandCalculator, DemandCoefficients
from .weather import WeatherSummary, aggregate, parse_cimis_response
from .zone import DispatchState, ZoneConfig, ZoneState, is_eligible

__all__ = [
    "DemandCalculator",
    "DemandCoefficients",
    "DispatchState",
    "WeatherSummary",
    "ZoneConfig",
    "ZoneState",
    "aggregate",
    "is_eligible",
    "parse_cimis_response",
]
