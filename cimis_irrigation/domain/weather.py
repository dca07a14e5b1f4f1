"""
Weather Aggregation
===================
Reduces a CIMIS daily-data response into the two totals the demand
calculation needs: reference evapotranspiration and precipitation.

The CIMIS response nests the per-day records as::

    {"Data": {"Providers": [{"Records": [
        {"DayAsceEto": {"Value": "0.21", ...},
         "DayPrecip": {"Value": "0.00", ...}, ...},
        ...
    ]}]}}

Structural problems are counted rather than raised so a single run can report
every malformed field at once; the caller treats any non-zero count as fatal.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Sequence

logger = logging.getLogger(__name__)

RawDayRecord = dict[str, Any]


@dataclass(frozen=True)
class WeatherSummary:
    """Weather totals over the run's window, in inches."""

    total_eto: float
    total_precip: float

    def to_dict(self) -> dict[str, float]:
        return {
            "total_eto": round(self.total_eto, 3),
            "total_precip": round(self.total_precip, 3),
        }


def _parse_decimal(value: str) -> float | None:
    try:
        result = float(value)
    except ValueError:
        return None
    # float() also accepts "nan" and "inf"
    return result if math.isfinite(result) else None


def parse_cimis_response(document: Any) -> tuple[list[RawDayRecord], int]:
    """
    Extract the per-day records from a decoded CIMIS response.

    Each broken level of the ``Data -> Providers[0] -> Records`` path counts as
    one error. Records are returned as-is; per-day validation happens in
    :func:`aggregate`.

    Returns:
        Tuple of (records, error_count)
    """
    error_count = 0

    data = document.get("Data") if isinstance(document, dict) else None
    if not isinstance(data, dict):
        error_count += 1
        data = {}

    providers = data.get("Providers")
    if not isinstance(providers, list):
        error_count += 1
        providers = []

    provider = providers[0] if providers else None
    if not isinstance(provider, dict):
        error_count += 1
        provider = {}

    records = provider.get("Records")
    if not isinstance(records, list):
        error_count += 1
        records = []

    return list(records), error_count


def aggregate(daily_records: Sequence[RawDayRecord]) -> tuple[WeatherSummary, int]:
    """
    Sum ETo and precipitation across the daily records.

    A null precipitation value is expected for the most recent day (the station
    has not finalized it yet) and counts as zero without being an error.

    Args:
        daily_records: Ordered per-day records from the CIMIS response

    Returns:
        Tuple of (WeatherSummary, error_count)
    """
    error_count = 0
    total_eto = 0.0
    total_precip = 0.0

    for index, day in enumerate(daily_records):
        if not isinstance(day, dict):
            logger.warning("Weather record %d is not an object", index)
            error_count += 1
            continue

        eto_field = day.get("DayAsceEto")
        eto_value = eto_field.get("Value") if isinstance(eto_field, dict) else None
        if not isinstance(eto_field, dict):
            error_count += 1
        if not isinstance(eto_value, str):
            logger.warning("Weather record %d has no ETo string value", index)
            error_count += 1
        else:
            eto = _parse_decimal(eto_value)
            if eto is None:
                logger.warning("Weather record %d ETo value %r is not a decimal", index, eto_value)
                error_count += 1
            else:
                total_eto += eto

        precip_field = day.get("DayPrecip")
        if not isinstance(precip_field, dict):
            logger.warning("Weather record %d has no DayPrecip object", index)
            error_count += 1
            continue

        precip_value = precip_field.get("Value")
        if precip_value is None:
            logger.info("Precipitation for weather record %d is null, counting it as zero", index)
        elif not isinstance(precip_value, str):
            logger.warning("Weather record %d precipitation value %r is not a string", index, precip_value)
            error_count += 1
        else:
            precip = _parse_decimal(precip_value)
            if precip is None:
                error_count += 1
            else:
                total_precip += precip

    return WeatherSummary(total_eto=total_eto, total_precip=total_precip), error_count
