"""
CIMIS Weather Service
=====================

Fetches daily weather data (ETo and precipitation) for a CIMIS station and
caches each response on disk, keyed by its date range, so a re-run on the same
day never calls the API twice.

Features:
- Date window ending yesterday (today's values are always null)
- File cache named ``weather_<start>_<end>.json``
- Fails loudly: no fallback data is ever invented for a deficit calculation
"""
from __future__ import annotations

import json
import logging
import os
from datetime import date, datetime, timedelta
from typing import Any

import requests

from cimis_irrigation.constants import (
    CIMIS_API_URL,
    CIMIS_DATE_FORMAT,
    DEFAULT_WEATHER_WINDOW_DAYS,
    WEATHER_CACHE_FILE_TEMPLATE,
)
from cimis_irrigation.domain.exceptions import WeatherFetchError
from cimis_irrigation.domain.weather import RawDayRecord, parse_cimis_response
from cimis_irrigation.utils.persistent_store import load_json_file, save_json_file

logger = logging.getLogger(__name__)


def weather_window(run_time: datetime, num_days: int = DEFAULT_WEATHER_WINDOW_DAYS) -> tuple[date, date]:
    """
    Date range of weather data used for a run.

    The range ends yesterday because the station has not reported the
    current day yet, and starts ``num_days`` before that.
    """
    end = (run_time - timedelta(days=1)).date()
    start = end - timedelta(days=num_days)
    return start, end


class CimisWeatherService:
    """
    Client for the CIMIS daily data API with an on-disk response cache.

    Uses the CIMIS REST API:
    https://et.water.ca.gov/Rest/Index

    An application key is required.
    """

    def __init__(
        self,
        cache_dir: str = ".",
        api_url: str = CIMIS_API_URL,
        timeout: int = 30,
        session: requests.Session | None = None,
    ):
        """
        Initialize the weather service.

        Args:
            cache_dir: Directory holding cached responses
            api_url: CIMIS data endpoint
            timeout: HTTP timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.cache_dir = cache_dir
        self.api_url = api_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def cache_path(self, start: date, end: date) -> str:
        file_name = WEATHER_CACHE_FILE_TEMPLATE.format(
            start=start.strftime(CIMIS_DATE_FORMAT),
            end=end.strftime(CIMIS_DATE_FORMAT),
        )
        return os.path.join(self.cache_dir, file_name)

    def fetch_or_load(self, station_id: str, app_key: str, start: date, end: date) -> tuple[list[RawDayRecord], int]:
        """
        Return the daily records for the range, fetching them only when no
        cached response exists.

        Returns:
            Tuple of (records, structural_error_count) from the response envelope

        Raises:
            WeatherFetchError: the request failed or the cache is unreadable
        """
        path = self.cache_path(start, end)
        if os.path.exists(path):
            logger.info("Weather data for %s to %s already cached, opening %s", start, end, path)
            return parse_cimis_response(self._load_cached(path))

        logger.info("No cached weather data for %s to %s, requesting it from CIMIS", start, end)
        document = self._fetch(station_id, app_key, start, end)
        records, error_count = parse_cimis_response(document)
        if error_count:
            # Only well-formed responses are cached.
            logger.warning("CIMIS response for %s to %s is malformed; not caching it", start, end)
        else:
            try:
                save_json_file(path, document, indent=None)
                logger.info("Weather data cached to %s", path)
            except (OSError, TimeoutError) as e:
                # The data is still usable for this run.
                logger.warning("Could not cache weather data to %s: %s", path, e)

        logger.info("Weather window covers %d day(s)", len(records))
        return records, error_count

    def _load_cached(self, path: str) -> Any:
        try:
            return load_json_file(path)
        except (OSError, TimeoutError, json.JSONDecodeError) as e:
            raise WeatherFetchError(f"Could not open cached weather file {path}: {e}", detail={"path": path}) from e

    def _fetch(self, station_id: str, app_key: str, start: date, end: date) -> Any:
        params = {
            "appKey": app_key,
            "targets": station_id,
            "startDate": start.strftime(CIMIS_DATE_FORMAT),
            "endDate": end.strftime(CIMIS_DATE_FORMAT),
        }
        try:
            response = self.session.get(self.api_url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise WeatherFetchError(f"Unable to request data from {self.api_url}: {e}") from e

        if response.status_code != 200:
            raise WeatherFetchError(
                f"CIMIS responded with code {response.status_code}",
                detail={"status_code": response.status_code, "station": station_id},
            )

        try:
            return response.json()
        except ValueError as e:
            raise WeatherFetchError(f"CIMIS response is not valid JSON: {e}") from e


def fetch_or_load_weather(
    station_id: str,
    app_key: str,
    start: date,
    end: date,
    cache_dir: str = ".",
) -> tuple[list[RawDayRecord], int]:
    """Fetch or load the weather records for ``start``..``end`` with a one-off client."""
    return CimisWeatherService(cache_dir=cache_dir).fetch_or_load(station_id, app_key, start, end)
