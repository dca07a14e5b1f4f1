"""Centralized exception hierarchy for the irrigation controller.

All errors raised by the controller inherit from :class:`IrrigationError` so
the run-once entry point can map any of them to a non-zero exit code, while
the run service still matches on specific subclasses to decide whether a
failure is fatal.

Hierarchy
---------
::

    IrrigationError
    ├── DataIntegrityError       (fatal: malformed weather data, unreadable ledger)
    ├── WeatherFetchError        (fatal: CIMIS request or cache failure)
    ├── TransportError           (fatal: publish / subscribe failure)
    │   └── TransportConnectError (fatal: broker unreachable, bad credentials)
    ├── DispatchTimeout          (recoverable: no completion acknowledgment)
    ├── LedgerWriteError         (reported: ledger could not be persisted)
    └── ConfigurationError       (fatal: invalid environment values)
"""

from __future__ import annotations


class IrrigationError(Exception):
    """Base exception for all irrigation controller errors.

    Parameters
    ----------
    message:
        Human-readable description, logged as-is.
    detail:
        Optional machine-readable context dict attached to the error for
        structured logging.
    """

    fatal: bool = True

    def __init__(self, message: str = "", *, detail: dict | None = None) -> None:
        super().__init__(message)
        self.detail = detail or {}


class DataIntegrityError(IrrigationError):
    """Weather records or the ledger cannot be trusted for a deficit calculation."""


class WeatherFetchError(IrrigationError):
    """The CIMIS request failed or the cached response could not be read."""


class TransportError(IrrigationError):
    """Publishing or subscribing on the MQTT channel failed."""


class TransportConnectError(TransportError):
    """The MQTT broker is unreachable or rejected the credentials."""


class DispatchTimeout(IrrigationError):
    """A zone controller did not acknowledge completion within its wait window."""

    fatal = False


class LedgerWriteError(IrrigationError):
    """The updated ledger could not be written back to disk."""

    fatal = False


class ConfigurationError(IrrigationError):
    """Missing or invalid controller configuration."""
