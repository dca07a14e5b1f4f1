"""
Zone Ledger Service
===================
Loads the irrigation ledger (zone configuration plus last-irrigation history),
turns it into per-run zone state, and writes the updated records back after
the garden has been watered.

The ledger is kept as the decoded JSON document and mutated in place so zones
this run does not touch are written back exactly as they were read.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from pydantic import ValidationError

from cimis_irrigation.constants import MAX_HISTORY_DAYS
from cimis_irrigation.domain.exceptions import DataIntegrityError, LedgerWriteError
from cimis_irrigation.domain.zone import ZoneConfig, ZoneState
from cimis_irrigation.schemas.ledger import LedgerDocument, LedgerEntry, ledger_record
from cimis_irrigation.utils.persistent_store import load_json_file, save_json_file

logger = logging.getLogger(__name__)

ZoneRun = tuple[ZoneConfig, ZoneState]


@dataclass
class LedgerCommitResult:
    """Outcome of writing the ledger back to disk."""

    success: bool
    path: str
    advanced_zones: list[str] = field(default_factory=list)
    error: LedgerWriteError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "path": self.path,
            "advanced_zones": list(self.advanced_zones),
            "error": str(self.error) if self.error else None,
        }


class ZoneLedger:
    """
    In-memory irrigation ledger.

    Attributes:
        path (str): Location of the ledger JSON file.
        document (dict): Decoded ledger, mutated in place on commit.
        entries (list[LedgerEntry]): Validated view of ``document["Data"]``.
    """

    def __init__(self, path: str, document: dict[str, Any], entries: list[LedgerEntry]):
        self.path = path
        self.document = document
        self.entries = entries

    @classmethod
    def load(cls, path: str) -> "ZoneLedger":
        """
        Read and validate the ledger.

        Raises:
            DataIntegrityError: the file is missing, unreadable or malformed
        """
        try:
            document = load_json_file(path)
        except (OSError, TimeoutError, json.JSONDecodeError) as e:
            raise DataIntegrityError(f"Could not open irrigation ledger {path}: {e}", detail={"path": path}) from e

        if not isinstance(document, dict) or not isinstance(document.get("Data"), list):
            raise DataIntegrityError(f"Irrigation ledger {path} has no 'Data' array", detail={"path": path})

        try:
            parsed = LedgerDocument.model_validate(document)
        except ValidationError as e:
            raise DataIntegrityError(
                f"Irrigation ledger {path} has {e.error_count()} invalid field(s)",
                detail={"path": path, "errors": e.errors(include_url=False)},
            ) from e

        logger.info("Loaded irrigation ledger %s with %d garden zone(s)", path, len(parsed.entries))
        return cls(path, document, parsed.entries)

    def zones(self) -> list[ZoneConfig]:
        configs = []
        for entry in self.entries:
            zone = ZoneConfig(
                name=entry.name,
                plant_factor=entry.plant_factor,
                landscape_area_sq_ft=entry.landscape_area_sq_ft,
                relay_number=entry.relay,
                controller_number=entry.controller,
            )
            if not zone.is_reachable:
                logger.info("Zone %s has no online controller or relay yet", zone.name)
            configs.append(zone)
        return configs

    def build_run(self, run_time: datetime, max_history_days: float = MAX_HISTORY_DAYS) -> list[ZoneRun]:
        """Pair every zone with fresh run state derived from its last irrigation."""
        runs: list[ZoneRun] = []
        for zone, entry in zip(self.zones(), self.entries):
            state = ZoneState.from_history(entry.date, entry.gallons, run_time, max_history_days)
            if state.history_discarded:
                logger.info(
                    "Zone %s was last irrigated %s, older than %.0f days; ignoring that irrigation",
                    zone.name,
                    entry.date,
                    max_history_days,
                )
            runs.append((zone, state))
        return runs

    def apply_run(self, zones: Sequence[ZoneRun], run_time: datetime) -> list[str]:
        """
        Advance the in-memory records of zones whose activation command was
        published.

        Zones without a reachable controller, with no demand, or never
        commanded (skipped, or left behind by an aborted dispatch) keep their
        previous date and amount.

        Returns:
            Names of the advanced zones
        """
        if len(zones) != len(self.entries):
            raise ValueError(f"Expected {len(self.entries)} zone(s), got {len(zones)}")

        advanced = []
        for raw, (zone, state) in zip(self.document["Data"], zones):
            if not zone.is_reachable or state.computed_demand_gallons <= 0 or not state.dispatched:
                continue
            raw.update(ledger_record(run_time, state.computed_demand_gallons))
            advanced.append(zone.name)
        return advanced

    def commit(self, zones: Sequence[ZoneRun], run_time: datetime) -> LedgerCommitResult:
        """
        Write the advanced records back to the ledger file.

        A write failure is reported on the result rather than raised: the
        watering it describes has already happened.
        """
        advanced = self.apply_run(zones, run_time)
        try:
            save_json_file(self.path, self.document)
        except (OSError, TimeoutError, TypeError, ValueError) as e:
            error = LedgerWriteError(f"Cannot save irrigation ledger {self.path}: {e}", detail={"path": self.path})
            logger.error("%s", error)
            return LedgerCommitResult(success=False, path=self.path, advanced_zones=advanced, error=error)

        logger.info("Irrigation ledger saved; advanced %d zone(s): %s", len(advanced), ", ".join(advanced) or "none")
        return LedgerCommitResult(success=True, path=self.path, advanced_zones=advanced)
